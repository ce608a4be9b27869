"""Service layer for users: registration, login, password reset and profile."""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import DuplicateKeyError

from config import RESET_OTP_EXPIRE_SECONDS
from models.user import User
from utils.security import hash_password, verify_password

logger = logging.getLogger(__name__)

RESET_REQUESTED_MESSAGE = "If an account with that email exists, a password reset OTP has been sent."


class UserExistsError(ValueError):
    pass


class InvalidCredentialsError(Exception):
    pass


class PasswordResetError(ValueError):
    pass


def _utcnow() -> datetime:
    # Mongo hands back naive UTC datetimes, so compare in naive UTC throughout
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _doc_to_user(doc: Dict[str, Any]) -> User:
    doc = dict(doc)
    if '_id' in doc: doc['id'] = str(doc.pop('_id'))
    return User(**doc)


def generate_otp() -> str:
    """A 4-digit numeric one-time code."""
    return str(1000 + secrets.randbelow(9000))


async def find_user_by_email(users: AsyncIOMotorCollection, email: str) -> Optional[User]:
    doc = await users.find_one({"email": email.strip().lower()})
    return _doc_to_user(doc) if doc else None


async def register_user(users: AsyncIOMotorCollection, email: str, password: str, name: Optional[str] = None) -> User:
    email = email.strip().lower()
    if await users.find_one({"email": email}):
        raise UserExistsError("An account with that email already exists.")
    doc = {
        "email": email,
        "password_hash": hash_password(password),
        "name": name or None,
        "created_at": _utcnow(),
    }
    try:
        result = await users.insert_one(doc)
    except DuplicateKeyError:
        raise UserExistsError("An account with that email already exists.")
    doc["_id"] = result.inserted_id
    logger.info(f"Registered user {result.inserted_id}.")
    return _doc_to_user(doc)


async def authenticate_user(users: AsyncIOMotorCollection, email: str, password: str) -> User:
    """Checks credentials against the stored hash on every call; results are never cached."""
    user = await find_user_by_email(users, email)
    if user is None or not user.password_hash:
        raise InvalidCredentialsError("Invalid credentials")
    if not verify_password(password, user.password_hash):
        raise InvalidCredentialsError("Invalid credentials")
    return user


def send_otp_email(email: str, otp: str) -> None:
    # No mail service is wired up; the code goes to the application log
    logger.info(f"Password reset OTP for {email}: {otp} (valid for {RESET_OTP_EXPIRE_SECONDS // 60} minutes)")


async def request_password_reset(users: AsyncIOMotorCollection, email: str) -> str:
    """
    Issues a reset code when the account exists. The returned message is the
    same either way so callers can't tell which emails are registered.
    """
    user = await find_user_by_email(users, email)
    if user is None:
        logger.info(f"Password reset requested for non-existent email: {email}")
        return RESET_REQUESTED_MESSAGE

    otp = generate_otp()
    await users.update_one(
        {"_id": ObjectId(user.id)},
        {"$set": {"reset_otp": otp, "reset_otp_expires": _utcnow() + timedelta(seconds=RESET_OTP_EXPIRE_SECONDS)}},
    )
    send_otp_email(user.email, otp)
    return RESET_REQUESTED_MESSAGE


async def reset_password(users: AsyncIOMotorCollection, email: str, otp: str, new_password: str) -> None:
    user = await find_user_by_email(users, email)
    if user is None:
        raise PasswordResetError("Invalid or expired OTP")
    if user.reset_otp != otp:
        raise PasswordResetError("Invalid OTP")
    if user.active_reset_otp(_utcnow()) is None:
        raise PasswordResetError("OTP has expired")

    await users.update_one(
        {"_id": ObjectId(user.id)},
        {"$set": {"password_hash": hash_password(new_password), "reset_otp": None, "reset_otp_expires": None}},
    )
    logger.info(f"Password reset for user {user.id}.")


async def update_profile(users: AsyncIOMotorCollection, user_id: str, name: Optional[str]) -> None:
    try:
        oid = ObjectId(user_id)
    except (InvalidId, TypeError):
        raise LookupError(user_id)
    name = name.strip() if name else None
    result = await users.update_one({"_id": oid}, {"$set": {"name": name or None}})
    if result.matched_count == 0:
        raise LookupError(user_id)


async def ensure_indexes(users: AsyncIOMotorCollection) -> None:
    await users.create_index("email", unique=True)
