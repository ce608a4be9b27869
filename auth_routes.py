"""API Routes for authentication and the user profile"""
from fastapi import APIRouter, HTTPException, Request
import logging

from config import AUTH_RATE_LIMIT
from dependencies import CurrentUserDep, UsersCollectionDep
from models.user import (
    ForgotPasswordInput,
    LoginInput,
    ProfileUpdateInput,
    RegisterInput,
    ResetPasswordInput,
    Token,
    UserPublic,
)
from services import auth_service
from services.auth_service import InvalidCredentialsError, PasswordResetError, UserExistsError
from utils.rate_limit import limiter
from utils.security import create_access_token

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/auth/register", response_model=UserPublic, status_code=201, summary="Register")
@limiter.limit(AUTH_RATE_LIMIT)
async def register(request: Request, payload: RegisterInput, users: UsersCollectionDep) -> UserPublic:
    try:
        user = await auth_service.register_user(users, payload.email, payload.password, payload.name)
    except UserExistsError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"Registration error: {e}")
        raise HTTPException(status_code=500, detail="An error occurred while processing your request")
    return UserPublic(id=user.id, email=user.email, name=user.name)


@router.post("/auth/login", response_model=Token, summary="Log In")
@limiter.limit(AUTH_RATE_LIMIT)
async def login(request: Request, payload: LoginInput, users: UsersCollectionDep) -> Token:
    try:
        user = await auth_service.authenticate_user(users, payload.email, payload.password)
    except InvalidCredentialsError:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    except Exception as e:
        logger.exception(f"Login error: {e}")
        raise HTTPException(status_code=500, detail="An error occurred while processing your request")
    return Token(access_token=create_access_token(user.id))


@router.post("/auth/forgot-password", summary="Request Password Reset")
@limiter.limit(AUTH_RATE_LIMIT)
async def forgot_password(request: Request, payload: ForgotPasswordInput, users: UsersCollectionDep):
    try:
        message = await auth_service.request_password_reset(users, payload.email)
    except Exception as e:
        logger.exception(f"Forgot password error: {e}")
        raise HTTPException(status_code=500, detail="An error occurred while processing your request")
    return {"message": message}


@router.post("/auth/reset-password", summary="Reset Password")
@limiter.limit(AUTH_RATE_LIMIT)
async def reset_password(request: Request, payload: ResetPasswordInput, users: UsersCollectionDep):
    try:
        await auth_service.reset_password(users, payload.email, payload.otp, payload.new_password)
    except PasswordResetError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"Reset password error: {e}")
        raise HTTPException(status_code=500, detail="An error occurred while processing your request")
    return {"message": "Password has been reset successfully"}


@router.post("/user/update", summary="Update Profile")
async def update_user(payload: ProfileUpdateInput, users: UsersCollectionDep, user_id: CurrentUserDep):
    try:
        await auth_service.update_profile(users, user_id, payload.name)
    except LookupError:
        raise HTTPException(status_code=401, detail="Unauthorized")
    except Exception as e:
        logger.exception(f"Failed to update user {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Error updating user")
    return {"message": "Profile updated successfully"}
