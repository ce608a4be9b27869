"""Pydantic models for users and auth payloads"""
from pydantic import AfterValidator, BaseModel, Field
from datetime import datetime
from typing import Annotated, Optional


def _normalize_email(v: str) -> str:
    v = v.strip().lower()
    if "@" not in v or v.startswith("@") or v.endswith("@"):
        raise ValueError("must be a valid email address")
    return v


NormalizedEmail = Annotated[str, AfterValidator(_normalize_email)]


class User(BaseModel):
    """
    A stored user. reset_otp and reset_otp_expires are set and cleared together.
    """
    id: Optional[str] = None
    email: str
    password_hash: str
    name: Optional[str] = None
    reset_otp: Optional[str] = None
    reset_otp_expires: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
        from_attributes = True

    def active_reset_otp(self, now: datetime) -> Optional[str]:
        """The reset code, or None when absent or past its expiry."""
        if not self.reset_otp or not self.reset_otp_expires:
            return None
        if now > self.reset_otp_expires:
            return None
        return self.reset_otp


class UserPublic(BaseModel):
    id: str
    email: str
    name: Optional[str] = None


class RegisterInput(BaseModel):
    email: NormalizedEmail
    password: str = Field(..., min_length=8, max_length=72)
    name: Optional[str] = Field(default=None, max_length=100)


class LoginInput(BaseModel):
    email: NormalizedEmail
    password: str = Field(..., min_length=1)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ForgotPasswordInput(BaseModel):
    email: str = Field(..., min_length=1)


class ResetPasswordInput(BaseModel):
    email: str = Field(..., min_length=1)
    otp: str = Field(..., min_length=1)
    new_password: str = Field(..., alias="newPassword", min_length=8, max_length=72)

    class Config:
        populate_by_name = True


class ProfileUpdateInput(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
