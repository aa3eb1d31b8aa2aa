"""
Pydantic schemas for the /auth endpoints.

Pydantic validates incoming data automatically; a missing field or wrong
type is rejected with 400 VALIDATION_ERROR before the service runs.
"""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from mowesport.schemas.user import UserResponse


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""
    email: EmailStr
    password: str = Field(min_length=1, max_length=256)
    totp: str | None = Field(None, max_length=10)


class LoginResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    requires_change: bool
    password_expires_at: datetime | None = None
    user: UserResponse


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class RefreshResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=256)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=256)
    new_password: str = Field(min_length=1, max_length=256)
    confirm_password: str = Field(min_length=1, max_length=256)


class PasswordStatusResponse(BaseModel):
    is_temporary: bool
    requires_change: bool
    expires_at: datetime | None = None
    is_expired: bool
    time_remaining_seconds: int | None = None


class TwoFactorSetupResponse(BaseModel):
    secret: str
    otpauth_uri: str


class TwoFactorCodeRequest(BaseModel):
    code: str = Field(min_length=6, max_length=10)
