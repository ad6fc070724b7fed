"""Pydantic schemas for authentication API."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class OTPSendRequest(BaseModel):
    """Request a one-time code."""

    email: str = Field(..., min_length=3, max_length=255)
    purpose: str = Field(
        default="login",
        description="signup, login or password-reset (aliases: reset, forgot-password)",
    )


class OTPSendResponse(BaseModel):
    message: str
    expires_at: datetime


class OTPVerifyRequest(BaseModel):
    """Check a one-time code without signing in. Consumes the code."""

    email: str = Field(..., min_length=3, max_length=255)
    code: str = Field(..., min_length=4, max_length=10)
    purpose: str = "login"


class OTPVerifyResponse(BaseModel):
    valid: bool
    reason: str
    message: str


class SignupRequest(BaseModel):
    """Complete signup with the code sent to the email address."""

    email: str = Field(..., min_length=3, max_length=255)
    code: str = Field(..., min_length=4, max_length=10)
    name: str | None = Field(None, max_length=255)
    password: str | None = Field(
        None,
        min_length=8,
        max_length=128,
        description="Optional password (minimum 8 characters) for password login",
    )


class LoginRequest(BaseModel):
    """Request for password login."""

    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)


class OTPLoginRequest(BaseModel):
    """Request for one-time code login."""

    email: str = Field(..., min_length=3, max_length=255)
    code: str = Field(..., min_length=4, max_length=10)


class PasswordResetRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    code: str = Field(..., min_length=4, max_length=10)
    new_password: str = Field(
        ...,
        min_length=8,
        max_length=128,
        description="New password (minimum 8 characters)",
    )


class TokenResponse(BaseModel):
    """Response with JWT tokens."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="Access token expiry in seconds")


class RefreshRequest(BaseModel):
    """Request for token refresh."""

    refresh_token: str


class LogoutRequest(BaseModel):
    """Request for logout with optional refresh token revocation."""

    refresh_token: str | None = Field(
        None,
        description="Refresh token to revoke alongside the access token.",
    )


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str


class LogoutAllResponse(MessageResponse):
    revoked: int


class AccountResponse(BaseModel):
    """Response with account information."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    name: str | None
    role: str
    is_active: bool
    is_verified: bool
    last_login_at: datetime | None
    created_at: datetime


class SignupResponse(TokenResponse):
    account: AccountResponse
