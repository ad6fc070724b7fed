# otpgate API schemas
from otpgate.schemas.auth import (
    AccountResponse,
    LoginRequest,
    LogoutAllResponse,
    LogoutRequest,
    MessageResponse,
    OTPLoginRequest,
    OTPSendRequest,
    OTPSendResponse,
    OTPVerifyRequest,
    OTPVerifyResponse,
    PasswordResetRequest,
    RefreshRequest,
    SignupRequest,
    SignupResponse,
    TokenResponse,
)

__all__ = [
    "AccountResponse",
    "LoginRequest",
    "LogoutAllResponse",
    "LogoutRequest",
    "MessageResponse",
    "OTPLoginRequest",
    "OTPSendRequest",
    "OTPSendResponse",
    "OTPVerifyRequest",
    "OTPVerifyResponse",
    "PasswordResetRequest",
    "RefreshRequest",
    "SignupRequest",
    "SignupResponse",
    "TokenResponse",
]
