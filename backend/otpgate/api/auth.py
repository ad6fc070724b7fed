"""Authentication API endpoints."""

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse

from otpgate.api.deps import get_auth_service, get_bearer_token
from otpgate.core.exceptions import (
    AuthError,
    AuthFailure,
    DeliveryError,
    LockedError,
    OTPVerificationError,
    StorageError,
    ValidationError,
)
from otpgate.core.logging import get_logger
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
from otpgate.services.auth import AuthService
from otpgate.services.tokens import TokenPair

logger = get_logger("api.auth")

SESSION_EXPIRED_MESSAGE = "Please log in again."
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_response(pair: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=pair.expires_in,
    )


# --- Error translation ---


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    # The specific reason is only logged; clients get a generic answer
    logger.info(f"Auth rejected on {request.url.path}: {exc}")
    if exc.reason is AuthFailure.INVALID_CREDENTIALS:
        detail = INVALID_CREDENTIALS_MESSAGE
    else:
        detail = SESSION_EXPIRED_MESSAGE
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": detail},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def locked_error_handler(request: Request, exc: LockedError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_423_LOCKED,
        content={"detail": str(exc), "retry_after": exc.retry_after},
        headers={"Retry-After": str(exc.retry_after)},
    )


async def otp_error_handler(request: Request, exc: OTPVerificationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc), "reason": exc.reason},
    )


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc)},
    )


async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.warning(f"Storage failure on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Service temporarily unavailable. Please try again."},
    )


async def delivery_error_handler(request: Request, exc: DeliveryError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": "Failed to send OTP. Please try again."},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map otpgate errors to HTTP responses."""
    app.add_exception_handler(AuthError, auth_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(LockedError, locked_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(OTPVerificationError, otp_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ValidationError, validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StorageError, storage_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DeliveryError, delivery_error_handler)  # type: ignore[arg-type]


# --- One-time codes ---


@router.post("/otp/send", response_model=OTPSendResponse)
async def send_otp(
    request: OTPSendRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> OTPSendResponse:
    """Send a one-time code for signup, login or password reset."""
    result = await auth_service.request_otp(request.email, request.purpose)
    return OTPSendResponse(message=result.message, expires_at=result.expires_at)


@router.post("/otp/verify", response_model=OTPVerifyResponse)
async def verify_otp(
    request: OTPVerifyRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> OTPVerifyResponse:
    """Verify (and consume) a one-time code.

    Returns 400 with a message telling wrong, expired and used codes apart.
    """
    result = await auth_service.verify_otp(request.email, request.code, request.purpose)
    if not result.valid:
        raise OTPVerificationError(result.reason.value, result.message)
    return OTPVerifyResponse(valid=True, reason=result.reason.value, message=result.message)


# --- Accounts and sessions ---


@router.post("/signup", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    request: SignupRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> SignupResponse:
    """Complete signup with a signup code and receive a token pair."""
    account, pair = await auth_service.complete_signup(
        email=request.email,
        code=request.code,
        name=request.name,
        password=request.password,
    )
    return SignupResponse(
        **_token_response(pair).model_dump(),
        account=AccountResponse.model_validate(account),
    )


@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """Password login. Repeated failures lock the account (423)."""
    _, pair = await auth_service.authenticate(request.email, request.password)
    return _token_response(pair)


@router.post("/login/otp", response_model=TokenResponse)
async def login_with_otp(
    request: OTPLoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """One-time code login. Rejected codes count toward the lockout."""
    _, pair = await auth_service.login_with_otp(request.email, request.code)
    return _token_response(pair)


@router.post("/password/reset", response_model=MessageResponse)
async def reset_password(
    request: PasswordResetRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Reset the password with a reset code. Signs out every session."""
    await auth_service.reset_password(request.email, request.code, request.new_password)
    return MessageResponse(message="Password reset successfully. Please log in again.")


@router.post("/refresh", response_model=TokenResponse)
async def refresh_tokens(
    request: RefreshRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """Exchange a refresh token for a new pair (token rotation)."""
    pair = await auth_service.refresh(request.refresh_token)
    return _token_response(pair)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: LogoutRequest | None = None,
    token: str = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Revoke the current access token and, if given, the refresh token."""
    account, _ = await auth_service.current_account(token)
    await auth_service.logout(token, request.refresh_token if request else None)
    logger.info(f"Account logged out: {account.email}")
    return MessageResponse(message="Logged out successfully")


@router.post("/logout-all", response_model=LogoutAllResponse)
async def logout_all(
    token: str = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
) -> LogoutAllResponse:
    """Sign the current account out of every device."""
    account, _ = await auth_service.current_account(token)
    revoked = await auth_service.logout_all(str(account.id))
    return LogoutAllResponse(message="Logged out from all devices", revoked=revoked)


@router.get("/me", response_model=AccountResponse)
async def get_current_account(
    token: str = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
) -> AccountResponse:
    """Get the current account's information."""
    account, _ = await auth_service.current_account(token)
    return AccountResponse.model_validate(account)
