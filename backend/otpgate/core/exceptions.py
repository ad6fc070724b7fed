"""Exception hierarchy shared by the otpgate services."""

from enum import Enum


class OTPGateError(Exception):
    """Base error for the authentication core."""

    pass


class ValidationError(OTPGateError):
    """Malformed identifier, code or purpose. Raised before touching storage."""

    pass


class StorageError(OTPGateError):
    """Storage failed. Retryable; never a statement about the credential."""

    pass


class StoreUnavailableError(StorageError):
    """The store could not be reached (connection failure or timeout).

    This is the only error that lets a fallback store take over.
    """

    pass


class AuthFailure(str, Enum):
    """Internal reasons behind an AuthError. Only ever logged."""

    INVALID_TOKEN = "invalid token"
    REVOKED = "revoked"
    NOT_REGISTERED = "not registered"
    INVALID_CREDENTIALS = "invalid credentials"
    ACCOUNT_INACTIVE = "account inactive"


class AuthError(OTPGateError):
    """A token or credential was rejected.

    ``reason`` is for logs; callers outside the core get a generic
    "unauthorized" answer.
    """

    def __init__(self, reason: AuthFailure, detail: str | None = None):
        self.reason = reason
        self.detail = detail
        super().__init__(reason.value if detail is None else f"{reason.value}: {detail}")


class LockedError(OTPGateError):
    """The account is inside its lockout window."""

    def __init__(self, retry_after: int):
        self.retry_after = max(0, retry_after)
        super().__init__(
            f"Account is temporarily locked. Try again in {self.retry_after} seconds."
        )


class DeliveryError(OTPGateError):
    """The notifier failed to deliver an OTP."""

    pass


class OTPVerificationError(OTPGateError):
    """A one-time code was rejected (wrong, expired or already used).

    ``reason`` is one of "invalid", "expired", "already used"; the message
    tells the user which.
    """

    def __init__(self, reason: str, message: str):
        self.reason = reason
        super().__init__(message)
