"""One-time passcode service: generation, storage, verification and delivery."""

import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from otpgate.core.clock import Clock, utc_now
from otpgate.core.exceptions import DeliveryError, StorageError, ValidationError
from otpgate.core.logging import get_logger
from otpgate.services.notifier import Notifier
from otpgate.storage.base import ConsumeOutcome, OTPEntry, OTPStorage

logger = get_logger("otp")

# How long a code stays valid
DEFAULT_TTL = timedelta(minutes=10)

# Retries when a freshly generated code collides with a live one
MAX_GENERATION_ATTEMPTS = 10

# Consumed codes are kept this long before the sweeper removes them
CONSUMED_RETENTION = timedelta(hours=24)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_IDENTIFIER_LENGTH = 255


class OTPPurpose(str, Enum):
    SIGNUP = "signup"
    LOGIN = "login"
    PASSWORD_RESET = "password-reset"


# Older clients send these names for the reset flow
_PURPOSE_ALIASES = {
    "reset": OTPPurpose.PASSWORD_RESET,
    "forgot-password": OTPPurpose.PASSWORD_RESET,
    "password_reset": OTPPurpose.PASSWORD_RESET,
}


class VerifyReason(str, Enum):
    VERIFIED = "verified"
    ALREADY_USED = "already used"
    EXPIRED = "expired"
    INVALID = "invalid"


MESSAGES = {
    VerifyReason.VERIFIED: "OTP verified successfully",
    VerifyReason.ALREADY_USED: "OTP has already been used. Please request a new one.",
    VerifyReason.EXPIRED: "OTP has expired. Please request a new one.",
    VerifyReason.INVALID: "Invalid OTP. Please check and try again.",
}

_OUTCOME_REASONS = {
    ConsumeOutcome.CONSUMED: VerifyReason.VERIFIED,
    ConsumeOutcome.ALREADY_USED: VerifyReason.ALREADY_USED,
    ConsumeOutcome.EXPIRED: VerifyReason.EXPIRED,
    ConsumeOutcome.NOT_FOUND: VerifyReason.INVALID,
}


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    reason: VerifyReason

    @property
    def message(self) -> str:
        return MESSAGES[self.reason]


@dataclass(frozen=True)
class StoreResult:
    success: bool
    message: str
    expires_at: datetime


@dataclass(frozen=True)
class RequestResult:
    identifier: str
    purpose: OTPPurpose
    expires_at: datetime
    message: str


def normalize_identifier(identifier: str) -> str:
    """Trim the identifier and lower-case email addresses."""
    if not isinstance(identifier, str):
        raise ValidationError("Identifier must be a string")
    value = identifier.strip()
    if not value:
        raise ValidationError("Identifier is required")
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise ValidationError("Identifier is too long")
    if "@" in value:
        if not EMAIL_RE.match(value):
            raise ValidationError("Invalid email address")
        value = value.lower()
    return value


def parse_purpose(purpose: str | OTPPurpose) -> OTPPurpose:
    if isinstance(purpose, OTPPurpose):
        return purpose
    value = str(purpose).strip().lower()
    if value in _PURPOSE_ALIASES:
        return _PURPOSE_ALIASES[value]
    try:
        return OTPPurpose(value)
    except ValueError as e:
        raise ValidationError(f"Unknown OTP purpose: {purpose}") from e


class OTPManager:
    """Issues and verifies one-time passcodes.

    Storage is whatever OTPStorage it is given; in production that is the
    database with a JSON-file fallback composed by FallbackOTPStorage.
    """

    def __init__(
        self,
        storage: OTPStorage,
        notifier: Notifier | None = None,
        clock: Clock = utc_now,
        code_length: int = 6,
        ttl: timedelta = DEFAULT_TTL,
        max_generation_attempts: int = MAX_GENERATION_ATTEMPTS,
        consumed_retention: timedelta = CONSUMED_RETENTION,
    ):
        self.storage = storage
        self.notifier = notifier
        self._clock = clock
        self.code_length = code_length
        self.ttl = ttl
        self.max_generation_attempts = max_generation_attempts
        self.consumed_retention = consumed_retention
        # ASCII digits only; \d would also accept other scripts
        self._code_re = re.compile(rf"^[0-9]{{{code_length}}}$")

    def _random_code(self) -> str:
        low = 10 ** (self.code_length - 1)
        return str(low + secrets.randbelow(9 * low))

    def _validate_code(self, code: str) -> str:
        value = code.strip() if isinstance(code, str) else ""
        if not self._code_re.match(value):
            raise ValidationError(f"OTP must be {self.code_length} digits")
        return value

    async def generate(self) -> str:
        """Generate a code that no live, unconsumed OTP currently uses.

        Uniqueness is best effort: if the store cannot be checked, the code
        is returned unchecked.
        """
        code = self._random_code()
        for _ in range(self.max_generation_attempts):
            try:
                if not await self.storage.code_in_use(code, self._clock()):
                    return code
            except StorageError as e:
                logger.warning(f"Could not check OTP uniqueness: {e}")
                return code
            code = self._random_code()

        logger.warning("Generated OTP after max attempts, uniqueness not guaranteed")
        return code

    async def store(self, identifier: str, code: str, purpose: str | OTPPurpose) -> StoreResult:
        """Persist a code for (identifier, purpose). Earlier codes stay valid."""
        identifier = normalize_identifier(identifier)
        code = self._validate_code(code)
        otp_purpose = parse_purpose(purpose)

        now = self._clock()
        entry = OTPEntry(
            id=str(uuid.uuid4()),
            identifier=identifier,
            code=code,
            purpose=otp_purpose.value,
            expires_at=now + self.ttl,
            created_at=now,
        )
        await self.storage.insert(entry)
        logger.info(
            f"OTP stored for {identifier}, purpose: {otp_purpose.value}, "
            f"expires in {int(self.ttl.total_seconds() // 60)} minutes"
        )
        return StoreResult(True, "OTP stored successfully", entry.expires_at)

    async def verify(
        self, identifier: str, code: str, purpose: str | OTPPurpose
    ) -> VerificationResult:
        """Consume a code. Succeeds at most once per stored code.

        Raises StorageError when the stores cannot answer; that is never
        reported as an invalid code.
        """
        identifier = normalize_identifier(identifier)
        code = self._validate_code(code)
        otp_purpose = parse_purpose(purpose)

        outcome = await self.storage.consume(identifier, code, otp_purpose.value, self._clock())
        reason = _OUTCOME_REASONS[outcome]
        if reason is VerifyReason.VERIFIED:
            logger.info(f"OTP verified for {identifier} ({otp_purpose.value})")
        else:
            logger.info(f"OTP rejected for {identifier} ({otp_purpose.value}): {reason.value}")
        return VerificationResult(valid=reason is VerifyReason.VERIFIED, reason=reason)

    async def request(self, identifier: str, purpose: str | OTPPurpose) -> RequestResult:
        """Generate, store and deliver a code.

        The code is stored before delivery; a delivery failure still fails
        the request even though the stored code would verify.
        """
        if self.notifier is None:
            raise DeliveryError("No notifier configured")

        identifier = normalize_identifier(identifier)
        otp_purpose = parse_purpose(purpose)
        code = await self.generate()
        stored = await self.store(identifier, code, otp_purpose)

        result = await self.notifier.send(identifier, code, otp_purpose.value)
        if not result.success:
            logger.error(f"OTP delivery to {identifier} failed: {result.message}")
            raise DeliveryError(result.message)

        return RequestResult(
            identifier=identifier,
            purpose=otp_purpose,
            expires_at=stored.expires_at,
            message="OTP sent successfully",
        )

    async def purge_expired(self) -> int:
        """Remove expired codes and consumed codes past the retention window."""
        now = self._clock()
        return await self.storage.purge(now, now - self.consumed_retention)
