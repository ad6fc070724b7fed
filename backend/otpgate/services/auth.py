"""Account flows built on the OTP, token and lockout services."""

import uuid
from typing import Any

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from otpgate.core.clock import Clock, utc_now
from otpgate.core.exceptions import (
    AuthError,
    AuthFailure,
    LockedError,
    OTPVerificationError,
    ValidationError,
)
from otpgate.core.logging import get_logger, token_fingerprint
from otpgate.models.account import Account
from otpgate.services.lockout import LockoutPolicy
from otpgate.services.otp import (
    OTPManager,
    OTPPurpose,
    RequestResult,
    VerificationResult,
    normalize_identifier,
    parse_purpose,
)
from otpgate.services.tokens import TokenManager, TokenPair, decode_unverified
from otpgate.storage.base import durable_session

logger = get_logger("auth")

# Argon2 password hasher with recommended parameters
# Memory: 64 MiB, Time: 3 iterations, Parallelism: 4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)

# Verified against when the account does not exist, so timing does not
# reveal which emails are registered
_DUMMY_HASH = ph.hash("otpgate-dummy-password")


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash using constant-time comparison."""
    try:
        ph.verify(password_hash, password)
        return True
    except (VerifyMismatchError, InvalidHashError):
        return False


def token_claims(account: Account) -> dict[str, Any]:
    """Claims carried by every token issued to an account."""
    return {
        "role": account.role,
        "email": account.email,
        "is_verified": account.is_verified,
    }


class AuthService:
    """Signup, login, password reset, refresh and logout."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        otp: OTPManager,
        tokens: TokenManager,
        lockout: LockoutPolicy,
        timeout: float = 5.0,
        clock: Clock = utc_now,
    ):
        self._session_factory = session_factory
        self.otp = otp
        self.tokens = tokens
        self.lockout = lockout
        self._timeout = timeout
        self._clock = clock

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def get_account(self, account_id: uuid.UUID | str) -> Account | None:
        try:
            key = account_id if isinstance(account_id, uuid.UUID) else uuid.UUID(str(account_id))
        except ValueError:
            return None
        async with durable_session(self._session_factory, self._timeout, "load account") as session:
            result = await session.execute(select(Account).where(Account.id == key))
            return result.scalar_one_or_none()

    async def get_account_by_email(self, email: str) -> Account | None:
        email = normalize_identifier(email)
        async with durable_session(self._session_factory, self._timeout, "load account") as session:
            result = await session.execute(select(Account).where(Account.email == email))
            return result.scalar_one_or_none()

    async def _create_account(
        self, email: str, name: str | None, password: str | None
    ) -> Account:
        account = Account(
            email=email,
            name=name,
            password_hash=hash_password(password) if password else None,
            is_verified=True,
        )
        async with durable_session(
            self._session_factory, self._timeout, "create account"
        ) as session:
            session.add(account)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ValidationError("An account with this email already exists") from e
            await session.refresh(account)
        logger.info(f"Created account: {email}")
        return account

    def _reject_otp(self, result: VerificationResult) -> None:
        if not result.valid:
            raise OTPVerificationError(result.reason.value, result.message)

    # ------------------------------------------------------------------
    # OTP flows
    # ------------------------------------------------------------------

    async def request_otp(self, email: str, purpose: str | OTPPurpose) -> RequestResult:
        """Send a code for signup, login or password reset.

        Signup requires that no account exists yet. For login and reset an
        unknown email gets the same answer as a known one but nothing is
        sent.
        """
        email = normalize_identifier(email)
        request_purpose = parse_purpose(purpose)

        account = await self.get_account_by_email(email)
        if request_purpose is OTPPurpose.SIGNUP:
            if account is not None:
                raise ValidationError("An account with this email already exists")
        elif account is None or not account.is_active:
            logger.info(f"OTP requested for unknown or inactive account: {email}")
            return RequestResult(
                identifier=email,
                purpose=request_purpose,
                expires_at=self._clock() + self.otp.ttl,
                message="OTP sent successfully",
            )

        return await self.otp.request(email, request_purpose)

    async def verify_otp(
        self, email: str, code: str, purpose: str | OTPPurpose
    ) -> VerificationResult:
        return await self.otp.verify(email, code, purpose)

    async def complete_signup(
        self,
        email: str,
        code: str,
        name: str | None = None,
        password: str | None = None,
    ) -> tuple[Account, TokenPair]:
        """Consume a signup code, create the account and sign it in."""
        email = normalize_identifier(email)
        if await self.get_account_by_email(email) is not None:
            raise ValidationError("An account with this email already exists")

        self._reject_otp(await self.otp.verify(email, code, OTPPurpose.SIGNUP))
        account = await self._create_account(email, name, password)
        pair = await self.tokens.issue_pair(str(account.id), token_claims(account))
        await self.lockout.record_success(account.id)
        return account, pair

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def _active_account(self, email: str) -> Account:
        account = await self.get_account_by_email(email)
        if account is None:
            raise AuthError(AuthFailure.INVALID_CREDENTIALS, "unknown account")
        if not account.is_active:
            raise AuthError(AuthFailure.ACCOUNT_INACTIVE)
        return account

    async def _count_failure(self, account: Account) -> None:
        state = await self.lockout.record_failure(account.id)
        now = self._clock()
        if state.is_locked(now):
            raise LockedError(state.retry_after(now))

    async def authenticate(self, email: str, password: str) -> tuple[Account, TokenPair]:
        """Password login. Wrong passwords count toward the lockout."""
        email = normalize_identifier(email)
        account = await self.get_account_by_email(email)
        if account is None:
            verify_password(password, _DUMMY_HASH)
            raise AuthError(AuthFailure.INVALID_CREDENTIALS, "unknown account")
        if not account.is_active:
            raise AuthError(AuthFailure.ACCOUNT_INACTIVE)

        await self.lockout.ensure_unlocked(account.id)

        if not account.password_hash or not verify_password(password, account.password_hash):
            await self._count_failure(account)
            raise AuthError(AuthFailure.INVALID_CREDENTIALS, "wrong password")

        await self.lockout.record_success(account.id)
        pair = await self.tokens.issue_pair(str(account.id), token_claims(account))
        logger.info(f"Account logged in with password: {email}")
        return account, pair

    async def login_with_otp(self, email: str, code: str) -> tuple[Account, TokenPair]:
        """OTP login. Rejected codes count toward the lockout.

        A storage failure while verifying is not a wrong code and is not
        counted.
        """
        email = normalize_identifier(email)
        account = await self._active_account(email)
        await self.lockout.ensure_unlocked(account.id)

        result = await self.otp.verify(email, code, OTPPurpose.LOGIN)
        if not result.valid:
            await self._count_failure(account)
            self._reject_otp(result)

        await self.lockout.record_success(account.id)
        pair = await self.tokens.issue_pair(str(account.id), token_claims(account))
        logger.info(f"Account logged in with OTP: {email}")
        return account, pair

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def reset_password(self, email: str, code: str, new_password: str) -> int:
        """Set a new password and sign the account out everywhere.

        Returns the number of token records removed.
        """
        email = normalize_identifier(email)
        account = await self._active_account(email)
        self._reject_otp(await self.otp.verify(email, code, OTPPurpose.PASSWORD_RESET))

        async with durable_session(
            self._session_factory, self._timeout, "update password"
        ) as session:
            await session.execute(
                update(Account)
                .where(Account.id == account.id)
                .values(
                    password_hash=hash_password(new_password),
                    failed_attempts=0,
                    locked_until=None,
                    updated_at=self._clock(),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        removed = await self.tokens.revoke_all(str(account.id))
        logger.info(f"Password reset for {email}; {removed} tokens invalidated")
        return removed

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def current_account(self, access_token: str) -> tuple[Account, dict[str, Any]]:
        """Resolve a bearer access token to its account."""
        payload = await self.tokens.verify(access_token, "access")
        account = await self.get_account(payload["sub"])
        if account is None or not account.is_active:
            raise AuthError(AuthFailure.ACCOUNT_INACTIVE)
        return account, payload

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate a refresh token. Inactive or locked accounts cannot refresh."""
        payload = await self.tokens.verify(refresh_token, "refresh")
        account = await self.get_account(payload["sub"])
        if account is None or not account.is_active:
            raise AuthError(AuthFailure.ACCOUNT_INACTIVE)
        await self.lockout.ensure_unlocked(account.id)
        return await self.tokens.rotate(refresh_token, token_claims(account))

    async def logout(self, access_token: str, refresh_token: str | None = None) -> None:
        """Revoke the access token and, if it belongs to the same subject, the refresh token."""
        await self.tokens.revoke(access_token)
        if not refresh_token:
            return

        # revoke() checks signatures; the subjects only need comparing here
        owner = (decode_unverified(access_token) or {}).get("sub")
        refresh_owner = (decode_unverified(refresh_token) or {}).get("sub")
        if refresh_owner != owner:
            logger.warning(
                f"Ignoring refresh token of another subject on logout by {owner}: "
                f"{token_fingerprint(refresh_token)}"
            )
            return
        try:
            await self.tokens.revoke(refresh_token)
        except AuthError as e:
            logger.info(f"Ignoring unusable refresh token on logout: {e}")

    async def logout_all(self, subject_id: str) -> int:
        return await self.tokens.revoke_all(subject_id)
