"""Session token issuance, verification, revocation and rotation."""

import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt.exceptions import PyJWTError
from sqlalchemy import delete, select
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from otpgate.core.clock import Clock, utc_now
from otpgate.core.config import Settings
from otpgate.core.exceptions import AuthError, AuthFailure
from otpgate.core.logging import get_logger, token_fingerprint
from otpgate.models.token_record import TokenRecord
from otpgate.services.revocation import RevocationStore, hash_token
from otpgate.storage.base import durable_session

logger = get_logger("tokens")

ACCESS = "access"
REFRESH = "refresh"
TOKEN_TYPES = (ACCESS, REFRESH)

DEFAULT_ROLE = "student"

# Claims set by the manager; caller-supplied values for these are ignored
RESERVED_CLAIMS = frozenset({"sub", "type", "iss", "aud", "iat", "exp", "jti"})


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    # Access token lifetime in seconds
    expires_in: int = 0


def decode_unverified(token: str) -> dict[str, Any] | None:
    """Read a token's claims without checking anything. For logs and bookkeeping only."""
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except PyJWTError:
        return None


def token_expiry(token: str) -> datetime | None:
    """The token's ``exp`` as an aware datetime, or None if unreadable."""
    payload = decode_unverified(token)
    if not payload or not isinstance(payload.get("exp"), (int, float)):
        return None
    return datetime.fromtimestamp(payload["exp"], UTC)


class TokenManager:
    """Issues signed access/refresh pairs and tracks them in a registry.

    A token is honoured only if its signature and claims check out, it is
    not blacklisted, and its registry record still exists. The blacklist is
    consulted before the registry so a revoked token is always reported as
    revoked.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        revocation: RevocationStore,
        access_secret: str,
        refresh_secret: str,
        timeout: float = 5.0,
        algorithm: str = "HS256",
        issuer: str = "otpgate",
        audience: str = "otpgate-users",
        access_ttl: timedelta = timedelta(days=30),
        refresh_ttl: timedelta = timedelta(days=90),
        single_use_rotation: bool = True,
        clock: Clock = utc_now,
    ):
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh tokens need distinct secrets")
        self._session_factory = session_factory
        self.revocation = revocation
        self._secrets = {ACCESS: access_secret, REFRESH: refresh_secret}
        self._timeout = timeout
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self._ttls = {ACCESS: access_ttl, REFRESH: refresh_ttl}
        self.single_use_rotation = single_use_rotation
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        revocation: RevocationStore,
        clock: Clock = utc_now,
    ) -> "TokenManager":
        return cls(
            session_factory,
            revocation,
            access_secret=config.effective_access_secret,
            refresh_secret=config.effective_refresh_secret,
            timeout=config.store_timeout_seconds,
            algorithm=config.jwt_algorithm,
            issuer=config.jwt_issuer,
            audience=config.jwt_audience,
            access_ttl=timedelta(days=config.jwt_access_token_expire_days),
            refresh_ttl=timedelta(days=config.jwt_refresh_token_expire_days),
            single_use_rotation=config.refresh_rotation_single_use,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def _encode(
        self, subject_id: str, token_type: str, claims: dict[str, Any], now: datetime
    ) -> tuple[str, datetime]:
        expires_at = now + self._ttls[token_type]
        payload: dict[str, Any] = {
            key: value for key, value in claims.items() if key not in RESERVED_CLAIMS
        }
        payload.setdefault("role", DEFAULT_ROLE)
        payload.update(
            {
                "sub": subject_id,
                "type": token_type,
                "iss": self.issuer,
                "aud": self.audience,
                "iat": now,
                "exp": expires_at,
                # Two tokens issued in the same second must still differ
                "jti": secrets.token_hex(16),
            }
        )
        token = jwt.encode(payload, self._secrets[token_type], algorithm=self.algorithm)
        return str(token), expires_at

    def _decode(self, token: str, token_type: str, check_expiry: bool = True) -> dict[str, Any]:
        try:
            payload = jwt.decode(
                token,
                self._secrets[token_type],
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                # Time checks use the injected clock below
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["sub", "type", "iat", "exp", "jti"],
                },
            )
        except PyJWTError as e:
            raise AuthError(AuthFailure.INVALID_TOKEN, str(e)) from e

        if payload.get("type") != token_type:
            raise AuthError(AuthFailure.INVALID_TOKEN, f"not a {token_type} token")
        if check_expiry and payload["exp"] <= self._clock().timestamp():
            raise AuthError(AuthFailure.INVALID_TOKEN, "token has expired")
        return payload

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def issue_pair(self, subject_id: str, claims: dict[str, Any] | None = None) -> TokenPair:
        """Sign a new access/refresh pair and register both tokens.

        Both registry rows are written in one transaction. A StorageError
        means nothing was issued.
        """
        subject_id = str(subject_id)
        now = self._clock()
        access_token, access_expires = self._encode(subject_id, ACCESS, claims or {}, now)
        refresh_token, refresh_expires = self._encode(subject_id, REFRESH, claims or {}, now)

        async with durable_session(self._session_factory, self._timeout, "issue tokens") as session:
            session.add_all(
                [
                    TokenRecord(
                        subject_id=subject_id,
                        token_type=ACCESS,
                        token_hash=hash_token(access_token),
                        expires_at=access_expires,
                        created_at=now,
                    ),
                    TokenRecord(
                        subject_id=subject_id,
                        token_type=REFRESH,
                        token_hash=hash_token(refresh_token),
                        expires_at=refresh_expires,
                        created_at=now,
                    ),
                ]
            )
            await session.commit()

        logger.info(f"Issued token pair for subject {subject_id}")
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self._ttls[ACCESS].total_seconds()),
        )

    async def _is_registered(self, token: str) -> bool:
        async with durable_session(
            self._session_factory, self._timeout, "check token registry"
        ) as session:
            result = await session.execute(
                select(TokenRecord.id)
                .where(
                    TokenRecord.token_hash == hash_token(token),
                    TokenRecord.expires_at > self._clock(),
                )
                .limit(1)
            )
            return result.scalar_one_or_none() is not None

    async def _unregister(self, token: str) -> bool:
        async with durable_session(
            self._session_factory, self._timeout, "delete token record"
        ) as session:
            result: CursorResult[Any] = await session.execute(  # type: ignore[assignment]
                delete(TokenRecord).where(TokenRecord.token_hash == hash_token(token))
            )
            await session.commit()
            return result.rowcount == 1

    async def verify(self, token: str, expected_type: str = ACCESS) -> dict[str, Any]:
        """Return the claims of an honoured token, or raise AuthError.

        Raises StorageError when the blacklist or registry cannot be read.
        """
        if expected_type not in TOKEN_TYPES:
            raise ValueError(f"Unknown token type: {expected_type}")

        payload = self._decode(token, expected_type)
        if await self.revocation.check(token):
            logger.info(f"Rejected revoked {expected_type} token {token_fingerprint(token)}")
            raise AuthError(AuthFailure.REVOKED)
        if not await self._is_registered(token):
            logger.info(f"Rejected unregistered {expected_type} token {token_fingerprint(token)}")
            raise AuthError(AuthFailure.NOT_REGISTERED)
        return payload

    async def revoke(self, token: str) -> bool:
        """Revoke one token (logout).

        The token is blacklisted until its own expiry and its registry row is
        deleted. Returns True only for the caller whose delete removed the row.
        """
        payload = None
        for token_type in TOKEN_TYPES:
            try:
                payload = self._decode(token, token_type, check_expiry=False)
                break
            except AuthError:
                continue
        if payload is None:
            raise AuthError(AuthFailure.INVALID_TOKEN, "cannot revoke an unverifiable token")

        expires_at = datetime.fromtimestamp(payload["exp"], UTC)
        if expires_at > self._clock():
            await self.revocation.add(token, expires_at)
        deleted = await self._unregister(token)
        logger.info(
            f"Revoked {payload['type']} token {token_fingerprint(token)} "
            f"for subject {payload['sub']} (registry row deleted: {deleted})"
        )
        return deleted

    async def revoke_all(self, subject_id: str) -> int:
        """Drop every registered token of a subject (logout from all devices)."""
        async with durable_session(
            self._session_factory, self._timeout, "delete subject tokens"
        ) as session:
            result: CursorResult[Any] = await session.execute(  # type: ignore[assignment]
                delete(TokenRecord).where(TokenRecord.subject_id == str(subject_id))
            )
            await session.commit()

        logger.info(f"Removed {result.rowcount} tokens for subject {subject_id}")
        return result.rowcount

    async def rotate(self, refresh_token: str, claims: dict[str, Any] | None = None) -> TokenPair:
        """Exchange a refresh token for a new pair.

        The new pair carries the old token's claims unless ``claims`` is
        given. With single-use rotation the old record is deleted first and
        only the caller whose delete succeeds gets a new pair.
        """
        payload = await self.verify(refresh_token, REFRESH)
        subject_id = payload["sub"]
        if claims is None:
            claims = {k: v for k, v in payload.items() if k not in RESERVED_CLAIMS}

        if self.single_use_rotation:
            if not await self._unregister(refresh_token):
                logger.warning(
                    f"Refresh token {token_fingerprint(refresh_token)} was already rotated"
                )
                raise AuthError(AuthFailure.NOT_REGISTERED, "refresh token already used")
            return await self.issue_pair(subject_id, claims)

        pair = await self.issue_pair(subject_id, claims)
        await self._unregister(refresh_token)
        return pair

    async def purge_expired(self) -> int:
        """Delete registry rows for tokens past their expiry."""
        async with durable_session(
            self._session_factory, self._timeout, "purge token records"
        ) as session:
            result: CursorResult[Any] = await session.execute(  # type: ignore[assignment]
                delete(TokenRecord).where(TokenRecord.expires_at <= self._clock())
            )
            await session.commit()
            return result.rowcount
