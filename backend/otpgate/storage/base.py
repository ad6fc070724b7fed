"""Storage adapter interface for one-time passcodes, plus shared store helpers."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from otpgate.core.exceptions import StorageError, StoreUnavailableError


class ConsumeOutcome(str, Enum):
    """Result of an attempt to consume a code."""

    CONSUMED = "consumed"
    ALREADY_USED = "already used"
    EXPIRED = "expired"
    NOT_FOUND = "not found"


@dataclass(frozen=True)
class OTPEntry:
    """Backend-neutral view of a stored one-time passcode."""

    id: str
    identifier: str
    code: str
    purpose: str
    expires_at: datetime
    created_at: datetime
    consumed: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["expires_at"] = self.expires_at.isoformat()
        data["created_at"] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OTPEntry":
        return cls(
            id=str(data["id"]),
            identifier=data["identifier"],
            code=data["code"],
            purpose=data["purpose"],
            expires_at=datetime.fromisoformat(data["expires_at"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            consumed=bool(data.get("consumed", False)),
        )


def classify_latest(
    consumed: bool | None, expires_at: datetime | None, now: datetime
) -> ConsumeOutcome:
    """Explain why the most recent matching code could not be consumed."""
    if consumed is None or expires_at is None:
        return ConsumeOutcome.NOT_FOUND
    if consumed:
        return ConsumeOutcome.ALREADY_USED
    if expires_at <= now:
        return ConsumeOutcome.EXPIRED
    # Unconsumed and live, yet not consumable: lost a race for it
    return ConsumeOutcome.ALREADY_USED


class OTPStorage(Protocol):
    """Where one-time passcodes live.

    Implementations raise StoreUnavailableError when they cannot be reached
    and StorageError for any other storage failure.
    """

    name: str

    async def insert(self, entry: OTPEntry) -> None: ...

    async def code_in_use(self, code: str, now: datetime) -> bool: ...

    async def consume(
        self, identifier: str, code: str, purpose: str, now: datetime
    ) -> ConsumeOutcome: ...

    async def purge(self, now: datetime, consumed_before: datetime) -> int: ...


_UNAVAILABLE_MARKERS = (
    "connection refused",
    "could not connect",
    "connection is closed",
    "server closed the connection",
    "unable to open database",
)

_MISSING_TABLE_MARKERS = (
    "no such table",
    "does not exist",
    "doesn't exist",
    "undefinedtable",
)


def _iter_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def is_missing_table_error(exc: BaseException) -> bool:
    """True when the failure is a table that does not exist (yet)."""
    for err in _iter_chain(exc):
        message = f"{type(err).__name__} {err}".lower()
        if any(marker in message for marker in _MISSING_TABLE_MARKERS):
            return True
    return False


def _is_unavailable(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _UNAVAILABLE_MARKERS)


@asynccontextmanager
async def durable_session(
    session_factory: async_sessionmaker[AsyncSession],
    timeout: float,
    operation: str,
) -> AsyncIterator[AsyncSession]:
    """Open a short-lived session bounded by ``timeout`` seconds.

    Connection failures and timeouts become StoreUnavailableError; other
    database errors become StorageError. Exceptions raised by the caller's
    own logic pass through untouched.
    """
    try:
        async with asyncio.timeout(timeout):
            async with session_factory() as session:
                yield session
    except TimeoutError as e:
        raise StoreUnavailableError(f"{operation} timed out after {timeout}s") from e
    except SQLAlchemyError as e:
        if _is_unavailable(e):
            raise StoreUnavailableError(f"{operation} failed: database unavailable") from e
        raise StorageError(f"{operation} failed: {e}") from e
    except (OSError, ConnectionError) as e:
        # Raw driver connect failures (asyncpg) surface as OSError
        raise StoreUnavailableError(f"{operation} failed: {e}") from e
