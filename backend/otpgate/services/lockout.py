"""Failed-attempt counting and temporary account locks."""

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from otpgate.core.clock import Clock, utc_now
from otpgate.core.exceptions import LockedError
from otpgate.core.logging import get_logger
from otpgate.models.account import Account
from otpgate.storage.base import durable_session

logger = get_logger("lockout")


@dataclass(frozen=True)
class LockoutState:
    failed_attempts: int
    locked_until: datetime | None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def retry_after(self, now: datetime) -> int:
        if self.locked_until is None or self.locked_until <= now:
            return 0
        return math.ceil((self.locked_until - now).total_seconds())


def _account_key(account_id: uuid.UUID | str) -> uuid.UUID:
    return account_id if isinstance(account_id, uuid.UUID) else uuid.UUID(str(account_id))


class LockoutPolicy:
    """Locks an account for a while after too many consecutive failures.

    Wrong passwords and wrong one-time codes count toward the same counter.
    Every change is a single conditional UPDATE so concurrent failures are
    all counted, and a lock, once set, is not extended by later failures.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout: float = 5.0,
        clock: Clock = utc_now,
        threshold: int = 5,
        lock_minutes: int = 30,
    ):
        self._session_factory = session_factory
        self._timeout = timeout
        self._clock = clock
        self.threshold = threshold
        self.lock_duration = timedelta(minutes=lock_minutes)

    async def _read_state(self, session: AsyncSession, account_key: uuid.UUID) -> LockoutState:
        row = (
            await session.execute(
                select(Account.failed_attempts, Account.locked_until).where(
                    Account.id == account_key
                )
            )
        ).first()
        if row is None:
            raise LookupError(f"Account {account_key} not found")
        return LockoutState(failed_attempts=row.failed_attempts, locked_until=row.locked_until)

    async def record_failure(self, account_id: uuid.UUID | str) -> LockoutState:
        """Count one failed attempt and lock the account at the threshold."""
        account_key = _account_key(account_id)
        now = self._clock()

        async with durable_session(
            self._session_factory, self._timeout, "record failed attempt"
        ) as session:
            # A lock that has run out starts a fresh count
            reset: CursorResult[Any] = await session.execute(  # type: ignore[assignment]
                update(Account)
                .where(
                    Account.id == account_key,
                    Account.locked_until.is_not(None),
                    Account.locked_until <= now,
                )
                .values(failed_attempts=1, locked_until=None, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if reset.rowcount == 0:
                await session.execute(
                    update(Account)
                    .where(Account.id == account_key)
                    .values(failed_attempts=Account.failed_attempts + 1, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                await session.execute(
                    update(Account)
                    .where(
                        and_(
                            Account.id == account_key,
                            Account.locked_until.is_(None),
                            Account.failed_attempts >= self.threshold,
                        )
                    )
                    .values(locked_until=now + self.lock_duration)
                    .execution_options(synchronize_session=False)
                )
            state = await self._read_state(session, account_key)
            await session.commit()

        if state.is_locked(now):
            logger.warning(
                f"Account {account_key} locked until {state.locked_until} "
                f"after {state.failed_attempts} failed attempts"
            )
        else:
            logger.info(f"Failed attempt {state.failed_attempts} for account {account_key}")
        return state

    async def record_success(self, account_id: uuid.UUID | str) -> None:
        """Clear the counter and any lock, and stamp the login time."""
        account_key = _account_key(account_id)
        now = self._clock()
        async with durable_session(
            self._session_factory, self._timeout, "record successful login"
        ) as session:
            await session.execute(
                update(Account)
                .where(Account.id == account_key)
                .values(failed_attempts=0, locked_until=None, last_login_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def get_state(self, account_id: uuid.UUID | str) -> LockoutState:
        async with durable_session(
            self._session_factory, self._timeout, "read lockout state"
        ) as session:
            return await self._read_state(session, _account_key(account_id))

    async def is_locked(self, account_id: uuid.UUID | str) -> bool:
        """An elapsed lock reads as unlocked; nothing is written here."""
        state = await self.get_state(account_id)
        return state.is_locked(self._clock())

    async def ensure_unlocked(self, account_id: uuid.UUID | str) -> None:
        """Raise LockedError with the remaining wait if the account is locked."""
        state = await self.get_state(account_id)
        now = self._clock()
        if state.is_locked(now):
            raise LockedError(state.retry_after(now))
