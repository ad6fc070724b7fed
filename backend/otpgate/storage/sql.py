"""Relational storage for one-time passcodes."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from otpgate.models.otp_record import OTPRecord
from otpgate.storage.base import ConsumeOutcome, OTPEntry, classify_latest, durable_session

# Candidates tried before giving up on a code other workers keep winning
MAX_CONSUME_ATTEMPTS = 3


class SqlOTPStorage:
    """OTP storage on the durable relational store."""

    name = "database"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], timeout: float):
        self._session_factory = session_factory
        self._timeout = timeout

    async def insert(self, entry: OTPEntry) -> None:
        async with durable_session(self._session_factory, self._timeout, "store OTP") as session:
            session.add(
                OTPRecord(
                    id=uuid.UUID(entry.id),
                    identifier=entry.identifier,
                    code=entry.code,
                    purpose=entry.purpose,
                    expires_at=entry.expires_at,
                    consumed=entry.consumed,
                    created_at=entry.created_at,
                )
            )
            await session.commit()

    async def code_in_use(self, code: str, now: datetime) -> bool:
        async with durable_session(
            self._session_factory, self._timeout, "check OTP uniqueness"
        ) as session:
            result = await session.execute(
                select(OTPRecord.id)
                .where(
                    OTPRecord.code == code,
                    OTPRecord.expires_at > now,
                    OTPRecord.consumed.is_(False),
                )
                .limit(1)
            )
            return result.scalar_one_or_none() is not None

    async def consume(
        self, identifier: str, code: str, purpose: str, now: datetime
    ) -> ConsumeOutcome:
        """Consume the most recent live matching code.

        The consumed flag is flipped by a conditional update; only the
        caller whose update touches a row wins.
        """
        matches = (
            OTPRecord.identifier == identifier,
            OTPRecord.code == code,
            OTPRecord.purpose == purpose,
        )
        async with durable_session(self._session_factory, self._timeout, "verify OTP") as session:
            for _ in range(MAX_CONSUME_ATTEMPTS):
                candidate = (
                    await session.execute(
                        select(OTPRecord.id)
                        .where(*matches, OTPRecord.consumed.is_(False), OTPRecord.expires_at > now)
                        .order_by(OTPRecord.created_at.desc())
                        .limit(1)
                    )
                ).scalar_one_or_none()
                if candidate is None:
                    break

                result: CursorResult[Any] = await session.execute(  # type: ignore[assignment]
                    update(OTPRecord)
                    .where(
                        OTPRecord.id == candidate,
                        OTPRecord.consumed.is_(False),
                        OTPRecord.expires_at > now,
                    )
                    .values(consumed=True)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    await session.commit()
                    return ConsumeOutcome.CONSUMED
                await session.rollback()

            latest = (
                await session.execute(
                    select(OTPRecord.consumed, OTPRecord.expires_at)
                    .where(*matches)
                    .order_by(OTPRecord.created_at.desc())
                    .limit(1)
                )
            ).first()
            await session.rollback()

        if latest is None:
            return ConsumeOutcome.NOT_FOUND
        return classify_latest(latest.consumed, latest.expires_at, now)

    async def purge(self, now: datetime, consumed_before: datetime) -> int:
        """Delete expired codes and consumed codes created before ``consumed_before``."""
        async with durable_session(self._session_factory, self._timeout, "purge OTPs") as session:
            result: CursorResult[Any] = await session.execute(  # type: ignore[assignment]
                delete(OTPRecord).where(
                    or_(
                        OTPRecord.expires_at < now,
                        and_(OTPRecord.consumed.is_(True), OTPRecord.created_at < consumed_before),
                    )
                )
            )
            await session.commit()
            return result.rowcount
