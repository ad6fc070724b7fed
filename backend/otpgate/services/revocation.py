"""Two-tier token blacklist: a bounded in-process cache over a durable table.

The durable table is authoritative. The cache only saves a round trip for
tokens this process already knows are revoked, so a fresh process with an
empty cache still rejects every durably revoked token.
"""

import hashlib
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from otpgate.core.clock import Clock, utc_now
from otpgate.core.logging import get_logger, token_fingerprint
from otpgate.models.token_blacklist import TokenBlacklist
from otpgate.storage.base import durable_session

logger = get_logger("revocation")

DEFAULT_CACHE_MAX_ENTRIES = 10000


def hash_token(token: str) -> str:
    """SHA-256 hex digest used to reference a token in storage."""
    return hashlib.sha256(token.encode()).hexdigest()


class RevocationCache:
    """Bounded map of token hash to expiry, oldest insertion first.

    Safe to share between threads. Expired entries are dropped lazily on
    lookup and in bulk by ``prune``.
    """

    def __init__(self, max_entries: int = DEFAULT_CACHE_MAX_ENTRIES, clock: Clock = utc_now):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, datetime] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def contains(self, token_hash: str) -> bool:
        with self._lock:
            expires_at = self._entries.get(token_hash)
            if expires_at is None:
                return False
            if expires_at <= self._clock():
                del self._entries[token_hash]
                return False
            return True

    def add(self, token_hash: str, expires_at: datetime) -> None:
        now = self._clock()
        if expires_at <= now:
            return
        with self._lock:
            if token_hash in self._entries:
                self._entries[token_hash] = expires_at
                return
            if len(self._entries) >= self.max_entries:
                self._prune_locked(now)
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
            self._entries[token_hash] = expires_at

    def remove(self, token_hash: str) -> bool:
        with self._lock:
            return self._entries.pop(token_hash, None) is not None

    def prune(self) -> int:
        """Drop expired entries and return how many were dropped."""
        with self._lock:
            return self._prune_locked(self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _prune_locked(self, now: datetime) -> int:
        expired = [key for key, expires_at in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)


@dataclass(frozen=True)
class RevocationStats:
    cache_entries: int
    cache_max_entries: int
    durable_entries: int


class RevocationStore:
    """Records revoked tokens until their natural expiry."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout: float,
        cache: RevocationCache | None = None,
        clock: Clock = utc_now,
    ):
        self._session_factory = session_factory
        self._timeout = timeout
        self._clock = clock
        self.cache = cache if cache is not None else RevocationCache(clock=clock)

    async def check(self, token: str) -> bool:
        """True if the token is revoked.

        Raises StorageError when the durable table cannot be read; an
        unreadable blacklist never means "not revoked".
        """
        token_hash = hash_token(token)
        if self.cache.contains(token_hash):
            return True

        now = self._clock()
        async with durable_session(
            self._session_factory, self._timeout, "check blacklist"
        ) as session:
            result = await session.execute(
                select(TokenBlacklist.expires_at).where(
                    TokenBlacklist.token_hash == token_hash,
                    TokenBlacklist.expires_at > now,
                )
            )
            expires_at = result.scalar_one_or_none()

        if expires_at is None:
            return False
        self.cache.add(token_hash, expires_at)
        return True

    async def add(self, token: str, expires_at: datetime) -> None:
        """Revoke a token until ``expires_at`` (normally the token's own exp)."""
        token_hash = hash_token(token)
        self.cache.add(token_hash, expires_at)

        async with durable_session(
            self._session_factory, self._timeout, "blacklist token"
        ) as session:
            session.add(TokenBlacklist(token_hash=token_hash, expires_at=expires_at))
            try:
                await session.commit()
            except IntegrityError:
                # Already blacklisted by a concurrent logout
                await session.rollback()
                logger.debug(f"Token {token_fingerprint(token)} was already blacklisted")
                return

        logger.info(f"Token {token_fingerprint(token)} blacklisted until {expires_at.isoformat()}")

    async def remove(self, token: str) -> bool:
        """Un-revoke a token. Returns whether a durable entry was removed."""
        token_hash = hash_token(token)
        self.cache.remove(token_hash)

        async with durable_session(
            self._session_factory, self._timeout, "remove blacklist entry"
        ) as session:
            result: CursorResult[Any] = await session.execute(  # type: ignore[assignment]
                delete(TokenBlacklist).where(TokenBlacklist.token_hash == token_hash)
            )
            await session.commit()

        removed = result.rowcount > 0
        if removed:
            logger.info(f"Token {token_fingerprint(token)} removed from blacklist")
        return removed

    async def stats(self) -> RevocationStats:
        async with durable_session(
            self._session_factory, self._timeout, "count blacklist"
        ) as session:
            result = await session.execute(select(func.count()).select_from(TokenBlacklist))
            durable_entries = result.scalar() or 0

        return RevocationStats(
            cache_entries=len(self.cache),
            cache_max_entries=self.cache.max_entries,
            durable_entries=durable_entries,
        )

    async def purge_expired(self) -> int:
        """Delete expired durable entries and prune the cache."""
        pruned = self.cache.prune()
        now = self._clock()
        async with durable_session(
            self._session_factory, self._timeout, "purge blacklist"
        ) as session:
            result: CursorResult[Any] = await session.execute(  # type: ignore[assignment]
                delete(TokenBlacklist).where(TokenBlacklist.expires_at <= now)
            )
            await session.commit()

        if result.rowcount or pruned:
            logger.info(
                f"Blacklist cleanup: {result.rowcount} durable entries, {pruned} cached entries"
            )
        return result.rowcount
