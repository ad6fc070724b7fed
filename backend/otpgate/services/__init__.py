# otpgate Services
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from otpgate.core.clock import Clock, utc_now
from otpgate.core.config import Settings
from otpgate.services.auth import AuthService
from otpgate.services.lockout import LockoutPolicy
from otpgate.services.notifier import Notifier, build_notifier
from otpgate.services.otp import OTPManager
from otpgate.services.revocation import RevocationCache, RevocationStore
from otpgate.services.sweeper import SweeperService
from otpgate.services.tokens import TokenManager
from otpgate.storage import FallbackOTPStorage, JsonFileOTPStorage, SqlOTPStorage


@dataclass
class Services:
    """Everything one application instance needs, wired together."""

    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    notifier: Notifier
    otp: OTPManager
    revocation: RevocationStore
    tokens: TokenManager
    lockout: LockoutPolicy
    auth: AuthService
    sweeper: SweeperService


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    config: Settings,
    notifier: Notifier | None = None,
    clock: Clock = utc_now,
) -> Services:
    """Build the service graph for one app from settings."""
    timeout = config.store_timeout_seconds
    notifier = notifier or build_notifier(config)

    otp_storage = FallbackOTPStorage(
        primary=SqlOTPStorage(session_factory, timeout),
        secondary=JsonFileOTPStorage(Path(config.otp_fallback_path)),
    )
    otp = OTPManager(
        otp_storage,
        notifier=notifier,
        clock=clock,
        code_length=config.otp_length,
        ttl=timedelta(minutes=config.otp_ttl_minutes),
        max_generation_attempts=config.otp_max_generation_attempts,
        consumed_retention=timedelta(hours=config.otp_consumed_retention_hours),
    )
    revocation = RevocationStore(
        session_factory,
        timeout,
        cache=RevocationCache(config.blacklist_cache_max_entries, clock=clock),
        clock=clock,
    )
    tokens = TokenManager.from_settings(config, session_factory, revocation, clock=clock)
    lockout = LockoutPolicy(
        session_factory,
        timeout,
        clock=clock,
        threshold=config.lockout_threshold,
        lock_minutes=config.lockout_minutes,
    )
    auth = AuthService(session_factory, otp, tokens, lockout, timeout=timeout, clock=clock)
    sweeper = SweeperService(
        otp,
        tokens,
        revocation,
        records_interval=config.sweep_records_interval_seconds,
        blacklist_interval=config.sweep_blacklist_interval_seconds,
        initial_delay=config.sweeper_initial_delay_seconds,
    )
    return Services(
        settings=config,
        session_factory=session_factory,
        notifier=notifier,
        otp=otp,
        revocation=revocation,
        tokens=tokens,
        lockout=lockout,
        auth=auth,
        sweeper=sweeper,
    )


__all__ = [
    "AuthService",
    "LockoutPolicy",
    "OTPManager",
    "RevocationCache",
    "RevocationStore",
    "Services",
    "SweeperService",
    "TokenManager",
    "build_services",
]
