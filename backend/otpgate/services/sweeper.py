"""Sweeper service - periodically deletes expired auth records."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from otpgate.core.exceptions import StorageError
from otpgate.core.logging import get_logger
from otpgate.services.otp import OTPManager
from otpgate.services.revocation import RevocationStore
from otpgate.services.tokens import TokenManager
from otpgate.storage.base import is_missing_table_error

logger = get_logger("sweeper")

# How often to purge OTPs and token records (in seconds)
RECORDS_INTERVAL_SECONDS = 3600  # 1 hour

# How often to purge the blacklist
BLACKLIST_INTERVAL_SECONDS = 21600  # 6 hours

# Delay before the first sweep so the app (and migrations) can start
INITIAL_DELAY_SECONDS = 60


@dataclass
class SweepReport:
    otps: int = 0
    tokens: int = 0
    blacklist: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.otps + self.tokens + self.blacklist


class SweeperService:
    """Background service that removes expired OTPs, tokens and blacklist entries.

    Deletes filter on timestamps only, so running it in several processes at
    once is harmless.
    """

    def __init__(
        self,
        otp_manager: OTPManager,
        token_manager: TokenManager,
        revocation: RevocationStore,
        records_interval: float = RECORDS_INTERVAL_SECONDS,
        blacklist_interval: float = BLACKLIST_INTERVAL_SECONDS,
        initial_delay: float = INITIAL_DELAY_SECONDS,
    ):
        self.otp_manager = otp_manager
        self.token_manager = token_manager
        self.revocation = revocation
        self.records_interval = records_interval
        self.blacklist_interval = blacklist_interval
        self.initial_delay = initial_delay
        self._running = False
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the background sweep loops."""
        if self._running:
            logger.warning("Sweeper is already running")
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(self._loop(self.sweep_records, self.records_interval)),
            asyncio.create_task(self._loop(self.sweep_blacklist, self.blacklist_interval)),
        ]
        logger.info(
            f"Sweeper started (records every {self.records_interval}s, "
            f"blacklist every {self.blacklist_interval}s)"
        )

    async def stop(self):
        """Stop the background sweep loops."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("Sweeper stopped")

    async def _loop(self, sweep: Callable[[SweepReport], Awaitable[None]], interval: float):
        # Wait a bit before the first sweep to let the app start up
        await asyncio.sleep(self.initial_delay)

        while self._running:
            await sweep(SweepReport())
            await asyncio.sleep(interval)

    async def _purge(
        self, label: str, purge: Callable[[], Awaitable[int]], report: SweepReport
    ) -> int:
        try:
            return await purge()
        except StorageError as e:
            if is_missing_table_error(e):
                logger.debug(f"Skipping {label} sweep: table does not exist yet")
            else:
                logger.error(f"Error sweeping {label}: {e}")
                report.errors.append(f"{label}: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error sweeping {label}: {e}")
            report.errors.append(f"{label}: {e}")
        return 0

    async def sweep_records(self, report: SweepReport) -> None:
        report.otps = await self._purge("OTPs", self.otp_manager.purge_expired, report)
        report.tokens = await self._purge("tokens", self.token_manager.purge_expired, report)
        if report.otps or report.tokens:
            logger.info(
                f"Sweep: deleted {report.otps} OTPs and {report.tokens} token records"
            )

    async def sweep_blacklist(self, report: SweepReport) -> None:
        report.blacklist = await self._purge("blacklist", self.revocation.purge_expired, report)

    async def run_once(self) -> SweepReport:
        """Manually trigger a full sweep."""
        report = SweepReport()
        await self.sweep_records(report)
        await self.sweep_blacklist(report)
        return report
