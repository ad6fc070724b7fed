"""Primary/secondary OTP storage composition."""

from datetime import datetime

from otpgate.core.exceptions import StorageError, StoreUnavailableError
from otpgate.core.logging import get_logger
from otpgate.storage.base import ConsumeOutcome, OTPEntry, OTPStorage, is_missing_table_error

logger = get_logger("storage.fallback")


class FallbackOTPStorage:
    """Try the primary store; use the secondary only when the primary is unavailable.

    Callers cannot tell which store served them. Every degradation is logged.

    Verification consults the secondary in two cases:
    - the primary is unavailable;
    - the primary answered "not found" and ``consult_secondary_on_miss`` is
      set, so codes written during an outage stay verifiable afterwards.

    A "not found" from the secondary while the primary is down is reported
    as a StorageError, never as a wrong code.
    """

    name = "fallback"

    def __init__(
        self,
        primary: OTPStorage,
        secondary: OTPStorage,
        consult_secondary_on_miss: bool = True,
    ):
        self.primary = primary
        self.secondary = secondary
        self.consult_secondary_on_miss = consult_secondary_on_miss

    def _log_degraded(self, operation: str, error: Exception) -> None:
        logger.warning(
            f"{self.primary.name} unavailable during {operation} ({error}); "
            f"using {self.secondary.name}"
        )

    async def insert(self, entry: OTPEntry) -> None:
        try:
            await self.primary.insert(entry)
            return
        except StoreUnavailableError as e:
            self._log_degraded("store", e)

        try:
            await self.secondary.insert(entry)
        except StoreUnavailableError as e:
            raise StorageError("OTP could not be stored: all stores unavailable") from e

    async def code_in_use(self, code: str, now: datetime) -> bool:
        try:
            return await self.primary.code_in_use(code, now)
        except StoreUnavailableError as e:
            self._log_degraded("uniqueness check", e)
        return await self.secondary.code_in_use(code, now)

    async def consume(
        self, identifier: str, code: str, purpose: str, now: datetime
    ) -> ConsumeOutcome:
        try:
            outcome = await self.primary.consume(identifier, code, purpose, now)
        except StoreUnavailableError as primary_error:
            self._log_degraded("verify", primary_error)
            try:
                outcome = await self.secondary.consume(identifier, code, purpose, now)
            except StoreUnavailableError as e:
                raise StorageError("OTP could not be verified: all stores unavailable") from e
            if outcome is ConsumeOutcome.NOT_FOUND:
                raise StorageError(
                    "OTP could not be verified: primary store unavailable"
                ) from primary_error
            return outcome

        if outcome is ConsumeOutcome.NOT_FOUND and self.consult_secondary_on_miss:
            try:
                return await self.secondary.consume(identifier, code, purpose, now)
            except StoreUnavailableError as e:
                logger.warning(f"{self.secondary.name} unreadable during verify: {e}")
        return outcome

    async def purge(self, now: datetime, consumed_before: datetime) -> int:
        removed = 0
        try:
            removed += await self.secondary.purge(now, consumed_before)
        except StoreUnavailableError as e:
            logger.warning(f"Could not purge {self.secondary.name}: {e}")
        try:
            removed += await self.primary.purge(now, consumed_before)
        except StorageError as e:
            # Keep the secondary's count when only the primary could not be swept
            if is_missing_table_error(e):
                logger.debug(f"{self.primary.name} has no OTP table yet; purged {removed}")
            elif isinstance(e, StoreUnavailableError):
                logger.warning(
                    f"Could not purge {self.primary.name} ({e}); "
                    f"purged {removed} from {self.secondary.name}"
                )
            else:
                raise
        return removed
