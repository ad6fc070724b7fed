"""Process-local JSON file storage used when the database is unreachable.

Best effort only: the file is not shared between hosts, and concurrent
writers in different processes can overwrite each other. Within a process a
lock serialises every read-modify-write so a code is consumed at most once.
"""

import asyncio
import json
import os
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

from otpgate.core.exceptions import StoreUnavailableError
from otpgate.core.logging import get_logger
from otpgate.storage.base import ConsumeOutcome, OTPEntry, classify_latest

logger = get_logger("storage.json_file")


class JsonFileOTPStorage:
    """OTP storage in a single JSON document on local disk."""

    name = "fallback-file"

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # File access (always called with the lock held)
    # ------------------------------------------------------------------

    def _load(self) -> list[OTPEntry]:
        if not self._path.exists():
            return []
        try:
            raw: Any = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Fallback OTP file {self._path} is corrupt, ignoring it: {e}")
            return []
        except OSError as e:
            raise StoreUnavailableError(f"Cannot read fallback OTP file: {e}") from e

        entries: list[OTPEntry] = []
        for item in raw if isinstance(raw, list) else []:
            try:
                entries.append(OTPEntry.from_dict(item))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed entry in fallback OTP file")
        return entries

    def _save(self, entries: list[OTPEntry]) -> None:
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps([entry.to_dict() for entry in entries], indent=2),
                encoding="utf-8",
            )
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot write fallback OTP file: {e}") from e

    # ------------------------------------------------------------------
    # Synchronous operations
    # ------------------------------------------------------------------

    def _insert(self, entry: OTPEntry) -> None:
        with self._lock:
            entries = self._load()
            entries.append(entry)
            self._save(entries)

    def _code_in_use(self, code: str, now: datetime) -> bool:
        with self._lock:
            return any(
                e.code == code and not e.consumed and e.expires_at > now for e in self._load()
            )

    def _consume(self, identifier: str, code: str, purpose: str, now: datetime) -> ConsumeOutcome:
        with self._lock:
            entries = self._load()
            matching = sorted(
                (
                    (index, e)
                    for index, e in enumerate(entries)
                    if e.identifier == identifier and e.code == code and e.purpose == purpose
                ),
                key=lambda pair: pair[1].created_at,
                reverse=True,
            )
            for index, entry in matching:
                if not entry.consumed and entry.expires_at > now:
                    entries[index] = replace(entry, consumed=True)
                    self._save(entries)
                    return ConsumeOutcome.CONSUMED

            if not matching:
                return ConsumeOutcome.NOT_FOUND
            latest = matching[0][1]
            return classify_latest(latest.consumed, latest.expires_at, now)

    def _purge(self, now: datetime, consumed_before: datetime) -> int:
        with self._lock:
            if not self._path.exists():
                return 0
            entries = self._load()
            kept = [
                e
                for e in entries
                if not (e.expires_at < now or (e.consumed and e.created_at < consumed_before))
            ]
            removed = len(entries) - len(kept)
            if removed:
                self._save(kept)
            return removed

    # ------------------------------------------------------------------
    # OTPStorage interface
    # ------------------------------------------------------------------

    async def insert(self, entry: OTPEntry) -> None:
        await asyncio.to_thread(self._insert, entry)

    async def code_in_use(self, code: str, now: datetime) -> bool:
        return await asyncio.to_thread(self._code_in_use, code, now)

    async def consume(
        self, identifier: str, code: str, purpose: str, now: datetime
    ) -> ConsumeOutcome:
        return await asyncio.to_thread(self._consume, identifier, code, purpose, now)

    async def purge(self, now: datetime, consumed_before: datetime) -> int:
        return await asyncio.to_thread(self._purge, now, consumed_before)
