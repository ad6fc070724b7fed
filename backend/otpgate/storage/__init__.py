# otpgate Storage adapters
from otpgate.storage.base import (
    ConsumeOutcome,
    OTPEntry,
    OTPStorage,
    durable_session,
    is_missing_table_error,
)
from otpgate.storage.fallback import FallbackOTPStorage
from otpgate.storage.json_file import JsonFileOTPStorage
from otpgate.storage.sql import SqlOTPStorage

__all__ = [
    "ConsumeOutcome",
    "FallbackOTPStorage",
    "JsonFileOTPStorage",
    "OTPEntry",
    "OTPStorage",
    "SqlOTPStorage",
    "durable_session",
    "is_missing_table_error",
]
