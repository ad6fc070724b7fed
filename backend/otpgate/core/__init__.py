# otpgate Core Module
from .config import Settings, get_settings, settings
from .database import (
    Base,
    async_session_maker,
    build_engine,
    build_session_factory,
    check_db_connection,
    engine,
)
from .logging import get_logger, setup_logging

__all__ = [
    "Settings",
    "settings",
    "get_settings",
    "setup_logging",
    "get_logger",
    "Base",
    "engine",
    "async_session_maker",
    "build_engine",
    "build_session_factory",
    "check_db_connection",
]
