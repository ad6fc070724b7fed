"""Blacklisted tokens - survives process restarts."""

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from otpgate.core.clock import utc_now
from otpgate.core.database import Base
from otpgate.models.base import UTCDateTime


class TokenBlacklist(Base):
    """A revoked token identified by the SHA-256 of its compact form.

    Entries are created on logout and cleaned up after expiry.
    """

    __tablename__ = "token_blacklist"

    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)
