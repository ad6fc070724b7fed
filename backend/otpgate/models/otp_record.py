"""One-time passcode records."""

from datetime import datetime

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from otpgate.models.base import BaseModel, UTCDateTime


class OTPRecord(BaseModel):
    """A one-time passcode issued to an identifier for a purpose.

    Several unconsumed codes may coexist for the same (identifier, purpose);
    each one is consumed at most once.
    """

    __tablename__ = "otp_records"
    __table_args__ = (Index("ix_otp_records_identifier_purpose", "identifier", "purpose"),)

    identifier: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(12), nullable=False, index=True)
    purpose: Mapped[str] = mapped_column(String(32), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    consumed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<OTPRecord {self.identifier} {self.purpose} consumed={self.consumed}>"
