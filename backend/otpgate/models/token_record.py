"""Registry of issued session tokens."""

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from otpgate.models.base import BaseModel, UTCDateTime


class TokenRecord(BaseModel):
    """A token the server is willing to honour.

    Tokens are referenced by the SHA-256 of their compact form; the bearer
    value itself is never stored.
    """

    __tablename__ = "token_records"

    subject_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    token_type: Mapped[str] = mapped_column(String(16), nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<TokenRecord {self.subject_id} {self.token_type}>"
