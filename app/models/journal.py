"""Investment journal model."""
import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import String, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow


class JournalEntryType(str, Enum):
    ANALYSIS = "analysis"
    TRADE = "trade"


class JournalEntry(Base):
    """Free-text note attached to a symbol."""

    __tablename__ = "journal_entries"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    symbol: Mapped[str] = mapped_column(String(20), index=True)
    type: Mapped[str] = mapped_column(String(20), default=JournalEntryType.ANALYSIS.value)
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow
    )
