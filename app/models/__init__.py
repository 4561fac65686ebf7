"""Database models."""
from app.models.watchlist import WatchlistItem
from app.models.journal import JournalEntry, JournalEntryType

__all__ = [
    "WatchlistItem",
    "JournalEntry",
    "JournalEntryType",
]
