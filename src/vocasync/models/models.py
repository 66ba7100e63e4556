"""Database models for the trainer."""
from sqlalchemy import Column, String, Text

from vocasync.models.base import Base, TimestampMixin


class StorageEntry(Base, TimestampMixin):
    """One key of the local key-value store."""

    __tablename__ = "storage_entries"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)  # serialized JSON blob

    def __repr__(self) -> str:
        return f"<StorageEntry {self.key!r} ({len(self.value or '')} chars)>"
