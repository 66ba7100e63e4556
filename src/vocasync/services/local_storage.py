"""Synchronous key-value store for local persistence."""
import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vocasync.config import settings
from vocasync.models.models import StorageEntry
from vocasync.monitoring import storage_errors

logger = logging.getLogger(__name__)


class LocalStorageError(Exception):
    """Raised when the local store cannot be read or written."""


class StorageQuotaExceededError(LocalStorageError):
    """Raised when a write would exceed the local storage quota."""


class LocalStorage:
    """Key-value store holding serialized JSON blobs, backed by the database."""

    def __init__(self, db: Session, quota_bytes: Optional[int] = None):
        """Initialize the store with a database session and an optional quota."""
        self.db = db
        self.quota_bytes = quota_bytes if quota_bytes is not None else settings.learning.local_storage_quota_bytes

    def _get_entry(self, key: str) -> Optional[StorageEntry]:
        try:
            return self.db.query(StorageEntry).filter(StorageEntry.key == key).first()
        except SQLAlchemyError as e:
            storage_errors.labels(error_type="read").inc()
            raise LocalStorageError(f"Could not read {key!r}: {e}") from e

    def get_item(self, key: str) -> Optional[str]:
        """Return the stored value for ``key`` or None."""
        entry = self._get_entry(key)
        return entry.value if entry else None

    def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``.

        Raises:
            StorageQuotaExceededError: if the store would grow beyond its quota.
            LocalStorageError: if the database write fails.
        """
        if not isinstance(value, str):
            raise TypeError(f"LocalStorage values must be strings, got {type(value).__name__}")

        entry = self._get_entry(key)
        current = len(key) + len(entry.value) if entry else 0
        required = self.used_bytes() - current + len(key) + len(value)
        if required > self.quota_bytes:
            storage_errors.labels(error_type="quota").inc()
            logger.error(f"Local storage quota exceeded writing {key!r}: {required} > {self.quota_bytes}")
            raise StorageQuotaExceededError(
                f"Storage quota exceeded: {required} of {self.quota_bytes} bytes needed for {key!r}"
            )

        try:
            if entry:
                entry.value = value
            else:
                self.db.add(StorageEntry(key=key, value=value))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            storage_errors.labels(error_type="write").inc()
            logger.error(f"Error writing {key!r} to local storage: {e}")
            raise LocalStorageError(f"Could not write {key!r}: {e}") from e

    def remove_item(self, key: str) -> None:
        """Remove ``key`` if present."""
        try:
            self.db.query(StorageEntry).filter(StorageEntry.key == key).delete()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            storage_errors.labels(error_type="write").inc()
            raise LocalStorageError(f"Could not remove {key!r}: {e}") from e

    def keys(self, prefix: str = "") -> List[str]:
        """Return stored keys starting with ``prefix``, sorted."""
        query = self.db.query(StorageEntry.key)
        if prefix:
            query = query.filter(StorageEntry.key.startswith(prefix, autoescape=True))
        return sorted(key for (key,) in query.all())

    def used_bytes(self) -> int:
        """Total size of all keys and values."""
        total = self.db.query(
            func.sum(func.length(StorageEntry.key) + func.length(StorageEntry.value))
        ).scalar()
        return int(total or 0)

    def clear(self) -> None:
        """Remove every key."""
        try:
            self.db.query(StorageEntry).delete()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise LocalStorageError(f"Could not clear local storage: {e}") from e
