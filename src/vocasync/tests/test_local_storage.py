"""Tests for the local key-value storage."""
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from vocasync.models.models import StorageEntry
from vocasync.services.local_storage import LocalStorage, LocalStorageError, StorageQuotaExceededError


def test_set_and_get_item(storage: LocalStorage, db: Session) -> None:
    """Test storing and overwriting a value."""
    assert storage.get_item("missing") is None

    storage.set_item("greeting", '"hola"')
    storage.set_item("greeting", '"hallo"')

    assert storage.get_item("greeting") == '"hallo"'
    assert db.query(StorageEntry).count() == 1


def test_remove_item(storage: LocalStorage) -> None:
    """Test removing present and absent keys."""
    storage.set_item("key", "value")
    storage.remove_item("key")
    storage.remove_item("never-there")
    assert storage.get_item("key") is None


def test_keys_by_prefix(storage: LocalStorage) -> None:
    """Test listing keys, with LIKE wildcards in the prefix taken literally."""
    storage.set_item("lection_1", "{}")
    storage.set_item("lection_2", "{}")
    storage.set_item("lectionOrder", "[]")
    storage.set_item("lectionX1", "{}")

    assert storage.keys("lection_") == ["lection_1", "lection_2"]
    assert len(storage.keys()) == 4


def test_used_bytes_and_clear(storage: LocalStorage) -> None:
    """Test the size accounting used by the quota."""
    storage.set_item("ab", "1234")
    storage.set_item("c", "5")
    assert storage.used_bytes() == 8

    storage.clear()
    assert storage.used_bytes() == 0
    assert storage.keys() == []


def test_quota_exceeded(db: Session) -> None:
    """Test that writes beyond the quota raise and leave the old value."""
    storage = LocalStorage(db, quota_bytes=20)
    storage.set_item("key", "small")

    with pytest.raises(StorageQuotaExceededError):
        storage.set_item("key", "x" * 50)

    assert storage.get_item("key") == "small"


def test_overwrite_counts_only_the_difference(db: Session) -> None:
    """Test that replacing a value does not count the old one twice."""
    storage = LocalStorage(db, quota_bytes=10)
    storage.set_item("k", "123456789")
    storage.set_item("k", "987654321")
    assert storage.get_item("k") == "987654321"


def test_quota_error_is_a_storage_error() -> None:
    """Test the error hierarchy callers rely on."""
    assert issubclass(StorageQuotaExceededError, LocalStorageError)


def test_non_string_values_are_rejected(storage: LocalStorage) -> None:
    """Test that only serialized values are stored."""
    with pytest.raises(TypeError):
        storage.set_item("key", {"not": "serialized"})


def test_database_failure_is_wrapped(storage: LocalStorage, db: Session) -> None:
    """Test that database errors surface as LocalStorageError and are rolled back."""
    with patch.object(db, "commit", side_effect=OperationalError("INSERT", {}, Exception("disk I/O error"))):
        with pytest.raises(LocalStorageError):
            storage.set_item("key", "value")
    assert storage.get_item("key") is None
