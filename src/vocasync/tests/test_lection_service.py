"""Tests for lection service."""
import json
from unittest.mock import Mock

import pytest
from sqlalchemy.orm import Session

from vocasync.models.progress_models import ContentEvent, Lection, VocabularyItem
from vocasync.services.lection_service import (
    DEFAULT_LECTION_NAME,
    LectionService,
    parse_vocabulary_content,
    vocabularies_to_text,
)
from vocasync.services.local_storage import LocalStorage, StorageQuotaExceededError


def make_lection(lection_id: str, name: str, *pairs: tuple) -> Lection:
    return Lection(lection_id, name, [VocabularyItem(front, back) for front, back in pairs])


def test_parse_vocabulary_content() -> None:
    """Test the line format of imported vocabulary."""
    content = "hola ## Hallo\n\n  gato##Katze  \nno separator here\na ## b ## c\n"
    assert parse_vocabulary_content(content) == [VocabularyItem("hola", "Hallo"), VocabularyItem("gato", "Katze")]


def test_vocabularies_to_text() -> None:
    """Test converting items back to text."""
    items = [VocabularyItem("uno", "eins"), VocabularyItem("dos", "zwei")]
    assert vocabularies_to_text(items) == "uno ## eins\ndos ## zwei"
    assert parse_vocabulary_content(vocabularies_to_text(items)) == items


def test_save_and_get_lections(lections: LectionService) -> None:
    """Test storing lections in order."""
    lections.save_lection(make_lection("1", "First", ("uno", "eins")))
    lections.save_lection(make_lection("2", "Second", ("dos", "zwei")))
    lections.save_lection(make_lection("1", "First renamed", ("uno", "eins")))

    assert lections.get_order() == ["1", "2"]
    assert [lection.name for lection in lections.get_all_lections()] == ["First renamed", "Second"]
    assert lections.get_lection("missing") is None


def test_delete_lection(lections: LectionService) -> None:
    """Test removing a lection and its order entry."""
    lections.save_lection(make_lection("1", "First"))
    lections.save_lection(make_lection("2", "Second"))

    lections.delete_lection("1")

    assert lections.get_order() == ["2"]
    assert lections.get_lection("1") is None


def test_save_order(lections: LectionService) -> None:
    """Test reordering lections."""
    lections.save_lection(make_lection("1", "First"))
    lections.save_lection(make_lection("2", "Second"))

    lections.save_order(["2", "1"])

    assert [lection.id for lection in lections.get_all_lections()] == ["2", "1"]


def test_unreadable_entries_are_skipped(lections: LectionService, storage: LocalStorage) -> None:
    """Test that corrupt lection data does not break listing."""
    lections.save_lection(make_lection("1", "First"))
    storage.set_item("lection_2", "{broken")
    storage.set_item(LectionService.ORDER_KEY, json.dumps(["1", "2", "3"]))

    assert [lection.id for lection in lections.get_all_lections()] == ["1"]

    storage.set_item(LectionService.ORDER_KEY, "not json")
    assert lections.get_order() == []


def test_generate_lection_id() -> None:
    """Test the id format."""
    lection_id = LectionService.generate_lection_id()
    millis, suffix = lection_id.split("_")
    assert millis.isdigit()
    assert 0 <= int(suffix) <= 999


def test_import_text(lections: LectionService) -> None:
    """Test creating lections from text."""
    lection = lections.import_text("Animals", "gato ## Katze\nperro ## Hund")

    assert lection is not None
    assert lection.vocabularies == [VocabularyItem("gato", "Katze"), VocabularyItem("perro", "Hund")]
    assert lections.import_text("Animals", "pez ## Fisch") is None
    assert lections.import_text("Empty", "nothing to see") is None
    assert len(lections.get_all_lections()) == 1


def test_default_lections(lections: LectionService) -> None:
    """Test seeding and detecting the starter content."""
    assert lections.is_default_only()
    assert lections.initialize_default_lections() is True
    assert lections.initialize_default_lections() is False

    [lection] = lections.get_all_lections()
    assert lection.name == DEFAULT_LECTION_NAME
    assert lections.is_default_only()

    lections.import_text("Mine", "tres ## drei")
    assert not lections.is_default_only()


def test_collect_items(lections: LectionService) -> None:
    """Test gathering the vocabulary of selected lections."""
    lections.save_lection(make_lection("1", "First", ("uno", "eins")))
    lections.save_lection(make_lection("2", "Second", ("dos", "zwei"), ("tres", "drei")))
    lections.save_lection(make_lection("3", "Third", ("cuatro", "vier")))

    items = lections.collect_items(["3", "1"])

    assert items == [VocabularyItem("uno", "eins"), VocabularyItem("cuatro", "vier")]
    assert lections.collect_items([]) == []


def test_adopt_remote(lections: LectionService) -> None:
    """Test wholesale replacement from a remote."""
    lections.save_lection(make_lection("old", "Old"))
    remote = [make_lection("a", "A").to_dict(), make_lection("b", "B").to_dict(), {"name": "no id"}]

    lections.adopt_remote(remote, ["b", "ghost"])

    assert lections.get_order() == ["b", "a"]
    assert lections.get_lection("old") is None


def test_listeners(lections: LectionService) -> None:
    """Test content change notifications."""
    listener = Mock()
    lections.add_listener(listener)

    lections.save_lection(make_lection("1", "First"))
    lections.save_order(["1"])
    lections.store_remote_lection(make_lection("2", "Second").to_dict())
    lections.delete_lection("1")

    assert [call.args for call in listener.call_args_list] == [
        (ContentEvent.LECTION_SAVED, "1"),
        (ContentEvent.ORDER_CHANGED, None),
        (ContentEvent.REMOTE_ADOPTED, "2"),
        (ContentEvent.LECTION_DELETED, "1"),
    ]


def test_store_remote_lection_rejects_garbage(lections: LectionService) -> None:
    """Test that remote data without an id is refused."""
    with pytest.raises(ValueError):
        lections.store_remote_lection({"name": "nameless"})


def test_quota_error_on_save(db: Session) -> None:
    """Test that a full local store surfaces to the caller."""
    lections = LectionService(LocalStorage(db, quota_bytes=30))
    with pytest.raises(StorageQuotaExceededError):
        lections.save_lection(make_lection("1", "Too big", ("a" * 40, "b")))
