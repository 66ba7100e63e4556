"""Tests for the trainer facade."""
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from vocasync.models.progress_models import (
    Direction,
    DirectionMode,
    Lection,
    ProgressRecord,
    SelectionMode,
    VocabularyItem,
    format_timestamp,
    progress_key,
)
from vocasync.services.lection_service import LectionService
from vocasync.services.progress_store import ProgressStore
from vocasync.services.reconciler import Reconciler
from vocasync.services.review_scheduler import ReviewScheduler
from vocasync.services.session_pool import NoItemsSelectedError
from vocasync.services.trainer import Trainer

NOW = datetime(2024, 2, 1, 8, 0, tzinfo=UTC)


@pytest.fixture
def trainer(store: ProgressStore, lections: LectionService) -> Trainer:
    """Create a trainer without remote sync."""
    return Trainer(store, lections, ReviewScheduler(store, tz=UTC, clock=lambda: NOW), clock=lambda: NOW)


def test_record_answer_and_due(trainer: Trainer, vocabulary: list[VocabularyItem]) -> None:
    """Test answering through the facade."""
    item = vocabulary[0]

    record = trainer.record_answer(item, Direction.FRONT_TO_BACK, True, NOW)

    assert record.correct_count == 1
    assert not trainer.is_due(item, Direction.FRONT_TO_BACK, NOW)
    assert trainer.is_due(item, Direction.BACK_TO_FRONT, NOW)
    assert trainer.due_count(vocabulary, Direction.FRONT_TO_BACK, NOW) == len(vocabulary) - 1
    assert trainer.forecast(vocabulary, Direction.FRONT_TO_BACK, 3, NOW) == [1, 0, 0]
    assert trainer.get_progress(item, Direction.FRONT_TO_BACK) == record


def test_directions_accept_plain_values(trainer: Trainer, vocabulary: list[VocabularyItem]) -> None:
    """Test that stored direction strings work as well as the enum."""
    trainer.record_answer(vocabulary[0], "backToFront", True, NOW)
    assert trainer.get_progress(vocabulary[0], Direction.BACK_TO_FRONT).correct_count == 1


def test_session_flow(trainer: Trainer, lections: LectionService) -> None:
    """Test a full sitting built from selected lections."""
    lections.save_lection(Lection("1", "Numbers", [VocabularyItem("uno", "eins"), VocabularyItem("dos", "zwei")]))
    lections.save_lection(Lection("2", "Other", [VocabularyItem("gato", "Katze")]))

    total = trainer.build_session_from_lections(["1"], SelectionMode.SPACED, DirectionMode.FRONT_TO_BACK, NOW)
    assert total == 2

    seen = []
    while (card := trainer.draw_next()) is not None:
        seen.append(card.item)
        trainer.record_answer(card.item, card.direction, True, NOW)

    assert sorted(item.front for item in seen) == ["dos", "uno"]
    assert trainer.remaining() == 0
    assert trainer.build_session_pool(
        [VocabularyItem("uno", "eins")], SelectionMode.SPACED, DirectionMode.FRONT_TO_BACK, NOW
    ) == 0


def test_draw_without_selection(trainer: Trainer) -> None:
    """Test the error for an empty selection."""
    trainer.build_session_from_lections([], SelectionMode.RANDOM, DirectionMode.RANDOM, NOW)
    with pytest.raises(NoItemsSelectedError):
        trainer.draw_next()


def test_reset_progress(trainer: Trainer, store: ProgressStore, vocabulary: list[VocabularyItem]) -> None:
    """Test that a reset clears progress and the running pool."""
    trainer.record_answer(vocabulary[0], Direction.FRONT_TO_BACK, True, NOW)
    trainer.build_session_pool(vocabulary, SelectionMode.RANDOM, DirectionMode.FRONT_TO_BACK, NOW)

    trainer.reset_progress(NOW)

    assert len(store) == 0
    assert store.last_reset == NOW
    assert trainer.remaining() == 0
    assert trainer.statistics() == {"total_records": 0, "total_learned": 0, "total_reviews": 0}


def test_skip_one_day(trainer: Trainer, vocabulary: list[VocabularyItem]) -> None:
    """Test that skipping a day makes tomorrow's reviews due now."""
    trainer.record_answer(vocabulary[0], Direction.FRONT_TO_BACK, True, NOW)
    before = trainer.due_count(vocabulary, Direction.FRONT_TO_BACK, NOW)

    assert trainer.skip_one_day(NOW) == 1
    assert trainer.due_count(vocabulary, Direction.FRONT_TO_BACK, NOW) == before + 1


def test_phase_histogram(trainer: Trainer, vocabulary: list[VocabularyItem]) -> None:
    """Test the histogram passthrough."""
    trainer.record_answer(vocabulary[0], Direction.FRONT_TO_BACK, True, NOW)
    histogram = trainer.phase_histogram(vocabulary, Direction.FRONT_TO_BACK)
    assert histogram[1] == 1
    assert histogram[0] == len(vocabulary) - 1


def test_export_data(trainer: Trainer, lections: LectionService, vocabulary: list[VocabularyItem]) -> None:
    """Test the backup format."""
    lections.save_lection(Lection("1", "Basics", vocabulary[:2]))
    trainer.record_answer(vocabulary[0], Direction.FRONT_TO_BACK, True, NOW)

    data = trainer.export_data()

    assert data["version"] == "1.0"
    assert data["exportDate"] == format_timestamp(NOW)
    assert [lection["id"] for lection in data["lections"]] == ["1"]
    assert list(data["progress"]) == [progress_key(vocabulary[0], Direction.FRONT_TO_BACK)]


def test_import_progress_merges(trainer: Trainer, store: ProgressStore, vocabulary: list[VocabularyItem]) -> None:
    """Test that importing a backup never loses newer local progress."""
    local_key = progress_key(vocabulary[0], Direction.FRONT_TO_BACK)
    other_key = progress_key(vocabulary[1], Direction.FRONT_TO_BACK)
    trainer.record_answer(vocabulary[0], Direction.FRONT_TO_BACK, True, NOW)
    older = NOW - timedelta(days=3)
    backup = {
        "progress": {
            local_key: ProgressRecord(correct_count=6, last_updated=older).to_dict(),
            other_key: ProgressRecord(correct_count=2, last_updated=older).to_dict(),
        }
    }

    assert trainer.import_progress(backup, NOW) == 2

    assert store.get(local_key).correct_count == 1
    assert store.get(other_key).correct_count == 2
    assert store.dirty is True


def test_import_progress_rejects_non_backups(trainer: Trainer) -> None:
    """Test that data without a progress map is refused."""
    with pytest.raises(ValueError):
        trainer.import_progress({"lections": []})
    with pytest.raises(ValueError):
        trainer.import_progress([])


@pytest.mark.asyncio
async def test_sync_without_reconciler(trainer: Trainer) -> None:
    """Test that sync calls are no-ops when sync is not configured."""
    assert await trainer.reconcile_on_startup() is False
    assert await trainer.reconcile_now() is False


@pytest.mark.asyncio
async def test_sync_delegates_to_reconciler(store: ProgressStore, lections: LectionService) -> None:
    """Test that sync calls reach the reconciler."""
    reconciler = Mock(spec=Reconciler)
    reconciler.reconcile_on_startup = AsyncMock(return_value=True)
    reconciler.reconcile_now = AsyncMock(return_value=True)
    trainer = Trainer(store, lections, ReviewScheduler(store), reconciler=reconciler)

    assert await trainer.reconcile_on_startup() is True
    assert await trainer.reconcile_now() is True
    reconciler.reconcile_on_startup.assert_awaited_once()
    reconciler.reconcile_now.assert_awaited_once()
