"""Tests for the session pool."""
import random
from datetime import UTC, datetime

import pytest

from vocasync.models.progress_models import Direction, DirectionMode, SelectionMode, VocabularyItem, progress_key
from vocasync.services.progress_store import ProgressStore
from vocasync.services.review_scheduler import ReviewScheduler
from vocasync.services.session_pool import NoItemsSelectedError, SessionPool

NOW = datetime(2024, 1, 10, 12, 0, tzinfo=UTC)


@pytest.fixture
def pool(store: ProgressStore) -> SessionPool:
    """Create a pool with a seeded random source."""
    return SessionPool(ReviewScheduler(store, tz=UTC, clock=lambda: NOW), rng=random.Random(7))


def drain(pool: SessionPool) -> list:
    cards = []
    while (card := pool.draw()) is not None:
        cards.append(card)
    return cards


def test_random_pool_draws_every_item_once(pool: SessionPool, vocabulary: list[VocabularyItem]) -> None:
    """Test sampling without replacement."""
    assert pool.build(vocabulary, SelectionMode.RANDOM, DirectionMode.FRONT_TO_BACK, NOW) == len(vocabulary)

    cards = drain(pool)

    assert len(cards) == len(vocabulary)
    assert {card.item for card in cards} == set(vocabulary)
    assert all(card.direction is Direction.FRONT_TO_BACK for card in cards)
    assert pool.remaining() == 0
    assert pool.is_exhausted


def test_spaced_pool_holds_only_due_items(
    pool: SessionPool, store: ProgressStore, vocabulary: list[VocabularyItem]
) -> None:
    """Test that spaced sessions skip items that are not due."""
    learned = vocabulary[:3]
    for item in learned:
        store.record_answer(progress_key(item, Direction.BACK_TO_FRONT), True, NOW)

    total = pool.build(vocabulary, SelectionMode.SPACED, DirectionMode.BACK_TO_FRONT, NOW)
    cards = drain(pool)

    assert total == len(vocabulary) - 3
    assert not {card.item for card in cards} & set(learned)
    assert all(card.direction is Direction.BACK_TO_FRONT for card in cards)


def test_random_direction_mode(pool: SessionPool, vocabulary: list[VocabularyItem]) -> None:
    """Test that random direction sessions mix both directions."""
    many = vocabulary * 5
    pool.build(many, SelectionMode.RANDOM, DirectionMode.RANDOM, NOW)

    directions = {card.direction for card in drain(pool)}

    assert directions == {Direction.FRONT_TO_BACK, Direction.BACK_TO_FRONT}


def test_pool_with_nothing_due_is_complete(
    pool: SessionPool, store: ProgressStore, vocabulary: list[VocabularyItem]
) -> None:
    """Test that a pool with no due items signals completion right away."""
    for item in vocabulary:
        store.record_answer(progress_key(item, Direction.FRONT_TO_BACK), True, NOW)

    assert pool.build(vocabulary, SelectionMode.SPACED, DirectionMode.FRONT_TO_BACK, NOW) == 0
    assert pool.draw() is None


def test_empty_selection_raises(pool: SessionPool) -> None:
    """Test drawing without any selected lection."""
    pool.build([], SelectionMode.RANDOM, DirectionMode.FRONT_TO_BACK, NOW)
    with pytest.raises(NoItemsSelectedError):
        pool.draw()


def test_rebuild_replaces_pool(pool: SessionPool, vocabulary: list[VocabularyItem]) -> None:
    """Test that building again starts a new sitting."""
    pool.build(vocabulary, SelectionMode.RANDOM, DirectionMode.FRONT_TO_BACK, NOW)
    pool.draw()
    pool.build(vocabulary[:2], SelectionMode.RANDOM, DirectionMode.FRONT_TO_BACK, NOW)

    assert pool.remaining() == 2
    assert pool.total == 2


def test_clear(pool: SessionPool, vocabulary: list[VocabularyItem]) -> None:
    """Test dropping the pool."""
    pool.build(vocabulary, SelectionMode.RANDOM, DirectionMode.FRONT_TO_BACK, NOW)
    pool.clear()
    assert pool.remaining() == 0
    assert not pool.is_exhausted
