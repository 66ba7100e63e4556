"""Trainer facade used by the presentation layer."""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from vocasync.models.progress_models import (
    Card,
    Direction,
    DirectionMode,
    ProgressRecord,
    SelectionMode,
    VocabularyItem,
    format_timestamp,
    progress_key,
)
from vocasync.services.lection_service import LectionService
from vocasync.services.progress_store import ProgressStore, utc_now
from vocasync.services.reconciler import SYNC_FILE_VERSION, Reconciler
from vocasync.services.review_scheduler import ReviewScheduler
from vocasync.services.session_pool import SessionPool

logger = logging.getLogger(__name__)


class Trainer:
    """Single entry point for answering, scheduling, sessions and sync."""

    def __init__(
        self,
        store: ProgressStore,
        lections: LectionService,
        scheduler: ReviewScheduler,
        pool: Optional[SessionPool] = None,
        reconciler: Optional[Reconciler] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.lections = lections
        self.scheduler = scheduler
        self.pool = pool or SessionPool(scheduler)
        self.reconciler = reconciler
        self.clock = clock

    # Answers and scheduling

    def record_answer(
        self, item: VocabularyItem, direction: Direction, correct: bool, now: Optional[datetime] = None
    ) -> ProgressRecord:
        """Record an answer; the change is pushed to remote stores by the reconciler."""
        return self.store.record_answer(progress_key(item, Direction(direction)), correct, now)

    def get_progress(self, item: VocabularyItem, direction: Direction) -> ProgressRecord:
        return self.store.get(progress_key(item, Direction(direction)))

    def is_due(self, item: VocabularyItem, direction: Direction, now: Optional[datetime] = None) -> bool:
        return self.scheduler.is_due(item, Direction(direction), now)

    def due_count(self, items: Iterable[VocabularyItem], direction: Direction, now: Optional[datetime] = None) -> int:
        return self.scheduler.due_count(items, Direction(direction), now)

    def forecast(
        self,
        items: Iterable[VocabularyItem],
        direction: Direction,
        horizon_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[int]:
        return self.scheduler.forecast(items, Direction(direction), horizon_days, now)

    def phase_histogram(self, items: Iterable[VocabularyItem], direction: Direction) -> Dict[int, int]:
        return self.scheduler.phase_histogram(items, Direction(direction))

    def statistics(self) -> Dict[str, int]:
        return self.store.statistics()

    # Sessions

    def build_session_pool(
        self,
        items: Iterable[VocabularyItem],
        mode: SelectionMode,
        direction_mode: DirectionMode,
        now: Optional[datetime] = None,
    ) -> int:
        """Build the pool for a new sitting and return its size."""
        return self.pool.build(items, mode, direction_mode, now)

    def build_session_from_lections(
        self,
        lection_ids: Iterable[str],
        mode: SelectionMode,
        direction_mode: DirectionMode,
        now: Optional[datetime] = None,
    ) -> int:
        """Build the pool from the vocabulary of the selected lections."""
        return self.pool.build(self.lections.collect_items(lection_ids), mode, direction_mode, now)

    def draw_next(self) -> Optional[Card]:
        """Draw the next card, or None when the sitting is complete.

        Raises:
            NoItemsSelectedError: if the pool was built from an empty selection.
        """
        return self.pool.draw()

    def remaining(self) -> int:
        return self.pool.remaining()

    # Bulk progress changes

    def reset_progress(self, now: Optional[datetime] = None) -> None:
        """Clear all progress on this device and, via sync, on every other one."""
        self.pool.clear()
        self.store.reset_all(now)

    def skip_one_day(self, now: Optional[datetime] = None) -> int:
        """Move every review one day earlier, as if a day had passed."""
        self.pool.clear()
        return self.store.skip_one_day(now)

    # Sync

    async def reconcile_on_startup(self) -> bool:
        if self.reconciler is None:
            return False
        return await self.reconciler.reconcile_on_startup()

    async def reconcile_now(self) -> bool:
        if self.reconciler is None:
            return False
        return await self.reconciler.reconcile_now()

    # Backup

    def export_data(self) -> Dict[str, Any]:
        """Return a JSON-ready backup of lections and progress."""
        return {
            "version": SYNC_FILE_VERSION,
            "exportDate": format_timestamp(self.clock()),
            "lections": self.lections.export_lections(),
            "progress": ProgressStore.to_json_map(self.store.records),
        }

    def import_progress(self, data: Dict[str, Any], now: Optional[datetime] = None) -> int:
        """Merge the progress of a backup into local progress.

        Each record is merged with its local counterpart so newer local
        progress is never lost.

        Returns:
            The number of records after the merge.

        Raises:
            ValueError: if ``data`` holds no progress map.
        """
        if not isinstance(data, dict) or not isinstance(data.get("progress"), dict):
            raise ValueError("Backup does not contain a progress map")

        imported = ProgressStore.records_from_json_map(data["progress"])
        merged = Reconciler.merge_progress(self.store.snapshot(), imported)
        self.store.import_records(merged, now)
        logger.info(f"Imported backup with {len(imported)} progress records, {len(merged)} after merge")
        return len(merged)
