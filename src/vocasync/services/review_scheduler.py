"""Review scheduling: due checks, statistics and forecasts."""
import logging
from datetime import date, datetime, tzinfo
from typing import Callable, Dict, Iterable, List, Optional

from vocasync.config import MAX_PHASE, settings
from vocasync.models.progress_models import Direction, VocabularyItem, ensure_aware, progress_key
from vocasync.services.progress_store import ProgressStore, utc_now

logger = logging.getLogger(__name__)


class ReviewScheduler:
    """Decides which items are due and summarizes progress."""

    def __init__(
        self,
        store: ProgressStore,
        tz: Optional[tzinfo] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the scheduler.

        Args:
            store: Progress store to read records from.
            tz: Timezone whose calendar days the forecast counts in; the
                system local zone when None.
            clock: Source of the current time.
        """
        self.store = store
        self.tz = tz
        self.clock = clock

    def _now(self, now: Optional[datetime]) -> datetime:
        return ensure_aware(now) if now is not None else self.clock()

    def _local_date(self, moment: datetime) -> date:
        return moment.astimezone(self.tz).date()

    def is_due(self, item: VocabularyItem, direction: Direction, now: Optional[datetime] = None) -> bool:
        """Whether ``item`` should be reviewed in ``direction`` now.

        Never-reviewed items and items without a review date are always due.
        """
        record = self.store.get(progress_key(item, direction))
        if record.next_review_date is None:
            return True
        return self._now(now) >= record.next_review_date

    def due_items(
        self, items: Iterable[VocabularyItem], direction: Direction, now: Optional[datetime] = None
    ) -> List[VocabularyItem]:
        """Return the items that are due, in input order."""
        now = self._now(now)
        return [item for item in items if self.is_due(item, direction, now)]

    def due_count(
        self, items: Iterable[VocabularyItem], direction: Direction, now: Optional[datetime] = None
    ) -> int:
        """Count the items that are due."""
        return len(self.due_items(items, direction, now))

    def forecast(
        self,
        items: Iterable[VocabularyItem],
        direction: Direction,
        horizon_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[int]:
        """Count reviews falling due on each of the next ``horizon_days`` calendar days.

        Entry ``d - 1`` holds the items whose review date lies ``d`` days
        after today. Items already due are the current backlog and are not
        counted.
        """
        now = self._now(now)
        if horizon_days is None:
            horizon_days = settings.learning.forecast_horizon_days
        if horizon_days <= 0:
            return []

        counts = [0] * horizon_days
        today = self._local_date(now)
        for item in items:
            record = self.store.get(progress_key(item, direction))
            if record.next_review_date is None or now >= record.next_review_date:
                continue
            offset = (self._local_date(record.next_review_date) - today).days
            if 1 <= offset <= horizon_days:
                counts[offset - 1] += 1
        return counts

    def phase_histogram(self, items: Iterable[VocabularyItem], direction: Direction) -> Dict[int, int]:
        """Count items per phase, with phases of 9 and above in one bucket."""
        histogram = {phase: 0 for phase in range(MAX_PHASE + 1)}
        for item in items:
            histogram[self.store.get(progress_key(item, direction)).phase] += 1
        return histogram
