"""Session pool sampling vocabulary without replacement."""
import logging
import random
from datetime import datetime
from typing import Iterable, List, Optional

from vocasync.models.progress_models import Card, Direction, DirectionMode, SelectionMode, VocabularyItem
from vocasync.monitoring import session_pools_built
from vocasync.services.review_scheduler import ReviewScheduler

logger = logging.getLogger(__name__)


class NoItemsSelectedError(Exception):
    """Raised when drawing from a pool whose source selection was empty."""


class SessionPool:
    """Items eligible in the current review sitting, consumed by removal."""

    def __init__(self, scheduler: ReviewScheduler, rng: Optional[random.Random] = None):
        """Initialize an empty pool."""
        self.scheduler = scheduler
        self.rng = rng or random.Random()
        self.selection_mode = SelectionMode.RANDOM
        self.direction_mode = DirectionMode.FRONT_TO_BACK
        self.total = 0
        self._items: List[VocabularyItem] = []
        self._selection_size = 0

    def build(
        self,
        items: Iterable[VocabularyItem],
        selection_mode: SelectionMode,
        direction_mode: DirectionMode,
        now: Optional[datetime] = None,
    ) -> int:
        """Fill the pool for a new sitting.

        Spaced sessions hold only the items due in the session's direction;
        random sessions hold every selected item.

        Returns:
            The number of items in the pool.
        """
        items = list(items)
        self.selection_mode = SelectionMode(selection_mode)
        self.direction_mode = DirectionMode(direction_mode)
        self._selection_size = len(items)

        if self.selection_mode is SelectionMode.SPACED:
            self._items = self.scheduler.due_items(items, self.direction_mode.progress_direction, now)
        else:
            self._items = items
        self.total = len(self._items)

        session_pools_built.labels(mode=self.selection_mode.value).inc()
        logger.info(
            f"Built {self.selection_mode.value} session pool: {self.total} of {self._selection_size} items "
            f"({self.direction_mode.value})"
        )
        return self.total

    def draw(self) -> Optional[Card]:
        """Remove and return a random card, or None once the sitting is complete.

        Raises:
            NoItemsSelectedError: if the pool was built from an empty selection.
        """
        if self._selection_size == 0:
            raise NoItemsSelectedError("Please select at least one lection")
        if not self._items:
            return None

        index = self.rng.randrange(len(self._items))
        item = self._items.pop(index)

        if self.direction_mode is DirectionMode.RANDOM:
            direction = self.rng.choice([Direction.FRONT_TO_BACK, Direction.BACK_TO_FRONT])
        else:
            direction = self.direction_mode.progress_direction
        return Card(item=item, direction=direction)

    def remaining(self) -> int:
        """Number of items left in the pool."""
        return len(self._items)

    @property
    def is_exhausted(self) -> bool:
        return self._selection_size > 0 and not self._items

    def clear(self) -> None:
        """Drop the pool, e.g. when the selection or direction changes."""
        self._items = []
        self._selection_size = 0
        self.total = 0
