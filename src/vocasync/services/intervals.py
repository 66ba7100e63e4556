"""Interval table mapping a mastery phase to a review delay."""
from datetime import datetime, timedelta

from vocasync.config import MAX_PHASE, SPACED_INTERVALS


def interval_days(phase: int) -> int:
    """Days until the next review for an item in ``phase``.

    Phases at or above the table maximum clamp to its last entry, negative
    phases to 0.
    """
    if phase >= MAX_PHASE:
        return SPACED_INTERVALS[MAX_PHASE]
    if phase <= 0:
        return 0
    return SPACED_INTERVALS.get(phase, 0)


def next_review_after(phase: int, moment: datetime) -> datetime:
    """Timestamp of the next review for an item that reached ``phase`` at ``moment``."""
    return moment + timedelta(days=interval_days(phase))
