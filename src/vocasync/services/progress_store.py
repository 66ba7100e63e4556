"""Progress store for per-item learning progress."""
import json
import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from vocasync.models.progress_models import (
    ProgressEvent,
    ProgressRecord,
    ensure_aware,
    format_timestamp,
    parse_timestamp,
    truncate_to_millis,
)
from vocasync.monitoring import answers_recorded, progress_resets
from vocasync.services.intervals import next_review_after
from vocasync.services.local_storage import LocalStorage, LocalStorageError

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]


def utc_now() -> datetime:
    return truncate_to_millis(datetime.now(UTC))


class ProgressStore:
    """In-memory map of progress records, persisted to local storage on every mutation."""

    PROGRESS_KEY = "vocabularyProgress"
    LAST_LOCAL_UPDATE_KEY = "lastLocalUpdate"
    LAST_RESET_KEY = "lastProgressReset"

    def __init__(self, storage: LocalStorage, clock: Callable[[], datetime] = utc_now):
        """Initialize the store over a local storage and a clock."""
        self.storage = storage
        self.clock = clock
        self.records: Dict[str, ProgressRecord] = {}
        self.last_local_update: Optional[datetime] = None
        self.last_reset: Optional[datetime] = None
        self.dirty = False
        self._listeners: List[ProgressListener] = []

    def _now(self, now: Optional[datetime]) -> datetime:
        return truncate_to_millis(ensure_aware(now) if now is not None else self.clock())

    # Serialization

    @staticmethod
    def to_json_map(records: Dict[str, ProgressRecord]) -> Dict[str, Dict[str, Any]]:
        """Convert records to their JSON form."""
        return {key: record.to_dict() for key, record in records.items()}

    @staticmethod
    def records_from_json_map(data: Any) -> Dict[str, ProgressRecord]:
        """Normalize a JSON progress map, dropping entries that are not objects."""
        if not isinstance(data, dict):
            return {}
        records = {}
        for key, value in data.items():
            if not isinstance(value, dict):
                logger.warning(f"Dropping malformed progress entry {key!r}: {value!r}")
                continue
            records[str(key)] = ProgressRecord.from_dict(value)
        return records

    # Persistence

    def load(self) -> None:
        """Load progress from local storage, normalizing every record.

        Unreadable data is discarded and the store starts empty.
        """
        raw = self.storage.get_item(self.PROGRESS_KEY)
        data: Any = {}
        if raw is not None:
            try:
                data = json.loads(raw)
                if not isinstance(data, dict):
                    raise ValueError(f"expected an object, got {type(data).__name__}")
            except ValueError as e:
                logger.error(f"Error loading learning progress, starting empty: {e}")
                self.storage.remove_item(self.PROGRESS_KEY)
                data = {}

        self.records = self.records_from_json_map(data)
        self.last_local_update = self._load_timestamp(self.LAST_LOCAL_UPDATE_KEY)
        self.last_reset = self._load_timestamp(self.LAST_RESET_KEY)
        self.dirty = False

        if raw is not None:
            try:
                self._persist()
            except LocalStorageError as e:
                logger.error(f"Could not write back normalized progress: {e}")

        logger.info(f"Loaded {len(self.records)} progress records")

    def _load_timestamp(self, key: str) -> Optional[datetime]:
        raw = self.storage.get_item(key)
        if raw is None:
            return None
        moment = parse_timestamp(raw.strip().strip('"'))
        if moment is None:
            logger.warning(f"Ignoring unreadable timestamp in {key!r}: {raw!r}")
        return moment

    def _store_timestamp(self, key: str, moment: Optional[datetime]) -> None:
        if moment is None:
            self.storage.remove_item(key)
        else:
            self.storage.set_item(key, format_timestamp(moment))

    def _persist(self) -> None:
        self.storage.set_item(self.PROGRESS_KEY, json.dumps(self.to_json_map(self.records)))
        self._store_timestamp(self.LAST_LOCAL_UPDATE_KEY, self.last_local_update)
        self._store_timestamp(self.LAST_RESET_KEY, self.last_reset)

    def _commit(self, event: ProgressEvent) -> None:
        """Persist and notify listeners; listeners run even if persisting fails."""
        try:
            self._persist()
        finally:
            self._notify(event)

    # Listeners

    def add_listener(self, listener: ProgressListener) -> None:
        """Register a callback invoked after every change."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ProgressListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, event: ProgressEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Progress listener {listener!r} failed on {event.value}: {e}")

    # Reads

    def get(self, key: str) -> ProgressRecord:
        """Return the record for ``key`` or a fresh zero record (not inserted)."""
        record = self.records.get(key)
        return record.copy() if record else ProgressRecord()

    def snapshot(self) -> Dict[str, ProgressRecord]:
        """Return a deep copy of all records."""
        return {key: record.copy() for key, record in self.records.items()}

    @property
    def has_records(self) -> bool:
        return bool(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def __contains__(self, key: str) -> bool:
        return key in self.records

    def statistics(self) -> Dict[str, int]:
        """Summary counts over all records."""
        return {
            "total_records": len(self.records),
            "total_learned": sum(1 for record in self.records.values() if record.correct_count > 0),
            "total_reviews": sum(record.correct_count for record in self.records.values()),
        }

    # Local mutations

    def record_answer(self, key: str, correct: bool, now: Optional[datetime] = None) -> ProgressRecord:
        """Record an answer for ``key`` and reschedule it.

        A correct answer advances the phase and schedules the next review by
        the interval table; a wrong answer resets the phase and makes the item
        due immediately.
        """
        now = self._now(now)
        record = self.records.get(key)
        if record is None:
            record = ProgressRecord()
            self.records[key] = record

        if correct:
            record.correct_count += 1
            record.last_correct = now
            record.next_review_date = next_review_after(record.correct_count, now)
        else:
            record.correct_count = 0
            record.last_wrong = now
            record.next_review_date = now
        record.last_updated = now

        self.last_local_update = now
        self.dirty = True
        answers_recorded.labels(result="correct" if correct else "wrong").inc()
        logger.debug(f"Recorded {'correct' if correct else 'wrong'} answer for {key!r}, phase {record.correct_count}")

        self._commit(ProgressEvent.ANSWER_RECORDED)
        return record.copy()

    def reset_all(self, now: Optional[datetime] = None) -> None:
        """Clear every record and stamp the reset marker."""
        now = self._now(now)
        count = len(self.records)
        self.records = {}
        self.last_reset = now
        self.last_local_update = now
        self.dirty = True
        progress_resets.labels(origin="local").inc()
        logger.info(f"Reset learning progress ({count} records cleared)")

        self._commit(ProgressEvent.RESET)

    def skip_one_day(self, now: Optional[datetime] = None) -> int:
        """Move every scheduled review one day earlier.

        Returns:
            The number of records that were shifted.
        """
        now = self._now(now)
        shifted = 0
        for record in self.records.values():
            if record.next_review_date is not None:
                record.next_review_date -= timedelta(days=1)
                shifted += 1

        self.last_local_update = now
        self.dirty = True
        logger.info(f"Advanced {shifted} vocabularies by 1 day")

        self._commit(ProgressEvent.SHIFTED)
        return shifted

    def import_records(self, records: Dict[str, ProgressRecord], now: Optional[datetime] = None) -> None:
        """Replace all records with imported ones as a local change."""
        self.records = {key: record.copy() for key, record in records.items()}
        self.last_local_update = self._now(now)
        self.dirty = True
        logger.info(f"Imported {len(self.records)} progress records")

        self._commit(ProgressEvent.IMPORTED)

    def mark_clean(self) -> None:
        """Mark the current state as pushed to remote stores."""
        self.dirty = False

    # Remote-originated mutations

    def adopt_remote(self, records: Dict[str, ProgressRecord], remote_timestamp: Optional[datetime]) -> None:
        """Replace all records with a remote snapshot."""
        self.records = {key: record.copy() for key, record in records.items()}
        self.last_local_update = truncate_to_millis(remote_timestamp) if remote_timestamp else None
        self.dirty = False
        logger.info(f"Adopted {len(self.records)} progress records from remote")

        self._commit(ProgressEvent.REMOTE_ADOPTED)

    def apply_remote_reset(self, reset_timestamp: datetime) -> None:
        """Clear every record because a newer reset happened elsewhere."""
        count = len(self.records)
        self.records = {}
        reset_timestamp = truncate_to_millis(reset_timestamp)
        self.last_reset = reset_timestamp
        self.last_local_update = reset_timestamp
        self.dirty = False
        progress_resets.labels(origin="remote").inc()
        logger.info(f"Applied remote progress reset from {format_timestamp(reset_timestamp)} ({count} records cleared)")

        self._commit(ProgressEvent.REMOTE_RESET)
