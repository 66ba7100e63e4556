"""Models for vocabulary content and learning progress."""
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

KEY_SEPARATOR = "||"


def ensure_aware(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment


def truncate_to_millis(moment: datetime) -> datetime:
    """Drop sub-millisecond precision, which serialized timestamps cannot carry."""
    return moment.replace(microsecond=moment.microsecond // 1000 * 1000)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp, returning None for missing or unreadable values.

    Accepts ISO-8601 strings (with or without a ``Z`` suffix), datetimes and
    epoch milliseconds.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value:
        try:
            return ensure_aware(datetime.fromisoformat(value))
        except ValueError:
            return None
    return None


def format_timestamp(moment: Optional[datetime]) -> Optional[str]:
    """Format a timestamp the way browser clients do (``2024-01-01T09:00:00.000Z``)."""
    if moment is None:
        return None
    moment = ensure_aware(moment).astimezone(UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Direction(str, Enum):
    """Quiz orientation a progress record applies to."""
    FRONT_TO_BACK = "frontToBack"
    BACK_TO_FRONT = "backToFront"


class DirectionMode(str, Enum):
    """Direction setting of a review session."""
    FRONT_TO_BACK = "frontToBack"
    BACK_TO_FRONT = "backToFront"
    RANDOM = "random"

    @property
    def progress_direction(self) -> Direction:
        """Direction used for due checks; random sessions track front to back."""
        if self is DirectionMode.BACK_TO_FRONT:
            return Direction.BACK_TO_FRONT
        return Direction.FRONT_TO_BACK


class SelectionMode(str, Enum):
    """How a session pool is filled."""
    SPACED = "spaced"
    RANDOM = "random"


class SyncStatus(str, Enum):
    """Status of one sync target."""
    NOT_SYNCED = "not-synced"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


class ProgressEvent(str, Enum):
    """Change notifications emitted by the progress store."""
    ANSWER_RECORDED = "answer_recorded"
    RESET = "reset"
    SHIFTED = "shifted"
    IMPORTED = "imported"
    REMOTE_ADOPTED = "remote_adopted"
    REMOTE_RESET = "remote_reset"

    @property
    def is_local(self) -> bool:
        """Whether the change originated on this device and must be pushed."""
        return self in (
            ProgressEvent.ANSWER_RECORDED,
            ProgressEvent.RESET,
            ProgressEvent.SHIFTED,
            ProgressEvent.IMPORTED,
        )


class ContentEvent(str, Enum):
    """Change notifications emitted by the lection service."""
    LECTION_SAVED = "lection_saved"
    LECTION_DELETED = "lection_deleted"
    ORDER_CHANGED = "order_changed"
    REMOTE_ADOPTED = "remote_adopted"


@dataclass(frozen=True)
class VocabularyItem:
    """A front/back vocabulary pair."""
    front: str
    back: str

    def to_dict(self) -> Dict[str, str]:
        return {"front": self.front, "back": self.back}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VocabularyItem":
        return cls(front=str(data.get("front", "")), back=str(data.get("back", "")))


@dataclass(frozen=True)
class Card:
    """An item drawn from a session pool, with the direction to quiz it in."""
    item: VocabularyItem
    direction: Direction

    @property
    def question(self) -> str:
        return self.item.front if self.direction is Direction.FRONT_TO_BACK else self.item.back

    @property
    def answer(self) -> str:
        return self.item.back if self.direction is Direction.FRONT_TO_BACK else self.item.front


@dataclass
class Lection:
    """A named list of vocabulary items."""
    id: str
    name: str
    vocabularies: List[VocabularyItem] = field(default_factory=list)
    read_only: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "vocabularies": [item.to_dict() for item in self.vocabularies],
        }
        if self.read_only:
            data["readOnly"] = True
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Lection":
        """Create a lection from its stored form.

        Raises:
            ValueError: if the data has no id.
        """
        if not isinstance(data, dict) or not data.get("id"):
            raise ValueError(f"Lection data without id: {data!r}")
        vocabularies = [
            VocabularyItem.from_dict(entry)
            for entry in data.get("vocabularies") or []
            if isinstance(entry, dict)
        ]
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            vocabularies=vocabularies,
            read_only=bool(data.get("readOnly", False)),
        )


@dataclass
class ProgressRecord:
    """Learning progress of one item in one direction."""
    correct_count: int = 0
    last_correct: Optional[datetime] = None
    last_wrong: Optional[datetime] = None
    next_review_date: Optional[datetime] = None
    last_updated: datetime = EPOCH

    @property
    def phase(self) -> int:
        """Mastery phase, with phases above 9 bucketed together."""
        return min(self.correct_count, 9)

    def copy(self) -> "ProgressRecord":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correctCount": self.correct_count,
            "lastCorrect": format_timestamp(self.last_correct),
            "lastWrong": format_timestamp(self.last_wrong),
            "nextReviewDate": format_timestamp(self.next_review_date),
            "lastUpdated": format_timestamp(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgressRecord":
        """Build a normalized record from stored data.

        Missing or unreadable fields get their zero value; ``lastUpdated``
        falls back to the most recent of the other timestamps, then to EPOCH.
        """
        count = data.get("correctCount", 0)
        if isinstance(count, bool):
            count = 0
        try:
            count = max(int(count), 0)
        except (TypeError, ValueError, OverflowError):
            count = 0

        last_correct = parse_timestamp(data.get("lastCorrect"))
        last_wrong = parse_timestamp(data.get("lastWrong"))
        next_review_date = parse_timestamp(data.get("nextReviewDate"))
        last_updated = parse_timestamp(data.get("lastUpdated"))
        if last_updated is None:
            known = [t for t in (last_correct, last_wrong, next_review_date) if t is not None]
            last_updated = max(known) if known else EPOCH

        return cls(
            correct_count=count,
            last_correct=last_correct,
            last_wrong=last_wrong,
            next_review_date=next_review_date,
            last_updated=last_updated,
        )


def _escape_key_part(part: str) -> str:
    return part.replace("\\", "\\\\").replace("|", "\\|")


def _unescape_key_part(part: str) -> str:
    result = []
    escaped = False
    for char in part:
        if escaped:
            result.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        else:
            result.append(char)
    return "".join(result)


def progress_key(item: VocabularyItem, direction: Direction) -> str:
    """Key identifying the progress of ``item`` quizzed in ``direction``."""
    return KEY_SEPARATOR.join(
        (_escape_key_part(item.front), _escape_key_part(item.back), Direction(direction).value)
    )


def parse_progress_key(key: str) -> tuple[VocabularyItem, Direction]:
    """Split a progress key back into its item and direction.

    Raises:
        ValueError: if the key was not produced by :func:`progress_key`.
    """
    parts: List[str] = []
    current: List[str] = []
    i = 0
    while i < len(key):
        char = key[i]
        if char == "\\" and i + 1 < len(key):
            current.append(key[i:i + 2])
            i += 2
            continue
        if key.startswith(KEY_SEPARATOR, i):
            parts.append("".join(current))
            current = []
            i += len(KEY_SEPARATOR)
            continue
        current.append(char)
        i += 1
    parts.append("".join(current))

    if len(parts) != 3:
        raise ValueError(f"Malformed progress key: {key!r}")
    front, back, direction = parts
    return VocabularyItem(_unescape_key_part(front), _unescape_key_part(back)), Direction(direction)
