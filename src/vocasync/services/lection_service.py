"""Service for managing lections (vocabulary content) in local storage."""
import json
import logging
import random
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from vocasync.models.progress_models import ContentEvent, Lection, VocabularyItem
from vocasync.services.local_storage import LocalStorage

logger = logging.getLogger(__name__)

ContentListener = Callable[[ContentEvent, Optional[str]], None]

DEFAULT_LECTION_NAME = "Para Empezar"
DEFAULT_VOCABULARIES = [
    VocabularyItem("hola", "Hallo"),
    VocabularyItem("buenos días", "Guten Morgen"),
    VocabularyItem("gracias", "danke"),
    VocabularyItem("por favor", "bitte"),
]

VOCABULARY_SEPARATOR = "##"


def parse_vocabulary_content(content: str) -> List[VocabularyItem]:
    """Parse ``front ## back`` lines; other lines are ignored."""
    vocabularies = []
    for line in content.splitlines():
        line = line.strip()
        if not line or VOCABULARY_SEPARATOR not in line:
            continue
        parts = line.split(VOCABULARY_SEPARATOR)
        if len(parts) == 2:
            vocabularies.append(VocabularyItem(parts[0].strip(), parts[1].strip()))
    return vocabularies


def vocabularies_to_text(vocabularies: Iterable[VocabularyItem]) -> str:
    """Convert items back to the ``front ## back`` text format."""
    return "\n".join(f"{item.front} {VOCABULARY_SEPARATOR} {item.back}" for item in vocabularies)


class LectionService:
    """Service for storing lections and their order."""

    ORDER_KEY = "lectionOrder"
    LECTION_PREFIX = "lection_"

    def __init__(self, storage: LocalStorage):
        """Initialize the service with a local storage."""
        self.storage = storage
        self._listeners: List[ContentListener] = []

    # Listeners

    def add_listener(self, listener: ContentListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ContentListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, event: ContentEvent, lection_id: Optional[str] = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, lection_id)
            except Exception as e:
                logger.error(f"Content listener {listener!r} failed on {event.value}: {e}")

    # Storage

    def _lection_key(self, lection_id: str) -> str:
        return f"{self.LECTION_PREFIX}{lection_id}"

    def get_order(self) -> List[str]:
        """Return the ordered list of lection ids."""
        raw = self.storage.get_item(self.ORDER_KEY)
        if not raw:
            return []
        try:
            order = json.loads(raw)
        except ValueError as e:
            logger.error(f"Error parsing lection order, resetting it: {e}")
            return []
        if not isinstance(order, list):
            return []
        return [str(lection_id) for lection_id in order]

    def _write_order(self, order: List[str]) -> None:
        self.storage.set_item(self.ORDER_KEY, json.dumps(order))

    def save_order(self, order: List[str]) -> None:
        """Store a new lection order."""
        self._write_order([str(lection_id) for lection_id in order])
        self._notify(ContentEvent.ORDER_CHANGED)

    def get_lection(self, lection_id: str) -> Optional[Lection]:
        """Return one lection, or None if it is missing or unreadable."""
        raw = self.storage.get_item(self._lection_key(lection_id))
        if raw is None:
            return None
        try:
            return Lection.from_dict(json.loads(raw))
        except ValueError as e:
            logger.error(f"Error parsing lection {lection_id}: {e}")
            return None

    def get_all_lections(self) -> List[Lection]:
        """Return all lections in their stored order."""
        lections = []
        for lection_id in self.get_order():
            lection = self.get_lection(lection_id)
            if lection:
                lections.append(lection)
        return lections

    def _write_lection(self, lection: Lection) -> None:
        self.storage.set_item(self._lection_key(lection.id), json.dumps(lection.to_dict()))

    def save_lection(self, lection: Lection) -> Lection:
        """Store a lection, appending it to the order if it is new.

        Raises:
            StorageQuotaExceededError: if local storage is full.
        """
        self._write_lection(lection)
        order = self.get_order()
        if lection.id not in order:
            order.append(lection.id)
            self._write_order(order)
        logger.info(f"Saved lection {lection.name!r} ({len(lection.vocabularies)} vocabularies)")
        self._notify(ContentEvent.LECTION_SAVED, lection.id)
        return lection

    def delete_lection(self, lection_id: str) -> None:
        """Remove a lection and drop it from the order."""
        self.storage.remove_item(self._lection_key(lection_id))
        self._write_order([other for other in self.get_order() if other != lection_id])
        logger.info(f"Deleted lection {lection_id}")
        self._notify(ContentEvent.LECTION_DELETED, lection_id)

    @staticmethod
    def generate_lection_id() -> str:
        """Generate a unique id for a new lection."""
        return f"{int(time.time() * 1000)}_{random.randint(0, 999)}"

    # Content helpers

    def import_text(self, name: str, content: str) -> Optional[Lection]:
        """Create a lection from ``front ## back`` text.

        Returns:
            The new lection, or None if a lection with that name exists or the
            text holds no vocabulary.
        """
        vocabularies = parse_vocabulary_content(content)
        if not vocabularies:
            logger.warning(f"No vocabularies found for lection {name!r}")
            return None
        if any(lection.name == name for lection in self.get_all_lections()):
            logger.info(f"Skipping {name!r} - already exists")
            return None
        return self.save_lection(Lection(id=self.generate_lection_id(), name=name, vocabularies=vocabularies))

    def initialize_default_lections(self) -> bool:
        """Seed the starter lection when no lections exist.

        Returns:
            True if the default lection was created.
        """
        if self.get_all_lections():
            return False
        logger.info("Creating default lection")
        self.save_lection(
            Lection(id=self.generate_lection_id(), name=DEFAULT_LECTION_NAME, vocabularies=list(DEFAULT_VOCABULARIES))
        )
        return True

    def is_default_only(self) -> bool:
        """Whether local content is nothing but the seeded starter lection."""
        lections = self.get_all_lections()
        return all(
            lection.name == DEFAULT_LECTION_NAME and lection.vocabularies == DEFAULT_VOCABULARIES
            for lection in lections
        )

    def collect_items(self, lection_ids: Iterable[str]) -> List[VocabularyItem]:
        """Return the vocabulary of the selected lections, in lection order."""
        selected = set(lection_ids)
        items = []
        for lection in self.get_all_lections():
            if lection.id in selected:
                items.extend(lection.vocabularies)
        return items

    # Remote data

    def export_lections(self) -> List[Dict[str, Any]]:
        return [lection.to_dict() for lection in self.get_all_lections()]

    def adopt_remote(self, lections: List[Dict[str, Any]], order: Optional[List[str]] = None) -> None:
        """Replace local content with remote lections.

        Args:
            lections: Lections in their JSON form; unreadable entries are skipped.
            order: Remote order; lections missing from it are appended in
                the order of ``lections``.
        """
        parsed = []
        for data in lections:
            try:
                parsed.append(Lection.from_dict(data))
            except ValueError as e:
                logger.error(f"Skipping unreadable remote lection: {e}")

        for lection_id in self.get_order():
            self.storage.remove_item(self._lection_key(lection_id))
        for lection in parsed:
            self._write_lection(lection)

        known = [lection.id for lection in parsed]
        ordered = [str(lection_id) for lection_id in order or [] if str(lection_id) in known]
        ordered.extend(lection_id for lection_id in known if lection_id not in ordered)
        self._write_order(ordered)
        logger.info(f"Adopted {len(parsed)} lections from remote")
        self._notify(ContentEvent.REMOTE_ADOPTED)

    def store_remote_lection(self, data: Dict[str, Any]) -> None:
        """Store one lection received from a remote without re-announcing it.

        Raises:
            ValueError: if the data is not a lection.
        """
        lection = Lection.from_dict(data)
        self._write_lection(lection)
        self._notify(ContentEvent.REMOTE_ADOPTED, lection.id)

    def store_remote_order(self, order: List[str]) -> None:
        """Store the order received from a remote without re-announcing it."""
        self._write_order([str(lection_id) for lection_id in order])
        self._notify(ContentEvent.REMOTE_ADOPTED)
