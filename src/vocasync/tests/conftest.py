"""Test configuration."""
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Generator

import pytest
from dotenv import load_dotenv

# Set test environment before any imports
os.environ["ENV"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite://")

# Load test environment variables
test_env_path = Path(__file__).parent.parent.parent.parent / ".env.test"
load_dotenv(test_env_path)

# Import after environment setup
from faker import Faker
from sqlalchemy.orm import Session

from vocasync.models.base import SessionLocal, drop_db, init_db
from vocasync.models.progress_models import VocabularyItem
from vocasync.services.lection_service import LectionService
from vocasync.services.local_storage import LocalStorage
from vocasync.services.progress_store import ProgressStore

fake = Faker()


class FakeClock:
    """Controllable clock for tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    drop_db()
    init_db()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def storage(db: Session) -> LocalStorage:
    """Create a local storage over the test database."""
    return LocalStorage(db)


@pytest.fixture
def store(storage: LocalStorage) -> ProgressStore:
    """Create an empty, loaded progress store."""
    store = ProgressStore(storage)
    store.load()
    return store


@pytest.fixture
def lections(storage: LocalStorage) -> LectionService:
    """Create a lection service."""
    return LectionService(storage)


@pytest.fixture
def vocabulary() -> list[VocabularyItem]:
    """Generate distinct vocabulary items."""
    words = fake.words(nb=10, unique=True)
    return [VocabularyItem(word, word.upper() + "!") for word in words]


@pytest.fixture
def clock() -> FakeClock:
    """Create a clock fixed at 2024-01-01 09:00 UTC."""
    return FakeClock(datetime(2024, 1, 1, 9, 0, tzinfo=UTC))
