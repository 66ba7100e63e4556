"""Configuration settings for the trainer."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Define base directory
BASE_DIR = Path(__file__).parent.parent.parent

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


# Define data directories from environment variables
DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))
FILE_STORE_DIR = Path(os.getenv("FILE_STORE_DIR", str(DATA_DIR / "cloud")))

# Learning settings
SPACED_INTERVALS = {
    0: 0,  # new vocabulary, due immediately
    1: 1,
    2: 3,
    3: 7,
    4: 14,
    5: 29,
    6: 50,
    7: 70,
    8: 100,
    9: 300,  # phase >= 9
}
MAX_PHASE = max(SPACED_INTERVALS)


def ensure_directories() -> None:
    """Ensure all required directories exist."""
    directories = [
        DATA_DIR,
        FILE_STORE_DIR,
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)


@dataclass
class PathSettings:
    """Path configuration settings."""
    base_dir: Path = BASE_DIR
    data_dir: Path = DATA_DIR
    file_store_dir: Path = FILE_STORE_DIR


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///vocasync.db")
    echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    rotation: str = os.getenv("LOG_ROTATION", "midnight")
    interval: int = int(os.getenv("LOG_INTERVAL", "1"))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "7"))


@dataclass
class LearningSettings:
    """Spaced repetition settings."""
    spaced_intervals: dict[int, int] = field(default_factory=lambda: dict(SPACED_INTERVALS))
    forecast_horizon_days: int = int(os.getenv("FORECAST_HORIZON_DAYS", "7"))
    local_storage_quota_bytes: int = int(os.getenv("LOCAL_STORAGE_QUOTA_BYTES", str(5 * 1024 * 1024)))


@dataclass
class SyncSettings:
    """Remote synchronization settings."""
    user_id: str = os.getenv("SYNC_USER_ID", "")
    filename: str = os.getenv("SYNC_FILENAME", "vocabulary-data.json")
    auto_sync_interval: int = int(os.getenv("AUTO_SYNC_INTERVAL", "300"))  # 5 minutes
    retry_delay: int = int(os.getenv("SYNC_RETRY_DELAY", "60"))
    file_store_enabled: bool = os.getenv("SYNC_FILE_STORE_ENABLED", "true").lower() == "true"


@dataclass
class MonitoringSettings:
    """Metrics endpoint settings."""
    port: int = int(os.getenv("METRICS_PORT", "0"))


def get_path_settings() -> PathSettings:
    """Get path settings."""
    return PathSettings()


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_learning_settings() -> LearningSettings:
    """Get learning settings."""
    return LearningSettings()


def get_sync_settings() -> SyncSettings:
    """Get sync settings."""
    return SyncSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    paths: PathSettings = field(default_factory=get_path_settings)
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    learning: LearningSettings = field(default_factory=get_learning_settings)
    sync: SyncSettings = field(default_factory=get_sync_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        intervals = self.learning.spaced_intervals
        if sorted(intervals) != list(range(len(intervals))):
            raise ValueError("SPACED_INTERVALS must cover consecutive phases starting at 0")

        if intervals[0] != 0:
            raise ValueError("Phase 0 must be due immediately")

        days = [intervals[phase] for phase in sorted(intervals)]
        if any(later < earlier for earlier, later in zip(days, days[1:])):
            raise ValueError("SPACED_INTERVALS must be non-decreasing")

        if self.learning.forecast_horizon_days < 1:
            raise ValueError("FORECAST_HORIZON_DAYS must be positive")

        if self.learning.local_storage_quota_bytes < 1:
            raise ValueError("LOCAL_STORAGE_QUOTA_BYTES must be positive")

        if self.sync.auto_sync_interval < 1:
            raise ValueError("AUTO_SYNC_INTERVAL must be positive")

        if self.sync.retry_delay < 0:
            raise ValueError("SYNC_RETRY_DELAY cannot be negative")


# Create global settings instance
settings = Settings()
settings.validate()
