"""Main entry point for the trainer service."""
import logging

from vocasync.app import VocaSync
from vocasync.config import ensure_directories, settings
from vocasync.logging_config import setup_logging
from vocasync.monitoring import start_monitoring

logger = logging.getLogger(__name__)


def run() -> None:
    """Configure logging and metrics, then run the service."""
    ensure_directories()
    setup_logging("Starting VocaSync ...")

    if settings.monitoring.port:
        start_monitoring(settings.monitoring.port)
        logger.info(f"Metrics exposed on port {settings.monitoring.port}")

    VocaSync().run()


if __name__ == "__main__":
    run()
