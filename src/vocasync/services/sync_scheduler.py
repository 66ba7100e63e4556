"""Service for running periodic sync tasks."""
import asyncio
import logging
from typing import Dict, Optional

from vocasync.config import settings
from vocasync.services.reconciler import Reconciler

logger = logging.getLogger(__name__)


class SyncSchedulerService:
    """Runs the auto-sync loop and other periodic tasks on the event loop."""

    def __init__(
        self,
        reconciler: Reconciler,
        interval: Optional[float] = None,
        retry_delay: Optional[float] = None,
    ):
        """Initialize the service with the reconciler whose file store is polled."""
        self.reconciler = reconciler
        self.interval = interval if interval is not None else settings.sync.auto_sync_interval
        self.retry_delay = retry_delay if retry_delay is not None else settings.sync.retry_delay
        self.tasks: Dict[str, asyncio.Task] = {}
        self.running = False

    async def start(self) -> None:
        """Start the scheduler service."""
        if self.running:
            return

        self.running = True
        logger.info("Starting sync scheduler service...")

        if self.reconciler.file_store is not None:
            self.tasks["auto_sync"] = asyncio.create_task(self._run_auto_sync())

    async def stop(self) -> None:
        """Stop the scheduler service."""
        if not self.running:
            return

        self.running = False
        logger.info("Stopping sync scheduler service...")

        for task in self.tasks.values():
            task.cancel()

        await asyncio.gather(*self.tasks.values(), return_exceptions=True)
        self.tasks.clear()

    async def _run_auto_sync(self) -> None:
        """Reconcile with the file store every interval."""
        while self.running:
            try:
                await asyncio.sleep(self.interval)
                logger.debug("Running periodic file store sync")
                await self.reconciler.reconcile_now()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in auto-sync task: %s", str(e))
                await asyncio.sleep(self.retry_delay)
