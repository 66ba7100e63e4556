"""Main application class."""
import asyncio
import logging
import signal
from typing import Optional

from vocasync.config import ensure_directories, settings
from vocasync.models.base import SessionLocal, init_db
from vocasync.services.lection_service import LectionService
from vocasync.services.local_storage import LocalStorage
from vocasync.services.progress_store import ProgressStore
from vocasync.services.reconciler import Reconciler
from vocasync.services.remote_stores import FileStore, LocalFileStore, PushStore
from vocasync.services.review_scheduler import ReviewScheduler
from vocasync.services.sync_scheduler import SyncSchedulerService
from vocasync.services.trainer import Trainer


class VocaSync:
    """Wires local persistence, the trainer and remote synchronization."""

    def __init__(self, push_store: Optional[PushStore] = None, file_store: Optional[FileStore] = None):
        """Initialize the application.

        Args:
            push_store: Push store adapter; live sync is off without one.
            file_store: File store adapter; defaults to a directory store when
                SYNC_FILE_STORE_ENABLED is set.
        """
        self.push_store = push_store
        self.file_store = file_store
        self.db = None
        self.storage: Optional[LocalStorage] = None
        self.store: Optional[ProgressStore] = None
        self.lections: Optional[LectionService] = None
        self.reconciler: Optional[Reconciler] = None
        self.trainer: Optional[Trainer] = None
        self.scheduler: Optional[SyncSchedulerService] = None
        self.running = False
        self.logger = logging.getLogger(__name__)

    async def start(self) -> None:
        """Start the application."""
        if self.running:
            return

        try:
            init_db()
            self.db = SessionLocal()
            self.storage = LocalStorage(self.db)
            self.logger.info("Database initialized")

            self.store = ProgressStore(self.storage)
            self.store.load()
            self.lections = LectionService(self.storage)
            self.lections.initialize_default_lections()

            if self.file_store is None and settings.sync.file_store_enabled:
                ensure_directories()
                self.file_store = LocalFileStore(settings.paths.file_store_dir)

            self.reconciler = Reconciler(
                self.store,
                self.lections,
                self.storage,
                push_store=self.push_store,
                file_store=self.file_store,
                user_id=settings.sync.user_id,
            )
            self.trainer = Trainer(self.store, self.lections, ReviewScheduler(self.store), reconciler=self.reconciler)
            self.logger.info("Trainer created")

            if self.reconciler.push_enabled or self.file_store is not None:
                await self.trainer.reconcile_on_startup()
                self.logger.info("Startup reconciliation finished")

            self.scheduler = SyncSchedulerService(self.reconciler)
            await self.scheduler.start()
            self.logger.info("Sync scheduler service started")

            self.running = True

        except Exception as e:
            self.logger.error("Failed to start application: %s", str(e))
            await self._shutdown()
            raise

    async def stop(self) -> None:
        """Stop the application."""
        if not self.running:
            return
        await self._shutdown()

    async def _shutdown(self) -> None:
        try:
            if self.reconciler:
                self.reconciler.push_on_close()

            if self.scheduler:
                await self.scheduler.stop()
                self.scheduler = None
                self.logger.info("Sync scheduler service stopped")

            if self.reconciler:
                await self.reconciler.close()
                self.reconciler = None
                self.logger.info("Reconciler closed")

            if self.db:
                self.db.close()
                self.db = None
                self.logger.info("Database session closed")

        finally:
            self.running = False

    def run(self) -> None:
        """Run the application until SIGINT or SIGTERM."""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(stop_event.set))

        try:
            loop.run_until_complete(self.start())
            loop.run_until_complete(stop_event.wait())
            self.logger.info("Received exit signal, shutting down...")
        except KeyboardInterrupt:
            self.logger.info("Received keyboard interrupt")
        finally:
            loop.run_until_complete(self.stop())
            loop.close()
