"""Reconciliation of learning progress and content with remote stores.

Two kinds of remote store are supported. A push store (real-time database)
notifies every connected client of changes; it is reconciled once at startup
and then live, on every notification. A file store holds one JSON document
and is reconciled on demand or by a periodic timer.

Conflicts are resolved last-write-wins on the whole snapshot, comparing the
local ``last_local_update`` with the remote upload time. Resets are stronger:
a remote reset marker newer than the local one always empties local progress.
"""
import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from vocasync.config import settings
from vocasync.models.progress_models import (
    EPOCH,
    ContentEvent,
    ProgressEvent,
    ProgressRecord,
    SyncStatus,
    format_timestamp,
    parse_timestamp,
)
from vocasync.monitoring import sync_duration, sync_operations
from vocasync.services.lection_service import LectionService
from vocasync.services.local_storage import LocalStorage
from vocasync.services.progress_store import ProgressStore, utc_now
from vocasync.services.remote_keys import decode_progress_map, encode_progress_map
from vocasync.services.remote_stores import FileStore, PushStore, Unsubscribe

logger = logging.getLogger(__name__)

PUSH_TARGET = "push"
FILE_TARGET = "file"

SYNC_FILE_VERSION = "1.0"
LAST_SYNC_KEY = "lastSyncTime"

PROGRESS_CHANNELS = ("progress", "lastProgressReset")
CONTENT_CHANNELS = ("lections", "lectionOrder")

StatusListener = Callable[[str, SyncStatus], None]


class SyncDecision(str, Enum):
    """Outcome of comparing a local and a remote snapshot."""
    ADOPT_REMOTE = "adopt_remote"
    PUSH_LOCAL = "push_local"
    NOOP = "noop"


def _pick_record(local: ProgressRecord, remote: ProgressRecord) -> ProgressRecord:
    if remote.last_updated != local.last_updated:
        return remote if remote.last_updated > local.last_updated else local
    if remote.correct_count != local.correct_count:
        return remote if remote.correct_count > local.correct_count else local
    return local


class Reconciler:
    """Keeps the local progress and content consistent with remote stores."""

    def __init__(
        self,
        store: ProgressStore,
        lections: LectionService,
        storage: LocalStorage,
        push_store: Optional[PushStore] = None,
        file_store: Optional[FileStore] = None,
        user_id: str = "",
        filename: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the reconciler and start listening to local changes."""
        self.store = store
        self.lections = lections
        self.storage = storage
        self.push_store = push_store
        self.file_store = file_store
        self.user_id = user_id
        self.filename = filename or settings.sync.filename
        self.clock = clock

        self.file_handle: Any = None
        self._busy: Dict[str, bool] = {PUSH_TARGET: False, FILE_TARGET: False}
        self._pending: Dict[str, bool] = {PUSH_TARGET: False, FILE_TARGET: False}
        self._queued: Dict[str, Tuple[str, Callable[[], Awaitable[None]]]] = {}
        self._status: Dict[str, SyncStatus] = {PUSH_TARGET: SyncStatus.NOT_SYNCED, FILE_TARGET: SyncStatus.NOT_SYNCED}
        self._last_sync: Dict[str, Optional[datetime]] = {PUSH_TARGET: None, FILE_TARGET: None}
        self._remote_reset_seen: Optional[datetime] = None
        self._unsubscribers: Dict[str, Unsubscribe] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._status_listeners: List[StatusListener] = []

        self.store.add_listener(self._on_progress_event)
        self.lections.add_listener(self._on_content_event)

    # Status

    @property
    def push_enabled(self) -> bool:
        return self.push_store is not None and bool(self.user_id)

    @property
    def is_live(self) -> bool:
        return bool(self._unsubscribers)

    def status(self, target: str) -> SyncStatus:
        return self._status[target]

    def last_sync_time(self, target: str) -> Optional[datetime]:
        return self._last_sync[target]

    def is_busy(self, target: str) -> bool:
        return self._busy[target]

    def add_status_listener(self, listener: StatusListener) -> None:
        """Register a callback invoked with ``(target, status)`` on status changes."""
        if listener not in self._status_listeners:
            self._status_listeners.append(listener)

    def remove_status_listener(self, listener: StatusListener) -> None:
        if listener in self._status_listeners:
            self._status_listeners.remove(listener)

    def _set_status(self, target: str, status: SyncStatus) -> None:
        self._status[target] = status
        for listener in list(self._status_listeners):
            try:
                listener(target, status)
            except Exception as e:
                logger.error(f"Status listener {listener!r} failed: {e}")

    # Conflict resolution

    @staticmethod
    def decide(
        local_timestamp: Optional[datetime],
        remote_timestamp: Optional[datetime],
        local_has_records: bool,
    ) -> SyncDecision:
        """Compare snapshot timestamps; an absent remote timestamp counts as EPOCH."""
        remote_timestamp = remote_timestamp or EPOCH
        if local_timestamp is None or remote_timestamp > local_timestamp:
            return SyncDecision.ADOPT_REMOTE
        if local_timestamp > remote_timestamp and local_has_records:
            return SyncDecision.PUSH_LOCAL
        return SyncDecision.NOOP

    @staticmethod
    def merge_progress(
        local: Dict[str, ProgressRecord], remote: Dict[str, ProgressRecord]
    ) -> Dict[str, ProgressRecord]:
        """Merge two snapshots record by record.

        The record with the later ``last_updated`` wins; on a tie the one with
        more correct answers wins; on a full tie the local record is kept.
        """
        merged = {}
        for key in local.keys() | remote.keys():
            mine, theirs = local.get(key), remote.get(key)
            if theirs is None:
                merged[key] = mine.copy()
            elif mine is None:
                merged[key] = theirs.copy()
            else:
                merged[key] = _pick_record(mine, theirs).copy()
        return merged

    def _reset_overrides(self, remote_reset: Optional[datetime], local_reset: Optional[datetime]) -> bool:
        return remote_reset is not None and (local_reset is None or remote_reset > local_reset)

    # Task plumbing

    def _spawn(self, coro: Awaitable[Any]) -> Optional[asyncio.Task]:
        """Run ``coro`` in the background without blocking the caller."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("No running event loop, remote update deferred to the next sync")
            return None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _attempt(self, target: str, operation: str, func: Callable[[], Awaitable[None]]) -> bool:
        """Run one remote operation; failures leave local state untouched."""
        with sync_duration.labels(target=target).time():
            try:
                await func()
            except Exception as e:
                sync_operations.labels(target=target, operation=operation, outcome="error").inc()
                logger.error(f"Sync {operation} on {target} store failed: {e}")
                self._set_status(target, SyncStatus.ERROR)
                return False
        sync_operations.labels(target=target, operation=operation, outcome="success").inc()
        self._last_sync[target] = self.clock()
        self._set_status(target, SyncStatus.SYNCED)
        return True

    async def _guarded(
        self,
        target: str,
        operation: str,
        func: Callable[[], Awaitable[None]],
        queue_key: Optional[str] = None,
    ) -> bool:
        """Run ``func`` unless another sync on ``target`` is in flight.

        A request arriving while the push store is busy is coalesced: content
        writes (those with a ``queue_key``) are replayed in arrival order and
        the local progress is pushed once more when the running operation
        ends. File store requests arriving while busy are dropped.
        """
        if self._busy[target]:
            if target == PUSH_TARGET and queue_key is not None:
                logger.debug(f"Push store busy, queueing {operation}")
                self._queued.pop(queue_key, None)
                self._queued[queue_key] = (operation, func)
            else:
                logger.debug(f"Sync on {target} store already in progress, coalescing {operation}")
                self._pending[target] = True
            return False

        self._busy[target] = True
        self._set_status(target, SyncStatus.SYNCING)
        try:
            ok = await self._attempt(target, operation, func)
            while ok and target == PUSH_TARGET and (self._queued or self._pending[target]):
                if self._queued:
                    queued_key = next(iter(self._queued))
                    queued_operation, queued_func = self._queued.pop(queued_key)
                    ok = await self._attempt(target, queued_operation, queued_func)
                else:
                    self._pending[target] = False
                    ok = await self._attempt(target, "push_progress", self._write_local_state)
        finally:
            self._busy[target] = False
            self._pending[target] = False
            if target == PUSH_TARGET and self._queued:
                logger.warning(f"Dropping {len(self._queued)} queued push store writes after a failed sync")
                self._queued.clear()
        return ok

    # Local change listeners

    def _on_progress_event(self, event: ProgressEvent) -> None:
        if not event.is_local:
            return
        if self.push_enabled:
            self._spawn(self.push_progress())

    def _on_content_event(self, event: ContentEvent, lection_id: Optional[str]) -> None:
        if not self.push_enabled:
            return
        if event is ContentEvent.LECTION_SAVED and lection_id:
            self._spawn(self.push_lection(lection_id))
        elif event is ContentEvent.LECTION_DELETED and lection_id:
            self._spawn(self.delete_remote_lection(lection_id))
        elif event is ContentEvent.ORDER_CHANGED:
            self._spawn(self.push_order())

    # Push store paths and writes

    def _path(self, *parts: str) -> str:
        return "/".join(("users", self.user_id) + parts)

    async def _write_progress(self) -> None:
        stamp = self.store.last_local_update or self.clock()
        payload = {
            "progress": encode_progress_map(ProgressStore.to_json_map(self.store.records)),
            "lastUpload": format_timestamp(stamp),
        }
        await self.push_store.write(self._path("progress"), payload)
        logger.info(f"Progress synced to push store: {len(payload['progress'])} items")
        if self.store.last_local_update == stamp:
            self.store.mark_clean()

    async def _write_reset_marker(self) -> None:
        last_reset = self.store.last_reset
        if last_reset is None:
            return
        if self._remote_reset_seen is not None and last_reset <= self._remote_reset_seen:
            return
        await self.push_store.write(self._path("lastProgressReset"), format_timestamp(last_reset))
        self._remote_reset_seen = last_reset
        logger.info(f"Progress reset marker synced: {format_timestamp(last_reset)}")

    async def _write_local_state(self) -> None:
        await self._write_reset_marker()
        await self._write_progress()

    async def push_progress(self) -> bool:
        """Push the local progress (and a newer local reset marker) to the push store."""
        if not self.push_enabled:
            return False
        return await self._guarded(PUSH_TARGET, "push_progress", self._write_local_state)

    async def push_lection(self, lection_id: str) -> bool:
        """Push one lection and the lection order."""
        if not self.push_enabled:
            return False
        if self.lections.get_lection(lection_id) is None:
            logger.warning(f"Not syncing lection {lection_id}: not found locally")
            return False

        async def _write() -> None:
            lection = self.lections.get_lection(lection_id)
            if lection is None:
                logger.debug(f"Lection {lection_id} was removed before it could be pushed")
                return
            await self.push_store.write(self._path("lections", lection.id), lection.to_dict())
            await self.push_store.write(self._path("lectionOrder"), self.lections.get_order())
            logger.info(f"Lection synced to push store: {lection.name}")

        return await self._guarded(PUSH_TARGET, "push_lection", _write, queue_key=f"lection:{lection_id}")

    async def delete_remote_lection(self, lection_id: str) -> bool:
        """Delete one lection remotely and push the new order."""
        if not self.push_enabled:
            return False

        async def _delete() -> None:
            await self.push_store.delete(self._path("lections", lection_id))
            await self.push_store.write(self._path("lectionOrder"), self.lections.get_order())
            logger.info(f"Lection deleted from push store: {lection_id}")

        return await self._guarded(PUSH_TARGET, "delete_lection", _delete, queue_key=f"lection:{lection_id}")

    async def push_order(self) -> bool:
        """Push the lection order."""
        if not self.push_enabled:
            return False

        async def _write() -> None:
            await self.push_store.write(self._path("lectionOrder"), self.lections.get_order())

        return await self._guarded(PUSH_TARGET, "push_order", _write, queue_key="order")

    async def _write_all_lections(self) -> None:
        lections = self.lections.get_all_lections()
        # Replaces the whole node, dropping lections deleted locally
        await self.push_store.write(self._path("lections"), {lection.id: lection.to_dict() for lection in lections})
        await self.push_store.write(self._path("lectionOrder"), self.lections.get_order())
        logger.info(f"All lections synced to push store: {len(lections)}")

    async def push_all_lections(self) -> bool:
        """Replace the remote lections and order with the local ones."""
        if not self.push_enabled:
            return False
        return await self._guarded(PUSH_TARGET, "push_all_lections", self._write_all_lections, queue_key="lections")

    # Applying remote progress

    def _adopt_remote_progress(self, value: Dict[str, Any], remote_timestamp: Optional[datetime]) -> None:
        records = ProgressStore.records_from_json_map(decode_progress_map(value.get("progress")))
        self.store.adopt_remote(records, remote_timestamp or EPOCH)

    # Live reconciliation

    def _subscribe(self, names: Tuple[str, ...]) -> None:
        handlers = {
            "progress": self._on_remote_progress,
            "lastProgressReset": self._on_remote_reset,
            "lections": self._on_remote_lections,
            "lectionOrder": self._on_remote_order,
        }
        for name in names:
            if name in self._unsubscribers:
                continue
            handler = handlers[name]
            try:
                self._unsubscribers[name] = self.push_store.subscribe(self._path(name), handler)
            except Exception as e:
                sync_operations.labels(target=PUSH_TARGET, operation="subscribe", outcome="error").inc()
                logger.error(f"Could not subscribe to {name}: {e}")
                self._set_status(PUSH_TARGET, SyncStatus.ERROR)

    def start_live_sync(self) -> None:
        """Subscribe to the push store's progress, reset marker and content."""
        if not self.push_enabled:
            return
        self.stop_live_sync()
        logger.info(f"Starting live sync for user {self.user_id}")
        self._subscribe(PROGRESS_CHANNELS + CONTENT_CHANNELS)

    def stop_live_sync(self) -> None:
        """Detach every live listener."""
        for name, unsubscribe in list(self._unsubscribers.items()):
            try:
                unsubscribe()
            except Exception as e:
                logger.error(f"Error unsubscribing from {name}: {e}")
        if self._unsubscribers:
            logger.info("Live sync listeners stopped")
        self._unsubscribers.clear()

    def _on_remote_progress(self, value: Any, exists: bool) -> None:
        if not exists or not isinstance(value, dict):
            logger.debug("No progress in push store")
            if self.store.has_records:
                self._spawn(self.push_progress())
            return

        remote_timestamp = parse_timestamp(value.get("lastUpload"))
        decision = self.decide(self.store.last_local_update, remote_timestamp, self.store.has_records)
        logger.debug(f"Remote progress changed (lastUpload {value.get('lastUpload')}): {decision.value}")
        if decision is SyncDecision.ADOPT_REMOTE:
            self._adopt_remote_progress(value, remote_timestamp)
            self._last_sync[PUSH_TARGET] = self.clock()
        elif decision is SyncDecision.PUSH_LOCAL:
            self._spawn(self.push_progress())

    def _on_remote_reset(self, value: Any, exists: bool) -> None:
        remote_reset = parse_timestamp(value) if exists else None
        if remote_reset is None:
            return
        if self._remote_reset_seen is None or remote_reset > self._remote_reset_seen:
            self._remote_reset_seen = remote_reset
        if self._reset_overrides(remote_reset, self.store.last_reset):
            logger.info(f"Remote progress reset at {format_timestamp(remote_reset)}, clearing local progress")
            self.store.apply_remote_reset(remote_reset)

    def _on_remote_lections(self, value: Any, exists: bool) -> None:
        if not exists or not isinstance(value, dict):
            logger.debug("No lections in push store")
            if self.lections.get_all_lections():
                self._spawn(self.push_all_lections())
            return

        for lection_id, data in value.items():
            try:
                self.lections.store_remote_lection(data)
            except ValueError as e:
                logger.error(f"Skipping unreadable remote lection {lection_id}: {e}")
        logger.debug(f"Lections updated from push store: {len(value)}")

    def _on_remote_order(self, value: Any, exists: bool) -> None:
        if not exists or not isinstance(value, list):
            return
        if [str(lection_id) for lection_id in value] != self.lections.get_order():
            self.lections.store_remote_order(value)

    # Startup reconciliation

    async def reconcile_on_startup(self) -> bool:
        """Reconcile once when connectivity and identity become available.

        The local timestamps are captured before live listeners are attached,
        so live updates arriving meanwhile cannot affect the comparison. The
        content listeners follow once local and remote lections are merged.
        """
        ok = True
        if self.push_enabled:
            local_last_update = self.store.last_local_update
            local_last_reset = self.store.last_reset
            self.stop_live_sync()
            logger.info(f"Starting live sync for user {self.user_id}")
            self._subscribe(PROGRESS_CHANNELS)

            async def _startup() -> None:
                await self._reconcile_push_progress(local_last_update, local_last_reset)
                await self._reconcile_push_content()

            ok = await self._guarded(PUSH_TARGET, "startup", _startup)
            # Content listeners attach only after the content merge
            self._subscribe(CONTENT_CHANNELS)

        if self.file_store is not None:
            ok = await self.reconcile_now() and ok
        return ok

    async def _reconcile_push_progress(
        self, local_last_update: Optional[datetime], local_last_reset: Optional[datetime]
    ) -> None:
        value = await self.push_store.read(self._path("progress"))
        remote_reset = parse_timestamp(await self.push_store.read(self._path("lastProgressReset")))
        if remote_reset is not None and (self._remote_reset_seen is None or remote_reset > self._remote_reset_seen):
            self._remote_reset_seen = remote_reset

        exists = isinstance(value, dict)
        remote_timestamp = parse_timestamp(value.get("lastUpload")) if exists else None
        if exists:
            decision = self.decide(local_last_update, remote_timestamp, self.store.has_records)
        elif self.store.has_records:
            decision = SyncDecision.PUSH_LOCAL
        else:
            decision = SyncDecision.NOOP

        if self._reset_overrides(remote_reset, local_last_reset):
            logger.info(
                f"Remote reset at {format_timestamp(remote_reset)} overrides startup decision {decision.value}"
            )
            self.store.apply_remote_reset(remote_reset)
            return

        logger.info(
            f"Startup progress reconciliation: local {format_timestamp(local_last_update)}, "
            f"remote {format_timestamp(remote_timestamp)} -> {decision.value}"
        )
        if decision is SyncDecision.ADOPT_REMOTE:
            self._adopt_remote_progress(value, remote_timestamp)
            await self._write_reset_marker()
        elif decision is SyncDecision.PUSH_LOCAL:
            await self._write_local_state()
        else:
            await self._write_reset_marker()

    async def _reconcile_push_content(self) -> None:
        remote_lections = await self.push_store.read(self._path("lections"))
        remote_order = await self.push_store.read(self._path("lectionOrder"))
        if isinstance(remote_lections, dict) and remote_lections:
            local_only = self._merge_remote_content(
                list(remote_lections.values()), remote_order if isinstance(remote_order, list) else None
            )
            for lection_id in local_only:
                lection = self.lections.get_lection(lection_id)
                if lection:
                    await self.push_store.write(self._path("lections", lection.id), lection.to_dict())
            if local_only:
                await self.push_store.write(self._path("lectionOrder"), self.lections.get_order())
        elif self.lections.get_all_lections():
            logger.info("Push store has no lections, uploading local lections")
            await self._write_all_lections()

    def _merge_remote_content(self, remote_lections: List[Dict[str, Any]], remote_order: Optional[List[str]]) -> List[str]:
        """Adopt remote lections, keeping user-made local lections the remote lacks.

        Returns:
            Ids of the local-only lections that were kept.
        """
        remote_ids = {str(data.get("id")) for data in remote_lections if isinstance(data, dict)}
        if self.lections.is_default_only():
            local_only = []
        else:
            local_only = [lection for lection in self.lections.get_all_lections() if lection.id not in remote_ids]

        order = [str(lection_id) for lection_id in remote_order or []]
        order.extend(lection.id for lection in local_only)
        self.lections.adopt_remote(remote_lections + [lection.to_dict() for lection in local_only], order)
        return [lection.id for lection in local_only]

    # File store reconciliation

    def _load_sync_marker(self) -> Optional[datetime]:
        raw = self.storage.get_item(LAST_SYNC_KEY)
        return parse_timestamp(raw.strip('"')) if raw else None

    def _save_sync_marker(self, moment: datetime) -> None:
        self.storage.set_item(LAST_SYNC_KEY, format_timestamp(moment))

    def _looks_freshly_provisioned(self, sync_marker: Optional[datetime]) -> bool:
        # Heuristic: an untouched device never holds an intentional edit.
        return (
            sync_marker is None
            and not self.store.has_records
            and self.lections.is_default_only()
        )

    def _file_payload(self) -> Dict[str, Any]:
        return {
            "version": SYNC_FILE_VERSION,
            "lastModified": format_timestamp(self.store.last_local_update or self.clock()),
            "lections": self.lections.export_lections(),
            "progress": ProgressStore.to_json_map(self.store.records),
            "lastProgressReset": format_timestamp(self.store.last_reset),
        }

    async def _upload_file(self) -> None:
        payload = self._file_payload()
        stamp = self.store.last_local_update
        await self.file_store.upload(self.file_handle, payload)
        self._save_sync_marker(parse_timestamp(payload["lastModified"]))
        if self.store.last_local_update == stamp:
            self.store.mark_clean()
        logger.info(f"Uploaded sync file: {len(payload['progress'])} progress items, {len(payload['lections'])} lections")

    @staticmethod
    def _file_lections(data: Dict[str, Any]) -> List[Dict[str, Any]]:
        lections = data.get("lections")
        if not isinstance(lections, list):
            return []
        return [entry for entry in lections if isinstance(entry, dict)]

    def _adopt_file(self, data: Dict[str, Any], remote_timestamp: datetime) -> bool:
        """Replace local state with the sync file.

        Returns:
            True if lections were adopted as well as progress.
        """
        records = ProgressStore.records_from_json_map(data.get("progress"))
        self.store.adopt_remote(records, remote_timestamp)
        lections = self._file_lections(data)
        if lections:
            self.lections.adopt_remote(lections)
        self._save_sync_marker(remote_timestamp)
        logger.info(f"Loaded newer data from sync file ({len(records)} progress items)")
        return bool(lections)

    def _forward_to_push_store(self, content_changed: bool) -> None:
        """Publish state taken from the sync file to the push store."""
        if not self.push_enabled:
            return
        self._spawn(self.push_progress())
        if content_changed:
            self._spawn(self.push_all_lections())

    async def _reconcile_file(self) -> None:
        if self.file_handle is None:
            self.file_handle = await self.file_store.find_or_create(self.filename)

        data = await self.file_store.download(self.file_handle)
        if data is None:
            logger.info("Sync file is empty, uploading local state")
            await self._upload_file()
            return

        remote_timestamp = parse_timestamp(data.get("lastModified")) or EPOCH
        remote_reset = parse_timestamp(data.get("lastProgressReset"))
        local_timestamp = self.store.last_local_update
        sync_marker = self._load_sync_marker()

        if self._reset_overrides(remote_reset, self.store.last_reset):
            logger.info(f"Sync file carries a newer reset ({format_timestamp(remote_reset)}), clearing local progress")
            self.store.apply_remote_reset(remote_reset)
            self._save_sync_marker(remote_timestamp)
            self._forward_to_push_store(False)
            return

        if self._looks_freshly_provisioned(sync_marker):
            logger.info("Local state looks freshly provisioned, preferring sync file")
            self._forward_to_push_store(self._adopt_file(data, remote_timestamp))
            return

        if (
            sync_marker is not None
            and local_timestamp is not None
            and remote_timestamp > sync_marker
            and local_timestamp > sync_marker
        ):
            remote_records = ProgressStore.records_from_json_map(data.get("progress"))
            merged = self.merge_progress(self.store.snapshot(), remote_records)
            logger.info(f"Both sides changed since last sync, merged {len(merged)} progress items")
            remote_lections = self._file_lections(data)
            if remote_lections:
                self._merge_remote_content(remote_lections, [entry["id"] for entry in remote_lections if "id" in entry])
            self.store.adopt_remote(merged, max(self.clock(), remote_timestamp, local_timestamp))
            self._forward_to_push_store(bool(remote_lections))
            await self._upload_file()
            return

        decision = self.decide(local_timestamp, remote_timestamp, True)
        logger.info(
            f"File reconciliation: local {format_timestamp(local_timestamp)}, "
            f"remote {format_timestamp(remote_timestamp)} -> {decision.value}"
        )
        if decision is SyncDecision.ADOPT_REMOTE:
            self._forward_to_push_store(self._adopt_file(data, remote_timestamp))
        elif decision is SyncDecision.PUSH_LOCAL:
            await self._upload_file()
        else:
            self._save_sync_marker(remote_timestamp)

    async def reconcile_now(self) -> bool:
        """Reconcile with the file store; a request made while one runs is ignored."""
        if self.file_store is None:
            return False
        return await self._guarded(FILE_TARGET, "reconcile", self._reconcile_file)

    def push_on_close(self) -> List[asyncio.Task]:
        """Start best-effort final uploads without waiting for them."""
        tasks = []
        if self.push_enabled and self.store.dirty and not self._busy[PUSH_TARGET]:
            task = self._spawn(self._guarded(PUSH_TARGET, "close_push", self._write_local_state))
            if task:
                tasks.append(task)
        if self.file_store is not None and self.file_handle is not None and not self._busy[FILE_TARGET]:
            logger.info("Sending final sync file upload on close")
            task = self._spawn(self._guarded(FILE_TARGET, "close_push", self._upload_file))
            if task:
                tasks.append(task)
        return tasks

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for background sync tasks, including ones they start.

        Returns:
            False if tasks were still running when the timeout expired.
        """
        while True:
            running = [task for task in self._tasks if not task.done()]
            if not running:
                return True
            _, pending = await asyncio.wait(running, timeout=timeout)
            if pending:
                logger.warning(f"{len(pending)} sync tasks still running")
                return False

    async def close(self, timeout: float = 5.0) -> None:
        """Detach listeners and wait briefly for background pushes."""
        self.stop_live_sync()
        self.store.remove_listener(self._on_progress_event)
        self.lections.remove_listener(self._on_content_event)
        await self.wait_idle(timeout)
