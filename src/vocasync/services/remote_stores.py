"""Contracts for remote backing stores, with reference adapters."""
import asyncio
import copy
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Any, bool], None]
Unsubscribe = Callable[[], None]

FORBIDDEN_KEY_CHARS = set(".#$/[]")


class RemoteStoreError(Exception):
    """Raised by adapters when a remote operation fails."""


class PushStore(ABC):
    """Remote store that pushes changes to every subscribed client."""

    @abstractmethod
    async def read(self, path: str) -> Optional[Any]:
        """Return the value at ``path`` or None when absent."""

    @abstractmethod
    async def write(self, path: str, value: Any) -> None:
        """Replace the value at ``path``."""

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Remove the value at ``path``."""

    @abstractmethod
    def subscribe(self, path: str, on_change: ChangeCallback) -> Unsubscribe:
        """Call ``on_change(value, exists)`` now and whenever ``path`` changes."""


class FileStore(ABC):
    """Remote store holding one JSON document, fetched and replaced on demand."""

    @abstractmethod
    async def find_or_create(self, filename: str) -> Any:
        """Return a handle for ``filename``, creating the file if needed."""

    @abstractmethod
    async def download(self, handle: Any) -> Optional[Dict[str, Any]]:
        """Return the document behind ``handle`` or None when it is empty."""

    @abstractmethod
    async def upload(self, handle: Any, data: Dict[str, Any]) -> None:
        """Replace the document behind ``handle``."""


def _split_path(path: str) -> List[str]:
    return [segment for segment in path.strip("/").split("/") if segment]


def _check_keys(value: Any, path: str) -> None:
    if isinstance(value, dict):
        for key, child in value.items():
            if not isinstance(key, str) or not key or FORBIDDEN_KEY_CHARS & set(key):
                raise RemoteStoreError(f"Invalid key {key!r} under {path!r}")
            _check_keys(child, f"{path}/{key}")
    elif isinstance(value, list):
        for child in value:
            _check_keys(child, path)


class InMemoryPushStore(PushStore):
    """Process-local push store with the key rules of a hosted real-time database.

    Values form a tree addressed by ``/``-separated paths. Setting
    ``available`` to False makes every operation raise RemoteStoreError.
    """

    def __init__(self) -> None:
        self.tree: Dict[str, Any] = {}
        self.available = True
        self._subscribers: List[Tuple[List[str], ChangeCallback]] = []

    def _ensure_available(self) -> None:
        if not self.available:
            raise RemoteStoreError("Remote store unavailable")

    def _get(self, segments: List[str]) -> Optional[Any]:
        node: Any = self.tree
        for segment in segments:
            if not isinstance(node, dict) or segment not in node:
                return None
            node = node[segment]
        return copy.deepcopy(node)

    def _set(self, segments: List[str], value: Any) -> None:
        if not segments:
            raise RemoteStoreError("Cannot write to the root path")
        node = self.tree
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                child = {}
                node[segment] = child
            node = child
        if value is None:
            node.pop(segments[-1], None)
        else:
            node[segments[-1]] = copy.deepcopy(value)
        self._prune(self.tree)

    def _prune(self, node: Dict[str, Any]) -> None:
        for key in list(node):
            if isinstance(node[key], dict):
                self._prune(node[key])
                if not node[key]:
                    del node[key]

    def _notify(self, changed: List[str]) -> None:
        for segments, callback in list(self._subscribers):
            related = segments[:len(changed)] == changed[:len(segments)]
            if not related:
                continue
            value = self._get(segments)
            try:
                callback(value, value is not None)
            except Exception as e:
                logger.error(f"Subscriber of {'/'.join(segments)} failed: {e}")

    async def read(self, path: str) -> Optional[Any]:
        self._ensure_available()
        return self._get(_split_path(path))

    async def write(self, path: str, value: Any) -> None:
        self._ensure_available()
        segments = _split_path(path)
        for segment in segments:
            if FORBIDDEN_KEY_CHARS & set(segment):
                raise RemoteStoreError(f"Invalid path segment {segment!r}")
        _check_keys(value, path)
        self._set(segments, value)
        self._notify(segments)

    async def delete(self, path: str) -> None:
        await self.write(path, None)

    def subscribe(self, path: str, on_change: ChangeCallback) -> Unsubscribe:
        self._ensure_available()
        entry = (_split_path(path), on_change)
        self._subscribers.append(entry)

        value = self._get(entry[0])
        on_change(value, value is not None)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe


class LocalFileStore(FileStore):
    """File store backed by a local directory, e.g. one mirrored by a cloud client."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    async def find_or_create(self, filename: str) -> Path:
        path = self.directory / filename

        def _touch() -> Path:
            try:
                self.directory.mkdir(parents=True, exist_ok=True)
                path.touch(exist_ok=True)
            except OSError as e:
                raise RemoteStoreError(f"Could not create {path}: {e}") from e
            return path

        return await asyncio.to_thread(_touch)

    async def download(self, handle: Path) -> Optional[Dict[str, Any]]:
        def _read() -> Optional[Dict[str, Any]]:
            try:
                content = Path(handle).read_text(encoding="utf-8")
            except FileNotFoundError:
                return None
            except OSError as e:
                raise RemoteStoreError(f"Could not read {handle}: {e}") from e
            if not content.strip():
                return None
            try:
                data = json.loads(content)
            except ValueError as e:
                raise RemoteStoreError(f"Unreadable sync file {handle}: {e}") from e
            if not isinstance(data, dict):
                raise RemoteStoreError(f"Sync file {handle} does not hold an object")
            return data

        return await asyncio.to_thread(_read)

    async def upload(self, handle: Path, data: Dict[str, Any]) -> None:
        def _write() -> None:
            target = Path(handle)
            tmp = target.with_name(f".{target.name}.tmp")
            try:
                tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
                os.replace(tmp, target)
            except OSError as e:
                raise RemoteStoreError(f"Could not write {target}: {e}") from e

        await asyncio.to_thread(_write)
