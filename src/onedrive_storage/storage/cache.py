"""Thread-safe path-to-identifier cache for drive items."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from onedrive_storage.graph.models import RemoteEntry
from onedrive_storage.storage.paths import is_descendant, join_path, normalize_path

logger = logging.getLogger(__name__)


class IdentifierCache:
    """Maps normalized paths to the RemoteEntry last seen at that path.

    The lock only guards the dictionary; callers never hold it across a
    remote call, so two threads missing on the same path may both list the
    parent. The later write wins, which is harmless.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, RemoteEntry] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, path: str) -> RemoteEntry | None:
        path = normalize_path(path)
        with self._lock:
            entry = self._entries.get(path)
        if entry is not None:
            logger.debug("[identifier_cache] hit; path:%s;id:%s", path, entry.id)
        return entry

    def put(self, path: str, entry: RemoteEntry) -> None:
        path = normalize_path(path)
        with self._lock:
            previous = self._entries.get(path)
            self._entries[path] = entry
            if previous is not None and previous.is_dir and previous.id != entry.id:
                # A different item now owns the path; its old children are gone.
                self._drop_descendants(path)

    def put_children(
        self,
        dir_path: str,
        entries: Iterable[RemoteEntry],
        replace: bool = False,
    ) -> None:
        """Cache every entry of a directory listing.

        Args:
            dir_path: Path of the listed directory.
            entries: Complete or partial listing of its children.
            replace: When True the listing is complete, so cached direct
                children missing from it (and their descendants) are dropped.
        """
        dir_path = normalize_path(dir_path)
        fresh = {join_path(dir_path, entry.name): entry for entry in entries}
        with self._lock:
            if replace:
                prefix = f"{dir_path}/" if dir_path else ""
                for path in list(self._entries):
                    if not path.startswith(prefix) or path in fresh:
                        continue
                    child = path[len(prefix) :].split("/", 1)[0]
                    if join_path(dir_path, child) not in fresh:
                        del self._entries[path]
            for path, entry in fresh.items():
                previous = self._entries.get(path)
                if previous is not None and previous.is_dir and previous.id != entry.id:
                    self._drop_descendants(path)
            self._entries.update(fresh)

    def evict(self, path: str) -> None:
        """Remove a path and everything cached beneath it."""
        path = normalize_path(path)
        with self._lock:
            self._entries.pop(path, None)
            self._drop_descendants(path)

    def move(self, old_path: str, new_path: str, entry: RemoteEntry | None = None) -> None:
        """Re-key a path and its cached descendants under a new location."""
        old_path = normalize_path(old_path)
        new_path = normalize_path(new_path)
        with self._lock:
            moved = {
                new_path + path[len(old_path) :]: cached
                for path, cached in self._entries.items()
                if is_descendant(path, old_path)
            }
            self._entries.pop(new_path, None)
            self._drop_descendants(new_path)
            self._entries.pop(old_path, None)
            self._drop_descendants(old_path)
            self._entries.update(moved)
            if entry is not None:
                self._entries[new_path] = entry

    def _drop_descendants(self, path: str) -> None:
        """Drop cached paths strictly below ``path``. Caller holds the lock."""
        prefix = f"{path}/" if path else ""
        for cached in [p for p in self._entries if p.startswith(prefix) and p != path]:
            del self._entries[cached]
