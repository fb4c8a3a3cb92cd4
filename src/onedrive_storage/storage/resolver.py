"""Path-to-ID resolver for OneDrive.

OneDrive items are addressed by ID, not by path. Paths are resolved one
segment at a time from the storage root, listing a folder only when the
cache cannot answer for the segment.
"""

from __future__ import annotations

import logging

from onedrive_storage.errors import ConflictError, NameConflictError, PathNotFoundError
from onedrive_storage.graph.client import GraphClient
from onedrive_storage.graph.models import (
    CONFLICT_BEHAVIOR,
    FIELD_FOLDER,
    FIELD_NAME,
    RemoteEntry,
    RootDescriptor,
    parse_remote_entry,
)
from onedrive_storage.storage.cache import IdentifierCache
from onedrive_storage.storage.lister import EntryLister
from onedrive_storage.storage.paths import join_path, normalize_path, split_path
from onedrive_storage.storage.remote import RemoteCaller

logger = logging.getLogger(__name__)


class PathResolver:
    """Resolves paths to drive items and materializes missing directories."""

    def __init__(
        self,
        root: RootDescriptor,
        cache: IdentifierCache,
        lister: EntryLister,
        graph_client: GraphClient,
        remote: RemoteCaller,
    ) -> None:
        self._root = root
        self._cache = cache
        self._lister = lister
        self._graph = graph_client
        self._remote = remote

    def resolve(self, path: str) -> RemoteEntry | None:
        """Resolve a path to the item stored there.

        Args:
            path: Slash-separated path relative to the storage root.

        Returns:
            The item, or None when only the final segment is missing.

        Raises:
            PathNotFoundError: If an intermediate segment is missing or is a file.
        """
        path = normalize_path(path)
        if not path:
            return self._root.root_entry()

        cached = self._cache.get(path)
        if cached is not None:
            return cached

        segments = path.split("/")
        current = self._root.root_entry()
        current_path = ""
        for index, segment in enumerate(segments):
            is_last = index == len(segments) - 1
            child_path = join_path(current_path, segment)
            entry = self._cache.get(child_path)
            if entry is None:
                entry = self._lookup(current_path, current.id, segment)
            if entry is None:
                if is_last:
                    return None
                raise PathNotFoundError(child_path)
            if not is_last and not entry.is_dir:
                raise PathNotFoundError(child_path)
            current, current_path = entry, child_path
        return current

    def _lookup(self, parent_path: str, parent_id: str, name: str) -> RemoteEntry | None:
        """List a folder, cache all of its children and return the named one."""
        children = self._lister.list_children(self._root.drive_base, parent_id)
        self._cache.put_children(parent_path, children, replace=True)
        for child in children:
            if child.name == name:
                return child
        logger.debug("[_lookup] segment not found; parent:%s;name:%s", parent_path, name)
        return None

    def create_directory(self, parent_path: str, name: str) -> RemoteEntry:
        """Create ``name`` under ``parent_path`` unless a directory already exists there.

        Args:
            parent_path: Existing directory to create the new one in.
            name: Single path segment.

        Returns:
            The new or already existing directory.

        Raises:
            PathNotFoundError: If the parent does not exist or is a file.
            NameConflictError: If a file already occupies the name.
        """
        parent_path = normalize_path(parent_path)
        parent = self.resolve(parent_path)
        if parent is None or not parent.is_dir:
            raise PathNotFoundError(parent_path)

        path = join_path(parent_path, name)
        existing = self.resolve(path)
        if existing is not None:
            if existing.is_dir:
                return existing
            raise NameConflictError(path)

        payload = {FIELD_NAME: name, FIELD_FOLDER: {}, CONFLICT_BEHAVIOR: "fail"}
        try:
            raw = self._remote.call(
                lambda: self._graph.post(f"{self._root.item_path(parent.id)}/children", payload),
                context=path,
            )
        except ConflictError:
            # Someone else created the name since our listing; look again.
            existing = self._lookup(parent_path, parent.id, name)
            if existing is not None and existing.is_dir:
                logger.info("[create_directory] directory appeared concurrently; path:%s", path)
                return existing
            raise NameConflictError(path) from None

        entry = parse_remote_entry(raw)
        self._cache.put(path, entry)
        logger.info("[create_directory] created directory; path:%s;id:%s", path, entry.id)
        return entry

    def make_dirs(self, path: str) -> RemoteEntry:
        """Ensure every directory along ``path`` exists and return the last one."""
        path = normalize_path(path)
        entry = self._root.root_entry()
        current_path = ""
        for segment in path.split("/") if path else []:
            child_path = join_path(current_path, segment)
            found = self.resolve(child_path)
            if found is None:
                found = self.create_directory(current_path, segment)
            elif not found.is_dir:
                raise NameConflictError(child_path)
            entry, current_path = found, child_path
        return entry

    def split(self, path: str) -> tuple[str, str]:
        """Split a file path into (parent path, name), rejecting the root."""
        parent, name = split_path(path)
        if not name:
            raise ValueError("A file path needs at least one segment")
        return parent, name
