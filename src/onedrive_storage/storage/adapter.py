"""OneDrive storage adapter — the storage interface used by the backup engine."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from onedrive_storage.errors import (
    ConflictError,
    NotFoundError,
    NotInitializedError,
    PathNotFoundError,
)
from onedrive_storage.graph.client import GraphClient, graph_client_from_config
from onedrive_storage.graph.models import (
    CONFLICT_BEHAVIOR,
    FIELD_ID,
    FIELD_PARENT_REFERENCE,
    AccountMode,
    RemoteEntry,
    RootDescriptor,
    parse_remote_entry,
)
from onedrive_storage.storage.cache import IdentifierCache
from onedrive_storage.storage.lister import DEFAULT_PAGE_SIZE, EntryLister
from onedrive_storage.storage.paths import join_path, normalize_path, split_path
from onedrive_storage.storage.remote import RemoteCaller, remote_caller_from_config
from onedrive_storage.storage.resolver import PathResolver
from onedrive_storage.storage.root import RootDetector
from onedrive_storage.storage.upload import (
    DEFAULT_SIMPLE_UPLOAD_THRESHOLD,
    DEFAULT_UPLOAD_CHUNK_SIZE,
    UploadManager,
)

if TYPE_CHECKING:
    from http.client import HTTPResponse

    from onedrive_storage.config import AppConfig

logger = logging.getLogger(__name__)


class OneDriveStorage:
    """Path-addressed file store on top of the ID-addressed OneDrive API.

    ``detect_shared_storage`` must be called once before any other operation;
    it fixes the root every path is relative to for the lifetime of the
    instance.
    """

    def __init__(
        self,
        graph_client: GraphClient,
        remote: RemoteCaller | None = None,
        account_mode: str = AccountMode.PERSONAL,
        drive_user: str = "",
        shared: bool = False,
        test_mode: bool = False,
        page_size: int = DEFAULT_PAGE_SIZE,
        simple_upload_threshold: int = DEFAULT_SIMPLE_UPLOAD_THRESHOLD,
        upload_chunk_size: int = DEFAULT_UPLOAD_CHUNK_SIZE,
    ) -> None:
        """Initialise the adapter.

        Args:
            graph_client: Authenticated GraphClient instance.
            remote: RemoteCaller for classification and retry (default settings if None).
            account_mode: AccountMode.PERSONAL or AccountMode.BUSINESS.
            drive_user: Business drive owner, used with app-only credentials.
            shared: Root the storage in a folder shared into the account.
            test_mode: Route every upload through an upload session.
            page_size: Items requested per listing page.
            simple_upload_threshold: Largest payload sent in a single PUT.
            upload_chunk_size: Upload session window size.
        """
        self._graph = graph_client
        self._remote = remote or RemoteCaller()
        self._shared = shared
        self._test_mode = test_mode
        self._simple_upload_threshold = simple_upload_threshold
        self._upload_chunk_size = upload_chunk_size
        self._cache = IdentifierCache()
        self._lister = EntryLister(graph_client, self._remote, page_size=page_size)
        self._detector = RootDetector(
            graph_client,
            self._remote,
            self._lister,
            account_mode=account_mode,
            drive_user=drive_user,
        )
        self._root_lock = threading.Lock()
        self._root: RootDescriptor | None = None
        self._resolver: PathResolver | None = None
        self._uploader: UploadManager | None = None

    @property
    def root(self) -> RootDescriptor | None:
        return self._root

    # ------------------------------------------------------------------
    # Root detection
    # ------------------------------------------------------------------

    def detect_shared_storage(self, root_name: str = "") -> RootDescriptor:
        """Resolve the storage root once; later calls return the same descriptor.

        In shared mode the folder named ``root_name`` that was shared into the
        account becomes the root, and it must already exist. Otherwise the
        account's own drive root is used and ``root_name`` is ignored.

        Raises:
            RootNotFoundError: If shared mode is on and no such folder is shared.
        """
        if self._root is not None:
            return self._root

        descriptor = self._detector.detect(root_name if self._shared else None)
        with self._root_lock:
            if self._root is None:
                self._root = descriptor
                self._resolver = PathResolver(
                    descriptor, self._cache, self._lister, self._graph, self._remote
                )
                self._uploader = UploadManager(
                    descriptor,
                    self._resolver,
                    self._cache,
                    self._graph,
                    self._remote,
                    simple_upload_threshold=self._simple_upload_threshold,
                    chunk_size=self._upload_chunk_size,
                    test_mode=self._test_mode,
                )
            return self._root

    def _components(self) -> tuple[RootDescriptor, PathResolver]:
        if self._root is None or self._resolver is None:
            raise NotInitializedError()
        return self._root, self._resolver

    def _require_existing(self, resolver: PathResolver, path: str) -> RemoteEntry:
        try:
            entry = resolver.resolve(path)
        except PathNotFoundError as exc:
            raise NotFoundError(path) from exc
        if entry is None:
            raise NotFoundError(path)
        return entry

    # ------------------------------------------------------------------
    # Storage interface
    # ------------------------------------------------------------------

    def list_entries(self, dir_path: str) -> list[RemoteEntry]:
        """Return every entry of a directory.

        Raises:
            NotFoundError: If the directory does not exist or is a file.
        """
        root, resolver = self._components()
        dir_path = normalize_path(dir_path)
        directory = self._require_existing(resolver, dir_path)
        if not directory.is_dir:
            raise NotFoundError(dir_path)
        entries = self._lister.list_children(root.drive_base, directory.id)
        self._cache.put_children(dir_path, entries, replace=True)
        logger.info("[list_entries] listed; path:%s;entry_count:%d", dir_path, len(entries))
        return entries

    def get_file_info(self, path: str) -> tuple[str, bool, int]:
        """Return ``(id, is_dir, size)``; the id is empty when the path does not exist.

        Raises:
            PathNotFoundError: If a parent directory of the path is missing.
        """
        _, resolver = self._components()
        entry = resolver.resolve(path)
        if entry is None:
            return "", False, 0
        return entry.id, entry.is_dir, entry.size

    def create_directory(self, parent_path: str, name: str) -> RemoteEntry:
        """Create a directory; an existing directory of that name is not an error."""
        _, resolver = self._components()
        return resolver.create_directory(parent_path, name)

    def upload_file(self, path: str, content: bytes, rate_limit_kbs: int = 0) -> RemoteEntry:
        """Write ``content`` to ``path``, overwriting any existing file."""
        if self._uploader is None:
            raise NotInitializedError()
        return self._uploader.upload_file(path, content, rate_limit_kbs)

    def move_file(self, source_path: str, dest_dir_path: str) -> RemoteEntry:
        """Move an item into another directory, keeping its name.

        Raises:
            NotFoundError: If the source or the destination directory is missing.
            ConflictError: If the destination already holds an entry with that name.
        """
        root, resolver = self._components()
        source_path = normalize_path(source_path)
        dest_dir_path = normalize_path(dest_dir_path)
        source = self._require_existing(resolver, source_path)
        destination = self._require_existing(resolver, dest_dir_path)
        if not destination.is_dir:
            raise NotFoundError(dest_dir_path)

        new_path = join_path(dest_dir_path, split_path(source_path)[1])
        payload = {FIELD_PARENT_REFERENCE: {FIELD_ID: destination.id}, CONFLICT_BEHAVIOR: "fail"}
        try:
            raw = self._remote.call(
                lambda: self._graph.patch(root.item_path(source.id), payload),
                context=source_path,
            )
        except NotFoundError:
            self._cache.evict(source_path)
            self._cache.evict(dest_dir_path)
            raise
        except ConflictError:
            # A lost response leaves the item already in place; the retry then conflicts with it.
            raw = self._remote.call(
                lambda: self._graph.get(root.item_path(source.id)), context=source_path
            )
            parent_id = (raw.get(FIELD_PARENT_REFERENCE) or {}).get(FIELD_ID)
            if parent_id != destination.id:
                raise
            logger.info(
                "[move_file] item already at destination; source:%s;destination:%s",
                source_path,
                new_path,
            )

        moved = parse_remote_entry(raw)
        self._cache.move(source_path, new_path, moved)
        logger.info("[move_file] moved; source:%s;destination:%s", source_path, new_path)
        return moved

    def download_file(self, path: str) -> HTTPResponse:
        """Open a stream over a file's content.

        Use the result as a context manager; closing it releases the
        connection even when the body was not read to the end. The content
        is not verified here.

        Raises:
            NotFoundError: If the path does not exist or is a directory.
        """
        root, resolver = self._components()
        path = normalize_path(path)
        entry = self._require_existing(resolver, path)
        if entry.is_dir:
            raise NotFoundError(path)
        try:
            return self._remote.call(
                lambda: self._graph.get_stream(f"{root.item_path(entry.id)}/content"),
                context=path,
            )
        except NotFoundError:
            self._cache.evict(path)
            raise

    def delete_file(self, path: str) -> None:
        """Delete an item; deleting a directory drops its cached descendants too.

        A 404 on a retry means an earlier attempt already deleted the item,
        so it counts as success.

        Raises:
            NotFoundError: If the path does not exist.
        """
        root, resolver = self._components()
        path = normalize_path(path)
        if not path:
            raise ValueError("Refusing to delete the storage root")
        entry = self._require_existing(resolver, path)

        attempts = 0

        def delete() -> None:
            nonlocal attempts
            attempts += 1
            self._graph.delete(root.item_path(entry.id))

        try:
            self._remote.call(delete, context=path)
        except NotFoundError:
            self._cache.evict(path)
            if attempts == 1:
                raise
            logger.info("[delete_file] item gone after a failed attempt; path:%s", path)
        self._cache.evict(path)
        logger.info("[delete_file] deleted; path:%s;is_dir:%s", path, entry.is_dir)


def onedrive_storage_from_config(config: AppConfig) -> OneDriveStorage:
    """Construct a OneDriveStorage from application configuration.

    The root is not detected here; call ``detect_shared_storage`` first.

    Args:
        config: Application configuration instance.

    Returns:
        Configured OneDriveStorage instance.
    """
    return OneDriveStorage(
        graph_client=graph_client_from_config(config),
        remote=remote_caller_from_config(config),
        account_mode=config.account_mode,
        drive_user=config.drive_user,
        shared=config.shared,
        test_mode=config.test_mode,
        page_size=config.page_size,
        simple_upload_threshold=config.simple_upload_threshold,
        upload_chunk_size=config.upload_chunk_size,
    )
