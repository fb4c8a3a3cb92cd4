"""Uploads: single PUT for small payloads, resumable sessions for large ones."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

from onedrive_storage.errors import ConflictError, NameConflictError, ProtocolError
from onedrive_storage.graph.client import GraphApiError, GraphClient
from onedrive_storage.graph.models import (
    CONFLICT_BEHAVIOR,
    FIELD_NAME,
    FIELD_NEXT_EXPECTED_RANGES,
    FIELD_UPLOAD_URL,
    RemoteEntry,
    RootDescriptor,
    UploadSession,
    parse_remote_entry,
)
from onedrive_storage.storage.cache import IdentifierCache
from onedrive_storage.storage.paths import normalize_path
from onedrive_storage.storage.remote import RemoteCaller
from onedrive_storage.storage.resolver import PathResolver

logger = logging.getLogger(__name__)

# Graph rejects simple uploads above 4 MiB.
DEFAULT_SIMPLE_UPLOAD_THRESHOLD = 4 * 1024 * 1024
# Session windows must be a multiple of 320 KiB.
UPLOAD_CHUNK_ALIGNMENT = 320 * 1024
DEFAULT_UPLOAD_CHUNK_SIZE = 10 * UPLOAD_CHUNK_ALIGNMENT
RANGE_NOT_SATISFIABLE = 416


class UploadManager:
    """Writes byte payloads to drive paths with overwrite semantics."""

    def __init__(
        self,
        root: RootDescriptor,
        resolver: PathResolver,
        cache: IdentifierCache,
        graph_client: GraphClient,
        remote: RemoteCaller,
        simple_upload_threshold: int = DEFAULT_SIMPLE_UPLOAD_THRESHOLD,
        chunk_size: int = DEFAULT_UPLOAD_CHUNK_SIZE,
        test_mode: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialise the upload manager.

        Args:
            root: Detected storage root.
            resolver: PathResolver used to find or create the parent folder.
            cache: Cache updated once the upload is confirmed.
            graph_client: Authenticated GraphClient instance.
            remote: RemoteCaller used for every request.
            simple_upload_threshold: Payloads below this size go in one PUT.
            chunk_size: Upload session window; must be a multiple of 320 KiB.
            test_mode: Send every non-empty payload through an upload session.
            sleep: Sleep function used for rate limiting.
            clock: Monotonic clock used for rate limiting.
        """
        if chunk_size <= 0 or chunk_size % UPLOAD_CHUNK_ALIGNMENT:
            raise ValueError(f"chunk_size must be a positive multiple of {UPLOAD_CHUNK_ALIGNMENT}")
        self._root = root
        self._resolver = resolver
        self._cache = cache
        self._graph = graph_client
        self._remote = remote
        self._simple_upload_threshold = simple_upload_threshold
        self._chunk_size = chunk_size
        self._test_mode = test_mode
        self._sleep = sleep
        self._clock = clock

    def upload_file(self, path: str, content: bytes, rate_limit_kbs: int = 0) -> RemoteEntry:
        """Upload ``content`` to ``path``, replacing any existing file.

        Args:
            path: Destination file path; missing parent directories are created.
            content: Complete payload.
            rate_limit_kbs: Average send rate cap in KiB/s, 0 for unlimited.

        Returns:
            The uploaded drive item.
        """
        path = normalize_path(path)
        parent_path, name = self._resolver.split(path)
        parent = self._resolver.make_dirs(parent_path)
        session = UploadSession(target_path=path, total_size=len(content))
        started = self._clock()

        use_session = len(content) > 0 and (
            self._test_mode or len(content) >= self._simple_upload_threshold
        )
        if use_session:
            entry = self._upload_session(session, parent, name, content, rate_limit_kbs, started)
        else:
            entry = self._upload_simple(session, parent, name, content)
            self._throttle(started, session.bytes_sent, rate_limit_kbs)

        self._cache.put(path, entry)
        logger.info(
            "[upload_file] uploaded; path:%s;size:%d;session:%s",
            path,
            len(content),
            use_session,
        )
        return entry

    def _item_by_name(self, parent: RemoteEntry, name: str) -> str:
        return f"{self._root.item_path(parent.id)}:/{quote(name, safe='')}:"

    def _upload_simple(
        self,
        session: UploadSession,
        parent: RemoteEntry,
        name: str,
        content: bytes,
    ) -> RemoteEntry:
        url = f"{self._item_by_name(parent, name)}/content?{CONFLICT_BEHAVIOR}=replace"
        raw = self._remote.call(
            lambda: self._graph.put_content(url, content),
            context=session.target_path,
        )
        session.bytes_sent = len(content)
        return parse_remote_entry(raw)

    def _open_session(self, session: UploadSession, parent: RemoteEntry, name: str) -> str:
        """Create an upload session, falling back to the existing item on 409."""
        payload = {"item": {CONFLICT_BEHAVIOR: "replace", FIELD_NAME: name}}
        url = f"{self._item_by_name(parent, name)}/createUploadSession"
        try:
            raw = self._remote.call(
                lambda: self._graph.post(url, payload), context=session.target_path
            )
        except ConflictError:
            self._cache.evict(session.target_path)
            existing = self._resolver.resolve(session.target_path)
            if existing is None or existing.is_dir:
                raise NameConflictError(session.target_path) from None
            logger.info(
                "[_open_session] target exists, overwriting by id; path:%s;id:%s",
                session.target_path,
                existing.id,
            )
            item_url = f"{self._root.item_path(existing.id)}/createUploadSession"
            raw = self._remote.call(
                lambda: self._graph.post(item_url, {"item": {CONFLICT_BEHAVIOR: "replace"}}),
                context=session.target_path,
            )

        upload_url = raw.get(FIELD_UPLOAD_URL)
        if not upload_url:
            raise ProtocolError(f"Upload session without uploadUrl: {session.target_path}")
        return str(upload_url)

    def _upload_session(
        self,
        session: UploadSession,
        parent: RemoteEntry,
        name: str,
        content: bytes,
        rate_limit_kbs: int,
        started: float,
    ) -> RemoteEntry:
        session.session_url = self._open_session(session, parent, name)

        while session.bytes_sent < session.total_size:
            start = session.bytes_sent
            raw, sent_to = self._remote.call(
                self._window_sender(session, content, start),
                context=f"{session.target_path}@{start}",
            )
            self._throttle(started, sent_to, rate_limit_kbs)

            if not raw:
                return self._completed_item(session)

            if FIELD_NEXT_EXPECTED_RANGES in raw:
                session.bytes_sent = self._next_offset(raw, sent_to)
                if session.bytes_sent <= start:
                    raise ProtocolError(
                        f"Upload session made no progress at {start}: {session.target_path}"
                    )
                logger.debug(
                    "[_upload_session] window accepted; path:%s;bytes_sent:%d/%d",
                    session.target_path,
                    session.bytes_sent,
                    session.total_size,
                )
                continue

            session.bytes_sent = session.total_size
            return parse_remote_entry(raw)

        raise ProtocolError(f"Upload session ended without a drive item: {session.target_path}")

    def _window_sender(
        self, session: UploadSession, content: bytes, start: int
    ) -> Callable[[], tuple[dict[str, Any], int]]:
        """Build the retried operation for the window at ``start``.

        Every attempt after the first asks the session where to resume, since
        a window whose response was lost may already have been stored.
        """
        attempts = 0

        def send() -> tuple[dict[str, Any], int]:
            nonlocal attempts
            attempts += 1
            return self._send_window(session, content, start, resync=attempts > 1)

        return send

    def _send_window(
        self, session: UploadSession, content: bytes, start: int, resync: bool
    ) -> tuple[dict[str, Any], int]:
        """Send one window; returns the response and the offset it reached.

        An empty response means the session already holds every byte.
        """
        upload_url = str(session.session_url)
        offset = start
        if resync:
            offset = self._resume_offset(session)
            if offset >= session.total_size:
                return {}, session.total_size

        chunk = content[offset : offset + self._chunk_size]
        try:
            raw = self._graph.put_upload_range(upload_url, chunk, offset, session.total_size)
        except GraphApiError as exc:
            if exc.status_code != RANGE_NOT_SATISFIABLE or resync:
                raise
            logger.warning(
                "[_send_window] range rejected, resyncing; path:%s;offset:%d",
                session.target_path,
                offset,
            )
            return self._send_window(session, content, start, resync=True)
        return raw, offset + len(chunk)

    def _resume_offset(self, session: UploadSession) -> int:
        """Ask the session for the next byte it expects; a finished session has none."""
        try:
            status = self._graph.get_upload_status(str(session.session_url))
        except GraphApiError as exc:
            if exc.status_code != 404:
                raise
            logger.info(
                "[_resume_offset] session gone, assuming it completed; path:%s",
                session.target_path,
            )
            return session.total_size
        offset = self._next_offset(status, session.total_size)
        logger.info(
            "[_resume_offset] resuming upload session; path:%s;offset:%d",
            session.target_path,
            offset,
        )
        return offset

    def _completed_item(self, session: UploadSession) -> RemoteEntry:
        """Look up an item whose final window was stored but not acknowledged."""
        self._cache.evict(session.target_path)
        entry = self._resolver.resolve(session.target_path)
        if entry is None or entry.is_dir or entry.size != session.total_size:
            raise ProtocolError(
                f"Upload session closed without the uploaded item: {session.target_path}"
            )
        session.bytes_sent = session.total_size
        return entry

    @staticmethod
    def _next_offset(raw: dict[str, Any], default: int) -> int:
        """Read the next offset from ``nextExpectedRanges`` ("start-" or "start-end")."""
        ranges = raw.get(FIELD_NEXT_EXPECTED_RANGES) or []
        if not ranges:
            return default
        head = str(ranges[0]).split("-", 1)[0]
        if not head.isdigit():
            raise ProtocolError(f"Unparseable nextExpectedRanges: {ranges}")
        return int(head)

    def _throttle(self, started: float, bytes_sent: int, rate_limit_kbs: int) -> None:
        if rate_limit_kbs <= 0 or bytes_sent <= 0:
            return
        expected = bytes_sent / (rate_limit_kbs * 1024)
        elapsed = self._clock() - started
        if expected > elapsed:
            self._sleep(expected - elapsed)
