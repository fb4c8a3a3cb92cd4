"""Exhaustive listing of drive folders across Graph result pages."""

from __future__ import annotations

import logging
from typing import Any

from onedrive_storage.errors import ProtocolError
from onedrive_storage.graph.client import GRAPH_BASE_URL, GraphClient
from onedrive_storage.graph.models import (
    ODATA_NEXT_LINK,
    ODATA_VALUE,
    RemoteEntry,
    parse_remote_entry,
)
from onedrive_storage.storage.remote import RemoteCaller

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000


class EntryLister:
    """Turns the paginated children endpoint into one complete listing."""

    def __init__(
        self,
        graph_client: GraphClient,
        remote: RemoteCaller,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self._graph = graph_client
        self._remote = remote
        self._page_size = page_size

    def list_children(self, drive_base: str, item_id: str) -> list[RemoteEntry]:
        """List every child of a folder.

        All pages are fetched before returning; a failing page aborts the
        whole listing. Items the service repeats across pages are kept once.

        Args:
            drive_base: Graph URL prefix of the drive (e.g. "/me/drive").
            item_id: ID of the folder to list.

        Returns:
            Children in the order the service returned them.
        """
        path = f"{drive_base}/items/{item_id}/children?$top={self._page_size}"
        entries: list[RemoteEntry] = []
        seen: set[str] = set()
        for raw in self.collect(path):
            entry = parse_remote_entry(raw)
            if entry.id in seen:
                logger.debug("[list_children] duplicate item across pages; id:%s", entry.id)
                continue
            seen.add(entry.id)
            entries.append(entry)
        return entries

    def collect(self, path: str) -> list[dict[str, Any]]:
        """Follow @odata.nextLink from ``path`` and return all raw items.

        Raises:
            ProtocolError: If a page has no ``value`` array.
        """
        items: list[dict[str, Any]] = []
        next_path: str | None = path
        pages = 0
        while next_path is not None:
            page_path = next_path
            response = self._remote.call(lambda: self._graph.get(page_path), context=path)
            value = response.get(ODATA_VALUE)
            if not isinstance(value, list):
                raise ProtocolError(f"Listing page without '{ODATA_VALUE}' array: {path}")
            items.extend(value)
            pages += 1

            next_link = response.get(ODATA_NEXT_LINK)
            next_path = self._relative_path(next_link) if next_link else None

        logger.debug(
            "[collect] listing complete; path:%s;pages:%d;items:%d", path, pages, len(items)
        )
        return items

    @staticmethod
    def _relative_path(full_url: str) -> str:
        """Convert a full Graph API URL to a relative path for GraphClient.get()."""
        if full_url.startswith(GRAPH_BASE_URL):
            return full_url[len(GRAPH_BASE_URL) :]
        return full_url
