"""Data models for Microsoft Graph drive items, roots and upload sessions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from onedrive_storage.errors import ProtocolError

# Graph API JSON field names
FIELD_ID = "id"
FIELD_NAME = "name"
FIELD_SIZE = "size"
FIELD_FOLDER = "folder"
FIELD_REMOTE_ITEM = "remoteItem"
FIELD_PARENT_REFERENCE = "parentReference"
FIELD_DRIVE_ID = "driveId"
FIELD_UPLOAD_URL = "uploadUrl"
FIELD_NEXT_EXPECTED_RANGES = "nextExpectedRanges"
CONFLICT_BEHAVIOR = "@microsoft.graph.conflictBehavior"

# OData response keys
ODATA_NEXT_LINK = "@odata.nextLink"
ODATA_VALUE = "value"


class AccountMode:
    """Kinds of drive the adapter can be rooted in."""

    PERSONAL = "personal"
    BUSINESS = "business"


@dataclass(frozen=True)
class RemoteEntry:
    """One listed item (file or folder) in a drive."""

    name: str
    id: str
    is_dir: bool
    size: int = 0


@dataclass(frozen=True)
class RootDescriptor:
    """The resolved base item all paths are relative to.

    Attributes:
        account_mode: AccountMode.PERSONAL or AccountMode.BUSINESS.
        is_shared: True when the root is a folder shared from another account.
        root_id: Item ID of the root folder.
        drive_base: Graph URL prefix of the drive holding root_id
            (e.g. "/me/drive" or "/drives/{driveId}").
    """

    account_mode: str
    is_shared: bool
    root_id: str
    drive_base: str

    def item_path(self, item_id: str) -> str:
        """Return the Graph URL path of an item in this drive."""
        return f"{self.drive_base}/items/{item_id}"

    def root_entry(self) -> RemoteEntry:
        return RemoteEntry(name="", id=self.root_id, is_dir=True)


@dataclass
class UploadSession:
    """State of one upload_file call; discarded when the call returns."""

    target_path: str
    total_size: int
    bytes_sent: int = 0
    session_url: str | None = None


def parse_remote_entry(raw: dict[str, Any]) -> RemoteEntry:
    """Map a raw Graph drive item to a RemoteEntry.

    Items shared from another drive carry their folder facet under
    ``remoteItem``; both shapes count as directories.

    Raises:
        ProtocolError: If the item has no id or name.
    """
    item_id = raw.get(FIELD_ID)
    name = raw.get(FIELD_NAME)
    if not item_id or not isinstance(name, str):
        raise ProtocolError(f"Drive item without id or name: {sorted(raw)}")
    remote = raw.get(FIELD_REMOTE_ITEM) or {}
    is_dir = FIELD_FOLDER in raw or FIELD_FOLDER in remote
    size = raw.get(FIELD_SIZE, remote.get(FIELD_SIZE, 0)) or 0
    return RemoteEntry(name=name, id=str(item_id), is_dir=is_dir, size=int(size))
