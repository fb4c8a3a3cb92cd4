"""Detection of the root item all storage paths are relative to."""

from __future__ import annotations

import logging

from onedrive_storage.errors import ProtocolError, RootNotFoundError
from onedrive_storage.graph.client import GraphClient
from onedrive_storage.graph.models import (
    FIELD_DRIVE_ID,
    FIELD_FOLDER,
    FIELD_ID,
    FIELD_NAME,
    FIELD_PARENT_REFERENCE,
    FIELD_REMOTE_ITEM,
    AccountMode,
    RootDescriptor,
)
from onedrive_storage.storage.lister import EntryLister
from onedrive_storage.storage.remote import RemoteCaller

logger = logging.getLogger(__name__)


class RootDetector:
    """Finds the personal, business, or shared-folder root of a drive."""

    def __init__(
        self,
        graph_client: GraphClient,
        remote: RemoteCaller,
        lister: EntryLister,
        account_mode: str = AccountMode.PERSONAL,
        drive_user: str = "",
    ) -> None:
        """Initialise the detector.

        Args:
            graph_client: Authenticated GraphClient instance.
            remote: RemoteCaller used for every request.
            lister: EntryLister used to page through sharedWithMe.
            account_mode: AccountMode.PERSONAL or AccountMode.BUSINESS.
            drive_user: UPN or object ID of the business drive owner. Required
                with app-only credentials where /me is not available.
        """
        self._graph = graph_client
        self._remote = remote
        self._lister = lister
        self._account_mode = account_mode
        self._drive_user = drive_user

    @property
    def drive_base(self) -> str:
        if self._account_mode == AccountMode.BUSINESS and self._drive_user:
            return f"/users/{self._drive_user}/drive"
        return "/me/drive"

    def detect(self, shared_folder_name: str | None = None) -> RootDescriptor:
        """Resolve the root descriptor.

        Args:
            shared_folder_name: Name of a folder shared into this account to use
                as root, or None for the account's own drive root.

        Raises:
            RootNotFoundError: If the shared folder is not shared with the account.
        """
        if shared_folder_name:
            return self._detect_shared(shared_folder_name)

        drive_base = self.drive_base
        raw = self._remote.call(lambda: self._graph.get(f"{drive_base}/root"), context="root")
        root_id = raw.get(FIELD_ID)
        if not root_id:
            raise ProtocolError("Drive root response without an id")
        logger.info(
            "[detect] resolved drive root; account_mode:%s;drive_base:%s",
            self._account_mode,
            drive_base,
        )
        return RootDescriptor(
            account_mode=self._account_mode,
            is_shared=False,
            root_id=str(root_id),
            drive_base=drive_base,
        )

    def _detect_shared(self, name: str) -> RootDescriptor:
        for raw in self._lister.collect(f"{self.drive_base}/sharedWithMe"):
            remote = raw.get(FIELD_REMOTE_ITEM) or {}
            if raw.get(FIELD_NAME) != name or FIELD_FOLDER not in remote:
                continue
            drive_id = (remote.get(FIELD_PARENT_REFERENCE) or {}).get(FIELD_DRIVE_ID)
            item_id = remote.get(FIELD_ID)
            if not drive_id or not item_id:
                raise ProtocolError(f"Shared folder '{name}' has no remote drive reference")
            logger.info("[detect] resolved shared root; name:%s;drive_id:%s", name, drive_id)
            return RootDescriptor(
                account_mode=self._account_mode,
                is_shared=True,
                root_id=str(item_id),
                drive_base=f"/drives/{drive_id}",
            )

        logger.error("[detect] shared root folder not found; name:%s", name)
        raise RootNotFoundError(name)
