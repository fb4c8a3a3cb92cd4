"""Unit tests for storage/root.py — drive, business and shared roots."""

from typing import Any
from unittest.mock import MagicMock

import pytest

from onedrive_storage.errors import AuthError, ProtocolError, RootNotFoundError
from onedrive_storage.graph.client import GraphApiError
from onedrive_storage.graph.models import AccountMode
from onedrive_storage.storage.lister import EntryLister
from onedrive_storage.storage.remote import RemoteCaller
from onedrive_storage.storage.root import RootDetector

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_detector(
    account_mode: str = AccountMode.PERSONAL, drive_user: str = ""
) -> tuple[RootDetector, MagicMock]:
    graph = MagicMock()
    remote = RemoteCaller(max_attempts=2, base_delay=0.0, max_delay=0.0, sleep=lambda _: None)
    lister = EntryLister(graph, remote)
    detector = RootDetector(graph, remote, lister, account_mode=account_mode, drive_user=drive_user)
    return detector, graph


def _shared(name: str, drive_id: str = "drive-b", item_id: str = "remote-1") -> dict[str, Any]:
    return {
        "id": f"local-{name}",
        "name": name,
        "remoteItem": {
            "id": item_id,
            "folder": {"childCount": 2},
            "parentReference": {"driveId": drive_id},
        },
    }


# ---------------------------------------------------------------------------
# detect tests
# ---------------------------------------------------------------------------


class TestDetectDriveRoot:
    def test_personal_root(self) -> None:
        detector, graph = _make_detector()
        graph.get.return_value = {"id": "root-123", "name": "root", "folder": {}}

        root = detector.detect()

        graph.get.assert_called_once_with("/me/drive/root")
        assert root.root_id == "root-123"
        assert root.drive_base == "/me/drive"
        assert root.is_shared is False
        assert root.account_mode == AccountMode.PERSONAL

    def test_business_root_uses_drive_user(self) -> None:
        detector, graph = _make_detector(AccountMode.BUSINESS, "alice@contoso.com")
        graph.get.return_value = {"id": "biz-root"}

        root = detector.detect()

        graph.get.assert_called_once_with("/users/alice@contoso.com/drive/root")
        assert root.drive_base == "/users/alice@contoso.com/drive"
        assert root.account_mode == AccountMode.BUSINESS

    def test_business_without_user_uses_me(self) -> None:
        detector, graph = _make_detector(AccountMode.BUSINESS)
        graph.get.return_value = {"id": "biz-root"}

        assert detector.detect().drive_base == "/me/drive"

    def test_root_without_id_is_protocol_error(self) -> None:
        detector, graph = _make_detector()
        graph.get.return_value = {"name": "root"}

        with pytest.raises(ProtocolError):
            detector.detect()

    def test_auth_failure_surfaces(self) -> None:
        detector, graph = _make_detector()
        graph.get.side_effect = GraphApiError(401, "expired")

        with pytest.raises(AuthError):
            detector.detect()
        assert graph.get.call_count == 1


class TestDetectSharedRoot:
    def test_shared_folder_becomes_root(self) -> None:
        detector, graph = _make_detector()
        graph.get.return_value = {"value": [_shared("other"), _shared("sharedtest")]}

        root = detector.detect("sharedtest")

        graph.get.assert_called_once_with("/me/drive/sharedWithMe")
        assert root.is_shared is True
        assert root.root_id == "remote-1"
        assert root.drive_base == "/drives/drive-b"

    def test_shared_files_are_ignored(self) -> None:
        detector, graph = _make_detector()
        shared_file = {"id": "f", "name": "sharedtest", "remoteItem": {"id": "r", "file": {}}}
        graph.get.return_value = {"value": [shared_file]}

        with pytest.raises(RootNotFoundError):
            detector.detect("sharedtest")

    def test_missing_shared_folder_fails_fast(self) -> None:
        detector, graph = _make_detector()
        graph.get.return_value = {"value": [_shared("other")]}

        with pytest.raises(RootNotFoundError, match="sharedtest"):
            detector.detect("sharedtest")
        graph.post.assert_not_called()

    def test_shared_folder_without_drive_reference(self) -> None:
        detector, graph = _make_detector()
        broken = {"id": "x", "name": "sharedtest", "remoteItem": {"id": "r", "folder": {}}}
        graph.get.return_value = {"value": [broken]}

        with pytest.raises(ProtocolError):
            detector.detect("sharedtest")
