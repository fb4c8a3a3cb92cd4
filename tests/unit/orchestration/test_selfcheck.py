"""Unit tests for orchestration/selfcheck.py — the storage self-check scenario."""

import hashlib
import io
from unittest.mock import MagicMock, patch

import pytest

from onedrive_storage.config import AppConfig
from onedrive_storage.orchestration.selfcheck import (
    SelfCheckReport,
    StorageSelfCheck,
    storage_self_check_from_config,
)
from onedrive_storage.storage.adapter import OneDriveStorage
from onedrive_storage.storage.remote import RemoteCaller

from ..storage.fake_drive import ROOT_ID, FakeDrive

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _storage(drive: FakeDrive, shared: bool = False, test_mode: bool = False) -> OneDriveStorage:
    remote = RemoteCaller(max_attempts=3, base_delay=0.0, max_delay=0.0, sleep=lambda _: None)
    return OneDriveStorage(
        graph_client=drive,  # type: ignore[arg-type]
        remote=remote,
        shared=shared,
        test_mode=test_mode,
        page_size=5,
        simple_upload_threshold=64 * 1024,
        upload_chunk_size=320 * 1024,
    )


# ---------------------------------------------------------------------------
# SelfCheckReport tests
# ---------------------------------------------------------------------------


class TestSelfCheckReport:
    def test_clean_run_is_ok(self) -> None:
        report = SelfCheckReport("test", uploaded=3, listed=3, moved=3, verified=3, deleted=3)
        assert report.ok is True

    def test_mismatch_is_not_ok(self) -> None:
        report = SelfCheckReport("test", uploaded=1, listed=1, moved=1, mismatches=["x"])
        assert report.ok is False

    def test_leftovers_are_not_ok(self) -> None:
        report = SelfCheckReport("test", uploaded=1, listed=1, moved=1, verified=1, remaining=1)
        assert report.ok is False

    def test_entries_left_in_source_are_not_ok(self) -> None:
        report = SelfCheckReport("test", uploaded=1, listed=1, moved=1, verified=1, left_behind=1)
        assert report.ok is False

    def test_invalid_names_are_not_ok(self) -> None:
        report = SelfCheckReport(
            "test", uploaded=1, listed=1, moved=1, verified=1, invalid_names=["notes.txt"]
        )
        assert report.ok is False


# ---------------------------------------------------------------------------
# StorageSelfCheck tests
# ---------------------------------------------------------------------------


class TestStorageSelfCheck:
    def test_content_name_is_sha256(self) -> None:
        assert StorageSelfCheck.content_name(b"abc") == hashlib.sha256(b"abc").hexdigest()

    def test_full_scenario_over_fake_drive(self) -> None:
        drive = FakeDrive(max_page_size=5)
        check = StorageSelfCheck(_storage(drive), root_dir="test", file_count=20)

        report = check.run()

        assert report.ok is True
        assert report.uploaded == 20
        assert report.moved == report.listed
        assert report.verified == report.listed
        assert report.deleted == report.listed
        assert report.remaining == 0
        assert drive.find("test/test1") is not None
        assert drive.children(drive.find("test/test1")["id"]) == []  # type: ignore[index]

    def test_test_mode_sends_every_upload_through_sessions(self) -> None:
        drive = FakeDrive(max_page_size=5)
        check = StorageSelfCheck(
            _storage(drive, test_mode=True), root_dir="test", file_count=4, max_file_size=1024
        )

        report = check.run()

        assert report.ok is True
        assert drive.count_calls("put_content") == 0
        assert drive.count_calls("put_upload_range") == 4

    def test_detects_corrupted_download(self) -> None:
        drive = FakeDrive()
        drive.get_stream = MagicMock(  # type: ignore[method-assign]
            side_effect=lambda path: io.BytesIO(b"corrupted")
        )
        check = StorageSelfCheck(_storage(drive), file_count=2, max_file_size=16)

        report = check.run()

        assert report.ok is False
        assert len(report.mismatches) == 2

    def test_flags_names_that_are_not_content_hashes(self) -> None:
        drive = FakeDrive()
        test_id = drive.add_item(ROOT_ID, "test", is_dir=True)
        test1_id = drive.add_item(test_id, "test1", is_dir=True)
        drive.add_item(test1_id, "notes.txt", data=b"hello")
        check = StorageSelfCheck(_storage(drive), file_count=2, max_file_size=16)

        report = check.run()

        assert report.ok is False
        assert report.invalid_names == ["notes.txt"]
        assert report.listed == 3

    def test_counts_entries_left_in_source_directory(self) -> None:
        drive = FakeDrive()
        storage = _storage(drive)
        check = StorageSelfCheck(storage, file_count=2, max_file_size=16)

        with patch.object(storage, "move_file"):
            report = check.run()

        assert report.ok is False
        assert report.left_behind == 2
        assert report.moved == 2
        assert report.verified == 0

    def test_reuses_existing_directories(self) -> None:
        drive = FakeDrive()
        test_id = drive.add_item(ROOT_ID, "test", is_dir=True)
        drive.add_item(test_id, "test1", is_dir=True)
        check = StorageSelfCheck(_storage(drive), file_count=1, max_file_size=8)

        assert check.run().ok is True
        assert [c["name"] for c in drive.children(test_id)] == ["test1", "test2"]

    def test_shared_mode_requires_existing_test_directory(self) -> None:
        drive = FakeDrive()
        folder_id = drive.add_item(ROOT_ID, "sharedtest", is_dir=True)
        drive.shared_items.append(
            {
                "id": "link-1",
                "name": "sharedtest",
                "remoteItem": {
                    "id": folder_id,
                    "folder": {},
                    "parentReference": {"driveId": "drive-b"},
                },
            }
        )
        check = StorageSelfCheck(
            _storage(drive, shared=True), root_dir="test", shared_root_name="sharedtest"
        )

        with pytest.raises(RuntimeError, match="must exist"):
            check.run()
        assert drive.count_calls("post") == 0

    def test_shared_mode_runs_inside_shared_folder(self) -> None:
        drive = FakeDrive()
        folder_id = drive.add_item(ROOT_ID, "sharedtest", is_dir=True)
        drive.add_item(folder_id, "test", is_dir=True)
        drive.shared_items.append(
            {
                "id": "link-1",
                "name": "sharedtest",
                "remoteItem": {
                    "id": folder_id,
                    "folder": {},
                    "parentReference": {"driveId": "drive-b"},
                },
            }
        )
        check = StorageSelfCheck(
            _storage(drive, shared=True),
            root_dir="test",
            file_count=3,
            max_file_size=32,
            shared_root_name="sharedtest",
        )

        report = check.run()

        assert report.ok is True
        assert drive.find("sharedtest/test/test2") is not None


class TestStorageSelfCheckFromConfig:
    def test_builds_from_config(self) -> None:
        config = AppConfig(
            client_id="cid",
            selfcheck_root="bench",
            selfcheck_files=5,
            selfcheck_max_size=100,
            rate_limit_kbs=64,
        )
        mock_storage = MagicMock()

        with patch(
            "onedrive_storage.orchestration.selfcheck.onedrive_storage_from_config",
            return_value=mock_storage,
        ) as mock_factory:
            check = storage_self_check_from_config(config)

        mock_factory.assert_called_once_with(config)
        assert check._storage is mock_storage
        assert check._root_dir == "bench"
        assert check._file_count == 5
        assert check._max_file_size == 100
        assert check._rate_limit_kbs == 64
