"""Storage self-check — exercises every adapter operation against a live drive."""

from __future__ import annotations

import hashlib
import logging
import os
import random
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from onedrive_storage.storage.adapter import OneDriveStorage, onedrive_storage_from_config
from onedrive_storage.storage.paths import join_path

if TYPE_CHECKING:
    from onedrive_storage.config import AppConfig

logger = logging.getLogger(__name__)

DEFAULT_FILE_COUNT = 20
DEFAULT_MAX_FILE_SIZE = 64 * 1024
DOWNLOAD_BLOCK_SIZE = 64 * 1024
CONTENT_NAME_PATTERN = re.compile(r"[0-9a-f]{64}")


@dataclass
class SelfCheckReport:
    """Outcome of one self-check run.

    Attributes:
        root_dir: Directory the check ran in.
        uploaded: Blobs uploaded into test1.
        listed: Entries listed in test1 after the uploads.
        moved: Entries moved from test1 to test2.
        left_behind: Entries still in test1 after the moves.
        verified: Downloads whose SHA-256 matched the file name.
        deleted: Entries deleted from test2.
        remaining: Entries left in test2 after deletion.
        mismatches: Names whose downloaded content hashed differently.
        invalid_names: Listed names that are not SHA-256 hex digests.
    """

    root_dir: str
    uploaded: int = 0
    listed: int = 0
    moved: int = 0
    left_behind: int = 0
    verified: int = 0
    deleted: int = 0
    remaining: int = 0
    mismatches: list[str] = field(default_factory=list)
    invalid_names: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return (
            not self.mismatches
            and not self.invalid_names
            and self.left_behind == 0
            and self.remaining == 0
            and self.verified == self.moved
            and self.listed == self.uploaded
        )


class StorageSelfCheck:
    """Uploads, lists, moves, downloads and deletes content-addressed blobs."""

    def __init__(
        self,
        storage: OneDriveStorage,
        root_dir: str = "test",
        file_count: int = DEFAULT_FILE_COUNT,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        rate_limit_kbs: int = 0,
        shared_root_name: str = "",
    ) -> None:
        """Initialise the self-check.

        Args:
            storage: Adapter to exercise; its root is detected on first run.
            root_dir: Directory holding the test1/test2 working directories.
            file_count: Number of random blobs to upload.
            max_file_size: Largest blob size in bytes (smallest is 1).
            rate_limit_kbs: Upload rate limit passed to every upload.
            shared_root_name: Shared folder name passed to root detection.
        """
        self._storage = storage
        self._root_dir = root_dir
        self._file_count = file_count
        self._max_file_size = max_file_size
        self._rate_limit_kbs = rate_limit_kbs
        self._shared_root_name = shared_root_name

    @staticmethod
    def content_name(content: bytes) -> str:
        """Name a blob by the SHA-256 hex digest of its content."""
        return hashlib.sha256(content).hexdigest()

    def _ensure_directories(self) -> tuple[str, str]:
        root = self._storage.detect_shared_storage(self._shared_root_name)
        root_id, _, _ = self._storage.get_file_info(self._root_dir)
        if not root_id:
            if root.is_shared:
                raise RuntimeError(
                    f"Test directory must exist for shared testing: {self._root_dir}"
                )
            self._storage.create_directory("", self._root_dir)

        for name in ("test1", "test2"):
            self._storage.create_directory(self._root_dir, name)
        return join_path(self._root_dir, "test1"), join_path(self._root_dir, "test2")

    def _download_digest(self, path: str) -> str:
        hasher = hashlib.sha256()
        with self._storage.download_file(path) as stream:
            for block in iter(lambda: stream.read(DOWNLOAD_BLOCK_SIZE), b""):
                hasher.update(block)
        return hasher.hexdigest()

    def run(self) -> SelfCheckReport:
        """Run the full scenario and return its report.

        Steps:
            1. Detect the root and ensure <root_dir>/test1 and <root_dir>/test2.
            2. Upload random blobs named by content hash into test1.
            3. List test1 and move every entry into test2.
            4. List test2, download each entry and compare its hash to its name.
            5. Delete every entry of test2 and list it again.

        Returns:
            SelfCheckReport describing the run.
        """
        report = SelfCheckReport(root_dir=self._root_dir)
        test1, test2 = self._ensure_directories()
        logger.info("[run] starting self-check; root_dir:%s", self._root_dir)

        for _ in range(self._file_count):
            content = os.urandom(random.randint(1, self._max_file_size))
            name = self.content_name(content)
            self._storage.upload_file(join_path(test1, name), content, self._rate_limit_kbs)
            report.uploaded += 1
        logger.info("[run] uploaded blobs; count:%d", report.uploaded)

        entries = self._storage.list_entries(test1)
        report.listed = len(entries)
        report.invalid_names = [
            e.name for e in entries if not CONTENT_NAME_PATTERN.fullmatch(e.name)
        ]
        for entry in entries:
            self._storage.move_file(join_path(test1, entry.name), test2)
            report.moved += 1
        report.left_behind = len(self._storage.list_entries(test1))
        logger.info("[run] moved entries; count:%d", report.moved)

        entries = self._storage.list_entries(test2)
        for entry in entries:
            digest = self._download_digest(join_path(test2, entry.name))
            if digest == entry.name:
                report.verified += 1
            else:
                logger.error("[run] content hash mismatch; name:%s;hash:%s", entry.name, digest)
                report.mismatches.append(entry.name)

        for entry in entries:
            self._storage.delete_file(join_path(test2, entry.name))
            report.deleted += 1

        report.remaining = len(self._storage.list_entries(test2))
        logger.info(
            "[run] self-check complete; ok:%s;verified:%d;deleted:%d;remaining:%d",
            report.ok,
            report.verified,
            report.deleted,
            report.remaining,
        )
        return report


def storage_self_check_from_config(config: AppConfig) -> StorageSelfCheck:
    """Construct a StorageSelfCheck from application configuration.

    Args:
        config: Application configuration instance.

    Returns:
        Configured StorageSelfCheck instance.
    """
    return StorageSelfCheck(
        storage=onedrive_storage_from_config(config),
        root_dir=config.selfcheck_root,
        file_count=config.selfcheck_files,
        max_file_size=config.selfcheck_max_size,
        rate_limit_kbs=config.rate_limit_kbs,
        shared_root_name=config.shared_folder_name,
    )
