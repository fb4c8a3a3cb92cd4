"""Fixtures for storage tests."""

from __future__ import annotations

import pytest

from onedrive_storage.storage.adapter import OneDriveStorage
from onedrive_storage.storage.remote import RemoteCaller

from .fake_drive import FakeDrive


@pytest.fixture
def fake_drive() -> FakeDrive:
    return FakeDrive(max_page_size=5)


@pytest.fixture
def remote() -> RemoteCaller:
    """RemoteCaller that never sleeps."""
    return RemoteCaller(max_attempts=3, base_delay=0.0, max_delay=0.0, sleep=lambda _: None)


@pytest.fixture
def storage(fake_drive: FakeDrive, remote: RemoteCaller) -> OneDriveStorage:
    """Adapter over the fake drive with its root already detected."""
    adapter = OneDriveStorage(
        graph_client=fake_drive,  # type: ignore[arg-type]
        remote=remote,
        page_size=5,
        upload_chunk_size=320 * 1024,
    )
    adapter.detect_shared_storage("test")
    return adapter
