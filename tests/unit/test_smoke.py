"""Smoke tests — validate the function app works end-to-end."""

import json
from unittest.mock import MagicMock, patch

import azure.functions as func

from onedrive_storage.orchestration.selfcheck import SelfCheckReport


def test_health_check_returns_status() -> None:
    """Health endpoint returns ok status with version from the package."""
    from onedrive_storage.functions.http_trigger import health_check

    response = health_check(MagicMock(spec=func.HttpRequest))

    assert response.status_code == 200
    body = json.loads(response.get_body())
    assert body["status"] == "ok"
    assert body["version"] == "0.1.0"


def test_self_check_returns_report() -> None:
    """Self-check endpoint runs the check and returns its report."""
    from onedrive_storage.functions.http_trigger import self_check

    mock_check = MagicMock()
    mock_check.run.return_value = SelfCheckReport(
        root_dir="test", uploaded=2, listed=2, moved=2, verified=2, deleted=2
    )

    with (
        patch("onedrive_storage.functions.http_trigger.load_config"),
        patch(
            "onedrive_storage.functions.http_trigger.storage_self_check_from_config",
            return_value=mock_check,
        ),
    ):
        response = self_check(MagicMock(spec=func.HttpRequest))

    assert response.status_code == 200
    body = json.loads(response.get_body())
    assert body["status"] == "ok"
    assert body["report"]["verified"] == 2
    mock_check.run.assert_called_once()


def test_self_check_reports_failed_run() -> None:
    """A run with mismatches is reported with a 500 status."""
    from onedrive_storage.functions.http_trigger import self_check

    mock_check = MagicMock()
    mock_check.run.return_value = SelfCheckReport(
        root_dir="test", uploaded=1, listed=1, moved=1, mismatches=["abc"]
    )

    with (
        patch("onedrive_storage.functions.http_trigger.load_config"),
        patch(
            "onedrive_storage.functions.http_trigger.storage_self_check_from_config",
            return_value=mock_check,
        ),
    ):
        response = self_check(MagicMock(spec=func.HttpRequest))

    assert response.status_code == 500
    assert json.loads(response.get_body())["status"] == "failed"


def test_self_check_hides_exception_details() -> None:
    """Configuration errors produce a generic 500 body."""
    from onedrive_storage.functions.http_trigger import self_check

    with patch(
        "onedrive_storage.functions.http_trigger.load_config",
        side_effect=KeyError("ODS_CLIENT_ID"),
    ):
        response = self_check(MagicMock(spec=func.HttpRequest))

    assert response.status_code == 500
    body = json.loads(response.get_body())
    assert body == {"status": "error", "message": "Internal server error"}
