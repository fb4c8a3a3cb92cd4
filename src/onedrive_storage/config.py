"""Application configuration loaded from environment variables."""

import os
from dataclasses import dataclass

ACCOUNT_MODE_PERSONAL = "personal"
ACCOUNT_MODE_BUSINESS = "business"

_TRUTHY = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True)
class AppConfig:
    """Centralized application configuration.

    Only the client ID is always required. Business accounts additionally
    require the client secret, tenant ID and drive user; ``load_config``
    raises KeyError at startup when any of them is missing.
    """

    # Required: no defaults, fail at startup if missing
    client_id: str

    # Account selection
    account_mode: str = ACCOUNT_MODE_PERSONAL
    client_secret: str = ""
    tenant_id: str = ""
    drive_user: str = ""
    token_cache_file: str = "one-token.json"
    shared: bool = False
    shared_folder_name: str = ""
    test_mode: bool = False

    # Remote call tuning
    max_attempts: int = 8
    retry_base_delay: float = 1.0
    retry_max_delay: float = 60.0
    request_timeout: float = 60.0
    page_size: int = 1000

    # Upload tuning
    simple_upload_threshold: int = 4 * 1024 * 1024
    upload_chunk_size: int = 10 * 320 * 1024
    rate_limit_kbs: int = 0

    # Self-check scenario
    selfcheck_root: str = "test"
    selfcheck_files: int = 20
    selfcheck_max_size: int = 64 * 1024

    @property
    def is_business(self) -> bool:
        return self.account_mode == ACCOUNT_MODE_BUSINESS


def _env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean environment variable ("1", "true", "yes", "on")."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def load_config() -> AppConfig:
    """Construct an AppConfig from environment variables.

    Required environment variables:
        ODS_CLIENT_ID: Azure AD application (client) ID.

    Required when ODS_ACCOUNT_MODE is "business":
        ODS_CLIENT_SECRET: Azure AD application client secret.
        ODS_TENANT_ID: Azure AD tenant ID.
        ODS_DRIVE_USER: UPN or object ID of the user whose drive to use.

    Optional environment variables (with defaults):
        ODS_ACCOUNT_MODE: "personal" or "business" (default: personal).
        ODS_TOKEN_CACHE_FILE: MSAL token cache for personal accounts (default: one-token.json).
        ODS_SHARED: Use a folder shared into the account as root (default: false).
        ODS_SHARED_FOLDER: Name of the shared root folder.
        ODS_TEST_MODE: Route every upload through an upload session (default: false).
        ODS_MAX_ATTEMPTS: Attempts per remote call before giving up (default: 8).
        ODS_RETRY_BASE_DELAY / ODS_RETRY_MAX_DELAY: Backoff bounds in seconds.
        ODS_REQUEST_TIMEOUT: Socket timeout in seconds (default: 60).
        ODS_PAGE_SIZE: Items requested per listing page (default: 1000).
        ODS_SIMPLE_UPLOAD_THRESHOLD: Largest payload sent in one PUT (default: 4 MiB).
        ODS_UPLOAD_CHUNK_SIZE: Upload session window, multiple of 320 KiB.
        ODS_RATE_LIMIT_KBS: Upload rate limit in KiB/s, 0 for none (default: 0).
        ODS_SELFCHECK_ROOT: Directory used by the self-check (default: test).
        ODS_SELFCHECK_FILES: Number of blobs uploaded by the self-check (default: 20).
        ODS_SELFCHECK_MAX_SIZE: Largest self-check blob in bytes (default: 65536).

    Returns:
        Configured AppConfig instance.
    """
    account_mode = os.environ.get("ODS_ACCOUNT_MODE", ACCOUNT_MODE_PERSONAL).strip().lower()
    if account_mode not in (ACCOUNT_MODE_PERSONAL, ACCOUNT_MODE_BUSINESS):
        raise ValueError(f"Unsupported ODS_ACCOUNT_MODE: {account_mode}")

    if account_mode == ACCOUNT_MODE_BUSINESS:
        client_secret = os.environ["ODS_CLIENT_SECRET"]
        tenant_id = os.environ["ODS_TENANT_ID"]
        drive_user = os.environ["ODS_DRIVE_USER"]
    else:
        client_secret = os.environ.get("ODS_CLIENT_SECRET", "")
        tenant_id = os.environ.get("ODS_TENANT_ID", "")
        drive_user = os.environ.get("ODS_DRIVE_USER", "")

    return AppConfig(
        client_id=os.environ["ODS_CLIENT_ID"],
        account_mode=account_mode,
        client_secret=client_secret,
        tenant_id=tenant_id,
        drive_user=drive_user,
        token_cache_file=os.environ.get("ODS_TOKEN_CACHE_FILE", "one-token.json"),
        shared=_env_flag("ODS_SHARED"),
        shared_folder_name=os.environ.get("ODS_SHARED_FOLDER", ""),
        test_mode=_env_flag("ODS_TEST_MODE"),
        max_attempts=int(os.environ.get("ODS_MAX_ATTEMPTS", "8")),
        retry_base_delay=float(os.environ.get("ODS_RETRY_BASE_DELAY", "1.0")),
        retry_max_delay=float(os.environ.get("ODS_RETRY_MAX_DELAY", "60.0")),
        request_timeout=float(os.environ.get("ODS_REQUEST_TIMEOUT", "60")),
        page_size=int(os.environ.get("ODS_PAGE_SIZE", "1000")),
        simple_upload_threshold=int(
            os.environ.get("ODS_SIMPLE_UPLOAD_THRESHOLD", str(4 * 1024 * 1024))
        ),
        upload_chunk_size=int(os.environ.get("ODS_UPLOAD_CHUNK_SIZE", str(10 * 320 * 1024))),
        rate_limit_kbs=int(os.environ.get("ODS_RATE_LIMIT_KBS", "0")),
        selfcheck_root=os.environ.get("ODS_SELFCHECK_ROOT", "test"),
        selfcheck_files=int(os.environ.get("ODS_SELFCHECK_FILES", "20")),
        selfcheck_max_size=int(os.environ.get("ODS_SELFCHECK_MAX_SIZE", str(64 * 1024))),
    )
