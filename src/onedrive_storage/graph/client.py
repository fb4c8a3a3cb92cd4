"""Microsoft Graph API client with MSAL authentication."""

from __future__ import annotations

import json
import logging
import os
from typing import TYPE_CHECKING, Any
from urllib import request as urllib_request
from urllib.error import HTTPError, URLError

import msal

if TYPE_CHECKING:
    from http.client import HTTPResponse

    from onedrive_storage.config import AppConfig

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]
DELEGATED_SCOPES = ["Files.ReadWrite.All"]
AUTHORITY_BASE_URL = "https://login.microsoftonline.com"
CONSUMER_AUTHORITY = f"{AUTHORITY_BASE_URL}/consumers"

DEFAULT_TIMEOUT = 60.0


class GraphAuthError(Exception):
    """Raised when MSAL token acquisition fails."""


class GraphApiError(Exception):
    """Raised when the Graph API returns a non-2xx response."""

    def __init__(
        self,
        status_code: int,
        message: str,
        code: str = "",
        retry_after: int | None = None,
    ) -> None:
        super().__init__(f"Graph API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.code = code
        self.retry_after = retry_after


class GraphConnectionError(Exception):
    """Raised when the Graph API cannot be reached (DNS, reset, timeout)."""


class GraphResponseError(Exception):
    """Raised when a Graph response body cannot be decoded."""


def _parse_retry_after(value: Any) -> int | None:
    """Return the Retry-After header as whole seconds, if it is numeric."""
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _api_error_from_http_error(exc: HTTPError) -> GraphApiError:
    """Build a GraphApiError from an HTTPError, keeping the Graph error code."""
    raw = exc.read()
    try:
        error = json.loads(raw).get("error", {})
        detail = error.get("message", exc.reason)
        code = error.get("code", "")
    except (ValueError, AttributeError):
        detail, code = exc.reason, ""
    retry_after = None
    if exc.headers is not None:
        retry_after = _parse_retry_after(exc.headers.get("Retry-After"))
    return GraphApiError(exc.code, str(detail), code=str(code), retry_after=retry_after)


class GraphClient:
    """Authenticated client for Microsoft Graph API.

    Uses the client credentials flow, which is what business (work or school)
    drives accessed as ``/users/{upn}/drive`` require.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        tenant_id: str,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialise the MSAL confidential client application.

        Args:
            client_id: Azure AD application (client) ID.
            client_secret: Azure AD application client secret.
            tenant_id: Azure AD tenant ID.
            timeout: Socket timeout in seconds for every request.
        """
        authority = f"{AUTHORITY_BASE_URL}/{tenant_id}"
        self._app = msal.ConfidentialClientApplication(
            client_id=client_id,
            client_credential=client_secret,
            authority=authority,
        )
        self._timeout = timeout

    def _acquire_token(self) -> str:
        """Acquire a Bearer token using client credentials flow.

        Returns:
            Access token string.

        Raises:
            GraphAuthError: If MSAL cannot acquire a token.
        """
        result: dict[str, Any] = self._app.acquire_token_for_client(scopes=GRAPH_SCOPES) or {}
        if "access_token" not in result:
            error = result.get("error", "unknown_error")
            description = result.get("error_description", "No description provided")
            logger.error("[_acquire_token] MSAL token acquisition failed; error:%s", error)
            raise GraphAuthError(f"Token acquisition failed: {error}: {description}")
        return str(result["access_token"])

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    def _build_request(
        self,
        method: str,
        url: str,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
        authorize: bool = True,
    ) -> urllib_request.Request:
        all_headers = {"Accept": "application/json"}
        if authorize:
            all_headers["Authorization"] = f"Bearer {self._acquire_token()}"
        if headers:
            all_headers.update(headers)
        if not url.startswith("http"):
            url = f"{GRAPH_BASE_URL}{url}"
        return urllib_request.Request(url, data=data, headers=all_headers, method=method)

    def _open(self, req: urllib_request.Request) -> HTTPResponse:
        """Open a request, translating transport failures into Graph exceptions."""
        try:
            return urllib_request.urlopen(req, timeout=self._timeout)  # type: ignore[no-any-return]
        except HTTPError as exc:
            raise _api_error_from_http_error(exc) from exc
        except (URLError, TimeoutError, ConnectionError) as exc:
            raise GraphConnectionError(f"{req.get_method()} {req.full_url}: {exc}") from exc

    def _send(self, req: urllib_request.Request) -> dict[str, Any]:
        """Send a request and decode the JSON body (empty body gives an empty dict)."""
        with self._open(req) as resp:
            try:
                body = resp.read()
            except (TimeoutError, ConnectionError) as exc:
                raise GraphConnectionError(f"{req.get_method()} {req.full_url}: {exc}") from exc
        if not body:
            return {}
        try:
            parsed = json.loads(body)
        except ValueError as exc:
            raise GraphResponseError(f"Undecodable response from {req.full_url}") from exc
        if not isinstance(parsed, dict):
            raise GraphResponseError(f"Unexpected JSON document from {req.full_url}")
        return parsed

    @staticmethod
    def _json_body(payload: dict[str, Any]) -> tuple[bytes, dict[str, str]]:
        return json.dumps(payload).encode("utf-8"), {"Content-Type": "application/json"}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, path: str) -> dict[str, Any]:
        """Perform an authenticated GET request to the Graph API.

        Args:
            path: URL path relative to GRAPH_BASE_URL (must start with '/').

        Returns:
            Parsed JSON response body as a dict.

        Raises:
            GraphAuthError: If token acquisition fails.
            GraphApiError: If the API returns a non-2xx status code.
            GraphConnectionError: If the API cannot be reached.
            GraphResponseError: If the body is not a JSON object.
        """
        return self._send(self._build_request("GET", path))

    def get_stream(self, path: str) -> HTTPResponse:
        """Open an authenticated streaming GET.

        The caller owns the returned response and must close it (it is a
        context manager); closing releases the underlying connection.

        Args:
            path: URL path relative to GRAPH_BASE_URL.

        Returns:
            The open HTTP response, positioned at the start of the body.
        """
        req = self._build_request("GET", path, headers={"Accept": "*/*"})
        return self._open(req)

    def post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Perform an authenticated POST with a JSON body."""
        data, headers = self._json_body(payload)
        return self._send(self._build_request("POST", path, data=data, headers=headers))

    def patch(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Perform an authenticated PATCH with a JSON body."""
        data, headers = self._json_body(payload)
        return self._send(self._build_request("PATCH", path, data=data, headers=headers))

    def delete(self, path: str) -> None:
        """Perform an authenticated DELETE request."""
        self._send(self._build_request("DELETE", path))

    def put_content(
        self,
        path: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> dict[str, Any]:
        """Perform an authenticated PUT request to upload content to the Graph API.

        Args:
            path: URL path relative to GRAPH_BASE_URL (must start with '/').
            content: Raw bytes to upload.
            content_type: MIME type for the Content-Type header.

        Returns:
            The drive item the API returns for the uploaded content.
        """
        req = self._build_request(
            "PUT", path, data=content, headers={"Content-Type": content_type}
        )
        return self._send(req)

    def get_upload_status(self, upload_url: str) -> dict[str, Any]:
        """Read the state of an upload session.

        Like the ranges themselves, the status is fetched from the
        pre-authenticated ``uploadUrl`` without an Authorization header.

        Returns:
            The session resource; ``nextExpectedRanges`` lists the byte
            ranges the service still needs.
        """
        return self._send(self._build_request("GET", upload_url, authorize=False))

    def put_upload_range(
        self,
        upload_url: str,
        chunk: bytes,
        start: int,
        total_size: int,
    ) -> dict[str, Any]:
        """Send one byte range of an upload session.

        Upload session URLs are pre-authenticated; sending a bearer token to
        them is rejected, so no Authorization header is attached.

        Args:
            upload_url: Absolute ``uploadUrl`` returned by createUploadSession.
            chunk: Bytes of this window.
            start: Offset of the first byte of the window.
            total_size: Size of the complete payload.

        Returns:
            ``{"nextExpectedRanges": [...]}`` while the session is incomplete,
            or the finished drive item once the last byte has been accepted.
        """
        end = start + len(chunk) - 1
        headers = {
            "Content-Type": "application/octet-stream",
            "Content-Range": f"bytes {start}-{end}/{total_size}",
        }
        req = self._build_request("PUT", upload_url, data=chunk, headers=headers, authorize=False)
        return self._send(req)


class DelegatedGraphClient(GraphClient):
    """Graph client for personal accounts, authenticated from a token cache.

    The cache file is produced by an interactive MSAL sign-in performed
    outside this package; this client only refreshes tokens silently and
    writes the refreshed cache back.
    """

    def __init__(
        self,
        client_id: str,
        token_cache_file: str,
        authority: str = CONSUMER_AUTHORITY,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._token_cache_file = token_cache_file
        self._cache = msal.SerializableTokenCache()
        if os.path.exists(token_cache_file):
            with open(token_cache_file, encoding="utf-8") as fh:
                self._cache.deserialize(fh.read())
        self._app = msal.PublicClientApplication(
            client_id=client_id,
            authority=authority,
            token_cache=self._cache,
        )
        self._timeout = timeout

    def _acquire_token(self) -> str:
        """Acquire a Bearer token silently from the cached account.

        Raises:
            GraphAuthError: If the cache holds no account or refresh fails.
        """
        accounts = self._app.get_accounts()
        if not accounts:
            logger.error(
                "[_acquire_token] no cached account; token_cache_file:%s",
                self._token_cache_file,
            )
            raise GraphAuthError(f"No cached account in {self._token_cache_file}")
        result: dict[str, Any] = (
            self._app.acquire_token_silent(DELEGATED_SCOPES, account=accounts[0]) or {}
        )
        if "access_token" not in result:
            error = result.get("error", "interaction_required")
            logger.error("[_acquire_token] silent token refresh failed; error:%s", error)
            raise GraphAuthError(f"Token refresh failed: {error}")
        if self._cache.has_state_changed:
            with open(self._token_cache_file, "w", encoding="utf-8") as fh:
                fh.write(self._cache.serialize())
        return str(result["access_token"])


def graph_client_from_config(config: AppConfig) -> GraphClient:
    """Construct a GraphClient from application configuration.

    Business accounts use client credentials; personal accounts use the
    delegated token cache.

    Args:
        config: Application configuration instance.

    Returns:
        Configured GraphClient instance.
    """
    if config.is_business:
        return GraphClient(
            client_id=config.client_id,
            client_secret=config.client_secret,
            tenant_id=config.tenant_id,
            timeout=config.request_timeout,
        )
    return DelegatedGraphClient(
        client_id=config.client_id,
        token_cache_file=config.token_cache_file,
        timeout=config.request_timeout,
    )
