"""Remote call execution: error classification and transient-failure retry."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, TypeVar

from onedrive_storage.errors import (
    AuthError,
    ConflictError,
    NotFoundError,
    ProtocolError,
    RetryExhaustedError,
    StorageError,
    TransientError,
)
from onedrive_storage.graph.client import (
    GraphApiError,
    GraphAuthError,
    GraphConnectionError,
    GraphResponseError,
)

if TYPE_CHECKING:
    from onedrive_storage.config import AppConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 8
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 60.0

# 509 is returned by OneDrive when the bandwidth limit is exceeded.
TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504, 509})
AUTH_STATUS_CODES = frozenset({401, 403})

GRAPH_ERRORS = (GraphApiError, GraphAuthError, GraphConnectionError, GraphResponseError)


def classify_error(exc: Exception, context: str) -> StorageError:
    """Translate a Graph client failure into the storage error taxonomy.

    Args:
        exc: Exception raised by GraphClient.
        context: Path or item the call was about, for error messages.

    Returns:
        The StorageError subclass the caller should raise or retry on.
    """
    if isinstance(exc, GraphAuthError):
        return AuthError(str(exc))
    if isinstance(exc, GraphConnectionError):
        return TransientError(str(exc))
    if isinstance(exc, GraphResponseError):
        return ProtocolError(str(exc))
    if isinstance(exc, GraphApiError):
        status = exc.status_code
        if status == 404:
            return NotFoundError(context)
        if status == 409:
            return ConflictError(context)
        if status in TRANSIENT_STATUS_CODES:
            return TransientError(str(exc), status_code=status, retry_after=exc.retry_after)
        if status in AUTH_STATUS_CODES:
            return AuthError(str(exc), status_code=status)
        return StorageError(f"Unexpected Graph API error for '{context}': {exc}", status)
    return StorageError(str(exc))


class RemoteCaller:
    """Runs Graph calls, retrying only transient failures with backoff."""

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialise the caller.

        Args:
            max_attempts: Total attempts per call, including the first.
            base_delay: Backoff for the first retry; doubles per attempt.
            max_delay: Upper bound on any single wait.
            sleep: Sleep function, replaceable in tests.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._sleep = sleep

    def _backoff(self, attempt: int, retry_after: int | None) -> float:
        if retry_after is not None:
            return float(min(retry_after, self._max_delay))
        return min(self._base_delay * (2 ** (attempt - 1)) + random.random(), self._max_delay)

    def call(self, operation: Callable[[], T], context: str) -> T:
        """Run ``operation`` and return its result.

        Args:
            operation: Zero-argument callable issuing exactly one Graph request.
            context: Path or item the call concerns (for messages and logs).

        Raises:
            RetryExhaustedError: If every attempt failed transiently.
            StorageError: Any non-transient classified failure, immediately.
        """
        last_error: TransientError | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return operation()
            except GRAPH_ERRORS as exc:
                error = classify_error(exc, context)
                if not isinstance(error, TransientError):
                    raise error from exc
                last_error = error

            if attempt == self._max_attempts:
                break
            wait = self._backoff(attempt, last_error.retry_after)
            logger.warning(
                "[remote_call] transient failure, retrying; "
                "context:%s;attempt:%d/%d;wait:%.1f;error:%s",
                context,
                attempt,
                self._max_attempts,
                wait,
                last_error,
            )
            self._sleep(wait)

        logger.error(
            "[remote_call] retries exhausted; context:%s;attempts:%d",
            context,
            self._max_attempts,
        )
        status = last_error.status_code if last_error is not None else None
        raise RetryExhaustedError(context, self._max_attempts, status) from last_error


def remote_caller_from_config(config: AppConfig) -> RemoteCaller:
    """Construct a RemoteCaller from application configuration."""
    return RemoteCaller(
        max_attempts=config.max_attempts,
        base_delay=config.retry_base_delay,
        max_delay=config.retry_max_delay,
    )
