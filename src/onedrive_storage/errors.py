"""Exception hierarchy for storage adapter operations.

Graph client failures are classified into these exceptions at the point of
the remote call (see ``storage/remote.py``).

Exception Tree:
    StorageError (base)
    +-- NotFoundError            (404)
    |   +-- PathNotFoundError    (intermediate path segment missing)
    |   +-- RootNotFoundError    (shared root folder missing)
    +-- ConflictError            (409)
    |   +-- NameConflictError    (file occupies a directory name)
    +-- TransientError           (429 / 5xx / connection failure, retryable)
    +-- RetryExhaustedError      (transient failures outlasted the retry budget)
    +-- AuthError                (401 / 403 / token acquisition failure)
    +-- ProtocolError            (malformed or unexpected response)
    +-- NotInitializedError      (operation before root detection)
"""

from __future__ import annotations


class StorageError(Exception):
    """Base exception for all storage operations.

    Attributes:
        status_code: HTTP status of the failed call, or None when not HTTP related.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(StorageError):
    """Raised when a path or item identifier does not resolve."""

    def __init__(self, path: str, status_code: int | None = 404) -> None:
        super().__init__(f"Not found: {path}", status_code)
        self.path = path


class PathNotFoundError(NotFoundError):
    """Raised when a non-final path segment is missing or is not a directory."""


class RootNotFoundError(NotFoundError):
    """Raised when the shared folder used as root cannot be located."""

    def __init__(self, name: str) -> None:
        StorageError.__init__(self, f"Shared root folder not found: {name}")
        self.path = name


class ConflictError(StorageError):
    """Raised when a name collides with an existing entry."""

    def __init__(self, path: str, status_code: int | None = 409) -> None:
        super().__init__(f"Conflict: {path}", status_code)
        self.path = path


class NameConflictError(ConflictError):
    """Raised when a directory name is already taken by a file."""


class TransientError(StorageError):
    """Raised for failures expected to clear up on retry.

    Attributes:
        retry_after: Server-suggested wait in seconds, or None if unknown.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message, status_code)
        self.retry_after = retry_after


class RetryExhaustedError(StorageError):
    """Raised when a transient failure persists past the retry budget."""

    def __init__(self, context: str, attempts: int, status_code: int | None = None) -> None:
        super().__init__(
            f"Giving up on '{context}' after {attempts} attempts", status_code
        )
        self.context = context
        self.attempts = attempts


class AuthError(StorageError):
    """Raised when the request is not authorized. Never retried here."""


class ProtocolError(StorageError):
    """Raised when a response is malformed or has an unexpected shape."""


class NotInitializedError(StorageError):
    """Raised when an operation runs before the storage root was detected."""

    def __init__(self) -> None:
        super().__init__("Storage root has not been detected yet")
