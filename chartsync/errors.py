from __future__ import annotations

from typing import Any, Optional


class RepositoryError(RuntimeError):
    """
    Base error for the sync/caching engine.

    - code: stable machine-readable error code (e.g. "NOT_FOUND")
    - details: optional context (ids, underlying exception)
    """

    def __init__(self, message: str, code: str = "REPOSITORY_ERROR", details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    def __str__(self) -> str:
        return f"{self.message} ({self.code})"


class NotInitializedError(RepositoryError):
    """
    Raised when an accessor is used before `initialize()` completed.
    """

    def __init__(self, message: str = "Repository not initialized. Call initialize() first.") -> None:
        super().__init__(message, "NOT_INITIALIZED")


class NotFoundError(RepositoryError):
    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message, "NOT_FOUND", details)


class ValidationError(RepositoryError):
    """
    A structural invariant was violated. `reason` names the constraint.
    """

    def __init__(self, reason: str, details: Any = None) -> None:
        super().__init__(reason, "VALIDATION_ERROR", details)
        self.reason = reason


class NetworkError(RepositoryError):
    """
    Wraps a remote I/O failure. The original exception is kept in `cause`.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message, "NETWORK_ERROR", cause)
        self.cause = cause
