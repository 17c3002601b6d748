"""Error types specific to the Cloud 66 API layer.

Purpose:
- Provide typed exceptions thrown by ``Cloud66ApiClient``.
- Expose HTTP-oriented context (status code, error body) for diagnosis.

Usage:
- Catch ``Cloud66ApiError`` for general failures and inspect ``status_code``
  or ``details``.
- Catch ``Cloud66NotFoundError`` when a lookup returns 404.
"""

from __future__ import annotations

from typing import Any, Optional


class Cloud66ApiError(Exception):
    """Base error for API failures.

    Args:
        message: Human-readable error description.
        status_code: Optional HTTP status code associated with the failure.
        details: Optional payload from the server (e.g., JSON body).
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class Cloud66NotFoundError(Cloud66ApiError):
    """Raised when the requested resource cannot be found (HTTP 404)."""

    def __init__(self, message: str, *, details: Optional[Any] = None) -> None:
        super().__init__(message, status_code=404, details=details)


class Cloud66AuthenticationError(Cloud66ApiError):
    """Raised when the token is missing, expired or lacks the required scope (HTTP 401/403)."""


class AsyncActionError(Cloud66ApiError):
    """Raised when a server-side async action fails or does not finish in time.

    Args:
        action_id: Identifier of the async action on the stack.
        message: Failure message reported by the server, or a timeout notice.
    """

    def __init__(self, action_id: int, message: str) -> None:
        super().__init__(message)
        self.action_id = action_id
