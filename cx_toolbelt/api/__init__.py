"""Cloud 66 API client and models.

Exposes a thin HTTP client for the Cloud 66 v3 REST API and re-exports the
models and errors commands work with.
"""

from .client import Cloud66ApiClient
from .errors import (
    AsyncActionError,
    Cloud66ApiError,
    Cloud66AuthenticationError,
    Cloud66NotFoundError,
)
from .models import (
    Formation,
    Server,
    Service,
    Snapshot,
    Stack,
    Stencil,
)

__all__ = [
    "Cloud66ApiClient",
    "Cloud66ApiError",
    "Cloud66NotFoundError",
    "Cloud66AuthenticationError",
    "AsyncActionError",
    "Formation",
    "Server",
    "Service",
    "Snapshot",
    "Stack",
    "Stencil",
]
