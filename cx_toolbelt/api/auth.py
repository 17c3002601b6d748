"""Access token storage for the API client.

The token file is the OAuth token document written by a previous login::

    {"access_token": "...", "token_type": "bearer", "refresh_token": "...", "expiry": "..."}

When running headless (CI, containers) the same document can be supplied
base64 encoded in ``CLOUD66_TOKEN``; it is written to the token file on first
use.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from pathlib import Path
from typing import Optional

from ..errors import AuthenticationRequiredError, CxError

logger = logging.getLogger(__name__)


def write_client_token(token_path: Path, encoded_token: str) -> None:
    """Decode a base64 token document and store it with owner-only permissions."""
    try:
        decoded = base64.b64decode(encoded_token, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CxError(f"an error occurred trying to write environment variable as auth token: {e}") from e
    token_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    fd = os.open(token_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(decoded)
    logger.debug("wrote auth token from environment to %s", token_path)


def read_access_token(token_path: Path) -> str:
    try:
        data = json.loads(token_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise CxError(f"Unable to parse the token file {token_path}: {e}") from e
    token = data.get("access_token") if isinstance(data, dict) else None
    if not token:
        raise CxError(f"The token file {token_path} has no access_token")
    return str(token)


def load_access_token(token_path: Path, encoded_token: Optional[str] = None) -> str:
    """Return the access token, seeding the token file from ``encoded_token`` if needed.

    Raises:
        AuthenticationRequiredError: No token file exists and no encoded token was given.
    """
    if not token_path.exists():
        if not encoded_token:
            raise AuthenticationRequiredError(str(token_path))
        write_client_token(token_path, encoded_token)
    return read_access_token(token_path)
