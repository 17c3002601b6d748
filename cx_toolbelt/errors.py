"""User-facing error types raised outside of the HTTP layer.

Every error here carries a message that is printed as-is by the CLI before it
exits with a non-zero status.
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class CxError(Exception):
    """Base error for toolbelt failures that should be reported to the user."""


class NameNotFoundError(CxError):
    def __init__(self, search: str) -> None:
        super().__init__(f"No match found for '{search}'")
        self.search = search


class AmbiguousNameError(CxError):
    """Raised when a partial name matches more than one candidate.

    Args:
        search: The partial name given by the user.
        candidates: Every name that matched at the same precedence level.
    """

    def __init__(self, search: str, candidates: Sequence[str]) -> None:
        names = ", ".join(candidates)
        super().__init__(f"'{search}' is ambiguous and could match any of: {names}")
        self.search = search
        self.candidates: List[str] = list(candidates)


class AuthenticationRequiredError(CxError):
    def __init__(self, token_path: Optional[str] = None) -> None:
        msg = "No previous authentication found."
        if token_path:
            msg += f" Expected a token at {token_path}, or set the CLOUD66_TOKEN environment variable."
        super().__init__(msg)
        self.token_path = token_path


class ProfileError(CxError):
    pass


class BundleError(CxError):
    pass
