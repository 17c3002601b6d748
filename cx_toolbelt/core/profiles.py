"""Client profiles persisted in ``<cx_home>/cxprofiles.json``.

A profile binds an API endpoint, a token file and an optional default
organization. Switching profiles lets one installation talk to several
accounts or environments.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import ProfileError

DEFAULT_PROFILE_NAME = "default"
DEFAULT_BASE_URL = "https://app.cloud66.com"
DEFAULT_TOKEN_FILE = "cx.json"

logger = logging.getLogger(__name__)


class Profile(BaseModel):
    """A single cx client profile."""

    model_config = ConfigDict(extra="ignore")

    name: str
    base_url: str = DEFAULT_BASE_URL
    client_id: str = ""
    client_secret: str = ""
    token_file: str = DEFAULT_TOKEN_FILE
    organization: str = ""


class Profiles(BaseModel):
    model_config = ConfigDict(extra="ignore")

    last_profile: str = DEFAULT_PROFILE_NAME
    profiles: Dict[str, Profile] = Field(default_factory=dict)

    @classmethod
    def default(cls) -> "Profiles":
        return cls(
            last_profile=DEFAULT_PROFILE_NAME,
            profiles={DEFAULT_PROFILE_NAME: Profile(name=DEFAULT_PROFILE_NAME)},
        )

    @classmethod
    def read(cls, path: Path) -> "Profiles":
        """Load profiles from ``path``; a missing file yields the default profile."""
        if not path.exists():
            logger.debug("profiles file %s not found, using defaults", path)
            return cls.default()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ProfileError(f"Unable to parse {path}: {e}") from e
        try:
            profiles = cls.model_validate(data)
        except ValidationError as e:
            raise ProfileError(f"Unable to parse {path}: {e}") from e
        if DEFAULT_PROFILE_NAME not in profiles.profiles:
            profiles.profiles[DEFAULT_PROFILE_NAME] = Profile(name=DEFAULT_PROFILE_NAME)
        return profiles

    def write(self, path: Path) -> None:
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        path.write_text(json.dumps(self.model_dump(), indent=4), encoding="utf-8")

    def select(self, name: Optional[str] = None) -> Profile:
        """Return the named profile, or the last used one when ``name`` is empty."""
        profile_name = name or self.last_profile
        profile = self.profiles.get(profile_name)
        if profile is None:
            raise ProfileError(f"no profile named {profile_name} found")
        return profile

    def add(self, profile: Profile) -> None:
        if profile.name in self.profiles:
            raise ProfileError(f"a profile named {profile.name} already exists")
        self.profiles[profile.name] = profile

    def update(self, name: str, **changes: Optional[str]) -> Profile:
        profile = self.select(name)
        values = {k: v for k, v in changes.items() if v is not None}
        updated = profile.model_copy(update=values)
        self.profiles[name] = updated
        return updated

    def use(self, name: str) -> Profile:
        profile = self.select(name)
        self.last_profile = name
        return profile

    def remove(self, name: str) -> None:
        if name == DEFAULT_PROFILE_NAME:
            raise ProfileError("cannot delete the default profile")
        if name not in self.profiles:
            raise ProfileError(f"no profile named {name} found")
        del self.profiles[name]
        if self.last_profile == name:
            self.last_profile = DEFAULT_PROFILE_NAME
