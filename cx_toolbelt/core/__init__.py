"""Settings, profiles, per-directory defaults and logging."""

from .config import Settings
from .profiles import Profile, Profiles

__all__ = ["Settings", "Profile", "Profiles"]
