"""Per-directory defaults read from ``.cx.yml``.

Example::

    args:
      stack: my-app
      environment: production
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import DOT_YAML_FILENAME


class DotYaml(BaseModel):
    model_config = ConfigDict(extra="ignore")

    args: Dict[str, str] = Field(default_factory=dict)

    @field_validator("args", mode="before")
    @classmethod
    def _stringify(cls, v):
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(k): "" if val is None else str(val) for k, val in v.items()}
        return v

    def get(self, name: str) -> Optional[str]:
        value = self.args.get(name)
        return value or None


def read_dot_yaml(directory: Path) -> Optional[DotYaml]:
    """Parse ``.cx.yml`` in ``directory``; returns ``None`` when absent or unreadable."""
    path = directory / DOT_YAML_FILENAME
    if not path.is_file():
        return None
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError:
        return None
    if not isinstance(data, dict):
        return None
    return DotYaml.model_validate(data)
