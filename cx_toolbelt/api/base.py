"""Pydantic base schema for Cloud 66 API payloads.

The API speaks snake_case JSON and adds fields over time, so unknown fields
are ignored rather than rejected.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Shared base for all API models.

    - Ignores extra fields returned by newer API versions
    - Enables populate_by_name so aliased fields accept either spelling
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
    )
