"""Per-camera detection settings.

DetectionConfig is the document written to ``camera_<id>_config.json``
before each worker start. The worker understands two class filters:

- ``enabledClasses``: list of booleans indexed by class id (current format)
- ``enabled``: ``{"<class id>": bool}`` mapping (legacy format)

Classes missing from either filter are treated as enabled by the worker.
Any other field sent by a client is preserved and passed through.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DetectionConfig(BaseModel):
    """Detection options for one camera."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=(), extra="allow")

    enabled_classes: list[bool] | None = Field(
        default=None,
        alias="enabledClasses",
        description="Per-class toggle, indexed by class id",
    )

    enabled: dict[str, bool] | None = Field(
        default=None,
        description="Legacy per-class toggle keyed by class id string",
    )

    model_id: str | None = Field(default=None, alias="modelId")

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
