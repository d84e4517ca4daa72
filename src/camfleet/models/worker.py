"""Worker lifecycle result and event models.

WorkerResult is what start/stop/restart report to callers. WorkerExit is
the termination event the supervisor emits whenever a worker process ends.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

WorkerStatus = Literal["started", "already_running", "failed", "error", "stopped", "not_running"]
"""Outcome of a supervisor operation.

started          worker alive after the start grace window
already_running  a handle existed; nothing spawned
failed           worker exited inside the start grace window (see exit_code)
error            executable unavailable or spawn failure (see error)
stopped          worker terminated on request
not_running      no handle existed; nothing to stop
"""


class WorkerResult(BaseModel):
    """Structured outcome of a supervisor operation."""

    model_config = ConfigDict(populate_by_name=True)

    status: WorkerStatus

    camera_id: int = Field(alias="cameraId")

    exit_code: int | None = Field(default=None, alias="exitCode")

    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in ("started", "already_running", "stopped", "not_running")

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class WorkerExit(BaseModel):
    """Termination event for one worker process."""

    model_config = ConfigDict(populate_by_name=True)

    camera_id: int = Field(alias="cameraId")

    exit_code: int | None = Field(alias="exitCode")

    expected: bool = Field(description="True when the supervisor requested the stop")

    at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
