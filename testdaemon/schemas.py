from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from testdaemon.constants import MATCH_ALL_DESCRIPTION


class ReporterKind(str, Enum):
    spec = "spec"
    json = "json"


class EventType(str, Enum):
    start = "start"
    log = "log"
    error = "error"
    json = "json"
    heartbeat = "heartbeat"
    done = "done"
    shutdown = "shutdown"


class DaemonStatus(str, Enum):
    ready = "ready"
    shutting_down = "shutting_down"


class RunRequest(BaseModel):
    """One on-demand run, built from the query string of a run request."""

    grep: Optional[str] = None
    file: Optional[str] = None
    invert: bool = False
    reporter: ReporterKind = ReporterKind.spec
    bail: bool = False
    snapshot_update: bool = False

    @field_validator("grep", "file")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value

    @property
    def description(self) -> str:
        parts: List[str] = []
        if self.file:
            parts.append(f"file:{self.file}")
        if self.grep:
            parts.append(self.grep)
        return " ".join(parts) if parts else MATCH_ALL_DESCRIPTION

    @property
    def machine_readable(self) -> bool:
        return self.reporter == ReporterKind.json


class StreamEvent(BaseModel):
    type: EventType
    data: Optional[Any] = None
    grep: Optional[str] = None
    invert: Optional[bool] = None
    failures: Optional[int] = Field(default=None, ge=0)
    reason: Optional[str] = None

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class HealthReport(BaseModel):
    status: DaemonStatus
    suites: int
    running: bool
