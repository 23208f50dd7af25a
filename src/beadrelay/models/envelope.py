from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from beadrelay.errors import BeadRelayError

SCHEMA_VERSION = "1"


class Issue(BaseModel):
    code: str
    severity: str = "error"  # error, warning, info
    message: str
    bead_id: str | None = None


class Envelope(BaseModel):
    """Single structured response emitted by every worker-facing command."""

    schema_version: str = SCHEMA_VERSION
    command: str
    status: str = "ok"  # ok, error
    data: dict[str, Any] = Field(default_factory=dict)
    issues: list[Issue] = Field(default_factory=list)

    @classmethod
    def ok(
        cls, command: str, data: dict[str, Any], issues: list[Issue] | None = None
    ) -> "Envelope":
        return cls(command=command, status="ok", data=data, issues=issues or [])

    @classmethod
    def error(
        cls, command: str, exc: BeadRelayError, data: dict[str, Any] | None = None
    ) -> "Envelope":
        issue = Issue(
            code=exc.code,
            severity="error",
            message=str(exc),
            bead_id=getattr(exc, "bead_id", None),
        )
        return cls(command=command, status="error", data=data or {}, issues=[issue])

    def to_json(self) -> str:
        return self.model_dump_json(indent=2, exclude_none=True)
