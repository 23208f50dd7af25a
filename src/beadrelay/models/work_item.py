from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Fields the coordination protocol reads and writes.
TEXT_FIELDS = ("description", "acceptance_criteria", "design", "notes", "close_reason")


class DependencyRef(BaseModel):
    """An edge to another bead as reported by ``bd show``."""

    model_config = ConfigDict(extra="ignore")

    id: str
    dependency_type: str = ""


class WorkItem(BaseModel):
    """A bead: the shared record coordinating one unit of work."""

    model_config = ConfigDict(extra="ignore")

    id: str
    title: str = ""
    description: str = ""
    acceptance_criteria: str = ""
    design: str = ""
    notes: str = ""
    close_reason: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: str = "open"  # open, in_progress, closed
    priority: int = 2
    issue_type: str = "task"
    dependencies: list[DependencyRef] = Field(default_factory=list)
    dependents: list[DependencyRef] = Field(default_factory=list)

    @field_validator(*TEXT_FIELDS, "title", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_default(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def is_closed(self) -> bool:
        return self.status == "closed"

    def field(self, name: str) -> str:
        if name not in TEXT_FIELDS:
            raise KeyError(f"unknown bead field: {name}")
        return getattr(self, name)
