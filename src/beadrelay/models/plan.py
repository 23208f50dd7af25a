from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from beadrelay.errors import PlanError


class Decision(BaseModel):
    """A design decision that steps reference by id (e.g. ``D01``)."""

    id: str
    title: str
    status: str = "decided"
    rationale: str = ""


class Step(BaseModel):
    """Planning-time description of one unit of work."""

    anchor: str
    title: str
    number: str = ""
    tasks: list[str] = Field(default_factory=list)
    artifacts: list[str] = Field(default_factory=list)
    tests: list[str] = Field(default_factory=list)
    checkpoints: list[str] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)
    commit_message: str | None = None
    depends_on: list[str] = Field(default_factory=list)
    bead_id: str | None = None

    @property
    def bead_title(self) -> str:
        if self.number:
            return f"Step {self.number}: {self.title}"
        return self.title


class Plan(BaseModel):
    """An ordered queue of steps plus the decisions they reference."""

    title: str
    path: str = ""
    decisions: list[Decision] = Field(default_factory=list)
    steps: list[Step] = Field(default_factory=list)
    root_bead_id: str | None = None

    def step(self, anchor: str) -> Step | None:
        anchor = anchor.lstrip("#")
        for step in self.steps:
            if step.anchor == anchor:
                return step
        return None

    def select(self, start: str | None = None, end: str | None = None) -> list[Step]:
        """Return the steps between ``start`` and ``end`` anchors, inclusive."""
        anchors = [s.anchor for s in self.steps]
        lo, hi = 0, len(self.steps)
        if start:
            key = start.lstrip("#")
            if key not in anchors:
                raise PlanError(f"unknown start step: {start}")
            lo = anchors.index(key)
        if end:
            key = end.lstrip("#")
            if key not in anchors:
                raise PlanError(f"unknown end step: {end}")
            hi = anchors.index(key) + 1
        return self.steps[lo:hi]


def load_plan(path: str | Path) -> Plan:
    path = Path(path)
    try:
        raw = path.read_text()
    except OSError as exc:
        raise PlanError(f"failed to read plan {path}: {exc}") from exc
    try:
        plan = Plan.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise PlanError(f"invalid plan {path}: {exc}") from exc
    if not plan.path:
        plan.path = str(path)
    return plan


def save_plan(plan: Plan, path: str | Path) -> None:
    Path(path).write_text(plan.model_dump_json(indent=2, exclude_none=True) + "\n")
