"""Per-step progress of a plan, read back from its beads.

- complete: the step's bead is closed
- ready: the bead is open and nothing it depends on is still open
- blocked: an upstream step is not complete yet
- pending: no live bead is linked to the step
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from beadrelay.errors import NotFound
from beadrelay.models.plan import Plan, Step
from beadrelay.models.work_item import WorkItem
from beadrelay.store.client import StoreClient

logger = logging.getLogger(__name__)

# Edges that only group beads under the plan's root.
_NON_BLOCKING_EDGES = ("parent-child",)


class StepProgress(str, Enum):
    COMPLETE = "complete"
    READY = "ready"
    BLOCKED = "blocked"
    PENDING = "pending"


@dataclass
class StepStatus:
    anchor: str
    title: str
    progress: StepProgress
    bead_id: str | None = None
    close_reason: str = ""
    blocked_by: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "anchor": self.anchor,
            "title": self.title,
            "status": self.progress.value,
            "bead_id": self.bead_id,
            "close_reason": self.close_reason or None,
            "blocked_by": self.blocked_by,
        }


@dataclass
class PlanStatus:
    title: str
    steps: list[StepStatus] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        totals = {p.value: 0 for p in StepProgress}
        for step in self.steps:
            totals[step.progress.value] += 1
        return totals

    def as_dict(self) -> dict:
        return {
            "title": self.title,
            "counts": self.counts(),
            "steps": [s.as_dict() for s in self.steps],
        }


class PlanStatusReader:
    """Classify every step of a plan from bead status and dependency edges."""

    def __init__(self, store: StoreClient, working_dir: str | Path | None = None):
        self.store = store
        self.working_dir = working_dir
        self._items: dict[str, WorkItem | None] = {}

    async def status(self, plan: Plan) -> PlanStatus:
        self._items = {}
        anchors = {s.bead_id: s.anchor for s in plan.steps if s.bead_id}
        result = PlanStatus(title=plan.title)
        for step in plan.steps:
            result.steps.append(await self._classify(plan, step, anchors))
        return result

    async def _classify(self, plan: Plan, step: Step, anchors: dict[str, str]) -> StepStatus:
        status = StepStatus(
            anchor=step.anchor,
            title=step.bead_title,
            progress=StepProgress.PENDING,
            bead_id=step.bead_id,
        )
        item = await self._item(step.bead_id) if step.bead_id else None
        if item is None:
            return status
        if item.is_closed:
            status.progress = StepProgress.COMPLETE
            status.close_reason = item.close_reason
            return status

        for dep_anchor in step.depends_on:
            upstream = plan.step(dep_anchor)
            if upstream is None:
                logger.warning("%s depends on unknown step %s", step.anchor, dep_anchor)
                continue
            dep_item = await self._item(upstream.bead_id) if upstream.bead_id else None
            if dep_item is None or not dep_item.is_closed:
                status.blocked_by.append(upstream.anchor)

        for edge in await self.store.dependencies(item.id, self.working_dir):
            if edge.dependency_type in _NON_BLOCKING_EDGES:
                continue
            name = anchors.get(edge.id, edge.id)
            if name in status.blocked_by:
                continue
            dep_item = await self._item(edge.id)
            if dep_item is not None and not dep_item.is_closed:
                status.blocked_by.append(name)

        status.progress = StepProgress.BLOCKED if status.blocked_by else StepProgress.READY
        return status

    async def _item(self, bead_id: str) -> WorkItem | None:
        if bead_id not in self._items:
            try:
                self._items[bead_id] = await self.store.show(bead_id, self.working_dir)
            except NotFound:
                logger.warning("Bead %s not found", bead_id)
                self._items[bead_id] = None
        return self._items[bead_id]
