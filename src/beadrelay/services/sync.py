"""Populate beads for a plan: one root bead plus one bead per step.

Best effort: a failure on one step is recorded and the batch carries on.
Steps that already have a live bead are left untouched, since description,
acceptance criteria and design references are written once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from beadrelay.errors import BeadRelayError, StoreUnavailable
from beadrelay.models.plan import Plan
from beadrelay.services.protocol import ProducerView
from beadrelay.store.client import StoreClient

logger = logging.getLogger(__name__)


@dataclass
class SyncFailure:
    anchor: str
    operation: str
    message: str
    code: str = "E017"

    def as_dict(self) -> dict:
        return {
            "anchor": self.anchor,
            "operation": self.operation,
            "message": self.message,
            "code": self.code,
        }


@dataclass
class SyncReport:
    root_bead_id: str | None = None
    created: dict[str, str] = field(default_factory=dict)
    existing: dict[str, str] = field(default_factory=dict)
    deps_added: int = 0
    failures: list[SyncFailure] = field(default_factory=list)
    dry_run: bool = False

    @property
    def succeeded(self) -> int:
        return len(self.created) + len(self.existing)

    def as_dict(self) -> dict:
        return {
            "root_bead_id": self.root_bead_id,
            "created": self.created,
            "existing": self.existing,
            "steps_synced": self.succeeded,
            "deps_added": self.deps_added,
            "failures": [f.as_dict() for f in self.failures],
            "dry_run": self.dry_run,
        }


class PlanSync:
    """Create or reuse the beads for every step of a plan."""

    def __init__(self, store: StoreClient, working_dir: str | Path | None = None):
        self.store = store
        self.working_dir = working_dir
        self.producer = ProducerView(store, working_dir)

    async def sync(self, plan: Plan, *, dry_run: bool = False) -> SyncReport:
        """Sync ``plan`` and record the resulting bead ids on it.

        Only a missing store aborts the batch; everything else is collected
        into ``report.failures``.
        """
        report = SyncReport(dry_run=dry_run)

        known = [s.bead_id for s in plan.steps if s.bead_id]
        if plan.root_bead_id:
            known.append(plan.root_bead_id)
        existing: set[str] = set()
        if known and not dry_run:
            existing = await self._existing(known, report)

        await self._ensure_root(plan, existing, report)

        anchor_to_bead: dict[str, str] = {}
        fresh: set[str] = set()
        for step in plan.steps:
            if step.bead_id and step.bead_id in existing:
                anchor_to_bead[step.anchor] = step.bead_id
                report.existing[step.anchor] = step.bead_id
                continue
            if step.bead_id:
                logger.warning("Step bead %s for %s not found, recreating", step.bead_id, step.anchor)
            if dry_run:
                bead_id = f"dryrun-{step.anchor}"
            else:
                try:
                    bead_id = await self.producer.create_item(
                        step, plan.decisions, parent=report.root_bead_id
                    )
                except StoreUnavailable:
                    raise
                except BeadRelayError as exc:
                    logger.error("Failed to create bead for %s: %s", step.anchor, exc)
                    report.failures.append(
                        SyncFailure(step.anchor, "create", str(exc), exc.code)
                    )
                    continue
            step.bead_id = bead_id
            anchor_to_bead[step.anchor] = bead_id
            report.created[step.anchor] = bead_id
            fresh.add(step.anchor)

        # Edges of pre-existing beads were set when they were created.
        for step in plan.steps:
            if step.anchor not in fresh:
                continue
            for dep_anchor in step.depends_on:
                dep_anchor = dep_anchor.lstrip("#")
                dep_bead = anchor_to_bead.get(dep_anchor)
                if dep_bead is None:
                    report.failures.append(
                        SyncFailure(
                            step.anchor, "dep add", f"no bead for dependency {dep_anchor}", "E010"
                        )
                    )
                    continue
                if dry_run:
                    report.deps_added += 1
                    continue
                try:
                    await self.store.add_dependency(
                        anchor_to_bead[step.anchor], dep_bead, self.working_dir
                    )
                    report.deps_added += 1
                except StoreUnavailable:
                    raise
                except BeadRelayError as exc:
                    report.failures.append(
                        SyncFailure(step.anchor, "dep add", str(exc), exc.code)
                    )

        logger.info(
            "Synced %d steps (%d created, %d failed)",
            report.succeeded,
            len(report.created),
            len(report.failures),
        )
        return report

    async def _existing(self, ids: list[str], report: SyncReport) -> set[str]:
        """Known ids that still resolve. Falls back to one show per id if the bulk list fails."""
        try:
            return await self.store.existing_ids(ids, self.working_dir)
        except StoreUnavailable:
            raise
        except BeadRelayError as exc:
            logger.warning("Bulk bead lookup failed, checking beads one by one: %s", exc)
            report.failures.append(SyncFailure("(plan)", "list", str(exc), exc.code))

        found: set[str] = set()
        for bead_id in ids:
            try:
                if await self.store.exists(bead_id, self.working_dir):
                    found.add(bead_id)
            except StoreUnavailable:
                raise
            except BeadRelayError as exc:
                # Unknown state: keep the id rather than create a duplicate bead.
                logger.warning("Could not check bead %s: %s", bead_id, exc)
                found.add(bead_id)
        return found

    async def _ensure_root(self, plan: Plan, existing: set[str], report: SyncReport) -> None:
        if plan.root_bead_id and plan.root_bead_id in existing:
            report.root_bead_id = plan.root_bead_id
            return
        if plan.root_bead_id:
            logger.warning("Root bead %s not found, recreating", plan.root_bead_id)
        if report.dry_run:
            report.root_bead_id = "dryrun-root"
            plan.root_bead_id = report.root_bead_id
            return
        try:
            report.root_bead_id = await self.producer.create_root(plan)
        except StoreUnavailable:
            raise
        except BeadRelayError as exc:
            logger.error("Failed to create root bead: %s", exc)
            report.failures.append(SyncFailure("(root)", "create", str(exc), exc.code))
            return
        plan.root_bead_id = report.root_bead_id
