"""Field ownership: which role may read, overwrite or append which bead field.

The store has no access control, so the rules live here. Each role gets a
view object exposing only the operations its row of :data:`OWNERSHIP`
allows; code for a role never holds the full :class:`StoreClient` surface.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from pathlib import Path

from beadrelay.errors import AccessViolation
from beadrelay.models.plan import Decision, Plan, Step
from beadrelay.services import codec
from beadrelay.store.client import CloseOutcome, StoreClient, overwrite_transform

logger = logging.getLogger(__name__)

PROTOCOL_FIELDS = ("description", "acceptance_criteria", "design", "notes")


class Role(str, Enum):
    PRODUCER = "producer"
    STRATEGIST = "strategist"
    IMPLEMENTER = "implementer"
    VERIFIER = "verifier"
    FINALIZER = "finalizer"


class Access(str, Enum):
    NONE = "none"
    READ = "read"
    WRITE_ONCE = "write_once"
    OVERWRITE = "overwrite"
    APPEND = "append"


OWNERSHIP: dict[Role, dict[str, Access]] = {
    Role.PRODUCER: {
        "description": Access.WRITE_ONCE,
        "acceptance_criteria": Access.WRITE_ONCE,
        "design": Access.WRITE_ONCE,
        "notes": Access.NONE,
    },
    Role.STRATEGIST: {
        "description": Access.READ,
        "acceptance_criteria": Access.READ,
        "design": Access.APPEND,
        "notes": Access.NONE,
    },
    Role.IMPLEMENTER: {
        "description": Access.READ,
        "acceptance_criteria": Access.NONE,
        "design": Access.READ,
        "notes": Access.OVERWRITE,
    },
    Role.VERIFIER: {
        "description": Access.READ,
        "acceptance_criteria": Access.READ,
        "design": Access.READ,
        "notes": Access.APPEND,
    },
    # Reads notes only from the summary handed over by the orchestrator.
    Role.FINALIZER: {
        "description": Access.NONE,
        "acceptance_criteria": Access.NONE,
        "design": Access.NONE,
        "notes": Access.READ,
    },
}

# Writers may also read what they append to.
_READABLE = {Access.READ, Access.APPEND}


def access(role: Role, field_name: str) -> Access:
    return OWNERSHIP[role].get(field_name, Access.NONE)


def can(role: Role, field_name: str, wanted: Access) -> bool:
    granted = access(role, field_name)
    if wanted is Access.READ:
        return granted in _READABLE
    return granted is wanted


def _require(role: Role, field_name: str, wanted: Access) -> None:
    if not can(role, field_name, wanted):
        raise AccessViolation(
            f"{role.value} may not {wanted.value} {field_name} "
            f"(table grants {access(role, field_name).value})"
        )


def format_close_reason(commit: str, summary: str) -> str:
    """Fixed-format close reason: ``Committed: <commit> -- <one-line summary>``."""
    one_line = re.sub(r"\s+", " ", summary).strip()
    return f"Committed: {commit} -- {one_line}"


class _BeadView:
    """Base for role views bound to a single bead and working directory."""

    role: Role
    reads: tuple[str, ...] = ()
    writes: tuple[tuple[str, Access], ...] = ()

    def __init__(self, store: StoreClient, bead_id: str, working_dir: str | Path | None = None):
        for field_name in self.reads:
            _require(self.role, field_name, Access.READ)
        for field_name, wanted in self.writes:
            _require(self.role, field_name, wanted)
        self._store = store
        self.bead_id = bead_id
        self.working_dir = working_dir

    async def _read(self, field_name: str) -> str:
        item = await self._store.show(self.bead_id, self.working_dir)
        return item.field(field_name)


class StrategistView(_BeadView):
    role = Role.STRATEGIST
    reads = ("description", "acceptance_criteria", "design")
    writes = (("design", Access.APPEND),)

    async def read_description(self) -> str:
        return await self._read("description")

    async def read_acceptance(self) -> str:
        return await self._read("acceptance_criteria")

    async def read_design(self) -> str:
        return await self._read("design")

    async def append_design(self, content: str) -> str:
        return await self._store.append_field(self.bead_id, "design", content, self.working_dir)


class ImplementerView(_BeadView):
    role = Role.IMPLEMENTER
    reads = ("description", "design")
    writes = (("notes", Access.OVERWRITE),)

    async def read_description(self) -> str:
        return await self._read("description")

    async def read_design(self) -> str:
        return await self._read("design")

    async def overwrite_notes(self, content: str) -> str:
        # Always overwrite: a retry discards the previous cycle's review.
        return await self._store.read_modify_write(
            self.bead_id, "notes", overwrite_transform(content), self.working_dir
        )


class VerifierView(_BeadView):
    role = Role.VERIFIER
    reads = ("description", "acceptance_criteria", "design", "notes")
    writes = (("notes", Access.APPEND),)

    async def read_description(self) -> str:
        return await self._read("description")

    async def read_acceptance(self) -> str:
        return await self._read("acceptance_criteria")

    async def read_design(self) -> str:
        return await self._read("design")

    async def read_notes(self) -> str:
        return await self._read("notes")

    async def append_notes(self, content: str) -> str:
        return await self._store.append_field(self.bead_id, "notes", content, self.working_dir)


class FinalizerView(_BeadView):
    role = Role.FINALIZER

    async def close(self, commit: str, summary: str) -> CloseOutcome:
        reason = format_close_reason(commit, summary)
        return await self._store.close(self.bead_id, reason, self.working_dir)


class ProducerView:
    """Writes description, acceptance criteria and design references once, at creation."""

    role = Role.PRODUCER

    def __init__(self, store: StoreClient, working_dir: str | Path | None = None):
        for field_name in ("description", "acceptance_criteria", "design"):
            _require(self.role, field_name, Access.WRITE_ONCE)
        self._store = store
        self.working_dir = working_dir

    async def create_root(self, plan: Plan, *, issue_type: str = "epic") -> str:
        description = f"Plan: {plan.path}" if plan.path else f"Plan: {plan.title}"
        return await self._store.create(
            plan.title,
            description=description,
            issue_type=issue_type,
            working_dir=self.working_dir,
        )

    async def create_item(
        self,
        step: Step,
        decisions: list[Decision],
        *,
        parent: str | None = None,
    ) -> str:
        return await self._store.create(
            step.bead_title,
            description=codec.render_work_spec(step) or None,
            acceptance=codec.render_acceptance(step) or None,
            design=codec.render_design_references(step, decisions) or None,
            parent=parent,
            working_dir=self.working_dir,
        )


_VIEWS: dict[Role, type[_BeadView]] = {
    Role.STRATEGIST: StrategistView,
    Role.IMPLEMENTER: ImplementerView,
    Role.VERIFIER: VerifierView,
    Role.FINALIZER: FinalizerView,
}


def view_for(
    role: Role, store: StoreClient, bead_id: str, working_dir: str | Path | None = None
) -> _BeadView:
    try:
        view_cls = _VIEWS[role]
    except KeyError:
        raise AccessViolation(f"{role.value} has no per-bead view") from None
    return view_cls(store, bead_id, working_dir)
