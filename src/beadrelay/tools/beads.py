from __future__ import annotations

from mcp.server.fastmcp import FastMCP

from beadrelay.errors import BeadRelayError
from beadrelay.models.envelope import Envelope, Issue
from beadrelay.models.work_item import WorkItem
from beadrelay.services.protocol import FinalizerView, ImplementerView, StrategistView, VerifierView
from beadrelay.store.client import StoreClient


def bead_data(item: WorkItem) -> dict:
    """The fields a worker sees when it inspects a bead."""
    return {
        "id": item.id,
        "title": item.title,
        "status": item.status,
        "priority": item.priority,
        "issue_type": item.issue_type,
        "description": item.description,
        "acceptance_criteria": item.acceptance_criteria,
        "design": item.design,
        "notes": item.notes,
        "close_reason": item.close_reason,
        "dependencies": [d.model_dump() for d in item.dependencies],
    }


async def inspect_envelope(
    store: StoreClient, bead_id: str, working_dir: str | None = None
) -> Envelope:
    try:
        item = await store.show(bead_id, working_dir)
    except BeadRelayError as exc:
        return Envelope.error("inspect", exc, {"bead_id": bead_id})
    return Envelope.ok("inspect", bead_data(item))


async def append_design_envelope(
    store: StoreClient, bead_id: str, content: str, working_dir: str | None = None
) -> Envelope:
    try:
        design = await StrategistView(store, bead_id, working_dir).append_design(content)
    except BeadRelayError as exc:
        return Envelope.error("append-design", exc, {"bead_id": bead_id})
    return Envelope.ok("append-design", {"bead_id": bead_id, "design_length": len(design)})


async def update_notes_envelope(
    store: StoreClient, bead_id: str, content: str, working_dir: str | None = None
) -> Envelope:
    try:
        notes = await ImplementerView(store, bead_id, working_dir).overwrite_notes(content)
    except BeadRelayError as exc:
        return Envelope.error("update-notes", exc, {"bead_id": bead_id})
    return Envelope.ok("update-notes", {"bead_id": bead_id, "notes_length": len(notes)})


async def append_notes_envelope(
    store: StoreClient, bead_id: str, content: str, working_dir: str | None = None
) -> Envelope:
    try:
        notes = await VerifierView(store, bead_id, working_dir).append_notes(content)
    except BeadRelayError as exc:
        return Envelope.error("append-notes", exc, {"bead_id": bead_id})
    return Envelope.ok("append-notes", {"bead_id": bead_id, "notes_length": len(notes)})


async def close_envelope(
    store: StoreClient,
    bead_id: str,
    commit: str,
    summary: str,
    working_dir: str | None = None,
) -> Envelope:
    try:
        outcome = await FinalizerView(store, bead_id, working_dir).close(commit, summary)
    except BeadRelayError as exc:
        return Envelope.error("close", exc, {"bead_id": bead_id})
    issues = [
        Issue(code="E016", severity="warning", message=w, bead_id=bead_id)
        for w in outcome.warnings
    ]
    return Envelope.ok(
        "close", {"bead_id": bead_id, "close_reason": outcome.reason}, issues=issues
    )


def register(mcp: FastMCP, store: StoreClient) -> None:
    """Register the bead field tools workers call during a step."""

    @mcp.tool()
    async def inspect_bead(bead_id: str, working_dir: str | None = None) -> dict:
        """Read every field of a bead.

        Call this first: the description holds the work to do, acceptance
        criteria the checks, design the strategy, and notes the latest
        implementation summary plus any reviews.
        """
        return (await inspect_envelope(store, bead_id, working_dir)).model_dump(exclude_none=True)

    @mcp.tool()
    async def append_design(bead_id: str, content: str, working_dir: str | None = None) -> dict:
        """Append a strategy section to the bead's design (strategist only).

        Existing design text, including the plan references, is kept.
        """
        envelope = await append_design_envelope(store, bead_id, content, working_dir)
        return envelope.model_dump(exclude_none=True)

    @mcp.tool()
    async def update_notes(bead_id: str, content: str, working_dir: str | None = None) -> dict:
        """Replace the bead's notes with an implementation summary (implementer only).

        Earlier reviews are discarded; each attempt starts a fresh notes field.
        """
        envelope = await update_notes_envelope(store, bead_id, content, working_dir)
        return envelope.model_dump(exclude_none=True)

    @mcp.tool()
    async def append_notes(bead_id: str, content: str, working_dir: str | None = None) -> dict:
        """Append a review to the bead's notes (verifier only)."""
        envelope = await append_notes_envelope(store, bead_id, content, working_dir)
        return envelope.model_dump(exclude_none=True)
