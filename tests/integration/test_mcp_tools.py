"""Integration tests that exercise the worker tools through the service layer.

These tests simulate the full flow the four workers follow on one bead:
strategize → implement → review → revise → review → close.
"""

from __future__ import annotations

import pytest

from beadrelay.models.plan import Decision, Step
from beadrelay.services.protocol import ProducerView
from beadrelay.store.client import SEPARATOR, StoreClient
from beadrelay.tools import beads as bead_tools


@pytest.fixture
async def bead(store: StoreClient) -> str:
    step = Step(
        anchor="step-1",
        number="1",
        title="Parser",
        tasks=["Write the parser"],
        tests=["parses headers"],
        references=["[D01]"],
    )
    return await ProducerView(store).create_item(step, [Decision(id="D01", title="X")])


@pytest.mark.asyncio
class TestWorkerToolFlow:
    async def test_full_step_cycle(self, store: StoreClient, bead: str) -> None:
        # Strategist
        seen = await bead_tools.inspect_envelope(store, bead)
        assert seen.data["acceptance_criteria"] == "## Tests\n- [ ] parses headers"
        await bead_tools.append_design_envelope(store, bead, "## Architect Strategy\n...")

        # Implementer, first attempt, then a review asking for changes
        await bead_tools.update_notes_envelope(store, bead, "## Coder Results\nv1")
        await bead_tools.append_notes_envelope(store, bead, "## Review\nrevise")

        # Second attempt replaces the notes, the new review is appended
        await bead_tools.update_notes_envelope(store, bead, "## Coder Results\nv2")
        await bead_tools.append_notes_envelope(store, bead, "## Review\napprove")

        # Finalizer
        closed = await bead_tools.close_envelope(store, bead, "abc1234", "Add parser")
        assert closed.status == "ok"

        item = await store.show(bead)
        assert item.design == "## References\n- [D01] X\n\n---\n\n## Architect Strategy\n..."
        assert item.notes.split(SEPARATOR) == ["## Coder Results\nv2", "## Review\napprove"]
        assert item.is_closed
        assert item.close_reason == "Committed: abc1234 -- Add parser"

    async def test_writes_to_missing_bead_fail_cleanly(self, store: StoreClient) -> None:
        for envelope in (
            await bead_tools.append_design_envelope(store, "bd-404", "x"),
            await bead_tools.update_notes_envelope(store, "bd-404", "x"),
            await bead_tools.append_notes_envelope(store, "bd-404", "x"),
        ):
            assert envelope.status == "error"
            assert envelope.issues[0].code == "E014"
