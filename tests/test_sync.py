from __future__ import annotations

from pathlib import Path

import pytest

from beadrelay.errors import StoreUnavailable
from beadrelay.models.plan import Decision, Plan, Step, load_plan, save_plan
from beadrelay.services.sync import PlanSync
from beadrelay.store.client import StoreClient


def make_plan() -> Plan:
    return Plan(
        title="Parser rollout",
        path="plans/parser.json",
        decisions=[Decision(id="D01", title="Use JSON")],
        steps=[
            Step(anchor="step-1", number="1", title="Parser", tasks=["write parser"], references=["[D01]"]),
            Step(anchor="step-2", number="2", title="Writer", tasks=["write writer"], depends_on=["step-1"]),
            Step(anchor="step-3", number="3", title="Docs", depends_on=["#step-2"]),
        ],
    )


@pytest.mark.asyncio
class TestPlanSync:
    async def test_creates_root_and_steps(self, store: StoreClient, bd_calls) -> None:
        plan = make_plan()

        report = await PlanSync(store).sync(plan)

        assert report.failures == []
        assert report.succeeded == 3
        assert plan.root_bead_id == report.root_bead_id
        assert all(step.bead_id for step in plan.steps)

        root = await store.show(plan.root_bead_id)
        assert root.title == "Parser rollout"
        assert root.issue_type == "epic"

        first = await store.show(plan.steps[0].bead_id)
        assert first.title == "Step 1: Parser"
        assert first.design == "## References\n- [D01] Use JSON"

        step_creates = [c["argv"] for c in bd_calls() if c["argv"][:1] == ["create"]][1:]
        assert all(argv[argv.index("--parent") + 1] == plan.root_bead_id for argv in step_creates)

    async def test_dependencies(self, store: StoreClient) -> None:
        plan = make_plan()

        report = await PlanSync(store).sync(plan)

        assert report.deps_added == 2
        deps = await store.dependencies(plan.steps[2].bead_id)
        assert [d.id for d in deps] == [plan.steps[1].bead_id]

    async def test_resync_reuses_existing_beads(self, store: StoreClient, bd_calls) -> None:
        plan = make_plan()
        await PlanSync(store).sync(plan)
        creates_before = sum(1 for c in bd_calls() if c["argv"][:1] == ["create"])
        ids_before = [s.bead_id for s in plan.steps]

        report = await PlanSync(store).sync(plan)

        creates_after = sum(1 for c in bd_calls() if c["argv"][:1] == ["create"])
        assert creates_after == creates_before
        assert report.created == {}
        assert list(report.existing.values()) == ids_before
        assert report.deps_added == 0

    async def test_stale_bead_id_is_recreated(self, store: StoreClient) -> None:
        plan = make_plan()
        plan.steps[0].bead_id = "bd-999"

        report = await PlanSync(store).sync(plan)

        assert "step-1" in report.created
        assert plan.steps[0].bead_id != "bd-999"

    async def test_failures_do_not_stop_the_batch(
        self, store: StoreClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FAKE_BD_FAIL", "create:Writer")
        plan = make_plan()

        report = await PlanSync(store).sync(plan)

        assert report.succeeded == 2
        assert plan.steps[1].bead_id is None
        assert plan.steps[2].bead_id is not None
        operations = [(f.anchor, f.operation) for f in report.failures]
        assert ("step-2", "create") in operations
        # step-3 depends on the bead that was never created
        assert ("step-3", "dep add") in operations
        create_failure = report.failures[0]
        assert create_failure.code == "E017"
        assert "database is locked" in create_failure.message

    async def test_failed_lookup_falls_back_to_per_bead_checks(
        self, store: StoreClient, bd_calls, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        plan = make_plan()
        await PlanSync(store).sync(plan)
        ids_before = [s.bead_id for s in plan.steps]
        creates_before = sum(1 for c in bd_calls() if c["argv"][:1] == ["create"])
        monkeypatch.setenv("FAKE_BD_FAIL", "list")

        report = await PlanSync(store).sync(plan)

        assert [(f.anchor, f.operation) for f in report.failures] == [("(plan)", "list")]
        assert "database is locked" in report.failures[0].message
        assert list(report.existing.values()) == ids_before
        assert report.created == {}
        creates_after = sum(1 for c in bd_calls() if c["argv"][:1] == ["create"])
        assert creates_after == creates_before
        shows = [c["argv"][1] for c in bd_calls() if c["argv"][:1] == ["show"]]
        assert set(ids_before) | {plan.root_bead_id} <= set(shows)

    async def test_failed_lookup_still_recreates_missing_beads(
        self, store: StoreClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        plan = make_plan()
        plan.root_bead_id = "bd-77"
        plan.steps[0].bead_id = "bd-78"
        monkeypatch.setenv("FAKE_BD_FAIL", "list")

        report = await PlanSync(store).sync(plan)

        assert report.root_bead_id not in (None, "bd-77")
        assert plan.steps[0].bead_id != "bd-78"
        assert set(report.created) == {"step-1", "step-2", "step-3"}
        assert report.deps_added == 2

    async def test_dry_run_touches_nothing(self, store: StoreClient, bd_calls) -> None:
        plan = make_plan()

        report = await PlanSync(store).sync(plan, dry_run=True)

        assert bd_calls() == []
        assert report.dry_run
        assert report.succeeded == 3
        assert report.deps_added == 2

    async def test_store_unavailable_aborts(self, repo: Path) -> None:
        client = StoreClient("/nonexistent/bin/bd", working_dir=repo)
        with pytest.raises(StoreUnavailable):
            await PlanSync(client).sync(make_plan())


def test_plan_round_trip_keeps_bead_ids(tmp_path: Path) -> None:
    plan = make_plan()
    plan.root_bead_id = "bd-1"
    plan.steps[0].bead_id = "bd-2"
    path = tmp_path / "plan.json"

    save_plan(plan, path)
    loaded = load_plan(path)

    assert loaded.root_bead_id == "bd-1"
    assert loaded.steps[0].bead_id == "bd-2"
    assert loaded.step("#step-2") is not None
    assert [s.anchor for s in loaded.select("step-2", "step-3")] == ["step-2", "step-3"]
