"""Drive steps through Strategize -> Implement -> Verify -> Finalize.

The orchestrator knows a step only by its :class:`StepRef` (anchor, bead id,
title). It never reads or writes bead fields; workers do that themselves.
Decisions come solely from each worker's structured return value.

Per step::

    STRATEGIZE -> IMPLEMENT -> VERIFY -> FINALIZE -> DONE
                     ^           |
                     +-- revise -+   (at most ``retry_cap`` non-approving
                                      verify outcomes, then ESCALATE)

Across steps the queue runs in order and halts on the first step that ends in
ESCALATE or ABORT, or on any worker error.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

from beadrelay.errors import WorkerError
from beadrelay.models.results import (
    DriftAssessment,
    FinalizerResult,
    FinalizerSummary,
    ImplementerResult,
    StrategistResult,
    Verdict,
    VerifierResult,
)
from beadrelay.services import event_bus as events
from beadrelay.services.dispatcher import Dispatcher, DispatchRequest, ResultT
from beadrelay.services.drift import classify_drift
from beadrelay.services.event_bus import EventBus
from beadrelay.services.resolver import AUTO, REQUIRED_WORKERS, verify_required

logger = logging.getLogger(__name__)

DEFAULT_RETRY_CAP = 3


class StepState(str, Enum):
    STRATEGIZE = "strategize"
    IMPLEMENT = "implement"
    VERIFY = "verify"
    FINALIZE = "finalize"
    DONE = "done"
    ESCALATE = "escalate"
    ABORT = "abort"

    @property
    def terminal(self) -> bool:
        return self in (StepState.DONE, StepState.ESCALATE, StepState.ABORT)


@dataclass(frozen=True)
class StepRef:
    """The orchestrator's whole view of a step."""

    anchor: str
    bead_id: str
    title: str = ""


class DecisionAction(str, Enum):
    CONTINUE = "continue"
    ABORT = "abort"


@dataclass
class DecisionPoint:
    kind: str  # drift, escalate
    step: StepRef
    message: str
    attempts: int = 0
    drift: DriftAssessment | None = None
    issues: list[str] = field(default_factory=list)


class DecisionHandler(Protocol):
    async def decide(self, point: DecisionPoint) -> DecisionAction: ...


class HaltOnDecision:
    """Non-interactive default: every decision point stops the step."""

    async def decide(self, point: DecisionPoint) -> DecisionAction:
        logger.warning("Decision needed for %s (%s): %s", point.step.anchor, point.kind, point.message)
        return DecisionAction.ABORT


@dataclass
class StepOutcome:
    step: StepRef
    state: StepState
    attempts: int = 0
    revisions: int = 0
    history: list[StepState] = field(default_factory=list)
    reason: str = ""
    finalizer: FinalizerResult | None = None
    error: str | None = None

    def as_dict(self) -> dict:
        return {
            "anchor": self.step.anchor,
            "bead_id": self.step.bead_id,
            "state": self.state.value,
            "attempts": self.attempts,
            "revisions": self.revisions,
            "history": [s.value for s in self.history],
            "reason": self.reason,
            "close_reason": self.finalizer.close_reason if self.finalizer else None,
            "error": self.error,
        }


@dataclass
class RunOutcome:
    run_id: str
    steps: list[StepOutcome] = field(default_factory=list)
    remaining: list[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        if not self.steps:
            return "done"
        last = self.steps[-1]
        if last.error:
            return "failed"
        if last.state is StepState.ESCALATE:
            return "escalated"
        if last.state is StepState.ABORT:
            return "aborted"
        return "done"

    @property
    def halted_at(self) -> str | None:
        if self.status == "done":
            return None
        return self.steps[-1].step.anchor

    def as_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "halted_at": self.halted_at,
            "steps": [s.as_dict() for s in self.steps],
            "remaining": self.remaining,
        }


class StepRunner:
    """The per-step state machine."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        workers: dict[str, Path],
        *,
        working_dir: str | Path,
        retry_cap: int = DEFAULT_RETRY_CAP,
        timeout: float | None = None,
        decisions: DecisionHandler | None = None,
        event_bus: EventBus | None = None,
    ):
        if retry_cap < 1:
            raise ValueError("retry_cap must be at least 1")
        self.dispatcher = dispatcher
        self.workers = workers
        self.working_dir = Path(working_dir)
        self.retry_cap = retry_cap
        self.timeout = timeout
        self.decisions = decisions or HaltOnDecision()
        self.event_bus = event_bus or EventBus()

    async def _publish(self, event_type: str, step: StepRef, **data) -> None:
        await self.event_bus.publish(
            event_type, {"anchor": step.anchor, "bead_id": step.bead_id, **data}
        )

    async def _dispatch(
        self,
        worker: str,
        step: StepRef,
        result_model: type[ResultT],
        *,
        attempt: int = 1,
        summary: FinalizerSummary | None = None,
    ) -> ResultT:
        request = DispatchRequest(
            worker=worker,
            definition=self.workers[worker],
            bead_id=step.bead_id,
            working_dir=self.working_dir,
            attempt=attempt,
            summary=summary,
        )
        await self._publish(events.WORKER_DISPATCHED, step, worker=worker, attempt=attempt)
        result = await self.dispatcher.dispatch(request, result_model, self.timeout)
        await self._publish(
            events.WORKER_RETURNED,
            step,
            worker=worker,
            attempt=attempt,
            result=result.model_dump(mode="json"),
        )
        return result

    async def _decide(self, point: DecisionPoint) -> DecisionAction:
        await self._publish(
            events.DECISION_POINT, point.step, kind=point.kind, message=point.message
        )
        return await self.decisions.decide(point)

    async def run(self, step: StepRef) -> StepOutcome:
        outcome = StepOutcome(step=step, state=StepState.STRATEGIZE)
        expected_files: list[str] = []
        implementation: ImplementerResult
        approved: FinalizerSummary | None = None

        await self._publish(events.STEP_STARTED, step)
        state = StepState.STRATEGIZE
        while True:
            outcome.history.append(state)
            outcome.state = state
            await self._publish(events.STEP_TRANSITION, step, state=state.value)
            if state.terminal:
                break

            if state is StepState.STRATEGIZE:
                strategy = await self._dispatch("strategist", step, StrategistResult)
                if strategy.status == "blocked":
                    outcome.reason = strategy.summary or "strategist blocked"
                    state = await self._escalate(step, outcome, outcome.reason)
                    continue
                expected_files = strategy.expected_files
                state = StepState.IMPLEMENT

            elif state is StepState.IMPLEMENT:
                outcome.attempts += 1
                implementation = await self._dispatch(
                    "implementer", step, ImplementerResult, attempt=outcome.attempts
                )
                if implementation.status == "failed":
                    outcome.reason = implementation.summary or "implementer failed"
                    state = await self._escalate(step, outcome, outcome.reason)
                    continue
                state = await self._check_drift(step, outcome, implementation, expected_files)

            elif state is StepState.VERIFY:
                review = await self._dispatch(
                    "verifier", step, VerifierResult, attempt=outcome.attempts
                )
                if review.verdict is Verdict.APPROVE:
                    # VERIFY is only entered from IMPLEMENT, so implementation is bound.
                    approved = FinalizerSummary(
                        summary=implementation.summary or step.title,
                        files_touched=implementation.files_touched,
                        tests_passed=implementation.tests_passed,
                        verdict=review.verdict,
                        review=review.summary,
                        attempts=outcome.attempts,
                    )
                    state = StepState.FINALIZE
                    continue
                outcome.revisions += 1
                if review.verdict is Verdict.ESCALATE:
                    outcome.reason = review.summary or "verifier escalated"
                    state = await self._escalate(step, outcome, outcome.reason, review.issues)
                elif outcome.revisions >= self.retry_cap:
                    outcome.reason = (
                        f"retry budget exhausted after {outcome.revisions} revisions"
                    )
                    state = await self._escalate(step, outcome, outcome.reason, review.issues)
                else:
                    logger.info(
                        "Verifier requested revision %d/%d for %s",
                        outcome.revisions,
                        self.retry_cap,
                        step.anchor,
                    )
                    state = StepState.IMPLEMENT

            elif state is StepState.FINALIZE:
                final = await self._dispatch(
                    "finalizer", step, FinalizerResult, summary=approved
                )
                outcome.finalizer = final
                if final.success:
                    outcome.reason = final.close_reason or ""
                    state = StepState.DONE
                else:
                    outcome.reason = "; ".join(final.warnings) or "finalizer reported failure"
                    state = StepState.ABORT

        await self._publish(events.STEP_FINISHED, step, state=outcome.state.value, reason=outcome.reason)
        return outcome

    async def _check_drift(
        self,
        step: StepRef,
        outcome: StepOutcome,
        implementation: ImplementerResult,
        strategy_files: list[str],
    ) -> StepState:
        expected = implementation.expected_files or strategy_files
        if expected:
            implementation.drift = classify_drift(expected, implementation.files_touched)
        drift = implementation.drift
        if not drift.level.halts:
            return StepState.VERIFY

        point = DecisionPoint(
            kind="drift",
            step=step,
            message=f"{drift.level.value} drift ({drift.points} points)",
            attempts=outcome.attempts,
            drift=drift,
            issues=[*drift.adjacent, *drift.unrelated],
        )
        action = await self._decide(point)
        if action is DecisionAction.CONTINUE:
            return StepState.VERIFY
        outcome.reason = f"aborted on {point.message}"
        return StepState.ABORT

    async def _escalate(
        self,
        step: StepRef,
        outcome: StepOutcome,
        message: str,
        issues: list[str] | None = None,
    ) -> StepState:
        point = DecisionPoint(
            kind="escalate",
            step=step,
            message=message,
            attempts=outcome.attempts,
            issues=list(issues or []),
        )
        await self._decide(point)
        return StepState.ESCALATE


class Orchestrator:
    """Runs a queue of steps, one worker at a time."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        project_root: str | Path,
        working_dir: str | Path | None = None,
        retry_cap: int = DEFAULT_RETRY_CAP,
        timeout: float | None = None,
        decisions: DecisionHandler | None = None,
        event_bus: EventBus | None = None,
        share_dir: Path | None | object = AUTO,
    ):
        self.dispatcher = dispatcher
        self.project_root = Path(project_root)
        self.working_dir = Path(working_dir) if working_dir else self.project_root
        self.retry_cap = retry_cap
        self.timeout = timeout
        self.decisions = decisions
        self.event_bus = event_bus or EventBus()
        self.share_dir = share_dir

    async def run(self, steps: list[StepRef], run_id: str | None = None) -> RunOutcome:
        """Run ``steps`` in order. Raises :class:`MissingWorkers` before any dispatch."""
        workers = verify_required(REQUIRED_WORKERS, self.project_root, share_dir=self.share_dir)
        runner = StepRunner(
            self.dispatcher,
            workers,
            working_dir=self.working_dir,
            retry_cap=self.retry_cap,
            timeout=self.timeout,
            decisions=self.decisions,
            event_bus=self.event_bus,
        )

        run = RunOutcome(run_id=run_id or uuid.uuid4().hex[:8])
        await self.event_bus.publish(
            events.RUN_STARTED,
            {"run_id": run.run_id, "steps": [s.anchor for s in steps]},
        )
        for index, step in enumerate(steps):
            try:
                outcome = await runner.run(step)
            except WorkerError as exc:
                logger.error("Step %s failed: %s", step.anchor, exc)
                outcome = StepOutcome(step=step, state=StepState.ABORT, error=str(exc))
                await self.event_bus.publish(
                    events.STEP_FINISHED,
                    {"anchor": step.anchor, "bead_id": step.bead_id, "state": "abort", "error": str(exc)},
                )
            run.steps.append(outcome)
            if outcome.state is not StepState.DONE:
                run.remaining = [s.anchor for s in steps[index + 1 :]]
                logger.warning("Run %s halted at %s (%s)", run.run_id, step.anchor, outcome.state.value)
                break

        await self.event_bus.publish(events.RUN_FINISHED, run.as_dict())
        return run
