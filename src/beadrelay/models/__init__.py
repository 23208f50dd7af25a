from beadrelay.models.envelope import Envelope, Issue
from beadrelay.models.plan import Decision, Plan, Step
from beadrelay.models.results import (
    DriftAssessment,
    DriftLevel,
    FinalizerResult,
    FinalizerSummary,
    ImplementerResult,
    StrategistResult,
    Verdict,
    VerifierResult,
)
from beadrelay.models.work_item import DependencyRef, WorkItem

__all__ = [
    "DependencyRef",
    "Decision",
    "DriftAssessment",
    "DriftLevel",
    "Envelope",
    "FinalizerResult",
    "FinalizerSummary",
    "ImplementerResult",
    "Issue",
    "Plan",
    "Step",
    "StrategistResult",
    "Verdict",
    "VerifierResult",
    "WorkItem",
]
