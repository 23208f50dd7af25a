"""Structured return values printed by each worker.

The orchestrator decides continue / retry / escalate / abort from these
alone; it never parses bead fields.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class DriftLevel(str, Enum):
    NONE = "none"
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"

    @property
    def halts(self) -> bool:
        return self in (DriftLevel.MODERATE, DriftLevel.MAJOR)


class Verdict(str, Enum):
    APPROVE = "approve"
    REVISE = "revise"
    ESCALATE = "escalate"


class DriftAssessment(BaseModel):
    level: DriftLevel = DriftLevel.NONE
    points: int = 0
    adjacent: list[str] = Field(default_factory=list)
    unrelated: list[str] = Field(default_factory=list)


class StrategistResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str = "ok"  # ok, blocked
    summary: str = ""
    expected_files: list[str] = Field(default_factory=list)


class ImplementerResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str = "ok"  # ok, failed
    summary: str = ""
    files_touched: list[str] = Field(default_factory=list)
    expected_files: list[str] = Field(default_factory=list)
    tests_passed: bool | None = None
    drift: DriftAssessment = Field(default_factory=DriftAssessment)


class VerifierResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    verdict: Verdict
    summary: str = ""
    issues: list[str] = Field(default_factory=list)


class FinalizerSummary(BaseModel):
    """Assembled by the orchestrator from implementer and verifier returns."""

    summary: str
    files_touched: list[str] = Field(default_factory=list)
    tests_passed: bool | None = None
    verdict: Verdict = Verdict.APPROVE
    review: str = ""
    attempts: int = 1


class FinalizerResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool
    commit: str | None = None
    close_reason: str | None = None
    bead_closed: bool = False
    warnings: list[str] = Field(default_factory=list)
