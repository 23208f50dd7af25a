"""Classify how far an implementer's file changes strayed from the plan.

Each unexpected file scores 1 point when it sits in a directory that also
holds an expected file ("adjacent") and 2 points otherwise ("unrelated").

    0 points  -> none
    1-2       -> minor
    3-4       -> moderate   (halts for a decision)
    5+        -> major      (halts for a decision)
"""

from __future__ import annotations

from pathlib import PurePosixPath

from beadrelay.models.results import DriftAssessment, DriftLevel


def _normalize(path: str) -> str:
    path = path.strip()
    if path.startswith("./"):
        path = path[2:]
    return str(PurePosixPath(path))


def _level_for(points: int) -> DriftLevel:
    if points == 0:
        return DriftLevel.NONE
    if points <= 2:
        return DriftLevel.MINOR
    if points <= 4:
        return DriftLevel.MODERATE
    return DriftLevel.MAJOR


def classify_drift(expected: list[str], touched: list[str]) -> DriftAssessment:
    expected_set = {_normalize(p) for p in expected if p.strip()}
    expected_dirs = {str(PurePosixPath(p).parent) for p in expected_set}

    adjacent: list[str] = []
    unrelated: list[str] = []
    for raw in touched:
        if not raw.strip():
            continue
        path = _normalize(raw)
        if path in expected_set or path in adjacent or path in unrelated:
            continue
        if str(PurePosixPath(path).parent) in expected_dirs:
            adjacent.append(path)
        else:
            unrelated.append(path)

    points = len(adjacent) + 2 * len(unrelated)
    return DriftAssessment(
        level=_level_for(points), points=points, adjacent=adjacent, unrelated=unrelated
    )
