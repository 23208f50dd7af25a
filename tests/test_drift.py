from __future__ import annotations

from beadrelay.models.results import DriftLevel
from beadrelay.services.drift import classify_drift

EXPECTED = ["src/app/parser.py", "tests/test_parser.py"]


class TestClassifyDrift:
    def test_no_drift(self) -> None:
        drift = classify_drift(EXPECTED, ["./src/app/parser.py", "tests/test_parser.py"])
        assert drift.level is DriftLevel.NONE
        assert drift.points == 0

    def test_adjacent_file_is_minor(self) -> None:
        drift = classify_drift(EXPECTED, ["src/app/parser.py", "src/app/lexer.py"])
        assert drift.level is DriftLevel.MINOR
        assert drift.points == 1
        assert drift.adjacent == ["src/app/lexer.py"]

    def test_unrelated_file_scores_two(self) -> None:
        drift = classify_drift(EXPECTED, ["docs/parser.md"])
        assert drift.points == 2
        assert drift.level is DriftLevel.MINOR
        assert drift.unrelated == ["docs/parser.md"]

    def test_moderate_halts(self) -> None:
        drift = classify_drift(EXPECTED, ["docs/a.md", "src/app/b.py"])
        assert drift.points == 3
        assert drift.level is DriftLevel.MODERATE
        assert drift.level.halts

    def test_major(self) -> None:
        drift = classify_drift(EXPECTED, ["docs/a.md", "ci/b.yml", "src/app/c.py"])
        assert drift.points == 5
        assert drift.level is DriftLevel.MAJOR

    def test_duplicates_counted_once(self) -> None:
        drift = classify_drift(EXPECTED, ["docs/a.md", "./docs/a.md"])
        assert drift.points == 2

    def test_dotfiles_are_not_mangled(self) -> None:
        drift = classify_drift([".github/workflows/ci.yml"], [".github/workflows/ci.yml"])
        assert drift.level is DriftLevel.NONE

    def test_minor_does_not_halt(self) -> None:
        assert not DriftLevel.MINOR.halts
