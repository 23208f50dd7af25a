from __future__ import annotations

from beadrelay.models.plan import Decision, Step
from beadrelay.services.codec import (
    extract_section,
    render_acceptance,
    render_design_references,
    render_work_spec,
    split_sections,
)
from beadrelay.store.client import SEPARATOR

DOC = """# Plan

## Step 1: Parser {#step-1}

Write the parser.

### Tasks {#step-1-tasks}

- read headers

```markdown
## Not a heading {#fake}
```

## Step 2: Writer {#step-2}

Write the writer.
"""


class TestRenderWorkSpec:
    def test_all_sections(self) -> None:
        step = Step(
            anchor="s1",
            title="Parser",
            tasks=["Write parser", "Wire CLI"],
            artifacts=["src/parser.py"],
            commit_message="feat: add parser",
        )
        assert render_work_spec(step) == (
            "## Tasks\n- [ ] Write parser\n- [ ] Wire CLI\n\n"
            "## Artifacts\n- src/parser.py\n\n"
            "## Commit Template\nfeat: add parser"
        )

    def test_empty_sections_omitted(self) -> None:
        step = Step(anchor="s1", title="Parser", artifacts=["src/parser.py"])
        assert render_work_spec(step) == "## Artifacts\n- src/parser.py"

    def test_empty_step(self) -> None:
        assert render_work_spec(Step(anchor="s1", title="Parser")) == ""


class TestRenderAcceptance:
    def test_tests_and_checkpoints(self) -> None:
        step = Step(anchor="s1", title="P", tests=["parses"], checkpoints=["pytest passes"])
        assert render_acceptance(step) == (
            "## Tests\n- [ ] parses\n\n## Checkpoints\n- [ ] pytest passes"
        )

    def test_only_checkpoints(self) -> None:
        step = Step(anchor="s1", title="P", checkpoints=["lint clean"])
        assert render_acceptance(step) == "## Checkpoints\n- [ ] lint clean"


class TestRenderDesignReferences:
    decisions = [Decision(id="D01", title="Use JSON"), Decision(id="D02", title="No locks")]

    def test_resolves_decisions(self) -> None:
        step = Step(anchor="s1", title="P", references=["[D01], [D02]"])
        assert render_design_references(step, self.decisions) == (
            "## References\n- [D01] Use JSON\n- [D02] No locks"
        )

    def test_unresolved_tokens_kept(self) -> None:
        step = Step(anchor="s1", title="P", references=["[D09]", "Spec S03"])
        assert render_design_references(step, self.decisions) == (
            "## References\n- [D09]\n- Spec S03"
        )

    def test_anchors_on_their_own_line(self) -> None:
        step = Step(anchor="s1", title="P", references=["[D01], #step-0, #context"])
        assert render_design_references(step, self.decisions) == (
            "## References\n- [D01] Use JSON\n\n**Anchors:** #step-0, #context"
        )

    def test_only_anchors(self) -> None:
        step = Step(anchor="s1", title="P", references=["#step-0"])
        assert render_design_references(step, self.decisions) == (
            "## References\n**Anchors:** #step-0"
        )

    def test_no_references(self) -> None:
        assert render_design_references(Step(anchor="s1", title="P"), self.decisions) == ""


class TestExtractSection:
    def test_section_until_same_level_heading(self) -> None:
        section = extract_section(DOC, "step-1")
        assert section is not None
        assert section.startswith("## Step 1: Parser {#step-1}")
        assert "### Tasks {#step-1-tasks}" in section
        assert "Step 2" not in section

    def test_heading_in_fence_is_ignored(self) -> None:
        assert extract_section(DOC, "fake") is None
        section = extract_section(DOC, "step-1")
        assert section is not None
        assert "## Not a heading {#fake}" in section

    def test_nested_section(self) -> None:
        section = extract_section(DOC, "#step-1-tasks")
        assert section is not None
        assert section.startswith("### Tasks")
        assert section.endswith("```")

    def test_last_section_runs_to_end(self) -> None:
        assert extract_section(DOC, "step-2") == "## Step 2: Writer {#step-2}\n\nWrite the writer."

    def test_missing_anchor(self) -> None:
        assert extract_section(DOC, "step-9") is None


class TestSplitSections:
    def test_split(self) -> None:
        assert split_sections("a" + SEPARATOR + "b") == ["a", "b"]

    def test_empty(self) -> None:
        assert split_sections("") == []
