"""Render step content into bead fields and read sections back out.

Pure functions, no I/O.
"""

from __future__ import annotations

import re

from beadrelay.models.plan import Decision, Step
from beadrelay.store.client import SEPARATOR

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.*?)\s*$")
_ANCHOR_RE = re.compile(r"\{#([A-Za-z0-9_-]+)\}\s*$")
_DECISION_REF_RE = re.compile(r"^\[([A-Za-z0-9_.-]+)\]$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")


def _checklist(items: list[str]) -> str:
    return "\n".join(f"- [ ] {item}" for item in items)


def _bullets(items: list[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def _join_sections(sections: list[tuple[str, str]]) -> str:
    return "\n\n".join(f"## {heading}\n{body}" for heading, body in sections if body)


def render_work_spec(step: Step) -> str:
    return _join_sections(
        [
            ("Tasks", _checklist(step.tasks)),
            ("Artifacts", _bullets(step.artifacts)),
            ("Commit Template", (step.commit_message or "").strip()),
        ]
    )


def render_acceptance(step: Step) -> str:
    return _join_sections(
        [
            ("Tests", _checklist(step.tests)),
            ("Checkpoints", _checklist(step.checkpoints)),
        ]
    )


def _reference_tokens(references: list[str]) -> list[str]:
    tokens: list[str] = []
    for entry in references:
        for token in entry.split(","):
            token = token.strip()
            if token:
                tokens.append(token)
    return tokens


def render_design_references(step: Step, decisions: list[Decision]) -> str:
    """Resolve ``[Dnn]`` tokens to ``- [id] title`` lines.

    Unknown tokens are kept verbatim; ``#anchor`` tokens go on their own line.
    """
    by_id = {d.id: d for d in decisions}
    lines: list[str] = []
    anchors: list[str] = []
    for token in _reference_tokens(step.references):
        if token.startswith("#"):
            anchors.append(token)
            continue
        match = _DECISION_REF_RE.match(token)
        decision = by_id.get(match.group(1)) if match else None
        if decision is not None:
            lines.append(f"- [{decision.id}] {decision.title}")
        else:
            lines.append(f"- {token}")

    if not lines and not anchors:
        return ""
    body = "\n".join(lines)
    if anchors:
        anchor_line = f"**Anchors:** {', '.join(anchors)}"
        body = f"{body}\n\n{anchor_line}" if body else anchor_line
    return f"## References\n{body}"


def extract_section(document: str, anchor: str) -> str | None:
    """Return the section whose heading carries ``{#anchor}``.

    The section runs up to the next heading of equal or higher level, or the
    end of the document. Heading-like lines inside fenced code are ignored.
    """
    anchor = anchor.lstrip("#")
    lines = document.splitlines()
    start: int | None = None
    level = 0
    in_fence = False

    for index, line in enumerate(lines):
        if _FENCE_RE.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        heading = _HEADING_RE.match(line)
        if not heading:
            continue
        depth = len(heading.group(1))
        if start is None:
            found = _ANCHOR_RE.search(heading.group(2))
            if found and found.group(1) == anchor:
                start, level = index, depth
        elif depth <= level:
            return "\n".join(lines[start:index]).rstrip()

    if start is None:
        return None
    return "\n".join(lines[start:]).rstrip()


def split_sections(content: str) -> list[str]:
    """Split accumulated field content on the append separator."""
    if not content:
        return []
    return content.split(SEPARATOR)
