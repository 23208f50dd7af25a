"""Stand-in for the ``bd`` CLI used by the test suite.

State lives in ``.beads/fake.json`` under the current directory and every
invocation is logged to ``.beads/calls.jsonl``. Setting ``FAKE_BD_FAIL`` to
``<command>`` makes every such command fail; ``<command>:<text>`` only fails
calls whose positional arguments contain ``<text>`` (e.g. ``create:Writer``).
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

STATE_DIR = Path.cwd() / ".beads"
STATE = STATE_DIR / "fake.json"
CALLS = STATE_DIR / "calls.jsonl"

FLAG_FIELDS = {
    "--title": "title",
    "--description": "description",
    "--acceptance": "acceptance_criteria",
    "--design": "design",
    "--notes": "notes",
    "--close-reason": "close_reason",
    "--reason": "close_reason",
}
# Flags bd only accepts inline.
INLINE_ONLY = ("--reason",)
VALUE_OPTIONS = ("--parent", "--type", "--id", "--limit")


def fail(message: str, code: int = 1) -> None:
    print(message, file=sys.stderr)
    sys.exit(code)


def load() -> dict:
    if STATE.exists():
        return json.loads(STATE.read_text())
    return {"next": 1, "issues": {}}


def save(state: dict) -> None:
    STATE.write_text(json.dumps(state))


def parse(args: list[str]) -> tuple[dict, list[str], dict, list[str]]:
    fields: dict = {}
    positional: list[str] = []
    options: dict = {}
    files: list[str] = []
    i = 0
    while i < len(args):
        arg = args[i]
        if (
            arg.endswith("-file")
            and arg[: -len("-file")] in FLAG_FIELDS
            and arg[: -len("-file")] not in INLINE_ONLY
        ):
            files.append(args[i + 1])
            fields[FLAG_FIELDS[arg[: -len("-file")]]] = Path(args[i + 1]).read_text(encoding="utf-8")
            i += 2
        elif arg in FLAG_FIELDS:
            fields[FLAG_FIELDS[arg]] = args[i + 1]
            i += 2
        elif arg in VALUE_OPTIONS:
            options[arg] = args[i + 1]
            i += 2
        elif arg.startswith("-p") and arg[2:].isdigit():
            options["priority"] = int(arg[2:])
            i += 1
        elif arg.startswith("--"):
            options[arg] = True
            i += 1
        else:
            positional.append(arg)
            i += 1
    return fields, positional, options, files


def should_fail(command: str, positional: list[str]) -> bool:
    rule = os.environ.get("FAKE_BD_FAIL", "")
    if not rule:
        return False
    name, _, text = rule.partition(":")
    return name == command and (not text or any(text in arg for arg in positional[1:]))


def get_issue(state: dict, bead_id: str) -> dict:
    issue = state["issues"].get(bead_id)
    if issue is None:
        fail(f"Error: issue {bead_id} not found")
    return issue


def main(argv: list[str]) -> None:
    if argv == ["--version"]:
        print("bd version 0.0.0 (fake)")
        return
    if not STATE_DIR.is_dir():
        fail("Error: no beads database found (run bd init)")

    fields, positional, options, files = parse(argv)
    with CALLS.open("a") as log:
        log.write(json.dumps({"argv": argv, "files": files}) + "\n")

    state = load()
    command = positional[0] if positional else ""
    if should_fail(command, positional):
        fail("Error: database is locked")

    if command == "create":
        title = positional[1]
        bead_id = f"bd-{state['next']}"
        state["next"] += 1
        issue = {
            "id": bead_id,
            "title": title,
            "description": "",
            "acceptance_criteria": "",
            "design": "",
            "notes": "",
            "status": "open",
            "priority": options.get("priority", 2),
            "issue_type": options.get("--type", "task"),
            "parent": options.get("--parent"),
            "dependencies": [],
        }
        issue.update(fields)
        state["issues"][bead_id] = issue
        save(state)
        print(json.dumps(issue))
    elif command == "show":
        print(json.dumps([get_issue(state, positional[1])]))
    elif command == "update":
        issue = get_issue(state, positional[1])
        issue.update(fields)
        save(state)
        print(json.dumps([issue]))
    elif command == "close":
        issue = get_issue(state, positional[1])
        if issue["status"] == "closed":
            fail(f"Error: issue {issue['id']} is already closed")
        issue["status"] = "closed"
        issue.update(fields)
        save(state)
        print(json.dumps([issue]))
    elif command == "list":
        wanted = options.get("--id")
        issues = list(state["issues"].values())
        if wanted:
            ids = set(wanted.split(","))
            issues = [i for i in issues if i["id"] in ids]
        print(json.dumps(issues))
    elif command == "dep" and positional[1:2] == ["add"]:
        issue = get_issue(state, positional[2])
        target = get_issue(state, positional[3])
        issue["dependencies"].append({"id": target["id"], "dependency_type": "blocks"})
        save(state)
        print(json.dumps({"status": "added", "issue_id": issue["id"], "depends_on_id": target["id"]}))
    elif command == "dep" and positional[1:2] == ["list"]:
        print(json.dumps(get_issue(state, positional[2])["dependencies"]))
    else:
        fail(f"Error: unknown command {' '.join(argv)}")


if __name__ == "__main__":
    main(sys.argv[1:])
