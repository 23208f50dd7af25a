from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click

from beadrelay import __version__
from beadrelay.errors import (
    AccessViolation,
    BeadRelayError,
    ContentFileError,
    MissingWorkers,
    NotFound,
    PlanError,
    StoreCommandFailed,
    StoreNotInitialized,
    StoreUnavailable,
    WorkerInvocationFailed,
    WorkerOutputInvalid,
    WorkerTimeout,
)
from beadrelay.models.envelope import Envelope, Issue
from beadrelay.utils.config import get_config
from beadrelay.utils.logger import setup_logging

_EXIT_CODES = {
    cls.code: cls.exit_code
    for cls in (
        PlanError,
        ContentFileError,
        AccessViolation,
        StoreUnavailable,
        StoreNotInitialized,
        NotFound,
        StoreCommandFailed,
        MissingWorkers,
        WorkerInvocationFailed,
        WorkerTimeout,
        WorkerOutputInvalid,
    )
}

# Exit codes for runs that halted without a worker error.
RUN_EXIT_CODES = {"done": 0, "escalated": 10, "aborted": 11, "failed": 21}
RUN_HALT_CODES = {"escalated": "E040", "aborted": "E041"}

_working_dir_option = click.option(
    "--working-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory to run bd in (defaults to the current directory).",
)


def _emit(envelope: Envelope, exit_code: int | None = None) -> None:
    click.echo(envelope.to_json())
    if exit_code is None:
        exit_code = 0
        if envelope.status != "ok":
            codes = [i.code for i in envelope.issues if i.severity == "error"]
            exit_code = _EXIT_CODES.get(codes[0], 1) if codes else 1
    if exit_code:
        sys.exit(exit_code)


def _store(working_dir: str | None = None):
    from beadrelay.store.client import StoreClient

    config = get_config()
    return StoreClient(config.bd_path, working_dir=working_dir, timeout=config.store_timeout)


def _require_initialized(working_dir: str | None, operation: str) -> None:
    from beadrelay.store.client import StoreClient

    root = Path(working_dir) if working_dir else Path.cwd()
    if not StoreClient.is_initialized(root):
        raise StoreNotInitialized(root, operation=operation)


def _read_content(content: str | None, content_file: str | None, command: str) -> str:
    if (content is None) == (content_file is None):
        raise click.UsageError("exactly one of --content or --content-file is required")
    if content is not None:
        return content
    if content_file == "-":
        return sys.stdin.read()
    try:
        return Path(content_file).read_text(encoding="utf-8")  # type: ignore[arg-type]
    except (OSError, UnicodeDecodeError) as exc:
        raise ContentFileError(content_file, command, str(exc)) from exc  # type: ignore[arg-type]


def _content_or_exit(
    command: str, bead_id: str, content: str | None, content_file: str | None
) -> str:
    try:
        return _read_content(content, content_file, command)
    except ContentFileError as exc:
        click.echo(Envelope.error(command, exc, {"bead_id": bead_id, "path": exc.path}).to_json())
        sys.exit(exc.exit_code)


def _content_options(func):
    func = click.option(
        "--content-file",
        type=click.Path(dir_okay=False, allow_dash=True),
        default=None,
        help="Read the content from a file ('-' for stdin).",
    )(func)
    func = click.option("--content", default=None, help="Content to write.")(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="beadrelay")
@click.option("--log-level", default=None, help="Override BEADRELAY_LOG_LEVEL.")
def main(log_level: str | None) -> None:
    """beadrelay: coordinate stateless agent workers through beads."""
    setup_logging(log_level or get_config().log_level)


# ----------------------------------------------------------------------
# Worker-facing field commands
# ----------------------------------------------------------------------


@main.command()
@click.argument("bead_id")
@_working_dir_option
@click.option("--json", "as_json", is_flag=True, help="Print the JSON envelope.")
def inspect(bead_id: str, working_dir: str | None, as_json: bool) -> None:
    """Show every field of a bead."""
    from beadrelay.tools.beads import inspect_envelope

    envelope = asyncio.run(inspect_envelope(_store(working_dir), bead_id, working_dir))
    if as_json:
        _emit(envelope)
        return

    if envelope.status != "ok":
        for issue in envelope.issues:
            click.echo(f"error: {issue.message}", err=True)
        sys.exit(_EXIT_CODES.get(envelope.issues[0].code, 1) if envelope.issues else 1)

    data = envelope.data
    click.echo(f"{data['id']}: {data['title']} [{data['status']}]")
    for name in ("description", "acceptance_criteria", "design", "notes", "close_reason"):
        value = data.get(name) or ""
        if not value:
            continue
        click.echo(f"\n=== {name} ===\n{value}")


@main.command("append-design")
@click.argument("bead_id")
@_content_options
@_working_dir_option
def append_design(
    bead_id: str, content: str | None, content_file: str | None, working_dir: str | None
) -> None:
    """Append a strategy section to a bead's design."""
    from beadrelay.tools.beads import append_design_envelope

    text = _content_or_exit("append-design", bead_id, content, content_file)
    _emit(asyncio.run(append_design_envelope(_store(working_dir), bead_id, text, working_dir)))


@main.command("update-notes")
@click.argument("bead_id")
@_content_options
@_working_dir_option
def update_notes(
    bead_id: str, content: str | None, content_file: str | None, working_dir: str | None
) -> None:
    """Replace a bead's notes with an implementation summary."""
    from beadrelay.tools.beads import update_notes_envelope

    text = _content_or_exit("update-notes", bead_id, content, content_file)
    _emit(asyncio.run(update_notes_envelope(_store(working_dir), bead_id, text, working_dir)))


@main.command("append-notes")
@click.argument("bead_id")
@_content_options
@_working_dir_option
def append_notes(
    bead_id: str, content: str | None, content_file: str | None, working_dir: str | None
) -> None:
    """Append a review to a bead's notes."""
    from beadrelay.tools.beads import append_notes_envelope

    text = _content_or_exit("append-notes", bead_id, content, content_file)
    _emit(asyncio.run(append_notes_envelope(_store(working_dir), bead_id, text, working_dir)))


@main.command()
@click.argument("bead_id")
@click.option("--commit", required=True, help="Commit hash the work landed in.")
@click.option("--summary", required=True, help="One-line summary of the change.")
@_working_dir_option
def close(bead_id: str, commit: str, summary: str, working_dir: str | None) -> None:
    """Close a bead with a 'Committed: <commit> -- <summary>' reason."""
    from beadrelay.tools.beads import close_envelope

    _emit(asyncio.run(close_envelope(_store(working_dir), bead_id, commit, summary, working_dir)))


# ----------------------------------------------------------------------
# Plan commands
# ----------------------------------------------------------------------


@main.command()
@click.argument("plan_path", type=click.Path(exists=True, dir_okay=False))
@_working_dir_option
@click.option("--dry-run", is_flag=True, help="Report what would be created without writing.")
def sync(plan_path: str, working_dir: str | None, dry_run: bool) -> None:
    """Create a root bead and one bead per plan step, then record their ids in the plan."""
    from beadrelay.models.plan import load_plan, save_plan
    from beadrelay.services.sync import PlanSync

    async def _sync():
        plan = load_plan(plan_path)
        if not dry_run:
            _require_initialized(working_dir, "sync")
        report = await PlanSync(_store(working_dir), working_dir).sync(plan, dry_run=dry_run)
        if not dry_run:
            save_plan(plan, plan_path)
        return report

    try:
        report = asyncio.run(_sync())
    except BeadRelayError as exc:
        _emit(Envelope.error("sync", exc), exc.exit_code)
        return

    issues = [
        Issue(code=f.code, severity="error", message=f"{f.anchor}: {f.message}")
        for f in report.failures
    ]
    status = "error" if report.failures else "ok"
    _emit(
        Envelope(command="sync", status=status, data=report.as_dict(), issues=issues),
        1 if report.failures else 0,
    )


class PromptDecisions:
    """Asks on the terminal whether to continue past a decision point."""

    async def decide(self, point):
        from beadrelay.services.orchestrator import DecisionAction

        click.echo(
            f"\n[{point.kind}] {point.step.anchor} ({point.step.bead_id}): {point.message}",
            err=True,
        )
        for issue in point.issues:
            click.echo(f"  - {issue}", err=True)
        if point.kind != "drift":
            click.echo("The step will stop here for review.", err=True)
            return DecisionAction.ABORT
        if click.confirm("Continue to verification?", default=False, err=True):
            return DecisionAction.CONTINUE
        return DecisionAction.ABORT


@main.command()
@click.argument("plan_path", type=click.Path(exists=True, dir_okay=False))
@_working_dir_option
@click.option(
    "--project-root",
    type=click.Path(file_okay=False),
    default=".",
    show_default=True,
    help="Project root searched first for worker definitions.",
)
@click.option("--retry-cap", type=int, default=None, help="Override BEADRELAY_RETRY_CAP.")
@click.option("--timeout", type=float, default=None, help="Per-dispatch timeout in seconds.")
@click.option("--start", default=None, help="First step anchor to run.")
@click.option("--end", default=None, help="Last step anchor to run.")
@click.option("--interactive", is_flag=True, help="Prompt at decision points instead of halting.")
def run(
    plan_path: str,
    working_dir: str | None,
    project_root: str,
    retry_cap: int | None,
    timeout: float | None,
    start: str | None,
    end: str | None,
    interactive: bool,
) -> None:
    """Run the plan's steps through strategize, implement, verify and finalize."""
    from beadrelay.db.journal import RunJournal
    from beadrelay.models.plan import load_plan
    from beadrelay.services.dispatcher import WorkerDispatcher
    from beadrelay.services.event_bus import EventBus
    from beadrelay.services.orchestrator import HaltOnDecision, Orchestrator, StepRef

    config = get_config()

    async def _run():
        plan = load_plan(plan_path)
        steps = []
        for step in plan.select(start, end):
            if not step.bead_id:
                raise PlanError(f"step {step.anchor} has no bead; run 'beadrelay sync' first")
            steps.append(StepRef(anchor=step.anchor, bead_id=step.bead_id, title=step.bead_title))

        bus = EventBus()
        journal = RunJournal(config.journal_path)
        await journal.initialize()
        journal.attach(bus)
        try:
            orchestrator = Orchestrator(
                WorkerDispatcher(config.agent_command, timeout=config.worker_timeout),
                project_root=project_root,
                working_dir=working_dir or project_root,
                retry_cap=retry_cap or config.retry_cap,
                timeout=timeout,
                decisions=PromptDecisions() if interactive else HaltOnDecision(),
                event_bus=bus,
            )
            return await orchestrator.run(steps)
        finally:
            journal.detach(bus)
            await journal.close()

    try:
        outcome = asyncio.run(_run())
    except BeadRelayError as exc:
        _emit(Envelope.error("run", exc), exc.exit_code)
        return

    issues = []
    if outcome.status != "done":
        last = outcome.steps[-1]
        issues.append(
            Issue(
                code="E021" if last.error else RUN_HALT_CODES[outcome.status],
                severity="error",
                message=last.error or last.reason or f"step {last.step.anchor} {outcome.status}",
                bead_id=last.step.bead_id,
            )
        )
    status = "ok" if outcome.status == "done" else "error"
    _emit(
        Envelope(command="run", status=status, data=outcome.as_dict(), issues=issues),
        RUN_EXIT_CODES[outcome.status],
    )


@main.command("check-workers")
@click.option(
    "--project-root",
    type=click.Path(file_okay=False),
    default=".",
    show_default=True,
)
def check_workers(project_root: str) -> None:
    """Resolve every required worker definition and report where each was found."""
    from beadrelay.services.resolver import REQUIRED_WORKERS, find_share_dir, verify_required

    try:
        workers = verify_required(REQUIRED_WORKERS, project_root)
    except MissingWorkers as exc:
        _emit(
            Envelope.error(
                "check-workers",
                exc,
                {
                    "missing": exc.names,
                    "searched": {
                        name: [str(p) for p in paths] for name, paths in exc.searched_paths.items()
                    },
                },
            ),
            exc.exit_code,
        )
        return

    share_dir = find_share_dir()
    _emit(
        Envelope.ok(
            "check-workers",
            {
                "workers": {name: str(path) for name, path in workers.items()},
                "share_dir": str(share_dir) if share_dir else None,
            },
        )
    )


@main.command()
@click.argument("plan_path", type=click.Path(exists=True, dir_okay=False))
@_working_dir_option
def status(plan_path: str, working_dir: str | None) -> None:
    """Show whether each step is complete, ready, blocked or pending."""
    from beadrelay.models.plan import load_plan
    from beadrelay.services.status import PlanStatusReader

    async def _status():
        plan = load_plan(plan_path)
        _require_initialized(working_dir, "status")
        return await PlanStatusReader(_store(working_dir), working_dir).status(plan)

    try:
        report = asyncio.run(_status())
    except BeadRelayError as exc:
        _emit(Envelope.error("status", exc), exc.exit_code)
        return
    _emit(Envelope.ok("status", report.as_dict()))


@main.command()
@click.option("--limit", default=10, show_default=True, type=int)
@click.option("--run-id", default=None, help="Show the recorded events of one run.")
def log(limit: int, run_id: str | None) -> None:
    """List recent orchestration runs from the journal."""
    from beadrelay.db.journal import RunJournal

    async def _read():
        journal = RunJournal(get_config().journal_path)
        await journal.initialize()
        try:
            if run_id:
                return {"run_id": run_id, "events": await journal.run_events(run_id)}
            return {"runs": await journal.recent_runs(limit)}
        finally:
            await journal.close()

    _emit(Envelope.ok("log", asyncio.run(_read())))


@main.command()
def serve() -> None:
    """Start the worker tool MCP server on stdio."""
    from beadrelay.server import mcp

    click.echo("Starting beadrelay MCP server...", err=True)
    mcp.run()


if __name__ == "__main__":
    main()
