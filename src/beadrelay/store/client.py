"""Async gateway to the external bead store (the ``bd`` CLI).

Every read and write of a bead goes through :class:`StoreClient`. Content
that would make an oversized command-line argument is handed to ``bd``
through a temporary file instead (see :func:`content_args`).
"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Callable, Iterator

from pydantic import ValidationError

from beadrelay.errors import AlreadyClosed, NotFound, StoreCommandFailed, StoreUnavailable
from beadrelay.models.work_item import DependencyRef, WorkItem

logger = logging.getLogger(__name__)

# 64 KiB, well under the ~256 KiB argument ceilings of common platforms.
OVERFLOW_THRESHOLD = 64 * 1024

SEPARATOR = "\n\n---\n\n"

FIELD_FLAGS = {
    "title": "--title",
    "description": "--description",
    "acceptance_criteria": "--acceptance",
    "design": "--design",
    "notes": "--notes",
    "close_reason": "--close-reason",
}

_NOT_FOUND_MARKERS = ("not found", "no issue found", "no issues found", "unknown issue")
_ALREADY_CLOSED_MARKERS = ("already closed",)

Transform = Callable[[str], str]


def append_transform(content: str) -> Transform:
    """Append ``content`` below a horizontal rule; an empty field takes it as-is."""

    def _apply(current: str) -> str:
        if not current:
            return content
        return current + SEPARATOR + content

    return _apply


def overwrite_transform(content: str) -> Transform:
    """Replace the field with ``content`` whatever it held."""

    def _apply(current: str) -> str:
        return content

    return _apply


@contextmanager
def content_args(
    flag: str, content: str, *, threshold: int = OVERFLOW_THRESHOLD
) -> Iterator[list[str]]:
    """Yield the arguments that carry ``content`` for ``flag``.

    Content up to ``threshold`` UTF-8 bytes is passed inline. Larger content is
    written to a temporary file referenced by ``<flag>-file``; the file is
    removed when the block exits, whether or not the command succeeded.
    """
    if len(content.encode("utf-8")) <= threshold:
        yield [flag, content]
        return

    try:
        with NamedTemporaryFile(
            "w", encoding="utf-8", prefix="beadrelay-", suffix=".md", delete=False
        ) as handle:
            temp_path = Path(handle.name)
            handle.write(content)
    except OSError as exc:
        raise StoreCommandFailed(f"failed to write overflow file: {exc}") from exc

    logger.debug("Content for %s overflowed to %s (%d chars)", flag, temp_path, len(content))
    try:
        yield [f"{flag}-file", str(temp_path)]
    finally:
        temp_path.unlink(missing_ok=True)


@dataclass(frozen=True)
class CommandResult:
    args: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def detail(self) -> str:
        return (self.stderr or self.stdout or "").strip()


@dataclass
class CloseOutcome:
    bead_id: str
    reason: str
    warnings: list[str] = field(default_factory=list)


class StoreClient:
    """Typed boundary around ``bd`` for bead-centric operations."""

    def __init__(
        self,
        bd_path: str = "bd",
        *,
        working_dir: str | Path | None = None,
        timeout: float = 60.0,
    ):
        self.bd_path = bd_path
        self.working_dir = Path(working_dir) if working_dir else None
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Process plumbing
    # ------------------------------------------------------------------

    def _cwd(self, working_dir: str | Path | None) -> str | None:
        chosen = working_dir or self.working_dir
        return str(chosen) if chosen else None

    async def _exec(
        self,
        args: list[str],
        *,
        working_dir: str | Path | None = None,
        operation: str,
        bead_id: str | None = None,
    ) -> CommandResult:
        argv = [*shlex.split(self.bd_path), *args]
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd(working_dir),
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise StoreUnavailable(self.bd_path, operation=operation) from exc
        except OSError as exc:
            raise StoreCommandFailed(str(exc), bead_id=bead_id, operation=operation) from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise StoreCommandFailed(
                f"timed out after {self.timeout:g}s", bead_id=bead_id, operation=operation
            ) from exc

        return CommandResult(
            args=args,
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    async def _run(
        self,
        args: list[str],
        *,
        working_dir: str | Path | None = None,
        operation: str,
        bead_id: str | None = None,
    ) -> CommandResult:
        result = await self._exec(
            args, working_dir=working_dir, operation=operation, bead_id=bead_id
        )
        if result.returncode != 0:
            self._raise_for(result, operation=operation, bead_id=bead_id)
        return result

    @staticmethod
    def _raise_for(result: CommandResult, *, operation: str, bead_id: str | None) -> None:
        detail = result.detail or f"exit code {result.returncode}"
        lowered = detail.lower()
        if bead_id and any(marker in lowered for marker in _ALREADY_CLOSED_MARKERS):
            raise AlreadyClosed(bead_id)
        if bead_id and any(marker in lowered for marker in _NOT_FOUND_MARKERS):
            raise NotFound(bead_id, operation=operation, detail=detail)
        raise StoreCommandFailed(detail, bead_id=bead_id, operation=operation)

    async def _run_json(
        self,
        args: list[str],
        *,
        working_dir: str | Path | None = None,
        operation: str,
        bead_id: str | None = None,
    ) -> Any:
        result = await self._run(
            args, working_dir=working_dir, operation=operation, bead_id=bead_id
        )
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise StoreCommandFailed(
                f"unparsable output: {exc}", bead_id=bead_id, operation=operation
            ) from exc

    # ------------------------------------------------------------------
    # Environment checks
    # ------------------------------------------------------------------

    async def is_installed(self) -> bool:
        try:
            result = await self._exec(["--version"], operation="version")
        except (StoreUnavailable, StoreCommandFailed):
            return False
        return result.returncode == 0

    @staticmethod
    def is_initialized(project_root: str | Path) -> bool:
        return (Path(project_root) / ".beads").is_dir()

    # ------------------------------------------------------------------
    # Bead operations
    # ------------------------------------------------------------------

    async def create(
        self,
        title: str,
        description: str | None = None,
        acceptance: str | None = None,
        design: str | None = None,
        notes: str | None = None,
        *,
        parent: str | None = None,
        issue_type: str | None = None,
        priority: int | None = None,
        working_dir: str | Path | None = None,
    ) -> str:
        """Create a bead and return its id. Callers check for an existing bead first."""
        args = ["create", "--json", title]
        if parent:
            args += ["--parent", parent]
        if issue_type:
            args += ["--type", issue_type]
        if priority is not None:
            args.append(f"-p{priority}")

        with ExitStack() as stack:
            for name, content in (
                ("description", description),
                ("acceptance_criteria", acceptance),
                ("design", design),
                ("notes", notes),
            ):
                if content is not None:
                    args += stack.enter_context(content_args(FIELD_FLAGS[name], content))
            payload = await self._run_json(args, working_dir=working_dir, operation="create")

        if isinstance(payload, list):
            payload = payload[0] if payload else {}
        bead_id = payload.get("id") if isinstance(payload, dict) else None
        if not bead_id:
            raise StoreCommandFailed("create returned no id", operation="create")
        logger.info("Created bead %s: %s", bead_id, title)
        return bead_id

    async def show(self, bead_id: str, working_dir: str | Path | None = None) -> WorkItem:
        payload = await self._run_json(
            ["show", bead_id, "--json"],
            working_dir=working_dir,
            operation="show",
            bead_id=bead_id,
        )
        if isinstance(payload, list):
            if not payload:
                raise NotFound(bead_id, operation="show")
            payload = payload[0]
        try:
            return WorkItem.model_validate(payload)
        except ValidationError as exc:
            raise StoreCommandFailed(
                f"unexpected show payload: {exc}", bead_id=bead_id, operation="show"
            ) from exc

    async def exists(self, bead_id: str, working_dir: str | Path | None = None) -> bool:
        try:
            await self.show(bead_id, working_dir)
        except NotFound:
            return False
        return True

    async def existing_ids(
        self, ids: list[str], working_dir: str | Path | None = None
    ) -> set[str]:
        """Return the subset of ``ids`` that exist, in a single ``bd list`` call."""
        if not ids:
            return set()
        payload = await self._run_json(
            ["list", "--id", ",".join(ids), "--json", "--limit", "0", "--all"],
            working_dir=working_dir,
            operation="list",
        )
        return {row["id"] for row in payload or [] if isinstance(row, dict) and "id" in row}

    async def update_field(
        self,
        bead_id: str,
        field_name: str,
        content: str,
        working_dir: str | Path | None = None,
    ) -> None:
        """Overwrite ``field_name`` with ``content``."""
        flag = FIELD_FLAGS.get(field_name)
        if flag is None:
            raise ValueError(f"unknown bead field: {field_name}")
        with content_args(flag, content) as field_args:
            await self._run(
                ["update", bead_id, *field_args],
                working_dir=working_dir,
                operation=f"update {field_name}",
                bead_id=bead_id,
            )
        logger.debug("Updated %s on %s (%d chars)", field_name, bead_id, len(content))

    async def read_modify_write(
        self,
        bead_id: str,
        field_name: str,
        transform: Transform,
        working_dir: str | Path | None = None,
    ) -> str:
        """Read ``field_name``, apply ``transform`` and write the result back.

        Not atomic: correct only while a single writer touches the bead.
        """
        item = await self.show(bead_id, working_dir)
        new_value = transform(item.field(field_name))
        await self.update_field(bead_id, field_name, new_value, working_dir)
        return new_value

    async def append_field(
        self,
        bead_id: str,
        field_name: str,
        content: str,
        working_dir: str | Path | None = None,
    ) -> str:
        return await self.read_modify_write(
            bead_id, field_name, append_transform(content), working_dir
        )

    async def close(
        self, bead_id: str, reason: str, working_dir: str | Path | None = None
    ) -> CloseOutcome:
        """Close a bead. Closing an already-closed bead rewrites its reason and warns."""
        try:
            # bd close has no file form of --reason.
            await self._run(
                ["close", bead_id, "--reason", reason],
                working_dir=working_dir,
                operation="close",
                bead_id=bead_id,
            )
        except AlreadyClosed as exc:
            logger.warning("%s; recording new close reason", exc)
            await self.update_field(bead_id, "close_reason", reason, working_dir)
            return CloseOutcome(bead_id=bead_id, reason=reason, warnings=[str(exc)])

        logger.info("Closed bead %s", bead_id)
        return CloseOutcome(bead_id=bead_id, reason=reason)

    async def add_dependency(
        self, bead_id: str, depends_on: str, working_dir: str | Path | None = None
    ) -> None:
        await self._run(
            ["dep", "add", bead_id, depends_on, "--json"],
            working_dir=working_dir,
            operation="dep add",
            bead_id=bead_id,
        )

    async def dependencies(
        self, bead_id: str, working_dir: str | Path | None = None
    ) -> list[DependencyRef]:
        payload = await self._run_json(
            ["dep", "list", bead_id, "--json"],
            working_dir=working_dir,
            operation="dep list",
            bead_id=bead_id,
        )
        return [DependencyRef.model_validate(row) for row in payload or []]
