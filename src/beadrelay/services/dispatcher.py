"""Invoke one worker through an agent CLI and parse its structured result.

A worker receives only the bead id, the working directory and the attempt
number (plus, for the finalizer, the summary assembled by the orchestrator).
It fetches everything else from the bead itself.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from beadrelay.errors import WorkerInvocationFailed, WorkerOutputInvalid, WorkerTimeout
from beadrelay.models.results import FinalizerSummary

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*\n([\s\S]*?)\n```")


@dataclass(frozen=True)
class DispatchRequest:
    """Everything a worker is told. Field content is never part of it."""

    worker: str
    definition: Path
    bead_id: str
    working_dir: Path
    attempt: int = 1
    summary: FinalizerSummary | None = None

    def prompt(self) -> str:
        lines = [
            f"Bead: {self.bead_id}",
            f"Working directory: {self.working_dir}",
            f"Attempt: {self.attempt}",
            "",
            "Read the fields you need with `beadrelay inspect "
            f"{self.bead_id} --json --working-dir {self.working_dir}` and write only "
            "the fields your role owns.",
            "Finish by printing your result as a single JSON object.",
        ]
        if self.summary is not None:
            lines += ["", "Summary:", "```json", self.summary.model_dump_json(indent=2), "```"]
        return "\n".join(lines)


class Dispatcher(Protocol):
    async def dispatch(
        self, request: DispatchRequest, result_model: type[ResultT], timeout: float | None = None
    ) -> ResultT: ...


def extract_json(output: str) -> dict:
    """Pull the worker's JSON object out of free-form agent output.

    Fenced ``json`` blocks win (the last valid one); otherwise the outermost
    ``{...}`` span is tried.
    """
    if not output or not output.strip():
        raise ValueError("output is empty")

    for block in reversed(_CODE_BLOCK_RE.findall(output)):
        try:
            value = json.loads(block.strip())
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value

    start, end = output.find("{"), output.rfind("}")
    if start != -1 and end > start:
        try:
            value = json.loads(output[start : end + 1])
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict):
            return value

    raise ValueError(f"no JSON object found in output: {output[:200]!r}")


def parse_result(
    worker: str, output: str, result_model: type[ResultT], *, bead_id: str | None = None
) -> ResultT:
    try:
        payload = extract_json(output)
        return result_model.model_validate(payload)
    except (ValueError, ValidationError) as exc:
        raise WorkerOutputInvalid(worker, str(exc), bead_id=bead_id) from exc


class WorkerDispatcher:
    """Runs workers as ``<agent command> --system-prompt <definition> <prompt>``."""

    def __init__(self, agent_command: str = "claude --print", timeout: float = 1800.0):
        self.agent_command = agent_command
        self.timeout = timeout

    def build_argv(self, request: DispatchRequest, definition_text: str) -> list[str]:
        return [
            *shlex.split(self.agent_command),
            "--system-prompt",
            definition_text,
            request.prompt(),
        ]

    async def dispatch(
        self,
        request: DispatchRequest,
        result_model: type[ResultT],
        timeout: float | None = None,
    ) -> ResultT:
        timeout = timeout or self.timeout
        try:
            definition_text = request.definition.read_text()
        except OSError as exc:
            raise WorkerInvocationFailed(
                request.worker,
                f"failed to read definition {request.definition}: {exc}",
                bead_id=request.bead_id,
            ) from exc

        argv = self.build_argv(request, definition_text)
        logger.info(
            "Dispatching %s for %s (attempt %d)", request.worker, request.bead_id, request.attempt
        )
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(request.working_dir),
            )
        except OSError as exc:
            raise WorkerInvocationFailed(
                request.worker, f"failed to spawn {argv[0]}: {exc}", bead_id=request.bead_id
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise WorkerTimeout(request.worker, timeout, bead_id=request.bead_id) from exc

        out = stdout.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            err = stderr.decode("utf-8", errors="replace").strip()
            raise WorkerInvocationFailed(
                request.worker,
                f"exit code {proc.returncode}: {err or out.strip()}",
                bead_id=request.bead_id,
            )
        return parse_result(request.worker, out, result_model, bead_id=request.bead_id)
