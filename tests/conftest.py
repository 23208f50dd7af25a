from __future__ import annotations

import json
import shlex
import sys
from pathlib import Path
from typing import Any

import pytest

from beadrelay.db.journal import RunJournal
from beadrelay.services.dispatcher import DispatchRequest
from beadrelay.services.event_bus import EventBus
from beadrelay.services.resolver import REQUIRED_WORKERS
from beadrelay.store.client import StoreClient
from beadrelay.utils.config import Config

FAKE_BD = Path(__file__).parent / "fake_bd.py"


def fake_bd_command() -> str:
    return f"{shlex.quote(sys.executable)} {shlex.quote(str(FAKE_BD))}"


def read_calls(repo: Path) -> list[dict]:
    """Every recorded ``bd`` invocation in ``repo``, oldest first."""
    log = repo / ".beads" / "calls.jsonl"
    if not log.exists():
        return []
    return [json.loads(line) for line in log.read_text().splitlines() if line]


class ScriptedDispatcher:
    """Returns queued results per worker instead of spawning agents.

    A queued entry may be a result model, an exception to raise, or an async
    callable taking the request (for workers that touch the store).
    """

    def __init__(self) -> None:
        self.responses: dict[str, list[Any]] = {}
        self.requests: list[DispatchRequest] = []

    def queue(self, worker: str, *results: Any) -> None:
        self.responses.setdefault(worker, []).extend(results)

    def calls(self, worker: str) -> list[DispatchRequest]:
        return [r for r in self.requests if r.worker == worker]

    async def dispatch(self, request, result_model, timeout=None):
        self.requests.append(request)
        pending = self.responses.get(request.worker) or []
        if not pending:
            raise AssertionError(f"unexpected dispatch of {request.worker}")
        result = pending.pop(0)
        if isinstance(result, Exception):
            raise result
        if callable(result):
            result = await result(request)
        assert isinstance(result, result_model)
        return result


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    (root / ".beads").mkdir(parents=True)
    return root


@pytest.fixture
def store(repo: Path) -> StoreClient:
    return StoreClient(fake_bd_command(), working_dir=repo, timeout=30)


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    workers = root / "workers"
    workers.mkdir(parents=True)
    for name in REQUIRED_WORKERS:
        (workers / f"{name}.md").write_text(f"# {name}\n")
    return root


@pytest.fixture
def dispatcher() -> ScriptedDispatcher:
    return ScriptedDispatcher()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
async def journal(tmp_path: Path) -> RunJournal:
    run_journal = RunJournal(tmp_path / "journal.db")
    await run_journal.initialize()
    yield run_journal  # type: ignore[misc]
    await run_journal.close()


@pytest.fixture
def config() -> Config:
    return Config()


@pytest.fixture
def bd_command() -> str:
    return fake_bd_command()


@pytest.fixture
def bd_calls(repo: Path):
    return lambda: read_calls(repo)
