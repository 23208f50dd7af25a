from __future__ import annotations

import json
import logging
from datetime import datetime
from importlib import resources
from pathlib import Path
from typing import Any

import aiosqlite

from beadrelay.services import event_bus as events
from beadrelay.services.event_bus import EventBus

logger = logging.getLogger(__name__)

_DEFAULT_JOURNAL_PATH = Path(".beadrelay/journal.db")


class RunJournal:
    """Append-only SQLite record of orchestration runs.

    The journal is an observer: it subscribes to the event bus and never feeds
    anything back into the run. Bead fields remain the only coordination
    channel between workers.
    """

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path) if db_path else _DEFAULT_JOURNAL_PATH
        self._conn: aiosqlite.Connection | None = None
        self._current_run: str | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        schema_sql = resources.files("beadrelay.db").joinpath("schema.sql").read_text()

        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

        logger.info("Run journal opened at %s", self.db_path)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        assert self._conn is not None, "Journal not initialized, call initialize() first"
        return self._conn

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def start_run(self, run_id: str, steps: list[str]) -> None:
        await self.conn.execute(
            """
            INSERT INTO runs (run_id, started_at, steps)
            VALUES (?, ?, ?)
            ON CONFLICT(run_id) DO NOTHING
            """,
            (run_id, datetime.now().isoformat(), json.dumps(steps)),
        )
        await self.conn.commit()
        self._current_run = run_id

    async def finish_run(self, run_id: str, status: str, halted_at: str | None = None) -> None:
        await self.conn.execute(
            """
            UPDATE runs
            SET finished_at = ?, status = ?, halted_at = ?
            WHERE run_id = ?
            """,
            (datetime.now().isoformat(), status, halted_at, run_id),
        )
        await self.conn.commit()
        if self._current_run == run_id:
            self._current_run = None

    async def record_event(self, run_id: str, event: dict[str, Any]) -> int:
        payload = {
            k: v
            for k, v in event.items()
            if k not in ("type", "timestamp", "anchor", "bead_id")
        }
        cursor = await self.conn.execute(
            """
            INSERT INTO run_events (run_id, event_type, anchor, bead_id, payload, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                run_id,
                event["type"],
                event.get("anchor"),
                event.get("bead_id"),
                json.dumps(payload, default=str),
                event.get("timestamp") or datetime.now().isoformat(),
            ),
        )
        await self.conn.commit()
        return cursor.lastrowid  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def recent_runs(self, limit: int = 10) -> list[dict[str, Any]]:
        cursor = await self.conn.execute(
            "SELECT * FROM runs ORDER BY started_at DESC, rowid DESC LIMIT ?",
            (limit,),
        )
        rows = await cursor.fetchall()
        return [
            {
                "run_id": row["run_id"],
                "started_at": row["started_at"],
                "finished_at": row["finished_at"],
                "status": row["status"],
                "halted_at": row["halted_at"],
                "steps": json.loads(row["steps"]),
            }
            for row in rows
        ]

    async def run_events(self, run_id: str) -> list[dict[str, Any]]:
        cursor = await self.conn.execute(
            "SELECT * FROM run_events WHERE run_id = ? ORDER BY id",
            (run_id,),
        )
        rows = await cursor.fetchall()
        return [
            {
                "type": row["event_type"],
                "anchor": row["anchor"],
                "bead_id": row["bead_id"],
                "payload": json.loads(row["payload"]),
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Event bus
    # ------------------------------------------------------------------

    def attach(self, bus: EventBus) -> None:
        bus.subscribe("*", self._on_event)

    def detach(self, bus: EventBus) -> None:
        bus.unsubscribe("*", self._on_event)

    async def _on_event(self, event: dict[str, Any]) -> None:
        kind = event.get("type")
        if kind == events.RUN_STARTED:
            await self.start_run(event["run_id"], event.get("steps", []))
        if self._current_run is None:
            return
        run_id = self._current_run
        await self.record_event(run_id, event)
        if kind == events.RUN_FINISHED:
            await self.finish_run(run_id, event.get("status", "done"), event.get("halted_at"))
