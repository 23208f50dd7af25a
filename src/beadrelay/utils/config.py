from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Config:
    """Central configuration loaded from environment variables."""

    # Bead store
    bd_path: str = field(default_factory=lambda: os.environ.get("BEADRELAY_BD_PATH", "bd"))
    store_timeout: float = field(
        default_factory=lambda: float(os.environ.get("BEADRELAY_STORE_TIMEOUT", "60"))
    )

    # Worker dispatch
    agent_command: str = field(
        default_factory=lambda: os.environ.get("BEADRELAY_AGENT_CMD", "claude --print")
    )
    worker_timeout: float = field(
        default_factory=lambda: float(os.environ.get("BEADRELAY_WORKER_TIMEOUT", "1800"))
    )
    retry_cap: int = field(
        default_factory=lambda: int(os.environ.get("BEADRELAY_RETRY_CAP", "3"))
    )

    # Run journal
    journal_path: Path = field(
        default_factory=lambda: Path(
            os.environ.get("BEADRELAY_JOURNAL_PATH", ".beadrelay/journal.db")
        )
    )

    # Logging
    log_level: str = field(
        default_factory=lambda: os.environ.get("BEADRELAY_LOG_LEVEL", "INFO")
    )


def get_config() -> Config:
    """Return a Config instance (singleton-friendly via module caching)."""
    return Config()
