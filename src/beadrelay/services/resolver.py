"""Locate worker definitions.

Each worker is resolved on its own: a project can override one worker
while the rest come from the shared install.

Lookup order for ``<name>``:

1. ``{project_root}/workers/<name>.md``
2. ``{share_dir}/workers/<name>.md`` where ``share_dir`` comes from
   :func:`find_share_dir`
3. a beadrelay source checkout (the project root, then the current
   directory) containing ``workers/<name>.md``
"""

from __future__ import annotations

import logging
import os
import re
import sys
from pathlib import Path
from typing import Iterable, Mapping

from beadrelay.errors import MissingWorkers

logger = logging.getLogger(__name__)

SHARE_DIR_ENV_VAR = "BEADRELAY_SHARE_DIR"
WORKERS_DIR_NAME = "workers"
STANDARD_SHARE_LOCATIONS = (
    Path("/opt/homebrew/share/beadrelay"),
    Path("/usr/local/share/beadrelay"),
    Path("~/.local/share/beadrelay"),
)

# Workers the step loop dispatches, in order.
REQUIRED_WORKERS = ("strategist", "implementer", "verifier", "finalizer")

_CHECKOUT_NAME_RE = re.compile(r'^\s*name\s*=\s*"beadrelay"\s*$', re.MULTILINE)

# Sentinel: discover the shared directory with find_share_dir().
AUTO = object()


def find_share_dir(env: Mapping[str, str] | None = None) -> Path | None:
    """Find the shared install directory.

    Environment override first, then paths relative to the running program,
    then standard locations.
    """
    env = os.environ if env is None else env
    override = env.get(SHARE_DIR_ENV_VAR)
    if override and Path(override).is_dir():
        return Path(override)

    candidates: list[Path] = []
    if sys.argv and sys.argv[0]:
        exe_dir = Path(sys.argv[0]).resolve().parent
        candidates.append(exe_dir / ".." / "share" / "beadrelay")
    candidates.append(Path(sys.prefix) / "share" / "beadrelay")
    candidates.extend(p.expanduser() for p in STANDARD_SHARE_LOCATIONS)

    for candidate in candidates:
        if candidate.is_dir():
            return candidate.resolve()
    return None


def is_source_checkout(root: Path) -> bool:
    marker = root / "pyproject.toml"
    if not marker.is_file() or not (root / WORKERS_DIR_NAME).is_dir():
        return False
    try:
        return bool(_CHECKOUT_NAME_RE.search(marker.read_text()))
    except OSError:
        return False


def _checkout_candidates(project_root: Path) -> list[Path]:
    roots = [project_root]
    cwd = Path.cwd()
    if cwd.resolve() != project_root.resolve():
        roots.append(cwd)
    return [root for root in roots if is_source_checkout(root)]


def search_paths(
    name: str, project_root: str | Path, *, share_dir: Path | None | object = AUTO
) -> list[Path]:
    """Every path :func:`resolve_worker` would try for ``name``, in order."""
    project_root = Path(project_root)
    filename = f"{name}.md"
    paths = [project_root / WORKERS_DIR_NAME / filename]

    if share_dir is AUTO:
        share_dir = find_share_dir()
    if share_dir is not None:
        paths.append(Path(share_dir) / WORKERS_DIR_NAME / filename)  # type: ignore[arg-type]

    for root in _checkout_candidates(project_root):
        candidate = root / WORKERS_DIR_NAME / filename
        if candidate not in paths:
            paths.append(candidate)
    return paths


def resolve_worker(
    name: str, project_root: str | Path, *, share_dir: Path | None | object = AUTO
) -> Path | None:
    for path in search_paths(name, project_root, share_dir=share_dir):
        if path.is_file():
            logger.debug("Resolved worker %s -> %s", name, path)
            return path
    return None


def verify_required(
    names: Iterable[str],
    project_root: str | Path,
    *,
    share_dir: Path | None | object = AUTO,
) -> dict[str, Path]:
    """Resolve every worker up front; raise listing all that are missing."""
    if share_dir is AUTO:
        share_dir = find_share_dir()

    resolved: dict[str, Path] = {}
    missing: list[str] = []
    searched: dict[str, list[Path]] = {}
    for name in names:
        paths = search_paths(name, project_root, share_dir=share_dir)
        found = next((p for p in paths if p.is_file()), None)
        if found is None:
            missing.append(name)
            searched[name] = paths
        else:
            resolved[name] = found

    if missing:
        raise MissingWorkers(missing, searched)
    return resolved
