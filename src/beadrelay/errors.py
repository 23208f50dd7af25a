"""Error taxonomy shared by the store client, resolver and orchestrator."""

from __future__ import annotations

from pathlib import Path


class BeadRelayError(Exception):
    """Base class for all beadrelay errors."""

    code = "E000"
    exit_code = 1
    fatal = True


class PlanError(BeadRelayError):
    """Raised when a plan file cannot be read or is malformed."""

    code = "E002"
    exit_code = 2


class ContentFileError(BeadRelayError):
    """Raised when worker content cannot be read from the given file."""

    code = "E003"
    exit_code = 2

    def __init__(self, path: str, operation: str, detail: str):
        self.path = path
        self.operation = operation
        super().__init__(f"{operation}: cannot read content file {path}: {detail}")


class AccessViolation(BeadRelayError):
    """Raised when a role view is built against a table that does not allow it."""

    code = "E030"
    exit_code = 3


# ----------------------------------------------------------------------
# Store errors
# ----------------------------------------------------------------------


class StoreError(BeadRelayError):
    """Base class for failures talking to the bead store."""

    def __init__(self, message: str, *, bead_id: str | None = None, operation: str | None = None):
        self.bead_id = bead_id
        self.operation = operation
        super().__init__(message)


class StoreUnavailable(StoreError):
    code = "E005"
    exit_code = 5

    def __init__(self, bd_path: str, *, operation: str | None = None):
        self.bd_path = bd_path
        super().__init__(
            f"beads CLI not installed or not found: {bd_path}", operation=operation
        )


class StoreNotInitialized(StoreError):
    code = "E013"
    exit_code = 14

    def __init__(self, project_root: str | Path, *, operation: str | None = None):
        self.project_root = Path(project_root)
        super().__init__(
            f"beads not initialized in {self.project_root} (run `bd init`)", operation=operation
        )


class NotFound(StoreError):
    code = "E014"
    exit_code = 13

    def __init__(self, bead_id: str, *, operation: str | None = None, detail: str = ""):
        self.detail = detail
        message = f"bead {bead_id} not found"
        if operation:
            message = f"{operation}: {message}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, bead_id=bead_id, operation=operation)


class AlreadyClosed(StoreError):
    """Closing a bead that is already closed. Surfaced as a warning."""

    code = "E016"
    exit_code = 0
    fatal = False

    def __init__(self, bead_id: str):
        super().__init__(f"bead {bead_id} is already closed", bead_id=bead_id, operation="close")


class StoreCommandFailed(StoreError):
    code = "E017"
    exit_code = 17

    def __init__(self, detail: str, *, bead_id: str | None = None, operation: str | None = None):
        self.detail = detail
        parts = [p for p in (operation, bead_id) if p]
        prefix = " ".join(parts)
        message = f"{prefix} failed: {detail}" if prefix else detail
        super().__init__(message, bead_id=bead_id, operation=operation)


# ----------------------------------------------------------------------
# Worker errors
# ----------------------------------------------------------------------


class MissingWorkers(BeadRelayError):
    code = "E020"
    exit_code = 20

    def __init__(self, names: list[str], searched_paths: dict[str, list[Path]]):
        self.names = list(names)
        self.searched_paths = searched_paths
        lines = [f"missing worker definitions: {', '.join(self.names)}"]
        for name in self.names:
            for path in searched_paths.get(name, []):
                lines.append(f"  {name}: searched {path}")
        super().__init__("\n".join(lines))


class WorkerError(BeadRelayError):
    """A worker failed before returning a structured result."""

    code = "E021"
    exit_code = 21

    def __init__(self, worker: str, message: str, *, bead_id: str | None = None):
        self.worker = worker
        self.bead_id = bead_id
        target = f" on {bead_id}" if bead_id else ""
        super().__init__(f"worker {worker}{target}: {message}")


class WorkerInvocationFailed(WorkerError):
    code = "E021"


class WorkerTimeout(WorkerError):
    code = "E022"
    exit_code = 22

    def __init__(self, worker: str, timeout: float, *, bead_id: str | None = None):
        self.timeout = timeout
        super().__init__(worker, f"timed out after {timeout:g}s", bead_id=bead_id)


class WorkerOutputInvalid(WorkerError):
    code = "E023"
    exit_code = 23
