"""
Project state storage with atomic writes.

The state file (.prd/state.json) records which iteration is active and
which stages of each iteration are frozen. It is loaded once per command
into a ProjectState value and written back only at commit points (the end
of a successful gate, a new iteration, a recorded confirmation), never
implicitly.

State File Format (JSON):
{
    "version": "1.0",
    "project_name": "checkout",
    "created_at": "2026-01-05T10:00:00Z",
    "current_iteration": 1,
    "iterations": {
        "1": {
            "start_confirmed": true,
            "plan": {"frozen": true, "frozen_at": "...", "signature": "Alice", "bypassed": false},
            "version": {"frozen": false, "frozen_at": null, "signature": null, "bypassed": false},
            "batch": {"current": 1, "total": 2}
        }
    }
}
"""
import fcntl
import json
import os
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .errors import ConfigurationError, PreconditionError


STATE_VERSION = "1.0"
STATE_DIR = ".prd"
STATE_FILE = "state.json"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class StageRecord:
    """Freeze status of one stage (plan or version) in one iteration."""
    frozen: bool = False
    frozen_at: Optional[str] = None
    signature: Optional[str] = None
    bypassed: bool = False


@dataclass
class IterationRecord:
    start_confirmed: bool = False
    plan: StageRecord = field(default_factory=StageRecord)
    version: StageRecord = field(default_factory=StageRecord)
    batch: dict = field(default_factory=dict)

    def stage(self, name: str) -> StageRecord:
        if name not in ('plan', 'version'):
            raise ValueError(f"Unknown stage: {name}")
        return getattr(self, name)

    @classmethod
    def from_dict(cls, data: dict) -> "IterationRecord":
        return cls(
            start_confirmed=bool(data.get('start_confirmed', False)),
            plan=StageRecord(**data.get('plan', {})),
            version=StageRecord(**data.get('version', {})),
            batch=dict(data.get('batch') or {}),
        )


@dataclass
class ProjectState:
    """Explicit workflow state passed through a command's pipeline."""
    project_name: str
    created_at: str = field(default_factory=utc_now)
    current_iteration: int = 0
    iterations: dict = field(default_factory=dict)

    def iteration(self, number: Optional[int] = None) -> IterationRecord:
        """Record for an iteration (current one by default), created on demand."""
        number = self.current_iteration if number is None else number
        if number < 1:
            raise PreconditionError(
                "No active iteration",
                missing="iteration",
                remediation="prd iteration new",
            )
        if number not in self.iterations:
            self.iterations[number] = IterationRecord()
        return self.iterations[number]

    def is_frozen(self, stage: str, number: Optional[int] = None) -> bool:
        number = self.current_iteration if number is None else number
        record = self.iterations.get(number)
        return bool(record and record.stage(stage).frozen)

    def to_dict(self) -> dict:
        return {
            'version': STATE_VERSION,
            'project_name': self.project_name,
            'created_at': self.created_at,
            'current_iteration': self.current_iteration,
            'iterations': {str(n): asdict(rec) for n, rec in sorted(self.iterations.items())},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProjectState":
        try:
            iterations = {
                int(n): IterationRecord.from_dict(rec)
                for n, rec in (data.get('iterations') or {}).items()
            }
            return cls(
                project_name=data['project_name'],
                created_at=data.get('created_at') or utc_now(),
                current_iteration=int(data.get('current_iteration', 0)),
                iterations=iterations,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Malformed project state: {e}") from e


def get_state_path(project_dir: str) -> Path:
    return Path(project_dir) / STATE_DIR / STATE_FILE


def find_project_root(start: Optional[str] = None) -> Optional[str]:
    """
    Find the nearest directory containing .prd/state.json.

    Args:
        start: Directory to start from (defaults to cwd)

    Returns:
        Project root path, or None when not inside a prdgate project
    """
    current = Path(start or os.getcwd()).resolve()
    for candidate in (current, *current.parents):
        if get_state_path(str(candidate)).exists():
            return str(candidate)
    return None


def load_state(project_dir: str) -> ProjectState:
    """
    Load project state with a shared lock.

    Raises:
        PreconditionError: No state file (not a prdgate project)
        ConfigurationError: Corrupted or incompatible state file
    """
    path = get_state_path(project_dir)
    if not path.exists():
        raise PreconditionError(
            f"Not a prdgate project: {project_dir}",
            missing=str(path),
            remediation="prd init <project-name>",
        )

    try:
        with open(path, 'r', encoding='utf-8') as f:
            fcntl.flock(f, fcntl.LOCK_SH)
            try:
                data = json.load(f)
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)
    except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
        raise ConfigurationError(f"Could not read project state {path}: {e}") from e

    if not isinstance(data, dict) or data.get('version') != STATE_VERSION:
        raise ConfigurationError(f"Unsupported project state format in {path}")
    return ProjectState.from_dict(data)


def save_state(project_dir: str, state: ProjectState) -> None:
    """
    Save project state atomically (exclusive lock, temp file, rename).

    Unlike audit writes, a failed state save is not swallowed: the caller's
    commit did not happen.
    """
    path = get_state_path(project_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix('.tmp')

    try:
        with open(temp_path, 'w', encoding='utf-8') as f:
            fcntl.flock(f, fcntl.LOCK_EX)
            try:
                json.dump(state.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)
        temp_path.rename(path)
    except OSError:
        if temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                pass
        raise
