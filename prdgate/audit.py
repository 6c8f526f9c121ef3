"""
Append-only audit log.

One JSON-lines file per iteration and stage under .prd/audit/:

    .prd/audit/iteration-01/planning.jsonl   structured log (source of truth)
    .prd/audit/iteration-01/planning.md      derived rendering, rebuilt on every write
    .prd/audit/project/baseline.jsonl        entries made before any iteration exists

Each entry: {"timestamp", "stage", "action", "iteration", "data"}.

Writes are best effort. A failed audit write is logged at warning level and
reported through the return value; it never aborts the command that
triggered it.
"""
import json
from pathlib import Path
from typing import Optional

from .documents import iteration_dirname
from .logger import JsonLogger
from .project_state import utc_now


AUDIT_DIR = Path(".prd") / "audit"

STAGES = ('baseline', 'planning', 'version')

# Actions
GATE_EVALUATED = 'gate_evaluated'
PM_CONFIRMATION = 'pm_confirmation'
BYPASS_REQUESTED = 'bypass_requested'
FREEZE_BYPASSED = 'freeze_bypassed'
STAGE_FROZEN = 'stage_frozen'
REVIEW_WRITTEN = 'review_written'
CHANGE_REQUESTED = 'change_requested'
DOCUMENT_CREATED = 'document_created'
ITERATION_CREATED = 'iteration_created'


class AuditLog:
    """Audit log for one iteration (0 means project level)."""

    def __init__(self, project_dir: str, iteration: int, logger: Optional[JsonLogger] = None):
        self.project_dir = Path(project_dir)
        self.iteration = iteration
        self.logger = logger or JsonLogger()

    @property
    def directory(self) -> Path:
        name = iteration_dirname(self.iteration) if self.iteration >= 1 else 'project'
        return self.project_dir / AUDIT_DIR / name

    def log_path(self, stage: str) -> Path:
        return self.directory / f"{stage}.jsonl"

    def markdown_path(self, stage: str) -> Path:
        return self.directory / f"{stage}.md"

    def record(self, stage: str, action: str, payload: Optional[dict] = None) -> bool:
        """
        Append an entry and regenerate the stage's markdown rendering.

        Returns:
            True if the structured entry was written
        """
        entry = {
            'timestamp': utc_now(),
            'stage': stage,
            'action': action,
            'iteration': self.iteration,
            'data': payload or {},
        }
        path = self.log_path(stage)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            line = json.dumps(entry, ensure_ascii=False, default=str)
            with path.open('a', encoding='utf-8') as f:
                f.write(line + "\n")
        except (OSError, TypeError, ValueError) as e:
            self.logger.warning("Audit write failed", stage=stage, action=action,
                                path=str(path), error=str(e))
            return False

        try:
            self.markdown_path(stage).write_text(
                render_markdown(self.entries(stage), stage, self.iteration), encoding='utf-8')
        except OSError as e:
            self.logger.warning("Audit rendering failed", stage=stage, error=str(e))
        return True

    def record_confirmation(self, stage: str, record) -> bool:
        """Log a confirmation decision (approved or rejected)."""
        data = record.to_dict()
        data['decision'] = 'approved' if record.approved else 'rejected'
        return self.record(stage, PM_CONFIRMATION, data)

    def record_document(self, stage: str, kind_code: str, path) -> bool:
        return self.record(stage, DOCUMENT_CREATED, {'document': kind_code, 'path': str(path)})

    def record_gate(self, stage: str, report) -> bool:
        return self.record(stage, GATE_EVALUATED, report.summary())

    def entries(self, stage: str) -> list:
        """Structured entries for a stage, oldest first. Unparseable lines are skipped."""
        path = self.log_path(stage)
        if not path.exists():
            return []
        result = []
        try:
            lines = path.read_text(encoding='utf-8').splitlines()
        except (OSError, UnicodeDecodeError) as e:
            self.logger.warning("Audit read failed", stage=stage, error=str(e))
            return []
        for line in lines:
            if not line.strip():
                continue
            try:
                result.append(json.loads(line))
            except json.JSONDecodeError:
                self.logger.debug("Skipping malformed audit line", stage=stage)
        return result


def render_markdown(entries: list, stage: str, iteration: int) -> str:
    """Human-readable rendering of a stage's audit entries."""
    scope = f"iteration {iteration}" if iteration >= 1 else "project"
    lines = [
        f"# Audit log: {stage} ({scope})",
        "",
        f"**Entries**: {len(entries)}",
        "",
        "---",
        "",
    ]
    for entry in entries:
        data = entry.get('data') or {}
        lines.append(f"## {entry.get('timestamp')} {entry.get('action')}")
        lines.append("")
        if entry.get('action') == PM_CONFIRMATION:
            lines.append(f"- **Decision**: {data.get('decision')}")
            lines.append(f"- **Kind**: {data.get('kind')}")
            lines.append(f"- **Signature**: {data.get('signature') or '-'}")
            lines.append(f"- **Method**: {data.get('method')}")
            if data.get('reason'):
                lines.append(f"- **Reason**: {data.get('reason')}")
        elif data:
            lines.append("```json")
            lines.append(json.dumps(data, indent=2, ensure_ascii=False, default=str))
            lines.append("```")
        lines.extend(["", "---", ""])
    return "\n".join(lines)
