"""
Bounded check history and statistics.

Every `prd check-rules` run appends one summarized entry to
.prd/logs/check-history.json. The file keeps at most `max_entries` entries
(100 by default, never more than 100); appending beyond that evicts the
oldest first.

Entry format:
{
    "timestamp": "2026-01-05T10:00:00Z",
    "passed": false,
    "summary": {"total": 9, "violations": 2, "warnings": 1, "skipped": 6},
    "violations_by_rule": {"F002": 2},
    "warnings_by_rule": {"F003": 1}
}

History I/O is best effort: read failures yield an empty history and write
failures are logged, never raised to the caller.
"""
import fcntl
import json
import os
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from . import colors
from .logger import JsonLogger


HISTORY_FILE = Path(".prd") / "logs" / "check-history.json"
DEFAULT_MAX_ENTRIES = 100


def get_history_path(project_dir: str) -> Path:
    return Path(project_dir) / HISTORY_FILE


class CheckHistory:
    """Append-only, bounded FIFO store of check run summaries."""

    def __init__(self, project_dir: str, max_entries: int = DEFAULT_MAX_ENTRIES,
                 logger: Optional[JsonLogger] = None):
        self.path = get_history_path(project_dir)
        self.max_entries = max(1, min(max_entries, DEFAULT_MAX_ENTRIES))
        self.logger = logger or JsonLogger()

    def load(self) -> list:
        """All stored entries, oldest first ([] when missing or unreadable)."""
        if not self.path.exists():
            return []
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                fcntl.flock(f, fcntl.LOCK_SH)
                try:
                    data = json.load(f)
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            self.logger.warning("Check history unreadable, starting empty",
                                path=str(self.path), error=str(e))
            return []
        if not isinstance(data, list):
            self.logger.warning("Check history is not a list, starting empty", path=str(self.path))
            return []
        return [entry for entry in data if isinstance(entry, dict)]

    def append(self, entry: dict) -> bool:
        """
        Append one entry, evicting the oldest beyond max_entries.

        Returns:
            True if written, False if the write failed (already logged)
        """
        entries = deque(self.load(), maxlen=self.max_entries)
        entries.append(entry)
        return self._write(list(entries))

    def _write(self, entries: list) -> bool:
        temp_path = self.path.with_suffix('.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, 'w', encoding='utf-8') as f:
                fcntl.flock(f, fcntl.LOCK_EX)
                try:
                    json.dump(entries, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)
            temp_path.rename(self.path)
            return True
        except (OSError, TypeError, ValueError) as e:
            self.logger.warning("Could not write check history", path=str(self.path), error=str(e))
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            return False


@dataclass
class CheckStats:
    total_checks: int = 0
    pass_rate: int = 0
    violations_by_rule: dict = field(default_factory=dict)
    warnings_by_rule: dict = field(default_factory=dict)
    top_violations: list = field(default_factory=list)
    top_warnings: list = field(default_factory=list)
    recent_trend: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _parse_timestamp(value) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _top(counts: dict, n: int) -> list:
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [{'rule_id': rule_id, 'count': count} for rule_id, count in ranked[:n]]


def _percent(part: int, whole: int) -> int:
    return int(part * 100 / whole + 0.5) if whole else 0


def compute_stats(history: list, now: Optional[datetime] = None,
                  top_n: int = 5, trend_days: int = 7) -> CheckStats:
    """
    Aggregate history entries.

    Args:
        history: Entries as stored by CheckHistory
        now: Reference time for the trend window (defaults to current UTC time)
        top_n: Number of rules listed in the top violation/warning rankings
        trend_days: Width of the trailing trend window in days
    """
    stats = CheckStats(total_checks=len(history))
    if not history:
        return stats

    stats.pass_rate = _percent(sum(1 for h in history if h.get('passed')), len(history))

    for entry in history:
        for rule_id, count in (entry.get('violations_by_rule') or {}).items():
            stats.violations_by_rule[rule_id] = stats.violations_by_rule.get(rule_id, 0) + count
        for rule_id, count in (entry.get('warnings_by_rule') or {}).items():
            stats.warnings_by_rule[rule_id] = stats.warnings_by_rule.get(rule_id, 0) + count

    stats.top_violations = _top(stats.violations_by_rule, top_n)
    stats.top_warnings = _top(stats.warnings_by_rule, top_n)

    now = now or datetime.now(timezone.utc)
    window_start = now - timedelta(days=trend_days)
    by_day: dict = {}
    for entry in history:
        when = _parse_timestamp(entry.get('timestamp'))
        if when is None or when < window_start or when > now:
            continue
        day = by_day.setdefault(when.date().isoformat(), {'checks': 0, 'passed': 0, 'violations': 0})
        day['checks'] += 1
        if entry.get('passed'):
            day['passed'] += 1
        day['violations'] += (entry.get('summary') or {}).get('violations', 0)

    stats.recent_trend = [
        {
            'date': date,
            'checks': data['checks'],
            'pass_rate': _percent(data['passed'], data['checks']),
            'violations': data['violations'],
        }
        for date, data in sorted(by_day.items())
    ]
    return stats


def render_stats(stats: CheckStats, registry=None) -> str:
    """Text statistics report with an improvement hint for the most violated rule."""
    if stats.total_checks == 0:
        return (colors.warning("No check history yet.") + "\n"
                + colors.dim("Run `prd check-rules` to start recording results.") + "\n")

    def describe(rule_id: str) -> str:
        rule = registry.get(rule_id) if registry is not None else None
        return rule.description if rule else "unknown rule"

    lines = [
        "",
        colors.bold("PRD rule statistics"),
        "-" * 50,
        "",
        colors.info("Overall"),
        f"   Checks run: {stats.total_checks}",
        f"   Pass rate:  {colors.rate(stats.pass_rate)}",
        "",
    ]

    if stats.top_violations:
        lines.append(colors.error(f"Most violated rules (top {len(stats.top_violations)})"))
        for i, item in enumerate(stats.top_violations, 1):
            lines.append(f"   {i}. [{item['rule_id']}] {describe(item['rule_id'])} ({item['count']}x)")
        lines.append("")

    if stats.top_warnings:
        lines.append(colors.warning(f"Most frequent warnings (top {len(stats.top_warnings)})"))
        for i, item in enumerate(stats.top_warnings, 1):
            lines.append(f"   {i}. [{item['rule_id']}] {describe(item['rule_id'])} ({item['count']}x)")
        lines.append("")

    if stats.recent_trend:
        lines.append(colors.info("Recent trend"))
        lines.append("   Date       | Checks | Pass rate | Violations")
        lines.append("   -----------|--------|-----------|-----------")
        for day in stats.recent_trend:
            lines.append(
                f"   {day['date']} | {day['checks']:>6} | "
                f"{colors.rate(day['pass_rate']):>9} | {day['violations']}"
            )
        lines.append("")

    if stats.top_violations:
        top_id = stats.top_violations[0]['rule_id']
        lines.append(colors.success("Where to improve"))
        lines.append(f"   Focus on [{top_id}]: {describe(top_id)}")
        rule = registry.get(top_id) if registry is not None else None
        if rule is not None and rule.is_manual:
            lines.append(colors.dim("   This rule is a manual self-check; review it before each freeze."))
        elif rule is not None:
            lines.append(colors.dim("   This rule is checked automatically by `prd check-rules`."))
        lines.append("")

    return "\n".join(lines)
