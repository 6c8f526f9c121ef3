"""
Rule engine for standalone compliance checks (`prd check-rules`).

Rules are static definitions loaded from a YAML registry (rules.yaml in
this package, or the file named by the `rules.file` config key). Each
program rule maps to a checker function through CHECKERS; manual rules are
reported as skipped so the operator can self-check them.

A checker returns findings (violation or warning) or raises SkipRule when
its preconditions are absent. A document that is not valid UTF-8 becomes a
finding of the rule that tried to read it. Violations of LOW severity rules
are recorded as warnings: advisory rules never fail a run.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import yaml

from . import colors
from .documents import DocumentKind, DocumentStore
from .errors import ConfigurationError, UnreadableDocumentError
from .project_state import ProjectState
from .templates import is_bypassed_artifact
from .validators import (
    DEFAULT_SETTINGS,
    ValidatorSettings,
    invalid_component_types,
    prototype_name_ok,
    requirement_ids,
)


DEFAULT_RULES_FILE = Path(__file__).parent / 'rules.yaml'


class Severity(str, Enum):
    CRITICAL = 'CRITICAL'
    HIGH = 'HIGH'
    MEDIUM = 'MEDIUM'
    LOW = 'LOW'


VALIDATOR_TYPES = ('program', 'manual')


@dataclass(frozen=True)
class Rule:
    id: str
    category: str
    description: str
    severity: Severity
    scope: str
    validator: str = 'program'

    @property
    def is_manual(self) -> bool:
        return self.validator == 'manual'


@dataclass(frozen=True)
class CheckOptions:
    """Filters for one run. Both None means every rule."""
    category: Optional[str] = None
    rule_id: Optional[str] = None


class RuleRegistry:
    """Ordered, read-only collection of rules."""

    def __init__(self, rules: list, categories: dict):
        self.rules = list(rules)
        self.categories = dict(categories)
        self._by_id = {rule.id: rule for rule in self.rules}

    def __iter__(self):
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def get(self, rule_id: str) -> Optional[Rule]:
        return self._by_id.get(rule_id.upper())

    def select(self, options: CheckOptions) -> list:
        """
        Rules passing the filters, in registry order.

        Raises:
            ValueError: Unknown category or rule id
        """
        selected = self.rules
        if options.category:
            category = options.category.upper()
            if category not in self.categories:
                raise ValueError(
                    f"Unknown rule category: {options.category} "
                    f"(known: {', '.join(sorted(self.categories))})"
                )
            selected = [rule for rule in selected if rule.category == category]
        if options.rule_id:
            rule = self.get(options.rule_id)
            if rule is None:
                raise ValueError(f"Unknown rule id: {options.rule_id}")
            selected = [r for r in selected if r.id == rule.id]
        return list(selected)


def load_registry(path: Optional[str] = None) -> RuleRegistry:
    """
    Load and validate the rule registry.

    Args:
        path: Registry file (defaults to the bundled rules.yaml)

    Raises:
        ConfigurationError: Missing, unreadable or malformed registry
    """
    registry_path = Path(path) if path else DEFAULT_RULES_FILE
    if not registry_path.is_file():
        raise ConfigurationError(f"Rule registry not found: {registry_path}")

    try:
        data = yaml.safe_load(registry_path.read_text(encoding='utf-8'))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not load rule registry {registry_path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get('rules'), list):
        raise ConfigurationError(f"Rule registry {registry_path} must define a 'rules' list")

    categories = data.get('categories') or {}
    if not isinstance(categories, dict):
        raise ConfigurationError("Rule registry 'categories' must be a mapping")

    rules = []
    seen = set()
    for entry in data['rules']:
        rule = _parse_rule(entry, categories)
        if rule.id in seen:
            raise ConfigurationError(f"Duplicate rule id in registry: {rule.id}")
        seen.add(rule.id)
        rules.append(rule)

    return RuleRegistry(rules, categories)


def _parse_rule(entry, categories: dict) -> Rule:
    if not isinstance(entry, dict):
        raise ConfigurationError(f"Rule entry must be a mapping, got {entry!r}")
    try:
        rule = Rule(
            id=str(entry['id']).upper(),
            category=str(entry['category']).upper(),
            description=str(entry['description']),
            severity=Severity(str(entry['severity']).upper()),
            scope=str(entry['scope']),
            validator=str(entry.get('validator', 'program')),
        )
    except KeyError as e:
        raise ConfigurationError(f"Rule entry missing field {e}: {entry!r}") from e
    except ValueError as e:
        raise ConfigurationError(f"Invalid rule entry {entry.get('id')}: {e}") from e

    if rule.category not in categories:
        raise ConfigurationError(f"Rule {rule.id}: unknown category '{rule.category}'")
    if rule.scope not in SCOPES:
        raise ConfigurationError(f"Rule {rule.id}: unknown scope '{rule.scope}'")
    if rule.validator not in VALIDATOR_TYPES:
        raise ConfigurationError(f"Rule {rule.id}: validator must be program or manual")
    if not rule.is_manual and rule.id not in CHECKERS:
        raise ConfigurationError(f"Rule {rule.id}: no checker registered")
    return rule


# ---------------------------------------------------------------------------
# Run context and results
# ---------------------------------------------------------------------------

@dataclass
class RuleContext:
    """Everything a checker may inspect: project state and the document store."""
    state: ProjectState
    store: DocumentStore
    settings: ValidatorSettings = DEFAULT_SETTINGS

    @property
    def iteration(self) -> int:
        return self.state.current_iteration

    def stage_frozen(self, stage: str) -> bool:
        """Frozen per recorded state or per the artifact on disk."""
        if self.iteration < 1:
            return False
        kind = DocumentKind.B3 if stage == 'plan' else DocumentKind.C3
        return self.state.is_frozen(stage) or self.store.exists(kind, self.iteration)

    def prototype_files(self) -> list:
        if self.iteration < 1:
            return []
        proto_dir = self.store.ui_prototype_dir(self.iteration)
        if not proto_dir.is_dir():
            return []
        return sorted(p for p in proto_dir.iterdir() if p.is_file())


@dataclass
class Finding:
    rule_id: str
    message: str
    location: Optional[str] = None
    severity: Optional[str] = None
    kind: str = 'violation'

    def to_dict(self) -> dict:
        data = {'rule_id': self.rule_id, 'message': self.message, 'location': self.location}
        if self.severity:
            data['severity'] = self.severity
        return data


class SkipRule(Exception):
    """Raised by a checker whose preconditions are absent."""


@dataclass
class CheckReport:
    violations: list = field(default_factory=list)
    warnings: list = field(default_factory=list)
    skipped: list = field(default_factory=list)
    checked_rules: list = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.violations

    def add_skipped(self, rule_id: str, reason: str) -> None:
        self.skipped.append({'rule_id': rule_id, 'reason': reason})

    def summary(self) -> dict:
        return {
            'total': len(self.checked_rules),
            'violations': len(self.violations),
            'warnings': len(self.warnings),
            'skipped': len(self.skipped),
        }

    def violations_by_rule(self) -> dict:
        return _count_by_rule(self.violations)

    def warnings_by_rule(self) -> dict:
        return _count_by_rule(self.warnings)

    def history_entry(self, timestamp: str) -> dict:
        """Summarized projection persisted to the check history."""
        return {
            'timestamp': timestamp,
            'passed': self.passed,
            'summary': self.summary(),
            'violations_by_rule': self.violations_by_rule(),
            'warnings_by_rule': self.warnings_by_rule(),
        }

    def to_dict(self) -> dict:
        return {
            'passed': self.passed,
            'summary': self.summary(),
            'checked_rules': list(self.checked_rules),
            'violations': [f.to_dict() for f in self.violations],
            'warnings': [f.to_dict() for f in self.warnings],
            'skipped': list(self.skipped),
        }


def _count_by_rule(findings: list) -> dict:
    counts: dict = {}
    for finding in findings:
        counts[finding.rule_id] = counts.get(finding.rule_id, 0) + 1
    return counts


# ---------------------------------------------------------------------------
# Scopes
# ---------------------------------------------------------------------------

def _has_iteration(ctx: RuleContext) -> bool:
    return ctx.iteration >= 1


def _has_requirement_items(ctx: RuleContext) -> bool:
    return _has_iteration(ctx) and bool(ctx.store.requirement_item_paths(ctx.iteration))


def _has_batches(ctx: RuleContext) -> bool:
    if not _has_iteration(ctx):
        return False
    batch = ctx.state.iteration().batch
    return int(batch.get('total') or 1) > 1


# scope -> (applies?, reason when it does not)
SCOPES: dict = {
    'project': (lambda ctx: True, ''),
    'iteration': (_has_iteration, 'no active iteration'),
    'plan_frozen': (lambda ctx: ctx.stage_frozen('plan'), 'plan is not frozen'),
    'version_frozen': (lambda ctx: ctx.stage_frozen('version'), 'version is not frozen'),
    'requirement_items': (_has_requirement_items, 'no requirement item files'),
    'ui_prototypes': (lambda ctx: bool(ctx.prototype_files()), 'no UI prototype files'),
    'version_batches': (_has_batches, 'version is delivered in a single batch'),
}


# ---------------------------------------------------------------------------
# Checkers
# ---------------------------------------------------------------------------

def _edited_after_freeze(ctx: RuleContext, rule_id: str, artifact: DocumentKind,
                         sources: tuple) -> list:
    it = ctx.iteration
    if not ctx.store.exists(artifact, it):
        raise SkipRule(f"{artifact.code} not found")
    frozen_mtime = ctx.store.path_for(artifact, it).stat().st_mtime
    findings = []
    for kind in sources:
        path = ctx.store.path_for(kind, it)
        if path.is_file() and path.stat().st_mtime > frozen_mtime:
            findings.append(Finding(
                rule_id, f"{kind.code} was modified after {artifact.code} was frozen",
                location=str(path), kind='warning',
            ))
    return findings


def check_d001(ctx: RuleContext) -> list:
    return _edited_after_freeze(ctx, 'D001', DocumentKind.B3, (DocumentKind.B1, DocumentKind.B2))


def check_d002(ctx: RuleContext) -> list:
    return _edited_after_freeze(ctx, 'D002', DocumentKind.C3, (DocumentKind.C0, DocumentKind.C1))


def check_d003(ctx: RuleContext) -> list:
    findings = []
    for stage, kind in (('plan', DocumentKind.B3), ('version', DocumentKind.C3)):
        recorded = ctx.state.is_frozen(stage)
        on_disk = ctx.store.exists(kind, ctx.iteration)
        path = str(ctx.store.path_for(kind, ctx.iteration))
        if recorded and not on_disk:
            findings.append(Finding(
                'D003', f"{stage} is recorded as frozen but {kind.code} is missing", location=path))
        elif on_disk and not recorded:
            findings.append(Finding(
                'D003', f"{kind.code} exists but the {stage} is not recorded as frozen", location=path))
    return findings


def check_d004(ctx: RuleContext) -> list:
    findings = []
    record = ctx.state.iteration()
    for stage, kind in (('plan', DocumentKind.B3), ('version', DocumentKind.C3)):
        text = ctx.store.read_optional(kind, ctx.iteration)
        if record.stage(stage).bypassed or is_bypassed_artifact(text):
            findings.append(Finding(
                'D004', f"{stage} was frozen with --force; its gate checks never ran",
                location=str(ctx.store.path_for(kind, ctx.iteration)),
            ))
    return findings


def check_f001(ctx: RuleContext) -> list:
    if ctx.stage_frozen('plan'):
        return []
    c3 = ctx.store.read_optional(DocumentKind.C3, ctx.iteration)
    if ctx.state.iteration().version.bypassed or is_bypassed_artifact(c3):
        return [Finding('F001', "version was force-frozen before the plan was frozen", kind='warning')]
    return [Finding('F001', "version is frozen but the plan (B3) is not")]


def check_f002(ctx: RuleContext) -> list:
    if ctx.stage_frozen('plan'):
        return []
    return [
        Finding('F002', f"{kind.code} exists before the plan is frozen (run: prd freeze-plan)",
                location=str(ctx.store.path_for(kind, ctx.iteration)))
        for kind in (DocumentKind.C0, DocumentKind.C1)
        if ctx.store.exists(kind, ctx.iteration)
    ]


def check_f003(ctx: RuleContext) -> list:
    if not ctx.store.exists(DocumentKind.B1, ctx.iteration):
        return []
    if ctx.state.iteration().start_confirmed:
        return []
    return [Finding(
        'F003', "B1 exists but the planning start conditions were never confirmed",
        location=str(ctx.store.path_for(DocumentKind.B1, ctx.iteration)), kind='warning',
    )]


def _frozen_plan_ids(ctx: RuleContext) -> set:
    b3 = ctx.store.read_optional(DocumentKind.B3, ctx.iteration)
    if not b3:
        raise SkipRule("no frozen plan (B3) to compare against")
    ids = requirement_ids(b3)
    if not ids:
        raise SkipRule("frozen plan declares no requirement ids")
    return ids


def check_s001(ctx: RuleContext) -> list:
    allowed = _frozen_plan_ids(ctx)
    findings = []
    for path in ctx.store.requirement_item_paths(ctx.iteration):
        for req_id in sorted(requirement_ids(path.name) - allowed):
            findings.append(Finding(
                'S001', f"{req_id} is not part of the frozen plan", location=str(path)))
    return findings


def check_s003(ctx: RuleContext) -> list:
    allowed = _frozen_plan_ids(ctx)
    c1 = ctx.store.read_optional(DocumentKind.C1, ctx.iteration)
    if not c1:
        raise SkipRule("C1 not created yet")
    location = str(ctx.store.path_for(DocumentKind.C1, ctx.iteration))
    return [
        Finding('S003', f"{req_id} in C1 is not part of the frozen plan", location=location)
        for req_id in sorted(requirement_ids(c1) - allowed)
    ]


def check_s002(ctx: RuleContext) -> list:
    batch = ctx.state.iteration().batch
    return [Finding(
        'S002',
        f"version is delivered in {batch.get('total')} batches; "
        f"current batch is {batch.get('current', 1)}",
    )]


def _prototypes(ctx: RuleContext) -> list:
    return [p for p in ctx.prototype_files() if p.suffix in ('.json', '.html')]


def check_v001(ctx: RuleContext) -> list:
    prototypes = _prototypes(ctx)
    json_stems = {p.stem for p in prototypes if p.suffix == '.json'}
    html_stems = {p.stem for p in prototypes if p.suffix == '.html'}
    findings = []
    for stem in sorted(json_stems - html_stems):
        findings.append(Finding('V001', f"{stem}.json has no HTML rendering", location=f"{stem}.json"))
    for stem in sorted(html_stems - json_stems):
        findings.append(Finding('V001', f"{stem}.html has no JSON description", location=f"{stem}.html"))
    return findings


def check_v002(ctx: RuleContext) -> list:
    return [
        Finding('V002', f"{p.name} does not follow REQ-NNN-<name>", location=str(p))
        for p in _prototypes(ctx) if not prototype_name_ok(p.name)
    ]


def check_v003(ctx: RuleContext) -> list:
    index = ctx.store.ui_prototype_dir(ctx.iteration) / 'index.md'
    if index.is_file():
        return []
    return [Finding('V003', "UI prototype directory has no index.md", location=str(index))]


def check_v004(ctx: RuleContext) -> list:
    findings = []
    for path in _prototypes(ctx):
        if path.suffix != '.json':
            continue
        try:
            tree = json.loads(path.read_text(encoding='utf-8'))
        except UnicodeDecodeError as e:
            findings.append(Finding(
                'V004', f"{path.name} is not valid UTF-8: {e.reason}", location=str(path)))
            continue
        except (OSError, json.JSONDecodeError) as e:
            findings.append(Finding('V004', f"{path.name} is not valid JSON: {e}", location=str(path)))
            continue
        bad = invalid_component_types(tree)
        if bad:
            findings.append(Finding(
                'V004', f"{path.name} uses unknown component types: {', '.join(bad)}",
                location=str(path)))
    return findings


CHECKERS: dict = {
    'D001': check_d001,
    'D002': check_d002,
    'D003': check_d003,
    'D004': check_d004,
    'F001': check_f001,
    'F002': check_f002,
    'F003': check_f003,
    'S001': check_s001,
    'S002': check_s002,
    'S003': check_s003,
    'V001': check_v001,
    'V002': check_v002,
    'V003': check_v003,
    'V004': check_v004,
}


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class RuleEngine:
    """Runs applicable rules from a registry against one project state."""

    def __init__(self, checkers: Optional[dict] = None, logger=None):
        self.checkers: dict = dict(CHECKERS if checkers is None else checkers)
        self.logger = logger

    def run(self, registry: RuleRegistry, context: RuleContext,
            options: Optional[CheckOptions] = None) -> CheckReport:
        """
        Evaluate rules in registry order.

        Raises:
            ValueError: Unknown category or rule id in options
        """
        options = options or CheckOptions()
        report = CheckReport()

        for rule in registry.select(options):
            if rule.is_manual:
                report.add_skipped(rule.id, "manual rule: self-check required")
                continue

            applies, reason = SCOPES[rule.scope]
            if not applies(context):
                report.add_skipped(rule.id, reason)
                continue

            checker: Optional[Callable] = self.checkers.get(rule.id)
            if checker is None:
                report.add_skipped(rule.id, "no checker registered")
                continue

            try:
                findings = checker(context)
            except SkipRule as e:
                report.add_skipped(rule.id, str(e))
                continue
            except UnreadableDocumentError as e:
                findings = [Finding(rule.id, str(e), location=e.path)]

            report.checked_rules.append(rule.id)
            for finding in findings:
                self._classify(rule, finding, report)

        if self.logger:
            self.logger.info("Rules evaluated", **report.summary())
        return report

    @staticmethod
    def _classify(rule: Rule, finding: Finding, report: CheckReport) -> None:
        finding.severity = rule.severity.value
        if finding.kind == 'violation' and rule.severity is not Severity.LOW:
            report.violations.append(finding)
        else:
            finding.kind = 'warning'
            report.warnings.append(finding)


def render_report(report: CheckReport, registry: Optional[RuleRegistry] = None) -> str:
    """Human-readable check report."""
    lines = ["", colors.bold("PRD rule check report"), "-" * 50]

    if report.passed:
        lines.append(colors.success("All checked rules passed"))
    else:
        lines.append(colors.error(f"{len(report.violations)} violation(s) found"))
    if report.warnings:
        lines.append(colors.warning(f"{len(report.warnings)} warning(s)"))
    lines.append(colors.dim(
        f"{len(report.checked_rules)} rule(s) checked, {len(report.skipped)} skipped"))

    if report.violations:
        lines.extend(["", colors.error("Violations:")])
        for i, v in enumerate(report.violations, 1):
            lines.append(f"  {i}. [{colors.severity(v.rule_id, v.severity or 'CRITICAL')}] {v.message}")
            if v.location:
                lines.append(colors.dim(f"     at {v.location}"))

    if report.warnings:
        lines.extend(["", colors.warning("Warnings:")])
        for i, w in enumerate(report.warnings, 1):
            lines.append(f"  {i}. [{w.rule_id}] {w.message}")

    if report.skipped:
        lines.extend(["", colors.dim("Skipped:")])
        for s in report.skipped:
            description = ''
            if registry is not None and registry.get(s['rule_id']):
                description = f" {registry.get(s['rule_id']).description}."
            lines.append(colors.dim(f"  [{s['rule_id']}]{description} ({s['reason']})"))

    lines.append("")
    return "\n".join(lines)
