"""
Freeze Gate Controller.

There are exactly two freeze points per iteration:

    PLAN     B1 + B2      -> B3 frozen plan
    VERSION  B3 + C0 + C1 -> C3 frozen version

A freeze attempt runs a three-phase pipeline and only then asks for
confirmation:

1. Existence: every required document must exist. The first missing one
   stops the pipeline (DOCS_MISSING) with the command that creates it.
2. Required fields: presence validators over each document. All of them
   run so the full remediation list is shown in one pass. A document that
   is not valid UTF-8 fails this phase instead of aborting the attempt.
3. Review: the pattern-based review dimensions, all of them run.

The gate passes iff phases 2 and 3 produced no failures. `--force` skips
all three phases; the resulting artifact and audit entry are marked as
bypassed, never as passed.

`review` runs the same three phases on their own and writes the R1 (plan)
or R2 (version) review report. It asks for no confirmation and never
freezes.

The stage lifecycle is an explicit state machine (GateMachine). A stage that
is already frozen starts in FROZEN, which has no outgoing transitions, so a
second freeze of the same stage is structurally impossible.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from . import colors
from .audit import AuditLog, BYPASS_REQUESTED, FREEZE_BYPASSED, REVIEW_WRITTEN, STAGE_FROZEN
from .config import GateConfig
from .confirmation import ConfirmationGate, ConfirmationKind, ConfirmationRecord
from .documents import DocumentKind, DocumentStore
from .errors import PreconditionError, StageTransitionError, UnreadableDocumentError
from .logger import JsonLogger
from .project_state import ProjectState, save_state, utc_now
from .templates import render_frozen_artifact, render_review_report
from .validators import (
    PLAN_FIELD_CHECKS,
    VERSION_FIELD_CHECKS,
    ValidatorSettings,
    plan_review_dimensions,
    version_review_dimensions,
)


class FreezePoint(Enum):
    PLAN = 'plan'
    VERSION = 'version'


class GateState(Enum):
    NOT_STARTED = 'not_started'
    DOCS_MISSING = 'docs_missing'
    FIELDS_INCOMPLETE = 'fields_incomplete'
    REVIEW_FAILED = 'review_failed'
    READY = 'ready'
    CONFIRMING = 'confirming'
    FROZEN = 'frozen'


TRANSITIONS = {
    GateState.NOT_STARTED: {
        GateState.DOCS_MISSING,
        GateState.FIELDS_INCOMPLETE,
        GateState.REVIEW_FAILED,
        GateState.READY,
        GateState.CONFIRMING,  # forced freeze
    },
    GateState.READY: {GateState.CONFIRMING},
    GateState.CONFIRMING: {GateState.FROZEN, GateState.READY},
    GateState.DOCS_MISSING: set(),
    GateState.FIELDS_INCOMPLETE: set(),
    GateState.REVIEW_FAILED: set(),
    GateState.FROZEN: set(),
}


class GateMachine:
    """Lifecycle of one freeze point within one command invocation."""

    def __init__(self, point: FreezePoint, state: GateState = GateState.NOT_STARTED):
        self.point = point
        self.state = state
        self.history = [state]

    def can_transition(self, target: GateState) -> bool:
        return target in TRANSITIONS[self.state]

    def transition(self, target: GateState) -> None:
        """
        Move to target.

        Raises:
            StageTransitionError: If the transition is not in the table
        """
        if not self.can_transition(target):
            raise StageTransitionError(
                f"{self.point.value} gate cannot move from {self.state.value} to {target.value}"
            )
        self.state = target
        self.history.append(target)


@dataclass(frozen=True)
class GateDefinition:
    point: FreezePoint
    title: str
    required: tuple
    field_checks: tuple
    artifact: DocumentKind
    snapshots: tuple
    audit_stage: str
    confirmation: ConfirmationKind
    command: str
    review: DocumentKind
    review_title: str


GATES = {
    FreezePoint.PLAN: GateDefinition(
        point=FreezePoint.PLAN,
        title="B3 Frozen Plan",
        required=(DocumentKind.B1, DocumentKind.B2),
        field_checks=PLAN_FIELD_CHECKS,
        artifact=DocumentKind.B3,
        snapshots=(DocumentKind.B1, DocumentKind.B2),
        audit_stage='planning',
        confirmation=ConfirmationKind.PLAN_FREEZE,
        command='prd freeze-plan',
        review=DocumentKind.R1,
        review_title="R1 Plan Review",
    ),
    FreezePoint.VERSION: GateDefinition(
        point=FreezePoint.VERSION,
        title="C3 Frozen Version",
        required=(DocumentKind.B3, DocumentKind.C0, DocumentKind.C1),
        field_checks=VERSION_FIELD_CHECKS,
        artifact=DocumentKind.C3,
        snapshots=(DocumentKind.C0, DocumentKind.C1),
        audit_stage='version',
        confirmation=ConfirmationKind.VERSION_FREEZE,
        command='prd freeze-version',
        review=DocumentKind.R2,
        review_title="R2 Version Review",
    ),
}


@dataclass
class GateCheck:
    """One line of a gate report."""
    phase: str  # existence | fields | review
    name: str
    passed: bool
    detail: str
    remediation: Optional[str] = None

    def to_dict(self) -> dict:
        data = {'phase': self.phase, 'name': self.name, 'passed': self.passed, 'detail': self.detail}
        if self.remediation:
            data['remediation'] = self.remediation
        return data


@dataclass
class GateReport:
    point: FreezePoint
    iteration: int
    checks: list = field(default_factory=list)
    state: GateState = GateState.NOT_STARTED
    bypassed: bool = False

    @property
    def failures(self) -> list:
        return [c for c in self.checks if not c.passed]

    @property
    def precondition_violations(self) -> list:
        return [c for c in self.failures if c.phase == 'existence']

    @property
    def content_violations(self) -> list:
        return [c for c in self.failures if c.phase != 'existence']

    @property
    def passed(self) -> bool:
        """True only for a real, fully evaluated pass. A bypass never passes."""
        return not self.bypassed and self.state is GateState.READY and not self.failures

    @property
    def outcome(self) -> str:
        if self.bypassed:
            return 'bypassed'
        return 'passed' if self.passed else 'failed'

    def summary(self) -> dict:
        return {
            'point': self.point.value,
            'outcome': self.outcome,
            'state': self.state.value,
            'checks': len(self.checks),
            'failures': len(self.failures),
            'failed_checks': [c.name for c in self.failures],
        }

    def to_dict(self) -> dict:
        return {
            'point': self.point.value,
            'iteration': self.iteration,
            'outcome': self.outcome,
            'passed': self.passed,
            'bypassed': self.bypassed,
            'state': self.state.value,
            'checks': [c.to_dict() for c in self.checks],
        }


@dataclass(frozen=True)
class FreezeOptions:
    """Recognized options of freeze-plan / freeze-version."""
    force: bool = False
    pre_confirmed: bool = False
    signature: Optional[str] = None
    output_format: str = 'text'  # text | json


@dataclass
class FreezeOutcome:
    report: GateReport
    confirmation: Optional[ConfirmationRecord] = None
    artifact_path: Optional[str] = None
    frozen: bool = False

    @property
    def exit_code(self) -> int:
        return 0 if self.frozen else 1

    def to_dict(self) -> dict:
        return {
            'frozen': self.frozen,
            'artifact': self.artifact_path,
            'report': self.report.to_dict(),
            'confirmation': self.confirmation.to_dict() if self.confirmation else None,
        }


@dataclass
class ReviewOutcome:
    """Result of a standalone review; path is None when documents were missing."""
    report: GateReport
    path: Optional[str] = None

    @property
    def exit_code(self) -> int:
        return 0 if self.report.passed else 1

    def to_dict(self) -> dict:
        return {'review': self.path, 'report': self.report.to_dict()}


class FreezeGateController:
    """Evaluates and commits freezes for the current iteration."""

    def __init__(self, project_dir: str, state: ProjectState, config: GateConfig,
                 store: Optional[DocumentStore] = None,
                 audit: Optional[AuditLog] = None,
                 confirmation_gate: Optional[ConfirmationGate] = None,
                 logger: Optional[JsonLogger] = None):
        self.project_dir = project_dir
        self.state = state
        self.config = config
        self.store = store or DocumentStore(project_dir)
        self.logger = (logger or JsonLogger()).bind(iteration=state.current_iteration)
        self.audit = audit or AuditLog(project_dir, state.current_iteration, self.logger)
        self.confirmation_gate = confirmation_gate or ConfirmationGate(
            self.audit, config, logger=self.logger)
        self.settings = ValidatorSettings(
            min_section_chars=config.min_section_chars,
            placeholder_markers=config.placeholder_markers,
        )

    @property
    def iteration(self) -> int:
        return self.state.current_iteration

    def _require_iteration(self) -> int:
        if self.iteration < 1:
            raise PreconditionError(
                "No active iteration", missing="iteration", remediation="prd iteration new")
        return self.iteration

    def machine_for(self, point: FreezePoint) -> GateMachine:
        """Fresh machine; FROZEN when state or the artifact on disk says so."""
        definition = GATES[point]
        frozen = self.state.is_frozen(point.value) or self.store.exists(
            definition.artifact, self.iteration)
        return GateMachine(point, GateState.FROZEN if frozen else GateState.NOT_STARTED)

    def evaluate(self, point: FreezePoint, machine: Optional[GateMachine] = None) -> GateReport:
        """
        Run the existence, field and review phases.

        Raises:
            PreconditionError: No active iteration
            StageTransitionError: The stage is already frozen
        """
        iteration = self._require_iteration()
        machine = machine or self.machine_for(point)
        definition = GATES[point]
        report = GateReport(point, iteration)

        for kind in definition.required:
            if not self.store.exists(kind, iteration):
                report.checks.append(GateCheck(
                    'existence', f"{kind.code} {kind.label}", False,
                    f"{kind.filename} does not exist", remediation=kind.create_command,
                ))
                return self._finish(report, machine, GateState.DOCS_MISSING)
            report.checks.append(GateCheck('existence', f"{kind.code} {kind.label}", True, "exists"))

        texts = {}
        for kind in definition.required:
            text = self._read_for_gate(report, f"{kind.code} {kind.label}",
                                       self.store.path_for(kind, iteration))
            texts[kind.code] = text or ""
        item_texts = {}
        if point is FreezePoint.VERSION:
            for path in self.store.requirement_item_paths(iteration):
                text = self._read_for_gate(report, path.stem, path)
                if text is not None:
                    item_texts[path.name] = text

        for check in definition.field_checks:
            verdict = check.check(texts[check.document], self.settings)
            report.checks.append(GateCheck(
                'fields', f"{check.document} - {check.field}", verdict.satisfied, verdict.detail,
                remediation=None if verdict else f"fill in '{check.field}' in {check.document}",
            ))
        fields_ok = not report.failures

        for result in self._review(point, texts, item_texts):
            report.checks.append(GateCheck(
                'review', result.name, result.verdict.satisfied, result.verdict.detail))

        if not fields_ok:
            target = GateState.FIELDS_INCOMPLETE
        elif report.failures:
            target = GateState.REVIEW_FAILED
        else:
            target = GateState.READY
        return self._finish(report, machine, target)

    def _read_for_gate(self, report: GateReport, name: str, path) -> Optional[str]:
        """Document text; an undecodable file becomes a failing fields check."""
        try:
            return self.store.read_path(path)
        except UnreadableDocumentError as e:
            report.checks.append(GateCheck(
                'fields', name, False, str(e), remediation=f"re-save {path.name} as UTF-8"))
            return None

    def _snapshots(self, definition: GateDefinition, iteration: int) -> list:
        snapshots = []
        for kind in definition.snapshots:
            if not self.store.exists(kind, iteration):
                continue
            try:
                text = self.store.read(kind, iteration)
            except UnreadableDocumentError as e:
                text = f"_Snapshot omitted: {e}_"
            snapshots.append((f"{kind.code} {kind.label}", text))
        return snapshots

    def _review(self, point: FreezePoint, texts: dict, item_texts: dict) -> list:
        if point is FreezePoint.PLAN:
            return plan_review_dimensions(texts['B1'], texts['B2'], self.settings)
        return version_review_dimensions(
            texts['B3'], texts['C0'], texts['C1'], item_texts, self.settings)

    def _finish(self, report: GateReport, machine: GateMachine, target: GateState) -> GateReport:
        machine.transition(target)
        report.state = machine.state
        self.logger.info("Gate evaluated", point=report.point.value,
                         outcome=report.outcome, state=report.state.value)
        return report

    def review(self, point: FreezePoint) -> ReviewOutcome:
        """
        Run the gate phases standalone and write the R1/R2 review report.

        Nothing is confirmed or frozen, and a frozen stage can be reviewed
        again after a change. The report is written only when every
        required document exists.

        Raises:
            PreconditionError: No active iteration
        """
        iteration = self._require_iteration()
        definition = GATES[point]
        report = self.evaluate(point, GateMachine(point))
        if report.state is GateState.DOCS_MISSING:
            return ReviewOutcome(report)

        text = render_review_report(
            title=definition.review_title,
            iteration=iteration,
            reviewed_at=utc_now(),
            sources=[kind.filename for kind in definition.required],
            report_lines=artifact_report_lines(report),
            passed=report.passed,
            freeze_command=definition.command,
        )
        path = self.store.write_artifact(definition.review, iteration, text)
        payload = {'document': definition.review.code, 'path': str(path)}
        payload.update(report.summary())
        self.audit.record(definition.audit_stage, REVIEW_WRITTEN, payload)
        self.logger.info("Review written", point=point.value, path=str(path),
                         outcome=report.outcome)
        return ReviewOutcome(report, str(path))

    def freeze(self, point: FreezePoint, options: Optional[FreezeOptions] = None) -> FreezeOutcome:
        """
        Attempt a freeze: gate, confirmation, then the single commit point.

        Raises:
            PreconditionError: No active iteration
            StageTransitionError: The stage is already frozen
        """
        options = options or FreezeOptions()
        iteration = self._require_iteration()
        definition = GATES[point]
        machine = self.machine_for(point)
        if machine.state is GateState.FROZEN:
            raise StageTransitionError(
                f"The {point.value} of iteration {iteration} is already frozen "
                f"({definition.artifact.filename})"
            )

        if options.force:
            report = GateReport(point, iteration, bypassed=True)
            machine.transition(GateState.CONFIRMING)
            report.state = machine.state
            self.logger.warning("Freeze gate bypassed with --force", point=point.value)
            self.audit.record(definition.audit_stage, BYPASS_REQUESTED, report.summary())
        else:
            report = self.evaluate(point, machine)
            self.audit.record_gate(definition.audit_stage, report)
            if not report.passed:
                return FreezeOutcome(report)
            machine.transition(GateState.CONFIRMING)

        summary = render_gate_report(report) if options.output_format == 'text' else None
        confirmation = self.confirmation_gate.confirm(
            definition.confirmation,
            {'summary': summary},
            pre_confirmed=options.pre_confirmed,
            signature=options.signature,
        )
        if not confirmation.approved:
            machine.transition(GateState.READY)
            return FreezeOutcome(report, confirmation)

        frozen_at = utc_now()
        text = render_frozen_artifact(
            title=definition.title,
            iteration=iteration,
            frozen_at=frozen_at,
            signature=confirmation.signature,
            report_lines=artifact_report_lines(report),
            snapshots=self._snapshots(definition, iteration),
            bypassed=report.bypassed,
        )
        path = self.store.write_artifact(definition.artifact, iteration, text)
        machine.transition(GateState.FROZEN)

        stage = self.state.iteration(iteration).stage(point.value)
        stage.frozen = True
        stage.frozen_at = frozen_at
        stage.signature = confirmation.signature
        stage.bypassed = report.bypassed
        save_state(self.project_dir, self.state)

        if report.bypassed:
            self.audit.record(definition.audit_stage, FREEZE_BYPASSED, report.summary())
        self.audit.record(definition.audit_stage, STAGE_FROZEN, {
            'artifact': definition.artifact.code,
            'path': str(path),
            'signature': confirmation.signature,
            'outcome': report.outcome,
        })
        self.logger.info("Stage frozen", point=point.value, artifact=str(path),
                         bypassed=report.bypassed)
        return FreezeOutcome(report, confirmation, str(path), True)


PHASE_TITLES = {
    'existence': "Document existence",
    'fields': "Required fields",
    'review': "Review dimensions",
}


def artifact_report_lines(report: GateReport) -> list:
    """Markdown checklist of the gate's checks (empty for a bypass)."""
    if report.bypassed:
        return []
    return [
        f"- [{'x' if c.passed else ' '}] {PHASE_TITLES[c.phase]}: {c.name} ({c.detail})"
        for c in report.checks
    ]


def render_gate_report(report: GateReport) -> str:
    """Text report for the terminal."""
    title = "Plan freeze gate" if report.point is FreezePoint.PLAN else "Version freeze gate"
    lines = ["", colors.header(f"{title} (iteration {report.iteration})"), "-" * 50]

    if report.bypassed:
        lines.append(colors.warning("BYPASSED: --force given, no checks were run."))
        lines.append(colors.dim("The frozen artifact and audit log will record the bypass."))
        return "\n".join(lines) + "\n"

    phase = None
    for check in report.checks:
        if check.phase != phase:
            phase = check.phase
            lines.extend(["", colors.bold(PHASE_TITLES[phase])])
        lines.append(f"  {colors.check_mark(check.passed)} {check.name}: {check.detail}")
        if check.remediation and not check.passed:
            lines.append(colors.hint(f"      -> {check.remediation}"))

    lines.append("")
    if report.passed:
        lines.append(colors.success("All checks passed; confirmation required to freeze."))
    elif report.state is GateState.DOCS_MISSING:
        missing = report.precondition_violations[0]
        lines.append(colors.error(f"Missing required document: {missing.name}"))
        lines.append(colors.hint(f"Create it with: {missing.remediation}"))
    else:
        lines.append(colors.error(f"{len(report.failures)} check(s) failed"))
    return "\n".join(lines) + "\n"
