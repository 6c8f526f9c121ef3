"""
Workflow operations behind the CLI commands.

Each command opens the project once (Project.open): configuration, logger
and ProjectState are loaded a single time and passed through. State is
written back only at commit points: project init, a new iteration, a
recorded start confirmation and a completed freeze.
"""
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .audit import AuditLog, CHANGE_REQUESTED, DOCUMENT_CREATED, ITERATION_CREATED
from .config import GateConfig, project_config_path
from .confirmation import ConfirmationGate, ConfirmationKind, ConfirmationRecord
from .documents import BASELINE_KINDS, DocumentKind, DocumentStore, iteration_dirname
from .errors import (
    DocumentExistsError,
    PreconditionError,
    StageTransitionError,
    UnreadableDocumentError,
)
from .history import CheckHistory
from .interactive import Prompter
from .logger import JsonLogger, get_logger
from .project_state import (
    ProjectState,
    find_project_root,
    get_state_path,
    load_state,
    save_state,
    utc_now,
)
from .rules import CheckOptions, CheckReport, RuleContext, RuleEngine, RuleRegistry, load_registry
from .templates import render_requirement_item, render_template
from .validators import ValidatorSettings, list_has_entries


PROJECT_CONFIG_TEMPLATE = """# prdgate project configuration
# Values here override ~/.prd/config.yaml; .prd/config.local.yaml overrides this file.

# logging:
#   level: warning            # debug | info | warning | error
#   destinations: [file]      # file | stderr

# validators:
#   min_section_chars: 20
#   placeholder_markers: ["<!-- Fill in"]

# history:
#   enabled: true
#   max_entries: 100
"""


def today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


@dataclass
class Project:
    """An opened project: root, configuration, logger, state and documents."""
    root: str
    config: GateConfig
    logger: JsonLogger
    state: ProjectState
    store: DocumentStore

    @classmethod
    def open(cls, start: Optional[str] = None, command: Optional[str] = None) -> "Project":
        """
        Locate and load the project containing `start` (cwd by default).

        Raises:
            PreconditionError: Not inside a prdgate project
            ConfigurationError: Invalid config or corrupt state
        """
        root = find_project_root(start)
        if root is None:
            raise PreconditionError(
                "Not inside a prdgate project",
                missing=".prd/state.json",
                remediation="prd init <project-name>",
            )
        config = GateConfig(root)
        state = load_state(root)
        logger = get_logger(config.logging, root, {'command': command})
        if state.current_iteration >= 1:
            logger = logger.bind(iteration=state.current_iteration)
        return cls(root, config, logger, state, DocumentStore(root))

    @property
    def iteration(self) -> int:
        return self.state.current_iteration

    @property
    def settings(self) -> ValidatorSettings:
        return ValidatorSettings(self.config.min_section_chars, self.config.placeholder_markers)

    def audit(self, iteration: Optional[int] = None) -> AuditLog:
        number = self.iteration if iteration is None else iteration
        return AuditLog(self.root, number, self.logger)

    def require_iteration(self) -> int:
        if self.iteration < 1:
            raise PreconditionError(
                "No active iteration", missing="iteration", remediation="prd iteration new")
        return self.iteration

    def stage_frozen(self, stage: str) -> bool:
        if self.iteration < 1:
            return False
        kind = DocumentKind.B3 if stage == 'plan' else DocumentKind.C3
        return self.state.is_frozen(stage) or self.store.exists(kind, self.iteration)

    def save(self) -> None:
        save_state(self.root, self.state)


# ---------------------------------------------------------------------------
# Project and iterations
# ---------------------------------------------------------------------------

def init_project(directory: str, name: str) -> ProjectState:
    """
    Initialize a project in `directory`.

    Raises:
        DocumentExistsError: The directory already holds a project
    """
    root = Path(directory)
    if get_state_path(str(root)).exists():
        raise DocumentExistsError(f"Project already initialized: {root}")

    store = DocumentStore(str(root))
    store.baseline_dir().mkdir(parents=True, exist_ok=True)
    store.iterations_root().mkdir(parents=True, exist_ok=True)

    config_file = project_config_path(str(root))
    if not config_file.exists():
        config_file.parent.mkdir(parents=True, exist_ok=True)
        config_file.write_text(PROJECT_CONFIG_TEMPLATE, encoding='utf-8')

    state = ProjectState(project_name=name)
    save_state(str(root), state)

    config = GateConfig(str(root))
    logger = get_logger(config.logging, str(root), {'command': 'init'})
    AuditLog(str(root), 0, logger).record('baseline', 'project_initialized', {'project': name})
    logger.info("Project initialized", project=name)
    return state


def new_iteration(project: Project) -> int:
    """
    Start the next iteration. Numbers are never reused.

    Raises:
        DocumentExistsError: The next iteration directory already exists
    """
    number = max([project.iteration, *project.store.list_iterations()]) + 1
    directory = project.store.iteration_dir(number)
    if directory.exists():
        raise DocumentExistsError(f"Iteration directory already exists: {iteration_dirname(number)}")
    directory.mkdir(parents=True)

    project.state.current_iteration = number
    project.state.iteration(number)
    project.save()

    project.audit(number).record('planning', ITERATION_CREATED, {'iteration': number})
    project.logger.info("Iteration created", iteration=number)
    return number


def has_deferred_feedback(project: Project) -> bool:
    """True when A2 lists deferred items worth pulling into a new iteration."""
    try:
        a2 = project.store.read_optional(DocumentKind.A2)
    except UnreadableDocumentError as e:
        project.logger.warning("A2 unreadable, deferred items not checked", error=str(e))
        return False
    return bool(a2) and bool(list_has_entries(a2, 'Deferred items', project.settings))


# ---------------------------------------------------------------------------
# Document creation
# ---------------------------------------------------------------------------

def create_baseline_doc(project: Project, code: str) -> Path:
    kind = DocumentKind.from_code(code)
    if kind not in BASELINE_KINDS:
        raise ValueError(f"{kind.code} is not a baseline document (A0, A1, A2)")
    text = render_template(kind.code, project=project.state.project_name, date=today())
    path = project.store.create(kind, None, text)
    project.audit(0).record_document('baseline', kind.code, path)
    project.logger.info("Document created", document=kind.code, path=str(path))
    return path


def create_plan_doc(project: Project, code: str, pre_confirmed: bool = False,
                    prompter: Optional[Prompter] = None):
    """
    Create B1 or B2 in the current iteration.

    B1 first requires the planning start confirmation (recorded once per
    iteration); B2 requires B1.

    Returns:
        (path, confirmation): path is None when the start confirmation was rejected
    """
    kind = DocumentKind.from_code(code)
    if kind not in (DocumentKind.B1, DocumentKind.B2):
        raise ValueError(f"{kind.code} is not a planning document (B1, B2)")
    iteration = project.require_iteration()
    if project.stage_frozen('plan'):
        raise StageTransitionError(
            f"The plan of iteration {iteration} is frozen; record changes with: prd change")

    confirmation: Optional[ConfirmationRecord] = None
    if kind is DocumentKind.B1:
        if project.store.exists(kind, iteration):
            raise DocumentExistsError(f"File already exists: {kind.filename}")
        record = project.state.iteration()
        if not record.start_confirmed:
            gate = ConfirmationGate(project.audit(), project.config, prompter, project.logger)
            confirmation = gate.confirm(ConfirmationKind.PLAN_START, pre_confirmed=pre_confirmed)
            if not confirmation.approved:
                return None, confirmation
            record.start_confirmed = True
            project.save()
    elif not project.store.exists(DocumentKind.B1, iteration):
        raise PreconditionError(
            "B2 requires the requirement plan (B1)",
            missing=DocumentKind.B1.filename,
            remediation=DocumentKind.B1.create_command,
        )

    path = _create_from_template(project, kind, 'planning')
    return path, confirmation


def create_version_doc(project: Project, code: str) -> Path:
    """Create C0 or C1; both require a frozen plan, C1 also requires C0."""
    kind = DocumentKind.from_code(code)
    if kind not in (DocumentKind.C0, DocumentKind.C1):
        raise ValueError(f"{kind.code} is not a version document (C0, C1)")
    iteration = _require_open_version(project)
    if kind is DocumentKind.C1 and not project.store.exists(DocumentKind.C0, iteration):
        raise PreconditionError(
            "C1 requires the version scope (C0)",
            missing=DocumentKind.C0.filename,
            remediation=DocumentKind.C0.create_command,
        )
    return _create_from_template(project, kind, 'version')


def create_requirement_item(project: Project, title: str) -> Path:
    """Create the next REQ-NNN item file in the current iteration."""
    if not title.strip():
        raise ValueError("Requirement title must not be empty")
    iteration = _require_open_version(project)
    req_id = project.store.next_requirement_id(iteration)
    text = render_requirement_item(req_id, title.strip(), iteration, today())
    path = project.store.create_requirement_item(iteration, req_id, title, text)
    project.audit().record('version', DOCUMENT_CREATED, {'document': req_id, 'path': str(path)})
    project.logger.info("Requirement item created", document=req_id, path=str(path))
    return path


def _require_open_version(project: Project) -> int:
    iteration = project.require_iteration()
    if not project.stage_frozen('plan'):
        raise PreconditionError(
            "The plan must be frozen first",
            missing=DocumentKind.B3.filename,
            remediation=DocumentKind.B3.create_command,
        )
    if project.stage_frozen('version'):
        raise StageTransitionError(
            f"The version of iteration {iteration} is frozen; start a new iteration")
    return iteration


def _create_from_template(project: Project, kind: DocumentKind, stage: str) -> Path:
    text = render_template(kind.code, iteration=project.iteration, date=today())
    path = project.store.create(kind, project.iteration, text)
    project.audit().record_document(stage, kind.code, path)
    project.logger.info("Document created", document=kind.code, path=str(path))
    return path


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------

def iteration_status(project: Project) -> dict:
    """Documents, freeze status and the suggested next command."""
    store = project.store
    status = {
        'project': project.state.project_name,
        'iteration': project.iteration,
        'baseline': {kind.code: store.exists(kind) for kind in BASELINE_KINDS},
        'documents': {},
        'plan': None,
        'version': None,
        'requirement_items': 0,
        'next_step': None,
    }

    if project.iteration < 1:
        missing = [k for k in BASELINE_KINDS[:2] if not store.exists(k)]
        status['next_step'] = missing[0].create_command if missing else "prd iteration new"
        return status

    it = project.iteration
    per_iteration = [k for k in DocumentKind if k.per_iteration]
    status['documents'] = {kind.code: store.exists(kind, it) for kind in per_iteration}
    record = project.state.iteration()
    for stage in ('plan', 'version'):
        stage_record = record.stage(stage)
        status[stage] = {
            'frozen': project.stage_frozen(stage),
            'frozen_at': stage_record.frozen_at,
            'signature': stage_record.signature,
            'bypassed': stage_record.bypassed,
        }
    status['requirement_items'] = len(store.requirement_item_paths(it))
    status['next_step'] = _next_step(project, status)
    return status


def _next_step(project: Project, status: dict) -> str:
    docs = status['documents']
    if not docs['B1']:
        return DocumentKind.B1.create_command
    if not docs['B2']:
        return DocumentKind.B2.create_command
    if not status['plan']['frozen']:
        return "prd freeze-plan"
    if not docs['C0']:
        return DocumentKind.C0.create_command
    if not docs['C1']:
        return DocumentKind.C1.create_command
    if not status['version']['frozen']:
        return "prd freeze-version"
    return "prd iteration new"


# ---------------------------------------------------------------------------
# Rule checks
# ---------------------------------------------------------------------------

def run_checks(project: Project, options: Optional[CheckOptions] = None,
               no_log: bool = False) -> tuple:
    """
    Run the rule engine and record the result in the check history.

    Returns:
        (report, registry)

    Raises:
        ConfigurationError: Rule registry missing or malformed
        ValueError: Unknown category or rule id
    """
    registry: RuleRegistry = load_registry(project.config.rules_file)
    context = RuleContext(project.state, project.store, project.settings)
    report: CheckReport = RuleEngine(logger=project.logger).run(registry, context, options)

    if not no_log and project.config.history_enabled:
        history = CheckHistory(project.root, project.config.history_max_entries, project.logger)
        history.append(report.history_entry(utc_now()))
    return report, registry


# ---------------------------------------------------------------------------
# Change requests
# ---------------------------------------------------------------------------

CHANGE_TYPES = ('refine', 'priority', 'remove', 'new_requirement')


@dataclass
class ChangeRequest:
    """A classified change and the guidance given for it."""
    description: str
    change_type: str
    phase: str  # not_started | planning | plan_frozen | version_drafting | version_frozen
    accepted: bool
    guidance: list
    frozen_artifact: Optional[str] = None
    recorded: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def request_change(project: Project, description: str, change_type: str = 'refine') -> ChangeRequest:
    """
    Classify a requirement change against the freeze state of the iteration.

    A change to a frozen stage is recorded in the audit log against that
    stage, whether it is accepted or refused. New requirements are refused
    once the plan is frozen: they belong to the next iteration. Before the
    plan freeze the documents are edited directly and nothing is recorded.

    Raises:
        PreconditionError: No active iteration
        ValueError: Empty description or unknown change type
    """
    description = description.strip()
    if not description:
        raise ValueError("Change description must not be empty")
    if change_type not in CHANGE_TYPES:
        raise ValueError(f"Unknown change type: {change_type} (choose from {', '.join(CHANGE_TYPES)})")
    iteration = project.require_iteration()
    store = project.store

    if not project.stage_frozen('plan'):
        if store.exists(DocumentKind.B1, iteration) or store.exists(DocumentKind.B2, iteration):
            phase = 'planning'
            guidance = ["The plan is not frozen; edit B1/B2 directly",
                        "Then re-run: prd review plan"]
        else:
            phase = 'not_started'
            guidance = ["Nothing is drafted yet; start with: prd plan create B1"]
        project.logger.info("Change classified", phase=phase, change_type=change_type)
        return ChangeRequest(description, change_type, phase, True, guidance)

    if project.stage_frozen('version'):
        phase, stage, artifact = 'version_frozen', 'version', DocumentKind.C3
    elif store.exists(DocumentKind.C0, iteration) or store.exists(DocumentKind.C1, iteration):
        phase, stage, artifact = 'version_drafting', 'version', DocumentKind.B3
    else:
        phase, stage, artifact = 'plan_frozen', 'planning', DocumentKind.B3

    accepted = change_type != 'new_requirement'
    if not accepted:
        guidance = ["The plan (B3) is frozen; new requirements are not accepted in this iteration",
                    "Plan it in the next iteration: prd iteration new"]
    elif phase == 'version_frozen':
        guidance = ["The version (C3) is frozen; this change is recorded against it",
                    "Assess its impact on the version goal in C0",
                    "If the scope moved, re-run: prd review version"]
    elif phase == 'version_drafting' and change_type == 'refine':
        guidance = ["Refining an existing requirement is allowed; edit C1 directly",
                    "Then re-run: prd review version"]
    elif phase == 'version_drafting':
        guidance = ["Apply the change in C1 and check it against the frozen plan",
                    "Then re-run: prd review version"]
    else:
        guidance = ["The plan (B3) is frozen; edits to B1/B2 are reported by D001",
                    "Carry the change into the version scope: prd version create C0"]

    request = ChangeRequest(description, change_type, phase, accepted, guidance, artifact.code)
    request.recorded = project.audit().record(stage, CHANGE_REQUESTED, {
        'description': description,
        'type': change_type,
        'phase': phase,
        'frozen_artifact': artifact.code,
        'decision': 'accepted' if accepted else 'refused',
    })
    project.logger.info("Change recorded", phase=phase, change_type=change_type, accepted=accepted)
    return request
