"""
Confirmation Gate: the human-in-the-loop step before a binding decision.

Three ways to satisfy a confirmation:
- INTERACTIVE: the operator answers prompts (and types a signature for freezes)
- PRE_CONFIRMED: the caller says it already happened out of band and passes
  the signature (`--pm-confirmed --signature NAME`)
- AUTOMATIC: approves without prompting; only when PRDGATE_AUTO_CONFIRM=1 or
  `confirmation.auto_confirm: true` is set

Rejection is a normal outcome returned as a record with approved=False.
Every decision, approved or rejected, is written to the audit log here.
"""
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional

from .audit import AuditLog
from .config import GateConfig
from .interactive import Prompter
from .logger import JsonLogger
from .project_state import utc_now


class ConfirmationKind(Enum):
    """Kinds: (value, audit stage, needs signature, final question)."""

    PLAN_START = ('plan_start', 'planning', False, 'Start this planning round?')
    PLAN_FREEZE = ('plan_freeze', 'planning', True,
                   'Take responsibility for the planning decisions and freeze the plan?')
    VERSION_FREEZE = ('version_freeze', 'version', True,
                      'Take final responsibility for the version requirements and freeze them?')

    def __init__(self, key: str, stage: str, needs_signature: bool, question: str):
        self.key = key
        self.stage = stage
        self.needs_signature = needs_signature
        self.question = question


START_CONDITIONS = (
    "Condition 1: does the problem really exist (is there evidence in A0-A2)?",
    "Condition 2: is it worth a separate planning round rather than a small fix?",
    "Condition 3: is the problem understood well enough that its boundary is clear?",
)


class ConfirmationMode(Enum):
    INTERACTIVE = 'interactive'
    PRE_CONFIRMED = 'pre_confirmed'
    AUTOMATIC = 'automatic'


@dataclass(frozen=True)
class ConfirmationRecord:
    kind: str
    approved: bool
    signature: Optional[str]
    method: str
    timestamp: str
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.approved

    def to_dict(self) -> dict:
        return asdict(self)


class ConfirmationGate:
    """Obtains and records confirmations for one iteration."""

    def __init__(self, audit: AuditLog, config: Optional[GateConfig] = None,
                 prompter: Optional[Prompter] = None, logger: Optional[JsonLogger] = None):
        self.audit = audit
        self.config = config
        self.prompter = prompter or Prompter()
        self.logger = logger or JsonLogger()

    def mode_for(self, pre_confirmed: bool = False) -> ConfirmationMode:
        if pre_confirmed:
            return ConfirmationMode.PRE_CONFIRMED
        if self.config is not None and self.config.auto_confirm:
            return ConfirmationMode.AUTOMATIC
        return ConfirmationMode.INTERACTIVE

    def confirm(self, kind: ConfirmationKind, context: Optional[dict] = None, *,
                pre_confirmed: bool = False, signature: Optional[str] = None) -> ConfirmationRecord:
        """
        Ask for (or accept) a confirmation and log the decision.

        Args:
            kind: What is being confirmed
            context: Optional {'summary': text shown before prompting}
            pre_confirmed: Confirmation happened out of band
            signature: Signature supplied by the caller

        Returns:
            ConfirmationRecord; approved=False means a hard stop for the caller
        """
        context = context or {}
        mode = self.mode_for(pre_confirmed)
        signature = (signature or "").strip() or None
        if context.get('summary'):
            self.prompter.show(context['summary'])

        if mode is ConfirmationMode.PRE_CONFIRMED:
            record = self._pre_confirmed(kind, signature)
        elif mode is ConfirmationMode.AUTOMATIC:
            auto_signature = self.config.auto_signature if self.config is not None else None
            record = self._record(kind, True, signature or auto_signature, mode)
        elif kind is ConfirmationKind.PLAN_START:
            record = self._interactive_start(kind)
        else:
            record = self._interactive_freeze(kind)

        self.logger.info("Confirmation decided", kind=kind.key, approved=record.approved,
                         method=record.method, reason=record.reason)
        self.audit.record_confirmation(kind.stage, record)
        return record

    def _record(self, kind: ConfirmationKind, approved: bool, signature: Optional[str],
                mode: ConfirmationMode, reason: Optional[str] = None) -> ConfirmationRecord:
        return ConfirmationRecord(
            kind=kind.key,
            approved=approved,
            signature=signature,
            method=mode.value,
            timestamp=utc_now(),
            reason=reason,
        )

    def _pre_confirmed(self, kind: ConfirmationKind, signature: Optional[str]) -> ConfirmationRecord:
        if kind.needs_signature and not signature:
            return self._record(kind, False, None, ConfirmationMode.PRE_CONFIRMED,
                                reason="pre-confirmed freeze requires a signature (--signature NAME)")
        return self._record(kind, True, signature, ConfirmationMode.PRE_CONFIRMED)

    def _interactive_start(self, kind: ConfirmationKind) -> ConfirmationRecord:
        mode = ConfirmationMode.INTERACTIVE
        for number, condition in enumerate(START_CONDITIONS, 1):
            if not self.prompter.confirm(condition, default=False):
                return self._record(kind, False, None, mode, reason=f"start condition {number} not met")
        if not self.prompter.confirm(kind.question, default=False):
            return self._record(kind, False, None, mode, reason="declined")
        return self._record(kind, True, None, mode)

    def _interactive_freeze(self, kind: ConfirmationKind) -> ConfirmationRecord:
        mode = ConfirmationMode.INTERACTIVE
        signature = (self.prompter.text("Signature (your name):") or "").strip()
        if not signature:
            return self._record(kind, False, None, mode, reason="empty signature")
        if not self.prompter.confirm(kind.question, default=False):
            return self._record(kind, False, signature, mode, reason="declined")
        return self._record(kind, True, signature, mode)
