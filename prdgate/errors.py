"""
Error types for the prdgate workflow engine.

Precondition and configuration errors abort the current command. Content
violations are never raised: they are collected into reports. Confirmation
rejection is a normal outcome, not an exception. An undecodable document is
raised by the store and turned into a finding by the rule engine and the
freeze gate.
"""
import os
from typing import Optional


class PrdGateError(Exception):
    """Base class for errors that abort a prdgate command."""


class ConfigurationError(PrdGateError):
    """Rule registry, configuration file or project state is unusable."""


class PreconditionError(PrdGateError):
    """
    A required upstream artifact is absent.

    Attributes:
        missing: Name of the missing artifact
        remediation: Command that produces it
    """

    def __init__(self, message: str, missing: Optional[str] = None,
                 remediation: Optional[str] = None):
        super().__init__(message)
        self.missing = missing
        self.remediation = remediation

    def __str__(self) -> str:
        base = super().__str__()
        if self.remediation:
            return f"{base} (run: {self.remediation})"
        return base


class StageTransitionError(PrdGateError):
    """An illegal freeze-gate state transition was requested."""


class DocumentExistsError(PrdGateError):
    """A create-once document already exists on disk."""


class UnreadableDocumentError(PrdGateError):
    """
    A document exists but is not valid UTF-8 text.

    Attributes:
        path: Path of the document
    """

    def __init__(self, path, reason: str = ""):
        name = os.path.basename(str(path))
        detail = f" ({reason})" if reason else ""
        super().__init__(f"{name} is not valid UTF-8 text{detail}")
        self.path = str(path)
