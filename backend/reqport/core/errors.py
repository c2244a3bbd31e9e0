"""
Error taxonomy for the import/export reconciliation engine.

Parse problems on individual items are not exceptions: they are collected as
ImportWarning records on the parse result. The exceptions here are the ones that
stop a flow (detection, fatal parse, unresolved conflicts, store failures).
"""
from typing import Any


class ReconcileError(Exception):
    """Base class for all engine errors."""


class DetectionError(ReconcileError):
    """Content format is unrecognized or detected with too little confidence."""

    def __init__(self, message: str, detection: Any = None):
        super().__init__(message)
        self.detection = detection


class ParseError(ReconcileError):
    """The document is structurally unparseable for its dialect."""

    def __init__(self, message: str, faults: list | None = None):
        super().__init__(message)
        self.faults = faults or []


class ConflictUnresolvedError(ReconcileError):
    """Commit attempted while some conflicts have no resolution."""

    def __init__(self, unresolved: list[str]):
        names = ", ".join(unresolved)
        super().__init__(f"Unresolved conflicts: {names}")
        self.unresolved = unresolved


class StoreError(ReconcileError):
    """Raised by store implementations when a save or list call fails."""


class ExecutionError(ReconcileError):
    """A store call failed mid-commit.

    ``committed`` holds the counts already written by earlier stages; nothing is
    rolled back.
    """

    def __init__(self, stage: str, message: str, committed: dict[str, int] | None = None):
        super().__init__(f"Import failed during {stage}: {message}")
        self.stage = stage
        self.reason = message
        self.committed = committed or {}


class ExportError(ReconcileError):
    """Unsupported export target or missing export scope."""


class SessionStateError(ReconcileError):
    """Operation not allowed in the session's current stage."""


class MissingExportScopeError(ExportError):
    """The collection or environments named for export do not exist."""
