"""
Import session: one document moving through select -> preview -> importing -> done.

The session owns the parsed IR, its preview tree and the conflict decisions.
Nothing touches the Store before ``commit`` except reading the existing
environments to compute conflicts.
"""
import logging
import time
import uuid
from enum import Enum
from pathlib import PurePath
from threading import Lock
from typing import Callable

from reqport.config import settings
from reqport.core.errors import (
    ConflictUnresolvedError,
    DetectionError,
    ExecutionError,
    ParseError,
    SessionStateError,
)
from reqport.services.conflicts import ConflictRecord, ConflictResolver, Resolution
from reqport.services.detection import detect_format
from reqport.services.executor import EnvironmentMode, ExecutionResult, ImportExecutor, ImportOptions
from reqport.services.ir import DetectionResult, ImportIR, ImportWarning, RawDocument, SourceFormat
from reqport.services.parsers import get_parser
from reqport.services.store import Store
from reqport.services.tree_builder import TreeNode, build_tree

logger = logging.getLogger(__name__)

PICKER_EXTENSIONS = (".json", ".env")


class SessionStage(str, Enum):
    SELECT = "select"
    PREVIEW = "preview"
    IMPORTING = "importing"
    DONE = "done"


def check_extension(filename: str | None) -> None:
    """Picker uploads must be .json or .env files (``.env.local`` style names included)."""
    name = PurePath(filename or "").name.lower()
    if name.startswith(".env") or name.endswith(PICKER_EXTENSIONS):
        return
    raise DetectionError(f"Unsupported file type: {filename or '<unnamed>'} (expected .json or .env)")


class ImportSession:
    def __init__(self, session_id: str | None = None):
        self.id = session_id or str(uuid.uuid4())
        self.stage = SessionStage.SELECT
        self.filename: str | None = None
        self.detection: DetectionResult | None = None
        self.ir: ImportIR | None = None
        self.tree: TreeNode | None = None
        self.warnings: list[ImportWarning] = []
        self.resolver: ConflictResolver | None = None
        self.result: ExecutionResult | None = None
        self.last_error: ExecutionError | None = None
        self._stale_conflicts = False

    def _require(self, *stages: SessionStage) -> None:
        if self.stage not in stages:
            allowed = ", ".join(s.value for s in stages)
            raise SessionStateError(f"Session is in '{self.stage.value}'; expected {allowed}")

    async def load(self, document: RawDocument, store: Store, fmt: SourceFormat | str | None = None) -> None:
        self._require(SessionStage.SELECT)
        self.filename = document.filename

        if fmt is not None:
            detection = DetectionResult(format=SourceFormat(fmt), is_valid=True, confidence=1.0)
        else:
            detection = detect_format(document.content, document.filename)
            if not detection.is_valid or detection.format is None:
                raise DetectionError("Unrecognized import format", detection)
            if detection.confidence < settings.DETECTION_MIN_CONFIDENCE:
                raise DetectionError(
                    f"Format {detection.format.value} detected with low confidence "
                    f"({detection.confidence:.2f}); retry with an explicit format",
                    detection,
                )

        parsed = get_parser(detection.format).parse(document.content, document.filename)
        if not parsed.ok:
            raise ParseError(parsed.errors[0].message, parsed.errors)

        ir = parsed.ir
        if ir.source_version is None:
            ir.source_version = detection.version
        tree = build_tree(ir.collection, ir.folders, ir.requests)
        existing = await store.env.list()

        self.detection = detection
        self.ir = ir
        self.tree = tree.root
        self.warnings = parsed.warnings + tree.warnings
        self.resolver = ConflictResolver(ir.environments, existing)
        self.stage = SessionStage.PREVIEW
        logger.info(
            "Session %s previewing %s: %s, %d warnings, %d conflicts",
            self.id, detection.format.value, ir.stats(), len(self.warnings), len(self.resolver.conflicts),
        )

    @property
    def conflicts(self) -> list[ConflictRecord]:
        return self.resolver.conflicts if self.resolver else []

    @property
    def decisions(self) -> dict[str, Resolution]:
        return dict(self.resolver.decisions) if self.resolver else {}

    def decide(self, name: str, resolution: Resolution | str) -> None:
        self._require(SessionStage.PREVIEW)
        self.resolver.decide(name, resolution)

    def conflicts_apply(self, options: ImportOptions) -> bool:
        """Conflicts only matter when environments will land in the global scope."""
        if not self.ir or not self.ir.environments:
            return False
        if options.environment_mode == EnvironmentMode.GLOBAL:
            return True
        return options.environment_mode == EnvironmentMode.COLLECTION and self.ir.collection is None

    def can_commit_with(self, options: ImportOptions) -> bool:
        if self.stage != SessionStage.PREVIEW:
            return False
        return not self.conflicts_apply(options) or self.resolver.all_conflicts_resolved()

    @property
    def can_commit(self) -> bool:
        return self.can_commit_with(ImportOptions())

    async def commit(self, store: Store, options: ImportOptions | None = None) -> ExecutionResult:
        self._require(SessionStage.PREVIEW)
        options = options or ImportOptions()

        if self._stale_conflicts:
            # Earlier partial writes may have changed what exists
            previous = self.resolver.decisions
            self.resolver = ConflictResolver(self.ir.environments, await store.env.list())
            self.resolver.carry_decisions(previous)
            self._stale_conflicts = False

        if self.conflicts_apply(options) and not self.resolver.all_conflicts_resolved():
            raise ConflictUnresolvedError(self.resolver.unresolved())

        self.stage = SessionStage.IMPORTING
        try:
            result = await ImportExecutor(store, options).execute(self.ir, self.resolver)
        except ExecutionError as e:
            logger.warning("Session %s commit failed at %s; back to preview", self.id, e.stage)
            self.last_error = e
            self._stale_conflicts = True
            self.stage = SessionStage.PREVIEW
            raise
        except Exception:
            self.stage = SessionStage.PREVIEW
            raise

        self.result = result
        self.last_error = None
        self.stage = SessionStage.DONE
        return result

    def cancel(self) -> None:
        """Drop the in-flight document. Not allowed once the commit has started."""
        if self.stage == SessionStage.IMPORTING:
            raise SessionStateError("Import is already running and cannot be cancelled")
        self.detection = None
        self.ir = None
        self.tree = None
        self.warnings = []
        self.resolver = None
        self.stage = SessionStage.SELECT


class ImportSessionRegistry:
    """In-process session store for the HTTP layer; idle sessions expire."""

    def __init__(self, ttl_seconds: int | None = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.SESSION_TTL_SECONDS
        self._clock = clock
        self._sessions: dict[str, tuple[ImportSession, float]] = {}
        self._lock = Lock()

    def create(self) -> ImportSession:
        self.purge_expired()
        session = ImportSession()
        with self._lock:
            self._sessions[session.id] = (session, self._clock())
        return session

    def get(self, session_id: str) -> ImportSession:
        """Raises KeyError for unknown or expired sessions."""
        self.purge_expired()
        with self._lock:
            session, _ = self._sessions[session_id]
            self._sessions[session_id] = (session, self._clock())
        return session

    def remove(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [
                sid for sid, (session, touched) in self._sessions.items()
                if now - touched > self.ttl_seconds and session.stage != SessionStage.IMPORTING
            ]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info("Expired %d idle import sessions", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


registry = ImportSessionRegistry()
