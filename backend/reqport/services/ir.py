"""
Canonical intermediate representation shared by every import dialect.

Parsers produce an ImportIR; the tree builder, conflict resolver, executor and
exporter only ever see these types. Folder, request and environment entities
form a tagged union on ``kind``.
"""
import itertools
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Literal


class SourceFormat(str, Enum):
    POSTMAN_V2 = "postman-v2"
    POSTMAN_V1 = "postman-v1"
    POSTMAN_ENVIRONMENT = "postman-environment"
    JSON_ENVIRONMENT = "json-environment"
    DOTENV = "env"
    NATIVE = "native"


class AuthType(str, Enum):
    NONE = "none"
    BEARER = "bearer"
    API_KEY = "api_key"
    BASIC = "basic"
    OAUTH2 = "oauth2"


HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")

BODY_TYPES = ("none", "json", "text", "xml", "form-data", "x-www-form-urlencoded")

NATIVE_EXPORT_TYPE = "reqport-collection-export"
NATIVE_EXPORT_VERSION = "1.0"


@dataclass
class RawDocument:
    content: str
    filename: str | None = None

    @classmethod
    def from_bytes(cls, data: bytes, filename: str | None = None) -> "RawDocument":
        text = data.decode("utf-8", errors="replace")
        return cls(content=text.lstrip("\ufeff"), filename=filename)


@dataclass
class DetectionResult:
    format: SourceFormat | None
    is_valid: bool
    confidence: float
    version: str | None = None

    @classmethod
    def unknown(cls) -> "DetectionResult":
        return cls(format=None, is_valid=False, confidence=0.0)


@dataclass
class ImportWarning:
    code: str
    message: str
    item_name: str | None = None


@dataclass
class ImportFault:
    """A fatal problem: the document it belongs to is not importable."""

    code: str
    message: str
    item_name: str | None = None


@dataclass
class Auth:
    type: AuthType = AuthType.NONE
    config: dict[str, str] = field(default_factory=dict)

    @classmethod
    def none(cls) -> "Auth":
        return cls()


@dataclass
class QueryParam:
    key: str
    value: str = ""
    enabled: bool = True


@dataclass
class CanonicalCollection:
    name: str
    description: str | None = None


@dataclass
class CanonicalFolder:
    kind: ClassVar[Literal["folder"]] = "folder"

    temp_id: str
    name: str
    parent_temp_id: str | None = None
    order: int = 0
    description: str | None = None


@dataclass
class CanonicalRequest:
    kind: ClassVar[Literal["request"]] = "request"

    temp_id: str
    name: str
    method: str = "GET"
    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    body_type: str = "none"
    query_params: list[QueryParam] = field(default_factory=list)
    auth: Auth = field(default_factory=Auth)
    folder_temp_id: str | None = None
    order: int = 0
    description: str | None = None
    disabled_headers: dict[str, str] = field(default_factory=dict)


@dataclass
class CanonicalEnvironment:
    kind: ClassVar[Literal["environment"]] = "environment"

    name: str
    display_name: str
    variables: dict[str, str] = field(default_factory=dict)


Entity = CanonicalFolder | CanonicalRequest | CanonicalEnvironment


@dataclass
class ImportIR:
    source_format: SourceFormat
    source_version: str | None = None
    collection: CanonicalCollection | None = None
    folders: list[CanonicalFolder] = field(default_factory=list)
    requests: list[CanonicalRequest] = field(default_factory=list)
    environments: list[CanonicalEnvironment] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return (
            self.collection is None
            and not self.folders
            and not self.requests
            and not self.environments
        )

    def stats(self) -> dict[str, int]:
        return {
            "folders": len(self.folders),
            "requests": len(self.requests),
            "environments": len(self.environments),
        }


@dataclass
class ParseResult:
    ir: ImportIR
    warnings: list[ImportWarning] = field(default_factory=list)
    errors: list[ImportFault] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class TempIdAllocator:
    """Issues ids unique within one import session."""

    def __init__(self, prefix: str = "tmp"):
        self._prefix = prefix
        self._counter = itertools.count(1)

    def next(self, kind: str) -> str:
        return f"{self._prefix}-{kind}-{next(self._counter)}"


_NAME_SANITIZE = re.compile(r"[^a-z0-9_]+")
_UNDERSCORE_RUN = re.compile(r"_{2,}")


def environment_key(display_name: str, default: str = "imported_environment") -> str:
    """Derive the stable environment name from a human-facing one."""
    key = _NAME_SANITIZE.sub("_", display_name.lower())
    key = _UNDERSCORE_RUN.sub("_", key).strip("_")
    return key or default


def text_value(value: Any) -> str | None:
    """Normalize a description that may be a string or a {content: ...} object."""
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("content")
        if value is None:
            return None
    text = str(value).strip()
    return text or None
