"""
Common contract for dialect parsers.

Every parser turns raw text into a ParseResult. A document that cannot be read
at all yields exactly one ImportFault and an empty IR; anything smaller is a
warning and the offending item is left out.
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from reqport.config import settings
from reqport.services.ir import (
    HTTP_METHODS,
    ImportFault,
    ImportIR,
    ImportWarning,
    ParseResult,
    QueryParam,
    SourceFormat,
    TempIdAllocator,
)

logger = logging.getLogger(__name__)


class UnparseableDocument(Exception):
    """Internal signal: abort this document with a single fault."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class ParseContext:
    """Mutable state for one parse run: warnings, counters and temp ids."""

    def __init__(self, source_format: SourceFormat):
        self.ir = ImportIR(source_format=source_format)
        self.warnings: list[ImportWarning] = []
        self.ids = TempIdAllocator()
        self.disabled_count = 0
        self.scripts_dropped = 0
        self.max_depth = settings.MAX_FOLDER_DEPTH

    def warn(self, code: str, message: str, item_name: str | None = None) -> None:
        self.warnings.append(ImportWarning(code=code, message=message, item_name=item_name))

    def finish(self) -> ParseResult:
        if self.disabled_count:
            self.warn(
                "DISABLED_ENTRIES",
                f"{self.disabled_count} disabled entries were excluded",
            )
        if self.scripts_dropped:
            self.warn(
                "SCRIPTS_DROPPED",
                f"Scripts on {self.scripts_dropped} items were not imported",
            )
        return ParseResult(ir=self.ir, warnings=self.warnings, errors=[])


class ImportParser(ABC):
    format: SourceFormat
    display_name: str
    file_extensions: tuple[str, ...] = (".json",)

    def parse(self, content: str, filename: str | None = None) -> ParseResult:
        ctx = ParseContext(self.format)
        try:
            self._parse(content, filename, ctx)
        except RecursionError:
            return self._reject(UnparseableDocument("INVALID_STRUCTURE", "Document is nested too deeply"))
        except UnparseableDocument as e:
            return self._reject(e)
        result = ctx.finish()
        logger.info(
            "Parsed %s document: %d folders, %d requests, %d environments, %d warnings",
            self.format.value,
            len(result.ir.folders),
            len(result.ir.requests),
            len(result.ir.environments),
            len(result.warnings),
        )
        return result

    def _reject(self, e: UnparseableDocument) -> ParseResult:
        logger.warning("%s parser rejected document: %s", self.format.value, e.message)
        return ParseResult(
            ir=ImportIR(source_format=self.format),
            errors=[ImportFault(code=e.code, message=e.message)],
        )

    @abstractmethod
    def _parse(self, content: str, filename: str | None, ctx: ParseContext) -> None:
        ...

    def format_info(self) -> dict[str, Any]:
        return {
            "name": self.format.value,
            "display_name": self.display_name,
            "file_extensions": list(self.file_extensions),
        }


# ────────────────────────────────────────────────────────────
# Shared helpers
# ────────────────────────────────────────────────────────────

def load_json(content: str) -> Any:
    try:
        return json.loads(content)
    except (json.JSONDecodeError, ValueError) as e:
        raise UnparseableDocument("INVALID_JSON", f"Invalid JSON: {e}") from e
    except RecursionError as e:
        raise UnparseableDocument("INVALID_JSON", "Invalid JSON: document is nested too deeply") from e


def load_json_object(content: str) -> dict:
    data = load_json(content)
    if not isinstance(data, dict):
        raise UnparseableDocument("INVALID_STRUCTURE", "Expected a JSON object at the top level")
    return data


def normalize_method(method: Any, ctx: ParseContext, item_name: str) -> str:
    normalized = str(method or "GET").strip().upper()
    if normalized in HTTP_METHODS:
        return normalized
    ctx.warn(
        "UNSUPPORTED_METHOD",
        f'Method "{normalized}" is not supported, using GET',
        item_name,
    )
    return "GET"


def as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def as_list(value: Any, ctx: ParseContext, what: str, item_name: str | None = None) -> list:
    """A list field; anything else present is reported and treated as empty."""
    if value is None or isinstance(value, list):
        return value or []
    ctx.warn("MALFORMED_ITEM", f"{what} is not an array and was skipped", item_name)
    return []


def row_key(row: Any, ctx: ParseContext, item_name: str | None = None) -> str | None:
    """Key of a key/value row, or None when the row has no usable key."""
    if not isinstance(row, dict):
        return None
    key = row.get("key")
    if key is None or key == "":
        return None
    if isinstance(key, bool) or not isinstance(key, (str, int, float)):
        ctx.warn("MALFORMED_ITEM", "An entry with a non-text key was skipped", item_name)
        return None
    return str(key)


def split_url_query(url: str) -> tuple[str, list[QueryParam]]:
    """Split ``?a=1&b=2`` off a URL, keeping keys and values exactly as written.

    No percent-decoding: ``{{variables}}`` and encoded values must survive an
    import/export round trip unchanged, which ``parse_qsl`` would not allow.
    """
    if "?" not in url:
        return url, []
    base_url, qs = url.split("?", 1)
    params: list[QueryParam] = []
    for pair in qs.split("&"):
        if not pair:
            continue
        if "=" in pair:
            k, v = pair.split("=", 1)
        else:
            k, v = pair, ""
        if k:
            params.append(QueryParam(key=k, value=v))
    return base_url, params


def detect_raw_body_type(raw: str, language: str | None = None) -> str:
    if language in ("json", "javascript"):
        return "json"
    if language in ("xml", "html"):
        return "xml"
    if language in ("text", "plain"):
        return "text"
    stripped = raw.strip()
    if stripped.startswith("{") or stripped.startswith("["):
        return "json"
    if stripped.startswith("<"):
        return "xml"
    return "text"
