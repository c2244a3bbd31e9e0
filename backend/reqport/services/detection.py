"""
Format detection for raw import content.

JSON dialects are scored by the weighted share of their discriminating fields
that are present; text that is not JSON is checked for ``.env`` shape. Detection
never raises: unrecognized content yields an invalid, zero-confidence result.
"""
import io
import json
import logging
import re
from typing import Any, Callable

from dotenv.parser import parse_stream

from reqport.services.ir import NATIVE_EXPORT_TYPE, DetectionResult, SourceFormat
from reqport.services.parsers.env_file import is_assignment, is_blank_or_comment
from reqport.services.parsers.json_environment import is_environment_like

logger = logging.getLogger(__name__)


_V2_SCHEMA_VERSION = re.compile(r"v(\d+\.\d+\.\d+)")

Check = tuple[float, Callable[[dict], bool]]


def _schema(data: dict) -> str:
    info = data.get("info")
    if not isinstance(info, dict):
        return ""
    schema = info.get("schema")
    return schema if isinstance(schema, str) else ""


def _info_field(data: dict, key: str) -> Any:
    info = data.get("info")
    return info.get(key) if isinstance(info, dict) else None


# ────────────────────────────────────────────────────────────
# Discriminators
# ────────────────────────────────────────────────────────────

_POSTMAN_V2_CHECKS: list[Check] = [
    (0.6, lambda d: "v2" in _schema(d)),
    (0.2, lambda d: isinstance(d.get("item"), list)),
    (0.1, lambda d: bool(_info_field(d, "name"))),
    (0.1, lambda d: bool(_info_field(d, "_postman_id"))),
]

_POSTMAN_V1_CHECKS: list[Check] = [
    (0.3, lambda d: isinstance(d.get("id"), str) and bool(d.get("id"))),
    (0.2, lambda d: isinstance(d.get("name"), str) and bool(d.get("name"))),
    (0.2, lambda d: "info" not in d),
    (0.2, lambda d: isinstance(d.get("requests"), list)),
    (0.1, lambda d: isinstance(d.get("folders"), list)),
]

_POSTMAN_ENV_CHECKS: list[Check] = [
    (0.2, lambda d: isinstance(d.get("values"), list)),
    (0.2, lambda d: isinstance(d.get("name"), str)),
    (0.2, lambda d: bool(d.get("id"))),
    (0.2, lambda d: all(isinstance(v, dict) and "key" in v for v in d.get("values") or [])),
    (0.2, lambda d: "_postman_variable_scope" in d or "_postman_exported_using" in d),
]

_JSON_ENV_CHECKS: list[Check] = [
    (0.4, lambda d: isinstance(d.get("variables"), dict)),
    (0.2, lambda d: isinstance(d.get("name"), str)),
    (0.2, lambda d: isinstance(d.get("displayName"), str)),
    (0.2, lambda d: "values" not in d and "info" not in d and "type" not in d),
]

_NATIVE_CHECKS: list[Check] = [
    (0.4, lambda d: d.get("type") == NATIVE_EXPORT_TYPE),
    (0.2, lambda d: bool(d.get("version"))),
    (0.2, lambda d: "collection" in d),
    (0.2, lambda d: isinstance(d.get("requests"), list) or isinstance(d.get("folders"), list)),
]


def _score(data: dict, checks: list[Check]) -> float:
    total = sum(weight for weight, check in checks if check(data))
    return round(min(total, 1.0), 4)


def _is_postman_v2(data: dict) -> bool:
    return "v2" in _schema(data)


def _is_postman_v1(data: dict) -> bool:
    """v1 has top-level 'requests'/'folders' arrays and no info.schema."""
    if _schema(data):
        return False
    return isinstance(data.get("requests"), list) or isinstance(data.get("folders"), list)


def _is_postman_environment(data: dict) -> bool:
    return isinstance(data.get("values"), list) and "info" not in data


def _is_native(data: dict) -> bool:
    return data.get("type") == NATIVE_EXPORT_TYPE


_CANDIDATES: list[tuple[SourceFormat, Callable[[dict], bool], list[Check]]] = [
    (SourceFormat.NATIVE, _is_native, _NATIVE_CHECKS),
    (SourceFormat.POSTMAN_V2, _is_postman_v2, _POSTMAN_V2_CHECKS),
    (SourceFormat.POSTMAN_V1, _is_postman_v1, _POSTMAN_V1_CHECKS),
    (SourceFormat.POSTMAN_ENVIRONMENT, _is_postman_environment, _POSTMAN_ENV_CHECKS),
    (SourceFormat.JSON_ENVIRONMENT, is_environment_like, _JSON_ENV_CHECKS),
]


def _version_for(fmt: SourceFormat, data: dict) -> str | None:
    if fmt == SourceFormat.POSTMAN_V2:
        match = _V2_SCHEMA_VERSION.search(_schema(data))
        return match.group(1) if match else None
    if fmt == SourceFormat.POSTMAN_V1:
        return "1.0.0"
    if fmt == SourceFormat.NATIVE:
        version = data.get("version")
        return str(version) if version is not None else None
    return None


def _detect_json(data: Any) -> DetectionResult:
    # An array of environments is scored on its first element
    if isinstance(data, list):
        first = data[0] if data and isinstance(data[0], dict) else None
        if first is not None and _is_postman_environment(first):
            confidence = _score(first, _POSTMAN_ENV_CHECKS)
            return DetectionResult(SourceFormat.POSTMAN_ENVIRONMENT, True, confidence)
        if first is not None and is_environment_like(first):
            confidence = _score(first, _JSON_ENV_CHECKS)
            if not all(is_environment_like(d) for d in data):
                confidence = round(confidence / 2, 4)
            return DetectionResult(SourceFormat.JSON_ENVIRONMENT, True, confidence)
        return DetectionResult.unknown()

    if not isinstance(data, dict):
        return DetectionResult.unknown()

    best: DetectionResult | None = None
    for fmt, matches, checks in _CANDIDATES:
        if not matches(data):
            continue
        confidence = _score(data, checks)
        if best is None or confidence > best.confidence:
            best = DetectionResult(fmt, True, confidence, _version_for(fmt, data))
    return best or DetectionResult.unknown()


def _detect_dotenv(content: str, filename: str | None) -> DetectionResult:
    candidates = 0
    matching = 0
    for binding in parse_stream(io.StringIO(content)):
        if is_blank_or_comment(binding):
            continue
        candidates += 1
        if is_assignment(binding):
            matching += 1

    if candidates == 0 or matching * 2 <= candidates:
        return DetectionResult.unknown()

    confidence = matching / candidates
    if filename and filename.lower().endswith(".env"):
        confidence += 0.1
    return DetectionResult(SourceFormat.DOTENV, True, round(min(confidence, 1.0), 4))


def detect_format(content: str, filename: str | None = None) -> DetectionResult:
    """Classify raw content into one of the supported dialects."""
    if not content or not content.strip():
        return DetectionResult.unknown()

    try:
        data = json.loads(content)
    except (json.JSONDecodeError, ValueError):
        result = _detect_dotenv(content, filename)
    except RecursionError:
        logger.warning("Content of %s is nested too deeply to inspect", filename or "<content>")
        result = DetectionResult.unknown()
    else:
        result = _detect_json(data)

    logger.info(
        "Detected format %s (confidence %.2f) for %s",
        result.format.value if result.format else None,
        result.confidence,
        filename or "<content>",
    )
    return result
