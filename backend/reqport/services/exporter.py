"""
Serializes Store state back into an importable document.

Collections export as the native document or as a Postman v2.1 collection;
environments export as the native document, a ``.env`` file or Postman
environment JSON. Anything a target cannot carry is dropped with a warning.
"""
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import parse_qsl

from reqport.config import settings
from reqport.core.errors import ExportError, MissingExportScopeError
from reqport.services.ir import (
    NATIVE_EXPORT_TYPE,
    NATIVE_EXPORT_VERSION,
    CanonicalCollection,
    CanonicalFolder,
    CanonicalRequest,
    ImportWarning,
    SourceFormat,
)
from reqport.services.parsers.env_file import VALID_KEY
from reqport.services.store import Store
from reqport.services.tree_builder import TreeNode, build_tree

logger = logging.getLogger(__name__)

POSTMAN_V21_SCHEMA = "https://schema.getpostman.com/json/collection/v2.1.0/collection.json"

COLLECTION_FORMATS = (SourceFormat.NATIVE, SourceFormat.POSTMAN_V2)
ENVIRONMENT_FORMATS = (
    SourceFormat.NATIVE,
    SourceFormat.DOTENV,
    SourceFormat.POSTMAN_ENVIRONMENT,
    SourceFormat.JSON_ENVIRONMENT,
)

_SLUG = re.compile(r"[^a-z0-9]+")
_NEEDS_QUOTES = re.compile(r"[\s#'\"\\]")
_RAW_LANGUAGES = {"json": "json", "xml": "xml", "text": "text"}


@dataclass
class ExportResult:
    content: str
    filename: str
    media_type: str
    warnings: list[ImportWarning] = field(default_factory=list)


def _slug(name: str, default: str) -> str:
    return _SLUG.sub("-", name.lower()).strip("-") or default


def _escape_env_value(value: str) -> str:
    if value and not _NEEDS_QUOTES.search(value):
        return value
    if not value:
        return ""
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def _native_request(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "name": row["name"],
        "method": row["method"],
        "url": row["url"],
        "headers": row.get("headers") or {},
        "disabledHeaders": row.get("disabled_headers") or {},
        "body": row.get("body"),
        "bodyType": row.get("body_type") or "none",
        "queryParams": row.get("query_params") or [],
        "auth": row.get("auth") or {"type": "none", "config": {}},
        "folderId": row.get("folder_id"),
        "order": row.get("order", 0),
        "description": row.get("description"),
    }


def _native_environment(env: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": env["name"],
        "displayName": env.get("display_name") or env["name"],
        "variables": dict(env.get("variables") or {}),
    }


# ────────────────────────────────────────────────────────────
# Postman v2.1 mapping
# ────────────────────────────────────────────────────────────

def _postman_auth(auth: dict[str, Any]) -> dict[str, Any] | None:
    auth_type = auth.get("type", "none")
    config = auth.get("config") or {}

    def params(*keys: str) -> list[dict[str, str]]:
        return [{"key": k, "value": config.get(k, ""), "type": "string"} for k in keys]

    if auth_type == "bearer":
        return {"type": "bearer", "bearer": params("token")}
    if auth_type == "basic":
        return {"type": "basic", "basic": params("username", "password")}
    if auth_type == "api_key":
        return {
            "type": "apikey",
            "apikey": [
                {"key": "key", "value": config.get("key", ""), "type": "string"},
                {"key": "value", "value": config.get("value", ""), "type": "string"},
                {"key": "in", "value": config.get("placement", "header"), "type": "string"},
            ],
        }
    if auth_type == "oauth2":
        return {"type": "oauth2", "oauth2": [{"key": k, "value": v, "type": "string"} for k, v in config.items()]}
    return None


def _postman_body(row: dict[str, Any], warnings: list[ImportWarning]) -> dict[str, Any] | None:
    body = row.get("body")
    body_type = row.get("body_type") or "none"
    if body_type == "none" or body is None:
        return None

    if body_type == "x-www-form-urlencoded":
        return {
            "mode": "urlencoded",
            "urlencoded": [{"key": k, "value": v} for k, v in parse_qsl(body, keep_blank_values=True)],
        }

    if body_type == "form-data":
        try:
            fields = json.loads(body)
        except ValueError:
            fields = None
        if isinstance(fields, dict):
            return {
                "mode": "formdata",
                "formdata": [{"key": k, "value": str(v), "type": "text"} for k, v in fields.items()],
            }
        warnings.append(
            ImportWarning("BODY_AS_RAW", "Form body could not be split into fields; exported as raw", row["name"])
        )

    language = _RAW_LANGUAGES.get(body_type, "text")
    return {"mode": "raw", "raw": body, "options": {"raw": {"language": language}}}


def _postman_url(row: dict[str, Any]) -> dict[str, Any] | str:
    params = row.get("query_params") or []
    if not params:
        return row["url"]
    enabled = [p for p in params if p.get("enabled", True)]
    raw = row["url"]
    if enabled:
        raw += "?" + "&".join(f"{p['key']}={p.get('value', '')}" for p in enabled)
    query = []
    for p in params:
        entry = {"key": p["key"], "value": p.get("value", "")}
        if not p.get("enabled", True):
            entry["disabled"] = True
        query.append(entry)
    return {"raw": raw, "query": query}


def _postman_request_item(row: dict[str, Any], warnings: list[ImportWarning]) -> dict[str, Any]:
    headers = [{"key": k, "value": v} for k, v in (row.get("headers") or {}).items()]
    headers += [{"key": k, "value": v, "disabled": True} for k, v in (row.get("disabled_headers") or {}).items()]
    request: dict[str, Any] = {
        "method": row["method"],
        "header": headers,
        "url": _postman_url(row),
    }
    body = _postman_body(row, warnings)
    if body:
        request["body"] = body
    auth = _postman_auth(row.get("auth") or {})
    if auth:
        request["auth"] = auth
    if row.get("description"):
        request["description"] = row["description"]
    return {"name": row["name"], "request": request}


class Exporter:
    def __init__(self, store: Store, clock: Callable[[], datetime] | None = None):
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _filename(self, slug: str, ext: str) -> str:
        return f"{slug}-{self._clock().strftime('%Y-%m-%d')}.{ext}"

    def _native_document(
        self,
        collection: dict[str, Any] | None,
        folders: list[dict[str, Any]],
        requests: list[dict[str, Any]],
        environments: list[dict[str, Any]],
    ) -> str:
        document = {
            "type": NATIVE_EXPORT_TYPE,
            "version": NATIVE_EXPORT_VERSION,
            "exportedAt": self._clock().isoformat(),
            "collection": collection,
            "folders": folders,
            "requests": requests,
            "environments": environments,
        }
        return json.dumps(document, indent=2, ensure_ascii=False)

    # ── Collections ──

    async def export_collection(self, collection_id: str, fmt: SourceFormat | str) -> ExportResult:
        fmt = self._target(fmt, COLLECTION_FORMATS)
        collections = await self.store.collection.list()
        collection = next((c for c in collections if c["id"] == collection_id), None)
        if collection is None:
            raise MissingExportScopeError(f"Collection {collection_id} not found")

        folders = await self.store.folder.list(collection_id)
        requests = await self.store.request.list(collection_id)
        slug = _slug(collection["name"], "collection")
        logger.info(
            "Exporting collection %s as %s (%d folders, %d requests)",
            collection_id, fmt.value, len(folders), len(requests),
        )

        if fmt == SourceFormat.NATIVE:
            content = self._native_document(
                {"id": collection["id"], "name": collection["name"], "description": collection.get("description")},
                [
                    {
                        "id": f["id"],
                        "name": f["name"],
                        "description": f.get("description"),
                        "parentId": f.get("parent_id"),
                        "order": f.get("order", 0),
                    }
                    for f in folders
                ],
                [_native_request(r) for r in requests],
                [_native_environment(e) for e in collection.get("environments") or []],
            )
            return ExportResult(content, self._filename(slug, "json"), "application/json")

        warnings: list[ImportWarning] = []
        document = self._postman_collection(collection, folders, requests, warnings)
        content = json.dumps(document, indent=2, ensure_ascii=False)
        return ExportResult(content, self._filename(slug, "postman_collection.json"), "application/json", warnings)

    def _postman_collection(
        self,
        collection: dict[str, Any],
        folders: list[dict[str, Any]],
        requests: list[dict[str, Any]],
        warnings: list[ImportWarning],
    ) -> dict[str, Any]:
        # Reuse the tree builder so sibling order matches the import preview
        tree = build_tree(
            CanonicalCollection(name=collection["name"]),
            [
                CanonicalFolder(temp_id=f["id"], name=f["name"], parent_temp_id=f.get("parent_id"),
                                order=f.get("order", 0), description=f.get("description"))
                for f in folders
            ],
            [
                CanonicalRequest(temp_id=r["id"], name=r["name"], folder_temp_id=r.get("folder_id"),
                                 order=r.get("order", 0))
                for r in requests
            ],
        )
        warnings.extend(tree.warnings)
        folders_by_id = {f["id"]: f for f in folders}
        requests_by_id = {r["id"]: r for r in requests}

        def items(node: TreeNode) -> list[dict[str, Any]]:
            result = []
            for child in node.children:
                if child.kind == "folder":
                    entry: dict[str, Any] = {"name": child.name, "item": items(child)}
                    description = folders_by_id[child.temp_id].get("description")
                    if description:
                        entry["description"] = description
                    result.append(entry)
                else:
                    result.append(_postman_request_item(requests_by_id[child.temp_id], warnings))
            return result

        document: dict[str, Any] = {
            "info": {
                "_postman_id": str(uuid.uuid4()),
                "name": collection["name"],
                "schema": POSTMAN_V21_SCHEMA,
            },
            "item": items(tree.root),
        }
        if collection.get("description"):
            document["info"]["description"] = collection["description"]

        environments = collection.get("environments") or []
        if environments:
            first = environments[0]
            document["variable"] = [
                {"key": k, "value": v, "type": "string"} for k, v in (first.get("variables") or {}).items()
            ]
            if len(environments) > 1:
                warnings.append(
                    ImportWarning(
                        "ENVIRONMENTS_DROPPED",
                        f"Postman collections hold one variable set; {len(environments) - 1} "
                        f"additional environments were not exported",
                    )
                )
        return document

    # ── Environments ──

    async def export_environments(self, ids: list[str] | None, fmt: SourceFormat | str) -> ExportResult:
        fmt = self._target(fmt, ENVIRONMENT_FORMATS)
        environments = await self.store.env.list()
        if ids is not None:
            by_id = {e["id"]: e for e in environments}
            missing = [i for i in ids if i not in by_id]
            if missing:
                raise MissingExportScopeError(f"Environments not found: {', '.join(missing)}")
            environments = [by_id[i] for i in ids]
        if not environments:
            raise MissingExportScopeError("No environments to export")

        slug = _slug(environments[0]["name"], "environment") if len(environments) == 1 else "environments"
        logger.info("Exporting %d environments as %s", len(environments), fmt.value)

        if fmt == SourceFormat.NATIVE:
            content = self._native_document(None, [], [], [_native_environment(e) for e in environments])
            return ExportResult(content, self._filename(slug, "json"), "application/json")

        if fmt == SourceFormat.DOTENV:
            return self._dotenv(environments, slug)

        if fmt == SourceFormat.JSON_ENVIRONMENT:
            documents = [
                {
                    "name": e["name"],
                    "displayName": e.get("display_name") or e["name"],
                    "variables": dict(e.get("variables") or {}),
                }
                for e in environments
            ]
            payload = documents[0] if len(documents) == 1 else documents
            content = json.dumps(payload, indent=2, ensure_ascii=False)
            return ExportResult(content, self._filename(slug, "environment.json"), "application/json")

        documents = [self._postman_environment(e) for e in environments]
        payload = documents[0] if len(documents) == 1 else documents
        content = json.dumps(payload, indent=2, ensure_ascii=False)
        return ExportResult(content, self._filename(slug, "postman_environment.json"), "application/json")

    def _dotenv(self, environments: list[dict[str, Any]], slug: str) -> ExportResult:
        warnings: list[ImportWarning] = []
        env = environments[0]
        if len(environments) > 1:
            warnings.append(
                ImportWarning(
                    "ENVIRONMENTS_DROPPED",
                    f'A .env file holds one environment; only "{env.get("display_name") or env["name"]}" '
                    f"was exported",
                )
            )
            slug = _slug(env["name"], "environment")

        lines = [f"# Environment: {env.get('display_name') or env['name']}"]
        for key, value in (env.get("variables") or {}).items():
            if not VALID_KEY.match(key):
                warnings.append(
                    ImportWarning("INVALID_KEY", f'Variable "{key}" is not a valid .env key and was skipped', key)
                )
                continue
            lines.append(f"{key}={_escape_env_value(str(value))}")
        content = "\n".join(lines) + "\n"
        return ExportResult(content, self._filename(slug, "env"), "text/plain", warnings)

    def _postman_environment(self, env: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": str(uuid.uuid4()),
            "name": env.get("display_name") or env["name"],
            "values": [
                {"key": k, "value": v, "type": "default", "enabled": True}
                for k, v in (env.get("variables") or {}).items()
            ],
            "_postman_variable_scope": "environment",
            "_postman_exported_at": self._clock().isoformat(),
            "_postman_exported_using": f"{settings.APP_NAME}/{settings.APP_VERSION}",
        }

    @staticmethod
    def _target(fmt: SourceFormat | str, allowed: tuple[SourceFormat, ...]) -> SourceFormat:
        try:
            target = SourceFormat(fmt)
        except ValueError:
            raise ExportError(f"Unknown export format: {fmt}") from None
        if target not in allowed:
            raise ExportError(
                f"Cannot export to {target.value}; expected one of {', '.join(a.value for a in allowed)}"
            )
        return target
