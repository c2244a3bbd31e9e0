"""
Postman Collection v1 (legacy) parser.

v1 keeps folders and requests in two flat arrays that point at each other by id:
requests name their folder, folders and the collection list their children in
``order`` (requests) and ``folders_order`` (sub-folders).
"""
import json
from typing import Any
from urllib.parse import urlencode

from reqport.services.ir import (
    Auth,
    AuthType,
    CanonicalCollection,
    CanonicalFolder,
    CanonicalRequest,
    SourceFormat,
    text_value,
)
from reqport.services.parsers.base import (
    ImportParser,
    ParseContext,
    UnparseableDocument,
    as_text,
    detect_raw_body_type,
    load_json_object,
    normalize_method,
    row_key,
    split_url_query,
)

ROOT = None


def _parse_helper_auth(req: dict, ctx: ParseContext, item_name: str) -> Auth:
    helper = req.get("currentHelper")
    attrs = req.get("helperAttributes") or {}
    if not isinstance(attrs, dict):
        attrs = {}

    if not helper or helper == "normal":
        return Auth.none()

    if helper == "basicAuth":
        return Auth(
            AuthType.BASIC,
            {"username": as_text(attrs.get("username")), "password": as_text(attrs.get("password"))},
        )

    if helper == "bearerAuth":
        return Auth(AuthType.BEARER, {"token": as_text(attrs.get("token"))})

    if helper == "apiKeyAuth":
        return Auth(
            AuthType.API_KEY,
            {
                "key": as_text(attrs.get("headerName")) or "X-API-Key",
                "value": as_text(attrs.get("apiKey")),
                "placement": "header",
            },
        )

    ctx.warn(
        "AUTH_DOWNGRADED",
        f'Legacy auth helper "{helper}" was replaced with no auth',
        item_name,
    )
    return Auth.none()


def _parse_header_string(raw: Any, ctx: ParseContext) -> tuple[dict[str, str], dict[str, str]]:
    """Parse ``Key: value`` lines; lines commented out with ``//`` are disabled."""
    active: dict[str, str] = {}
    disabled: dict[str, str] = {}
    if not isinstance(raw, str):
        return active, disabled
    for line in raw.splitlines():
        target = active
        line = line.strip()
        if line.startswith("//"):
            target = disabled
            line = line[2:].strip()
        key, sep, value = line.partition(":")
        key = key.strip()
        if not sep or not key:
            continue
        if target is disabled:
            ctx.disabled_count += 1
        target[key] = value.strip()
    return active, disabled


def _parse_body(req: dict, ctx: ParseContext, item_name: str) -> tuple[str | None, str]:
    mode = req.get("dataMode")
    data = req.get("data")

    if mode == "raw" or (mode is None and isinstance(data, str)):
        raw = req.get("rawModeData")
        if not isinstance(raw, str):
            raw = data if isinstance(data, str) else ""
        if not raw:
            return None, "none"
        return raw, detect_raw_body_type(raw)

    if mode in ("urlencoded", "params", "formdata"):
        if not isinstance(data, list):
            return None, "none"
        fields: list[tuple[str, str]] = []
        for row in data:
            key = row_key(row, ctx, item_name)
            if key is None:
                continue
            if row.get("enabled") is False or row.get("disabled", False):
                ctx.disabled_count += 1
                continue
            if row.get("type") == "file":
                ctx.warn("FILE_FIELD_DROPPED", f'File field "{key}" was not imported', item_name)
                continue
            fields.append((key, as_text(row.get("value"))))
        if mode == "urlencoded":
            return urlencode(fields, safe="{}"), "x-www-form-urlencoded"
        return json.dumps(dict(fields), indent=2), "form-data"

    if mode:
        ctx.warn("UNSUPPORTED_BODY", f'Body mode "{mode}" is not supported', item_name)
    return None, "none"


def _id_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def _assign_order(ids: list[str], listed: list[str], start: int = 0) -> dict[str, int]:
    """Listed ids come first in list order, the rest follow in array order."""
    positions: dict[str, int] = {}
    for item_id in listed:
        if item_id in ids and item_id not in positions:
            positions[item_id] = start + len(positions)
    for item_id in ids:
        if item_id not in positions:
            positions[item_id] = start + len(positions)
    return positions


class PostmanV1Parser(ImportParser):
    format = SourceFormat.POSTMAN_V1
    display_name = "Postman Collection v1 (Legacy)"

    def _parse(self, content: str, filename: str | None, ctx: ParseContext) -> None:
        data = load_json_object(content)
        raw_folders = data.get("folders")
        raw_requests = data.get("requests")
        if not isinstance(raw_folders, list) and not isinstance(raw_requests, list):
            raise UnparseableDocument(
                "INVALID_STRUCTURE", "Legacy collection has neither 'folders' nor 'requests'"
            )

        ctx.ir.source_version = "1.0.0"
        name = as_text(data.get("name")).strip() or "Imported Collection"
        ctx.ir.collection = CanonicalCollection(name=name, description=text_value(data.get("description")))
        ctx.warn(
            "LEGACY_FORMAT",
            "This is a Postman v1 collection. Some features may not be fully supported.",
        )

        folders = self._index_items(raw_folders, "folder", ctx)
        requests = self._index_items(raw_requests, "request", ctx)

        # id -> parent folder id, built from the owning order lists
        folder_parent: dict[str, str | None] = {}
        for folder_id, folder in folders.items():
            for child_id in _id_list(folder.get("folders_order")):
                if child_id in folders and child_id not in folder_parent and child_id != folder_id:
                    folder_parent[child_id] = folder_id
        for folder_id in folders:
            folder_parent.setdefault(folder_id, ROOT)

        listed_in: dict[str, str] = {}
        for folder_id, folder in folders.items():
            for req_id in _id_list(folder.get("order")):
                listed_in.setdefault(req_id, folder_id)

        request_parent: dict[str, str | None] = {}
        for req_id, req in requests.items():
            ref = req.get("folder")
            if isinstance(ref, str) and ref:
                if ref in folders:
                    request_parent[req_id] = ref
                else:
                    ctx.warn(
                        "ORPHANED_REFERENCE",
                        f'Request "{as_text(req.get("name"))}" points at unknown folder "{ref}"',
                        as_text(req.get("name")) or None,
                    )
                    request_parent[req_id] = ROOT
            else:
                request_parent[req_id] = listed_in.get(req_id, ROOT)

        children_folders: dict[str | None, list[str]] = {}
        for folder_id, parent in folder_parent.items():
            children_folders.setdefault(parent, []).append(folder_id)
        children_requests: dict[str | None, list[str]] = {}
        for req_id, parent in request_parent.items():
            children_requests.setdefault(parent, []).append(req_id)

        orders: dict[str, int] = {}
        for parent in set(children_folders) | set(children_requests):
            owner = data if parent is ROOT else folders[parent]
            sub_ids = children_folders.get(parent, [])
            req_ids = children_requests.get(parent, [])
            orders.update(_assign_order(sub_ids, _id_list(owner.get("folders_order"))))
            orders.update(_assign_order(req_ids, _id_list(owner.get("order")), start=len(sub_ids)))

        temp_ids = {folder_id: ctx.ids.next("folder") for folder_id in folders}
        for folder_id, folder in folders.items():
            parent = folder_parent[folder_id]
            ctx.ir.folders.append(
                CanonicalFolder(
                    temp_id=temp_ids[folder_id],
                    name=as_text(folder.get("name")).strip() or "Unnamed Folder",
                    parent_temp_id=temp_ids[parent] if parent is not ROOT else None,
                    order=orders[folder_id],
                    description=text_value(folder.get("description")),
                )
            )

        for req_id, req in requests.items():
            parent = request_parent[req_id]
            request = self._parse_request(
                req,
                temp_ids[parent] if parent is not ROOT else None,
                orders[req_id],
                ctx,
            )
            if request:
                ctx.ir.requests.append(request)

    @staticmethod
    def _index_items(items: Any, kind: str, ctx: ParseContext) -> dict[str, dict]:
        indexed: dict[str, dict] = {}
        if not isinstance(items, list):
            return indexed
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                ctx.warn("MALFORMED_ITEM", f"{kind.capitalize()} #{index + 1} is not an object and was skipped")
                continue
            item_id = item.get("id")
            if not isinstance(item_id, str) or not item_id:
                # Unreferenced entries still get a slot of their own
                item_id = f"#{kind}-{index}"
            if item_id in indexed:
                ctx.warn(
                    "MALFORMED_ITEM",
                    f'Duplicate {kind} id "{item_id}"; later entry was skipped',
                    as_text(item.get("name")) or None,
                )
                continue
            indexed[item_id] = item
        return indexed

    def _parse_request(
        self,
        req: dict,
        folder_temp_id: str | None,
        order: int,
        ctx: ParseContext,
    ) -> CanonicalRequest | None:
        name = as_text(req.get("name")).strip() or "Unnamed Request"
        raw_url = as_text(req.get("url")).strip()
        if not raw_url:
            ctx.warn("MISSING_URL", f'Request "{name}" has no URL and was skipped', name)
            return None

        url, query_params = split_url_query(raw_url)
        headers, disabled_headers = _parse_header_string(req.get("headers"), ctx)
        body, body_type = _parse_body(req, ctx, name)
        if req.get("preRequestScript") or req.get("tests"):
            ctx.scripts_dropped += 1

        return CanonicalRequest(
            temp_id=ctx.ids.next("request"),
            name=name,
            method=normalize_method(req.get("method"), ctx, name),
            url=url,
            headers=headers,
            body=body,
            body_type=body_type,
            query_params=query_params,
            auth=_parse_helper_auth(req, ctx, name),
            folder_temp_id=folder_temp_id,
            order=order,
            description=text_value(req.get("description")),
            disabled_headers=disabled_headers,
        )
