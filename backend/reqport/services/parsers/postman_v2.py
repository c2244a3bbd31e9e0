"""
Postman Collection v2.0 / v2.1 parser.
"""
import json
from typing import Any
from urllib.parse import urlencode

from reqport.services.ir import (
    Auth,
    AuthType,
    CanonicalCollection,
    CanonicalEnvironment,
    CanonicalFolder,
    CanonicalRequest,
    QueryParam,
    SourceFormat,
    environment_key,
    text_value,
)
from reqport.services.parsers.base import (
    ImportParser,
    ParseContext,
    UnparseableDocument,
    as_list,
    as_text,
    detect_raw_body_type,
    load_json_object,
    normalize_method,
    row_key,
    split_url_query,
)

# Postman auth types this model cannot represent; downgraded to "none"
_UNSUPPORTED_AUTH = ("digest", "hawk", "awsv4", "ntlm", "oauth1", "akamai", "edgegrid", "jwt", "asap")


def _auth_params(auth_data: dict, key: str, ctx: ParseContext, item_name: str) -> dict[str, str]:
    params = auth_data.get(key) or []
    if isinstance(params, dict):
        # v2.0 stores auth params as a plain mapping
        return {str(k): as_text(v) for k, v in params.items()}
    result: dict[str, str] = {}
    for item in as_list(params, ctx, f'"{key}" auth parameters', item_name):
        param = row_key(item, ctx, item_name)
        if param:
            result[param] = as_text(item.get("value"))
    return result


def parse_postman_auth(auth_data: Any, ctx: ParseContext, item_name: str) -> Auth | None:
    """Parse a Postman auth block.

    Returns None when the block says nothing (absent or ``inherit``), so the
    caller can fall back to the inherited auth.
    """
    if not isinstance(auth_data, dict):
        return None

    auth_type = auth_data.get("type") or "noauth"

    if auth_type == "inherit":
        return None

    if auth_type == "noauth":
        return Auth.none()

    if auth_type == "bearer":
        params = _auth_params(auth_data, "bearer", ctx, item_name)
        return Auth(AuthType.BEARER, {"token": params.get("token", "")})

    if auth_type == "basic":
        params = _auth_params(auth_data, "basic", ctx, item_name)
        return Auth(
            AuthType.BASIC,
            {"username": params.get("username", ""), "password": params.get("password", "")},
        )

    if auth_type == "apikey":
        params = _auth_params(auth_data, "apikey", ctx, item_name)
        return Auth(
            AuthType.API_KEY,
            {
                "key": params.get("key", "X-API-Key"),
                "value": params.get("value", ""),
                "placement": params.get("in", "header"),
            },
        )

    if auth_type == "oauth2":
        return Auth(AuthType.OAUTH2, _auth_params(auth_data, "oauth2", ctx, item_name))

    kind = "unsupported" if auth_type in _UNSUPPORTED_AUTH else "unknown"
    ctx.warn(
        "AUTH_DOWNGRADED",
        f'{kind.capitalize()} auth type "{auth_type}" was replaced with no auth',
        item_name,
    )
    return Auth.none()


def _key_value_rows(
    rows: Any, ctx: ParseContext, item_name: str | None = None
) -> tuple[dict[str, str], dict[str, str]]:
    """Split Postman key/value rows into (active, disabled) mappings."""
    active: dict[str, str] = {}
    disabled: dict[str, str] = {}
    if not isinstance(rows, list):
        return active, disabled
    for row in rows:
        key = row_key(row, ctx, item_name)
        if key is None:
            continue
        if row.get("disabled", False):
            disabled[key] = as_text(row.get("value"))
            ctx.disabled_count += 1
        else:
            active[key] = as_text(row.get("value"))
    return active, disabled


def _parse_body(body_data: Any, ctx: ParseContext, item_name: str) -> tuple[str | None, str]:
    if not isinstance(body_data, dict):
        return None, "none"

    mode = body_data.get("mode", "raw")

    if mode == "raw":
        raw = as_text(body_data.get("raw"))
        if not raw:
            return None, "none"
        options = body_data.get("options")
        raw_options = options.get("raw") if isinstance(options, dict) else None
        lang = raw_options.get("language") if isinstance(raw_options, dict) else None
        return raw, detect_raw_body_type(raw, lang if isinstance(lang, str) else None)

    if mode == "urlencoded":
        active, _ = _key_value_rows(body_data.get("urlencoded"), ctx, item_name)
        return urlencode(list(active.items()), safe="{}"), "x-www-form-urlencoded"

    if mode == "formdata":
        form: dict[str, str] = {}
        for row in as_list(body_data.get("formdata"), ctx, "Form data", item_name):
            key = row_key(row, ctx, item_name)
            if key is None:
                continue
            if row.get("disabled", False):
                ctx.disabled_count += 1
                continue
            if row.get("type") == "file":
                ctx.warn("FILE_FIELD_DROPPED", f'File field "{key}" was not imported', item_name)
                continue
            form[key] = as_text(row.get("value"))
        return json.dumps(form, indent=2), "form-data"

    if mode == "graphql":
        graphql = body_data.get("graphql") or {}
        return json.dumps(graphql, indent=2), "json"

    ctx.warn("UNSUPPORTED_BODY", f'Body mode "{mode}" is not supported', item_name)
    return None, "none"


def _parse_url(url_data: Any, ctx: ParseContext) -> tuple[str, list[QueryParam]]:
    if isinstance(url_data, str):
        return split_url_query(url_data)

    if not isinstance(url_data, dict):
        return "", []

    raw = as_text(url_data.get("raw"))
    if not raw:
        # Build from parts
        host = url_data.get("host") or []
        path = url_data.get("path") or []
        raw = ""
        if url_data.get("protocol"):
            raw += f"{url_data['protocol']}://"
        raw += ".".join(as_text(h) for h in host) if isinstance(host, list) else as_text(host)
        if path:
            raw += "/" + ("/".join(as_text(p) for p in path) if isinstance(path, list) else as_text(path))

    base_url, from_raw = split_url_query(raw)

    query = url_data.get("query")
    if not isinstance(query, list):
        return base_url, from_raw

    params: list[QueryParam] = []
    for q in query:
        key = row_key(q, ctx)
        if key is None:
            continue
        enabled = not q.get("disabled", False)
        if not enabled:
            ctx.disabled_count += 1
        params.append(QueryParam(key=key, value=as_text(q.get("value")), enabled=enabled))
    return base_url, params


def _has_scripts(node: dict) -> bool:
    events = node.get("event")
    if not isinstance(events, list):
        return False
    for event in events:
        if not isinstance(event, dict):
            continue
        script = event.get("script") or {}
        exec_lines = script.get("exec") if isinstance(script, dict) else None
        if isinstance(exec_lines, list) and "".join(as_text(x) for x in exec_lines).strip():
            return True
        if isinstance(exec_lines, str) and exec_lines.strip():
            return True
    return False


class PostmanV2Parser(ImportParser):
    format = SourceFormat.POSTMAN_V2
    display_name = "Postman Collection v2"

    def _parse(self, content: str, filename: str | None, ctx: ParseContext) -> None:
        data = load_json_object(content)
        info = data.get("info")
        if not isinstance(info, dict):
            raise UnparseableDocument("INVALID_STRUCTURE", "Collection is missing its 'info' object")
        items = data.get("item", [])
        if not isinstance(items, list):
            raise UnparseableDocument("INVALID_STRUCTURE", "Collection 'item' must be an array")

        name = as_text(info.get("name")).strip() or "Imported Collection"
        ctx.ir.collection = CanonicalCollection(name=name, description=text_value(info.get("description")))

        if _has_scripts(data):
            ctx.scripts_dropped += 1
        collection_auth = parse_postman_auth(data.get("auth"), ctx, name)
        inherited = collection_auth if collection_auth and collection_auth.type != AuthType.NONE else None

        self._walk(items, None, inherited, 0, ctx)

        env = self._collection_variables(data.get("variable"), name, ctx)
        if env:
            ctx.ir.environments.append(env)

    def _walk(
        self,
        items: list,
        parent_temp_id: str | None,
        inherited: Auth | None,
        depth: int,
        ctx: ParseContext,
    ) -> None:
        if depth > ctx.max_depth:
            ctx.warn("DEEP_NESTING", f"Folder nesting exceeds maximum depth ({ctx.max_depth})")
            return

        for index, node in enumerate(items):
            if not isinstance(node, dict):
                ctx.warn("MALFORMED_ITEM", f"Item #{index + 1} is not an object and was skipped")
                continue

            name = as_text(node.get("name")).strip()
            if _has_scripts(node):
                ctx.scripts_dropped += 1

            if "item" in node:
                children = node["item"]
                if not isinstance(children, list):
                    ctx.warn("MALFORMED_ITEM", f'Folder "{name}" has an invalid item list', name)
                    continue
                if "request" in node:
                    ctx.warn(
                        "STRAY_REQUEST",
                        f'"{name}" has both child items and a request; treated as a folder',
                        name,
                    )
                folder = CanonicalFolder(
                    temp_id=ctx.ids.next("folder"),
                    name=name or "Folder",
                    parent_temp_id=parent_temp_id,
                    order=index,
                    description=text_value(node.get("description")),
                )
                ctx.ir.folders.append(folder)

                folder_auth = parse_postman_auth(node.get("auth"), ctx, folder.name)
                child_inherited = inherited
                if folder_auth and folder_auth.type != AuthType.NONE:
                    child_inherited = folder_auth
                self._walk(children, folder.temp_id, child_inherited, depth + 1, ctx)

            elif "request" in node:
                request = self._parse_request(node, parent_temp_id, index, inherited, ctx)
                if request:
                    ctx.ir.requests.append(request)

            else:
                ctx.warn("MALFORMED_ITEM", f'"{name or index + 1}" is neither a folder nor a request', name or None)

    def _parse_request(
        self,
        node: dict,
        folder_temp_id: str | None,
        order: int,
        inherited: Auth | None,
        ctx: ParseContext,
    ) -> CanonicalRequest | None:
        name = as_text(node.get("name")).strip() or "Request"
        req_data = node["request"]

        if isinstance(req_data, str):
            # Simple URL string
            url, query_params = split_url_query(req_data)
            return CanonicalRequest(
                temp_id=ctx.ids.next("request"),
                name=name,
                url=url,
                query_params=query_params,
                auth=inherited or Auth.none(),
                folder_temp_id=folder_temp_id,
                order=order,
                description=text_value(node.get("description")),
            )

        if not isinstance(req_data, dict):
            ctx.warn("MALFORMED_ITEM", f'Request "{name}" is malformed and was skipped', name)
            return None

        url, query_params = _parse_url(req_data.get("url"), ctx)
        headers, disabled_headers = _key_value_rows(req_data.get("header"), ctx, name)
        body, body_type = _parse_body(req_data.get("body"), ctx, name)

        auth = parse_postman_auth(req_data.get("auth"), ctx, name)
        if auth is None:
            auth = inherited or Auth.none()

        return CanonicalRequest(
            temp_id=ctx.ids.next("request"),
            name=name,
            method=normalize_method(req_data.get("method"), ctx, name),
            url=url,
            headers=headers,
            body=body,
            body_type=body_type,
            query_params=query_params,
            auth=auth,
            folder_temp_id=folder_temp_id,
            order=order,
            description=text_value(req_data.get("description")) or text_value(node.get("description")),
            disabled_headers=disabled_headers,
        )

    @staticmethod
    def _collection_variables(
        variables: Any, collection_name: str, ctx: ParseContext
    ) -> CanonicalEnvironment | None:
        if not isinstance(variables, list):
            return None
        values: dict[str, str] = {}
        for v in variables:
            key = row_key(v, ctx, collection_name)
            if key is None:
                continue
            if v.get("disabled", False):
                ctx.disabled_count += 1
                continue
            values[key] = as_text(v.get("value"))
        if not values:
            return None
        display_name = f"{collection_name} Variables"
        return CanonicalEnvironment(
            name=environment_key(display_name),
            display_name=display_name,
            variables=values,
        )
