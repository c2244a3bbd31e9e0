"""
Parser for Reqport's own export document.

The mapping is near-identity, but the document still goes through the IR so
that native imports share the commit path with every other dialect. Persisted
ids in the document are only used to link entries together; each one is
replaced by a fresh temp id.
"""
from typing import Any

from reqport.services.ir import (
    BODY_TYPES,
    NATIVE_EXPORT_TYPE,
    NATIVE_EXPORT_VERSION,
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
    load_json_object,
    normalize_method,
    row_key,
)


def _major(version: str) -> str:
    return version.split(".", 1)[0]


def _ref(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _order(value: Any, fallback: int) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else fallback


def _string_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): as_text(v) for k, v in value.items()}


class NativeParser(ImportParser):
    format = SourceFormat.NATIVE
    display_name = "Reqport Export"

    def _parse(self, content: str, filename: str | None, ctx: ParseContext) -> None:
        data = load_json_object(content)
        if data.get("type") != NATIVE_EXPORT_TYPE:
            raise UnparseableDocument("INVALID_STRUCTURE", f"Document type is not '{NATIVE_EXPORT_TYPE}'")

        version = as_text(data.get("version")).strip()
        if not version:
            ctx.warn("MISSING_VERSION", f"Export has no version; assuming {NATIVE_EXPORT_VERSION}")
            version = NATIVE_EXPORT_VERSION
        elif _major(version) != _major(NATIVE_EXPORT_VERSION):
            raise UnparseableDocument(
                "UNSUPPORTED_VERSION",
                f"Export version {version} is not supported (expected {NATIVE_EXPORT_VERSION})",
            )
        ctx.ir.source_version = version

        for key in ("folders", "requests", "environments"):
            if key in data and not isinstance(data[key], list):
                raise UnparseableDocument("INVALID_STRUCTURE", f"'{key}' must be an array")

        folders = data.get("folders") or []
        requests = data.get("requests") or []

        collection = data.get("collection")
        if isinstance(collection, dict):
            ctx.ir.collection = CanonicalCollection(
                name=as_text(collection.get("name")).strip() or "Imported Collection",
                description=text_value(collection.get("description")),
            )
        elif folders or requests:
            ctx.warn("MISSING_COLLECTION", "Export has folders or requests but no collection; one was created")
            ctx.ir.collection = CanonicalCollection(name="Imported Collection")

        folder_ids = self._parse_folders(folders, ctx)
        self._parse_requests(requests, folder_ids, ctx)
        self._parse_environments(data.get("environments") or [], ctx)

    @staticmethod
    def _parse_folders(folders: list, ctx: ParseContext) -> dict[str, str]:
        temp_ids: dict[str, str] = {}
        entries: list[tuple[CanonicalFolder, str | None]] = []

        for index, raw in enumerate(folders):
            if not isinstance(raw, dict):
                ctx.warn("MALFORMED_ITEM", f"Folder #{index + 1} is not an object and was skipped")
                continue
            folder = CanonicalFolder(
                temp_id=ctx.ids.next("folder"),
                name=as_text(raw.get("name")).strip() or "Folder",
                order=_order(raw.get("order"), index),
                description=text_value(raw.get("description")),
            )
            source_id = _ref(raw.get("id"))
            if source_id is not None:
                temp_ids.setdefault(source_id, folder.temp_id)
            entries.append((folder, _ref(raw.get("parentId"))))

        # Parents may appear after their children, so link in a second pass
        for folder, parent_ref in entries:
            if parent_ref is not None:
                if parent_ref in temp_ids:
                    folder.parent_temp_id = temp_ids[parent_ref]
                else:
                    ctx.warn(
                        "ORPHANED_REFERENCE",
                        f'Folder "{folder.name}" points at unknown parent "{parent_ref}"; moved to the root',
                        folder.name,
                    )
            ctx.ir.folders.append(folder)
        return temp_ids

    @staticmethod
    def _parse_requests(requests: list, folder_ids: dict[str, str], ctx: ParseContext) -> None:
        for index, raw in enumerate(requests):
            if not isinstance(raw, dict):
                ctx.warn("MALFORMED_ITEM", f"Request #{index + 1} is not an object and was skipped")
                continue
            name = as_text(raw.get("name")).strip() or "Request"

            folder_temp_id = None
            folder_ref = _ref(raw.get("folderId"))
            if folder_ref is not None:
                folder_temp_id = folder_ids.get(folder_ref)
                if folder_temp_id is None:
                    ctx.warn(
                        "ORPHANED_REFERENCE",
                        f'Request "{name}" points at unknown folder "{folder_ref}"; moved to the root',
                        name,
                    )

            body = raw.get("body")
            body = as_text(body) if body is not None else None
            body_type = as_text(raw.get("bodyType")) or "none"
            if body_type not in BODY_TYPES:
                ctx.warn("UNSUPPORTED_BODY", f'Body type "{body_type}" is not supported, using text', name)
                body_type = "text" if body else "none"

            query_params = []
            for param in as_list(raw.get("queryParams"), ctx, f'Query parameters of "{name}"', name):
                key = row_key(param, ctx, name)
                if key is not None:
                    query_params.append(
                        QueryParam(
                            key=key,
                            value=as_text(param.get("value")),
                            enabled=param.get("enabled", True) is not False,
                        )
                    )

            ctx.ir.requests.append(
                CanonicalRequest(
                    temp_id=ctx.ids.next("request"),
                    name=name,
                    method=normalize_method(raw.get("method"), ctx, name),
                    url=as_text(raw.get("url")),
                    headers=_string_map(raw.get("headers")),
                    body=body,
                    body_type=body_type,
                    query_params=query_params,
                    auth=NativeParser._parse_auth(raw.get("auth"), ctx, name),
                    folder_temp_id=folder_temp_id,
                    order=_order(raw.get("order"), index),
                    description=text_value(raw.get("description")),
                    disabled_headers=_string_map(raw.get("disabledHeaders")),
                )
            )

    @staticmethod
    def _parse_auth(raw: Any, ctx: ParseContext, item_name: str) -> Auth:
        if not isinstance(raw, dict):
            return Auth.none()
        try:
            auth_type = AuthType(raw.get("type") or "none")
        except ValueError:
            ctx.warn(
                "AUTH_DOWNGRADED",
                f'Unknown auth type "{raw.get("type")}" was replaced with no auth',
                item_name,
            )
            return Auth.none()
        return Auth(auth_type, _string_map(raw.get("config")))

    @staticmethod
    def _parse_environments(environments: list, ctx: ParseContext) -> None:
        for index, raw in enumerate(environments):
            if not isinstance(raw, dict):
                ctx.warn("MALFORMED_ITEM", f"Environment #{index + 1} is not an object and was skipped")
                continue
            display_name = as_text(raw.get("displayName") or raw.get("name")).strip() or "Imported Environment"
            name = as_text(raw.get("name")).strip() or environment_key(display_name)
            ctx.ir.environments.append(
                CanonicalEnvironment(
                    name=name,
                    display_name=display_name,
                    variables=_string_map(raw.get("variables")),
                )
            )
