"""Shared test helpers: sample documents in every supported dialect."""

import json
from typing import Any

V21_SCHEMA = "https://schema.getpostman.com/json/collection/v2.1.0/collection.json"

ENV_SAMPLE = "API_KEY=abc123\nBASE_URL=https://x.test\n"


def postman_v2(items: list[dict] | None = None, **extra: Any) -> dict:
    """Build a Postman v2.1 collection; defaults to the minimal one-request sample."""
    if items is None:
        items = [postman_request("Get users", "GET", "https://api.test/users")]
    doc = {
        "info": {"_postman_id": "c0ffee", "name": "Sample API", "schema": V21_SCHEMA},
        "item": items,
    }
    doc.update(extra)
    return doc


def postman_request(name: str, method: str = "GET", url: Any = "https://api.test", **request: Any) -> dict:
    return {"name": name, "request": {"method": method, "url": url, **request}}


def postman_folder(name: str, items: list[dict], **extra: Any) -> dict:
    return {"name": name, "item": items, **extra}


def postman_v1(**overrides: Any) -> dict:
    doc = {
        "id": "col-1",
        "name": "Legacy API",
        "order": ["r3"],
        "folders_order": ["f1"],
        "folders": [
            {"id": "f1", "name": "Users", "order": ["r2", "r1"], "folders_order": []},
        ],
        "requests": [
            {"id": "r1", "name": "List users", "method": "GET", "url": "https://api.test/users?page=1",
             "folder": "f1", "headers": "Accept: application/json\n"},
            {"id": "r2", "name": "Create user", "method": "POST", "url": "https://api.test/users",
             "folder": "f1", "dataMode": "raw", "rawModeData": "{\"name\": \"a\"}"},
            {"id": "r3", "name": "Health", "method": "GET", "url": "https://api.test/health"},
        ],
    }
    doc.update(overrides)
    return doc


def postman_environment(name: str = "Staging", values: list[dict] | None = None) -> dict:
    if values is None:
        values = [
            {"key": "host", "value": "staging.test", "enabled": True, "type": "default"},
            {"key": "token", "value": "s3cret", "enabled": True, "type": "secret"},
        ]
    return {
        "id": "env-1",
        "name": name,
        "values": values,
        "_postman_variable_scope": "environment",
    }


def native_document(
    folders: list[dict] | None = None,
    requests: list[dict] | None = None,
    environments: list[dict] | None = None,
    collection: dict | None = None,
    version: str = "1.0",
) -> dict:
    return {
        "type": "reqport-collection-export",
        "version": version,
        "exportedAt": "2026-01-01T00:00:00+00:00",
        "collection": collection if collection is not None else {"id": "c1", "name": "Native"},
        "folders": folders or [],
        "requests": requests or [],
        "environments": environments or [],
    }


def native_request(rid: str, name: str, folder_id: str | None = None, order: int = 0, **fields: Any) -> dict:
    data = {
        "id": rid,
        "name": name,
        "method": "GET",
        "url": f"https://api.test/{rid}",
        "folderId": folder_id,
        "order": order,
    }
    data.update(fields)
    return data


def dumps(doc: Any) -> str:
    return json.dumps(doc)
