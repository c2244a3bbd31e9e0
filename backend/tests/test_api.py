"""HTTP tests for the import/export API."""

import json

import pytest

from reqport.api.deps import get_store
from reqport.config import settings
from reqport.main import app
from tests.fixtures import ENV_SAMPLE, dumps, native_document, postman_environment, postman_v2

BASE = "/api/v1/import-export"


async def upload(client, content, filename="collection.json", **form):
    if isinstance(content, (dict, list)):
        content = dumps(content)
    return await client.post(
        f"{BASE}/import/sessions",
        files={"file": (filename, content.encode(), "application/octet-stream")},
        data=form,
    )


async def import_and_execute(client, content, filename="collection.json", **options):
    created = await upload(client, content, filename)
    assert created.status_code == 201, created.text
    response = await client.post(f"{BASE}/import/sessions/{created.json()['id']}/execute", json=options or None)
    assert response.status_code == 200, response.text
    return response.json()


class TestMeta:

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": settings.APP_VERSION}

    async def test_formats(self, client):
        response = await client.get(f"{BASE}/formats")
        assert response.status_code == 200
        assert {f["name"] for f in response.json()} == {
            "postman-v2", "postman-v1", "postman-environment", "json-environment", "env", "native",
        }

    async def test_detect(self, client):
        response = await client.post(
            f"{BASE}/detect", files={"file": ("dev.env", ENV_SAMPLE.encode(), "text/plain")}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["format"] == "env"
        assert body["is_valid"] is True


class TestImportFlow:

    async def test_preview_execute_and_export(self, client):
        created = await upload(client, postman_v2())
        assert created.status_code == 201
        session = created.json()
        assert session["stage"] == "preview"
        assert session["detection"]["format"] == "postman-v2"
        assert session["collection_name"] == "Sample API"
        assert session["counts"] == {"folders": 0, "requests": 1, "environments": 0}
        assert session["tree"]["children"][0]["name"] == "Get users"
        assert session["can_commit"] is True

        fetched = await client.get(f"{BASE}/import/sessions/{session['id']}")
        assert fetched.json()["id"] == session["id"]

        executed = await client.post(f"{BASE}/import/sessions/{session['id']}/execute")
        assert executed.status_code == 200
        result = executed.json()
        assert result["request_count"] == 1
        collection_id = result["collection_id"]

        # The finished session is gone
        gone = await client.get(f"{BASE}/import/sessions/{session['id']}")
        assert gone.status_code == 404

        exported = await client.get(f"{BASE}/export/collections/{collection_id}", params={"format": "native"})
        assert exported.status_code == 200
        assert exported.headers["content-disposition"].startswith('attachment; filename="sample-api-')
        doc = exported.json()
        assert doc["type"] == "reqport-collection-export"
        assert [r["name"] for r in doc["requests"]] == ["Get users"]

        postman = await client.get(
            f"{BASE}/export/collections/{collection_id}", params={"format": "postman-v2"}
        )
        assert postman.status_code == 200
        assert postman.json()["item"][0]["name"] == "Get users"

    async def test_cancel_session(self, client):
        session = (await upload(client, postman_v2())).json()
        response = await client.delete(f"{BASE}/import/sessions/{session['id']}")
        assert response.status_code == 204
        assert (await client.get(f"{BASE}/import/sessions/{session['id']}")).status_code == 404

    async def test_unknown_session(self, client):
        assert (await client.get(f"{BASE}/import/sessions/nope")).status_code == 404
        assert (await client.post(f"{BASE}/import/sessions/nope/execute")).status_code == 404

    async def test_duplicate_collection_is_renamed(self, client):
        await import_and_execute(client, postman_v2())
        second = await import_and_execute(client, postman_v2())
        assert [w["code"] for w in second["warnings"]] == ["COLLECTION_RENAMED"]


class TestUploadErrors:

    async def test_picker_rejects_unknown_extension(self, client):
        response = await upload(client, postman_v2(), filename="api.yaml")
        assert response.status_code == 400

    async def test_drop_skips_extension_check(self, client):
        response = await upload(client, postman_v2(), filename="api.txt", source="drop")
        assert response.status_code == 201

    async def test_invalid_source_and_format(self, client):
        assert (await upload(client, postman_v2(), source="clipboard")).status_code == 400
        assert (await upload(client, postman_v2(), format="insomnia")).status_code == 400

    async def test_unrecognized_content(self, client, session_registry):
        response = await upload(client, "hello world", filename="notes.json")
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["detection"]["is_valid"] is False
        assert len(session_registry) == 0

    async def test_fatal_parse_error_lists_faults(self, client):
        response = await upload(client, native_document(version="9.0"))
        assert response.status_code == 400
        assert response.json()["detail"]["faults"][0]["code"] == "UNSUPPORTED_VERSION"

    async def test_forced_format(self, client):
        response = await upload(client, {"values": [{"key": "a", "value": "1"}]}, format="postman-environment")
        assert response.status_code == 201
        assert response.json()["detection"]["confidence"] == 1.0

    async def test_malformed_fields_still_preview(self, client, session_registry):
        request = {"name": "Odd", "event": 5, "request": {
            "method": "POST",
            "url": "https://api.test",
            "header": [{"key": ["X"], "value": "1"}],
            "body": {"mode": "raw", "raw": "{}", "options": {"raw": "json"}},
        }}
        response = await upload(client, postman_v2([request]))
        assert response.status_code == 201
        assert [w["code"] for w in response.json()["warnings"]] == ["MALFORMED_ITEM"]
        assert len(session_registry) == 1

    async def test_too_large(self, client, monkeypatch):
        monkeypatch.setattr(settings, "MAX_IMPORT_BYTES", 10)
        response = await upload(client, postman_v2())
        assert response.status_code == 413


class TestConflicts:

    async def test_resolve_then_execute(self, client):
        await import_and_execute(client, postman_environment())

        session = (await upload(client, postman_environment())).json()
        assert [c["entity_name"] for c in session["conflicts"]] == ["staging"]
        assert session["conflicts"][0]["resolution"] is None
        assert session["can_commit"] is False

        blocked = await client.post(f"{BASE}/import/sessions/{session['id']}/execute")
        assert blocked.status_code == 409
        assert blocked.json()["detail"]["unresolved"] == ["staging"]

        unknown = await client.put(
            f"{BASE}/import/sessions/{session['id']}/resolutions",
            json={"resolutions": [{"name": "prod", "resolution": "skip"}]},
        )
        assert unknown.status_code == 404

        resolved = await client.put(
            f"{BASE}/import/sessions/{session['id']}/resolutions",
            json={"resolutions": [{"name": "staging", "resolution": "rename"}]},
        )
        assert resolved.status_code == 200
        assert resolved.json()["can_commit"] is True
        assert resolved.json()["conflicts"][0]["resolution"] == "rename"

        executed = await client.post(f"{BASE}/import/sessions/{session['id']}/execute")
        assert executed.status_code == 200

        exported = await client.get(f"{BASE}/export/environments", params={"format": "env"})
        assert exported.status_code == 200
        assert json.loads(exported.headers["x-export-warnings"]) == ["ENVIRONMENTS_DROPPED"]

    async def test_invalid_resolution_value(self, client):
        await import_and_execute(client, postman_environment())
        session = (await upload(client, postman_environment())).json()
        response = await client.put(
            f"{BASE}/import/sessions/{session['id']}/resolutions",
            json={"resolutions": [{"name": "staging", "resolution": "merge"}]},
        )
        assert response.status_code == 422


class TestExecutionFailure:

    async def test_store_failure_is_502_with_counts(self, client, memory_store):
        app.dependency_overrides[get_store] = lambda: memory_store
        memory_store.fail_on("request.save")

        session = (await upload(client, postman_v2())).json()
        response = await client.post(f"{BASE}/import/sessions/{session['id']}/execute")
        assert response.status_code == 502
        detail = response.json()["detail"]
        assert detail["stage"] == "requests"
        assert detail["committed"]["collections"] == 1

        # The session went back to preview and can be retried
        retry = await client.get(f"{BASE}/import/sessions/{session['id']}")
        assert retry.json()["stage"] == "preview"
        again = await client.post(f"{BASE}/import/sessions/{session['id']}/execute")
        assert again.status_code == 200

    async def test_environment_listing_failure_on_upload(self, client, memory_store, session_registry):
        app.dependency_overrides[get_store] = lambda: memory_store
        memory_store.fail_on("env.list")

        response = await upload(client, postman_v2())
        assert response.status_code == 502
        assert "env.list failed" in response.json()["detail"]
        assert len(session_registry) == 0

        # The next upload lists again and succeeds
        assert (await upload(client, postman_v2())).status_code == 201
        assert len(session_registry) == 1


class TestExport:

    async def test_missing_collection(self, client):
        response = await client.get(f"{BASE}/export/collections/nope")
        assert response.status_code == 404

    async def test_bad_collection_format(self, client):
        result = await import_and_execute(client, postman_v2())
        response = await client.get(
            f"{BASE}/export/collections/{result['collection_id']}", params={"format": "env"}
        )
        assert response.status_code == 400

    async def test_environment_export_by_ids(self, client):
        await import_and_execute(client, ENV_SAMPLE, filename="dev.env", environment_mode="global")
        response = await client.get(
            f"{BASE}/export/environments", params={"format": "postman-environment", "ids": "ghost"}
        )
        assert response.status_code == 404

        response = await client.get(f"{BASE}/export/environments", params={"format": "env"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "# Environment: dev\nAPI_KEY=abc123\nBASE_URL=https://x.test\n"
        assert "x-export-warnings" not in response.headers

    async def test_json_environment_round_trip(self, client):
        doc = [{"name": "dev", "displayName": "Dev", "variables": {"A": "1"}}]
        result = await import_and_execute(client, doc, filename="envs.json")
        assert result["environment_count"] == 1
        assert [w["code"] for w in result["warnings"]] == ["ENVIRONMENT_MODE_FALLBACK"]

        response = await client.get(f"{BASE}/export/environments", params={"format": "json-environment"})
        assert response.status_code == 200
        assert response.json() == {"name": "dev", "displayName": "Dev", "variables": {"A": "1"}}

    async def test_no_environments(self, client):
        response = await client.get(f"{BASE}/export/environments")
        assert response.status_code == 404

    @pytest.mark.parametrize("fmt", ["postman-v2", "yaml"])
    async def test_bad_environment_format(self, client, fmt):
        await import_and_execute(client, ENV_SAMPLE, filename="dev.env", environment_mode="global")
        response = await client.get(f"{BASE}/export/environments", params={"format": fmt})
        assert response.status_code == 400
