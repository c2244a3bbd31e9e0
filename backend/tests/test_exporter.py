"""Tests for collection and environment export."""

import json
from datetime import datetime, timezone

import pytest

from reqport.core.errors import ExportError, MissingExportScopeError
from reqport.services.executor import ImportExecutor
from reqport.services.exporter import Exporter
from reqport.services.ir import AuthType
from reqport.services.parsers import get_parser
from reqport.services.store import MemoryStore
from reqport.services.tree_builder import build_tree
from tests.fixtures import dumps, postman_folder, postman_request, postman_v2


def fixed_clock():
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def outline(node):
    """Names, methods and URLs of a tree, ignoring ids."""
    return (node.kind, node.name, node.method, node.url, [outline(c) for c in node.children])


def tree_of(ir):
    return build_tree(ir.collection, ir.folders, ir.requests).root


def sample_collection():
    return postman_v2(
        [
            postman_folder("Users", [
                postman_request("List", "GET", "https://api.test/users?page=1"),
                postman_folder("Admin", [
                    postman_request("Ban", "POST", "https://api.test/ban",
                                    auth={"type": "bearer", "bearer": [{"key": "token", "value": "T"}]}),
                ]),
                postman_request("Create", "POST", "https://api.test/users",
                                body={"mode": "raw", "raw": "{\"a\": 1}"}),
            ]),
            postman_request("Health", "GET", "https://api.test/health"),
        ],
        variable=[{"key": "host", "value": "api.test"}],
    )


async def import_document(store, doc, fmt="postman-v2"):
    result = get_parser(fmt).parse(dumps(doc))
    assert result.ok
    executed = await ImportExecutor(store).execute(result.ir)
    return result.ir, executed.collection_id


async def save_env(store, name, display_name=None, **variables):
    saved = await store.env.save({"name": name, "display_name": display_name or name.title(), "variables": variables})
    return saved.id


class TestCollectionExport:

    async def test_native_round_trip_keeps_structure(self, memory_store):
        original, collection_id = await import_document(memory_store, sample_collection())
        exported = await Exporter(memory_store, fixed_clock).export_collection(collection_id, "native")

        assert exported.filename == "sample-api-2026-03-01.json"
        assert exported.media_type == "application/json"
        reparsed = get_parser("native").parse(exported.content)
        assert reparsed.ok
        assert reparsed.warnings == []
        assert outline(tree_of(reparsed.ir)) == outline(tree_of(original))
        assert [e.name for e in reparsed.ir.environments] == ["sample_api_variables"]

        # And a second import of the export lands the same tree again
        second = MemoryStore()
        await ImportExecutor(second).execute(reparsed.ir)
        again = await Exporter(second, fixed_clock).export_collection("collection-1", "native")
        assert outline(tree_of(get_parser("native").parse(again.content).ir)) == outline(tree_of(original))

    async def test_native_document_shape(self, memory_store):
        _, collection_id = await import_document(memory_store, sample_collection())
        exported = await Exporter(memory_store, fixed_clock).export_collection(collection_id, "native")
        doc = json.loads(exported.content)
        assert doc["type"] == "reqport-collection-export"
        assert doc["version"] == "1.0"
        assert doc["exportedAt"] == "2026-03-01T12:00:00+00:00"
        listing = next(r for r in doc["requests"] if r["name"] == "List")
        assert listing["url"] == "https://api.test/users"
        assert listing["queryParams"] == [{"key": "page", "value": "1", "enabled": True}]

    async def test_postman_export_reimports(self, memory_store):
        original, collection_id = await import_document(memory_store, sample_collection())
        exported = await Exporter(memory_store, fixed_clock).export_collection(collection_id, "postman-v2")
        assert exported.filename == "sample-api-2026-03-01.postman_collection.json"

        doc = json.loads(exported.content)
        assert doc["info"]["schema"].endswith("v2.1.0/collection.json")
        assert doc["variable"] == [{"key": "host", "value": "api.test", "type": "string"}]

        reparsed = get_parser("postman-v2").parse(exported.content)
        assert reparsed.ok
        assert outline(tree_of(reparsed.ir)) == outline(tree_of(original))
        by_name = {r.name: r for r in reparsed.ir.requests}
        assert [(p.key, p.value) for p in by_name["List"].query_params] == [("page", "1")]
        assert by_name["Ban"].auth.type == AuthType.BEARER
        assert by_name["Create"].body_type == "json"

    async def test_postman_export_keeps_one_variable_set(self, memory_store):
        saved = await memory_store.collection.save({
            "name": "Multi",
            "description": None,
            "environments": [
                {"name": "a", "display_name": "A", "variables": {"x": "1"}},
                {"name": "b", "display_name": "B", "variables": {"y": "2"}},
            ],
        })
        exported = await Exporter(memory_store, fixed_clock).export_collection(saved.id, "postman-v2")
        doc = json.loads(exported.content)
        assert doc["variable"] == [{"key": "x", "value": "1", "type": "string"}]
        assert [w.code for w in exported.warnings] == ["ENVIRONMENTS_DROPPED"]

    async def test_missing_collection(self, memory_store):
        with pytest.raises(MissingExportScopeError):
            await Exporter(memory_store).export_collection("nope", "native")

    @pytest.mark.parametrize("fmt", ["env", "postman-environment", "yaml"])
    async def test_unsupported_collection_format(self, memory_store, fmt):
        with pytest.raises(ExportError):
            await Exporter(memory_store).export_collection("collection-1", fmt)


class TestEnvironmentExport:

    async def test_dotenv_escaping_round_trips(self, memory_store):
        variables = {
            "PLAIN": "abc123",
            "SPACED": "hello world",
            "QUOTED": 'say "hi"',
            "SLASHED": "C:\\temp",
            "MULTI": "line1\nline2",
            "HASH": "a #b",
            "EMPTY": "",
        }
        await save_env(memory_store, "dev", "Dev Box", **variables)
        exported = await Exporter(memory_store, fixed_clock).export_environments(None, "env")

        assert exported.filename == "dev-2026-03-01.env"
        assert exported.media_type == "text/plain"
        lines = exported.content.splitlines()
        assert lines[0] == "# Environment: Dev Box"
        assert "PLAIN=abc123" in lines
        assert 'SPACED="hello world"' in lines

        reparsed = get_parser("env").parse(exported.content, exported.filename)
        (env,) = reparsed.ir.environments
        assert env.display_name == "Dev Box"
        assert env.variables == variables

    async def test_dotenv_skips_invalid_keys_and_extra_environments(self, memory_store):
        await save_env(memory_store, "first", **{"OK": "1", "bad key": "2"})
        await save_env(memory_store, "second", OTHER="3")
        exported = await Exporter(memory_store, fixed_clock).export_environments(None, "env")
        assert "OTHER" not in exported.content
        assert "bad key" not in exported.content
        assert sorted(w.code for w in exported.warnings) == ["ENVIRONMENTS_DROPPED", "INVALID_KEY"]
        assert exported.filename == "first-2026-03-01.env"

    async def test_postman_single_environment_is_an_object(self, memory_store):
        env_id = await save_env(memory_store, "staging", "Staging", host="s.test")
        exported = await Exporter(memory_store, fixed_clock).export_environments([env_id], "postman-environment")
        doc = json.loads(exported.content)
        assert isinstance(doc, dict)
        assert doc["name"] == "Staging"
        assert doc["values"] == [{"key": "host", "value": "s.test", "type": "default", "enabled": True}]
        assert doc["_postman_variable_scope"] == "environment"
        assert exported.filename == "staging-2026-03-01.postman_environment.json"

    async def test_postman_several_environments_is_an_array(self, memory_store):
        await save_env(memory_store, "dev", A="1")
        await save_env(memory_store, "prod", B="2")
        exported = await Exporter(memory_store, fixed_clock).export_environments(None, "postman-environment")
        doc = json.loads(exported.content)
        assert [d["name"] for d in doc] == ["Dev", "Prod"]
        assert exported.filename == "environments-2026-03-01.postman_environment.json"

        reparsed = get_parser("postman-environment").parse(exported.content)
        assert [e.name for e in reparsed.ir.environments] == ["dev", "prod"]

    async def test_native_environment_export(self, memory_store):
        await save_env(memory_store, "dev", "Dev", A="1")
        exported = await Exporter(memory_store, fixed_clock).export_environments(None, "native")
        reparsed = get_parser("native").parse(exported.content)
        assert reparsed.ok
        assert reparsed.ir.collection is None
        (env,) = reparsed.ir.environments
        assert (env.name, env.display_name, env.variables) == ("dev", "Dev", {"A": "1"})

    async def test_json_environment_export(self, memory_store):
        await save_env(memory_store, "dev", "Dev", A="1")
        await save_env(memory_store, "qa", "QA", B="2")
        exported = await Exporter(memory_store, fixed_clock).export_environments(None, "json-environment")
        assert exported.filename == "environments-2026-03-01.environment.json"
        assert json.loads(exported.content) == [
            {"name": "dev", "displayName": "Dev", "variables": {"A": "1"}},
            {"name": "qa", "displayName": "QA", "variables": {"B": "2"}},
        ]
        reparsed = get_parser("json-environment").parse(exported.content)
        assert [(e.name, e.variables) for e in reparsed.ir.environments] == [("dev", {"A": "1"}), ("qa", {"B": "2"})]

    async def test_selected_ids_only(self, memory_store):
        await save_env(memory_store, "dev", A="1")
        prod_id = await save_env(memory_store, "prod", B="2")
        exported = await Exporter(memory_store, fixed_clock).export_environments([prod_id], "native")
        assert [e["name"] for e in json.loads(exported.content)["environments"]] == ["prod"]

    async def test_missing_ids(self, memory_store):
        await save_env(memory_store, "dev")
        with pytest.raises(MissingExportScopeError):
            await Exporter(memory_store).export_environments(["ghost"], "env")

    async def test_nothing_to_export(self, memory_store):
        with pytest.raises(MissingExportScopeError):
            await Exporter(memory_store).export_environments(None, "env")

    async def test_collection_format_rejected(self, memory_store):
        await save_env(memory_store, "dev")
        with pytest.raises(ExportError):
            await Exporter(memory_store).export_environments(None, "postman-v2")
