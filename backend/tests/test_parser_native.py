"""Tests for the native export parser and the parser registry."""

import pytest

from reqport.services.ir import AuthType, SourceFormat
from reqport.services.parsers import PARSERS, get_parser, supported_formats
from tests.fixtures import dumps, native_document, native_request


def parse(doc):
    return get_parser("native").parse(dumps(doc))


def codes(result):
    return [w.code for w in result.warnings]


class TestNativeDocument:

    def test_full_document(self):
        doc = native_document(
            folders=[
                {"id": "f2", "name": "Child", "parentId": "f1", "order": 0},
                {"id": "f1", "name": "Parent", "parentId": None, "order": 0},
            ],
            requests=[
                native_request(
                    "r1", "Create", folder_id="f2", method="POST",
                    body="{}", bodyType="json",
                    headers={"Accept": "json"}, disabledHeaders={"X-Off": "1"},
                    queryParams=[{"key": "q", "value": "1", "enabled": False}],
                    auth={"type": "bearer", "config": {"token": "T"}},
                ),
            ],
            environments=[{"name": "dev", "displayName": "Dev", "variables": {"a": "1"}}],
            collection={"id": "c1", "name": "Native", "description": "Docs"},
        )
        result = parse(doc)
        assert result.ok
        assert result.warnings == []
        ir = result.ir
        assert ir.collection.name == "Native"
        assert ir.collection.description == "Docs"

        child, parent = ir.folders
        assert child.parent_temp_id == parent.temp_id
        assert parent.parent_temp_id is None
        assert child.temp_id != "f2"

        (req,) = ir.requests
        assert req.folder_temp_id == child.temp_id
        assert req.method == "POST"
        assert req.body_type == "json"
        assert req.headers == {"Accept": "json"}
        assert req.disabled_headers == {"X-Off": "1"}
        assert [(p.key, p.enabled) for p in req.query_params] == [("q", False)]
        assert req.auth.type == AuthType.BEARER
        assert req.auth.config == {"token": "T"}

        (env,) = ir.environments
        assert (env.name, env.display_name, env.variables) == ("dev", "Dev", {"a": "1"})

    def test_environment_only_export(self):
        doc = native_document(environments=[{"name": "prod", "displayName": "Prod", "variables": {}}])
        doc["collection"] = None
        result = parse(doc)
        assert result.ok
        assert result.ir.collection is None
        assert [e.name for e in result.ir.environments] == ["prod"]

    def test_missing_version_is_a_warning(self):
        doc = native_document()
        del doc["version"]
        result = parse(doc)
        assert result.ok
        assert codes(result) == ["MISSING_VERSION"]

    def test_unsupported_major_version_is_fatal(self):
        result = parse(native_document(version="2.0"))
        assert [e.code for e in result.errors] == ["UNSUPPORTED_VERSION"]

    def test_wrong_type_is_fatal(self):
        doc = native_document()
        doc["type"] = "something-else"
        assert [e.code for e in parse(doc).errors] == ["INVALID_STRUCTURE"]

    def test_non_array_section_is_fatal(self):
        doc = native_document()
        doc["requests"] = {"r1": {}}
        assert [e.code for e in parse(doc).errors] == ["INVALID_STRUCTURE"]


class TestNativeTolerance:

    def test_orphan_references_go_to_root(self):
        doc = native_document(
            folders=[{"id": "f1", "name": "Lost", "parentId": "ghost"}],
            requests=[native_request("r1", "Stray", folder_id="nowhere")],
        )
        result = parse(doc)
        assert result.ir.folders[0].parent_temp_id is None
        assert result.ir.requests[0].folder_temp_id is None
        assert codes(result) == ["ORPHANED_REFERENCE", "ORPHANED_REFERENCE"]

    def test_items_without_collection_get_one(self):
        doc = native_document(requests=[native_request("r1", "Solo")])
        doc["collection"] = None
        result = parse(doc)
        assert result.ir.collection.name == "Imported Collection"
        assert codes(result) == ["MISSING_COLLECTION"]

    def test_unknown_body_and_auth_types(self):
        doc = native_document(requests=[
            native_request("r1", "Odd", body="x", bodyType="graphql", auth={"type": "hawk"}),
        ])
        result = parse(doc)
        req = result.ir.requests[0]
        assert req.body_type == "text"
        assert req.auth.type == AuthType.NONE
        assert codes(result) == ["UNSUPPORTED_BODY", "AUTH_DOWNGRADED"]

    def test_query_params_that_are_not_a_list(self):
        doc = native_document(requests=[native_request("r1", "Odd", queryParams=5)])
        result = parse(doc)
        assert result.ir.requests[0].query_params == []
        assert codes(result) == ["MALFORMED_ITEM"]

    def test_query_param_with_list_key(self):
        doc = native_document(requests=[
            native_request("r1", "Odd", queryParams=[{"key": ["a"], "value": "1"}, {"key": "b", "value": "2"}]),
        ])
        result = parse(doc)
        assert [p.key for p in result.ir.requests[0].query_params] == ["b"]
        assert codes(result) == ["MALFORMED_ITEM"]


class TestRegistry:

    def test_every_format_has_a_parser(self):
        assert set(PARSERS) == set(SourceFormat)

    def test_unknown_format_raises(self):
        with pytest.raises(ValueError):
            get_parser("insomnia")

    def test_supported_formats_lists_extensions(self):
        formats = {f["name"]: f for f in supported_formats()}
        assert formats["env"]["file_extensions"] == [".env"]
        assert formats["postman-v2"]["file_extensions"] == [".json"]
        assert formats["native"]["display_name"] == "Reqport Export"
