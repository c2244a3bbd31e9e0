"""
Plain JSON environment parser.

Reads ``{name, displayName, variables}`` objects, alone or in an array, as
written by desktop clients that keep environments as flat key/value maps.
"""
from typing import Any

from reqport.services.ir import CanonicalEnvironment, SourceFormat, environment_key
from reqport.services.parsers.base import (
    ImportParser,
    ParseContext,
    UnparseableDocument,
    as_text,
    load_json,
)

DEFAULT_ENVIRONMENT_NAME = "Unnamed"


def _text_field(data: dict, key: str) -> str:
    value = data.get(key)
    return value.strip() if isinstance(value, str) else ""


def is_environment_like(data: Any) -> bool:
    if not isinstance(data, dict) or not isinstance(data.get("variables"), dict):
        return False
    return isinstance(data.get("name"), str) or isinstance(data.get("displayName"), str)


class JsonEnvironmentParser(ImportParser):
    format = SourceFormat.JSON_ENVIRONMENT
    display_name = "JSON Environment"

    def _parse(self, content: str, filename: str | None, ctx: ParseContext) -> None:
        data = load_json(content)
        documents = data if isinstance(data, list) else [data]
        if not any(is_environment_like(d) for d in documents):
            raise UnparseableDocument(
                "INVALID_STRUCTURE", "Expected an environment with a name and a 'variables' object"
            )

        for index, env_data in enumerate(documents):
            if not is_environment_like(env_data):
                ctx.warn("MALFORMED_ITEM", f"Environment #{index + 1} is not an environment and was skipped")
                continue
            ctx.ir.environments.append(self._parse_environment(env_data, ctx))

    @staticmethod
    def _parse_environment(env_data: dict, ctx: ParseContext) -> CanonicalEnvironment:
        name = _text_field(env_data, "name")
        display_name = _text_field(env_data, "displayName") or name or DEFAULT_ENVIRONMENT_NAME

        variables: dict[str, str] = {}
        for key, value in env_data["variables"].items():
            if isinstance(value, (dict, list)):
                ctx.warn("MALFORMED_ITEM", f'Variable "{key}" in "{display_name}" is not a plain value', display_name)
                continue
            variables[key] = as_text(value)

        return CanonicalEnvironment(
            name=name or environment_key(display_name, default="unnamed"),
            display_name=display_name,
            variables=variables,
        )
