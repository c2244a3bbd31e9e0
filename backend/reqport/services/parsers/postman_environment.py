"""
Postman Environment parser: a single environment object or an array of them.
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

DEFAULT_ENVIRONMENT_NAME = "Imported Postman Environment"


class PostmanEnvironmentParser(ImportParser):
    format = SourceFormat.POSTMAN_ENVIRONMENT
    display_name = "Postman Environment"

    def _parse(self, content: str, filename: str | None, ctx: ParseContext) -> None:
        data = load_json(content)
        if isinstance(data, dict):
            documents = [data]
        elif isinstance(data, list):
            documents = data
        else:
            raise UnparseableDocument("INVALID_STRUCTURE", "Expected an environment object or an array of them")

        if not any(isinstance(d, dict) and isinstance(d.get("values"), list) for d in documents):
            raise UnparseableDocument("INVALID_STRUCTURE", "No environment with a 'values' array was found")

        for index, env_data in enumerate(documents):
            env = self._parse_environment(env_data, index, ctx)
            if env:
                ctx.ir.environments.append(env)

    @staticmethod
    def _parse_environment(env_data: Any, index: int, ctx: ParseContext) -> CanonicalEnvironment | None:
        if not isinstance(env_data, dict) or not isinstance(env_data.get("values"), list):
            ctx.warn("MALFORMED_ITEM", f"Environment #{index + 1} has no 'values' array and was skipped")
            return None

        display_name = as_text(env_data.get("name")).strip() or DEFAULT_ENVIRONMENT_NAME
        variables: dict[str, str] = {}
        for item in env_data["values"]:
            if not isinstance(item, dict) or not item.get("key"):
                ctx.warn("MALFORMED_ITEM", f'An entry in "{display_name}" has no key and was skipped', display_name)
                continue
            if item.get("enabled") is False:
                ctx.disabled_count += 1
                continue
            variables[as_text(item["key"])] = as_text(item.get("value"))

        return CanonicalEnvironment(
            name=environment_key(display_name, default="imported_postman_environment"),
            display_name=display_name,
            variables=variables,
        )
