"""
``.env`` text parser: one file, one environment.

Lines are tokenized by python-dotenv, so quoting, escapes, ``export`` prefixes
and inline comments follow the same rules as the settings loader.
"""
import io
import re
from pathlib import PurePath

from dotenv.parser import Binding, parse_stream

from reqport.services.ir import CanonicalEnvironment, SourceFormat, environment_key
from reqport.services.parsers.base import ImportParser, ParseContext, UnparseableDocument

DEFAULT_ENVIRONMENT_NAME = "Imported Environment"

VALID_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")
_NAME_HEADER = re.compile(r"^#\s*environment:\s*(.+)$", re.IGNORECASE)


def binding_line(binding: Binding) -> int:
    """1-based line of the binding itself, skipping blank lines read before it."""
    text = binding.original.string
    leading = text[: len(text) - len(text.lstrip())]
    return binding.original.line + leading.count("\n")


def is_assignment(binding: Binding) -> bool:
    return (
        not binding.error
        and binding.key is not None
        and binding.value is not None
        and VALID_KEY.match(binding.key) is not None
    )


def is_blank_or_comment(binding: Binding) -> bool:
    return not binding.error and binding.key is None


def _name_from_filename(filename: str | None) -> str | None:
    if not filename:
        return None
    base = PurePath(filename).name
    if base.lower().startswith(".env"):
        # ".env.production" -> "production"; a bare ".env" says nothing
        rest = base[4:].lstrip(".")
        return rest or None
    stem = PurePath(base).stem
    return stem or None


class DotenvParser(ImportParser):
    format = SourceFormat.DOTENV
    display_name = ".env File"
    file_extensions = (".env",)

    def _parse(self, content: str, filename: str | None, ctx: ParseContext) -> None:
        if not content.strip():
            raise UnparseableDocument("EMPTY_DOCUMENT", "The file is empty")

        header_name: str | None = None
        variables: dict[str, str] = {}

        for binding in parse_stream(io.StringIO(content)):
            if is_blank_or_comment(binding):
                header = _NAME_HEADER.match(binding.original.string.strip())
                if header and header_name is None:
                    header_name = header.group(1).strip()
                continue

            if not is_assignment(binding):
                ctx.warn(
                    "MALFORMED_LINE",
                    f"Line {binding_line(binding)} is not a KEY=VALUE assignment and was skipped",
                )
                continue

            key = binding.key
            if key in variables:
                ctx.warn("DUPLICATE_KEY", f'Key "{key}" appears more than once; the last value wins', key)
            variables[key] = binding.value

        if not variables:
            raise UnparseableDocument("INVALID_STRUCTURE", "No KEY=VALUE assignments found")

        display_name = header_name or _name_from_filename(filename) or DEFAULT_ENVIRONMENT_NAME
        ctx.ir.environments.append(
            CanonicalEnvironment(
                name=environment_key(display_name),
                display_name=display_name,
                variables=variables,
            )
        )
