"""
Parser registry, keyed by source format.
"""
from reqport.services.ir import SourceFormat
from reqport.services.parsers.base import ImportParser
from reqport.services.parsers.env_file import DotenvParser
from reqport.services.parsers.json_environment import JsonEnvironmentParser
from reqport.services.parsers.native import NativeParser
from reqport.services.parsers.postman_environment import PostmanEnvironmentParser
from reqport.services.parsers.postman_v1 import PostmanV1Parser
from reqport.services.parsers.postman_v2 import PostmanV2Parser

PARSERS: dict[SourceFormat, ImportParser] = {
    parser.format: parser
    for parser in (
        PostmanV2Parser(),
        PostmanV1Parser(),
        PostmanEnvironmentParser(),
        JsonEnvironmentParser(),
        DotenvParser(),
        NativeParser(),
    )
}


def get_parser(fmt: SourceFormat | str) -> ImportParser:
    """Look up the parser for a format; raises ValueError for unknown formats."""
    return PARSERS[SourceFormat(fmt)]


def supported_formats() -> list[dict]:
    return [parser.format_info() for parser in PARSERS.values()]


__all__ = ["ImportParser", "PARSERS", "get_parser", "supported_formats"]
