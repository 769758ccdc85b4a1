"""Format parsers: raw upload content -> ParseResult.

Parsers never raise for malformed content; problems are reported through
``ParseResult.errors`` / ``ParseResult.warnings``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from typing import Any

from ..models.records import ParseError, ParseResult, SourceConfig, SourceFormat
from .delimited import dedupe_headers, parse_delimited
from .detect import detect_delimiter, detect_format
from .excel import parse_excel
from .json_reader import parse_json, parse_jsonl

__all__ = [
    "detect_format",
    "detect_delimiter",
    "dedupe_headers",
    "parse_data",
    "parse_content",
    "get_preview",
]


def parse_data(
    text: str,
    config: SourceConfig,
    *,
    max_rows: int | None = None,
    on_progress: Callable[[int, int], None] | None = None,
) -> ParseResult:
    """Parse decoded text according to config.format (detected when unset)."""
    fmt = config.format or detect_format(text)

    if fmt is SourceFormat.JSON:
        return parse_json(text, config, max_rows=max_rows)
    if fmt is SourceFormat.JSONL:
        return parse_jsonl(text, config, max_rows=max_rows)
    if fmt.is_spreadsheet:
        result = ParseResult()
        result.errors.append(ParseError(0, f"{fmt.value} content must be provided as bytes"))
        return result

    if config.delimiter:
        delimiter = config.delimiter
    elif fmt is SourceFormat.TSV:
        delimiter = "\t"
    else:
        delimiter = detect_delimiter(text)
    return parse_delimited(text, config, delimiter=delimiter, max_rows=max_rows, on_progress=on_progress)


def parse_content(
    content: str | bytes,
    config: SourceConfig,
    *,
    mime_type: str | None = None,
    max_rows: int | None = None,
    on_progress: Callable[[int, int], None] | None = None,
) -> ParseResult:
    """Parse text or binary content.

    Spreadsheets are routed to the Excel reader; text formats are decoded with
    config.encoding (undecodable bytes are replaced and reported as a warning).
    """
    fmt = config.format or detect_format(content, mime_type)

    if fmt.is_spreadsheet:
        if isinstance(content, str):
            result = ParseResult()
            result.errors.append(ParseError(0, f"{fmt.value} content must be provided as bytes"))
            return result
        return parse_excel(content, config, max_rows=max_rows)

    encoding_warning: str | None = None
    if isinstance(content, bytes):
        try:
            text = content.decode(config.encoding)
        except UnicodeDecodeError as e:
            text = content.decode(config.encoding, errors="replace")
            encoding_warning = f"Content is not valid {config.encoding} (offset {e.start}); invalid bytes replaced"
    else:
        text = content

    resolved = config if config.format is fmt else replace(config, format=fmt)
    result = parse_data(text, resolved, max_rows=max_rows, on_progress=on_progress)
    if encoding_warning:
        result.warnings.insert(0, encoding_warning)
    return result


def get_preview(result: ParseResult, max_rows: int = 10) -> dict[str, Any]:
    """First ``max_rows`` records as plain dicts, for display."""
    return {
        "headers": list(result.headers),
        "rows": [dict(r.data) for r in result.records[:max_rows]],
        "total_rows": result.total_rows,
    }
