from __future__ import annotations

import json
from typing import Any

from ..models.records import ParsedRecord, ParseError, ParseResult, SourceConfig

"""JSON array / JSON Lines readers.

Headers are the union of keys across sampled records (first-seen order);
records missing a key get None for it, reported once as an aggregate warning.
"""

__all__ = [
    "parse_json",
    "parse_jsonl",
]


def _resolve_root(data: Any, root_path: str) -> tuple[Any, bool]:
    current = data
    for part in root_path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return None, False
    return current, True


def _finalize(result: ParseResult) -> ParseResult:
    headers: list[str] = []
    seen: set[str] = set()
    for rec in result.records:
        for key in rec.data:
            if key not in seen:
                seen.add(key)
                headers.append(key)
    result.headers = headers

    filled = 0
    normalized: list[ParsedRecord] = []
    for rec in result.records:
        if len(rec.data) < len(headers):
            filled += 1
        normalized.append(
            ParsedRecord(
                row_number=rec.row_number,
                data={h: rec.data.get(h) for h in headers},
                raw_line=rec.raw_line,
            )
        )
    result.records = normalized
    if filled:
        result.warnings.append(f"{filled} record(s) missing some fields; filled with null")
    return result


def parse_json(content: str, config: SourceConfig, *, max_rows: int | None = None) -> ParseResult:
    """Parse a JSON document whose records are an array of objects.

    config.root_path (dot path) selects a nested array. A single top-level
    object is wrapped as one record with a warning.
    """
    result = ParseResult()
    try:
        data = json.loads(content.lstrip("﻿"))
    except json.JSONDecodeError as e:
        result.errors.append(ParseError(0, f"Invalid JSON: {e.msg} (line {e.lineno}, column {e.colno})"))
        return result

    if config.root_path:
        data, found = _resolve_root(data, config.root_path)
        if not found:
            result.errors.append(ParseError(0, f"Path \"{config.root_path}\" not found in JSON"))
            return result

    if isinstance(data, dict):
        result.warnings.append("JSON contains a single object, treating it as one record")
        data = [data]
    elif not isinstance(data, list):
        result.errors.append(ParseError(0, "JSON must be an array of objects or a single object"))
        return result

    result.total_rows = len(data)
    for index, item in enumerate(data):
        if max_rows is not None and len(result.records) >= max_rows:
            break
        if isinstance(item, dict):
            result.records.append(ParsedRecord(row_number=index + 1, data=dict(item)))
        else:
            result.errors.append(
                ParseError(index + 1, f"Invalid record at index {index}: expected object, got {type(item).__name__}")
            )
    return _finalize(result)


def parse_jsonl(content: str, config: SourceConfig, *, max_rows: int | None = None) -> ParseResult:
    """Parse JSON Lines: one object per non-blank line, row_number = line number."""
    result = ParseResult()
    lines = content.lstrip("﻿").splitlines()
    result.total_rows = sum(1 for line in lines if line.strip())

    for line_no, line in enumerate(lines, start=1):
        text = line.strip()
        if not text:
            continue
        if max_rows is not None and len(result.records) >= max_rows:
            break
        try:
            item = json.loads(text)
        except json.JSONDecodeError as e:
            result.errors.append(ParseError(line_no, f"Invalid JSON: {e.msg}", raw_line=text))
            continue
        if not isinstance(item, dict):
            result.errors.append(ParseError(line_no, "Expected a JSON object", raw_line=text))
            continue
        result.records.append(ParsedRecord(row_number=line_no, data=item, raw_line=text))
    return _finalize(result)
