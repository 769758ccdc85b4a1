from __future__ import annotations

from collections.abc import Callable, Iterator

from ..models.records import ParsedRecord, ParseResult, SourceConfig

"""Delimited text (CSV / TSV / custom single-char delimiter) parser.

Tokenizer states are {unquoted, quoted}:
- ``"`` toggles the state
- ``""`` inside quotes is one literal quote
- the delimiter only splits fields while unquoted
- a line break inside quotes belongs to the field (record spans lines)

Ingestion is best-effort: column-count mismatches are padded / truncated with
a warning, never rejected.
"""

__all__ = [
    "parse_delimited",
    "dedupe_headers",
    "tokenize",
]


def tokenize(content: str, delimiter: str) -> Iterator[tuple[int, list[str], str]]:
    """Yield ``(line_number, fields, raw_text)`` for every non-blank record.

    line_number is the 1-based physical line where the record starts. Fields are
    whitespace-trimmed.
    """
    n = len(content)
    i = 0
    line_no = 1
    start_line = 1
    raw_start = 0
    in_quotes = False
    fields: list[str] = []
    current: list[str] = []

    while i < n:
        ch = content[i]
        if in_quotes:
            if ch == '"':
                if i + 1 < n and content[i + 1] == '"':
                    current.append('"')
                    i += 2
                    continue
                in_quotes = False
                i += 1
                continue
            if ch == "\n":
                line_no += 1
            current.append(ch)
            i += 1
            continue

        if ch == '"':
            in_quotes = True
        elif ch == delimiter:
            fields.append("".join(current).strip())
            current = []
        elif ch in ("\r", "\n"):
            raw = content[raw_start:i]
            if ch == "\r" and i + 1 < n and content[i + 1] == "\n":
                i += 1
            fields.append("".join(current).strip())
            if raw.strip():
                yield start_line, fields, raw
            fields = []
            current = []
            line_no += 1
            start_line = line_no
            raw_start = i + 1
        else:
            current.append(ch)
        i += 1

    raw = content[raw_start:]
    if raw.strip():
        fields.append("".join(current).strip())
        yield start_line, fields, raw


def dedupe_headers(names: list[str]) -> tuple[list[str], list[str]]:
    """Disambiguate header names in order of appearance.

    Blank names become ``column_<position>``; repeats become ``name_2``,
    ``name_3``... Every rename produces one warning.

    Returns:
        (headers, warnings)
    """
    headers: list[str] = []
    warnings: list[str] = []
    used: set[str] = set()
    seen_count: dict[str, int] = {}

    for position, raw in enumerate(names, start=1):
        name = str(raw).strip() if raw is not None else ""
        if not name:
            candidate = f"column_{position}"
            while candidate in used:
                candidate = f"{candidate}_"
            warnings.append(f"Blank header at position {position} renamed to \"{candidate}\"")
            headers.append(candidate)
            used.add(candidate)
            continue

        if name in seen_count or name in used:
            count = seen_count.get(name, 1) + 1
            candidate = f"{name}_{count}"
            while candidate in used:
                count += 1
                candidate = f"{name}_{count}"
            seen_count[name] = count
            warnings.append(f"Duplicate header \"{name}\" renamed to \"{candidate}\"")
            headers.append(candidate)
            used.add(candidate)
            continue

        seen_count[name] = 1
        headers.append(name)
        used.add(name)

    return headers, warnings


def parse_delimited(
    content: str,
    config: SourceConfig,
    *,
    delimiter: str = ",",
    max_rows: int | None = None,
    on_progress: Callable[[int, int], None] | None = None,
) -> ParseResult:
    """Parse delimited text into headers + records.

    Parameters
    ----------
    content: decoded file text
    config: source config (has_header / skip_rows are honoured here)
    delimiter: resolved single-character delimiter
    max_rows: cap on returned records; total_rows still counts every data row
    on_progress: called as (records_parsed, total_rows)
    """
    result = ParseResult()
    rows = list(tokenize(content.lstrip("﻿"), delimiter))

    if not rows:
        result.warnings.append("File is empty")
        return result

    rows = rows[config.skip_rows:]
    if not rows:
        result.warnings.append("No data rows found after skipping")
        return result

    if config.has_header:
        result.headers, rename_warnings = dedupe_headers(rows[0][1])
        result.warnings.extend(rename_warnings)
        data_rows = rows[1:]
    else:
        result.headers = [f"column_{i + 1}" for i in range(len(rows[0][1]))]
        data_rows = rows

    result.total_rows = len(data_rows)
    width = len(result.headers)
    limit = result.total_rows if max_rows is None else max_rows

    for row_number, values, raw in data_rows[:limit]:
        if len(values) < width:
            values = values + [""] * (width - len(values))
            result.warnings.append(f"Row {row_number}: fewer columns than headers, padded with empty values")
        elif len(values) > width:
            values = values[:width]
            result.warnings.append(f"Row {row_number}: more columns than headers, extra values ignored")

        result.records.append(
            ParsedRecord(row_number=row_number, data=dict(zip(result.headers, values)), raw_line=raw)
        )
        if on_progress is not None:
            on_progress(len(result.records), result.total_rows)

    return result
