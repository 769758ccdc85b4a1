from __future__ import annotations

import json

from ..models.records import SourceFormat

"""Input format / delimiter sniffing.

Both functions are pure: the same input always yields the same answer.
"""

__all__ = [
    "detect_format",
    "detect_delimiter",
]

# 同数の場合はカンマ優先、それ以外はこの順で優先
DELIMITER_PRIORITY: tuple[str, ...] = ("\t", ",", ";", "|")

_XLSX_MAGIC = b"PK\x03\x04"  # zip container (OOXML)
_XLS_MAGIC = b"\xd0\xcf\x11\xe0"  # OLE2 compound document


def _first_line(content: str) -> str:
    return content.lstrip("﻿").split("\n", 1)[0].rstrip("\r")


def detect_delimiter(content: str) -> str:
    """Vote a delimiter from its frequency in the first line.

    Priority tab > comma > semicolon > pipe; any tie involving the comma (or a
    line with no candidate at all) resolves to comma.
    """
    line = _first_line(content)
    counts = {d: line.count(d) for d in DELIMITER_PRIORITY}
    best = max(counts.values())
    if best == 0 or counts[","] == best:
        return ","
    for delimiter in DELIMITER_PRIORITY:
        if counts[delimiter] == best:
            return delimiter
    return ","  # pragma: no cover


def _is_json_lines(text: str) -> bool:
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) <= 1:
        return False
    for line in lines:
        try:
            json.loads(line)
        except ValueError:
            return False
    return True


def detect_format(content: str | bytes, mime_type: str | None = None) -> SourceFormat:
    """Detect the source format from a MIME hint or the content itself.

    Parameters
    ----------
    content: raw text, or bytes (spreadsheets are recognised by magic number)
    mime_type: optional hint from the upload layer; checked first
    """
    if mime_type:
        mime = mime_type.lower()
        if "ndjson" in mime or "jsonl" in mime or "json-seq" in mime:
            return SourceFormat.JSONL
        if "csv" in mime:
            return SourceFormat.CSV
        if mime == "text/tab-separated-values":
            return SourceFormat.TSV
        if "json" in mime:
            return SourceFormat.JSON
        if mime == "application/vnd.ms-excel":
            return SourceFormat.XLS
        if "excel" in mime or "spreadsheet" in mime:
            return SourceFormat.XLSX

    if isinstance(content, bytes):
        if content.startswith(_XLSX_MAGIC):
            return SourceFormat.XLSX
        if content.startswith(_XLS_MAGIC):
            return SourceFormat.XLS
        content = content.decode("utf-8", errors="replace")

    text = content.lstrip("﻿")
    stripped = text.strip()
    if stripped[:1] in ("[", "{"):
        return SourceFormat.JSONL if _is_json_lines(stripped) else SourceFormat.JSON

    line = _first_line(text)
    tabs = line.count("\t")
    if tabs > line.count(",") and tabs > line.count(";") and tabs > line.count("|"):
        return SourceFormat.TSV
    return SourceFormat.CSV
