from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

"""Parser-side models: source format configuration and parse results.

ParsedRecord / ParseResult are ephemeral. They live only for the duration of a
phase call and are never written to the job store. SourceConfig is persisted
as part of the job descriptor.
"""

__all__ = [
    "SourceFormat",
    "SourceConfig",
    "ParsedRecord",
    "ParseError",
    "ParseResult",
]


class SourceFormat(str, Enum):
    """Supported input formats."""
    CSV = "csv"
    TSV = "tsv"
    JSON = "json"
    JSONL = "jsonl"
    XLSX = "xlsx"
    XLS = "xls"

    @property
    def is_spreadsheet(self) -> bool:
        return self in (SourceFormat.XLSX, SourceFormat.XLS)


@dataclass(frozen=True)
class SourceConfig:
    """How to read the source file.

    format が None の場合は analyze 時に内容から判定する。
    delimiter が None の場合 (csv) は先頭行から多数決で判定する。
    """
    format: SourceFormat | None = None
    delimiter: str | None = None  # ',', '\t', ';', '|' or any single char
    has_header: bool = True
    skip_rows: int = 0
    encoding: str = "utf-8"
    sheet_name: str | None = None  # spreadsheet only
    sheet_index: int | None = None  # spreadsheet only
    root_path: str | None = None  # JSON only: dot path to the record array

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": self.format.value if self.format else None,
            "delimiter": self.delimiter,
            "has_header": self.has_header,
            "skip_rows": self.skip_rows,
            "encoding": self.encoding,
            "sheet_name": self.sheet_name,
            "sheet_index": self.sheet_index,
            "root_path": self.root_path,
        }

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> SourceConfig:
        data = data or {}
        fmt = data.get("format")
        return SourceConfig(
            format=SourceFormat(fmt) if fmt else None,
            delimiter=data.get("delimiter"),
            has_header=data.get("has_header", True),
            skip_rows=data.get("skip_rows", 0) or 0,
            encoding=data.get("encoding") or "utf-8",
            sheet_name=data.get("sheet_name"),
            sheet_index=data.get("sheet_index"),
            root_path=data.get("root_path"),
        )


@dataclass(frozen=True)
class ParsedRecord:
    """One source row.

    row_number is 1-based and stable for a given input: the physical line (or
    sheet row) where the record starts, or the element position for JSON arrays.
    """
    row_number: int
    data: dict[str, Any]  # column -> raw value, header order
    raw_line: str | None = None


@dataclass(frozen=True)
class ParseError:
    """Row-scoped parse failure. row_number=0 means the whole input."""
    row_number: int
    message: str
    raw_line: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"row_number": self.row_number, "message": self.message, "raw_line": self.raw_line}


@dataclass
class ParseResult:
    """Uniform parser output across formats.

    A zero-record result with populated errors is a valid return value; parsers
    never raise for malformed content.
    """
    headers: list[str] = field(default_factory=list)
    records: list[ParsedRecord] = field(default_factory=list)
    total_rows: int = 0  # 打ち切り前の総行数 ("sampled N of M" 表示用)
    errors: list[ParseError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
