from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

"""Row error models.

ImportRowError is the in-job representation of a row-scoped failure (parse,
transform or store write). It is data, never raised: errors are aggregated and
the retained list on the job is capped.

ErrorRecord is the fixed-key JSON Lines shape written to the optional full
error log. row=-1 marks job-level errors where no row applies.
"""

__all__ = [
    "ErrorCode",
    "ImportRowError",
    "ErrorRecord",
]


class ErrorCode(str, Enum):
    TYPE_MISMATCH = "TYPE_MISMATCH"
    REQUIRED_MISSING = "REQUIRED_MISSING"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    DUPLICATE = "DUPLICATE"
    TRANSFORM_FAILED = "TRANSFORM_FAILED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ImportRowError:
    row_number: int  # 0 = not tied to a row (config / connectivity)
    error: str
    error_code: ErrorCode
    column: str | None = None
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_number": self.row_number,
            "column": self.column,
            "value": _json_safe(self.value),
            "error": self.error,
            "error_code": self.error_code.value,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ImportRowError:
        return ImportRowError(
            row_number=data["row_number"],
            error=data["error"],
            error_code=ErrorCode(data["error_code"]),
            column=data.get("column"),
            value=data.get("value"),
        )


def _json_safe(value: Any) -> Any:
    # 生値は任意型 (datetime 等) のため JSON 化できない値は文字列化
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


@dataclass(frozen=True)
class ErrorRecord:
    """One line of the JSON Lines error log.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        import_id: Job the error belongs to
        row: Source row number (1-based). -1 for job-level errors
        column: Source column, empty string when not column scoped
        error_type: ErrorCode value (UPPER_SNAKE_CASE)
        message: Human readable description
    """
    timestamp: str
    import_id: str
    row: int
    column: str
    error_type: str
    message: str

    @staticmethod
    def create(import_id: str, row: int, column: str | None, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            import_id=import_id,
            row=row,
            column=column or "",
            error_type=error_type,
            message=message,
        )

    @staticmethod
    def from_row_error(import_id: str, err: ImportRowError) -> ErrorRecord:
        return ErrorRecord.create(
            import_id=import_id,
            row=err.row_number if err.row_number > 0 else -1,
            column=err.column,
            error_type=err.error_code.value,
            message=err.error,
        )

    def to_json_line(self) -> str:
        # 追加キー阻止: dataclass -> dict して json.dumps
        return json.dumps(asdict(self), ensure_ascii=False)
