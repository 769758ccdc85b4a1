from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from ..models.error_record import ErrorRecord, ImportRowError

"""Row error log (JSON Lines, fixed keys).

Used by the ``log`` error strategy: every row error of a run is written, not
just the retained first N on the job record. The target file is either an
explicit path (ErrorHandling.error_log_path) or
``<logs_dir>/errors-<import_id>-YYYYMMDD-HHMMSS.log`` (UTC).
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
]

TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """In-memory buffer of ErrorRecord; flush() appends JSON Lines.

    One buffer per import run; the file path is fixed on first access.
    """

    def __init__(self, import_id: str, *, path: str | Path | None = None, logs_dir: str | Path = "./logs") -> None:
        self.import_id = import_id
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = Path(path) if path else None
        self._logs_dir = Path(logs_dir)

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"errors-{self.import_id}-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def extend_row_errors(self, errors: Iterable[ImportRowError]) -> None:
        for err in errors:
            self._records.append(ErrorRecord.from_row_error(self.import_id, err))

    def __len__(self) -> int:
        return len(self._records)

    def flush(self) -> Path | None:
        """Append buffered records; returns the file path, or None if nothing was written."""
        if not self._records:
            return None
        fp = self.file_path
        fp.parent.mkdir(parents=True, exist_ok=True)
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
