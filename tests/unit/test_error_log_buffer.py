from __future__ import annotations

import json
import re
from pathlib import Path

from docimport.logging.error_log import ErrorLogBuffer, ErrorRecord
from docimport.models.error_record import ErrorCode, ImportRowError

RECORD_KEYS = {"timestamp", "import_id", "row", "column", "error_type", "message"}


def test_error_log_buffer_flush(temp_workdir: Path):
    buf = ErrorLogBuffer("imp-1")
    buf.append(ErrorRecord.create("imp-1", 2, "email", "REQUIRED_MISSING", "Required field \"email\" is empty"))
    buf.append(ErrorRecord.create("imp-1", 5, "age", "TRANSFORM_FAILED", "Cannot parse \"x\" as number"))
    path = buf.flush()
    assert path is not None and path.exists()
    assert path.parent == Path("logs")
    assert re.fullmatch(r"errors-imp-1-\d{8}-\d{6}\.log", path.name)
    # ファイル内容検証
    lines = path.read_text(encoding="utf-8").strip().splitlines()
    assert len(lines) == 2
    for raw in lines:
        assert set(json.loads(raw).keys()) == RECORD_KEYS
    # flush 後バッファクリア
    assert len(buf) == 0


def test_error_log_buffer_multiple_flushes(temp_workdir: Path):
    buf = ErrorLogBuffer("imp-1")
    buf.append(ErrorRecord.create("imp-1", 1, None, "UNKNOWN", "first"))
    path = buf.flush()
    size1 = path.stat().st_size
    # 再追加して再flush
    buf.append(ErrorRecord.create("imp-1", 2, None, "UNKNOWN", "second"))
    path2 = buf.flush()
    assert path == path2
    assert path2.stat().st_size > size1


def test_empty_flush_writes_nothing(temp_workdir: Path):
    buf = ErrorLogBuffer("imp-1")
    assert buf.flush() is None
    assert list(Path("logs").iterdir()) == []


def test_explicit_path_and_row_errors(tmp_path: Path):
    target = tmp_path / "nested" / "errors.jsonl"
    buf = ErrorLogBuffer("imp-9", path=target)
    buf.extend_row_errors([
        ImportRowError(row_number=4, error="dup", error_code=ErrorCode.DUPLICATE, column="email"),
        ImportRowError(row_number=0, error="down", error_code=ErrorCode.UNKNOWN),
    ])
    assert len(buf) == 2
    assert buf.flush() == target
    rows = [json.loads(line) for line in target.read_text(encoding="utf-8").splitlines()]
    assert [(r["row"], r["column"], r["error_type"]) for r in rows] == [(4, "email", "DUPLICATE"), (-1, "", "UNKNOWN")]
    assert {r["import_id"] for r in rows} == {"imp-9"}
