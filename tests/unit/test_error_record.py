from __future__ import annotations

import json
from datetime import datetime

from docimport.models.error_record import ErrorCode, ErrorRecord, ImportRowError

"""Unit tests for the row error models."""

RECORD_KEYS = {"timestamp", "import_id", "row", "column", "error_type", "message"}


def test_error_record_job_level_row():
    """row=-1 marks job-level errors."""
    rec = ErrorRecord.create(
        import_id="imp-1",
        row=-1,
        column=None,
        error_type="UNKNOWN",
        message="Failed to connect to target database: refused",
    )

    assert rec.row == -1
    assert rec.column == ""
    data = json.loads(rec.to_json_line())
    assert data["row"] == -1
    assert data["import_id"] == "imp-1"
    assert data["timestamp"].endswith("Z")
    assert set(data.keys()) == RECORD_KEYS


def test_from_row_error_keeps_row_and_column():
    err = ImportRowError(row_number=42, error="bad", error_code=ErrorCode.TRANSFORM_FAILED, column="age", value="x")
    rec = ErrorRecord.from_row_error("imp-2", err)
    assert rec.row == 42
    assert rec.column == "age"
    assert rec.error_type == "TRANSFORM_FAILED"
    assert rec.message == "bad"


def test_from_row_error_maps_row_zero_to_job_level():
    err = ImportRowError(row_number=0, error="mapping broken", error_code=ErrorCode.VALIDATION_FAILED)
    assert ErrorRecord.from_row_error("imp-3", err).row == -1


def test_row_error_dict_shape_and_json_safe_value():
    err = ImportRowError(
        row_number=3,
        error="Cannot parse",
        error_code=ErrorCode.TYPE_MISMATCH,
        column="joined",
        value=datetime(2024, 1, 5),
    )
    data = err.to_dict()
    assert data == {
        "row_number": 3,
        "column": "joined",
        "value": "2024-01-05 00:00:00",
        "error": "Cannot parse",
        "error_code": "TYPE_MISMATCH",
    }
    json.dumps(data)
    back = ImportRowError.from_dict(data)
    assert back.error_code is ErrorCode.TYPE_MISMATCH
    assert back.row_number == 3
