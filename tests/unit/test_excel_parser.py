from __future__ import annotations

import io

import pandas as pd

from docimport.models.records import SourceConfig
from docimport.parsing.excel import parse_excel


def _workbook(sheets: dict[str, pd.DataFrame], header: bool = True) -> bytes:
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        for name, df in sheets.items():
            df.to_excel(writer, sheet_name=name, index=False, header=header)
    return buf.getvalue()


def test_first_sheet_is_read_with_header(xlsx_bytes: bytes):
    result = parse_excel(xlsx_bytes, SourceConfig())
    assert result.errors == []
    assert result.headers == ["name", "age", "joined"]
    assert result.total_rows == 2
    first = result.records[0]
    assert first.row_number == 2
    assert first.data["name"] == "Alice"
    assert first.data["age"] == 30
    assert isinstance(first.data["age"], int)


def test_sheet_selection_by_name_and_index():
    content = _workbook({
        "First": pd.DataFrame({"a": [1]}),
        "Second": pd.DataFrame({"b": ["x", "y"]}),
    })
    by_name = parse_excel(content, SourceConfig(sheet_name="Second"))
    assert by_name.headers == ["b"]
    assert [r.data["b"] for r in by_name.records] == ["x", "y"]

    by_index = parse_excel(content, SourceConfig(sheet_index=1))
    assert by_index.headers == ["b"]

    missing = parse_excel(content, SourceConfig(sheet_name="Nope"))
    assert missing.errors[0].message == 'Sheet "Nope" not found'
    out_of_range = parse_excel(content, SourceConfig(sheet_index=5))
    assert out_of_range.errors and out_of_range.records == []


def test_empty_cells_become_empty_strings_and_duplicates_are_renamed():
    df = pd.DataFrame([["col", "col"], ["a", None], ["b", "x"]])
    result = parse_excel(_workbook({"S": df}, header=False), SourceConfig())
    assert result.headers == ["col", "col_2"]
    assert result.records[0].data == {"col": "a", "col_2": ""}
    assert len(result.warnings) == 1


def test_max_rows_and_corrupt_content(xlsx_bytes: bytes):
    capped = parse_excel(xlsx_bytes, SourceConfig(), max_rows=1)
    assert len(capped.records) == 1
    assert capped.total_rows == 2

    broken = parse_excel(b"PK\x03\x04 not really a zip", SourceConfig())
    assert broken.records == []
    assert broken.errors[0].message.startswith("Unable to read spreadsheet")
