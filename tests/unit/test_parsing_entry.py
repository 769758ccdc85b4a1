from __future__ import annotations

from docimport.models.records import SourceConfig, SourceFormat
from docimport.parsing import get_preview, parse_content, parse_data


def test_parse_data_autodetects_delimiter():
    result = parse_data("a;b\n1;2\n", SourceConfig())
    assert result.headers == ["a", "b"]


def test_parse_data_tsv_uses_tab_even_with_commas():
    result = parse_data("a\tb\n1,5\t2\n", SourceConfig(format=SourceFormat.TSV))
    assert result.records[0].data == {"a": "1,5", "b": "2"}


def test_parse_data_rejects_spreadsheet_text():
    result = parse_data("abc", SourceConfig(format=SourceFormat.XLSX))
    assert result.errors[0].row_number == 0
    assert "bytes" in result.errors[0].message


def test_parse_content_routes_bytes(xlsx_bytes: bytes):
    result = parse_content(xlsx_bytes, SourceConfig())
    assert result.headers == ["name", "age", "joined"]

    jsonl = parse_content(b'{"a": 1}\n{"a": 2}\n', SourceConfig())
    assert [r.data["a"] for r in jsonl.records] == [1, 2]

    hinted = parse_content(b'{"a": 1}\n{"a": 2}\n', SourceConfig(), mime_type="application/json")
    assert hinted.errors  # JSON として読むと 2 つ目の値で失敗


def test_parse_content_replaces_undecodable_bytes_with_warning():
    result = parse_content(b"name\ncaf\xe9\n", SourceConfig())
    assert result.records[0].data["name"] == "caf�"
    assert "not valid utf-8" in result.warnings[0]


def test_parse_content_honours_encoding():
    result = parse_content("name\ncafé\n".encode("latin-1"), SourceConfig(encoding="latin-1"))
    assert result.records[0].data["name"] == "café"
    assert result.warnings == []


def test_get_preview_caps_rows():
    result = parse_data("n\n1\n2\n3\n", SourceConfig())
    preview = get_preview(result, max_rows=2)
    assert preview == {"headers": ["n"], "rows": [{"n": "1"}, {"n": "2"}], "total_rows": 3}
