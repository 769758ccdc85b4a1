from __future__ import annotations

import pytest

from docimport.models.records import SourceFormat
from docimport.parsing.detect import detect_delimiter, detect_format


@pytest.mark.parametrize(
    "content, expected",
    [
        ("a;b;c\n1;2;3", ";"),
        ("a\tb\tc\n", "\t"),
        ("a|b|c", "|"),
        ("a,b,c", ","),
        ("a,b;c", ","),  # カンマとの同数はカンマ
        ("single", ","),
        ("a;b|c|d\n", "|"),
    ],
)
def test_detect_delimiter(content: str, expected: str):
    assert detect_delimiter(content) == expected


def test_detect_delimiter_uses_first_line_only():
    assert detect_delimiter("a;b\n1,2,3,4,5\n") == ";"


@pytest.mark.parametrize(
    "mime, expected",
    [
        ("application/x-ndjson", SourceFormat.JSONL),
        ("application/jsonl", SourceFormat.JSONL),
        ("text/csv", SourceFormat.CSV),
        ("text/tab-separated-values", SourceFormat.TSV),
        ("application/json", SourceFormat.JSON),
        ("application/vnd.ms-excel", SourceFormat.XLS),
        ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", SourceFormat.XLSX),
    ],
)
def test_detect_format_mime_hint_wins(mime: str, expected: SourceFormat):
    assert detect_format("whatever", mime) is expected


def test_detect_format_spreadsheet_magic_numbers():
    assert detect_format(b"PK\x03\x04rest-of-zip") is SourceFormat.XLSX
    assert detect_format(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1") is SourceFormat.XLS


def test_detect_format_json_variants():
    assert detect_format('[{"a": 1}, {"a": 2}]') is SourceFormat.JSON
    assert detect_format('{"a": 1}') is SourceFormat.JSON
    assert detect_format('{"a": 1}\n{"a": 2}\n') is SourceFormat.JSONL
    # 2 行目が壊れていれば JSON Lines ではない
    assert detect_format('{"a": 1}\n{"a": \n') is SourceFormat.JSON


def test_detect_format_text_delimited():
    assert detect_format("a\tb\tc\n1\t2\t3") is SourceFormat.TSV
    assert detect_format("a,b\tc\n") is SourceFormat.CSV
    assert detect_format(b"name,age\nAlice,30\n") is SourceFormat.CSV
    assert detect_format("") is SourceFormat.CSV
