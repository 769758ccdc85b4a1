from __future__ import annotations

from docimport.models.records import SourceConfig
from docimport.parsing.delimited import dedupe_headers, parse_delimited, tokenize


def test_duplicate_headers_are_suffixed_with_one_warning():
    result = parse_delimited("Email,Email\na@x.io,b@x.io\n", SourceConfig())
    assert result.headers == ["Email", "Email_2"]
    assert len(result.warnings) == 1
    assert result.records[0].data == {"Email": "a@x.io", "Email_2": "b@x.io"}


def test_dedupe_headers_blank_and_collisions():
    headers, warnings = dedupe_headers(["a", "", "a", "a_2", "a"])
    assert headers == ["a", "column_2", "a_2", "a_2_2", "a_3"]
    assert len(warnings) == 4
    assert len(set(headers)) == len(headers)


def test_short_and_long_rows_are_padded_and_truncated():
    result = parse_delimited("a,b,c\n1,2\n4,5,6,7\n", SourceConfig())
    assert [r.data for r in result.records] == [
        {"a": "1", "b": "2", "c": ""},
        {"a": "4", "b": "5", "c": "6"},
    ]
    assert result.warnings == [
        "Row 2: fewer columns than headers, padded with empty values",
        "Row 3: more columns than headers, extra values ignored",
    ]
    assert all(len(r.data) == len(result.headers) for r in result.records)


def test_quoted_fields_with_delimiters_quotes_and_newlines():
    content = 'name,note\n"Smith, J","He said ""hi"""\n"Alice","line1\nline2"\nBob,x\n'
    result = parse_delimited(content, SourceConfig())
    assert [r.data["name"] for r in result.records] == ["Smith, J", "Alice", "Bob"]
    assert result.records[0].data["note"] == 'He said "hi"'
    assert result.records[1].data["note"] == "line1\nline2"
    # 物理行番号: 複数行レコードの後も正しく進む
    assert [r.row_number for r in result.records] == [2, 3, 5]


def test_crlf_and_blank_lines():
    result = parse_delimited("a,b\r\n1,2\r\n\r\n3,4\r\n", SourceConfig())
    assert [r.data for r in result.records] == [{"a": "1", "b": "2"}, {"a": "3", "b": "4"}]
    assert [r.row_number for r in result.records] == [2, 4]


def test_fields_are_trimmed():
    result = parse_delimited(" name , age \n  Alice ,  30 \n", SourceConfig())
    assert result.headers == ["name", "age"]
    assert result.records[0].data == {"name": "Alice", "age": "30"}


def test_skip_rows_and_no_header():
    result = parse_delimited("report v1\nname\nx\n", SourceConfig(skip_rows=1))
    assert result.headers == ["name"]
    assert result.records[0].row_number == 3

    result = parse_delimited("1,2\n3,4", SourceConfig(has_header=False))
    assert result.headers == ["column_1", "column_2"]
    assert [r.row_number for r in result.records] == [1, 2]
    assert result.records[1].data == {"column_1": "3", "column_2": "4"}


def test_empty_content_and_everything_skipped():
    assert parse_delimited("", SourceConfig()).warnings == ["File is empty"]
    result = parse_delimited("a\n", SourceConfig(skip_rows=5))
    assert result.warnings == ["No data rows found after skipping"]
    assert result.records == []


def test_max_rows_keeps_total_count_and_reports_progress():
    calls: list[tuple[int, int]] = []
    content = "n\n" + "\n".join(str(i) for i in range(10))
    result = parse_delimited(content, SourceConfig(), max_rows=3, on_progress=lambda done, total: calls.append((done, total)))
    assert len(result.records) == 3
    assert result.total_rows == 10
    assert calls == [(1, 10), (2, 10), (3, 10)]


def test_custom_delimiter_and_raw_line():
    result = parse_delimited("a;b\n1;2\n", SourceConfig(), delimiter=";")
    assert result.records[0].data == {"a": "1", "b": "2"}
    assert result.records[0].raw_line == "1;2"


def test_tokenize_reports_start_line():
    rows = list(tokenize('x\n"a\nb"\nc\n', ","))
    assert [(line, fields) for line, fields, _ in rows] == [(1, ["x"]), (2, ["a\nb"]), (4, ["c"])]
