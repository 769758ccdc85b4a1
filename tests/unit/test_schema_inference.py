from __future__ import annotations

from datetime import date, datetime

import pytest

from docimport.models.mapping import (
    ColumnAction,
    ColumnMapping,
    ImportMappingConfig,
    NullIfEmpty,
    ParseBoolean,
    ParseNumber,
    SplitTarget,
    StaticField,
    Trim,
)
from docimport.models.records import ParsedRecord, SourceConfig
from docimport.models.schema import InferredDataType as T
from docimport.parsing import parse_data
from docimport.services.schema_inference import (
    generate_default_mappings,
    infer_schema,
    infer_value_type,
    to_field_path,
    to_label,
    validate_mappings,
)


def _records(column: str, values: list) -> list[ParsedRecord]:
    return [ParsedRecord(row_number=i + 2, data={column: v}) for i, v in enumerate(values)]


@pytest.mark.parametrize(
    "value, expected",
    [
        ("", T.NULL),
        ("   ", T.NULL),
        (None, T.NULL),
        ("yes", T.BOOLEAN),
        ("N", T.BOOLEAN),
        ("507f1f77bcf86cd799439011", T.OBJECT_ID),
        ("ada@example.com", T.EMAIL),
        ("https://example.com/a?b=1", T.URL),
        ("555-123-4567", T.PHONE),
        ("2024-01-05T10:00:00Z", T.DATETIME),
        ("2024-01-05", T.DATE),
        ("01/05/2024", T.DATE),
        ("05.01.2024", T.DATE),
        ("10:30", T.TIME),
        ("9:15 PM", T.TIME),
        ("42", T.INTEGER),
        ("-7", T.INTEGER),
        ("4.25", T.DECIMAL),
        ("$1,200.50", T.DECIMAL),
        ("1,200", T.DECIMAL),
        ("15%", T.DECIMAL),
        ("1e3", T.INTEGER),
        ("hello world", T.STRING),
        (True, T.BOOLEAN),
        (3, T.INTEGER),
        (2.0, T.INTEGER),
        (2.5, T.DECIMAL),
        ([1, 2], T.ARRAY),
        ({"a": 1}, T.OBJECT),
        (datetime(2024, 1, 5, 10, 0), T.DATETIME),
        (date(2024, 1, 5), T.DATE),
    ],
)
def test_infer_value_type(value, expected):
    assert infer_value_type(value) is expected


def test_infer_schema_people(people_csv: str):
    parsed = parse_data(people_csv, SourceConfig())
    schema = infer_schema(parsed.headers, parsed.records)

    by_name = {f.original_name: f for f in schema.fields}
    assert [f.original_name for f in schema.fields] == ["name", "email", "age", "active"]
    assert by_name["name"].inferred_type is T.STRING
    assert by_name["name"].is_required and by_name["name"].is_unique
    assert by_name["email"].inferred_type is T.EMAIL
    assert by_name["email"].is_required is False
    assert by_name["email"].stats.null_count == 1
    assert by_name["age"].inferred_type is T.INTEGER
    assert by_name["age"].stats.min_value == 29
    assert by_name["age"].stats.max_value == 41
    assert by_name["active"].inferred_type is T.BOOLEAN
    assert schema.sample_size == 5
    assert schema.total_records == 5
    assert schema.suggested_collection == "names"

    for f in schema.fields:
        assert sum(f.type_breakdown.values()) == f.stats.total_values
        assert 0.0 <= f.confidence <= 1.0
        assert set(f.type_breakdown) == {t.value for t in T}


def test_numeric_subtypes_are_pooled():
    schema = infer_schema(["n"], _records("n", ["1", "2.5", "3"]))
    field = schema.fields[0]
    assert field.inferred_type is T.DECIMAL
    assert field.confidence == 1.0
    assert schema.warnings == []


def test_mixed_and_empty_column_warnings():
    schema = infer_schema(["m"], _records("m", ["1", "x", "2", "z"]))
    assert [w.type for w in schema.warnings] == ["mixed_types"]
    assert schema.warnings[0].severity == "warning"

    empty = infer_schema(["e"], _records("e", ["", "", ""]))
    assert [(w.type, w.severity) for w in empty.warnings] == [("empty_column", "info")]
    assert empty.fields[0].confidence == 0.0
    assert empty.fields[0].is_required is False


def test_low_cardinality_columns_get_options_in_first_seen_order():
    values = ["open", "closed"] * 5
    field = infer_schema(["status"], _records("status", values)).fields[0]
    assert field.suggested_validation is not None
    assert field.suggested_validation.options == ["open", "closed"]


def test_sample_size_limits_inspected_records():
    records = _records("n", [str(i) for i in range(50)])
    schema = infer_schema(["n"], records, sample_size=10)
    assert schema.sample_size == 10
    assert schema.total_records == 50
    assert schema.fields[0].stats.total_values == 10


def test_suggested_paths_are_unique_and_labels_readable():
    headers = ["First Name", "first_name", "!!!"]
    records = [ParsedRecord(row_number=2, data={h: "x" for h in headers})]
    schema = infer_schema(headers, records, suggested_collection="people")
    assert [f.suggested_path for f in schema.fields] == ["first_name", "first_name_2", "field_3"]
    assert schema.suggested_collection == "people"
    assert to_field_path("Order ID#") == "order_id"
    assert to_label("firstName") == "First Name"
    assert to_label("first_name") == "First Name"


def test_generate_default_mappings(people_csv: str):
    parsed = parse_data(people_csv, SourceConfig())
    mappings = {m.source_column: m for m in generate_default_mappings(infer_schema(parsed.headers, parsed.records))}

    assert mappings["name"].transforms == [Trim(), NullIfEmpty()]
    assert mappings["name"].required is True
    assert mappings["name"].skip_if_empty is False
    assert mappings["age"].transforms == [ParseNumber(), NullIfEmpty()]
    assert mappings["age"].skip_if_empty is True
    assert mappings["age"].target_type == "number"
    assert isinstance(mappings["active"].transforms[0], ParseBoolean)
    assert mappings["email"].target_type == "email"
    assert all(m.action is ColumnAction.IMPORT for m in mappings.values())


def _schema(people_csv: str):
    parsed = parse_data(people_csv, SourceConfig())
    return infer_schema(parsed.headers, parsed.records)


def test_validate_mappings_reports_structural_errors(people_csv: str):
    config = ImportMappingConfig(
        mappings=[
            ColumnMapping("name", target_path="person"),
            ColumnMapping("missing"),
            ColumnMapping("email", target_path="person"),
            ColumnMapping("age", action=ColumnAction.MERGE, merge_with=["nope"]),
            ColumnMapping("active", action=ColumnAction.SPLIT, split_into=[SplitTarget("x", "(unclosed")]),
        ],
        duplicate_key=["not_there"],
    )
    errors, _ = validate_mappings(config, _schema(people_csv))
    assert 'Source column "missing" not found in data' in errors
    assert 'Merge column "nope" not found in data' in errors
    assert any(e.startswith('Invalid split pattern for "x"') for e in errors)
    assert "Duplicate target paths: person" in errors
    assert 'Duplicate key "not_there" is not produced by a column mapping' in errors


def test_validate_mappings_warnings(people_csv: str):
    config = ImportMappingConfig(
        mappings=[ColumnMapping("email"), ColumnMapping("age")],
        skip_duplicates=True,
        static_fields=[StaticField("source", "csv")],
    )
    errors, warnings = validate_mappings(config, _schema(people_csv))
    assert errors == []
    assert any("duplicate_key is empty" in w for w in warnings)
    # name / active は全行に値があるのに取り込まれない
    assert sum("is not imported" in w for w in warnings) == 2


def test_validate_mappings_accepts_defaults(people_csv: str):
    schema = _schema(people_csv)
    config = ImportMappingConfig(mappings=generate_default_mappings(schema), skip_duplicates=True, duplicate_key=["email"])
    assert validate_mappings(config, schema) == ([], [])
