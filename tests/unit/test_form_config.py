from __future__ import annotations

from docimport.models.form import FormGenerationOptions
from docimport.models.records import SourceConfig
from docimport.parsing import parse_data
from docimport.services.form_config import build_form_config, widget_for_type
from docimport.models.schema import InferredDataType
from docimport.services.schema_inference import infer_schema


def _schema(people_csv: str):
    parsed = parse_data(people_csv, SourceConfig())
    return infer_schema(parsed.headers, parsed.records)


def _build(schema, **options):
    return build_form_config(
        schema,
        FormGenerationOptions(**options),
        database="crm",
        collection="people",
        import_id="imp-1",
        source_name="people.csv",
    )


def test_widget_types():
    assert widget_for_type(InferredDataType.INTEGER) == "number"
    assert widget_for_type(InferredDataType.BOOLEAN) == "yes-no"
    assert widget_for_type(InferredDataType.ARRAY) == "checkboxes"
    assert widget_for_type(InferredDataType.OBJECT_ID) == "short-answer"


def test_all_fields_with_defaults(people_csv: str):
    form = _build(_schema(people_csv))
    assert form.name == "people Form"
    assert form.description == "Form generated from import of people.csv"
    assert form.data_source == {"database": "crm", "collection": "people"}
    assert form.generated_from == {"import_id": "imp-1", "source_file": "people.csv"}
    assert [(f.path, f.type) for f in form.field_configs] == [
        ("name", "short-answer"),
        ("email", "email"),
        ("age", "number"),
        ("active", "yes-no"),
    ]
    assert all(f.validation is None for f in form.field_configs)


def test_selection_rules(people_csv: str):
    schema = _schema(people_csv)
    required_only = _build(schema, include_all_fields=False)
    assert [f.path for f in required_only.field_configs] == ["name", "active"]

    allow = _build(schema, include_fields=["email", "age"], exclude_fields=["age"])
    assert [f.path for f in allow.field_configs] == ["email"]


def test_overrides_and_validation(people_csv: str):
    form = _build(
        _schema(people_csv),
        field_type_overrides={"name": "long-answer"},
        generate_validation=True,
        form_name="People",
    )
    by_path = {f.path: f for f in form.field_configs}
    assert form.name == "People"
    assert by_path["name"].type == "long-answer"
    assert by_path["age"].validation == {"min": 29, "max": 41}
    assert by_path["name"].validation is None
    assert form.to_dict()["field_configs"][0]["label"] == "Name"
