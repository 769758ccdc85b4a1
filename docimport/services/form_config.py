from __future__ import annotations

from typing import Any

from ..models.form import FieldConfig, FormGenerationOptions, GeneratedFormConfig
from ..models.schema import NUMERIC_TYPES, InferredDataType, InferredField, InferredSchema

"""Form configuration derivation from an inferred schema.

Pure: the caller (ImportService.generate_form_config) persists the result.
"""

__all__ = [
    "FORM_WIDGET_TYPES",
    "widget_for_type",
    "build_form_config",
]

FORM_WIDGET_TYPES: dict[InferredDataType, str] = {
    InferredDataType.STRING: "short-answer",
    InferredDataType.NUMBER: "number",
    InferredDataType.INTEGER: "number",
    InferredDataType.DECIMAL: "number",
    InferredDataType.BOOLEAN: "yes-no",
    InferredDataType.DATE: "date",
    InferredDataType.DATETIME: "datetime",
    InferredDataType.TIME: "time",
    InferredDataType.EMAIL: "email",
    InferredDataType.URL: "url",
    InferredDataType.PHONE: "phone",
    InferredDataType.OBJECT_ID: "short-answer",
    InferredDataType.ARRAY: "checkboxes",
    InferredDataType.OBJECT: "long-answer",
    InferredDataType.NULL: "short-answer",
    InferredDataType.MIXED: "short-answer",
}


def widget_for_type(inferred_type: InferredDataType) -> str:
    return FORM_WIDGET_TYPES.get(inferred_type, "short-answer")


def _validation_for(field: InferredField) -> dict[str, Any] | None:
    sv = field.suggested_validation
    if sv is None:
        return None
    out: dict[str, Any] = {}
    if field.inferred_type in NUMERIC_TYPES:
        if sv.min is not None:
            out["min"] = sv.min
        if sv.max is not None:
            out["max"] = sv.max
    if sv.options:
        out["options"] = list(sv.options)
    return out or None


def _is_selected(field: InferredField, options: FormGenerationOptions) -> bool:
    if options.include_fields is not None and field.original_name not in options.include_fields:
        return False
    if field.original_name in options.exclude_fields:
        return False
    if not options.include_all_fields and not field.is_required:
        return False
    return True


def build_form_config(
    schema: InferredSchema,
    options: FormGenerationOptions,
    *,
    database: str,
    collection: str,
    import_id: str,
    source_name: str,
) -> GeneratedFormConfig:
    """Map each selected inferred field to a form field widget.

    include_fields / exclude_fields are matched against the original column
    names; field_type_overrides are keyed by original name too.
    """
    field_configs: list[FieldConfig] = []
    for f in schema.fields:
        if not _is_selected(f, options):
            continue
        widget = options.field_type_overrides.get(f.original_name) or widget_for_type(f.inferred_type)
        field_configs.append(
            FieldConfig(
                path=f.suggested_path,
                label=f.suggested_label,
                type=widget,
                included=True,
                required=f.is_required,
                source="schema",
                validation=_validation_for(f) if options.generate_validation else None,
            )
        )

    return GeneratedFormConfig(
        name=options.form_name or f"{collection} Form",
        description=options.form_description or f"Form generated from import of {source_name}",
        collection=collection,
        database=database,
        field_configs=field_configs,
        data_source={"database": database, "collection": collection},
        generated_from={"import_id": import_id, "source_file": source_name},
    )
