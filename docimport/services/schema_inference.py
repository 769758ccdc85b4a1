from __future__ import annotations

import json
import math
import re
import statistics
from collections.abc import Sequence
from datetime import date, datetime, time
from typing import Any

from ..models.mapping import (
    DEFAULT_FALSE_VALUES,
    DEFAULT_TRUE_VALUES,
    ColumnAction,
    ColumnMapping,
    ImportMappingConfig,
    NullIfEmpty,
    ParseBoolean,
    ParseDate,
    ParseNumber,
    TransformStep,
    Trim,
)
from ..models.records import ParsedRecord
from ..models.schema import (
    NUMERIC_TYPES,
    STRING_TYPES,
    DetectedPattern,
    InferredDataType,
    InferredField,
    InferredFieldStats,
    InferredSchema,
    SchemaWarning,
    SuggestedValidation,
)
from .form_config import widget_for_type

"""Schema inference over a bounded sample of parsed records.

Pure: never touches the target store and never mutates its input.

Per-value classification cascade (first match wins):
    null -> boolean literal -> native number / list / dict -> object_id
    -> email -> url -> phone -> iso datetime -> iso date -> US/EU date -> time
    -> integer -> decimal -> currency / percentage -> other numeric -> string
"""

__all__ = [
    "infer_value_type",
    "infer_schema",
    "generate_default_mappings",
    "validate_mappings",
    "produced_paths",
    "to_field_path",
    "to_label",
]

_EMAIL = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_URL = re.compile(r"https?://\S+", re.IGNORECASE)
_PHONE = re.compile(r"\+?\(?[0-9]{3}\)?[-\s.]?[0-9]{3}[-\s.]?[0-9]{4,6}")
_OBJECT_ID = re.compile(r"[a-fA-F0-9]{24}")
_UUID = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)
_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")
_ISO_DATETIME = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")  # prefix match
_US_DATE = re.compile(r"\d{1,2}/\d{1,2}/\d{2,4}")
_EU_DATE = re.compile(r"\d{1,2}[-.]\d{1,2}[-.]\d{2,4}")
_TIME = re.compile(r"\d{1,2}:\d{2}(:\d{2})?\s*(AM|PM)?", re.IGNORECASE)
_BOOLEAN = re.compile(r"true|false|yes|no|y|n", re.IGNORECASE)
_INTEGER = re.compile(r"-?\d+")
_DECIMAL = re.compile(r"-?\d+\.\d+")
# $ 付き、または 3 桁区切りを含むもののみ (素の整数は _INTEGER で判定済み)
_CURRENCY = re.compile(r"-?\$\d+(,\d{3})*(\.\d{1,2})?|-?\$?\d{1,3}(,\d{3})+(\.\d{1,2})?")
_PERCENTAGE = re.compile(r"-?\d+(\.\d+)?%")
_NUMBER_FALLBACK = re.compile(r"[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?")
_IPV4 = re.compile(r"(\d{1,3}\.){3}\d{1,3}")
_ZIP_CODE = re.compile(r"\d{5}(-\d{4})?")

_DETECTABLE_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("email", _EMAIL),
    ("url", _URL),
    ("phone", _PHONE),
    ("object_id", _OBJECT_ID),
    ("uuid", _UUID),
    ("iso_date", _ISO_DATE),
    ("iso_datetime", _ISO_DATETIME),
    ("ipv4", _IPV4),
    ("zip_code", _ZIP_CODE),
)

PATTERN_THRESHOLD_PERCENT = 50.0
MIXED_TYPE_THRESHOLD = 0.1
MAX_OPTION_VALUES = 20
OPTION_SAMPLE_RATIO = 0.3
MAX_STRING_VALIDATION_LENGTH = 500
SAMPLE_VALUE_LIMIT = 10

# default mapping で trim を付与する型
_TRIMMED_TYPES = frozenset({
    InferredDataType.STRING,
    InferredDataType.EMAIL,
    InferredDataType.URL,
    InferredDataType.PHONE,
    InferredDataType.OBJECT_ID,
    InferredDataType.TIME,
})


def _is_null(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value.strip() == ""


def infer_value_type(value: Any) -> InferredDataType:
    """Classify a single raw value."""
    if _is_null(value):
        return InferredDataType.NULL

    if isinstance(value, bool):
        return InferredDataType.BOOLEAN
    if isinstance(value, int):
        return InferredDataType.INTEGER
    if isinstance(value, float):
        return InferredDataType.INTEGER if value.is_integer() else InferredDataType.DECIMAL
    if isinstance(value, (list, tuple)):
        return InferredDataType.ARRAY
    if isinstance(value, dict):
        return InferredDataType.OBJECT
    # spreadsheet cells arrive as native temporal values
    if isinstance(value, datetime):
        return InferredDataType.DATETIME
    if isinstance(value, date):
        return InferredDataType.DATE
    if isinstance(value, time):
        return InferredDataType.TIME

    s = str(value).strip()
    if _BOOLEAN.fullmatch(s):
        return InferredDataType.BOOLEAN
    if _OBJECT_ID.fullmatch(s):
        return InferredDataType.OBJECT_ID
    if _EMAIL.fullmatch(s):
        return InferredDataType.EMAIL
    if _URL.fullmatch(s):
        return InferredDataType.URL
    if _PHONE.fullmatch(s):
        return InferredDataType.PHONE
    if _ISO_DATETIME.match(s):
        return InferredDataType.DATETIME
    if _ISO_DATE.fullmatch(s):
        return InferredDataType.DATE
    if _US_DATE.fullmatch(s) or _EU_DATE.fullmatch(s):
        return InferredDataType.DATE
    if _TIME.fullmatch(s):
        return InferredDataType.TIME
    if _INTEGER.fullmatch(s):
        return InferredDataType.INTEGER
    if _DECIMAL.fullmatch(s):
        return InferredDataType.DECIMAL
    if _CURRENCY.fullmatch(s) or _PERCENTAGE.fullmatch(s):
        return InferredDataType.DECIMAL

    cleaned = s.replace("$", "").replace(",", "")
    if _NUMBER_FALLBACK.fullmatch(cleaned):
        return InferredDataType.INTEGER if float(cleaned).is_integer() else InferredDataType.DECIMAL
    return InferredDataType.STRING


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if isinstance(value, float) and math.isnan(value) else float(value)
    cleaned = str(value).strip().replace("$", "").replace(",", "").rstrip("%")
    try:
        return float(cleaned)
    except ValueError:
        return None


def _unique_key(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str, ensure_ascii=False)


def _calculate_stats(values: list[Any], inferred_type: InferredDataType) -> tuple[InferredFieldStats, list[Any]]:
    """Return (stats, all unique non-null values in first-seen order)."""
    non_null = [v for v in values if not _is_null(v)]
    uniques: dict[str, Any] = {}
    for v in non_null:
        uniques.setdefault(_unique_key(v), v)
    unique_values = list(uniques.values())

    min_value = max_value = avg_value = None
    if inferred_type in NUMERIC_TYPES:
        numbers = [n for n in (_to_number(v) for v in non_null) if n is not None]
        if numbers:
            min_value = min(numbers)
            max_value = max(numbers)
            avg_value = statistics.fmean(numbers)

    min_length = max_length = None
    avg_length = None
    if inferred_type in STRING_TYPES:
        lengths = [len(str(v)) for v in non_null]
        if lengths:
            min_length = min(lengths)
            max_length = max(lengths)
            avg_length = statistics.fmean(lengths)

    avg_array_length = None
    if inferred_type is InferredDataType.ARRAY:
        lengths = [len(v) for v in non_null if isinstance(v, (list, tuple))]
        if lengths:
            avg_array_length = statistics.fmean(lengths)

    stats = InferredFieldStats(
        total_values=len(values),
        null_count=len(values) - len(non_null),
        unique_count=len(unique_values),
        sample_values=unique_values[:SAMPLE_VALUE_LIMIT],
        min_value=min_value,
        max_value=max_value,
        avg_value=avg_value,
        min_length=min_length,
        max_length=max_length,
        avg_length=avg_length,
        avg_array_length=avg_array_length,
    )
    return stats, unique_values


def _detect_patterns(values: list[str]) -> list[DetectedPattern]:
    if not values:
        return []
    found: list[DetectedPattern] = []
    for name, pattern in _DETECTABLE_PATTERNS:
        matcher = pattern.match if name == "iso_datetime" else pattern.fullmatch
        count = sum(1 for v in values if v and matcher(v.strip()))
        percentage = count / len(values) * 100
        if percentage >= PATTERN_THRESHOLD_PERCENT:
            found.append(DetectedPattern(pattern=name, match_percentage=percentage))
    return sorted(found, key=lambda p: p.match_percentage, reverse=True)


def to_field_path(column_name: str) -> str:
    """"First Name" -> "first_name"."""
    path = re.sub(r"[^a-z0-9]+", "_", column_name.lower())
    return path.strip("_")


def to_label(column_name: str) -> str:
    """"firstName" / "first_name" -> "First Name"."""
    spaced = re.sub(r"([A-Z])", r" \1", column_name)
    spaced = re.sub(r"[_-]+", " ", spaced)
    words = spaced.split()
    return " ".join(w[:1].upper() + w[1:].lower() for w in words)


def _dominant_type(breakdown: dict[str, int]) -> tuple[InferredDataType, int]:
    dominant = InferredDataType.STRING
    max_count = 0
    for type_name, count in breakdown.items():
        if type_name != InferredDataType.NULL.value and count > max_count:
            dominant = InferredDataType(type_name)
            max_count = count

    numeric_count = sum(breakdown[t.value] for t in NUMERIC_TYPES)
    if numeric_count > max_count:
        dominant = InferredDataType.DECIMAL if breakdown[InferredDataType.DECIMAL.value] > 0 else InferredDataType.INTEGER
        max_count = numeric_count
    return dominant, max_count


def _significant_type_count(breakdown: dict[str, int], non_null: int) -> int:
    pooled: dict[str, int] = {"numeric": 0}
    for type_name, count in breakdown.items():
        if type_name == InferredDataType.NULL.value:
            continue
        if InferredDataType(type_name) in NUMERIC_TYPES:
            pooled["numeric"] += count
        else:
            pooled[type_name] = count
    return sum(1 for count in pooled.values() if count > non_null * MIXED_TYPE_THRESHOLD)


def _suggest_validation(
    inferred_type: InferredDataType,
    stats: InferredFieldStats,
    unique_values: list[Any],
    sample_count: int,
) -> SuggestedValidation | None:
    min_value = max_value = None
    if inferred_type in NUMERIC_TYPES:
        min_value, max_value = stats.min_value, stats.max_value
    if inferred_type in STRING_TYPES and stats.max_length and stats.max_length < MAX_STRING_VALIDATION_LENGTH:
        max_value = stats.max_length

    options = None
    if 0 < stats.unique_count <= MAX_OPTION_VALUES and stats.unique_count < sample_count * OPTION_SAMPLE_RATIO:
        options = [v if isinstance(v, str) else str(v) for v in unique_values]

    suggestion = SuggestedValidation(min=min_value, max=max_value, options=options)
    return None if suggestion.is_empty() else suggestion


def _unique_paths(headers: Sequence[str]) -> list[str]:
    paths: list[str] = []
    used: set[str] = set()
    for position, header in enumerate(headers, start=1):
        base = to_field_path(header) or f"field_{position}"
        path = base
        n = 2
        while path in used:
            path = f"{base}_{n}"
            n += 1
        used.add(path)
        paths.append(path)
    return paths


def infer_schema(
    headers: Sequence[str],
    records: Sequence[ParsedRecord],
    *,
    sample_size: int | None = None,
    suggested_collection: str | None = None,
) -> InferredSchema:
    """Infer per-column types, stats and suggestions from the first records.

    Parameters
    ----------
    headers: ordered column names (ParseResult.headers)
    records: parsed records; only the first ``sample_size`` are inspected
    sample_size: defaults to all records
    suggested_collection: caller hint, else derived from the first header
    """
    sample = list(records[:sample_size] if sample_size else records)
    warnings: list[SchemaWarning] = []
    fields: list[InferredField] = []
    paths = _unique_paths(headers)

    for header, path in zip(headers, paths):
        values = [r.data.get(header) for r in sample]
        breakdown = {t.value: 0 for t in InferredDataType}
        for v in values:
            breakdown[infer_value_type(v).value] += 1

        null_count = breakdown[InferredDataType.NULL.value]
        non_null = len(values) - null_count
        dominant, dominant_count = _dominant_type(breakdown)

        if _significant_type_count(breakdown, non_null) > 1:
            warnings.append(SchemaWarning(
                type="mixed_types",
                field=header,
                message=f"Column \"{header}\" contains mixed data types",
                severity="warning",
            ))
        if values and null_count == len(values):
            warnings.append(SchemaWarning(
                type="empty_column",
                field=header,
                message=f"Column \"{header}\" contains all empty values",
                severity="info",
            ))

        stats, unique_values = _calculate_stats(values, dominant)
        string_values = [v for v in values if isinstance(v, str)]

        fields.append(InferredField(
            original_name=header,
            suggested_path=path,
            suggested_label=to_label(header) or path,
            inferred_type=dominant,
            confidence=dominant_count / non_null if non_null > 0 else 0.0,
            stats=stats,
            type_breakdown=breakdown,
            is_required=bool(values) and null_count == 0,
            is_unique=non_null > 0 and stats.unique_count == non_null,
            detected_patterns=_detect_patterns(string_values),
            suggested_validation=_suggest_validation(dominant, stats, unique_values, len(values)),
        ))

    if not suggested_collection:
        first = headers[0] if headers else "imported_data"
        suggested_collection = (to_field_path(first) or "imported_data").replace("_", "") + "s"

    return InferredSchema(
        fields=fields,
        sample_size=len(sample),
        total_records=len(records),
        suggested_collection=suggested_collection,
        warnings=warnings,
    )


def generate_default_mappings(
    schema: InferredSchema,
    *,
    true_values: Sequence[str] = DEFAULT_TRUE_VALUES,
    false_values: Sequence[str] = DEFAULT_FALSE_VALUES,
) -> list[ColumnMapping]:
    """One import mapping per inferred field, transforms chosen by type."""
    mappings: list[ColumnMapping] = []
    for f in schema.fields:
        transforms: list[TransformStep] = []
        if f.inferred_type in _TRIMMED_TYPES:
            transforms.append(Trim())
        elif f.inferred_type in (InferredDataType.DATE, InferredDataType.DATETIME):
            transforms.append(ParseDate())
        elif f.inferred_type in NUMERIC_TYPES:
            transforms.append(ParseNumber())
        elif f.inferred_type is InferredDataType.BOOLEAN:
            transforms.append(ParseBoolean(true_values=tuple(true_values), false_values=tuple(false_values)))
        transforms.append(NullIfEmpty())

        mappings.append(ColumnMapping(
            source_column=f.original_name,
            action=ColumnAction.IMPORT,
            target_path=f.suggested_path,
            target_type=widget_for_type(f.inferred_type),
            transforms=transforms,
            required=f.is_required,
            skip_if_empty=not f.is_required,
        ))
    return mappings


def produced_paths(config: ImportMappingConfig) -> list[str]:
    """Target paths written by column mappings (import / merge / split)."""
    paths: list[str] = []
    for m in config.mappings:
        if m.action is ColumnAction.SKIP:
            continue
        if m.action is ColumnAction.SPLIT:
            paths.extend(t.target_path for t in m.split_into)
        else:
            paths.append(m.target_path or m.source_column)
    return paths


def validate_mappings(config: ImportMappingConfig, schema: InferredSchema) -> tuple[list[str], list[str]]:
    """Check a mapping config against the inferred schema.

    Returns:
        (errors, warnings). The config is valid iff errors is empty.
    """
    errors: list[str] = []
    warnings: list[str] = []
    columns = set(schema.field_names())

    for m in config.mappings:
        if m.source_column not in columns:
            errors.append(f"Source column \"{m.source_column}\" not found in data")
        if m.action is ColumnAction.MERGE:
            for sibling in m.merge_with:
                if sibling not in columns:
                    errors.append(f"Merge column \"{sibling}\" not found in data")
        if m.action is ColumnAction.SPLIT:
            if not m.split_into:
                warnings.append(f"Split mapping for \"{m.source_column}\" has no targets")
            for target in m.split_into:
                try:
                    re.compile(target.extract_pattern)
                except re.error as e:
                    errors.append(f"Invalid split pattern for \"{target.target_path}\": {e}")

    paths = produced_paths(config)
    seen: set[str] = set()
    duplicates: list[str] = []
    for p in paths:
        if p in seen and p not in duplicates:
            duplicates.append(p)
        seen.add(p)
    if duplicates:
        errors.append(f"Duplicate target paths: {', '.join(duplicates)}")

    if config.skip_duplicates and not config.duplicate_key:
        warnings.append("skip_duplicates is set but duplicate_key is empty; no rows will be deduplicated")
    for key in config.duplicate_key:
        if key not in seen:
            errors.append(f"Duplicate key \"{key}\" is not produced by a column mapping")

    mapped = {m.source_column for m in config.mappings if m.action is not ColumnAction.SKIP}
    mapped.update(s for m in config.mappings if m.action is ColumnAction.MERGE for s in m.merge_with)
    for f in schema.fields:
        if f.is_required and f.original_name not in mapped:
            warnings.append(f"Column \"{f.original_name}\" has values in every sampled row but is not imported")

    return errors, warnings
