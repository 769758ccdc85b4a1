from __future__ import annotations

import json
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from ..models.error_record import ErrorCode, ImportRowError
from ..models.mapping import (
    DEFAULT_FALSE_VALUES,
    DEFAULT_TRUE_VALUES,
    ColumnAction,
    ColumnMapping,
    ComputedField,
    DefaultIfEmpty,
    ImportMappingConfig,
    JoinFromArray,
    Lowercase,
    NullIfEmpty,
    ObjectIdCast,
    ParseBoolean,
    ParseDate,
    ParseJson,
    ParseNumber,
    RegexReplace,
    SplitToArray,
    Template,
    TransformStep,
    Titlecase,
    Trim,
    Uppercase,
)
from ..models.records import ParsedRecord

"""Transform engine: parsed records + approved mapping -> target documents.

Each column runs its ordered steps with an accumulator (value, errors). A step
that fails records TRANSFORM_FAILED for the column and hands None to the next
step; the pipeline and the remaining columns keep going.

Row admission: a row is excluded from the batch output iff it produced a
REQUIRED_MISSING error. Any other error class still admits the row.
"""

__all__ = [
    "TransformResult",
    "BatchTransformResult",
    "STEP_APPLIERS",
    "apply_steps",
    "transform_record",
    "transform_batch",
    "set_nested_value",
    "get_nested_value",
    "parse_date_value",
]

# {{ name }} / {{name}}
TOKEN_PATTERN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")
_OBJECT_ID_HEX = re.compile(r"[a-fA-F0-9]{24}")
_JS_GROUP_REF = re.compile(r"\$(\d+|&)")

# input_format トークン -> strptime 指令 (長いトークンを先に)
_DATE_TOKENS = re.compile(r"YYYY|YY|MM|M|DD|D|HH|H|mm|m|ss|s")
_DATE_TOKEN_DIRECTIVES = {
    "YYYY": "%Y", "YY": "%y",
    "MM": "%m", "M": "%m",
    "DD": "%d", "D": "%d",
    "HH": "%H", "H": "%H",
    "mm": "%M", "m": "%M",
    "ss": "%S", "s": "%S",
}
_FALLBACK_DATE_FORMATS = (
    "%m/%d/%Y",
    "%m/%d/%y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%Y/%m/%d",
    "%d %b %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%Y-%m-%d %H:%M:%S",
)


@dataclass
class TransformResult:
    document: dict[str, Any]
    errors: list[ImportRowError] = field(default_factory=list)

    @property
    def is_admitted(self) -> bool:
        return not any(e.error_code is ErrorCode.REQUIRED_MISSING for e in self.errors)


@dataclass
class BatchTransformResult:
    """Output of one batch.

    documents[i] came from source row row_numbers[i].
    Invariant: len(documents) + skipped <= processed.
    """
    documents: list[dict[str, Any]] = field(default_factory=list)
    row_numbers: list[int] = field(default_factory=list)
    errors: list[ImportRowError] = field(default_factory=list)
    skipped: int = 0  # duplicate suppression
    excluded: int = 0  # REQUIRED_MISSING rows
    processed: int = 0


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


# --- step appliers ------------------------------------------------------------
# (step, value, raw_row) -> (new_value, error message or None)

StepResult = tuple[Any, "str | None"]


def _apply_trim(step: Trim, value: Any, row: Mapping[str, Any]) -> StepResult:
    return (value.strip() if isinstance(value, str) else value), None


def _apply_uppercase(step: Uppercase, value: Any, row: Mapping[str, Any]) -> StepResult:
    return (value.upper() if isinstance(value, str) else value), None


def _apply_lowercase(step: Lowercase, value: Any, row: Mapping[str, Any]) -> StepResult:
    return (value.lower() if isinstance(value, str) else value), None


def _apply_titlecase(step: Titlecase, value: Any, row: Mapping[str, Any]) -> StepResult:
    if not isinstance(value, str):
        return value, None
    return " ".join(w[:1].upper() + w[1:] for w in value.lower().split(" ")), None


def _apply_parse_number(step: ParseNumber, value: Any, row: Mapping[str, Any]) -> StepResult:
    if _is_empty(value):
        return None, None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value, None
    cleaned = re.sub(r"[$,\s]", "", str(value)).rstrip("%")
    try:
        number = float(cleaned)
    except ValueError:
        return None, f"Cannot parse \"{value}\" as number"
    if not math.isfinite(number):
        return None, f"Cannot parse \"{value}\" as number"
    if number.is_integer() and re.fullmatch(r"[-+]?\d+", cleaned):
        return int(cleaned), None
    return number, None


def _format_to_strptime(input_format: str) -> str:
    return _DATE_TOKENS.sub(lambda m: _DATE_TOKEN_DIRECTIVES[m.group(0)], input_format)


def parse_date_value(value: Any, input_format: str | None = None) -> datetime | None:
    """Parse a date/datetime; None when the value cannot be parsed."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    s = str(value).strip()
    if input_format:
        try:
            return datetime.strptime(s, _format_to_strptime(input_format))
        except ValueError:
            return None
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _FALLBACK_DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    return None


def _apply_parse_date(step: ParseDate, value: Any, row: Mapping[str, Any]) -> StepResult:
    if _is_empty(value):
        return None, None
    parsed = parse_date_value(value, step.input_format)
    if parsed is None:
        return None, f"Cannot parse \"{value}\" as date"
    return parsed, None


def _apply_parse_boolean(step: ParseBoolean, value: Any, row: Mapping[str, Any]) -> StepResult:
    if _is_empty(value):
        return None, None
    if isinstance(value, bool):
        return value, None
    token = str(value).strip().lower()
    if token in step.true_values:
        return True, None
    if token in step.false_values:
        return False, None
    return None, f"Cannot parse \"{value}\" as boolean"


def _apply_parse_json(step: ParseJson, value: Any, row: Mapping[str, Any]) -> StepResult:
    if _is_empty(value):
        return None, None
    if not isinstance(value, str):
        return value, None
    try:
        return json.loads(value), None
    except json.JSONDecodeError:
        return None, f"Cannot parse \"{value}\" as JSON"


def _apply_split_to_array(step: SplitToArray, value: Any, row: Mapping[str, Any]) -> StepResult:
    if _is_empty(value):
        return [], None
    if isinstance(value, list):
        return value, None
    parts = (p.strip() for p in str(value).split(step.separator or ","))
    return [p for p in parts if p], None


def _apply_join_from_array(step: JoinFromArray, value: Any, row: Mapping[str, Any]) -> StepResult:
    if not isinstance(value, (list, tuple)):
        return ("" if value is None else str(value)), None
    return step.separator.join(str(v) for v in value), None


def _apply_regex(step: RegexReplace, value: Any, row: Mapping[str, Any]) -> StepResult:
    if value is None:
        return None, None
    if not step.pattern:
        return value, None
    # $n / $& 以外は文字どおり (バックスラッシュもエスケープしてから参照を変換)
    literal = step.replacement.replace("\\", "\\\\")
    replacement = _JS_GROUP_REF.sub(lambda m: r"\g<0>" if m.group(1) == "&" else rf"\g<{m.group(1)}>", literal)
    try:
        return re.sub(step.pattern, replacement, str(value), count=1), None
    except re.error as e:
        return None, f"Regex transform failed: {e}"


def _render_template(template: str, value: Any, row: Mapping[str, Any]) -> str:
    def _sub(m: re.Match[str]) -> str:
        name = m.group(1)
        v = value if name == "value" else row.get(name)
        return "" if v is None else str(v)

    return TOKEN_PATTERN.sub(_sub, template)


def _apply_template(step: Template, value: Any, row: Mapping[str, Any]) -> StepResult:
    if not step.template:
        return value, None
    return _render_template(step.template, value, row), None


def _apply_default(step: DefaultIfEmpty, value: Any, row: Mapping[str, Any]) -> StepResult:
    return (step.value if _is_empty(value) else value), None


def _apply_null_if_empty(step: NullIfEmpty, value: Any, row: Mapping[str, Any]) -> StepResult:
    return (None if _is_blank(value) else value), None


def _apply_object_id(step: ObjectIdCast, value: Any, row: Mapping[str, Any]) -> StepResult:
    if _is_empty(value):
        return None, None
    s = str(value).strip()
    if _OBJECT_ID_HEX.fullmatch(s):
        return {"$oid": s.lower()}, None
    return None, f"Cannot parse \"{value}\" as ObjectId"


STEP_APPLIERS: dict[type, Callable[[Any, Any, Mapping[str, Any]], StepResult]] = {
    Trim: _apply_trim,
    Uppercase: _apply_uppercase,
    Lowercase: _apply_lowercase,
    Titlecase: _apply_titlecase,
    ParseNumber: _apply_parse_number,
    ParseDate: _apply_parse_date,
    ParseBoolean: _apply_parse_boolean,
    ParseJson: _apply_parse_json,
    SplitToArray: _apply_split_to_array,
    JoinFromArray: _apply_join_from_array,
    RegexReplace: _apply_regex,
    Template: _apply_template,
    DefaultIfEmpty: _apply_default,
    NullIfEmpty: _apply_null_if_empty,
    ObjectIdCast: _apply_object_id,
}


def apply_steps(
    steps: Sequence[TransformStep],
    value: Any,
    row: Mapping[str, Any],
    *,
    row_number: int,
    column: str,
) -> tuple[Any, list[ImportRowError]]:
    """Run the step pipeline for one cell."""
    errors: list[ImportRowError] = []
    for step in steps:
        original = value
        value, message = STEP_APPLIERS[type(step)](step, value, row)
        if message is not None:
            errors.append(ImportRowError(
                row_number=row_number,
                error=message,
                error_code=ErrorCode.TRANSFORM_FAILED,
                column=column,
                value=original,
            ))
            value = None
    return value, errors


# --- nested paths ---------------------------------------------------------------


def set_nested_value(doc: dict[str, Any], path: str, value: Any) -> str | None:
    """Set ``a.b.c`` in doc, creating intermediate dicts.

    Returns an error message when an intermediate segment holds a non-dict
    value (nothing is written in that case).
    """
    parts = path.split(".")
    current = doc
    for i, part in enumerate(parts[:-1]):
        nxt = current.get(part)
        if nxt is None:
            nxt = {}
            current[part] = nxt
        elif not isinstance(nxt, dict):
            return f"Cannot set \"{path}\": \"{'.'.join(parts[:i + 1])}\" is not an object"
        current = nxt
    current[parts[-1]] = value
    return None


def get_nested_value(doc: Mapping[str, Any], path: str) -> Any:
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


# --- record / batch ---------------------------------------------------------------


def _write(result: TransformResult, path: str, value: Any, row_number: int, column: str | None) -> None:
    message = set_nested_value(result.document, path, value)
    if message is not None:
        result.errors.append(ImportRowError(
            row_number=row_number,
            error=message,
            error_code=ErrorCode.TRANSFORM_FAILED,
            column=column,
            value=value,
        ))


def _apply_split(mapping: ColumnMapping, value: Any, record: ParsedRecord, result: TransformResult) -> None:
    text = "" if value is None else str(value)
    for target in mapping.split_into:
        try:
            match = re.search(target.extract_pattern, text)
            extracted = match.group(1) if match else None
        except (re.error, IndexError) as e:
            result.errors.append(ImportRowError(
                row_number=record.row_number,
                error=f"Split pattern error for \"{target.target_path}\": {e}",
                error_code=ErrorCode.TRANSFORM_FAILED,
                column=mapping.source_column,
                value=value,
            ))
            continue
        # 不一致のターゲットは黙ってスキップ
        if extracted:
            _write(result, target.target_path, extracted, record.row_number, mapping.source_column)


def _coerce_computed(cf: ComputedField, text: str) -> tuple[Any, str | None]:
    kind = (cf.type or "string").lower()
    if kind == "string":
        return text, None
    if text.strip() == "":
        return None, None
    if kind in ("number", "decimal", "integer"):
        try:
            number = float(text.replace(",", "").strip())
        except ValueError:
            return None, f"Computed field \"{cf.target_path}\": cannot convert \"{text}\" to {kind}"
        if kind == "integer":
            return int(number), None
        return number, None
    if kind == "boolean":
        token = text.strip().lower()
        if token in DEFAULT_TRUE_VALUES:
            return True, None
        if token in DEFAULT_FALSE_VALUES:
            return False, None
        return None, f"Computed field \"{cf.target_path}\": cannot convert \"{text}\" to boolean"
    if kind in ("date", "datetime"):
        parsed = parse_date_value(text)
        if parsed is None:
            return None, f"Computed field \"{cf.target_path}\": cannot convert \"{text}\" to date"
        return parsed, None
    return text, None


def transform_record(record: ParsedRecord, config: ImportMappingConfig) -> TransformResult:
    """Build one target document from a parsed record."""
    result = TransformResult(document={})
    row = record.data

    for mapping in config.mappings:
        if mapping.action is ColumnAction.SKIP:
            continue
        column = mapping.source_column
        value, step_errors = apply_steps(
            mapping.transforms, row.get(column), row, row_number=record.row_number, column=column
        )
        result.errors.extend(step_errors)

        if mapping.action is ColumnAction.SPLIT:
            _apply_split(mapping, value, record, result)
            continue

        if mapping.action is ColumnAction.MERGE:
            parts = [value, *(row.get(c) for c in mapping.merge_with)]
            value = mapping.merge_separator.join(str(p) for p in parts if not _is_blank(p))

        empty = _is_blank(value)
        if mapping.required and empty:
            result.errors.append(ImportRowError(
                row_number=record.row_number,
                error=f"Required field \"{column}\" is empty",
                error_code=ErrorCode.REQUIRED_MISSING,
                column=column,
                value=row.get(column),
            ))
        if mapping.skip_if_empty and empty:
            continue

        _write(result, mapping.target_path or column, value, record.row_number, column)

    for cf in config.computed_fields:
        text = _render_template(cf.expression, None, row)
        value, message = _coerce_computed(cf, text)
        if message is not None:
            result.errors.append(ImportRowError(
                row_number=record.row_number,
                error=message,
                error_code=ErrorCode.TRANSFORM_FAILED,
                column=cf.target_path,
                value=text,
            ))
        _write(result, cf.target_path, value, record.row_number, cf.target_path)

    for sf in config.static_fields:
        _write(result, sf.target_path, sf.value, record.row_number, sf.target_path)

    return result


def _duplicate_key(document: Mapping[str, Any], key_paths: Sequence[str]) -> str:
    values = [get_nested_value(document, p) for p in key_paths]
    return json.dumps(values, sort_keys=True, default=str)


def transform_batch(
    records: Sequence[ParsedRecord],
    config: ImportMappingConfig,
    *,
    stop_on_error: bool = False,
    max_errors: int | None = None,
    seen_keys: set[str] | None = None,
) -> BatchTransformResult:
    """Transform a batch of records.

    Parameters
    ----------
    stop_on_error: stop before the next row once the error count reaches
        max_errors (1 when max_errors is None)
    seen_keys: duplicate-key set shared across batches of one import run
    """
    result = BatchTransformResult()
    seen = seen_keys if seen_keys is not None else set()
    limit = max_errors if max_errors is not None else 1
    dedupe = config.skip_duplicates and bool(config.duplicate_key)

    for record in records:
        if stop_on_error and len(result.errors) >= limit:
            break
        result.processed += 1

        tr = transform_record(record, config)
        result.errors.extend(tr.errors)
        if not tr.is_admitted:
            result.excluded += 1
            continue

        if dedupe:
            key = _duplicate_key(tr.document, config.duplicate_key)
            if key in seen:
                result.skipped += 1
                continue
            seen.add(key)

        result.documents.append(tr.document)
        result.row_numbers.append(record.row_number)

    return result
