from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Union

import jsonschema
from jsonschema.exceptions import ValidationError

"""Mapping configuration: the operator-approved contract between inference and transform.

Transform steps are a closed set of frozen dataclasses, one per step kind, each
carrying its wire tag in ``kind``. Persisted / API payloads use the tagged dict
form ``{"type": "<kind>", ...params}``; ``step_from_dict`` is the only way in.

Mapping payloads coming from outside are validated against
``config/mapping_schema.json`` before being turned into dataclasses.
"""

__all__ = [
    "MappingConfigError",
    "DEFAULT_TRUE_VALUES",
    "DEFAULT_FALSE_VALUES",
    "Trim",
    "Uppercase",
    "Lowercase",
    "Titlecase",
    "ParseNumber",
    "ParseDate",
    "ParseBoolean",
    "ParseJson",
    "SplitToArray",
    "JoinFromArray",
    "RegexReplace",
    "Template",
    "DefaultIfEmpty",
    "NullIfEmpty",
    "ObjectIdCast",
    "TransformStep",
    "STEP_TYPES",
    "step_from_dict",
    "step_to_dict",
    "ColumnAction",
    "SplitTarget",
    "ColumnMapping",
    "ComputedField",
    "StaticField",
    "ImportMappingConfig",
    "load_mapping_config",
]

MAPPING_SCHEMA_PATH = Path(__file__).parent.parent / "config" / "mapping_schema.json"

DEFAULT_TRUE_VALUES: tuple[str, ...] = ("true", "yes", "y", "1", "on")
DEFAULT_FALSE_VALUES: tuple[str, ...] = ("false", "no", "n", "0", "off")


class MappingConfigError(Exception):
    """Raised when a mapping payload is structurally invalid."""


# --- transform steps -------------------------------------------------------


@dataclass(frozen=True)
class Trim:
    kind: ClassVar[str] = "trim"


@dataclass(frozen=True)
class Uppercase:
    kind: ClassVar[str] = "uppercase"


@dataclass(frozen=True)
class Lowercase:
    kind: ClassVar[str] = "lowercase"


@dataclass(frozen=True)
class Titlecase:
    kind: ClassVar[str] = "titlecase"


@dataclass(frozen=True)
class ParseNumber:
    kind: ClassVar[str] = "parse_number"


@dataclass(frozen=True)
class ParseDate:
    kind: ClassVar[str] = "parse_date"
    input_format: str | None = None  # e.g. "DD/MM/YYYY"; None = auto detect


@dataclass(frozen=True)
class ParseBoolean:
    kind: ClassVar[str] = "parse_boolean"
    true_values: tuple[str, ...] = DEFAULT_TRUE_VALUES
    false_values: tuple[str, ...] = DEFAULT_FALSE_VALUES


@dataclass(frozen=True)
class ParseJson:
    kind: ClassVar[str] = "parse_json"


@dataclass(frozen=True)
class SplitToArray:
    kind: ClassVar[str] = "split_to_array"
    separator: str = ","


@dataclass(frozen=True)
class JoinFromArray:
    kind: ClassVar[str] = "join_from_array"
    separator: str = ", "


@dataclass(frozen=True)
class RegexReplace:
    kind: ClassVar[str] = "regex"
    pattern: str = ""
    replacement: str = ""


@dataclass(frozen=True)
class Template:
    kind: ClassVar[str] = "template"
    template: str = ""  # "{{value}}" = current value, "{{Column}}" = raw row value


@dataclass(frozen=True)
class DefaultIfEmpty:
    kind: ClassVar[str] = "default"
    value: Any = None


@dataclass(frozen=True)
class NullIfEmpty:
    kind: ClassVar[str] = "null_if_empty"


@dataclass(frozen=True)
class ObjectIdCast:
    kind: ClassVar[str] = "object_id"


TransformStep = Union[
    Trim,
    Uppercase,
    Lowercase,
    Titlecase,
    ParseNumber,
    ParseDate,
    ParseBoolean,
    ParseJson,
    SplitToArray,
    JoinFromArray,
    RegexReplace,
    Template,
    DefaultIfEmpty,
    NullIfEmpty,
    ObjectIdCast,
]

STEP_TYPES: dict[str, type] = {
    cls.kind: cls
    for cls in (
        Trim,
        Uppercase,
        Lowercase,
        Titlecase,
        ParseNumber,
        ParseDate,
        ParseBoolean,
        ParseJson,
        SplitToArray,
        JoinFromArray,
        RegexReplace,
        Template,
        DefaultIfEmpty,
        NullIfEmpty,
        ObjectIdCast,
    )
}


def step_from_dict(data: dict[str, Any]) -> TransformStep:
    """Build a transform step from its tagged dict form."""
    kind = data.get("type")
    cls = STEP_TYPES.get(kind)  # type: ignore[arg-type]
    if cls is None:
        raise MappingConfigError(f"unknown transform type: {kind!r}")
    params: dict[str, Any] = {}
    for f in fields(cls):
        if f.name in data:
            value = data[f.name]
            # true_values / false_values: list -> tuple (frozen / hashable)
            if isinstance(value, list) and f.name.endswith("_values"):
                value = tuple(value)
            params[f.name] = value
    return cls(**params)


def step_to_dict(step: TransformStep) -> dict[str, Any]:
    out: dict[str, Any] = {"type": step.kind}
    for f in fields(step):
        value = getattr(step, f.name)
        out[f.name] = list(value) if isinstance(value, tuple) else value
    return out


# --- column mapping ----------------------------------------------------------


class ColumnAction(str, Enum):
    IMPORT = "import"
    SKIP = "skip"
    MERGE = "merge"
    SPLIT = "split"


@dataclass(frozen=True)
class SplitTarget:
    target_path: str
    extract_pattern: str  # regex; group 1 is extracted


@dataclass(frozen=True)
class ColumnMapping:
    source_column: str
    action: ColumnAction = ColumnAction.IMPORT
    target_path: str | None = None
    target_type: str | None = None  # form widget hint
    transforms: list[TransformStep] = field(default_factory=list)
    merge_with: list[str] = field(default_factory=list)
    merge_separator: str = " "
    split_into: list[SplitTarget] = field(default_factory=list)
    required: bool = False
    skip_if_empty: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_column": self.source_column,
            "action": self.action.value,
            "target_path": self.target_path,
            "target_type": self.target_type,
            "transforms": [step_to_dict(t) for t in self.transforms],
            "merge_with": list(self.merge_with),
            "merge_separator": self.merge_separator,
            "split_into": [dict(s.__dict__) for s in self.split_into],
            "required": self.required,
            "skip_if_empty": self.skip_if_empty,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ColumnMapping:
        return ColumnMapping(
            source_column=data["source_column"],
            action=ColumnAction(data.get("action", "import")),
            target_path=data.get("target_path"),
            target_type=data.get("target_type"),
            transforms=[step_from_dict(t) for t in data.get("transforms") or []],
            merge_with=list(data.get("merge_with") or []),
            merge_separator=data.get("merge_separator", " "),
            split_into=[SplitTarget(**s) for s in data.get("split_into") or []],
            required=bool(data.get("required", False)),
            skip_if_empty=bool(data.get("skip_if_empty", False)),
        )


@dataclass(frozen=True)
class ComputedField:
    target_path: str
    expression: str  # "{{First Name}} {{Last Name}}"
    type: str = "string"


@dataclass(frozen=True)
class StaticField:
    target_path: str
    value: Any


@dataclass(frozen=True)
class ImportMappingConfig:
    mappings: list[ColumnMapping] = field(default_factory=list)
    skip_duplicates: bool = False
    duplicate_key: list[str] = field(default_factory=list)  # transformed output paths
    computed_fields: list[ComputedField] = field(default_factory=list)
    static_fields: list[StaticField] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mappings": [m.to_dict() for m in self.mappings],
            "skip_duplicates": self.skip_duplicates,
            "duplicate_key": list(self.duplicate_key),
            "computed_fields": [dict(c.__dict__) for c in self.computed_fields],
            "static_fields": [dict(s.__dict__) for s in self.static_fields],
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ImportMappingConfig:
        return ImportMappingConfig(
            mappings=[ColumnMapping.from_dict(m) for m in data.get("mappings") or []],
            skip_duplicates=bool(data.get("skip_duplicates", False)),
            duplicate_key=list(data.get("duplicate_key") or []),
            computed_fields=[ComputedField(**c) for c in data.get("computed_fields") or []],
            static_fields=[StaticField(**s) for s in data.get("static_fields") or []],
        )


def load_mapping_config(data: dict[str, Any]) -> ImportMappingConfig:
    """Validate a mapping payload against the JSON schema and build the config.

    Raises:
        MappingConfigError: schema file missing/invalid or payload fails validation
    """
    if not MAPPING_SCHEMA_PATH.exists():
        raise MappingConfigError(f"mapping schema not found: {MAPPING_SCHEMA_PATH}")
    try:
        schema = json.loads(MAPPING_SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise MappingConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise MappingConfigError(f"mapping validation failed: {e.message}") from e
    return ImportMappingConfig.from_dict(data)
