from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

"""Inferred schema models.

InferredSchema is computed once per job from a bounded sample and stored on the
job record, so every type here round-trips through to_dict()/from_dict().
"""

__all__ = [
    "InferredDataType",
    "NUMERIC_TYPES",
    "STRING_TYPES",
    "InferredFieldStats",
    "DetectedPattern",
    "SuggestedValidation",
    "InferredField",
    "SchemaWarning",
    "InferredSchema",
]


class InferredDataType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    EMAIL = "email"
    URL = "url"
    PHONE = "phone"
    OBJECT_ID = "object_id"
    ARRAY = "array"
    OBJECT = "object"
    NULL = "null"
    MIXED = "mixed"


NUMERIC_TYPES = frozenset({InferredDataType.NUMBER, InferredDataType.INTEGER, InferredDataType.DECIMAL})
STRING_TYPES = frozenset({
    InferredDataType.STRING,
    InferredDataType.EMAIL,
    InferredDataType.URL,
    InferredDataType.PHONE,
})


@dataclass(frozen=True)
class InferredFieldStats:
    total_values: int
    null_count: int
    unique_count: int
    sample_values: list[Any] = field(default_factory=list)  # 先頭 10 件のユニーク値
    min_value: float | None = None
    max_value: float | None = None
    avg_value: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    avg_length: float | None = None
    avg_array_length: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> InferredFieldStats:
        return InferredFieldStats(**data)


@dataclass(frozen=True)
class DetectedPattern:
    pattern: str
    match_percentage: float


@dataclass(frozen=True)
class SuggestedValidation:
    min: float | None = None
    max: float | None = None
    pattern: str | None = None
    options: list[str] | None = None

    def is_empty(self) -> bool:
        return self.min is None and self.max is None and self.pattern is None and not self.options


@dataclass(frozen=True)
class InferredField:
    """Per-column inference result.

    Invariants:
        sum(type_breakdown.values()) == stats.total_values
        confidence == dominant count / non-null count (0 when the column is empty)
    """
    original_name: str
    suggested_path: str
    suggested_label: str
    inferred_type: InferredDataType
    confidence: float
    stats: InferredFieldStats
    type_breakdown: dict[str, int]
    is_required: bool
    is_unique: bool
    detected_patterns: list[DetectedPattern] = field(default_factory=list)
    suggested_validation: SuggestedValidation | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_name": self.original_name,
            "suggested_path": self.suggested_path,
            "suggested_label": self.suggested_label,
            "inferred_type": self.inferred_type.value,
            "confidence": self.confidence,
            "stats": self.stats.to_dict(),
            "type_breakdown": dict(self.type_breakdown),
            "is_required": self.is_required,
            "is_unique": self.is_unique,
            "detected_patterns": [dict(p.__dict__) for p in self.detected_patterns],
            "suggested_validation": (
                dict(self.suggested_validation.__dict__) if self.suggested_validation else None
            ),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> InferredField:
        validation = data.get("suggested_validation")
        return InferredField(
            original_name=data["original_name"],
            suggested_path=data["suggested_path"],
            suggested_label=data["suggested_label"],
            inferred_type=InferredDataType(data["inferred_type"]),
            confidence=data["confidence"],
            stats=InferredFieldStats.from_dict(data["stats"]),
            type_breakdown=dict(data["type_breakdown"]),
            is_required=data["is_required"],
            is_unique=data["is_unique"],
            detected_patterns=[DetectedPattern(**p) for p in data.get("detected_patterns") or []],
            suggested_validation=SuggestedValidation(**validation) if validation else None,
        )


@dataclass(frozen=True)
class SchemaWarning:
    type: str  # duplicate_column | empty_column | mixed_types | encoding_issue | date_parse_failure
    message: str
    severity: str = "warning"  # info | warning | error
    field: str | None = None


@dataclass(frozen=True)
class InferredSchema:
    fields: list[InferredField]
    sample_size: int
    total_records: int
    suggested_collection: str
    warnings: list[SchemaWarning] = field(default_factory=list)

    def field_names(self) -> list[str]:
        return [f.original_name for f in self.fields]

    def get_field(self, name: str) -> InferredField | None:
        for f in self.fields:
            if f.original_name == name:
                return f
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "fields": [f.to_dict() for f in self.fields],
            "sample_size": self.sample_size,
            "total_records": self.total_records,
            "suggested_collection": self.suggested_collection,
            "warnings": [dict(w.__dict__) for w in self.warnings],
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> InferredSchema:
        return InferredSchema(
            fields=[InferredField.from_dict(f) for f in data.get("fields") or []],
            sample_size=data.get("sample_size", 0),
            total_records=data.get("total_records", 0),
            suggested_collection=data.get("suggested_collection", ""),
            warnings=[SchemaWarning(**w) for w in data.get("warnings") or []],
        )
