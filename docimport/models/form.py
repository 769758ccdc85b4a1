from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

"""Form generation models.

The generated configuration is handed unchanged to the external form
renderer; nothing in this package interprets it further.
"""

__all__ = [
    "FieldConfig",
    "FormGenerationOptions",
    "GeneratedFormConfig",
]


@dataclass(frozen=True)
class FieldConfig:
    path: str
    label: str
    type: str  # widget type: short-answer, number, yes-no, date, ...
    included: bool = True
    required: bool = False
    source: str = "schema"
    validation: dict[str, Any] | None = None  # min / max / options

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> FieldConfig:
        return FieldConfig(**data)


@dataclass(frozen=True)
class FormGenerationOptions:
    include_all_fields: bool = True
    include_fields: list[str] | None = None  # None = no allow-list
    exclude_fields: list[str] = field(default_factory=list)
    field_type_overrides: dict[str, str] = field(default_factory=dict)
    generate_validation: bool = False
    form_name: str | None = None
    form_description: str | None = None


@dataclass(frozen=True)
class GeneratedFormConfig:
    name: str
    description: str
    collection: str
    database: str
    field_configs: list[FieldConfig]
    data_source: dict[str, str]
    generated_from: dict[str, str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "collection": self.collection,
            "database": self.database,
            "field_configs": [f.to_dict() for f in self.field_configs],
            "data_source": dict(self.data_source),
            "generated_from": dict(self.generated_from),
        }
