"""Domain models for the document import pipeline.

Parser results, inferred schema, mapping configuration (including the closed
set of transform steps), row errors and the ImportJob aggregate.
"""

from .error_record import ErrorCode, ErrorRecord, ImportRowError
from .form import FieldConfig, FormGenerationOptions, GeneratedFormConfig
from .import_job import (
    TERMINAL_STATUSES,
    ErrorHandling,
    ErrorStrategy,
    ImportJob,
    ImportPhase,
    ImportProgress,
    ImportResults,
    JobStatus,
    SourceFileDescriptor,
    TargetReference,
)
from .mapping import (
    ColumnAction,
    ColumnMapping,
    ComputedField,
    ImportMappingConfig,
    MappingConfigError,
    SplitTarget,
    StaticField,
    load_mapping_config,
)
from .records import ParsedRecord, ParseError, ParseResult, SourceConfig, SourceFormat
from .schema import InferredDataType, InferredField, InferredSchema, SchemaWarning

__all__ = [
    # Parser
    "SourceFormat",
    "SourceConfig",
    "ParsedRecord",
    "ParseError",
    "ParseResult",
    # Schema
    "InferredDataType",
    "InferredField",
    "InferredSchema",
    "SchemaWarning",
    # Mapping
    "ColumnAction",
    "ColumnMapping",
    "ComputedField",
    "StaticField",
    "SplitTarget",
    "ImportMappingConfig",
    "MappingConfigError",
    "load_mapping_config",
    # Errors
    "ErrorCode",
    "ErrorRecord",
    "ImportRowError",
    # Job
    "JobStatus",
    "TERMINAL_STATUSES",
    "ImportPhase",
    "ErrorStrategy",
    "ErrorHandling",
    "SourceFileDescriptor",
    "TargetReference",
    "ImportProgress",
    "ImportResults",
    "ImportJob",
    # Form
    "FieldConfig",
    "FormGenerationOptions",
    "GeneratedFormConfig",
]
