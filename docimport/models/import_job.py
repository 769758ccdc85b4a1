from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .error_record import ImportRowError
from .form import FieldConfig
from .mapping import ImportMappingConfig
from .records import SourceConfig
from .schema import InferredSchema

"""ImportJob aggregate and its value objects.

The job record is the only persisted state of an import. It is addressed by
import_id and mutated only by the orchestrator; everything here serializes to
plain JSON-compatible dicts so any document store can hold it.

State transitions:
    pending → analyzing → mapping ⇄ validating → importing → (completed | failed | cancelled)
"""

__all__ = [
    "JobStatus",
    "TERMINAL_STATUSES",
    "ImportPhase",
    "ErrorStrategy",
    "SourceFileDescriptor",
    "TargetReference",
    "ErrorHandling",
    "ImportProgress",
    "ImportResults",
    "ImportJob",
    "utc_now_iso",
]


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class JobStatus(str, Enum):
    """Lifecycle of an import job.

    - PENDING: descriptor created, nothing read yet
    - ANALYZING: schema inference running
    - MAPPING: waiting for the operator to approve / fix the mapping
    - VALIDATING: mapping dry-run passed, ready to execute
    - IMPORTING: batch loop running
    - COMPLETED / FAILED / CANCELLED: terminal
    """
    PENDING = "pending"
    ANALYZING = "analyzing"
    MAPPING = "mapping"
    VALIDATING = "validating"
    IMPORTING = "importing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class ImportPhase(str, Enum):
    UPLOAD = "upload"
    ANALYZE = "analyze"
    VALIDATE = "validate"
    IMPORT = "import"


class ErrorStrategy(str, Enum):
    STOP = "stop"  # 最初にエラーを出したバッチの後で停止
    SKIP = "skip"  # エラー行を飛ばして継続
    LOG = "log"  # skip と同じ + 全エラーを JSON Lines に出力


@dataclass(frozen=True)
class SourceFileDescriptor:
    name: str
    size: int = 0
    mime_type: str | None = None
    blob_url: str | None = None
    checksum: str | None = None


@dataclass(frozen=True)
class TargetReference:
    vault_id: str  # opaque, resolved by the connection resolver
    database: str
    collection: str
    create_collection: bool = False


@dataclass(frozen=True)
class ErrorHandling:
    strategy: ErrorStrategy = ErrorStrategy.SKIP
    max_errors: int | None = 100
    error_log_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "max_errors": self.max_errors,
            "error_log_path": self.error_log_path,
        }

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> ErrorHandling:
        data = data or {}
        return ErrorHandling(
            strategy=ErrorStrategy(data.get("strategy", "skip")),
            max_errors=data.get("max_errors", 100),
            error_log_path=data.get("error_log_path"),
        )


@dataclass(frozen=True)
class ImportProgress:
    """Snapshot of a running (or finished) import.

    error_count counts rows that did not make it into the target, so at the end
    of a run processed_rows == success_count + error_count + skip_count.
    """
    phase: ImportPhase = ImportPhase.UPLOAD
    total_rows: int = 0
    processed_rows: int = 0
    success_count: int = 0
    error_count: int = 0
    skip_count: int = 0
    percent_complete: int = 0
    current_batch: int | None = None
    total_batches: int | None = None
    estimated_time_remaining: int | None = None  # seconds

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.__dict__)
        out["phase"] = self.phase.value
        return out

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> ImportProgress:
        data = dict(data or {})
        data["phase"] = ImportPhase(data.get("phase", "upload"))
        return ImportProgress(**data)


@dataclass(frozen=True)
class ImportResults:
    total_processed: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[ImportRowError] = field(default_factory=list)  # first N only
    error_count: int = 0  # total, including the ones not retained
    sample_inserted: list[Any] = field(default_factory=list)
    dry_run: bool = False
    total_batches: int = 0
    avg_batch_seconds: float = 0.0
    p95_batch_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.__dict__)
        out["errors"] = [e.to_dict() for e in self.errors]
        out["sample_inserted"] = list(self.sample_inserted)
        return out

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ImportResults:
        data = dict(data)
        data["errors"] = [ImportRowError.from_dict(e) for e in data.get("errors") or []]
        return ImportResults(**data)


@dataclass(frozen=True)
class ImportJob:
    import_id: str
    organization_id: str
    created_by: str
    source_file: SourceFileDescriptor
    source_config: SourceConfig
    target: TargetReference
    status: JobStatus = JobStatus.PENDING
    progress: ImportProgress = field(default_factory=ImportProgress)
    error_handling: ErrorHandling = field(default_factory=ErrorHandling)
    inferred_schema: InferredSchema | None = None
    mapping_config: ImportMappingConfig | None = None
    generated_field_configs: list[FieldConfig] | None = None
    results: ImportResults | None = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    started_at: str | None = None
    completed_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "import_id": self.import_id,
            "organization_id": self.organization_id,
            "created_by": self.created_by,
            "source_file": dict(self.source_file.__dict__),
            "source_config": self.source_config.to_dict(),
            "target": dict(self.target.__dict__),
            "status": self.status.value,
            "progress": self.progress.to_dict(),
            "error_handling": self.error_handling.to_dict(),
            "inferred_schema": self.inferred_schema.to_dict() if self.inferred_schema else None,
            "mapping_config": self.mapping_config.to_dict() if self.mapping_config else None,
            "generated_field_configs": (
                [f.to_dict() for f in self.generated_field_configs]
                if self.generated_field_configs is not None
                else None
            ),
            "results": self.results.to_dict() if self.results else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ImportJob:
        schema = data.get("inferred_schema")
        mapping = data.get("mapping_config")
        generated = data.get("generated_field_configs")
        results = data.get("results")
        return ImportJob(
            import_id=data["import_id"],
            organization_id=data["organization_id"],
            created_by=data["created_by"],
            source_file=SourceFileDescriptor(**data["source_file"]),
            source_config=SourceConfig.from_dict(data.get("source_config")),
            target=TargetReference(**data["target"]),
            status=JobStatus(data.get("status", "pending")),
            progress=ImportProgress.from_dict(data.get("progress")),
            error_handling=ErrorHandling.from_dict(data.get("error_handling")),
            inferred_schema=InferredSchema.from_dict(schema) if schema else None,
            mapping_config=ImportMappingConfig.from_dict(mapping) if mapping else None,
            generated_field_configs=(
                [FieldConfig.from_dict(f) for f in generated] if generated is not None else None
            ),
            results=ImportResults.from_dict(results) if results else None,
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
        )
