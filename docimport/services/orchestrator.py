from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from ..config.loader import ImporterSettings
from ..db.job_store import ImportJobStore
from ..db.target import (
    IMPORT_ID_FIELD,
    IMPORTED_AT_FIELD,
    TargetConnection,
    TargetConnectionError,
)
from ..logging.error_log import ErrorLogBuffer
from ..models.batch_stats import BatchStatsAccumulator
from ..models.error_record import ErrorCode, ImportRowError
from ..models.form import FormGenerationOptions, GeneratedFormConfig
from ..models.import_job import (
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
    utc_now_iso,
)
from ..models.mapping import ColumnMapping, ImportMappingConfig, MappingConfigError, load_mapping_config
from ..models.records import SourceConfig
from ..models.schema import InferredSchema
from ..parsing import detect_format, get_preview, parse_content
from .form_config import build_form_config
from .progress import ProgressTracker
from .schema_inference import generate_default_mappings, infer_schema, validate_mappings
from .transformer import transform_batch

logger = logging.getLogger(__name__)

"""Import job orchestration.

ImportService drives one job through its lifecycle:

    create_import_job → analyze_data → configure_mappings → execute_import

Every step re-reads the job from the store, checks the transition table and
persists its outcome with a single partial update. The batch loop in
execute_import is sequential; the only shared resource between concurrent
jobs is the target connection provider (usually a ConnectionCache).
"""

__all__ = [
    "ProcessingError",
    "JobNotFoundError",
    "InvalidStateTransition",
    "MappingNotConfiguredError",
    "SchemaNotInferredError",
    "ALLOWED_TRANSITIONS",
    "AnalysisResult",
    "MappingValidation",
    "ImportStatus",
    "ImportService",
]


class ProcessingError(Exception):
    """Base exception for processing errors."""
    pass


class JobNotFoundError(ProcessingError):
    pass


class InvalidStateTransition(ProcessingError):
    pass


class MappingNotConfiguredError(ProcessingError):
    pass


class SchemaNotInferredError(ProcessingError):
    pass


# 現在の status → 遷移可能な status
# completed / failed からの再マッピング・再実行は許可 (同じジョブの再投入)
# failed からは再解析も可 (analyze_data 失敗時はスキーマが無い)
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.ANALYZING, JobStatus.CANCELLED}),
    JobStatus.ANALYZING: frozenset({
        JobStatus.ANALYZING, JobStatus.MAPPING, JobStatus.FAILED, JobStatus.CANCELLED,
    }),
    JobStatus.MAPPING: frozenset({
        JobStatus.ANALYZING, JobStatus.MAPPING, JobStatus.VALIDATING, JobStatus.IMPORTING, JobStatus.CANCELLED,
    }),
    JobStatus.VALIDATING: frozenset({
        JobStatus.ANALYZING, JobStatus.MAPPING, JobStatus.VALIDATING, JobStatus.IMPORTING, JobStatus.CANCELLED,
    }),
    JobStatus.IMPORTING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset({JobStatus.MAPPING, JobStatus.VALIDATING, JobStatus.IMPORTING}),
    JobStatus.FAILED: frozenset({
        JobStatus.ANALYZING, JobStatus.MAPPING, JobStatus.VALIDATING, JobStatus.IMPORTING,
    }),
    JobStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class AnalysisResult:
    schema: InferredSchema
    preview: dict[str, Any]
    suggested_mappings: list[ColumnMapping]
    parse_warnings: list[str] = field(default_factory=list)
    parse_errors: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class MappingValidation:
    valid: bool
    errors: list[ImportRowError]
    warnings: list[str]
    sample_output: list[dict[str, Any]]


@dataclass(frozen=True)
class ImportStatus:
    job: ImportJob
    can_cancel: bool


TargetClientProvider = Callable[[str, str], TargetConnection]


class _ImportRun:
    """Mutable counters of one execute_import call."""

    def __init__(self, total_rows: int, total_batches: int) -> None:
        self.total_rows = total_rows
        self.total_batches = total_batches
        self.processed = 0
        self.success = 0
        self.failed_rows = 0
        self.skipped = 0
        self.errors: list[ImportRowError] = []
        self.error_rows: set[int] = set()
        self.sample: list[Any] = []
        self.percent = 0
        self.batches_done = 0
        self.started = time.perf_counter()

    def add_errors(self, errors: list[ImportRowError]) -> None:
        # max_errors はエラー件数ではなくエラーを含む行数で判定 (行 0 = ファイル単位)
        self.errors.extend(errors)
        self.error_rows.update(e.row_number for e in errors)

    def progress(self) -> ImportProgress:
        eta: int | None = None
        if self.processed > 0:
            elapsed = time.perf_counter() - self.started
            eta = round(elapsed / self.processed * max(self.total_rows - self.processed, 0))
        return ImportProgress(
            phase=ImportPhase.IMPORT,
            total_rows=self.total_rows,
            processed_rows=self.processed,
            success_count=self.success,
            error_count=self.failed_rows,
            skip_count=self.skipped,
            percent_complete=self.percent,
            current_batch=self.batches_done,
            total_batches=self.total_batches,
            estimated_time_remaining=eta,
        )


class ImportService:
    """Lifecycle operations on import jobs.

    Args:
        job_store: Persistence for ImportJob records
        get_target_client: ``(organization_id, vault_id) -> TargetConnection``
        settings: Batch sizes, sample sizes and error caps
        show_progress: Display a tqdm bar during execute_import (TTY only)
    """

    def __init__(
        self,
        job_store: ImportJobStore,
        get_target_client: TargetClientProvider,
        settings: ImporterSettings | None = None,
        *,
        show_progress: bool = False,
    ) -> None:
        self.job_store = job_store
        self.get_target_client = get_target_client
        self.settings = settings or ImporterSettings()
        self.show_progress = show_progress

    # ------------------------------------------------------------------ jobs

    def create_import_job(
        self,
        *,
        organization_id: str,
        created_by: str,
        source_file: SourceFileDescriptor,
        source_config: SourceConfig | None = None,
        target: TargetReference,
        error_handling: ErrorHandling | None = None,
    ) -> ImportJob:
        job = ImportJob(
            import_id=f"import_{uuid.uuid4().hex}",
            organization_id=organization_id,
            created_by=created_by,
            source_file=source_file,
            source_config=source_config or SourceConfig(),
            target=target,
            status=JobStatus.PENDING,
            progress=ImportProgress(phase=ImportPhase.UPLOAD),
            error_handling=error_handling or self.settings.default_error_handling,
        )
        self.job_store.insert(job)
        logger.info("import job created id=%s source=%s", job.import_id, source_file.name)
        return job

    def get_import_job(self, import_id: str) -> ImportJob | None:
        return self.job_store.get(import_id)

    def get_import_status(self, import_id: str) -> ImportStatus:
        job = self._require_job(import_id)
        return ImportStatus(job=job, can_cancel=job.status not in TERMINAL_STATUSES)

    def list_import_jobs(
        self,
        organization_id: str,
        *,
        status: JobStatus | None = None,
        limit: int = 20,
        skip: int = 0,
    ) -> list[ImportJob]:
        return self.job_store.list(organization_id, status=status, limit=limit, skip=skip)

    def cancel_import(self, import_id: str) -> ImportJob:
        """Request cancellation. A running execute_import stops at its next batch boundary."""
        job = self._require_job(import_id)
        self._check_transition(job, JobStatus.CANCELLED)
        self._update(import_id, {"status": JobStatus.CANCELLED.value})
        logger.info("import job cancelled id=%s (was %s)", import_id, job.status.value)
        return self._require_job(import_id)

    def delete_import_job(self, import_id: str, *, delete_imported_data: bool = False) -> None:
        """Delete the job record; optionally remove the documents it inserted first.

        Removing imported data is best effort: failures are logged and the
        job record is deleted regardless.
        """
        job = self._require_job(import_id)
        # results は直近の実行分のみ。過去の実行分も含め _importId で削除する
        if delete_imported_data:
            try:
                client = self.get_target_client(job.organization_id, job.target.vault_id)
                removed = client.delete_many(job.target.database, job.target.collection, import_id)
                logger.info("removed %d imported documents id=%s", removed, import_id)
            except TargetConnectionError as e:
                logger.warning("failed to delete imported data id=%s: %s", import_id, e)
        self.job_store.delete(import_id)

    # -------------------------------------------------------------- analysis

    def analyze_data(self, import_id: str, content: str | bytes, sample_size: int | None = None) -> AnalysisResult:
        """Parse a sample, infer the schema and suggest default mappings."""
        job = self._require_job(import_id)
        self._check_transition(job, JobStatus.ANALYZING)
        self._update(import_id, {
            "status": JobStatus.ANALYZING.value,
            "progress": replace(job.progress, phase=ImportPhase.ANALYZE).to_dict(),
        })

        sample_size = sample_size or self.settings.analyze_sample_size
        try:
            source_config = job.source_config
            if source_config.format is None:
                source_config = replace(source_config, format=detect_format(content, job.source_file.mime_type))
            parsed = parse_content(content, source_config, max_rows=sample_size)
            schema = infer_schema(
                parsed.headers,
                parsed.records,
                sample_size=len(parsed.records),
                suggested_collection=job.target.collection,
            )
        except Exception:
            self._update(import_id, {"status": JobStatus.FAILED.value})
            logger.exception("analysis failed id=%s", import_id)
            raise

        suggested = generate_default_mappings(
            schema,
            true_values=self.settings.true_values,
            false_values=self.settings.false_values,
        )
        self._update(import_id, {
            "status": JobStatus.MAPPING.value,
            "source_config": source_config.to_dict(),
            "inferred_schema": schema.to_dict(),
            "progress": ImportProgress(phase=ImportPhase.ANALYZE, total_rows=parsed.total_rows).to_dict(),
        })
        logger.info(
            "analyzed id=%s format=%s columns=%d rows=%d warnings=%d",
            import_id, source_config.format.value, len(schema.fields), parsed.total_rows, len(schema.warnings),
        )
        return AnalysisResult(
            schema=schema,
            preview=get_preview(parsed, self.settings.preview_rows),
            suggested_mappings=suggested,
            parse_warnings=list(parsed.warnings),
            parse_errors=[e.to_dict() for e in parsed.errors],
        )

    def configure_mappings(
        self,
        import_id: str,
        mapping_config: ImportMappingConfig | dict[str, Any],
        content: str | bytes,
    ) -> MappingValidation:
        """Validate a mapping against the inferred schema and a sample transform.

        The mapping is stored whatever the outcome; the job moves to
        ``validating`` when it is valid and back to ``mapping`` otherwise.
        """
        job = self._require_job(import_id)
        if job.inferred_schema is None:
            raise SchemaNotInferredError(f"schema not inferred yet for {import_id}")
        self._check_transition(job, JobStatus.VALIDATING)

        if isinstance(mapping_config, dict):
            try:
                mapping_config = load_mapping_config(mapping_config)
            except MappingConfigError as e:
                self._update(import_id, {"status": JobStatus.MAPPING.value})
                return MappingValidation(
                    valid=False,
                    errors=[ImportRowError(0, str(e), ErrorCode.VALIDATION_FAILED)],
                    warnings=[],
                    sample_output=[],
                )

        config_errors, warnings = validate_mappings(mapping_config, job.inferred_schema)
        errors = [ImportRowError(0, msg, ErrorCode.VALIDATION_FAILED) for msg in config_errors]

        parsed = parse_content(content, job.source_config, max_rows=self.settings.validation_sample_size)
        if parsed.errors:
            warnings.append(f"{len(parsed.errors)} rows could not be parsed")
        sample = transform_batch(parsed.records, mapping_config)
        errors.extend(sample.errors)
        if sample.skipped:
            warnings.append(f"{sample.skipped} rows would be skipped")
        if sample.errors:
            warnings.append(f"{len(sample.errors)} validation errors found")

        valid = not errors
        status = JobStatus.VALIDATING if valid else JobStatus.MAPPING
        self._update(import_id, {
            "status": status.value,
            "mapping_config": mapping_config.to_dict(),
            "progress": replace(job.progress, phase=ImportPhase.VALIDATE).to_dict(),
        })
        logger.info("mapping configured id=%s valid=%s errors=%d", import_id, valid, len(errors))
        return MappingValidation(
            valid=valid,
            errors=errors,
            warnings=warnings,
            sample_output=sample.documents[: self.settings.sample_output_size],
        )

    def generate_form_config(
        self, import_id: str, options: FormGenerationOptions | None = None
    ) -> GeneratedFormConfig:
        job = self._require_job(import_id)
        if job.inferred_schema is None:
            raise SchemaNotInferredError(f"schema not inferred yet for {import_id}")
        form = build_form_config(
            job.inferred_schema,
            options or FormGenerationOptions(),
            database=job.target.database,
            collection=job.target.collection,
            import_id=import_id,
            source_name=job.source_file.name,
        )
        self._update(import_id, {"generated_field_configs": [f.to_dict() for f in form.field_configs]})
        return form

    # ---------------------------------------------------------------- import

    def execute_import(
        self,
        import_id: str,
        content: str | bytes,
        *,
        dry_run: bool = False,
        on_progress: Callable[[ImportProgress], None] | None = None,
    ) -> ImportJob:
        """Parse the whole source and load it in batches.

        Raises:
            MappingNotConfiguredError: no mapping stored (job left untouched)
            TargetConnectionError: the target store is unreachable (job marked failed)
        """
        job = self._require_job(import_id)
        if job.mapping_config is None:
            raise MappingNotConfiguredError(f"mapping configuration not set for {import_id}")
        self._check_transition(job, JobStatus.IMPORTING)

        started_at = utc_now_iso()
        self._update(import_id, {
            "status": JobStatus.IMPORTING.value,
            "started_at": started_at,
            "completed_at": None,
            "results": None,
            "progress": ImportProgress(phase=ImportPhase.IMPORT, total_rows=job.progress.total_rows).to_dict(),
        })

        parsed = parse_content(content, job.source_config, mime_type=job.source_file.mime_type)
        records = parsed.records
        batch_size = self.settings.batch_size
        total_batches = -(-len(records) // batch_size)
        run = _ImportRun(total_rows=len(records), total_batches=total_batches)
        # 解析不能な行もエラーとして計上 (行番号 0 はファイル単位)
        run.add_errors([
            ImportRowError(pe.row_number, pe.message, ErrorCode.VALIDATION_FAILED, value=pe.raw_line)
            for pe in parsed.errors
        ])

        eh = job.error_handling
        error_log = (
            ErrorLogBuffer(import_id, path=eh.error_log_path, logs_dir=self.settings.error_log_dir)
            if eh.strategy is ErrorStrategy.LOG or eh.error_log_path
            else None
        )
        if error_log is not None:
            error_log.extend_row_errors(run.errors)
        stats = BatchStatsAccumulator()
        mapping = job.mapping_config
        target = job.target
        seen_keys: set[str] = set()
        cancelled = False
        client: TargetConnection | None = None
        collection_ready = False

        logger.info(
            "import started id=%s rows=%d batches=%d dry_run=%s strategy=%s",
            import_id, len(records), total_batches, dry_run, eh.strategy.value,
        )

        with ProgressTracker(total_batches, enabled=None if self.show_progress else False) as tracker:
            if not dry_run:
                try:
                    client = self.get_target_client(job.organization_id, target.vault_id)
                except TargetConnectionError as e:
                    self._fail_connectivity(import_id, run, error_log, e)
                    raise

            for batch_index in range(total_batches):
                current = self._require_job(import_id)
                if current.status is JobStatus.CANCELLED:
                    cancelled = True
                    logger.info("import cancelled id=%s at batch %d/%d", import_id, batch_index + 1, total_batches)
                    break

                batch_started = time.perf_counter()
                batch = records[batch_index * batch_size:(batch_index + 1) * batch_size]
                result = transform_batch(
                    batch,
                    mapping,
                    stop_on_error=eh.strategy is ErrorStrategy.STOP,
                    seen_keys=seen_keys,
                )
                batch_errors = list(result.errors)
                inserted = 0
                failed_inserts = 0

                if result.documents and client is not None:
                    try:
                        if target.create_collection and not collection_ready:
                            if not client.collection_exists(target.database, target.collection):
                                client.create_collection(target.database, target.collection)
                            collection_ready = True
                        stamped_at = datetime.now(UTC)
                        documents = [
                            {**doc, IMPORTED_AT_FIELD: stamped_at, IMPORT_ID_FIELD: import_id}
                            for doc in result.documents
                        ]
                        write = client.insert_many(target.database, target.collection, documents)
                    except TargetConnectionError as e:
                        self._fail_connectivity(import_id, run, error_log, e, pending=batch_errors)
                        raise
                    inserted = write.inserted_count
                    failed_inserts = len(write.write_errors)
                    for we in write.write_errors:
                        row_number = result.row_numbers[we.index] if we.index < len(result.row_numbers) else 0
                        batch_errors.append(ImportRowError(row_number, we.message, ErrorCode.UNKNOWN))
                    room = self.settings.sample_output_size - len(run.sample)
                    if room > 0:
                        run.sample.extend(write.inserted_ids[:room])
                elif dry_run:
                    inserted = len(result.documents)
                    room = self.settings.sample_output_size - len(run.sample)
                    if room > 0:
                        run.sample.extend(result.documents[:room])

                stats.add_batch_time(time.perf_counter() - batch_started)
                run.processed += result.processed
                run.success += inserted
                run.failed_rows += result.excluded + failed_inserts
                run.skipped += result.skipped
                run.add_errors(batch_errors)
                run.batches_done = batch_index + 1
                run.percent = max(run.percent, run.batches_done * 100 // total_batches)
                if error_log is not None:
                    error_log.extend_row_errors(batch_errors)

                progress = run.progress()
                # status は書かない (並行する cancel を上書きしない)
                self._update(import_id, {"progress": progress.to_dict()})
                tracker.advance(success=run.success, errors=len(run.errors))
                if on_progress is not None:
                    on_progress(progress)

                if eh.strategy is ErrorStrategy.STOP and batch_errors:
                    logger.warning("stopping after batch %d: stop strategy and %d errors", run.batches_done, len(batch_errors))
                    break
                if eh.max_errors is not None and len(run.error_rows) >= eh.max_errors:
                    logger.warning("stopping after batch %d: %d rows with errors (limit %d)", run.batches_done, len(run.error_rows), eh.max_errors)
                    break

        if run.batches_done == total_batches:
            run.percent = 100

        batch_count, avg_s, p95_s = stats.get_stats()
        results = ImportResults(
            total_processed=run.processed,
            inserted=0 if dry_run else run.success,
            skipped=run.skipped,
            failed=run.failed_rows,
            errors=run.errors[: self.settings.max_retained_errors],
            error_count=len(run.errors),
            sample_inserted=run.sample,
            dry_run=dry_run,
            total_batches=batch_count,
            avg_batch_seconds=avg_s,
            p95_batch_seconds=p95_s,
        )

        final: dict[str, Any] = {
            "progress": replace(run.progress(), percent_complete=run.percent, estimated_time_remaining=0).to_dict(),
            "results": results.to_dict(),
            "completed_at": utc_now_iso(),
        }
        latest = self._require_job(import_id)
        if cancelled or latest.status is JobStatus.CANCELLED:
            status = JobStatus.CANCELLED
        else:
            status = JobStatus.FAILED if run.success == 0 and run.errors else JobStatus.COMPLETED
            final["status"] = status.value
        self._update(import_id, final)

        if error_log is not None:
            path = error_log.flush()
            if path is not None:
                logger.info("error log written: %s", path)

        logger.info(
            "import finished id=%s status=%s success=%d errors=%d skipped=%d",
            import_id, status.value, run.success, len(run.errors), run.skipped,
        )
        return self._require_job(import_id)

    # --------------------------------------------------------------- helpers

    def _require_job(self, import_id: str) -> ImportJob:
        job = self.job_store.get(import_id)
        if job is None:
            raise JobNotFoundError(f"import job {import_id} not found")
        return job

    def _check_transition(self, job: ImportJob, target: JobStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[job.status]:
            raise InvalidStateTransition(
                f"cannot move import {job.import_id} from {job.status.value} to {target.value}"
            )

    def _update(self, import_id: str, fields: dict[str, Any]) -> None:
        fields = {**fields, "updated_at": utc_now_iso()}
        if not self.job_store.update(import_id, fields):
            raise JobNotFoundError(f"import job {import_id} not found")

    def _fail_connectivity(
        self,
        import_id: str,
        run: _ImportRun,
        error_log: ErrorLogBuffer | None,
        exc: TargetConnectionError,
        pending: list[ImportRowError] | None = None,
    ) -> None:
        logger.error("target store unreachable id=%s: %s", import_id, exc)
        synthetic = ImportRowError(0, f"Failed to connect to target database: {exc}", ErrorCode.UNKNOWN)
        pending = [*(pending or []), synthetic]
        errors = run.errors + pending
        results = ImportResults(
            total_processed=run.processed,
            inserted=run.success,
            skipped=run.skipped,
            failed=run.failed_rows,
            errors=errors[: self.settings.max_retained_errors],
            error_count=len(errors),
            sample_inserted=run.sample,
        )
        self._update(import_id, {
            "status": JobStatus.FAILED.value,
            "results": results.to_dict(),
            "progress": run.progress().to_dict(),
            "completed_at": utc_now_iso(),
        })
        if error_log is not None:
            error_log.extend_row_errors(pending)
            error_log.flush()
