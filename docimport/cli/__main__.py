from __future__ import annotations

import argparse
import mimetypes
import sys
from pathlib import Path
from typing import Any

import psycopg2
import yaml
from dotenv import load_dotenv

from docimport.config.loader import (
    ConfigError,
    ImporterConfig,
    load_config,
    resolve_database_dsn,
    resolve_target_dsns,
)
from docimport.db.connection_cache import ConnectionCache
from docimport.db.job_store import ImportJobStore, MemoryJobStore, PostgresJobStore
from docimport.db.target import ConfigConnectionResolver, TargetConnectionError
from docimport.logging.init import log_summary, set_debug, setup_logging
from docimport.models.import_job import (
    ErrorHandling,
    ErrorStrategy,
    ImportJob,
    JobStatus,
    SourceFileDescriptor,
    TargetReference,
)
from docimport.models.mapping import ImportMappingConfig, MappingConfigError
from docimport.models.records import SourceConfig, SourceFormat
from docimport.services.orchestrator import ImportService, ProcessingError
from docimport.services.summary import render_summary_line

"""CLI entrypoint.

    python -m docimport.cli inspect FILE [--write-mapping mapping.yml]
    python -m docimport.cli run FILE --mapping mapping.yml --target REF --database DB --collection NAME

Exit codes:
    0  all rows imported
    2  completed with row errors (partial success)
    1  fatal: config / mapping problem, target unreachable, or job failed
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

DEFAULT_CONFIG_PATH = Path("config/import.yml")
CLI_ORGANIZATION = "local"
CLI_USER = "cli"


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv.

    override=True により .env の値で既存環境変数を上書きし、接続情報を最優先化。
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="docimport", description="File -> document collection bulk importer")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--config", type=Path, default=None, help=f"Config YAML (default: {DEFAULT_CONFIG_PATH})")
    sub = p.add_subparsers(dest="command", required=True)

    def _source_args(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("file", type=Path, help="Source file (csv/tsv/json/jsonl/xlsx/xls)")
        sp.add_argument("--format", choices=[f.value for f in SourceFormat], default=None)
        sp.add_argument("--delimiter", default=None)
        sp.add_argument("--no-header", action="store_true", help="First row is data, not headers")
        sp.add_argument("--skip-rows", type=int, default=0)
        sp.add_argument("--encoding", default="utf-8")
        sp.add_argument("--sheet", default=None, help="Spreadsheet sheet name")
        sp.add_argument("--root-path", default=None, help="JSON: dot path to the record array")

    inspect = sub.add_parser("inspect", help="Analyze a file and print the inferred schema")
    _source_args(inspect)
    inspect.add_argument("--sample-size", type=int, default=None)
    inspect.add_argument("--write-mapping", type=Path, default=None, help="Write suggested mapping YAML here")

    run = sub.add_parser("run", help="Import a file into a target collection")
    _source_args(run)
    run.add_argument("--mapping", type=Path, required=True, help="Mapping YAML")
    run.add_argument("--target", required=True, help="Target connection reference (config targets)")
    run.add_argument("--database", required=True)
    run.add_argument("--collection", required=True)
    run.add_argument("--create-collection", action="store_true")
    run.add_argument("--dry-run", action="store_true", help="Transform only, no writes to the target")
    run.add_argument("--strategy", choices=[s.value for s in ErrorStrategy], default=None)
    run.add_argument("--max-errors", type=int, default=None)
    run.add_argument("--error-log", default=None, help="JSON Lines error log path")
    run.add_argument("--persist-jobs", action="store_true", help="Store the job record in PostgreSQL")
    return p.parse_args(argv)


def _load_importer_config(path: Path | None) -> ImporterConfig:
    # 明示指定が無く既定パスも無ければ既定値で動作
    if path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            return ImporterConfig()
        path = DEFAULT_CONFIG_PATH
    return load_config(path)


def _source_config(args: argparse.Namespace) -> SourceConfig:
    return SourceConfig(
        format=SourceFormat(args.format) if args.format else None,
        delimiter=args.delimiter,
        has_header=not args.no_header,
        skip_rows=args.skip_rows,
        encoding=args.encoding,
        sheet_name=args.sheet,
        root_path=args.root_path,
    )


def _source_descriptor(path: Path, content: bytes) -> SourceFileDescriptor:
    mime_type, _ = mimetypes.guess_type(path.name)
    return SourceFileDescriptor(name=path.name, size=len(content), mime_type=mime_type)


def _job_store(cfg: ImporterConfig, persist: bool) -> ImportJobStore:
    if not persist:
        return MemoryJobStore()
    conn = psycopg2.connect(resolve_database_dsn(cfg.database))
    store = PostgresJobStore(conn, table=cfg.database.job_table)
    store.ensure_table()
    return store


def _read_mapping(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise MappingConfigError(f"mapping file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise MappingConfigError(f"invalid mapping yaml: {e}") from e
    if not isinstance(data, dict):
        raise MappingConfigError("mapping root must be a mapping")
    return data


def _inspect(args: argparse.Namespace, cfg: ImporterConfig) -> int:
    logger = setup_logging()
    content = args.file.read_bytes()
    service = ImportService(MemoryJobStore(), ConnectionCache(ConfigConnectionResolver({})), cfg.settings)
    job = service.create_import_job(
        organization_id=CLI_ORGANIZATION,
        created_by=CLI_USER,
        source_file=_source_descriptor(args.file, content),
        source_config=_source_config(args),
        target=TargetReference(vault_id="", database="", collection=""),
    )
    analysis = service.analyze_data(job.import_id, content, sample_size=args.sample_size)
    schema = analysis.schema

    for w in analysis.parse_warnings:
        logger.warning(f"parse: {w}")
    for e in analysis.parse_errors:
        logger.error(f"parse: row={e['row_number']} {e['message']}")
    logger.info(
        f"FILE: {args.file.name} rows={analysis.preview['total_rows']} "
        f"sampled={schema.sample_size} collection={schema.suggested_collection}"
    )
    for f in schema.fields:
        logger.info(
            f"  FIELD: {f.original_name} -> {f.suggested_path} type={f.inferred_type.value} "
            f"confidence={f.confidence:.2f} required={f.is_required} unique={f.is_unique}"
        )
    for w in schema.warnings:
        logger.warning(f"schema: {w.message}")

    if args.write_mapping:
        mapping = ImportMappingConfig(mappings=analysis.suggested_mappings)
        args.write_mapping.parent.mkdir(parents=True, exist_ok=True)
        args.write_mapping.write_text(
            yaml.safe_dump(mapping.to_dict(), sort_keys=False, allow_unicode=True), encoding="utf-8"
        )
        logger.info(f"suggested mapping written: {args.write_mapping}")
    return EXIT_SUCCESS_ALL


def _exit_code(job: ImportJob) -> int:
    if job.status is JobStatus.FAILED:
        return EXIT_FATAL
    results = job.results
    if job.status is JobStatus.COMPLETED and results is not None and results.error_count == 0:
        return EXIT_SUCCESS_ALL
    return EXIT_PARTIAL_FAILURE


def _run(args: argparse.Namespace, cfg: ImporterConfig) -> int:
    logger = setup_logging()
    content = args.file.read_bytes()
    mapping_data = _read_mapping(args.mapping)

    defaults = cfg.settings.default_error_handling
    error_handling = ErrorHandling(
        strategy=ErrorStrategy(args.strategy) if args.strategy else defaults.strategy,
        max_errors=args.max_errors if args.max_errors is not None else defaults.max_errors,
        error_log_path=args.error_log,
    )
    cache = ConnectionCache(ConfigConnectionResolver(resolve_target_dsns(cfg)))
    service = ImportService(
        _job_store(cfg, args.persist_jobs),
        cache,
        cfg.settings,
        show_progress=True,
    )
    try:
        job = service.create_import_job(
            organization_id=CLI_ORGANIZATION,
            created_by=CLI_USER,
            source_file=_source_descriptor(args.file, content),
            source_config=_source_config(args),
            target=TargetReference(
                vault_id=args.target,
                database=args.database,
                collection=args.collection,
                create_collection=args.create_collection,
            ),
            error_handling=error_handling,
        )
        service.analyze_data(job.import_id, content)
        validation = service.configure_mappings(job.import_id, mapping_data, content)
        config_errors = [e for e in validation.errors if e.row_number == 0]
        if config_errors:
            for e in config_errors:
                logger.error(f"mapping: {e.error}")
            return EXIT_FATAL
        for w in validation.warnings:
            logger.warning(f"mapping: {w}")

        try:
            job = service.execute_import(job.import_id, content, dry_run=args.dry_run)
        except TargetConnectionError as e:
            logger.error(f"target: {e}")
            failed = service.get_import_job(job.import_id)
            if failed is not None:
                log_summary(render_summary_line(failed)[8:])
            return EXIT_FATAL
    finally:
        cache.close_all()

    logger.info(f"mode={'dry-run' if args.dry_run else 'live'} import_id={job.import_id}")
    # "SUMMARY " は log_summary 側で付与される
    log_summary(render_summary_line(job)[8:])
    return _exit_code(job)


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # NOTE: 空リストが与えられた場合に sys.argv[1:] が混入しないよう None のときのみ読む
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        set_debug(True)
        logger.debug("debug mode enabled")

    try:
        cfg = _load_importer_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if not args.file.exists():
        logger.error(f"file not found: {args.file}")
        return EXIT_FATAL

    try:
        if args.command == "inspect":
            return _inspect(args, cfg)
        return _run(args, cfg)
    except (MappingConfigError, ProcessingError) as e:
        logger.error(f"processing: {e}")
        return EXIT_FATAL
    except psycopg2.Error as e:
        logger.error(f"job store: {e}")
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
