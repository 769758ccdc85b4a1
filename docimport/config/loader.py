from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.import_job import ErrorHandling, ErrorStrategy
from ..models.mapping import DEFAULT_FALSE_VALUES, DEFAULT_TRUE_VALUES

"""Importer configuration loader.

Responsibilities:
- Load the YAML config (all sections optional; defaults below)
- Validate against config_schema.json shipped with the package
- Resolve the job store DSN and target DSNs with environment precedence
"""

__all__ = [
    "ConfigError",
    "ImporterSettings",
    "DatabaseConfig",
    "TargetConfig",
    "ImporterConfig",
    "SCHEMA_PATH",
    "load_config",
    "resolve_database_dsn",
    "resolve_target_dsns",
]

SCHEMA_PATH = Path(__file__).parent / "config_schema.json"


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class ImporterSettings:
    batch_size: int = 100
    analyze_sample_size: int = 1000
    validation_sample_size: int = 100
    preview_rows: int = 10
    sample_output_size: int = 5
    max_retained_errors: int = 100
    default_error_handling: ErrorHandling = field(default_factory=ErrorHandling)
    error_log_dir: str = "./logs"
    true_values: tuple[str, ...] = DEFAULT_TRUE_VALUES
    false_values: tuple[str, ...] = DEFAULT_FALSE_VALUES


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None
    job_table: str = "import_jobs"


@dataclass(frozen=True)
class TargetConfig:
    name: str
    dsn: str | None = None
    dsn_env: str | None = None  # DSN を保持する環境変数名


@dataclass(frozen=True)
class ImporterConfig:
    settings: ImporterSettings = field(default_factory=ImporterSettings)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    targets: dict[str, TargetConfig] = field(default_factory=dict)


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing / not JSON, or the data violates it
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _settings_from(raw: Mapping[str, Any]) -> ImporterSettings:
    defaults = ImporterSettings()
    eh_raw = raw.get("error_handling") or {}
    error_handling = ErrorHandling(
        strategy=ErrorStrategy(eh_raw.get("strategy", defaults.default_error_handling.strategy.value)),
        max_errors=eh_raw.get("max_errors", defaults.default_error_handling.max_errors),
    )
    return ImporterSettings(
        batch_size=raw.get("batch_size", defaults.batch_size),
        analyze_sample_size=raw.get("analyze_sample_size", defaults.analyze_sample_size),
        validation_sample_size=raw.get("validation_sample_size", defaults.validation_sample_size),
        preview_rows=raw.get("preview_rows", defaults.preview_rows),
        sample_output_size=raw.get("sample_output_size", defaults.sample_output_size),
        max_retained_errors=raw.get("max_retained_errors", defaults.max_retained_errors),
        default_error_handling=error_handling,
        error_log_dir=raw.get("error_log_dir", defaults.error_log_dir),
        true_values=tuple(v.lower() for v in raw.get("true_values", defaults.true_values)),
        false_values=tuple(v.lower() for v in raw.get("false_values", defaults.false_values)),
    )


def load_config(path: Path) -> ImporterConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)

    db_raw = data.get("database") or {}
    database = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
        job_table=db_raw.get("job_table", "import_jobs"),
    )
    targets = {
        name: TargetConfig(name=name, dsn=t.get("dsn"), dsn_env=t.get("dsn_env"))
        for name, t in (data.get("targets") or {}).items()
    }
    return ImporterConfig(
        settings=_settings_from(data.get("importer") or {}),
        database=database,
        targets=targets,
    )


def resolve_database_dsn(db: DatabaseConfig, env: Mapping[str, str] | None = None) -> str:
    """Job store DSN.

    優先順位:
        1. DATABASE_URL / PGDSN (DSN 全体)
        2. config の database.dsn
        3. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE、不足分は config の個別値
    """
    env = os.environ if env is None else env
    dsn = env.get("DATABASE_URL") or env.get("PGDSN") or db.dsn
    if dsn:
        return dsn
    host = env.get("PGHOST", db.host or "localhost")
    port = env.get("PGPORT", str(db.port) if db.port else "5432")
    user = env.get("PGUSER", db.user or "postgres")
    password = env.get("PGPASSWORD", db.password or "")
    database = env.get("PGDATABASE", db.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


def resolve_target_dsns(config: ImporterConfig, env: Mapping[str, str] | None = None) -> dict[str, str]:
    """Map target reference -> DSN. References whose env var is unset are omitted."""
    env = os.environ if env is None else env
    resolved: dict[str, str] = {}
    for name, target in config.targets.items():
        dsn = target.dsn or (env.get(target.dsn_env) if target.dsn_env else None)
        if dsn:
            resolved[name] = dsn
    return resolved
