# Shared pytest fixtures
from __future__ import annotations

import io
from pathlib import Path

import pandas as pd
import pytest

from docimport.config.loader import ImporterSettings
from docimport.db.job_store import MemoryJobStore
from docimport.db.target import MemoryDocumentConnection
from docimport.logging.init import reset_logging
from docimport.models.import_job import SourceFileDescriptor, TargetReference
from docimport.services.orchestrator import ImportService


@pytest.fixture(autouse=True)
def _clean_logging():
    # StreamHandler は生成時の sys.stdout を保持するためテスト毎に作り直す
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(tmp_path: Path, monkeypatch) -> Path:
    (tmp_path / "config").mkdir()
    (tmp_path / "data").mkdir()
    (tmp_path / "logs").mkdir()
    monkeypatch.chdir(tmp_path)
    for var in ("DATABASE_URL", "PGDSN", "PGHOST", "PGPORT", "PGUSER", "PGPASSWORD", "PGDATABASE"):
        monkeypatch.delenv(var, raising=False)
    return tmp_path


@pytest.fixture()
def sample_config_yaml() -> str:
    return """importer:
  batch_size: 2
  analyze_sample_size: 500
  max_retained_errors: 50
  error_log_dir: ./logs
  error_handling:
    strategy: skip
    max_errors: 10
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
targets:
  main:
    dsn: "host=localhost dbname=docs"
  other:
    dsn_env: OTHER_TARGET_DSN
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def people_csv() -> str:
    return (
        "name,email,age,active\n"
        "Alice,alice@example.com,30,yes\n"
        "Bob,bob@example.com,,no\n"
        "Carol,carol@example.com,41,yes\n"
        "Dave,,29,no\n"
        "Erin,erin@example.com,35,yes\n"
    )


@pytest.fixture()
def xlsx_bytes() -> bytes:
    df = pd.DataFrame(
        [["Alice", 30, "2024-01-05"], ["Bob", 25, "2024-02-10"]],
        columns=["name", "age", "joined"],
    )
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name="People", index=False)
    return buf.getvalue()


@pytest.fixture()
def memory_target() -> MemoryDocumentConnection:
    return MemoryDocumentConnection()


@pytest.fixture()
def job_store() -> MemoryJobStore:
    return MemoryJobStore()


@pytest.fixture()
def make_service(job_store: MemoryJobStore, memory_target: MemoryDocumentConnection):
    def _make(batch_size: int = 2, **kwargs) -> ImportService:
        settings = ImporterSettings(batch_size=batch_size, **kwargs)
        return ImportService(job_store, lambda org, ref: memory_target, settings)
    return _make


@pytest.fixture()
def target_ref() -> TargetReference:
    return TargetReference(vault_id="main", database="crm", collection="people", create_collection=True)


@pytest.fixture()
def csv_source() -> SourceFileDescriptor:
    return SourceFileDescriptor(name="people.csv", size=0, mime_type="text/csv")


class _FixedConnectionCache:
    """ConnectionCache stand-in handing out one prepared connection."""

    def __init__(self, conn):
        self.conn = conn
        self.closed = False

    def __call__(self, organization_id, reference):
        return self.conn

    def close_all(self):
        self.closed = True


@pytest.fixture()
def cli_target(monkeypatch, memory_target: MemoryDocumentConnection) -> MemoryDocumentConnection:
    """Route the CLI's target connections to the in-memory store."""
    monkeypatch.setattr(
        "docimport.cli.__main__.ConnectionCache",
        lambda resolver: _FixedConnectionCache(memory_target),
    )
    return memory_target


@pytest.fixture()
def people_file(temp_workdir: Path, people_csv: str) -> Path:
    path = temp_workdir / "data" / "people.csv"
    path.write_text(people_csv, encoding="utf-8")
    return path
