from __future__ import annotations

import json
import threading
from typing import Any, Protocol

import psycopg2

from ..models.import_job import ImportJob, JobStatus
from .batch_insert import dumps_document
from .target import quote_ident

"""Import job persistence.

Jobs are stored as whole documents addressed by import_id. update() is a
top-level partial update: the given keys replace the stored ones in a single
write, which is what keeps progress snapshots consistent for readers.
"""

__all__ = [
    "ImportJobStore",
    "MemoryJobStore",
    "PostgresJobStore",
]


class ImportJobStore(Protocol):
    def insert(self, job: ImportJob) -> None: ...

    def get(self, import_id: str) -> ImportJob | None: ...

    def update(self, import_id: str, fields: dict[str, Any]) -> bool: ...

    def delete(self, import_id: str) -> bool: ...

    def list(
        self, organization_id: str, status: JobStatus | None = None, limit: int = 20, skip: int = 0
    ) -> list[ImportJob]: ...


def _to_json_doc(data: dict[str, Any]) -> dict[str, Any]:
    # datetime 等を文字列化した JSON 互換 dict (読み出しはスナップショット)
    return json.loads(dumps_document(data))


class MemoryJobStore:
    """Thread-safe in-process job store."""

    def __init__(self) -> None:
        self._docs: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def insert(self, job: ImportJob) -> None:
        doc = _to_json_doc(job.to_dict())
        with self._lock:
            if job.import_id in self._docs:
                raise ValueError(f"duplicate import_id: {job.import_id}")
            self._docs[job.import_id] = doc

    def get(self, import_id: str) -> ImportJob | None:
        with self._lock:
            doc = self._docs.get(import_id)
            snapshot = json.loads(json.dumps(doc)) if doc is not None else None
        return ImportJob.from_dict(snapshot) if snapshot is not None else None

    def update(self, import_id: str, fields: dict[str, Any]) -> bool:
        patch = _to_json_doc(fields)
        with self._lock:
            doc = self._docs.get(import_id)
            if doc is None:
                return False
            doc.update(patch)
            return True

    def delete(self, import_id: str) -> bool:
        with self._lock:
            return self._docs.pop(import_id, None) is not None

    def list(
        self, organization_id: str, status: JobStatus | None = None, limit: int = 20, skip: int = 0
    ) -> list[ImportJob]:
        with self._lock:
            docs = [
                json.loads(json.dumps(d))
                for d in self._docs.values()
                if d["organization_id"] == organization_id and (status is None or d["status"] == status.value)
            ]
        docs.sort(key=lambda d: d["created_at"], reverse=True)
        return [ImportJob.from_dict(d) for d in docs[skip:skip + limit]]

    def __len__(self) -> int:
        return len(self._docs)


class PostgresJobStore:
    """JSONB table backed job store (psycopg2 connection supplied by caller)."""

    def __init__(self, conn: Any, table: str = "import_jobs", schema: str | None = None) -> None:
        self._conn = conn
        self._table = f"{quote_ident(schema)}.{quote_ident(table)}" if schema else quote_ident(table)

    def ensure_table(self) -> None:
        with self._conn.cursor() as cur:
            cur.execute(
                f"CREATE TABLE IF NOT EXISTS {self._table} ("
                "import_id text PRIMARY KEY, organization_id text NOT NULL, doc jsonb NOT NULL)"
            )
        self._conn.commit()

    def _execute(self, sql: str, params: tuple[Any, ...]) -> Any:
        try:
            with self._conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall() if cur.description else None
                count = cur.rowcount
            self._conn.commit()
        except psycopg2.Error:
            self._conn.rollback()
            raise
        return rows, count

    def insert(self, job: ImportJob) -> None:
        self._execute(
            f"INSERT INTO {self._table} (import_id, organization_id, doc) VALUES (%s, %s, %s::jsonb)",
            (job.import_id, job.organization_id, dumps_document(job.to_dict())),
        )

    def get(self, import_id: str) -> ImportJob | None:
        rows, _ = self._execute(f"SELECT doc FROM {self._table} WHERE import_id = %s", (import_id,))
        if not rows:
            return None
        doc = rows[0][0]
        return ImportJob.from_dict(doc if isinstance(doc, dict) else json.loads(doc))

    def update(self, import_id: str, fields: dict[str, Any]) -> bool:
        _, count = self._execute(
            f"UPDATE {self._table} SET doc = doc || %s::jsonb WHERE import_id = %s",
            (dumps_document(fields), import_id),
        )
        return count > 0

    def delete(self, import_id: str) -> bool:
        _, count = self._execute(f"DELETE FROM {self._table} WHERE import_id = %s", (import_id,))
        return count > 0

    def list(
        self, organization_id: str, status: JobStatus | None = None, limit: int = 20, skip: int = 0
    ) -> list[ImportJob]:
        sql = f"SELECT doc FROM {self._table} WHERE organization_id = %s"
        params: list[Any] = [organization_id]
        if status is not None:
            sql += " AND doc->>'status' = %s"
            params.append(status.value)
        sql += " ORDER BY doc->>'created_at' DESC LIMIT %s OFFSET %s"
        params.extend([limit, skip])
        rows, _ = self._execute(sql, tuple(params))
        return [ImportJob.from_dict(r[0] if isinstance(r[0], dict) else json.loads(r[0])) for r in rows or []]
