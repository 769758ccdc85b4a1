from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import psycopg2

from .batch_insert import BatchInsertError, batch_insert_documents

"""Target document store connections.

A "database" maps to a PostgreSQL schema and a "collection" to a table
``(id bigserial primary key, doc jsonb not null)``. Inserts are unordered from
the caller's point of view: a document that the store rejects is reported in
``write_errors`` while the rest of the batch is still written.
"""

__all__ = [
    "TargetConnectionError",
    "ConnectionNotFoundError",
    "DocumentWriteError",
    "InsertManyResult",
    "TargetConnection",
    "PostgresDocumentConnection",
    "MemoryDocumentConnection",
    "ConfigConnectionResolver",
    "quote_ident",
    "IMPORT_ID_FIELD",
    "IMPORTED_AT_FIELD",
]

logger = logging.getLogger(__name__)

IMPORT_ID_FIELD = "_importId"
IMPORTED_AT_FIELD = "_importedAt"


class TargetConnectionError(Exception):
    """Target store unreachable or a non per-document failure."""


class ConnectionNotFoundError(TargetConnectionError):
    """Connection reference unknown or access denied."""


@dataclass(frozen=True)
class DocumentWriteError:
    index: int  # position in the documents passed to insert_many
    message: str


@dataclass(frozen=True)
class InsertManyResult:
    inserted_count: int
    inserted_ids: list[Any] = field(default_factory=list)
    write_errors: list[DocumentWriteError] = field(default_factory=list)


class TargetConnection(Protocol):
    def ping(self) -> None: ...

    def collection_exists(self, database: str, collection: str) -> bool: ...

    def create_collection(self, database: str, collection: str) -> None: ...

    def insert_many(self, database: str, collection: str, documents: Sequence[dict[str, Any]]) -> InsertManyResult: ...

    def delete_many(self, database: str, collection: str, import_id: str) -> int: ...

    def close(self) -> None: ...


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _is_connectivity_error(exc: BaseException | None) -> bool:
    return isinstance(exc, (psycopg2.OperationalError, psycopg2.InterfaceError))


class PostgresDocumentConnection:
    """psycopg2 backed TargetConnection.

    One instance may be shared by concurrent jobs through ConnectionCache;
    every transactional body runs under the instance lock so savepoints and
    commits of different callers never interleave on the session.
    """

    def __init__(self, dsn: str, connect: Callable[..., Any] = psycopg2.connect) -> None:
        try:
            self._conn = connect(dsn)
        except psycopg2.Error as e:
            raise TargetConnectionError(f"connection failed: {e}") from e
        self._lock = threading.Lock()

    def _table(self, database: str, collection: str) -> str:
        return f"{quote_ident(database)}.{quote_ident(collection)}"

    def ping(self) -> None:
        with self._lock:
            try:
                with self._conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    cur.fetchone()
                self._conn.rollback()
            except psycopg2.Error as e:
                raise TargetConnectionError(f"ping failed: {e}") from e

    def collection_exists(self, database: str, collection: str) -> bool:
        with self._lock:
            try:
                with self._conn.cursor() as cur:
                    cur.execute(
                        "SELECT 1 FROM information_schema.tables WHERE table_schema = %s AND table_name = %s",
                        (database, collection),
                    )
                    found = cur.fetchone() is not None
                self._conn.rollback()
                return found
            except psycopg2.Error as e:
                raise TargetConnectionError(f"collection lookup failed: {e}") from e

    def create_collection(self, database: str, collection: str) -> None:
        table = self._table(database, collection)
        index = quote_ident(f"{collection}_import_id_idx")
        with self._lock:
            try:
                with self._conn.cursor() as cur:
                    cur.execute(f"CREATE SCHEMA IF NOT EXISTS {quote_ident(database)}")
                    cur.execute(
                        f"CREATE TABLE IF NOT EXISTS {table} (id bigserial PRIMARY KEY, doc jsonb NOT NULL)"
                    )
                    cur.execute(
                        f"CREATE INDEX IF NOT EXISTS {index} ON {table} ((doc->>'{IMPORT_ID_FIELD}'))"
                    )
                self._conn.commit()
            except psycopg2.Error as e:
                self._safe_rollback()
                raise TargetConnectionError(f"create collection failed: {e}") from e

    def insert_many(self, database: str, collection: str, documents: Sequence[dict[str, Any]]) -> InsertManyResult:
        """Insert all documents; fall back to one savepoint per document on failure."""
        if not documents:
            return InsertManyResult(inserted_count=0)
        table = self._table(database, collection)
        with self._lock:
            try:
                return self._insert_locked(table, documents)
            except TargetConnectionError:
                self._safe_rollback()
                raise
            except psycopg2.Error as e:
                self._safe_rollback()
                raise TargetConnectionError(f"insert failed: {e}") from e

    def _insert_locked(self, table: str, documents: Sequence[dict[str, Any]]) -> InsertManyResult:
        with self._conn.cursor() as cur:
            cur.execute("SAVEPOINT docimport_batch")
            try:
                res = batch_insert_documents(cur, table, documents)
            except BatchInsertError as e:
                if _is_connectivity_error(e.__cause__):
                    raise TargetConnectionError(f"insert failed: {e}") from e
                cur.execute("ROLLBACK TO SAVEPOINT docimport_batch")
                logger.debug("batch insert into %s failed, retrying per document: %s", table, e)
            else:
                cur.execute("RELEASE SAVEPOINT docimport_batch")
                self._conn.commit()
                return InsertManyResult(inserted_count=res.inserted_rows, inserted_ids=res.returned_ids)

            ids: list[Any] = []
            errors: list[DocumentWriteError] = []
            for index, doc in enumerate(documents):
                cur.execute("SAVEPOINT docimport_doc")
                try:
                    one = batch_insert_documents(cur, table, [doc])
                except BatchInsertError as e:
                    if _is_connectivity_error(e.__cause__):
                        raise TargetConnectionError(f"insert failed: {e}") from e
                    cur.execute("ROLLBACK TO SAVEPOINT docimport_doc")
                    errors.append(DocumentWriteError(index=index, message=str(e)))
                else:
                    cur.execute("RELEASE SAVEPOINT docimport_doc")
                    ids.extend(one.returned_ids)
        self._conn.commit()
        return InsertManyResult(inserted_count=len(ids), inserted_ids=ids, write_errors=errors)

    def delete_many(self, database: str, collection: str, import_id: str) -> int:
        table = self._table(database, collection)
        with self._lock:
            try:
                with self._conn.cursor() as cur:
                    cur.execute(f"DELETE FROM {table} WHERE doc->>'{IMPORT_ID_FIELD}' = %s", (import_id,))
                    count = cur.rowcount
                self._conn.commit()
                return count
            except psycopg2.Error as e:
                self._safe_rollback()
                raise TargetConnectionError(f"delete failed: {e}") from e

    def _safe_rollback(self) -> None:
        # 呼び出し側でロック保持中
        try:
            self._conn.rollback()
        except psycopg2.Error:
            logger.debug("rollback failed on broken connection")

    def close(self) -> None:
        with self._lock:
            try:
                self._conn.close()
            except psycopg2.Error as e:
                logger.debug("close failed: %s", e)


class MemoryDocumentConnection:
    """In-process TargetConnection for tests and local dry runs.

    reject: optional predicate returning an error message for documents the
    fake store should refuse (simulates per-document write errors).
    """

    def __init__(self, reject: Callable[[dict[str, Any]], str | None] | None = None) -> None:
        self.collections: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.reject = reject
        self.available = True
        self.closed = False
        self.insert_calls = 0
        self._next_id = 1
        self._lock = threading.Lock()

    def _check(self) -> None:
        if not self.available or self.closed:
            raise TargetConnectionError("memory store unavailable")

    def ping(self) -> None:
        self._check()

    def collection_exists(self, database: str, collection: str) -> bool:
        self._check()
        return (database, collection) in self.collections

    def create_collection(self, database: str, collection: str) -> None:
        self._check()
        with self._lock:
            self.collections.setdefault((database, collection), [])

    def insert_many(self, database: str, collection: str, documents: Sequence[dict[str, Any]]) -> InsertManyResult:
        self._check()
        with self._lock:
            self.insert_calls += 1
            target = self.collections.setdefault((database, collection), [])
            ids: list[Any] = []
            errors: list[DocumentWriteError] = []
            for index, doc in enumerate(documents):
                message = self.reject(doc) if self.reject else None
                if message:
                    errors.append(DocumentWriteError(index=index, message=message))
                    continue
                target.append(copy.deepcopy(doc))
                ids.append(self._next_id)
                self._next_id += 1
            return InsertManyResult(inserted_count=len(ids), inserted_ids=ids, write_errors=errors)

    def delete_many(self, database: str, collection: str, import_id: str) -> int:
        self._check()
        with self._lock:
            docs = self.collections.get((database, collection), [])
            kept = [d for d in docs if d.get(IMPORT_ID_FIELD) != import_id]
            self.collections[(database, collection)] = kept
            return len(docs) - len(kept)

    def documents(self, database: str, collection: str) -> list[dict[str, Any]]:
        return list(self.collections.get((database, collection), []))

    def close(self) -> None:
        self.closed = True


class ConfigConnectionResolver:
    """Resolve connection references to DSNs from configuration.

    Called as ``resolver(organization_id, reference)``; the organization is
    not used for lookup here (single-tenant configuration).
    """

    def __init__(
        self,
        targets: Mapping[str, str],
        factory: Callable[[str], TargetConnection] = PostgresDocumentConnection,
    ) -> None:
        self._targets = dict(targets)
        self._factory = factory

    def __call__(self, organization_id: str, reference: str) -> TargetConnection:
        dsn = self._targets.get(reference)
        if not dsn:
            raise ConnectionNotFoundError(f"connection reference not found: {reference}")
        return self._factory(dsn)
