from __future__ import annotations

import json
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time as dt_time
from decimal import Decimal
from typing import Any

from psycopg2.extras import execute_values

"""JSONB document batch insert.

Documents are serialized to JSON text and inserted as one statement through
psycopg2.extras.execute_values into a ``(id bigserial, doc jsonb)`` table.
The caller owns the transaction / savepoint around the call.
"""

__all__ = [
    "BatchInsertError",
    "BatchMetrics",
    "InsertResult",
    "dumps_document",
    "batch_insert_documents",
]


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing of a single batch insert."""
    batch_size: int
    elapsed_seconds: float
    start_time: float
    end_time: float


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    returned_ids: list[Any]


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    # numpy scalar など
    item = getattr(value, "item", None)
    if callable(item):
        return item()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps_document(doc: dict[str, Any]) -> str:
    """Serialize a target document to JSON text (datetimes as ISO-8601)."""
    return json.dumps(doc, default=_json_default, ensure_ascii=False)


def batch_insert_documents(
    cursor: Any,
    table: str,
    documents: Sequence[dict[str, Any]],
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Insert documents with a single execute_values call.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: quoted, schema-qualified table name (e.g. ``"db"."people"``)
    documents: target documents
    page_size: execute_values page_size
    metrics_callback: receives BatchMetrics; not invoked for an empty batch

    Raises:
        BatchInsertError: serialization or execution failure (original chained)
    """
    if not documents:
        return InsertResult(inserted_rows=0, returned_ids=[])

    try:
        rows = [(dumps_document(doc),) for doc in documents]
    except (TypeError, ValueError) as e:
        raise BatchInsertError(f"document serialization failed: {e}") from e

    sql = f"INSERT INTO {table} (doc) VALUES %s RETURNING id"
    start_time = time.time()
    try:
        returned = execute_values(
            cursor, sql, rows, template="(%s::jsonb)", page_size=page_size, fetch=True
        )
    except Exception as e:  # psycopg2.Error 以外 (接続断の OSError 等) もまとめてラップ
        raise BatchInsertError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(BatchMetrics(
                batch_size=len(rows),
                elapsed_seconds=end_time - start_time,
                start_time=start_time,
                end_time=end_time,
            ))

    ids = [r[0] for r in returned] if returned else []
    return InsertResult(inserted_rows=len(rows), returned_ids=ids)
