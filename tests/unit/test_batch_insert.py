from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal

import numpy as np
import pytest

from docimport.db.batch_insert import (
    BatchInsertError,
    BatchMetrics,
    InsertResult,
    batch_insert_documents,
    dumps_document,
)


class DummyCursor:
    def __init__(self) -> None:
        self.queries: list[str] = []
        self.rows: list[tuple] = []
        self.template: str | None = None


# execute_values をモジュール内でモンキーパッチし、DB 無しでロジックを検証
@pytest.fixture(autouse=True)
def patch_execute_values(monkeypatch):
    import docimport.db.batch_insert as bi

    def fake_execute_values(cursor, sql, rows, template=None, page_size=100, fetch=False):  # noqa: D401
        cursor.queries.append(sql)
        cursor.rows.extend(rows)
        cursor.template = template
        return [(i + 1,) for i in range(len(rows))] if fetch else None

    monkeypatch.setattr(bi, "execute_values", fake_execute_values)
    return fake_execute_values


def test_batch_insert_basic():
    cur = DummyCursor()
    res = batch_insert_documents(cur, '"crm"."people"', [{"name": "Alice"}, {"name": "Bob"}])
    assert isinstance(res, InsertResult)
    assert res.inserted_rows == 2
    assert res.returned_ids == [1, 2]
    assert cur.queries == ['INSERT INTO "crm"."people" (doc) VALUES %s RETURNING id']
    assert cur.template == "(%s::jsonb)"
    assert [json.loads(r[0]) for r in cur.rows] == [{"name": "Alice"}, {"name": "Bob"}]


def test_batch_insert_empty_documents():
    cur = DummyCursor()
    res = batch_insert_documents(cur, "t", [])
    assert res == InsertResult(inserted_rows=0, returned_ids=[])
    assert cur.queries == []


def test_batch_insert_wraps_driver_errors(monkeypatch):
    import docimport.db.batch_insert as bi

    def boom(*args, **kwargs):
        raise RuntimeError("duplicate key")

    monkeypatch.setattr(bi, "execute_values", boom)
    with pytest.raises(BatchInsertError, match="duplicate key") as excinfo:
        batch_insert_documents(DummyCursor(), "t", [{"a": 1}])
    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_batch_insert_serialization_failure():
    with pytest.raises(BatchInsertError, match="serialization"):
        batch_insert_documents(DummyCursor(), "t", [{"a": object()}])


def test_batch_insert_with_metrics_callback():
    cur = DummyCursor()
    captured: list[BatchMetrics] = []

    batch_insert_documents(cur, "t", [{"a": 1}, {"a": 2}, {"a": 3}], metrics_callback=captured.append)

    assert len(captured) == 1
    metrics = captured[0]
    assert metrics.batch_size == 3
    assert metrics.elapsed_seconds >= 0
    assert metrics.end_time >= metrics.start_time


def test_metrics_callback_not_called_for_empty_batch():
    captured: list[BatchMetrics] = []
    batch_insert_documents(DummyCursor(), "t", [], metrics_callback=captured.append)
    assert captured == []


def test_dumps_document_handles_rich_values():
    doc = {
        "when": datetime(2024, 1, 5, 10, 30),
        "price": Decimal("1.50"),
        "tags": ("a", "b"),
        "count": np.int64(3),
        "name": "日本",
    }
    data = json.loads(dumps_document(doc))
    assert data == {"when": "2024-01-05T10:30:00", "price": 1.5, "tags": ["a", "b"], "count": 3, "name": "日本"}
