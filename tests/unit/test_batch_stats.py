from __future__ import annotations

import pytest

from docimport.models.batch_stats import BatchStatsAccumulator


def test_empty_accumulator():
    assert BatchStatsAccumulator().get_stats() == (0, 0.0, 0.0)


def test_single_batch_p95_is_the_batch():
    acc = BatchStatsAccumulator()
    acc.add_batch_time(0.4)
    assert acc.get_stats() == (1, 0.4, 0.4)


def test_multiple_batches():
    acc = BatchStatsAccumulator()
    for t in [0.1, 0.2, 0.3, 0.4, 1.0]:
        acc.add_batch_time(t)
    total, avg, p95 = acc.get_stats()
    assert total == 5
    assert avg == pytest.approx(0.4)
    assert 0.4 < p95 <= 1.0
