from __future__ import annotations

from datetime import datetime

from ..models.import_job import ImportJob

"""SUMMARY line rendering for a finished import job.

Format:
    SUMMARY import={id} status={status} rows={processed}/{total}
    success={n} errors={n} skipped={n} elapsed_sec={s} throughput_rps={r}
"""

__all__ = ["render_summary_line", "elapsed_seconds", "format_number"]


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def elapsed_seconds(job: ImportJob) -> float:
    """Wall time between started_at and completed_at (0 if either is missing)."""
    if not job.started_at or not job.completed_at:
        return 0.0
    delta = (_parse_ts(job.completed_at) - _parse_ts(job.started_at)).total_seconds()
    return max(delta, 0.0)


def format_number(value: float) -> str:
    # 整数値は小数点なし、極小値は指数表記を避ける
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(job: ImportJob) -> str:
    """Render the SUMMARY line for a job (throughput = success rows / elapsed)."""
    p = job.progress
    elapsed = elapsed_seconds(job)
    throughput = p.success_count / elapsed if elapsed > 0 else 0.0
    return (
        f"SUMMARY import={job.import_id} "
        f"status={job.status.value} "
        f"rows={p.processed_rows}/{p.total_rows} "
        f"success={p.success_count} "
        f"errors={p.error_count} "
        f"skipped={p.skip_count} "
        f"elapsed_sec={format_number(elapsed)} "
        f"throughput_rps={format_number(throughput)}"
    )
