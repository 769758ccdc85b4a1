from __future__ import annotations

import re
from dataclasses import replace

from docimport.models.import_job import (
    ImportJob,
    ImportProgress,
    JobStatus,
    SourceFileDescriptor,
    TargetReference,
)
from docimport.models.records import SourceConfig
from docimport.services.summary import elapsed_seconds, format_number, render_summary_line

SUMMARY_PATTERN = re.compile(
    r"^SUMMARY\s+import=(\S+)\s+status=([a-z]+)\s+rows=([0-9]+)/([0-9]+)\s+"
    r"success=([0-9]+)\s+errors=([0-9]+)\s+skipped=([0-9]+)\s+"
    r"elapsed_sec=([0-9]+\.?[0-9]*)\s+throughput_rps=([0-9]+\.?[0-9]*)$"
)


def _job(**overrides) -> ImportJob:
    job = ImportJob(
        import_id="imp-1",
        organization_id="org",
        created_by="u",
        source_file=SourceFileDescriptor(name="people.csv"),
        source_config=SourceConfig(),
        target=TargetReference(vault_id="main", database="crm", collection="people"),
        status=JobStatus.COMPLETED,
        started_at="2024-01-01T10:00:00Z",
        completed_at="2024-01-01T10:00:02Z",
    )
    return replace(job, **overrides)


def test_render_summary_line_all_success():
    progress = ImportProgress(total_rows=1000, processed_rows=1000, success_count=1000)
    line = render_summary_line(_job(progress=progress))

    match = SUMMARY_PATTERN.match(line)
    assert match, line
    assert line == (
        "SUMMARY import=imp-1 status=completed rows=1000/1000 success=1000 "
        "errors=0 skipped=0 elapsed_sec=2 throughput_rps=500"
    )


def test_render_summary_line_partial_failure():
    progress = ImportProgress(total_rows=10, processed_rows=10, success_count=7, error_count=2, skip_count=1)
    line = render_summary_line(_job(progress=progress, completed_at="2024-01-01T10:00:03Z"))

    match = SUMMARY_PATTERN.match(line)
    assert match, line
    assert match.group(5, 6, 7) == ("7", "2", "1")
    assert match.group(8) == "3"
    assert match.group(9) == "2.333"


def test_render_summary_line_unfinished_job():
    line = render_summary_line(_job(status=JobStatus.FAILED, completed_at=None))
    assert SUMMARY_PATTERN.match(line), line
    assert "elapsed_sec=0 throughput_rps=0" in line


def test_elapsed_seconds_handles_offsets():
    job = _job(started_at="2024-01-01T10:00:00+00:00", completed_at="2024-01-01T10:00:00.840000Z")
    assert elapsed_seconds(job) == 0.84


def test_format_number_avoids_scientific_notation():
    assert format_number(0.0) == "0"
    assert format_number(5.0) == "5"
    assert format_number(0.00005) == "0.00005"
    assert format_number(4761.9) == "4761.9"
    assert "e" not in format_number(1e-6)
