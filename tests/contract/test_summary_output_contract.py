from __future__ import annotations

import re
from pathlib import Path

from docimport.cli.__main__ import main as cli_main

"""SUMMARY line format contract.

    SUMMARY import={id} status={status} rows={processed}/{total} success={n}
    errors={n} skipped={n} elapsed_sec={s} throughput_rps={r}
"""

SUMMARY_PATTERN = re.compile(
    r"^SUMMARY\s+import=(import_[0-9a-f]+)\s+status=(completed|failed|cancelled)\s+"
    r"rows=([0-9]+)/([0-9]+)\s+success=([0-9]+)\s+errors=([0-9]+)\s+skipped=([0-9]+)\s+"
    r"elapsed_sec=([0-9]+\.?[0-9]*)\s+throughput_rps=([0-9]+\.?[0-9]*)$",
    re.MULTILINE,
)


def test_summary_pattern_example_line():
    line = (
        "SUMMARY import=import_0a1b status=completed rows=5/5 success=4 errors=1 skipped=0 "
        "elapsed_sec=0.84 throughput_rps=4.762"
    )
    assert SUMMARY_PATTERN.match(line)


def test_cli_emits_one_summary_line(write_config, people_file: Path, temp_workdir: Path, cli_target, capsys):
    mapping = temp_workdir / "mapping.yml"
    mapping.write_text("mappings:\n  - source_column: name\n  - source_column: email\n    required: true\n", encoding="utf-8")
    cli_main([
        "run", str(people_file), "--mapping", str(mapping),
        "--target", "main", "--database", "crm", "--collection", "people",
    ])
    out = capsys.readouterr().out
    matches = SUMMARY_PATTERN.findall(out)
    assert len(matches) == 1
    _, status, processed, total, success, errors, skipped, _, _ = matches[0]
    assert status == "completed"
    assert (int(processed), int(total)) == (5, 5)
    assert int(processed) == int(success) + int(errors) + int(skipped)
