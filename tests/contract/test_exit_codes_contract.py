from __future__ import annotations

from pathlib import Path

import pytest

from docimport.cli.__main__ import main as cli_main

"""Exit code contract: 0 all rows imported, 2 partial, 1 fatal."""


def _run(file: Path, mapping: Path) -> int:
    return cli_main([
        "run", str(file), "--mapping", str(mapping),
        "--target", "main", "--database", "crm", "--collection", "people",
    ])


@pytest.mark.parametrize(
    "mapping_yaml, expected",
    [
        ("mappings:\n  - source_column: name\n", 0),
        ("mappings:\n  - source_column: email\n    required: true\n", 2),
        ("mappings:\n  - source_column: missing_column\n", 1),
    ],
)
def test_exit_code_by_outcome(write_config, people_file: Path, temp_workdir: Path, cli_target, mapping_yaml, expected):
    mapping = temp_workdir / "mapping.yml"
    mapping.write_text(mapping_yaml, encoding="utf-8")
    assert _run(people_file, mapping) == expected


def test_exit_code_fatal_startup(temp_workdir: Path, people_file: Path, capsys):
    (temp_workdir / "config" / "import.yml").write_text("importer: [1, 2]\n", encoding="utf-8")
    code = cli_main(["inspect", str(people_file)])
    assert code == 1
    assert "ERROR config:" in capsys.readouterr().out


def test_exit_code_target_unreachable(write_config, people_file: Path, temp_workdir: Path, cli_target):
    cli_target.available = False
    mapping = temp_workdir / "mapping.yml"
    mapping.write_text("mappings:\n  - source_column: name\n", encoding="utf-8")
    assert _run(people_file, mapping) == 1
