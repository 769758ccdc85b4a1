from __future__ import annotations

import io
from datetime import datetime
from typing import Any

import numpy as np
import pandas as pd

from ..models.records import ParsedRecord, ParseError, ParseResult, SourceConfig
from .delimited import dedupe_headers

"""Spreadsheet (xlsx / xls) reader.

Sheets are read raw (header=None) through pandas, then the header row is
applied here so skip_rows / has_header behave exactly like the delimited
parser. Row numbers are 1-based sheet rows.
"""

__all__ = [
    "parse_excel",
]


def _to_python(val: Any) -> Any:
    """Convert pandas / numpy cell values to plain Python values."""
    if val is None:
        return ""
    if isinstance(val, pd.Timestamp):
        if pd.isna(val):
            return ""
        return val.to_pydatetime()
    if isinstance(val, np.generic):
        val = val.item()
    if isinstance(val, float) and np.isnan(val):
        return ""
    if isinstance(val, str):
        return val.strip()
    if isinstance(val, datetime):
        return val
    return val


def _is_blank_row(values: list[Any]) -> bool:
    return all(v == "" for v in values)


def parse_excel(content: bytes, config: SourceConfig, *, max_rows: int | None = None) -> ParseResult:
    """Parse one sheet of a workbook.

    Sheet selection: sheet_name, else sheet_index, else the first sheet.
    """
    result = ParseResult()
    try:
        xls = pd.ExcelFile(io.BytesIO(content))
    except Exception as e:  # 破損ファイル / 未対応形式は pandas / エンジン側の例外型がまちまち
        result.errors.append(ParseError(0, f"Unable to read spreadsheet: {e}"))
        return result

    sheet_names = [str(n) for n in xls.sheet_names]
    if not sheet_names:
        result.errors.append(ParseError(0, "Workbook contains no sheets"))
        return result

    if config.sheet_name is not None:
        if config.sheet_name not in sheet_names:
            result.errors.append(ParseError(0, f"Sheet \"{config.sheet_name}\" not found"))
            return result
        sheet = config.sheet_name
    elif config.sheet_index is not None:
        if not 0 <= config.sheet_index < len(sheet_names):
            result.errors.append(ParseError(0, f"Sheet index {config.sheet_index} out of range"))
            return result
        sheet = sheet_names[config.sheet_index]
    else:
        sheet = sheet_names[0]

    # 空セルは "" のまま (NaN 変換しない)
    df = xls.parse(sheet, header=None, keep_default_na=False, dtype=object)

    rows: list[tuple[int, list[Any]]] = []
    for idx, raw in enumerate(df.itertuples(index=False, name=None)):
        values = [_to_python(v) for v in raw]
        if _is_blank_row(values):
            continue
        rows.append((idx + 1, values))

    if not rows:
        result.warnings.append(f"Sheet \"{sheet}\" is empty")
        return result

    rows = rows[config.skip_rows:]
    if not rows:
        result.warnings.append("No data rows found after skipping")
        return result

    if config.has_header:
        result.headers, rename_warnings = dedupe_headers([str(v) for v in rows[0][1]])
        result.warnings.extend(rename_warnings)
        data_rows = rows[1:]
    else:
        result.headers = [f"column_{i + 1}" for i in range(len(rows[0][1]))]
        data_rows = rows

    result.total_rows = len(data_rows)
    limit = result.total_rows if max_rows is None else max_rows
    for row_number, values in data_rows[:limit]:
        data = {h: (values[i] if i < len(values) else "") for i, h in enumerate(result.headers)}
        result.records.append(ParsedRecord(row_number=row_number, data=data))
    return result
