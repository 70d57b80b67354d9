# spendlens/ingest/excel.py
from __future__ import annotations

from pathlib import Path

import pandas as pd

EXCEL_SUFFIXES = {".xlsx": "openpyxl", ".xlsm": "openpyxl", ".xls": "xlrd"}


def is_workbook(path: str | Path) -> bool:
    return Path(path).suffix.lower() in EXCEL_SUFFIXES


def workbook_to_text(path: str | Path, sheet_name: int | str = 0) -> str:
    """Render the first sheet of a workbook as tab-delimited statement text.

    Cells are read as strings so bank-native date and amount formats reach
    the normalisers untouched; tabs and newlines inside cells become spaces.
    """
    file_path = Path(path)
    engine = EXCEL_SUFFIXES.get(file_path.suffix.lower())
    if engine is None:
        raise ValueError(f"Not a spreadsheet file: {file_path}")

    raw = pd.read_excel(
        file_path,
        sheet_name=sheet_name,
        header=None,
        dtype=str,
        engine=engine,
    )
    raw = raw.fillna("")

    lines = []
    for _, row in raw.iterrows():
        cells = [" ".join(str(v).split()) for v in row.values]
        lines.append("\t".join(cells).rstrip("\t"))
    return "\n".join(lines)
