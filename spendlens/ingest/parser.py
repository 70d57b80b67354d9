# spendlens/ingest/parser.py
from __future__ import annotations

import csv
import re
from typing import List, Optional, Sequence

from spendlens.core.models import UNKNOWN_PAYEE, HeaderInfo, StagingRow
from spendlens.errors import HeaderNotFoundError, MissingColumnsError, NoDataRowsError

TYPE_COLUMN = "transaction type"
DATE_COLUMN = "date posted"
AMOUNT_COLUMN = "transaction amount"
DESCRIPTION_COLUMN = "description"
REQUIRED_COLUMNS = (TYPE_COLUMN, DATE_COLUMN, AMOUNT_COLUMN, DESCRIPTION_COLUMN)

_WHITESPACE = re.compile(r"\s+")


def split_lines(content: str) -> List[str]:
    """Split statement text into lines regardless of line-ending style."""
    text = content.replace("\r\n", "\n").replace("\r", "\n")
    if text.startswith("\ufeff"):
        text = text[1:]
    return text.split("\n")


def detect_delimiter(line: str) -> str:
    if "\t" in line:
        return "\t"
    if "," in line:
        return ","
    return "\t"


def split_line(line: str, delimiter: str) -> List[str]:
    """Split one line, honouring double-quoted fields and ``""`` escapes."""
    try:
        return next(csv.reader([line], delimiter=delimiter, quotechar='"', doublequote=True), [])
    except csv.Error:
        # stray quote characters; treat the line as unquoted
        return line.split(delimiter)


def normalize_column(name: str) -> str:
    return _WHITESPACE.sub(" ", name.strip().lower())


def detect_header(lines: Sequence[str]) -> HeaderInfo:
    """Find the first line naming all required columns.

    Column order does not matter and extra columns are allowed. If no line
    qualifies, the error names the missing columns of the closest partial
    header when one matched at least two required columns.
    """
    best_missing: Optional[List[str]] = None
    for idx, line in enumerate(lines):
        if not line.strip():
            continue
        delimiter = detect_delimiter(line)
        columns = [normalize_column(c) for c in split_line(line, delimiter)]
        missing = [c for c in REQUIRED_COLUMNS if c not in columns]
        if not missing:
            return HeaderInfo(index=idx, delimiter=delimiter, columns=columns)
        matched = len(REQUIRED_COLUMNS) - len(missing)
        if matched >= 2 and (best_missing is None or len(missing) < len(best_missing)):
            best_missing = missing

    required = ", ".join(REQUIRED_COLUMNS)
    if best_missing:
        raise MissingColumnsError(
            f"Missing required columns: {', '.join(best_missing)}",
            required_columns=list(REQUIRED_COLUMNS),
            missing_columns=best_missing,
        )
    raise HeaderNotFoundError(
        f"No header row found; expected columns: {required}",
        required_columns=list(REQUIRED_COLUMNS),
    )


def parse_rows(lines: Sequence[str], header: HeaderInfo) -> List[StagingRow]:
    """Turn the lines after the header into raw staging rows.

    Rows with more fields than the header are assumed to carry the delimiter
    inside the description; the surplus fields are folded back into it.
    """
    cols = header.columns
    type_idx = cols.index(TYPE_COLUMN)
    date_idx = cols.index(DATE_COLUMN)
    amount_idx = cols.index(AMOUNT_COLUMN)
    desc_idx = cols.index(DESCRIPTION_COLUMN)

    rows: List[StagingRow] = []
    for line in lines[header.index + 1:]:
        if not line.strip():
            continue
        fields = [f.strip() for f in split_line(line, header.delimiter)]
        overflow = max(0, len(fields) - len(cols))

        def field(idx: int) -> str:
            if idx > desc_idx:
                idx += overflow
            return fields[idx] if idx < len(fields) else ""

        tx_type = field(type_idx)
        date_raw = field(date_idx)
        amount_raw = field(amount_idx)
        if not (tx_type and date_raw and amount_raw):
            continue

        desc_parts = fields[desc_idx:desc_idx + overflow + 1]
        description = " ".join(p for p in desc_parts if p).strip()

        rows.append(
            StagingRow(
                date_raw=date_raw,
                transaction_type=tx_type.upper(),
                amount_raw=amount_raw,
                description=description or UNKNOWN_PAYEE,
            )
        )

    if not rows:
        raise NoDataRowsError("No data rows found below the header", header_index=header.index)
    return rows
