"""Row fetching with a row cap and JSON-safe cell values."""

from __future__ import annotations

from collections.abc import Iterable
import datetime as dt
from decimal import Decimal
import math

import sqlalchemy as sa
from sqlalchemy.engine import Connection

from .models import CellValue


def _truncate_value(val: object, max_chars: int) -> CellValue:
    """Truncate a single cell value to a safe representation."""
    if val is None:
        return None
    if isinstance(val, bool | int):
        return val
    if isinstance(val, float):
        return val if math.isfinite(val) else str(val)
    if isinstance(val, Decimal):
        return float(val) if val.is_finite() else str(val)
    if isinstance(val, dt.date | dt.time):
        s = val.isoformat()
    elif isinstance(val, bytes | bytearray | memoryview):
        s = bytes(val).hex()
    else:
        s = str(val)
    if len(s) > max_chars:
        return s[: max_chars - 1] + "…"
    return s


def unique_columns(names: Iterable[str]) -> list[str]:
    """Result column names made unique: a repeated ``id`` becomes ``id_1``, ``id_2``..."""
    seen: set[str] = set()
    out: list[str] = []
    for name in names:
        candidate, n = name, 0
        while candidate in seen:
            n += 1
            candidate = f"{name}_{n}"
        seen.add(candidate)
        out.append(candidate)
    return out


def _truncate_rows(
    rows: Iterable[sa.Row],
    columns: list[str],
    max_rows: int,
    max_chars: int,
) -> list[dict[str, CellValue]]:
    """Convert rows to JSON-safe dicts with truncation and row limit.

    Values are taken by position, so `columns` must already be unique.
    """
    out: list[dict[str, CellValue]] = []
    for i, row in enumerate(rows):
        if i >= max_rows:
            break
        out.append(
            {col: _truncate_value(val, max_chars) for col, val in zip(columns, row, strict=True)}
        )
    return out


def fetch_capped(
    conn: Connection, sql: str, *, row_cap: int, max_cell_chars: int
) -> tuple[list[str], list[dict[str, CellValue]], bool]:
    """Run `sql` on `conn` and fetch at most `row_cap` rows.

    Returns:
        Unique column names, the capped rows, and whether more rows existed
    """
    result = conn.execute(sa.text(sql))
    columns = unique_columns(result.keys())
    raw_rows = result.fetchmany(row_cap + 1)  # sentinel to detect truncation
    rows = _truncate_rows(raw_rows, columns, row_cap, max_cell_chars)
    return columns, rows, len(raw_rows) > row_cap
