"""Small SQLAlchemy helpers shared by schema collection and query execution."""

from __future__ import annotations

from fastmcp.utilities.logging import get_logger
import sqlalchemy as sa
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

_logger = get_logger(__name__)


def apply_statement_timeout(conn: Connection, timeout_sec: float | None) -> None:
    """Apply a per-connection statement timeout where the dialect supports one.

    Best-effort, dialect-specific:
    - PostgreSQL: SET statement_timeout = <ms>
    - MySQL:      SET SESSION MAX_EXECUTION_TIME = <ms>
    - SQL Server: SET LOCK_TIMEOUT <ms>
    Other dialects rely on the caller's asyncio deadline only.
    """
    if not timeout_sec or timeout_sec <= 0:
        return
    ms = max(1, int(timeout_sec * 1000))
    dialect = conn.dialect.name
    try:
        if dialect == "postgresql":
            conn.execute(sa.text(f"SET statement_timeout = {ms}"))
        elif dialect in {"mysql", "mariadb"}:
            conn.execute(sa.text(f"SET SESSION MAX_EXECUTION_TIME = {ms}"))
        elif dialect == "mssql":
            conn.execute(sa.text(f"SET LOCK_TIMEOUT {ms}"))
    except SQLAlchemyError as exc:
        _logger.debug("Could not apply statement timeout on %s: %s", dialect, exc)


def strip_trailing_semicolon(sql: str) -> str:
    return sql.strip().removesuffix(";").rstrip()


def sql_preview(sql: str, limit: int = 100) -> str:
    """Single-line preview of a statement for log messages."""
    flat = " ".join(sql.split())
    return flat[:limit] + ("..." if len(flat) > limit else "")
