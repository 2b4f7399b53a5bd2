"""Execution flow for candidate queries.

This module provides a small, dependency-injected executor that:
- Enforces the SELECT-only policy
- Requires exactly one statement that sqlglot recognises as a query
- Executes via SQLAlchemy under a mandatory deadline, never committing
- Applies the row cap with a sentinel fetch and truncates cell values
- Routes queries over several sources through the cross-source composer

Database errors are surfaced verbatim as `QueryExecutionError`, with
sqlglot-derived assist notes attached.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
import time

from fastmcp.utilities.logging import get_logger
import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from sqlmodeler_mcp.db_utils import apply_statement_timeout, sql_preview, strip_trailing_semicolon
from sqlmodeler_mcp.exceptions import QueryExecutionError, QueryTimeoutError
from sqlmodeler_mcp.federation.composer import DEFAULT_MAX_ROWS, compose, execute_plan
from sqlmodeler_mcp.federation.sql_json import SqlJsonError, parse_sql_json
from sqlmodeler_mcp.sqlglot_tools import SqlglotService, map_sqlalchemy_to_sqlglot
from sqlmodeler_mcp.sqlglot_tools.models import Dialect, SqlErrorAssistRequest

from .models import CellValue, ExecutionLimits, QueryResult, SourceBinding
from .results import fetch_capped

_logger = get_logger(__name__)


def enforce_select_only(sql: str, glot: SqlglotService, dialect: Dialect) -> None:
    """Raise ValueError unless the SQL is a single read-only query.

    Text sqlglot cannot parse is refused rather than passed to the source.
    """
    found = glot.write_operations(sql, dialect)
    if found:
        msg = f"Only SELECT queries are permitted (found: {', '.join(found)})"
        raise ValueError(msg)


def _database_message(exc: SQLAlchemyError) -> str:
    """The driver's own error text, without SQLAlchemy's statement echo."""
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else str(exc).split("\n[SQL:")[0]


def _execute_sync(
    engine: sa.Engine, sql: str, *, row_cap: int, limits: ExecutionLimits
) -> tuple[list[str], list[dict[str, CellValue]], bool]:
    # The connection is released without commit, so nothing is ever persisted.
    with engine.connect() as conn:
        apply_statement_timeout(conn, limits.timeout_sec)
        return fetch_capped(conn, sql, row_cap=row_cap, max_cell_chars=limits.max_cell_chars)


class QueryExecutor:
    """Validate-by-execution for single-source and federated queries."""

    def __init__(
        self,
        limits: ExecutionLimits,
        *,
        glot: SqlglotService | None = None,
        federation_max_rows: int = DEFAULT_MAX_ROWS,
    ) -> None:
        self.limits = limits
        self._glot = glot or SqlglotService()
        self._federation_max_rows = federation_max_rows

    def _assist_notes(self, sql: str, error_message: str, dialect: Dialect) -> list[str]:
        return self._glot.assist_error(
            SqlErrorAssistRequest(sql=sql, error_message=error_message, dialect=dialect)
        ).notes()

    async def execute(
        self,
        sql_text: str,
        bindings: Sequence[SourceBinding],
        *,
        row_cap: int | None = None,
        federated: bool | None = None,
    ) -> QueryResult:
        """Execute a read-only query against the bound source(s).

        Args:
            sql_text: SELECT statement; cross-source tables as label.schema.table
            bindings: One binding for a single-source query, several to federate
            row_cap: Maximum rows to return (defaults to the configured limit)
            federated: Join across the bound sources; defaults to True for several bindings

        Raises:
            ValueError: If no source is bound, the SQL is empty or row_cap is below 1
            QueryExecutionError: Non-SELECT SQL or a database error (verbatim)
            QueryTimeoutError: The query exceeded its deadline
            UnsupportedFederationError, CircularJoinError, IncompatibleJoinTypesError:
                The cross-source query cannot be composed
        """
        if not bindings:
            msg = "At least one data source binding is required"
            raise ValueError(msg)
        sql = strip_trailing_semicolon(sql_text)
        if not sql:
            msg = "SQL text must not be empty"
            raise ValueError(msg)
        cap = row_cap if row_cap is not None else self.limits.row_limit
        if cap < 1:
            msg = f"row_cap must be at least 1 (got {cap})"
            raise ValueError(msg)
        if federated is None:
            federated = len(bindings) > 1
        dialect: Dialect = "sql" if federated else map_sqlalchemy_to_sqlglot(bindings[0].dialect)

        _logger.info(
            "execute: start (dialect=%s, sources=%d, row_cap=%d): %s",
            dialect,
            len(bindings),
            cap,
            sql_preview(sql),
        )

        try:
            enforce_select_only(sql, self._glot, dialect)
        except ValueError as exc:
            raise QueryExecutionError(
                str(exc), sql=sql, assist_notes=self._assist_notes(sql, str(exc), dialect)
            ) from exc

        notes: list[str] = []
        start = time.perf_counter()
        try:
            if federated:
                try:
                    sql_json = parse_sql_json(sql)
                except SqlJsonError as exc:
                    raise QueryExecutionError(
                        f"Cross-source query cannot be planned: {exc}", sql=sql
                    ) from exc
                plan = compose(
                    sql_json, bindings, sql_text=sql, max_rows=self._federation_max_rows
                )
                columns, rows, capped = await asyncio.wait_for(
                    execute_plan(
                        plan,
                        bindings,
                        row_cap=cap,
                        max_cell_chars=self.limits.max_cell_chars,
                        timeout_sec=self.limits.timeout_sec,
                    ),
                    timeout=self.limits.timeout_sec,
                )
            else:
                columns, rows, capped = await asyncio.wait_for(
                    asyncio.to_thread(
                        _execute_sync, bindings[0].engine, sql, row_cap=cap, limits=self.limits
                    ),
                    timeout=self.limits.timeout_sec,
                )
        except TimeoutError as exc:
            _logger.warning("Query timed out after %.1fs", self.limits.timeout_sec)
            raise QueryTimeoutError(self.limits.timeout_sec) from exc
        except SQLAlchemyError as exc:
            message = _database_message(exc)
            _logger.warning("Execution error: %s", message)
            raise QueryExecutionError(
                message, sql=sql, assist_notes=self._assist_notes(sql, message, dialect)
            ) from exc

        elapsed_ms = (time.perf_counter() - start) * 1000.0
        _logger.info(
            "Execution finished (elapsed_ms=%.1f, rows_returned=%d, row_cap_applied=%s)",
            elapsed_ms,
            len(rows),
            capped,
        )
        if capped:
            notes.append("Results truncated; add WHERE filters or aggregate to see everything.")
        return QueryResult(
            sql=sql,
            dialect="federated" if federated else bindings[0].dialect,
            columns=columns,
            rows=rows,
            row_cap=cap,
            row_cap_applied=capped,
            elapsed_ms=elapsed_ms,
            federated=federated,
            notes=notes,
        )
