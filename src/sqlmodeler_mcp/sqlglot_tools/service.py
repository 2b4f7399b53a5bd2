"""Sqlglot service layer providing typed, pure operations.

All methods are side-effect-free and designed for unit testing.
"""

from __future__ import annotations

from collections.abc import Iterable
from functools import lru_cache
import logging
from typing import Final

import sqlglot
from sqlglot import expressions as sgl_exp
from sqlglot.errors import SqlglotError

from .models import (
    Dialect,
    SqlErrorAssistRequest,
    SqlErrorAssistResult,
    SqlValidationRequest,
    SqlValidationResult,
)

SQLALCHEMY_TO_SQLGLOT: dict[str, Dialect] = {
    "postgresql": "postgres",
    "postgres": "postgres",
    "mysql": "mysql",
    "mariadb": "mysql",
    "sqlite": "sqlite",
    "mssql": "tsql",
    "sqlserver": "tsql",
    "oracle": "oracle",
    "snowflake": "snowflake",
    "bigquery": "bigquery",
    "duckdb": "duckdb",
}

# Statement node names that write data, change schema, or alter session state.
WRITE_STATEMENT_TYPES: Final[frozenset[str]] = frozenset(
    {
        "Insert",
        "Into",
        "Update",
        "Delete",
        "Merge",
        "Create",
        "Drop",
        "Alter",
        "AlterTable",
        "TruncateTable",
        "Grant",
        "Revoke",
        "Command",
        "Set",
        "Use",
        "Transaction",
        "Commit",
        "Rollback",
    }
)


def map_sqlalchemy_to_sqlglot(sa_dialect_name: str) -> Dialect:
    """Map a SQLAlchemy dialect name to a sqlglot dialect literal.

    Falls back to generic "sql" when unknown.
    """
    return SQLALCHEMY_TO_SQLGLOT.get(sa_dialect_name.lower(), "sql")


def sqlglot_read_dialect(dialect: Dialect) -> str | None:
    """Dialect argument for sqlglot; the generic dialect is sqlglot's default."""
    return None if dialect == "sql" else dialect


@lru_cache(maxsize=256)
def _cached_parse(sql: str, dialect: Dialect) -> tuple[sgl_exp.Expression, ...]:
    """Small cache for parse results to speed up repetitive calls."""
    return tuple(e for e in sqlglot.parse(sql, read=sqlglot_read_dialect(dialect)) if e is not None)


class SqlglotService:
    """Typed wrapper around sqlglot functionality.

    Methods avoid raising on common user errors and instead return
    structured results suitable for callers and UIs.
    """

    def __init__(
        self, default_dialect: Dialect = "sql", logger: logging.Logger | None = None
    ) -> None:
        self.default_dialect = default_dialect
        self._logger = logger or logging.getLogger(__name__)

    # ---- validation -----------------------------------------------------
    def validate(self, req: SqlValidationRequest) -> SqlValidationResult:
        """Parse and validate SQL, returning pretty SQL on success."""
        try:
            statements = _cached_parse(req.sql, req.dialect)
        except SqlglotError as e:
            return SqlValidationResult(
                is_valid=False,
                error_message=f"SQL parsing error: {e}",
                target_dialect=req.dialect,
            )
        if len(statements) != 1:
            return SqlValidationResult(
                is_valid=False,
                statement_count=len(statements),
                error_message=(
                    "Failed to parse SQL query"
                    if not statements
                    else "Multiple statements are not allowed"
                ),
                target_dialect=req.dialect,
            )
        parsed = statements[0]
        return SqlValidationResult(
            is_valid=True,
            statement_count=1,
            normalized_sql=parsed.sql(dialect=sqlglot_read_dialect(req.dialect), pretty=True),
            statement_type=type(parsed).__name__,
            target_dialect=req.dialect,
        )

    def write_operations(self, sql: str, dialect: Dialect) -> list[str]:
        """Return statement types in `sql` that are not read-only queries.

        SQL that does not parse, or parses to nothing, is reported as
        ``Unparseable``: only text recognised as a query is read-only.
        """
        try:
            statements = _cached_parse(sql, dialect)
        except SqlglotError:
            return ["Unparseable"]
        if not statements:
            return ["Unparseable"]
        found: list[str] = []
        for stmt in statements:
            if not isinstance(stmt, sgl_exp.Query):
                found.append(type(stmt).__name__)
            for node in stmt.walk():
                name = type(node).__name__
                if name in WRITE_STATEMENT_TYPES and name not in found:
                    found.append(name)
        if len(statements) > 1:
            found.append("MultipleStatements")
        return found

    # ---- error assist ---------------------------------------------------
    def assist_error(self, req: SqlErrorAssistRequest) -> SqlErrorAssistResult:
        """Heuristic assistance for execution-time SQL errors.

        This does not execute SQL; it parses and inspects the error string
        to offer concrete next steps.
        """
        normalized: str | None = None
        likely: list[str] = []
        fixes: list[str] = []

        val = self.validate(SqlValidationRequest(sql=req.sql, dialect=req.dialect))
        if val.is_valid and val.normalized_sql is not None:
            normalized = val.normalized_sql

        emsg = req.error_message.lower()

        def add_if(cond: bool, items: Iterable[str]) -> None:  # noqa: FBT001
            if cond:
                likely.extend(items)

        add_if(
            "syntax error" in emsg or "mismatched input" in emsg,
            ["SQL syntax near reported token is invalid for this dialect"],
        )
        add_if(
            "no such table" in emsg or "does not exist" in emsg and "relation" in emsg,
            ["Referenced table name may be wrong or not in the source's schema"],
        )
        add_if(
            "no such column" in emsg or "column" in emsg and "does not exist" in emsg,
            ["A selected or filtered column is misspelled or not present"],
        )
        add_if(
            "ambiguous" in emsg,
            ["A column name exists in several joined tables; qualify it with a table alias"],
        )
        add_if(
            "function" in emsg and "does not exist" in emsg,
            ["Function is unsupported or has different name/arg types in this dialect"],
        )
        add_if(
            "datatype mismatch" in emsg or "invalid input syntax" in emsg,
            ["Type mismatch in a predicate or join condition"],
        )
        add_if(
            "only select" in emsg,
            ["The statement modifies data or schema; only read-only queries run here"],
        )

        lowered_sql = req.sql.lower()
        if "top " in lowered_sql and req.dialect in {
            "postgres",
            "mysql",
            "sqlite",
            "bigquery",
            "snowflake",
            "duckdb",
        }:
            fixes.append("Replace T-SQL TOP with LIMIT")
        if "limit" in lowered_sql and req.dialect in {"tsql"}:
            fixes.append("Replace LIMIT with TOP n in SELECT clause")
        if any(fn in lowered_sql for fn in ["ifnull(", "isnull("]):
            fixes.append("Use COALESCE for portable null handling where supported")

        return SqlErrorAssistResult(
            normalized_sql=normalized,
            likely_causes=sorted(set(likely)),
            suggested_fixes=sorted(set(fixes)),
        )
