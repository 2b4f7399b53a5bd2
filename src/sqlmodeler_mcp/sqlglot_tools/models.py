"""Pydantic payloads exchanged with the sqlglot service.

Drafts and queries are checked against the dialect of the source they run on;
cross-source SQL is parsed with the generic ``sql`` dialect.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

# sqlglot dialect names reachable from the SQLAlchemy dialects we connect with.
Dialect = Literal[
    "sql",
    "postgres",
    "mysql",
    "sqlite",
    "tsql",
    "oracle",
    "snowflake",
    "bigquery",
    "duckdb",
]


class SqlValidationRequest(BaseModel):
    """A query or draft to check before it reaches a data source."""

    sql: str = Field(description="Query text as written by the user or the AI engine")
    dialect: Dialect = Field(description="Dialect of the source the query targets")


class SqlValidationResult(BaseModel):
    is_valid: bool = Field(description="True for exactly one parseable statement")
    statement_count: int = Field(default=0, description="Statements found in the text")
    statement_type: str | None = Field(
        default=None, description="sqlglot expression class of the statement, e.g. Select"
    )
    normalized_sql: str | None = Field(
        default=None, description="Pretty-printed statement in the source dialect"
    )
    error_message: str | None = Field(default=None, description="Why the text was rejected")
    target_dialect: Dialect


class SqlErrorAssistRequest(BaseModel):
    """A query the source rejected, with the source's own error text."""

    sql: str
    error_message: str = Field(description="Database error text, passed through verbatim")
    dialect: Dialect


class SqlErrorAssistResult(BaseModel):
    """Hints attached to a ``QueryExecutionError`` so the draft can be corrected."""

    normalized_sql: str | None = None
    likely_causes: list[str] = Field(default_factory=list)
    suggested_fixes: list[str] = Field(default_factory=list)

    def notes(self) -> list[str]:
        """Flatten causes and fixes into display notes."""
        return [f"Cause: {c}" for c in self.likely_causes] + [
            f"Fix: {f}" for f in self.suggested_fixes
        ]
