from __future__ import annotations

import logging

import pytest

from sqlmodeler_mcp.sqlglot_tools import (
    SqlglotService,
    map_sqlalchemy_to_sqlglot,
    sqlglot_read_dialect,
)
from sqlmodeler_mcp.sqlglot_tools.models import SqlErrorAssistRequest, SqlValidationRequest


def test_map_sqlalchemy_to_sqlglot_known() -> None:
    assert map_sqlalchemy_to_sqlglot("postgresql") == "postgres"
    assert map_sqlalchemy_to_sqlglot("mssql") == "tsql"
    assert map_sqlalchemy_to_sqlglot("SQLite") == "sqlite"
    assert map_sqlalchemy_to_sqlglot("mariadb") == "mysql"


def test_map_unknown_dialect_falls_back_to_generic() -> None:
    assert map_sqlalchemy_to_sqlglot("informix") == "sql"
    assert sqlglot_read_dialect("sql") is None
    assert sqlglot_read_dialect("postgres") == "postgres"


def test_validate_single_select() -> None:
    svc = SqlglotService(logger=logging.getLogger(__name__))
    v = svc.validate(SqlValidationRequest(sql="select 1", dialect="postgres"))
    assert v.is_valid is True
    assert v.statement_type == "Select"
    assert v.normalized_sql is not None


def test_validate_rejects_multiple_statements() -> None:
    svc = SqlglotService()
    v = svc.validate(SqlValidationRequest(sql="SELECT 1; SELECT 2", dialect="sqlite"))
    assert v.is_valid is False
    assert v.error_message == "Multiple statements are not allowed"
    assert v.statement_count == 2


def test_validate_reports_parse_errors() -> None:
    svc = SqlglotService()
    v = svc.validate(SqlValidationRequest(sql="SELECT (1", dialect="sqlite"))
    assert v.is_valid is False
    assert v.error_message is not None
    assert v.error_message.startswith("SQL parsing error")


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT * FROM t",
        "WITH x AS (SELECT 1 AS a) SELECT a FROM x",
        "SELECT a FROM t UNION SELECT a FROM u",
    ],
)
def test_read_only_queries_have_no_write_operations(sql: str) -> None:
    assert SqlglotService().write_operations(sql, "sqlite") == []


@pytest.mark.parametrize(
    ("sql", "expected"),
    [
        ("DELETE FROM t", "Delete"),
        ("UPDATE t SET a = 1", "Update"),
        ("INSERT INTO t (a) VALUES (1)", "Insert"),
        ("DROP TABLE t", "Drop"),
    ],
)
def test_write_statements_are_detected(sql: str, expected: str) -> None:
    assert expected in SqlglotService().write_operations(sql, "sqlite")


def test_stacked_statements_are_flagged() -> None:
    found = SqlglotService().write_operations("SELECT 1; DROP TABLE t", "sqlite")
    assert "Drop" in found
    assert "MultipleStatements" in found


@pytest.mark.parametrize("sql", ["SELECT (1", "", "-- comment only"])
def test_unparseable_sql_is_not_read_only(sql: str) -> None:
    assert SqlglotService().write_operations(sql, "sqlite") == ["Unparseable"]


def test_error_assist_syntax_hint() -> None:
    svc = SqlglotService()
    out = svc.assist_error(
        SqlErrorAssistRequest(
            sql="SELECT TOP 3 * FROM t",
            error_message='syntax error at or near "TOP"',
            dialect="postgres",
        )
    )
    assert any("replace" in s.lower() for s in out.suggested_fixes)
    assert any("syntax" in c.lower() for c in out.likely_causes)


def test_error_assist_notes_for_missing_table() -> None:
    out = SqlglotService().assist_error(
        SqlErrorAssistRequest(
            sql="SELECT * FROM nope", error_message="no such table: nope", dialect="sqlite"
        )
    )
    notes = out.notes()
    assert notes
    assert all(n.startswith(("Cause: ", "Fix: ")) for n in notes)
    assert out.normalized_sql is not None
