"""Structural SQL mirror and cross-source query federation."""

from .composer import ExecutionPlan, SubQuery, compose, execute_plan
from .sql_json import SqlJson, SqlJsonError, equivalent, parse_sql_json, render_sql_json

__all__ = [
    "ExecutionPlan",
    "SqlJson",
    "SqlJsonError",
    "SubQuery",
    "compose",
    "equivalent",
    "execute_plan",
    "parse_sql_json",
    "render_sql_json",
]
