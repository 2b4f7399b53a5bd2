"""Cross-source join composition and bounded in-process execution.

`compose` is pure: it checks a cross-source query structurally and turns it
into an `ExecutionPlan` without touching any database. The checks run in a
fixed order and the first failure wins:

1. every table belongs to a bound source,
2. every involved source uses a dialect that can be federated,
3. the join graph has no cycle,
4. joined columns have compatible types,
5. tables from different sources are connected by joins.

The plan holds one bounded sub-query per table and the local join query.
`execute_plan` runs the sub-queries concurrently, stages their rows into an
in-memory SQLite database with pandas and runs the local query there.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
import datetime as dt
from decimal import Decimal
import json
import re
import uuid

from fastmcp.utilities.logging import get_logger
import networkx as nx
import pandas as pd
import sqlalchemy as sa
import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError

from sqlmodeler_mcp.db_utils import apply_statement_timeout, sql_preview
from sqlmodeler_mcp.exceptions import (
    CircularJoinError,
    IncompatibleJoinTypesError,
    QueryExecutionError,
    UnsupportedFederationError,
)
from sqlmodeler_mcp.execute.models import CellValue, SourceBinding
from sqlmodeler_mcp.execute.results import fetch_capped
from sqlmodeler_mcp.schema.models import TableSchema
from sqlmodeler_mcp.schema.type_families import types_compatible
from sqlmodeler_mcp.sqlglot_tools import map_sqlalchemy_to_sqlglot, sqlglot_read_dialect

from .sql_json import SqlJson, SqlJsonTable, render_sql_json

_logger = get_logger(__name__)

DEFAULT_MAX_ROWS = 50_000
_STAGING_CHARS = re.compile(r"\W+")


@dataclass(frozen=True)
class SubQuery:
    """Bounded fetch of one table from one source."""

    source_id: str
    table: str
    staging_name: str
    sql: str


@dataclass(frozen=True)
class ExecutionPlan:
    """Sub-queries to run per source plus the query joining their rows locally."""

    subqueries: tuple[SubQuery, ...]
    local_sql: str
    max_rows: int


@dataclass(frozen=True)
class _BoundTable:
    query_table: SqlJsonTable
    binding: SourceBinding
    schema: TableSchema


def federatable(dialect: str) -> bool:
    """True when rows of a source with this SQLAlchemy dialect can be federated."""
    return map_sqlalchemy_to_sqlglot(dialect) != "sql"


def staging_name(label: str, table: TableSchema) -> str:
    return _STAGING_CHARS.sub("_", f"{label}__{table.schema_name}__{table.name}").lower()


def _bind_table(table: SqlJsonTable, bindings: Sequence[SourceBinding]) -> _BoundTable:
    lookup = f"{table.schema_name}.{table.name}" if table.schema_name else table.name
    if table.catalog:
        candidates = [b for b in bindings if b.label.lower() == table.catalog.lower()]
        if not candidates:
            msg = (
                f"Table '{table.reference}' does not belong to any data source of this "
                f"session (sources: {', '.join(sorted(b.label for b in bindings))})"
            )
            raise UnsupportedFederationError(msg)
        binding = candidates[0]
        found = binding.schema.table(lookup)
        if found is None:
            msg = f"Table '{table.reference}' does not exist in data source '{binding.source_id}'"
            raise QueryExecutionError(msg)
        return _BoundTable(table, binding, found)

    matches: list[_BoundTable] = []
    for binding in bindings:
        found = binding.schema.table(lookup)
        if found is not None:
            matches.append(_BoundTable(table, binding, found))
    if len(matches) != 1:
        msg = (
            f"Table '{table.reference}' must be qualified with its source label "
            "(label.schema.table) in a cross-source query"
        )
        raise UnsupportedFederationError(msg)
    return matches[0]


def _join_edges(sql_json: SqlJson) -> list[tuple[str, str]]:
    """Undirected table-to-table edges implied by the join list, in query order.

    Nodes are table keys, so two sources' ``users`` tables stay distinct.
    """
    edges: list[tuple[str, str]] = []
    for join in sql_json.joins:
        right = join.right_table.lower()
        pair_edges = []
        for pair in join.on_columns:
            left_tbl = sql_json.table(pair.left.rpartition(".")[0])
            right_tbl = sql_json.table(pair.right.rpartition(".")[0])
            if left_tbl is None or right_tbl is None or left_tbl is right_tbl:
                continue
            pair_edges.append((left_tbl.key.lower(), right_tbl.key.lower()))
        if pair_edges:
            edges.extend(pair_edges)
        elif join.join_type.upper() != "CROSS" and join.left_table:
            edges.append((join.left_table.lower(), right))
    return edges


def _check_cycles(graph: nx.Graph, edges: Sequence[tuple[str, str]], names: dict[str, str]) -> None:
    for left, right in edges:
        if graph.has_edge(left, right):
            continue
        if left in graph and right in graph and nx.has_path(graph, left, right):
            path = nx.shortest_path(graph, left, right)
            cycle = [names.get(n, n) for n in [*path, left]]
            raise CircularJoinError(cycle)
        graph.add_edge(left, right)


def _check_join_types(sql_json: SqlJson, bound: dict[str, _BoundTable]) -> None:
    def lookup(qualified: str) -> tuple[str, str] | None:
        qualifier, _, column = qualified.rpartition(".")
        table = sql_json.table(qualifier)
        if table is None:
            return None
        entry = bound[table.key.lower()]
        col = entry.schema.column(column)
        if col is None:
            return None
        return f"{entry.query_table.reference}.{col.name}", col.type

    for join in sql_json.joins:
        for pair in join.on_columns:
            left = lookup(pair.left)
            right = lookup(pair.right)
            if left is None or right is None:
                continue
            if not types_compatible(left[1], right[1]):
                raise IncompatibleJoinTypesError(left[0], left[1], right[0], right[1])


def _rewrite_local(sql_text: str, sql_json: SqlJson, staging: dict[str, str]) -> str:
    """Point every table at its staging copy and every column at its table's local alias.

    Unaliased tables are aliased by their staging name, which is unique per
    source, schema and table.
    """
    try:
        tree = sqlglot.parse_one(sql_text)
    except ParseError as exc:
        msg = f"SQL parsing error: {exc}"
        raise QueryExecutionError(msg, sql=sql_text) from exc

    def local_alias(table: SqlJsonTable) -> str:
        return table.alias or staging[table.reference.lower()]

    def rewrite(node: exp.Expression) -> exp.Expression:
        if isinstance(node, exp.Table):
            ref = ".".join(p for p in (node.catalog, node.db, node.name) if p).lower()
            target = staging.get(ref)
            if target is not None:
                return exp.table_(target, alias=node.alias or target)
        if isinstance(node, exp.Column) and node.table:
            qualifier = ".".join(p for p in (node.catalog, node.db, node.table) if p)
            table = sql_json.table(qualifier)
            if table is not None and table.reference.lower() in staging:
                col = node.copy()
                col.set("catalog", None)
                col.set("db", None)
                col.set("table", exp.to_identifier(local_alias(table)))
                return col
        return node

    return tree.transform(rewrite).sql(dialect="sqlite")


def compose(
    sql_json: SqlJson,
    bindings: Sequence[SourceBinding],
    *,
    sql_text: str | None = None,
    max_rows: int = DEFAULT_MAX_ROWS,
) -> ExecutionPlan:
    """Check a cross-source query and plan its execution.

    Args:
        sql_json: Structural form of the query
        bindings: Sources of the session with their engines
        sql_text: The query text; rendered from `sql_json` when omitted
        max_rows: Largest table that may be pulled into the local join

    Raises:
        UnsupportedFederationError: Unbound table, unsupported dialect, or
            tables of different sources that no join connects
        CircularJoinError: The join graph contains a cycle
        IncompatibleJoinTypesError: A join compares incompatible column types
    """
    bound: dict[str, _BoundTable] = {}
    for table in sql_json.tables:
        bound[table.key.lower()] = _bind_table(table, bindings)

    for entry in bound.values():
        if not federatable(entry.binding.dialect):
            msg = (
                f"Data source '{entry.binding.source_id}' uses dialect "
                f"'{entry.binding.dialect}' which cannot be joined across sources"
            )
            raise UnsupportedFederationError(msg)

    graph: nx.Graph = nx.Graph()
    graph.add_nodes_from(bound)
    _check_cycles(graph, _join_edges(sql_json), {k: v.query_table.key for k, v in bound.items()})
    _check_join_types(sql_json, bound)

    involved = {entry.binding.source_id for entry in bound.values()}
    if len(involved) > 1 and nx.number_connected_components(graph) > 1:
        msg = (
            "Tables from different data sources must be connected by join conditions; "
            "an unconstrained cross join cannot be federated"
        )
        raise UnsupportedFederationError(msg)

    subqueries: dict[str, SubQuery] = {}
    staging: dict[str, str] = {}
    for entry in bound.values():
        name = staging_name(entry.binding.label, entry.schema)
        staging[entry.query_table.reference.lower()] = name
        if name in subqueries:
            continue
        target = sqlglot_read_dialect(map_sqlalchemy_to_sqlglot(entry.binding.dialect))
        fetch = (
            exp.select("*")
            .from_(exp.table_(entry.schema.name, db=entry.schema.schema_name, quoted=True))
            .limit(max_rows + 1)
        )
        subqueries[name] = SubQuery(
            source_id=entry.binding.source_id,
            table=f"{entry.binding.label}.{entry.schema.qualified_name}",
            staging_name=name,
            sql=fetch.sql(dialect=target),
        )

    local_sql = _rewrite_local(sql_text or render_sql_json(sql_json), sql_json, staging)
    _logger.debug(
        "Federation plan: %d sub-queries over %d sources; local query: %s",
        len(subqueries),
        len(involved),
        sql_preview(local_sql),
    )
    return ExecutionPlan(
        subqueries=tuple(subqueries.values()), local_sql=local_sql, max_rows=max_rows
    )


def _sqlite_value(val: object) -> object:
    if isinstance(val, Decimal):
        return float(val)
    if isinstance(val, dt.date | dt.time):
        return val.isoformat()
    if isinstance(val, uuid.UUID):
        return str(val)
    if isinstance(val, dict | list):
        return json.dumps(val, default=str)
    return val


def _sqlite_ready(frame: pd.DataFrame) -> pd.DataFrame:
    """Coerce driver types SQLite cannot bind into plain values."""
    out = frame.copy()
    for col in out.columns:
        if out[col].dtype == object:
            out[col] = out[col].map(_sqlite_value)
        elif isinstance(out[col].dtype, pd.DatetimeTZDtype):
            out[col] = out[col].map(lambda v: v.isoformat() if pd.notna(v) else None)
    return out


def _fetch_frame(
    engine: sa.Engine, sub: SubQuery, max_rows: int, timeout_sec: float
) -> pd.DataFrame:
    with engine.connect() as conn:
        apply_statement_timeout(conn, timeout_sec)
        frame = pd.read_sql_query(sa.text(sub.sql), conn)
    if len(frame) > max_rows:
        msg = (
            f"Table {sub.table} has more than {max_rows} rows, which exceeds the in-process "
            "federation bound; narrow the query or join within a single source"
        )
        raise UnsupportedFederationError(msg)
    _logger.debug("Fetched %d rows from %s", len(frame), sub.table)
    return frame


def _join_locally(
    plan: ExecutionPlan, frames: Sequence[pd.DataFrame], row_cap: int, max_cell_chars: int
) -> tuple[list[str], list[dict[str, CellValue]], bool]:
    engine = sa.create_engine("sqlite+pysqlite:///:memory:")
    try:
        with engine.connect() as conn:
            for sub, frame in zip(plan.subqueries, frames, strict=True):
                _sqlite_ready(frame).to_sql(sub.staging_name, conn, index=False)
            return fetch_capped(
                conn, plan.local_sql, row_cap=row_cap, max_cell_chars=max_cell_chars
            )
    finally:
        engine.dispose()


async def execute_plan(
    plan: ExecutionPlan,
    bindings: Sequence[SourceBinding],
    *,
    row_cap: int,
    max_cell_chars: int,
    timeout_sec: float,
) -> tuple[list[str], list[dict[str, CellValue]], bool]:
    """Run the sub-queries concurrently and join their rows locally.

    Deadlines are left to the caller; `timeout_sec` is applied as the
    per-connection statement timeout of every sub-query.

    Raises:
        UnsupportedFederationError: A table exceeds the in-process bound
        SQLAlchemyError: A source or the local join rejected a query
    """
    engines = {b.source_id: b.engine for b in bindings}
    frames = await asyncio.gather(
        *(
            asyncio.to_thread(_fetch_frame, engines[sub.source_id], sub, plan.max_rows, timeout_sec)
            for sub in plan.subqueries
        )
    )
    return await asyncio.to_thread(_join_locally, plan, frames, row_cap, max_cell_chars)
