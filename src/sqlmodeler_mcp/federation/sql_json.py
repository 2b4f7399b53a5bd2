"""Structural (JSON) mirror of a single SELECT statement.

`sqlText` is always the ground truth for execution. `SqlJson` is a
reconstructable projection of it for editing and for federated planning:
`parse_sql_json` builds it from SQL with sqlglot and `render_sql_json` turns
it back into SQL. Both directions preserve the logical query (same tables,
projected columns and joins), which `logical_signature` captures.

Table references follow the session namespace: ``schema.table`` for a single
source and ``label.schema.table`` across sources, where the label lands in
sqlglot's catalog slot.
"""

from __future__ import annotations

from typing import Literal, TypeVar

from pydantic import BaseModel, Field
import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError

from sqlmodeler_mcp.sqlglot_tools import Dialect, sqlglot_read_dialect


E = TypeVar("E", bound=exp.Expression)


class SqlJsonError(ValueError):
    """Raised when SQL cannot be represented structurally."""


class SqlJsonTable(BaseModel):
    """A table in FROM or JOIN."""

    catalog: str | None = Field(default=None, description="Source label for cross-source queries")
    schema_name: str | None = Field(default=None, description="Database schema")
    name: str = Field(description="Table name")
    alias: str | None = Field(default=None, description="Alias used in the query")

    @property
    def key(self) -> str:
        """Unique name of this table within the query: its alias or its full reference."""
        return self.alias or self.reference

    @property
    def reference(self) -> str:
        return ".".join(p for p in (self.catalog, self.schema_name, self.name) if p)

    def matches(self, qualifier: str) -> bool:
        """True when a column qualifier (``c``, ``users``, ``crm.main.users``) names this table."""
        lowered = qualifier.lower()
        if self.alias:
            return lowered == self.alias.lower()
        ref = self.reference.lower()
        return lowered == ref or ref.endswith(f".{lowered}")


class SqlJsonColumn(BaseModel):
    """One projected expression."""

    expression: str = Field(description="SQL text of the projected expression")
    table: str | None = Field(default=None, description="Table qualifier for plain columns")
    name: str | None = Field(default=None, description="Column name for plain columns")
    alias: str | None = Field(default=None, description="Output alias")


class JoinOnPair(BaseModel):
    """An equality between two qualified columns, ``table.column``."""

    left: str
    right: str


class SqlJsonJoin(BaseModel):
    """A join of `right_table` onto the tables before it."""

    left_table: str | None = Field(default=None, description="Key of the left-hand table")
    right_table: str = Field(description="Key of the joined table")
    join_type: str = Field(default="INNER", description="INNER, LEFT, RIGHT, FULL or CROSS")
    on_columns: list[JoinOnPair] = Field(default_factory=list)
    condition: str | None = Field(default=None, description="Full ON condition as SQL")
    using: list[str] = Field(default_factory=list, description="USING column names")


class SqlJsonOrder(BaseModel):
    expression: str
    direction: Literal["ASC", "DESC"] = "ASC"


class SqlJson(BaseModel):
    """Structured representation of a SELECT statement."""

    tables: list[SqlJsonTable] = Field(default_factory=list)
    columns: list[SqlJsonColumn] = Field(default_factory=list)
    joins: list[SqlJsonJoin] = Field(default_factory=list)
    filters: list[str] = Field(default_factory=list, description="WHERE conjuncts")
    group_by: list[str] = Field(default_factory=list)
    having: list[str] = Field(default_factory=list)
    order_by: list[SqlJsonOrder] = Field(default_factory=list)
    limit: int | None = None
    distinct: bool = False

    def table(self, key: str) -> SqlJsonTable | None:
        """Find a table by key, full reference or unambiguous column qualifier.

        Matching is case-insensitive. A bare name shared by tables of two
        sources resolves to nothing.
        """
        lowered = key.lower()
        for tbl in self.tables:
            if lowered in {tbl.key.lower(), tbl.reference.lower()}:
                return tbl
        found = [tbl for tbl in self.tables if tbl.matches(key)]
        return found[0] if len(found) == 1 else None


def _sg(dialect: Dialect | None) -> str | None:
    return sqlglot_read_dialect(dialect) if dialect else None


def _clause(select: exp.Select, kind: type[E]) -> E | None:
    """Direct child clause of `kind` (FROM, WHERE, GROUP BY...) or None."""
    for child in select.iter_expressions():
        if isinstance(child, kind):
            return child
    return None


def _table_model(node: exp.Expression) -> SqlJsonTable:
    if not isinstance(node, exp.Table) or not node.name:
        msg = "Only plain table references are supported in FROM and JOIN clauses"
        raise SqlJsonError(msg)
    return SqlJsonTable(
        catalog=node.catalog or None,
        schema_name=node.db or None,
        name=node.name,
        alias=node.alias or None,
    )


def _conjuncts(cond: exp.Expression | None) -> list[exp.Expression]:
    if cond is None:
        return []
    if isinstance(cond, exp.And):
        return list(cond.flatten())
    return [cond]


def _column_table(col: exp.Column) -> str:
    return ".".join(p for p in (col.catalog, col.db, col.table) if p)


def _qualified(col: exp.Column) -> str:
    table = _column_table(col)
    return f"{table}.{col.name}" if table else col.name


def _join_type(join: exp.Join) -> str:
    parts = [p for p in (join.side, join.kind) if p]
    if parts:
        return " ".join(parts).upper()
    if join.args.get("on") is None and not join.args.get("using"):
        return "CROSS"
    return "INNER"


def _parse_join(
    join: exp.Join, earlier: SqlJson, dialect: str | None
) -> tuple[SqlJsonTable, SqlJsonJoin]:
    table = _table_model(join.this)
    previous = earlier.tables[-1].key
    on = join.args.get("on")
    pairs: list[JoinOnPair] = []
    left_table: str | None = None
    for cond in _conjuncts(on):
        if not (isinstance(cond, exp.EQ) and isinstance(cond.this, exp.Column)):
            continue
        if not isinstance(cond.expression, exp.Column):
            continue
        a, b = cond.this, cond.expression
        a_table, b_table = _column_table(a), _column_table(b)
        if table.matches(a_table) and not table.matches(b_table):
            a, b = b, a
            a_table = b_table
        pairs.append(JoinOnPair(left=_qualified(a), right=_qualified(b)))
        if left_table is None and a_table and not table.matches(a_table):
            left = earlier.table(a_table)
            left_table = left.key if left is not None else a_table
    using = [u.name for u in join.args.get("using") or []]
    if using:
        pairs = [JoinOnPair(left=f"{previous}.{c}", right=f"{table.key}.{c}") for c in using]
    return table, SqlJsonJoin(
        left_table=left_table or previous,
        right_table=table.key,
        join_type=_join_type(join),
        on_columns=pairs,
        condition=on.sql(dialect=dialect) if on is not None else None,
        using=using,
    )


def parse_sql_json(sql_text: str, dialect: Dialect | None = None) -> SqlJson:
    """Build the structural representation of a single SELECT.

    Raises:
        SqlJsonError: If the SQL does not parse or is not a plain SELECT
            (set operations, CTEs and derived tables are not representable)
    """
    sg = _sg(dialect)
    try:
        tree = sqlglot.parse_one(sql_text, read=sg)
    except ParseError as exc:
        msg = f"SQL parsing error: {exc}"
        raise SqlJsonError(msg) from exc
    if not isinstance(tree, exp.Select):
        msg = "Only a single SELECT statement can be represented structurally"
        raise SqlJsonError(msg)
    if _clause(tree, exp.With) is not None:
        msg = "Common table expressions cannot be represented structurally"
        raise SqlJsonError(msg)
    from_ = _clause(tree, exp.From)
    if from_ is None:
        msg = "SELECT without FROM cannot be represented structurally"
        raise SqlJsonError(msg)

    tables = [_table_model(from_.this)]
    joins: list[SqlJsonJoin] = []
    for join in tree.args.get("joins") or []:
        table, join_model = _parse_join(join, SqlJson(tables=list(tables)), sg)
        tables.append(table)
        joins.append(join_model)

    columns: list[SqlJsonColumn] = []
    for proj in tree.expressions:
        alias = proj.alias if isinstance(proj, exp.Alias) else None
        inner = proj.this if isinstance(proj, exp.Alias) else proj
        table = name = None
        if isinstance(inner, exp.Column):
            table = _column_table(inner) or None
            name = inner.name
        elif isinstance(inner, exp.Star):
            name = "*"
        columns.append(
            SqlJsonColumn(
                expression=inner.sql(dialect=sg),
                table=table,
                name=name,
                alias=alias or None,
            )
        )

    where = _clause(tree, exp.Where)
    group = _clause(tree, exp.Group)
    having = _clause(tree, exp.Having)
    order = _clause(tree, exp.Order)
    limit = _clause(tree, exp.Limit)
    limit_value: int | None = None
    if limit is not None:
        raw = limit.expression if limit.expression is not None else limit.this
        try:
            limit_value = int(raw.name) if raw is not None else None
        except ValueError as exc:
            msg = f"Unsupported LIMIT expression: {raw.sql(dialect=sg)}"
            raise SqlJsonError(msg) from exc

    return SqlJson(
        tables=tables,
        columns=columns,
        joins=joins,
        filters=[c.sql(dialect=sg) for c in _conjuncts(where.this if where else None)],
        group_by=[g.sql(dialect=sg) for g in (group.expressions if group else [])],
        having=[c.sql(dialect=sg) for c in _conjuncts(having.this if having else None)],
        order_by=[
            SqlJsonOrder(
                expression=o.this.sql(dialect=sg),
                direction="DESC" if o.args.get("desc") else "ASC",
            )
            for o in (order.expressions if order else [])
        ],
        limit=limit_value,
        distinct=bool(tree.args.get("distinct")),
    )


def _table_exp(table: SqlJsonTable) -> exp.Table:
    return exp.table_(table.name, db=table.schema_name, catalog=table.catalog, alias=table.alias)


def _wrap(sql: str) -> str:
    return f"({sql})" if " or " in sql.lower() else sql


def render_sql_json(sql_json: SqlJson, dialect: Dialect | None = None) -> str:
    """Render the structural representation back to SQL text.

    Raises:
        SqlJsonError: If the structure references tables it does not declare
    """
    sg = _sg(dialect)
    if not sql_json.tables:
        msg = "SqlJson has no tables"
        raise SqlJsonError(msg)
    projections = [
        f"{c.expression} AS {exp.to_identifier(c.alias).sql(dialect=sg)}"
        if c.alias
        else c.expression
        for c in sql_json.columns
    ] or ["*"]
    query = exp.select(*projections, dialect=sg).from_(
        _table_exp(sql_json.tables[0]), dialect=sg
    )

    joined = {sql_json.tables[0].key.lower()}
    for join in sql_json.joins:
        table = sql_json.table(join.right_table)
        if table is None:
            msg = f"Join references undeclared table '{join.right_table}'"
            raise SqlJsonError(msg)
        on = join.condition or " AND ".join(f"{p.left} = {p.right}" for p in join.on_columns)
        join_type = join.join_type.upper()
        query = query.join(
            _table_exp(table),
            on=on if on and not join.using and join_type != "CROSS" else None,
            using=join.using or None,
            join_type=join_type,
            dialect=sg,
        )
        joined.add(table.key.lower())
    for table in sql_json.tables[1:]:
        if table.key.lower() not in joined:
            query = query.join(_table_exp(table), join_type="CROSS", dialect=sg)
            joined.add(table.key.lower())

    if sql_json.filters:
        query = query.where(*(_wrap(f) for f in sql_json.filters), dialect=sg)
    if sql_json.group_by:
        query = query.group_by(*sql_json.group_by, dialect=sg)
    if sql_json.having:
        query = query.having(*(_wrap(h) for h in sql_json.having), dialect=sg)
    if sql_json.order_by:
        query = query.order_by(
            *(f"{o.expression} {o.direction}" for o in sql_json.order_by), dialect=sg
        )
    if sql_json.limit is not None:
        query = query.limit(sql_json.limit, dialect=sg)
    if sql_json.distinct:
        query = query.distinct()
    return query.sql(dialect=sg)


JoinSignature = frozenset[tuple[str, str, frozenset[frozenset[str]]]]
Signature = tuple[frozenset[str], frozenset[str], JoinSignature]


def logical_signature(sql_json: SqlJson) -> Signature:
    """Table, projected-column and join sets that define logical equivalence."""

    def ref(key: str) -> str:
        tbl = sql_json.table(key)
        return tbl.reference.lower() if tbl is not None else key.lower()

    def resolve(qualified: str) -> str:
        table, _, column = qualified.lower().rpartition(".")
        return f"{ref(table)}.{column}" if table else column

    tables = frozenset(t.reference.lower() for t in sql_json.tables)
    columns = frozenset(
        f"{c.expression.lower()} AS {(c.alias or '').lower()}" for c in sql_json.columns
    )
    joins = frozenset(
        (
            j.join_type.upper(),
            ref(j.right_table),
            frozenset(frozenset({resolve(p.left), resolve(p.right)}) for p in j.on_columns),
        )
        for j in sql_json.joins
    )
    return tables, columns, joins


def equivalent(sql_text: str, sql_json: SqlJson, dialect: Dialect | None = None) -> bool:
    """True when `sql_json` describes the same logical query as `sql_text`."""
    try:
        reparsed = parse_sql_json(render_sql_json(sql_json, dialect), dialect)
        original = parse_sql_json(sql_text, dialect)
    except SqlJsonError:
        return False
    return logical_signature(reparsed) == logical_signature(original)
