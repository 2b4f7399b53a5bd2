"""Markdown rendering of collected schemas for the AI engine.

`format_schema` is a pure function of its input: sources and tables are
emitted in sorted order and nothing time- or environment-dependent goes into
the text, so a restored session's cached prompt stays byte-identical. When
more than one source is rendered, every table reference carries its source
label (``label.schema.table``).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from itertools import combinations

from .join_inference import (
    JoinCandidate,
    confidence_level,
    singularize,
    suggest_cross_source_joins,
)
from .models import ColumnSchema, Relationship, SourceSchema, TableSchema

_BAND_TITLES = {
    "high": (
        "### High Confidence Suggestions (>=70%)",
        "*These follow standard naming patterns. Treat them as if they were foreign keys.*",
    ),
    "medium": (
        "### Medium Confidence Suggestions (40-70%)",
        "*Plausible joins based on naming patterns. Check the reasoning before using them.*",
    ),
    "low": (
        "### Low Confidence Suggestions (<40%)",
        "*Weak matches. Only use them when the user asks for these columns explicitly.*",
    ),
}


@dataclass(frozen=True)
class SchemaSummary:
    """Summary statistics of a schema set."""

    source_count: int
    table_count: int
    total_columns: int
    total_foreign_keys: int
    avg_columns_per_table: float

    def to_dict(self) -> dict[str, int | float]:
        return {
            "source_count": self.source_count,
            "table_count": self.table_count,
            "total_columns": self.total_columns,
            "total_foreign_keys": self.total_foreign_keys,
            "avg_columns_per_table": self.avg_columns_per_table,
        }


def summarize(sources: Sequence[SourceSchema]) -> SchemaSummary:
    tables = [t for s in sources for t in s.tables]
    total_columns = sum(len(t.columns) for t in tables)
    avg = round(total_columns / len(tables), 1) if tables else 0.0
    return SchemaSummary(
        source_count=len(sources),
        table_count=len(tables),
        total_columns=total_columns,
        total_foreign_keys=sum(len(t.foreign_keys) for t in tables),
        avg_columns_per_table=avg,
    )


def _ref(prefix: str, qualified: str) -> str:
    return f"{prefix}.{qualified}" if prefix else qualified


def _column_constraints(prefix: str, table: TableSchema, column: ColumnSchema) -> str:
    constraints: list[str] = []
    if column.is_pk:
        constraints.append("PRIMARY KEY")
    for fk in table.foreign_keys:
        if fk.column == column.name:
            constraints.append(
                f"FOREIGN KEY ({_ref(prefix, fk.referenced_table)}.{fk.referenced_column})"
            )
            break
    if not column.nullable:
        constraints.append("NOT NULL")
    return ", ".join(constraints) if constraints else "-"


def _relationship_type(table: TableSchema, fk: Relationship) -> str:
    if fk.column in table.primary_key and len(table.primary_key) == 1:
        return "One-to-One"
    if len(table.foreign_keys) >= 2 and len(table.columns) <= 4:  # noqa: PLR2004
        return "Many-to-Many (Junction)"
    return "One-to-Many"


def _relationship_description(from_table: str, to_table: str, rel_type: str) -> str:
    from_name = from_table.rsplit(".", 1)[-1]
    to_name = to_table.rsplit(".", 1)[-1]
    if rel_type == "One-to-One":
        return f"Each {singularize(from_name)} is associated with one {singularize(to_name)}"
    if rel_type == "One-to-Many":
        return f"A {singularize(to_name)} can have multiple {from_name}"
    return f"{from_name} and {to_name} have a many-to-many relationship"


def _format_tables(
    prefix: str, source: SourceSchema, heading: str, table_level: str = "###"
) -> list[str]:
    lines: list[str] = [heading, ""]
    if not source.tables:
        lines += ["*No tables found in this data source.*", ""]
    for table in source.tables:
        lines.append(f"{table_level} Table: {_ref(prefix, table.qualified_name)}")
        lines.append("| Column Name | Data Type | Constraints |")
        lines.append("|-------------|-----------|-------------|")
        for column in table.columns:
            constraints = _column_constraints(prefix, table, column)
            lines.append(f"| {column.name} | {column.type.upper()} | {constraints} |")
        lines.append("")
    return lines


def _format_foreign_keys(prefix: str, source: SourceSchema, heading: str) -> list[str]:
    lines: list[str] = [heading, ""]
    index = 0
    for table in source.tables:
        for fk in table.foreign_keys:
            index += 1
            rel_type = _relationship_type(table, fk)
            src = _ref(prefix, table.qualified_name)
            dst = _ref(prefix, fk.referenced_table)
            lines.append(f"{index}. **{src} -> {dst}** ({rel_type})")
            lines.append(f"   - Foreign Key: {src}.{fk.column} -> {dst}.{fk.referenced_column}")
            lines.append(
                "   - Description: "
                + _relationship_description(table.qualified_name, fk.referenced_table, rel_type)
            )
            lines.append("")
    if index == 0:
        lines += ["*No explicit foreign key relationships detected.*", ""]
    return lines


def _format_inferred(prefix: str, source: SourceSchema, heading: str) -> list[str]:
    joins: list[tuple[str, Relationship]] = [
        (table.qualified_name, rel)
        for table in source.tables
        for rel in table.inferred_relationships
    ]
    if not joins:
        return []

    lines: list[str] = [
        heading,
        "",
        "*Suggested from column names and types. Use them for multi-table requests.*",
        "",
    ]
    for band in ("high", "medium", "low"):
        members = [j for j in joins if confidence_level(j[1].confidence) == band]
        if not members:
            continue
        title, note = _BAND_TITLES[band]
        lines += [title, note, ""]
        for table_name, rel in members:
            lines.append(
                f"- **{_ref(prefix, table_name)}.{rel.column}** -> "
                f"**{_ref(prefix, rel.referenced_table)}.{rel.referenced_column}**"
            )
            lines.append(f"  - Confidence: {round(rel.confidence * 100)}%")
            lines.append("  - Suggested JOIN: LEFT JOIN")
        lines.append("")
    return lines


def _format_cross_source_candidates(candidates: list[JoinCandidate]) -> list[str]:
    lines = [
        "## Potential Cross-Source Joins",
        "",
        "*Key columns with similar names in different data sources. Verify before joining.*",
        "",
    ]
    if not candidates:
        return [*lines, "*No candidate joins detected between the data sources.*", ""]
    for cand in candidates:
        lines.append(
            f"- **{cand.left_source}.{cand.left_table}.{cand.left_column}** <-> "
            f"**{cand.right_source}.{cand.right_table}.{cand.right_column}** "
            f"({round(cand.confidence * 100)}%, {cand.left_type} / {cand.right_type})"
        )
    lines.append("")
    return lines


def format_schema(sources: Sequence[SourceSchema]) -> str:
    """Render one or more source schemas as markdown.

    Args:
        sources: Collected sources; order does not matter

    Returns:
        Markdown text, identical for identical input
    """
    ordered = sorted(sources, key=lambda s: (s.source_label, s.source_id))
    summary = summarize(ordered)

    if len(ordered) <= 1:
        source = ordered[0] if ordered else SourceSchema(source_id="", source_label="", dialect="")
        lines = ["# Database Schema Information", ""]
        lines += _format_tables("", source, "## Tables")
        lines += _format_foreign_keys("", source, "## Relationships (Explicit Foreign Keys)")
        lines += _format_inferred(
            "", source, "## Inferred Relationships (Pattern-Based Suggestions)"
        )
    else:
        lines = [
            "# Cross-Source Database Schema",
            "",
            f"This schema merges {summary.source_count} data sources. "
            "Reference every table as `source_label.schema.table`.",
            "",
        ]
        for source in ordered:
            label = source.source_label
            lines += [f"## Data Source: {label} ({source.dialect})", ""]
            lines += _format_tables(label, source, f"### Tables in {label}", "####")
            lines += _format_foreign_keys(label, source, f"### Relationships in {label}")
            lines += _format_inferred(label, source, f"### Inferred Relationships in {label}")
        candidates: list[JoinCandidate] = []
        for left, right in combinations(ordered, 2):
            candidates.extend(suggest_cross_source_joins(left, right))
        lines += _format_cross_source_candidates(candidates)

    lines += [
        "## Schema Summary",
        "",
        f"- Tables: {summary.table_count}",
        f"- Columns: {summary.total_columns}",
        f"- Foreign keys: {summary.total_foreign_keys}",
        f"- Average columns per table: {summary.avg_columns_per_table}",
        "",
    ]
    return "\n".join(lines)
