"""Data models for collected source schemas.

These dataclasses describe what the collector captured from each data source
at session start. A snapshot is immutable for the life of a session, so the
classes are frozen and use tuples for their sequences.

Models:
- ColumnSchema: one column with its rendered SQL type
- Relationship: an explicit foreign key or an inferred join between two tables
- TableSchema: one table with its columns and relationships
- SourceSchema: all tables collected from one data source
- SchemaSnapshot: the merged view of every collected source
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

RelationshipOrigin = Literal["foreign_key", "inferred"]


@dataclass(frozen=True)
class ColumnSchema:
    """Column metadata.

    Attributes:
        name: Column name as defined in the database
        type: SQL data type rendered by the dialect (e.g. ``VARCHAR(50)``)
        nullable: Whether the column accepts NULL values
        is_pk: True if the column is part of the primary key
    """

    name: str
    type: str
    nullable: bool = True
    is_pk: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "nullable": self.nullable,
            "is_pk": self.is_pk,
        }


@dataclass(frozen=True)
class Relationship:
    """A join path from a column of this table to a column of another table.

    Attributes:
        column: Local column name
        referenced_table: Referenced table as ``schema.table``
        referenced_column: Referenced column name
        origin: ``foreign_key`` for declared constraints, ``inferred`` otherwise
        confidence: 1.0 for foreign keys, heuristic score (0-1) for inferred ones
    """

    column: str
    referenced_table: str
    referenced_column: str
    origin: RelationshipOrigin = "foreign_key"
    confidence: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "column": self.column,
            "referenced_table": self.referenced_table,
            "referenced_column": self.referenced_column,
            "origin": self.origin,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class TableSchema:
    """Table metadata with columns and relationships."""

    schema_name: str
    name: str
    columns: tuple[ColumnSchema, ...] = ()
    relationships: tuple[Relationship, ...] = ()

    @property
    def qualified_name(self) -> str:
        """Return ``schema.table``."""
        return f"{self.schema_name}.{self.name}"

    @property
    def primary_key(self) -> list[str]:
        return [c.name for c in self.columns if c.is_pk]

    @property
    def foreign_keys(self) -> list[Relationship]:
        return [r for r in self.relationships if r.origin == "foreign_key"]

    @property
    def inferred_relationships(self) -> list[Relationship]:
        return [r for r in self.relationships if r.origin == "inferred"]

    def column(self, name: str) -> ColumnSchema | None:
        """Return the column named `name` (case-insensitive) or None."""
        lowered = name.lower()
        for col in self.columns:
            if col.name.lower() == lowered:
                return col
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema": self.schema_name,
            "name": self.name,
            "columns": [c.to_dict() for c in self.columns],
            "relationships": [r.to_dict() for r in self.relationships],
        }


@dataclass(frozen=True)
class SourceSchema:
    """Everything collected from a single data source.

    Attributes:
        source_id: Stable identifier of the data source
        source_label: Human-readable label used to namespace tables across sources
        dialect: SQLAlchemy dialect name of the source (e.g. ``postgresql``)
        tables: Collected tables, sorted by qualified name
    """

    source_id: str
    source_label: str
    dialect: str
    tables: tuple[TableSchema, ...] = ()

    def table(self, qualified_name: str) -> TableSchema | None:
        """Find a table by ``schema.table`` or bare table name (case-insensitive)."""
        lowered = qualified_name.lower()
        for tbl in self.tables:
            if tbl.qualified_name.lower() == lowered:
                return tbl
        bare = [t for t in self.tables if t.name.lower() == lowered]
        if len(bare) == 1:
            return bare[0]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "source_label": self.source_label,
            "dialect": self.dialect,
            "tables": [t.to_dict() for t in self.tables],
        }


@dataclass(frozen=True)
class SchemaSnapshot:
    """Merged schema view captured once at session start.

    When more than one source is present, the snapshot is cross-source and
    tables are referenced as ``label.schema.table``.
    """

    sources: tuple[SourceSchema, ...] = field(default_factory=tuple)

    @property
    def cross_source(self) -> bool:
        return len(self.sources) > 1

    @property
    def source_ids(self) -> list[str]:
        return [s.source_id for s in self.sources]

    def source(self, source_id: str) -> SourceSchema | None:
        for src in self.sources:
            if src.source_id == source_id:
                return src
        return None

    def table_references(self) -> list[str]:
        """Return every table reference in the snapshot's namespace."""
        refs: list[str] = []
        for src in self.sources:
            for tbl in src.tables:
                if self.cross_source:
                    refs.append(f"{src.source_label}.{tbl.qualified_name}")
                else:
                    refs.append(tbl.qualified_name)
        return refs

    def to_dict(self) -> dict[str, Any]:
        return {
            "cross_source": self.cross_source,
            "sources": [s.to_dict() for s in self.sources],
        }
