"""Schema collection from live data sources.

The collector reflects tables, columns, primary keys and foreign keys through
SQLAlchemy's inspector. Reflection is blocking, so it runs in a worker thread
under an asyncio deadline; a source that cannot be connected to or reflected
within the deadline is reported as unreachable.

Cross-source collection attempts every requested source independently. Any
subset may fail; the caller gets the reachable sources plus a warning per
dropped source. Only when nothing is reachable does collection fail.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
import re
import time
from typing import Any, Literal

from fastmcp.utilities.logging import get_logger
import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.engine.reflection import Inspector
from sqlalchemy.exc import SQLAlchemyError

from sqlmodeler_mcp.db_utils import apply_statement_timeout
from sqlmodeler_mcp.exceptions import (
    NoSchemaAvailableError,
    SourceError,
    SourceUnreachableError,
    UnknownSourceError,
)
from sqlmodeler_mcp.services.config_service import DataSourceConfig
from sqlmodeler_mcp.services.sources import SourceRegistry

from .join_inference import with_inferred_relationships
from .models import ColumnSchema, Relationship, SchemaSnapshot, SourceSchema, TableSchema

_logger = get_logger(__name__)

WarningKind = Literal["SourceUnreachableError", "UnknownSourceError", "EmptySchemaWarning"]

_LABEL_CHARS = re.compile(r"\W+")


@dataclass(frozen=True)
class CollectionWarning:
    """Non-fatal problem found while collecting schemas."""

    kind: WarningKind
    source_id: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "source_id": self.source_id, "message": self.message}


@dataclass(frozen=True)
class CollectionResult:
    """Merged snapshot of the reachable sources with the warnings raised on the way."""

    snapshot: SchemaSnapshot
    warnings: list[CollectionWarning] = field(default_factory=list)

    @property
    def dropped_source_ids(self) -> list[str]:
        return [w.source_id for w in self.warnings if w.kind != "EmptySchemaWarning"]


def namespace_label(label: str, fallback: str) -> str:
    """Reduce a display label to an identifier usable as a table namespace."""
    cleaned = _LABEL_CHARS.sub("_", label).strip("_").lower()
    if not cleaned or cleaned[0].isdigit():
        cleaned = f"src_{cleaned or _LABEL_CHARS.sub('_', fallback).lower()}"
    return cleaned


def _reflect_table(
    insp: Inspector, schema: str | None, schema_name: str, table: str
) -> TableSchema:
    columns_metadata = insp.get_columns(table, schema=schema)
    try:
        pk = insp.get_pk_constraint(table, schema=schema)
        pk_cols = set(pk.get("constrained_columns") or [])
    except SQLAlchemyError as exc:
        _logger.debug("Cannot get PK for %s.%s: %s", schema_name, table, exc)
        pk_cols = set()

    relationships: list[Relationship] = []
    try:
        fk_constraints = insp.get_foreign_keys(table, schema=schema)
    except SQLAlchemyError as exc:
        _logger.debug("Cannot get FKs for %s.%s: %s", schema_name, table, exc)
        fk_constraints = []
    for fk in fk_constraints:
        ref_schema = fk.get("referred_schema") or schema_name
        ref_table = fk.get("referred_table")
        for local_col, ref_col in zip(
            fk.get("constrained_columns", []), fk.get("referred_columns", []), strict=False
        ):
            relationships.append(
                Relationship(
                    column=local_col,
                    referenced_table=f"{ref_schema}.{ref_table}",
                    referenced_column=ref_col,
                )
            )

    return TableSchema(
        schema_name=schema_name,
        name=table,
        columns=tuple(
            ColumnSchema(
                name=col["name"],
                type=str(col["type"]),
                nullable=bool(col.get("nullable", True)),
                is_pk=col["name"] in pk_cols,
            )
            for col in columns_metadata
        ),
        relationships=tuple(relationships),
    )


def reflect_source(
    engine: Engine, source: DataSourceConfig, *, label: str, timeout_sec: float | None = None
) -> SourceSchema:
    """Reflect one source synchronously.

    Tables that fail to reflect individually are skipped with a warning; a
    failure to connect or to list tables propagates as SQLAlchemyError.
    """
    with engine.connect() as conn:
        apply_statement_timeout(conn, timeout_sec)
        insp: Inspector = sa.inspect(conn)
        schema_name = source.schema or insp.default_schema_name or "main"
        table_names = sorted(insp.get_table_names(schema=source.schema))
        _logger.info("%s: %d tables in schema %s", source.id, len(table_names), schema_name)

        tables: list[TableSchema] = []
        for table in table_names:
            try:
                tables.append(_reflect_table(insp, source.schema, schema_name, table))
            except SQLAlchemyError as exc:
                _logger.warning("Cannot reflect %s.%s: %s", schema_name, table, exc)

    return SourceSchema(
        source_id=source.id,
        source_label=label,
        dialect=engine.dialect.name,
        tables=tuple(with_inferred_relationships(tables)),
    )


class SchemaCollector:
    """Collect source schemas with a bounded connect/reflect deadline."""

    def __init__(self, registry: SourceRegistry, *, timeout_sec: float = 10.0) -> None:
        self._registry = registry
        self._timeout_sec = timeout_sec

    async def collect(
        self, source_id: str, *, user_id: str | None = None, label: str | None = None
    ) -> tuple[SourceSchema, list[CollectionWarning]]:
        """Collect one source.

        Returns:
            The source schema and an EmptySchemaWarning entry when it has no tables

        Raises:
            UnknownSourceError: If the source is not configured or not accessible
            SourceUnreachableError: On connection/reflection failure or timeout
        """
        source = self._registry.resolve(source_id, user_id)
        engine = self._registry.engine(source_id)
        ns = label or namespace_label(source.label, source.id)
        start = time.perf_counter()
        try:
            schema = await asyncio.wait_for(
                asyncio.to_thread(
                    reflect_source, engine, source, label=ns, timeout_sec=self._timeout_sec
                ),
                timeout=self._timeout_sec,
            )
        except TimeoutError as exc:
            _logger.warning("Schema collection for %s timed out", source_id)
            raise SourceUnreachableError(
                source_id, f"timed out after {self._timeout_sec:g}s"
            ) from exc
        except SQLAlchemyError as exc:
            _logger.warning("Schema collection for %s failed: %s", source_id, exc)
            raise SourceUnreachableError(source_id, str(exc).splitlines()[0]) from exc

        _logger.info(
            "Collected %s (%d tables) in %.1f ms",
            source_id,
            len(schema.tables),
            (time.perf_counter() - start) * 1000.0,
        )
        warnings: list[CollectionWarning] = []
        if not schema.tables:
            warnings.append(
                CollectionWarning(
                    kind="EmptySchemaWarning",
                    source_id=source_id,
                    message=f"Data source '{source_id}' has no tables",
                )
            )
        return schema, warnings

    async def collect_many(
        self, source_ids: Sequence[str], *, user_id: str | None = None
    ) -> CollectionResult:
        """Collect several sources concurrently, dropping unreachable ones.

        A single requested source propagates its own failure; with several,
        failures become warnings and only a total failure is raised.

        Raises:
            SourceUnreachableError: Single source that could not be collected
            UnknownSourceError: Single source that is unknown or not accessible
            NoSchemaAvailableError: No requested source could be collected
        """
        ids = sorted(set(source_ids))
        if not ids:
            msg = "At least one data source id is required"
            raise NoSchemaAvailableError(msg)
        labels = self._labels(ids)

        if len(ids) == 1:
            schema, warnings = await self.collect(ids[0], user_id=user_id, label=labels[ids[0]])
            return CollectionResult(snapshot=SchemaSnapshot(sources=(schema,)), warnings=warnings)

        outcomes = await asyncio.gather(
            *(self.collect(sid, user_id=user_id, label=labels[sid]) for sid in ids),
            return_exceptions=True,
        )
        sources: list[SourceSchema] = []
        warnings = []
        for sid, outcome in zip(ids, outcomes, strict=True):
            if isinstance(outcome, SourceError):
                _logger.warning("Dropping source %s from cross-source session: %s", sid, outcome)
                kind: WarningKind = outcome.kind  # type: ignore[assignment]
                warnings.append(CollectionWarning(kind=kind, source_id=sid, message=str(outcome)))
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            schema, source_warnings = outcome
            sources.append(schema)
            warnings.extend(source_warnings)

        if not sources:
            msg = "None of the requested data sources could be collected: " + ", ".join(ids)
            raise NoSchemaAvailableError(msg)
        return CollectionResult(snapshot=SchemaSnapshot(sources=tuple(sources)), warnings=warnings)

    def _labels(self, ids: Sequence[str]) -> dict[str, str]:
        """Unique namespace labels for the requested sources."""
        labels: dict[str, str] = {}
        seen: set[str] = set()
        for sid in ids:
            try:
                base = namespace_label(self._registry.resolve(sid).label, sid)
            except UnknownSourceError:
                base = namespace_label(sid, sid)
            label = base
            if label in seen:
                label = f"{base}_{namespace_label(sid, sid)}"
            seen.add(label)
            labels[sid] = label
        return labels
