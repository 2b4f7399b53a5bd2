from __future__ import annotations

import asyncio
from pathlib import Path
import time

from conftest import make_sqlite
import pytest

from sqlmodeler_mcp.exceptions import (
    NoSchemaAvailableError,
    SourceUnreachableError,
    UnknownSourceError,
)
from sqlmodeler_mcp.schema import collector as collector_module
from sqlmodeler_mcp.schema.collector import SchemaCollector, namespace_label
from sqlmodeler_mcp.services.config_service import DataSourceConfig
from sqlmodeler_mcp.services.sources import SourceRegistry


def test_collect_single_source(registry: SourceRegistry) -> None:
    schema, warnings = asyncio.run(SchemaCollector(registry).collect("shop"))

    assert warnings == []
    assert schema.source_label == "shop"
    assert schema.dialect == "sqlite"
    assert [t.qualified_name for t in schema.tables] == ["main.customers", "main.orders"]

    orders = schema.table("orders")
    assert orders is not None
    assert orders.primary_key == ["id"]
    fk = orders.foreign_keys[0]
    assert (fk.column, fk.referenced_table, fk.referenced_column) == (
        "customer_id",
        "main.customers",
        "id",
    )
    name = schema.table("main.customers").column("name")  # type: ignore[union-attr]
    assert name is not None
    assert name.nullable is False


def test_unreachable_single_source_propagates(registry: SourceRegistry) -> None:
    with pytest.raises(SourceUnreachableError) as info:
        asyncio.run(SchemaCollector(registry).collect_many(["down"]))
    assert info.value.source_id == "down"


def test_access_gate_hides_source(registry: SourceRegistry) -> None:
    collector = SchemaCollector(registry)
    with pytest.raises(UnknownSourceError):
        asyncio.run(collector.collect_many(["crm"], user_id="u2"))
    result = asyncio.run(collector.collect_many(["crm"], user_id="u1"))
    assert result.snapshot.source_ids == ["crm"]


def test_cross_source_drops_unreachable_sources(registry: SourceRegistry) -> None:
    result = asyncio.run(SchemaCollector(registry).collect_many(["shop", "down", "crm"]))

    assert result.snapshot.source_ids == ["crm", "shop"]
    assert result.snapshot.cross_source is True
    assert result.dropped_source_ids == ["down"]
    assert result.warnings[0].kind == "SourceUnreachableError"
    assert "crm.main.accounts" in result.snapshot.table_references()


def test_cross_source_unknown_id_becomes_warning(registry: SourceRegistry) -> None:
    result = asyncio.run(SchemaCollector(registry).collect_many(["shop", "nope"]))
    assert result.snapshot.source_ids == ["shop"]
    assert [(w.kind, w.source_id) for w in result.warnings] == [("UnknownSourceError", "nope")]


def test_all_sources_failing_raises(registry: SourceRegistry) -> None:
    with pytest.raises(NoSchemaAvailableError):
        asyncio.run(SchemaCollector(registry).collect_many(["down", "nope"]))


def test_slow_source_times_out_without_blocking_others(
    registry: SourceRegistry, monkeypatch: pytest.MonkeyPatch
) -> None:
    real = collector_module.reflect_source

    def slow_for_crm(engine, source, **kwargs):  # noqa: ANN001, ANN003, ANN202
        if source.id == "crm":
            time.sleep(0.5)
        return real(engine, source, **kwargs)

    monkeypatch.setattr(collector_module, "reflect_source", slow_for_crm)
    result = asyncio.run(
        SchemaCollector(registry, timeout_sec=0.2).collect_many(["shop", "crm"])
    )

    assert result.snapshot.source_ids == ["shop"]
    assert result.warnings[0].source_id == "crm"
    assert "timed out" in result.warnings[0].message


def test_empty_source_yields_warning(tmp_path: Path) -> None:
    reg = SourceRegistry([DataSourceConfig(id="blank", label="Blank", url="sqlite://")])
    reg.register_engine("blank", make_sqlite(tmp_path / "blank.db", ()))
    result = asyncio.run(SchemaCollector(reg).collect_many(["blank"]))
    assert result.snapshot.sources[0].tables == ()
    assert result.warnings[0].kind == "EmptySchemaWarning"
    assert result.dropped_source_ids == []


def test_namespace_labels() -> None:
    assert namespace_label("Sales DB (prod)", "s1") == "sales_db_prod"
    assert namespace_label("2024 data", "s2") == "src_2024_data"
    assert namespace_label("***", "s-3") == "src_s_3"


def test_duplicate_labels_are_disambiguated() -> None:
    reg = SourceRegistry(
        [
            DataSourceConfig(id="a", label="Sales", url="sqlite://"),
            DataSourceConfig(id="b", label="Sales", url="sqlite://"),
        ]
    )
    labels = SchemaCollector(reg)._labels(["a", "b"])  # noqa: SLF001
    assert labels == {"a": "sales", "b": "sales_b"}
