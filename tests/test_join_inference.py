from __future__ import annotations

import pytest

from sqlmodeler_mcp.schema.join_inference import (
    best_column_match,
    evaluate_column_match,
    name_similarity,
    singularize,
    suggest_cross_source_joins,
    suggest_joins,
    with_inferred_relationships,
)
from sqlmodeler_mcp.schema.models import ColumnSchema, Relationship, SourceSchema, TableSchema
from sqlmodeler_mcp.schema.type_families import type_family, types_compatible


def _col(name: str, type_: str = "INTEGER", *, pk: bool = False) -> ColumnSchema:
    return ColumnSchema(name=name, type=type_, nullable=not pk, is_pk=pk)


CUSTOMERS = TableSchema("main", "customers", (_col("id", pk=True), _col("name", "TEXT")))
ORDERS = TableSchema(
    "main",
    "orders",
    (_col("id", pk=True), _col("customer_id"), _col("total", "NUMERIC(10, 2)")),
)
PAYMENTS = TableSchema(
    "main", "payments", (_col("id", pk=True), _col("order_id"), _col("customer_id"))
)


@pytest.mark.parametrize(
    ("type_text", "family"),
    [
        ("VARCHAR(50)", "string"),
        ("int4", "integer"),
        ("NUMBER(10, 0)", "numeric"),
        ("timestamp with time zone", "date"),
        ("INTEGER[]", None),
        ("geography", None),
    ],
)
def test_type_family(type_text: str, family: str | None) -> None:
    assert type_family(type_text) == family


def test_types_compatible() -> None:
    assert types_compatible("INTEGER", "BIGINT")
    assert types_compatible("INTEGER", "NUMERIC(10, 0)")
    assert not types_compatible("INTEGER", "TEXT")
    assert not types_compatible("INTEGER[]", "INTEGER")
    assert types_compatible("geography", "GEOGRAPHY")


@pytest.mark.parametrize(
    ("word", "singular"),
    [
        ("customers", "customer"),
        ("categories", "category"),
        ("boxes", "box"),
        ("people", "person"),
        ("address", "address"),
    ],
)
def test_singularize(word: str, singular: str) -> None:
    assert singularize(word) == singular


def test_exact_name_match_skips_generic_columns() -> None:
    score, reason, _ = evaluate_column_match(
        _col("customer_id"), _col("customer_id"), "orders", "payments"
    )
    assert score == pytest.approx(0.95)
    assert reason.startswith("Exact column name match")

    score, _, _ = evaluate_column_match(_col("id"), _col("id"), "orders", "payments")
    assert score == 0.0


def test_id_pattern_and_table_reference() -> None:
    score, _, patterns = evaluate_column_match(
        _col("id"), _col("customer_id"), "customers", "orders"
    )
    assert score == pytest.approx(0.90)
    assert "id_suffix" in patterns

    score, reason, _ = evaluate_column_match(
        _col("order_no"), _col("id"), "shipments", "orders"
    )
    assert score == pytest.approx(0.75)
    assert reason.startswith("Table reference")


def test_incompatible_types_never_match() -> None:
    score, reason, _ = evaluate_column_match(
        _col("customer_id"), _col("customer_id", "TEXT"), "orders", "payments"
    )
    assert score == 0.0
    assert reason == "Incompatible types"


def test_best_match_is_oriented_from_referencing_column() -> None:
    cand = best_column_match(CUSTOMERS, ORDERS)
    assert cand is not None
    assert (cand.left_table, cand.left_column) == ("main.orders", "customer_id")
    assert (cand.right_table, cand.right_column) == ("main.customers", "id")
    assert cand.confidence_level == "high"
    assert cand.to_dict()["suggested_join_type"] == "LEFT"


def test_suggest_joins_ranks_foreign_keys_first() -> None:
    orders = TableSchema(
        "main",
        "orders",
        ORDERS.columns,
        (Relationship("customer_id", "main.customers", "id"),),
    )
    source = SourceSchema("shop", "shop", "sqlite", (CUSTOMERS, orders, PAYMENTS))

    ranked = suggest_joins(source)

    assert ranked[0].origin == "foreign_key"
    assert ranked[0].confidence == 1.0
    assert ranked[0].to_dict()["suggested_join_type"] == "INNER"
    assert [c.confidence for c in ranked] == sorted((c.confidence for c in ranked), reverse=True)
    pairs = {c.pair_key() for c in ranked}
    assert len(pairs) == len(ranked)
    # The declared pair is not suggested a second time.
    fk_pairs = [
        c for c in ranked if {c.left_table, c.right_table} == {"main.orders", "main.customers"}
    ]
    assert len(fk_pairs) == 1
    assert len(suggest_joins(source, limit=1)) == 1


def test_source_without_candidates_gives_empty_list() -> None:
    lonely = SourceSchema("x", "x", "sqlite", (CUSTOMERS,))
    assert suggest_joins(lonely) == []


def test_with_inferred_relationships_attaches_to_referencing_table() -> None:
    tables = with_inferred_relationships([CUSTOMERS, ORDERS])
    orders = next(t for t in tables if t.name == "orders")
    customers = next(t for t in tables if t.name == "customers")

    assert customers.relationships == ()
    rel = orders.inferred_relationships[0]
    assert (rel.column, rel.referenced_table, rel.referenced_column) == (
        "customer_id",
        "main.customers",
        "id",
    )
    assert rel.confidence == pytest.approx(0.90)


def test_name_similarity_normalizes_key_suffixes() -> None:
    assert name_similarity("customer_id", "CustomerKey") < 0.95
    assert name_similarity("customer_id", "customer_key") == pytest.approx(0.95)
    assert name_similarity("cust_id", "customer_id") > 0.6


def test_cross_source_joins_compare_key_columns_only() -> None:
    shop = SourceSchema("shop", "shop", "sqlite", (CUSTOMERS, ORDERS))
    accounts = TableSchema(
        "main",
        "accounts",
        (_col("id", pk=True), _col("customer_id"), _col("segment", "TEXT")),
    )
    crm = SourceSchema("crm", "crm", "sqlite", (accounts,))

    candidates = suggest_cross_source_joins(shop, crm)

    assert 0 < len(candidates) <= 5
    assert all(c.left_source == "shop" and c.right_source == "crm" for c in candidates)
    assert all("segment" not in (c.left_column, c.right_column) for c in candidates)
    assert any(
        c.left_column == "customer_id" and c.right_column == "customer_id" for c in candidates
    )
