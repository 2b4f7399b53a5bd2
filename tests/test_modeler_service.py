from __future__ import annotations

import asyncio

import pytest

from sqlmodeler_mcp.exceptions import (
    NoActiveSessionError,
    SourceUnreachableError,
    UnknownSourceError,
)
from sqlmodeler_mcp.federation.sql_json import parse_sql_json
from sqlmodeler_mcp.services.modeler_service import ModelerService, align_draft
from sqlmodeler_mcp.session.models import ModelDraft, SessionKey

SHOP = ["shop"]


def test_initialize_collects_and_greets(service: ModelerService) -> None:
    result = asyncio.run(service.initialize_session(SHOP, "u1"))

    assert result.source_set_id == "shop"
    assert result.tables == ["main.customers", "main.orders"]
    assert result.cross_source is False
    assert result.restored is False
    assert result.warnings == []
    assert "**2 tables**" in result.greeting
    assert "**7 columns**" in result.greeting
    assert result.summary["total_foreign_keys"] == 1

    state = service.get_session_state(SHOP, "u1")
    assert state["messages"] == []
    session = service.store.get(SessionKey.for_sources(SHOP, "u1"))
    assert "### Table: main.orders" in session.schema_markdown


def test_initialize_twice_restores(service: ModelerService) -> None:
    async def scenario() -> tuple[str, str, bool]:
        first = await service.initialize_session(SHOP, "u1")
        await service.send_message(SHOP, "u1", "hello")
        second = await service.initialize_session(["shop", "shop"], "u1")
        return first.session_id, second.session_id, second.restored

    first_id, second_id, restored = asyncio.run(scenario())
    assert first_id == second_id
    assert restored is True
    assert len(service.get_session_state(SHOP, "u1")["messages"]) == 2


def test_cross_source_session_drops_unreachable_source(service: ModelerService) -> None:
    result = asyncio.run(service.initialize_session(["shop", "down", "crm"], "u1"))

    assert result.source_set_id == "crm+down+shop"
    assert result.cross_source is True
    assert "crm.main.accounts" in result.tables
    assert "shop.main.orders" in result.tables
    assert [(w.kind, w.source_id) for w in result.warnings] == [("SourceUnreachableError", "down")]
    assert "**2 data sources**" in result.greeting

    state = service.get_session_state(["crm", "down", "shop"], "u1")
    assert state["warnings"][0]["source_id"] == "down"


def test_single_unreachable_source_fails(service: ModelerService) -> None:
    with pytest.raises(SourceUnreachableError):
        asyncio.run(service.initialize_session(["down"], "u1"))
    with pytest.raises(NoActiveSessionError):
        service.get_session_state(["down"], "u1")


def test_inaccessible_source_is_unknown(service: ModelerService) -> None:
    with pytest.raises(UnknownSourceError):
        asyncio.run(service.initialize_session(["crm"], "u2"))


def test_update_draft_recomputes_sql_json(service: ModelerService) -> None:
    asyncio.run(service.initialize_session(SHOP, "u1"))
    sql = "SELECT o.id FROM main.orders AS o WHERE o.total > 10"

    ack = asyncio.run(service.update_draft(SHOP, "u1", ModelDraft(sql_text=sql)))

    assert ack.version == 1
    assert ack.sql_json_recomputed is True
    draft = service.get_session_state(SHOP, "u1")["model_draft"]
    assert draft["sql_text"] == sql
    assert draft["sql_json"]["filters"] == ["o.total > 10"]


def test_update_draft_prefers_sql_text_over_stale_json(service: ModelerService) -> None:
    asyncio.run(service.initialize_session(SHOP, "u1"))
    stale = parse_sql_json("SELECT c.name FROM main.customers AS c", "sqlite")
    draft = ModelDraft(sql_text="SELECT o.id FROM main.orders AS o", sql_json=stale)

    ack = asyncio.run(service.update_draft(SHOP, "u1", draft))

    assert any("rebuilt" in n for n in ack.notes)
    state = service.get_session_state(SHOP, "u1")["model_draft"]
    assert state["sql_json"]["tables"][0]["name"] == "orders"


def test_update_draft_renders_sql_from_json_only(service: ModelerService) -> None:
    asyncio.run(service.initialize_session(SHOP, "u1"))
    sj = parse_sql_json("SELECT c.name FROM main.customers AS c", "sqlite")

    ack = asyncio.run(service.update_draft(SHOP, "u1", ModelDraft(sql_json=sj)))

    assert ack.notes == ["sql_text rendered from sql_json"]
    sql_text = service.get_session_state(SHOP, "u1")["model_draft"]["sql_text"]
    assert "main.customers" in sql_text


def test_unrepresentable_sql_clears_sql_json() -> None:
    draft, recomputed, notes = align_draft(
        ModelDraft(sql_text="SELECT 1 AS a UNION SELECT 2 AS a"), "sqlite"
    )
    assert recomputed is True
    assert draft.sql_json is None
    assert draft.sql_text == "SELECT 1 AS a UNION SELECT 2 AS a"
    assert notes[0].startswith("sql_json cleared")


def test_update_draft_requires_session(service: ModelerService) -> None:
    with pytest.raises(NoActiveSessionError):
        asyncio.run(service.update_draft(SHOP, "u1", ModelDraft(sql_text="SELECT 1")))


def test_execute_query_single_source_without_session(service: ModelerService) -> None:
    result = asyncio.run(service.execute_query("SELECT COUNT(*) AS n FROM orders", SHOP))
    assert result.rows == [{"n": 3}]
    assert result.federated is False


def test_execute_query_across_sources_without_session(service: ModelerService) -> None:
    sql = (
        "SELECT a.segment FROM crm.main.accounts AS a "
        "JOIN shop.main.customers AS c ON a.customer_id = c.id WHERE c.name = 'Bob'"
    )
    result = asyncio.run(service.execute_query(sql, ["shop", "crm"], user_id="u1"))
    assert result.federated is True
    assert result.rows == [{"segment": "smb"}]


def test_execute_query_reuses_session_snapshot(service: ModelerService) -> None:
    asyncio.run(service.initialize_session(["shop", "crm"], "u1"))
    sql = (
        "SELECT c.name FROM shop.main.customers AS c "
        "JOIN crm.main.accounts AS a ON a.customer_id = c.id ORDER BY c.name"
    )
    result = asyncio.run(service.execute_query(sql, ["crm", "shop"], row_cap=1, user_id="u1"))
    assert result.rows == [{"name": "Alice"}]
    assert result.row_cap_applied is True


def test_execute_query_checks_source_access(service: ModelerService) -> None:
    with pytest.raises(UnknownSourceError):
        asyncio.run(service.execute_query("SELECT 1", ["crm"], user_id="u2"))
    with pytest.raises(UnknownSourceError):
        asyncio.run(service.execute_query("SELECT 1", ["nope"]))
    with pytest.raises(ValueError):
        asyncio.run(service.execute_query("SELECT 1", ["  "]))


def test_cancel_is_idempotent(service: ModelerService) -> None:
    asyncio.run(service.initialize_session(SHOP, "u1"))
    assert service.cancel_session(SHOP, "u1") is True
    assert service.cancel_session(SHOP, "u1") is False
    with pytest.raises(NoActiveSessionError):
        service.get_session_state(SHOP, "u1")
    restarted = asyncio.run(service.initialize_session(SHOP, "u1"))
    assert restarted.restored is False


def test_suggest_joins(service: ModelerService) -> None:
    shop = asyncio.run(service.suggest_joins("shop"))
    assert shop.candidates[0]["origin"] == "foreign_key"
    assert shop.candidates[0]["left_table"] == "main.orders"

    crm = asyncio.run(service.suggest_joins("crm", user_id="u1"))
    assert crm.candidates == []
    with pytest.raises(UnknownSourceError):
        asyncio.run(service.suggest_joins("crm", user_id="u2"))
