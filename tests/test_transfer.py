from __future__ import annotations

import asyncio

import pytest
import sqlalchemy as sa

from sqlmodeler_mcp.exceptions import (
    DataModelNotFoundError,
    MissingDraftError,
    MissingTitleError,
    NoActiveSessionError,
    PersistenceError,
    QueryExecutionError,
)
from sqlmodeler_mcp.federation.sql_json import SqlJson, equivalent
from sqlmodeler_mcp.persistence.models import Base
from sqlmodeler_mcp.services.modeler_service import ModelerService
from sqlmodeler_mcp.session.models import ModelDraft

SHOP = ["shop"]
DRAFT_SQL = "SELECT c.name FROM main.customers AS c ORDER BY c.name"


def _start(service: ModelerService, ids: list[str] = SHOP, sql: str | None = DRAFT_SQL) -> None:
    async def scenario() -> None:
        await service.initialize_session(ids, "u1")
        await service.send_message(ids, "u1", "list customers")
        if sql is not None:
            await service.update_draft(ids, "u1", ModelDraft(sql_text=sql))

    asyncio.run(scenario())


def _count(service: ModelerService, table: str) -> int:
    with service.durable.engine.connect() as conn:
        return conn.execute(sa.text(f"SELECT COUNT(*) FROM {table}")).scalar_one()  # noqa: S608


def test_save_persists_and_clears_session(service: ModelerService) -> None:
    _start(service)

    model = asyncio.run(service.save_session(SHOP, "u1", "  Customer list  "))

    assert model.title == "Customer list"
    assert model.sql_text == DRAFT_SQL
    assert model.source_ids == ["shop"]
    assert model.sql_json is not None
    assert model.sql_json["tables"][0]["name"] == "customers"
    assert equivalent(model.sql_text, SqlJson.model_validate(model.sql_json), "sqlite")
    with pytest.raises(NoActiveSessionError):
        service.get_session_state(SHOP, "u1")

    saved = asyncio.run(service.get_saved_conversation(model.id, "u1"))
    assert saved.id == model.created_from_conversation_id
    assert saved.title == "Customer list"
    assert saved.source_set_id == "shop"
    assert saved.status == "saved"
    assert [(m.role, m.text) for m in saved.messages][0] == ("user", "list customers")
    assert [m.role for m in saved.messages] == ["user", "ai"]
    assert saved.messages[1].structured_payload is not None
    assert saved.data_model == model


def test_saved_model_is_private_to_its_user(service: ModelerService) -> None:
    _start(service)
    model = asyncio.run(service.save_session(SHOP, "u1", "Mine"))

    with pytest.raises(DataModelNotFoundError):
        asyncio.run(service.get_saved_conversation(model.id, "u2"))
    with pytest.raises(DataModelNotFoundError):
        asyncio.run(service.get_saved_conversation("does-not-exist", "u1"))


def test_failing_query_blocks_save(service: ModelerService) -> None:
    _start(service, sql="SELECT nope FROM main.customers")

    with pytest.raises(QueryExecutionError, match="no such column"):
        asyncio.run(service.save_session(SHOP, "u1", "Broken"))

    assert service.get_session_state(SHOP, "u1")["phase"] == "ACTIVE"
    assert _count(service, "data_models") == 0
    assert _count(service, "conversations") == 0


def test_title_is_required(service: ModelerService) -> None:
    _start(service)
    for title in (None, "", "   "):
        with pytest.raises(MissingTitleError):
            asyncio.run(service.save_session(SHOP, "u1", title))
    assert service.get_session_state(SHOP, "u1")["phase"] == "ACTIVE"


def test_draft_sql_is_required(service: ModelerService) -> None:
    _start(service, sql=None)
    with pytest.raises(MissingDraftError):
        asyncio.run(service.save_session(SHOP, "u1", "Nothing yet"))

    asyncio.run(service.update_draft(SHOP, "u1", ModelDraft(filters=["c.id > 1"])))
    with pytest.raises(MissingDraftError):
        asyncio.run(service.save_session(SHOP, "u1", "Still nothing"))


def test_save_without_session(service: ModelerService) -> None:
    with pytest.raises(NoActiveSessionError):
        asyncio.run(service.save_session(SHOP, "u1", "Ghost"))


def test_durable_failure_keeps_session_for_retry(service: ModelerService) -> None:
    _start(service)
    Base.metadata.drop_all(service.durable.engine)

    with pytest.raises(PersistenceError):
        asyncio.run(service.save_session(SHOP, "u1", "First try"))
    state = service.get_session_state(SHOP, "u1")
    assert state["phase"] == "ACTIVE"
    assert len(state["messages"]) == 2

    service.durable.create_schema()
    model = asyncio.run(service.save_session(SHOP, "u1", "Second try"))
    assert model.title == "Second try"
    assert _count(service, "conversation_messages") == 2


def test_cancel_during_durable_write_still_returns_model(
    service: ModelerService, monkeypatch: pytest.MonkeyPatch
) -> None:
    _start(service)
    real_save = service.durable.save_conversation

    def save_then_cancel(session, *, title):  # noqa: ANN001, ANN202
        model = real_save(session, title=title)
        service.cancel_session(SHOP, "u1")
        return model

    monkeypatch.setattr(service.durable, "save_conversation", save_then_cancel)
    model = asyncio.run(service.save_session(SHOP, "u1", "Raced"))

    assert model.title == "Raced"
    assert _count(service, "data_models") == 1


def test_cancel_during_validation_discards_the_save(
    service: ModelerService, monkeypatch: pytest.MonkeyPatch
) -> None:
    _start(service)
    real_execute = service.executor.execute

    async def slow_execute(*args, **kwargs):  # noqa: ANN002, ANN003, ANN202
        await asyncio.sleep(0.2)
        return await real_execute(*args, **kwargs)

    monkeypatch.setattr(service.executor, "execute", slow_execute)

    async def scenario() -> bool:
        save = asyncio.create_task(service.save_session(SHOP, "u1", "Too late"))
        await asyncio.sleep(0.05)
        cancelled = service.cancel_session(SHOP, "u1")
        with pytest.raises(NoActiveSessionError):
            await save
        return cancelled

    assert asyncio.run(scenario()) is True
    assert _count(service, "data_models") == 0
    assert _count(service, "conversations") == 0


def test_cross_source_save_validates_by_federation(service: ModelerService) -> None:
    ids = ["shop", "crm"]
    sql = (
        "SELECT c.name, a.segment FROM shop.main.customers AS c "
        "JOIN crm.main.accounts AS a ON a.customer_id = c.id"
    )
    _start(service, ids, sql)

    model = asyncio.run(service.save_session(ids, "u1", "Segments"))

    assert model.source_ids == ["crm", "shop"]
    assert model.sql_json is not None
    assert {t["catalog"] for t in model.sql_json["tables"]} == {"shop", "crm"}
    assert equivalent(model.sql_text, SqlJson.model_validate(model.sql_json))
