from __future__ import annotations

import asyncio
from typing import Any

from fastmcp import Client, FastMCP
from fastmcp.exceptions import ToolError
import pytest

from sqlmodeler_mcp.conversation.mcp_tools import register_conversation_tools
from sqlmodeler_mcp.execute.mcp_tools import register_execute_query_tool
from sqlmodeler_mcp.schema.mcp_tools import register_schema_tools
from sqlmodeler_mcp.services.modeler_service import ModelerService
from sqlmodeler_mcp.services.service_manager import ModelerServiceManager
from sqlmodeler_mcp.session.mcp_tools import register_session_tools

SESSION = {"source_ids": ["shop"], "user_id": "u1"}


def _server(service: ModelerService) -> FastMCP:
    manager = ModelerServiceManager()
    manager.set_service(service)
    mcp = FastMCP("sqlmodeler-test")
    register_session_tools(mcp, manager)
    register_conversation_tools(mcp, manager)
    register_execute_query_tool(mcp, manager)
    register_schema_tools(mcp, manager)
    return mcp


async def _call(client: Client, name: str, args: dict[str, Any]) -> dict[str, Any]:
    result = await client.call_tool(name, args)
    assert result.structured_content is not None
    return result.structured_content


def test_tools_are_registered(service: ModelerService) -> None:
    async def scenario() -> set[str]:
        async with Client(_server(service)) as client:
            return {t.name for t in await client.list_tools()}

    assert asyncio.run(scenario()) == {
        "initialize_session",
        "send_message",
        "update_draft",
        "get_session_state",
        "execute_query",
        "save_session",
        "cancel_session",
        "suggest_joins",
        "get_saved_conversation",
    }


def test_full_session_over_mcp(service: ModelerService) -> None:
    sql = "SELECT c.name FROM main.customers AS c"

    async def scenario() -> dict[str, Any]:
        async with Client(_server(service)) as client:
            init = await _call(client, "initialize_session", SESSION)
            assert init["restored"] is False
            reply = await _call(client, "send_message", {**SESSION, "text": "customers"})
            assert reply["models"][0]["id"] == "m1"
            await _call(client, "update_draft", {**SESSION, "draft": {"sql_text": sql}})
            result = await _call(client, "execute_query", {"sql": sql, "source_ids": ["shop"]})
            assert len(result["rows"]) == 3
            saved = await _call(client, "save_session", {**SESSION, "title": "Customers"})
            return await _call(
                client,
                "get_saved_conversation",
                {"data_model_id": saved["id"], "user_id": "u1"},
            )

    conversation = asyncio.run(scenario())
    assert conversation["title"] == "Customers"
    assert [m["role"] for m in conversation["messages"]] == ["user", "ai"]


def test_errors_carry_their_kind(service: ModelerService) -> None:
    async def scenario() -> None:
        async with Client(_server(service)) as client:
            with pytest.raises(ToolError, match="NoActiveSessionError"):
                await client.call_tool("get_session_state", SESSION)
            with pytest.raises(ToolError, match="QueryExecutionError: no such table"):
                await client.call_tool(
                    "execute_query", {"sql": "SELECT * FROM nope", "source_ids": ["shop"]}
                )
            cancelled = await _call(client, "cancel_session", SESSION)
            assert cancelled == {"cancelled": False}

    asyncio.run(scenario())
