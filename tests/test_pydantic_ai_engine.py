from __future__ import annotations

import asyncio
from datetime import UTC, datetime

from conftest import envelope
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models.function import AgentInfo, FunctionModel

from sqlmodeler_mcp.conversation.engine import PydanticAIEngine, build_message_history
from sqlmodeler_mcp.conversation.envelope import parse_envelope
from sqlmodeler_mcp.conversation.prompts import SCHEMA_ACKNOWLEDGEMENT, SYSTEM_PROMPT
from sqlmodeler_mcp.session.models import Message


def _history() -> list[Message]:
    now = datetime.now(UTC)
    reply = parse_envelope(envelope())
    return [
        Message(role="user", text="orders per customer", timestamp=now),
        Message(role="ai", text=reply.analysis, timestamp=now, structured_payload=reply.payload()),
    ]


def test_message_history_starts_with_system_prompt_and_schema() -> None:
    messages = build_message_history("# Schema", _history())

    first = messages[0]
    assert isinstance(first, ModelRequest)
    assert isinstance(first.parts[0], SystemPromptPart)
    assert first.parts[0].content == SYSTEM_PROMPT
    assert isinstance(first.parts[1], UserPromptPart)
    assert "# Schema" in str(first.parts[1].content)
    assert isinstance(messages[1], ModelResponse)
    assert messages[1].parts[0].content == SCHEMA_ACKNOWLEDGEMENT

    assert isinstance(messages[2], ModelRequest)
    assert isinstance(messages[3], ModelResponse)
    replayed = messages[3].parts[0]
    assert isinstance(replayed, TextPart)
    assert '"model_id": "m1"' in replayed.content


def test_engine_returns_model_text_and_sends_full_history() -> None:
    seen: list[list[ModelMessage]] = []

    def reply(messages: list[ModelMessage], _info: AgentInfo) -> ModelResponse:
        seen.append(messages)
        return ModelResponse(parts=[TextPart(content=envelope(analysis="from model"))])

    engine = PydanticAIEngine(FunctionModel(reply))
    raw = asyncio.run(
        engine.complete(schema_markdown="# Schema", history=_history(), user_text="add totals")
    )

    assert parse_envelope(raw).analysis == "from model"
    sent = seen[0]
    assert len(sent) == 5
    last = sent[-1]
    assert isinstance(last, ModelRequest)
    assert any(
        isinstance(p, UserPromptPart) and p.content == "add totals" for p in last.parts
    )
