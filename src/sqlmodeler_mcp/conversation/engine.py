"""AI engine adapter.

The gateway talks to the AI engine through the small `AIEngine` protocol so
tests can substitute a scripted engine. `PydanticAIEngine` is the production
implementation: a pydantic-ai `Agent` with plain text output, fed the full
conversation as explicit message history. The history always starts with
the system prompt and the session's schema markdown, followed by the model's
acknowledgement, so every call carries the schema the session started with.
"""

from __future__ import annotations

from collections.abc import Sequence
import json
from typing import Protocol

from pydantic_ai import Agent
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model

from sqlmodeler_mcp.session.models import Message

from .prompts import SCHEMA_ACKNOWLEDGEMENT, SYSTEM_PROMPT, schema_context_message


class AIEngine(Protocol):
    """Anything that can answer the next turn of a modeling conversation."""

    async def complete(
        self, *, schema_markdown: str, history: Sequence[Message], user_text: str
    ) -> str:
        """Return the raw reply text for `user_text` given the prior `history`."""
        ...


def build_message_history(
    schema_markdown: str, history: Sequence[Message], system_prompt: str = SYSTEM_PROMPT
) -> list[ModelMessage]:
    """Translate session messages into pydantic-ai message history."""
    messages: list[ModelMessage] = [
        ModelRequest(
            parts=[
                SystemPromptPart(content=system_prompt),
                UserPromptPart(content=schema_context_message(schema_markdown)),
            ]
        ),
        ModelResponse(parts=[TextPart(content=SCHEMA_ACKNOWLEDGEMENT)]),
    ]
    for msg in history:
        if msg.role == "user":
            messages.append(ModelRequest(parts=[UserPromptPart(content=msg.text)]))
        else:
            # Replay the envelope so the model keeps seeing its own answer format.
            content = (
                json.dumps(msg.structured_payload)
                if msg.structured_payload is not None
                else msg.text
            )
            messages.append(ModelResponse(parts=[TextPart(content=content)]))
    return messages


class PydanticAIEngine:
    """AI engine backed by a pydantic-ai agent."""

    def __init__(self, model: str | Model, *, system_prompt: str = SYSTEM_PROMPT) -> None:
        self._system_prompt = system_prompt
        self._agent: Agent[None, str] = Agent(
            model=model, output_type=str, defer_model_check=True
        )

    async def complete(
        self, *, schema_markdown: str, history: Sequence[Message], user_text: str
    ) -> str:
        message_history = build_message_history(schema_markdown, history, self._system_prompt)
        result = await self._agent.run(user_text, message_history=message_history)
        return result.output
