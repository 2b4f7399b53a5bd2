"""Conversation gateway between a session and the AI engine.

`send_message` records the user's turn, asks the AI engine for the next turn
with the complete history, validates the reply against the structured
envelope and records it. Calls for one session key are serialized, so the
history order always matches the order in which calls were accepted.

Failures are reported, never retried here: a transport failure or timeout is
`AIEngineUnavailableError`, and a reply outside the envelope is
`MalformedAIResponseError`. In both cases the user's turn stays in the
history and no AI turn is added, so the user can retry without retyping.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
import time

from fastmcp.utilities.logging import get_logger

from sqlmodeler_mcp.exceptions import (
    AIEngineTimeoutError,
    AIEngineUnavailableError,
    MalformedAIResponseError,
)
from sqlmodeler_mcp.session.models import Message, SessionKey
from sqlmodeler_mcp.session.store import SessionStore

from .engine import AIEngine
from .envelope import StructuredAIResponse, parse_envelope

_logger = get_logger(__name__)


class ConversationGateway:
    """Single-flight (per key) bridge from sessions to the AI engine."""

    def __init__(self, store: SessionStore, engine: AIEngine, *, timeout_sec: float = 60.0) -> None:
        self._store = store
        self._engine = engine
        self._timeout_sec = timeout_sec

    async def send_message(self, key: SessionKey, text: str) -> StructuredAIResponse:
        """Send one user message and return the validated AI reply.

        Raises:
            ValueError: If `text` is blank
            NoActiveSessionError: If the key has no ACTIVE session, or the
                session was cancelled or expired while the AI call was in flight
            AIEngineUnavailableError: On transport failure (AIEngineTimeoutError on timeout)
            MalformedAIResponseError: If the reply violates the envelope contract
        """
        user_text = text.strip()
        if not user_text:
            msg = "Message text must not be empty"
            raise ValueError(msg)

        async with self._store.key_lock(key):
            session = self._store.get(key)
            session_id = session.session_id
            history = list(session.messages)
            self._store.append_message(
                key,
                Message(role="user", text=user_text, timestamp=datetime.now(UTC)),
                session_id=session_id,
            )

            start = time.perf_counter()
            try:
                raw = await asyncio.wait_for(
                    self._engine.complete(
                        schema_markdown=session.schema_markdown,
                        history=history,
                        user_text=user_text,
                    ),
                    timeout=self._timeout_sec,
                )
            except TimeoutError as exc:
                _logger.warning("AI engine timed out after %.1fs for %s", self._timeout_sec, key)
                msg = f"AI engine did not respond within {self._timeout_sec:g}s"
                raise AIEngineTimeoutError(msg) from exc
            except Exception as exc:  # noqa: BLE001 - provider transports raise arbitrary errors
                _logger.warning("AI engine call failed for %s: %s", key, exc)
                msg = f"AI engine call failed: {exc}"
                raise AIEngineUnavailableError(msg) from exc

            _logger.info(
                "AI reply for %s in %.1f ms (%d chars)",
                key,
                (time.perf_counter() - start) * 1000.0,
                len(raw),
            )
            try:
                response = parse_envelope(raw)
            except MalformedAIResponseError as exc:
                _logger.warning("Malformed AI reply for %s: %s", key, exc)
                raise

            # Fails with NoActiveSessionError if the session was cancelled meanwhile.
            self._store.append_message(
                key,
                Message(
                    role="ai",
                    text=response.analysis,
                    timestamp=datetime.now(UTC),
                    structured_payload=response.payload(),
                ),
                session_id=session_id,
            )
            return response
