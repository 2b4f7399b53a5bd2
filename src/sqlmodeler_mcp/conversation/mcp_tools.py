"""MCP tool registration for the modeling conversation (send_message)."""

from __future__ import annotations

from typing import Annotated

from fastmcp import Context, FastMCP
from fastmcp.utilities.logging import get_logger
from pydantic import Field

from sqlmodeler_mcp.exceptions import ModelerError
from sqlmodeler_mcp.services.service_manager import ModelerServiceManager
from sqlmodeler_mcp.session.mcp_tools import SourceIds, UserId
from sqlmodeler_mcp.tool_errors import preview, raise_tool_error

from .envelope import StructuredAIResponse

_logger = get_logger(__name__)


def register_conversation_tools(mcp: FastMCP, manager: ModelerServiceManager | None = None) -> None:
    """Register the send_message tool."""

    mgr = manager or ModelerServiceManager.get_instance()

    @mcp.tool
    async def send_message(  # pyright: ignore[reportUnusedFunction]
        ctx: Context,
        source_ids: SourceIds,
        user_id: UserId,
        text: Annotated[str, Field(min_length=1, description="The user's message")],
    ) -> StructuredAIResponse:
        """Send a message to the data-modeling assistant of an ACTIVE session.

        Returns the reply as three sections: analysis, candidate models and one SQL query
        per model. On AIEngineUnavailableError or MalformedAIResponseError the message is
        kept in the history and can simply be sent again.
        """
        _logger.info("send_message for %s: %s", sorted(source_ids), preview(text))
        try:
            return await mgr.get_service().send_message(source_ids, user_id, text)
        except (ModelerError, ValueError) as exc:
            await raise_tool_error(ctx, exc)

    _ = send_message
