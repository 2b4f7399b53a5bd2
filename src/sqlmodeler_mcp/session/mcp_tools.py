"""MCP tool registration for the session lifecycle.

Exposes initialize_session, update_draft, get_session_state, save_session,
cancel_session and get_saved_conversation. Every session is identified by
the set of data source ids plus the user id; the order of the source ids
does not matter.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastmcp import Context, FastMCP
from fastmcp.utilities.logging import get_logger
from pydantic import Field

from sqlmodeler_mcp.exceptions import ModelerError
from sqlmodeler_mcp.models import CancelSessionResult, InitializeSessionResult, UpdateDraftResult
from sqlmodeler_mcp.persistence.transfer import DataModel, SavedConversation
from sqlmodeler_mcp.services.service_manager import ModelerServiceManager
from sqlmodeler_mcp.session.models import ModelDraft
from sqlmodeler_mcp.tool_errors import raise_tool_error

_logger = get_logger(__name__)

SourceIds = Annotated[
    list[str],
    Field(
        min_length=1,
        description=(
            "Data source ids of the session. One id for a single-source session, several "
            "for a cross-source session; order and duplicates are ignored."
        ),
    ),
]
UserId = Annotated[str, Field(min_length=1, description="Id of the user owning the session")]


def register_session_tools(mcp: FastMCP, manager: ModelerServiceManager | None = None) -> None:
    """Register the session lifecycle tools."""

    mgr = manager or ModelerServiceManager.get_instance()

    @mcp.tool
    async def initialize_session(  # pyright: ignore[reportUnusedFunction]
        ctx: Context, source_ids: SourceIds, user_id: UserId
    ) -> InitializeSessionResult:
        """Start a data-modeling session over the given data sources.

        Collects and formats the schema once, then returns a greeting with the table list.
        Calling it again for the same sources and user restores the ACTIVE session
        (restored=true) without collecting again. In cross-source sessions unreachable
        sources are dropped and listed in warnings.
        """
        _logger.info("initialize_session: %s for user %s", sorted(source_ids), user_id)
        try:
            return await mgr.get_service().initialize_session(source_ids, user_id)
        except (ModelerError, ValueError) as exc:
            await raise_tool_error(ctx, exc)

    @mcp.tool
    async def update_draft(  # pyright: ignore[reportUnusedFunction]
        ctx: Context,
        source_ids: SourceIds,
        user_id: UserId,
        draft: Annotated[
            ModelDraft,
            Field(
                description=(
                    "Complete replacement for the model draft. sql_text is the ground truth; "
                    "sql_json is recomputed from it when both are given."
                )
            ),
        ],
    ) -> UpdateDraftResult:
        """Replace the session's model draft (last write wins) and return its new version."""
        try:
            return await mgr.get_service().update_draft(source_ids, user_id, draft)
        except (ModelerError, ValueError) as exc:
            await raise_tool_error(ctx, exc)

    @mcp.tool
    async def get_session_state(  # pyright: ignore[reportUnusedFunction]
        ctx: Context, source_ids: SourceIds, user_id: UserId
    ) -> dict[str, Any]:
        """Return the full ACTIVE session: messages, draft, schema snapshot and warnings."""
        try:
            return mgr.get_service().get_session_state(source_ids, user_id)
        except (ModelerError, ValueError) as exc:
            await raise_tool_error(ctx, exc)

    @mcp.tool
    async def save_session(  # pyright: ignore[reportUnusedFunction]
        ctx: Context,
        source_ids: SourceIds,
        user_id: UserId,
        title: Annotated[str, Field(description="Title of the saved data model")],
    ) -> DataModel:
        """Save the session as a data model.

        The draft SQL is executed first; a query that fails blocks the save. On success the
        conversation and data model are stored durably and the session is cleared.
        """
        try:
            return await mgr.get_service().save_session(source_ids, user_id, title)
        except (ModelerError, ValueError) as exc:
            await raise_tool_error(ctx, exc)

    @mcp.tool
    async def cancel_session(  # pyright: ignore[reportUnusedFunction]
        ctx: Context, source_ids: SourceIds, user_id: UserId
    ) -> CancelSessionResult:
        """Discard the session. Safe to call when no session exists."""
        try:
            cancelled = mgr.get_service().cancel_session(source_ids, user_id)
        except (ModelerError, ValueError) as exc:
            await raise_tool_error(ctx, exc)
        return CancelSessionResult(cancelled=cancelled)

    @mcp.tool
    async def get_saved_conversation(  # pyright: ignore[reportUnusedFunction]
        ctx: Context,
        data_model_id: Annotated[str, Field(description="Id returned by save_session")],
        user_id: UserId,
    ) -> SavedConversation:
        """Read a saved conversation and its data model back from durable storage."""
        try:
            return await mgr.get_service().get_saved_conversation(data_model_id, user_id)
        except (ModelerError, ValueError) as exc:
            await raise_tool_error(ctx, exc)

    _ = (
        initialize_session,
        update_draft,
        get_session_state,
        save_session,
        cancel_session,
        get_saved_conversation,
    )
