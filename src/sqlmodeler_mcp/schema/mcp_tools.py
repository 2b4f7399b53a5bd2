"""MCP tool registration for schema features (suggest_joins)."""

from __future__ import annotations

from typing import Annotated

from fastmcp import Context, FastMCP
from fastmcp.utilities.logging import get_logger
from pydantic import Field

from sqlmodeler_mcp.exceptions import ModelerError
from sqlmodeler_mcp.models import SuggestJoinsResult
from sqlmodeler_mcp.services.service_manager import ModelerServiceManager
from sqlmodeler_mcp.tool_errors import raise_tool_error

_logger = get_logger(__name__)


def register_schema_tools(mcp: FastMCP, manager: ModelerServiceManager | None = None) -> None:
    """Register join suggestion tools."""

    mgr = manager or ModelerServiceManager.get_instance()

    @mcp.tool
    async def suggest_joins(  # pyright: ignore[reportUnusedFunction]
        ctx: Context,
        source_id: Annotated[str, Field(description="Data source to analyze")],
        *,
        user_id: Annotated[
            str | None, Field(description="User id used for the access check")
        ] = None,
        limit: Annotated[
            int | None, Field(ge=1, description="Maximum number of candidates to return")
        ] = None,
    ) -> SuggestJoinsResult:
        """Suggest joins for a data source, ranked by confidence.

        Declared foreign keys come first; tables without constraints get suggestions
        inferred from column names. An empty list means no join was found.
        """
        _logger.info("suggest_joins: %s", source_id)
        try:
            return await mgr.get_service().suggest_joins(source_id, user_id=user_id, limit=limit)
        except (ModelerError, ValueError) as exc:
            await raise_tool_error(ctx, exc)

    _ = suggest_joins
