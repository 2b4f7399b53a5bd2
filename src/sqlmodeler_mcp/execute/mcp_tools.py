"""MCP tool registration for query execution (execute_query).

Provides `execute_query(sql, source_ids, row_cap)`, which executes SELECT-only
queries against one data source, or joins across several sources with the
bounded in-process federation, and returns capped, JSON-safe rows.
"""

from __future__ import annotations

from typing import Annotated

from fastmcp import Context, FastMCP
from fastmcp.utilities.logging import get_logger
from pydantic import Field

from sqlmodeler_mcp.exceptions import ModelerError
from sqlmodeler_mcp.services.service_manager import ModelerServiceManager
from sqlmodeler_mcp.session.mcp_tools import SourceIds
from sqlmodeler_mcp.tool_errors import preview, raise_tool_error

from .models import QueryResult

_logger = get_logger(__name__)


def register_execute_query_tool(mcp: FastMCP, manager: ModelerServiceManager | None = None) -> None:
    """Register a safe SQL execution tool."""

    mgr = manager or ModelerServiceManager.get_instance()

    @mcp.tool
    async def execute_query(  # pyright: ignore[reportUnusedFunction]
        ctx: Context,
        sql: Annotated[
            str,
            Field(
                description=(
                    "SELECT-only SQL to execute. Across several sources, reference tables as "
                    "source_label.schema.table and connect tables of different sources with joins."
                )
            ),
        ],
        source_ids: SourceIds,
        row_cap: Annotated[
            int | None,
            Field(ge=1, description="Maximum rows to return; the server default when omitted"),
        ] = None,
        user_id: Annotated[
            str | None,
            Field(description="User id; reuses the schema of that user's ACTIVE session"),
        ] = None,
    ) -> QueryResult:
        """Execute SELECT-only SQL with a row cap and a mandatory timeout.

        row_cap_applied is true when the query produced more rows than returned. Database
        errors are reported verbatim with assist notes for fixing the query.
        """
        _logger.info("execute_query: %s", preview(sql))
        try:
            return await mgr.get_service().execute_query(
                sql, source_ids, row_cap=row_cap, user_id=user_id
            )
        except (ModelerError, ValueError) as exc:
            await raise_tool_error(ctx, exc)

    _ = execute_query
