"""Conversion of engine failures into MCP tool errors."""

from __future__ import annotations

from typing import NoReturn

from fastmcp import Context
from fastmcp.exceptions import ToolError

from sqlmodeler_mcp.exceptions import ModelerError, QueryExecutionError

MAX_QUERY_DISPLAY = 100


def preview(text: str) -> str:
    return text[:MAX_QUERY_DISPLAY] + ("..." if len(text) > MAX_QUERY_DISPLAY else "")


def error_text(exc: Exception) -> str:
    """Render `exc` as '<Kind>: <message>' with assist notes for query errors."""
    kind = exc.kind if isinstance(exc, ModelerError) else type(exc).__name__
    text = f"{kind}: {exc}"
    if isinstance(exc, QueryExecutionError) and exc.assist_notes:
        text += "\n" + "\n".join(exc.assist_notes)
    return text


async def raise_tool_error(ctx: Context, exc: ModelerError | ValueError) -> NoReturn:
    """Report `exc` through the client log and raise it as a ToolError."""
    text = error_text(exc)
    await ctx.error(text)
    raise ToolError(text) from exc
