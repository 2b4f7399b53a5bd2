"""FastMCP server implementation for sqlmodeler-mcp."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import dotenv
from fastmcp import FastMCP
from fastmcp.utilities.logging import get_logger
from starlette.requests import Request
from starlette.responses import JSONResponse

from sqlmodeler_mcp.conversation.mcp_tools import register_conversation_tools
from sqlmodeler_mcp.execute.mcp_tools import register_execute_query_tool
from sqlmodeler_mcp.schema.mcp_tools import register_schema_tools
from sqlmodeler_mcp.services.service_manager import ModelerServiceManager
from sqlmodeler_mcp.session.mcp_tools import register_session_tools

# Load environment variables
dotenv.load_dotenv()

# Configure a module-level logger for local server logs.
_logger = get_logger(__name__)


# -- Lifespan: session sweeper and engine cleanup ---------------------------
@asynccontextmanager
async def lifespan(_mcp_instance: FastMCP) -> AsyncGenerator[None]:
    """Start the expired-session sweeper; release engines on shutdown."""
    manager = ModelerServiceManager.get_instance()
    try:
        _logger.info("Starting session sweeper during lifespan startup")
        manager.start_sweeper()
        yield
    finally:
        _logger.info("Shutting down ModelerService during lifespan shutdown")
        await manager.shutdown()


# Create the main MCP server instance with lifespan
mcp = FastMCP(
    instructions=(
        "This provides an AI-assisted data modeling Model Context Protocol server. "
        "Start with initialize_session for one or more data sources, discuss the "
        "analysis with send_message, refine the draft with update_draft and "
        "execute_query, then persist it with save_session."
    ),
    lifespan=lifespan,
)

# -- Tool Registration -------------------------------------------------------
register_session_tools(mcp)
register_conversation_tools(mcp)
register_execute_query_tool(mcp)
register_schema_tools(mcp)


# -- Health Check ----------------------------------------------------------
SERVICE_NAME = "sqlmodeler-mcp"


@mcp.custom_route("/health", methods=["GET"])
async def health_check(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "healthy", "service": SERVICE_NAME})
