"""Query execution package.

Exports typed models; the executor lives in `execute.runner` and the MCP
registration helper in `execute.mcp_tools`.
"""

from __future__ import annotations

from .models import ExecutionLimits, QueryResult, SourceBinding

__all__ = [
    "ExecutionLimits",
    "QueryResult",
    "SourceBinding",
]
