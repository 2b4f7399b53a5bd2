"""sqlmodeler-mcp package for AI-assisted data modeling across data sources.

Provides Model Context Protocol (FastMCP) server capabilities for collecting
source schemas, discussing candidate data models with an AI engine, validating
their SQL by execution and saving the result durably.
"""

from sqlmodeler_mcp.exceptions import ModelerError
from sqlmodeler_mcp.models import (
    CancelSessionResult,
    InitializeSessionResult,
    SourceWarning,
    SuggestJoinsResult,
    UpdateDraftResult,
)
from sqlmodeler_mcp.services import ConfigService
from sqlmodeler_mcp.services.modeler_service import ModelerService

__all__ = [  # noqa: RUF022
    # Core models
    "CancelSessionResult",
    "InitializeSessionResult",
    "SourceWarning",
    "SuggestJoinsResult",
    "UpdateDraftResult",
    # Errors
    "ModelerError",
    # Services
    "ConfigService",
    "ModelerService",
]
