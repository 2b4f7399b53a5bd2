"""SQLGlot-backed helpers for validation, read-only checks and error assistance.

Implementation is pure and dependency-injected for easy testing.
"""

from __future__ import annotations

from .models import (
    Dialect,
    SqlErrorAssistRequest,
    SqlErrorAssistResult,
    SqlValidationRequest,
    SqlValidationResult,
)
from .service import SqlglotService, map_sqlalchemy_to_sqlglot, sqlglot_read_dialect

__all__ = [
    "Dialect",
    "SqlErrorAssistRequest",
    "SqlErrorAssistResult",
    "SqlValidationRequest",
    "SqlValidationResult",
    "SqlglotService",
    "map_sqlalchemy_to_sqlglot",
    "sqlglot_read_dialect",
]
