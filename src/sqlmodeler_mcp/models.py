"""Pydantic models for MCP tool responses.

Results of the session operations that have no natural model elsewhere:
query results (`QueryResult`), AI replies (`StructuredAIResponse`) and saved
records (`DataModel`, `SavedConversation`) live beside the code producing them.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class SourceWarning(BaseModel):
    """A data source problem that did not stop the operation."""

    kind: str = Field(description="Error kind, e.g. SourceUnreachableError or EmptySchemaWarning")
    source_id: str = Field(description="Affected data source")
    message: str = Field(description="Human-readable explanation")


class InitializeSessionResult(BaseModel):
    """Result of starting (or restoring) a modeling session."""

    session_id: str = Field(description="Identifier of the ACTIVE session")
    source_set_id: str = Field(description="Canonical id of the session's source set")
    greeting: str = Field(description="Welcome message summarizing the collected schema")
    tables: list[str] = Field(
        description="Table references; label.schema.table for cross-source sessions"
    )
    cross_source: bool = Field(description="True when the session spans several sources")
    restored: bool = Field(description="True when an existing session was returned")
    warnings: list[SourceWarning] = Field(
        default_factory=list, description="Sources dropped or found empty during collection"
    )
    summary: dict[str, int | float] = Field(
        default_factory=dict, description="Table, column and relationship counts"
    )


class UpdateDraftResult(BaseModel):
    """Acknowledgement of a draft replacement."""

    version: int = Field(description="Draft version after the update")
    last_modified: str = Field(description="UTC ISO8601 time of the update")
    sql_json_recomputed: bool = Field(
        description="True when sql_json was rebuilt from sql_text (or sql_text from sql_json)"
    )
    notes: list[str] = Field(default_factory=list, description="Notes about the update")


class CancelSessionResult(BaseModel):
    cancelled: bool = Field(description="True when an ACTIVE session was discarded")


class SuggestJoinsResult(BaseModel):
    """Ranked join candidates for one data source."""

    source_id: str = Field(description="Data source the candidates belong to")
    candidates: list[dict[str, Any]] = Field(
        description="Candidates ordered by confidence, foreign keys first on ties"
    )
