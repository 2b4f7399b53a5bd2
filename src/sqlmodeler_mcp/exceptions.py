"""Exception hierarchy for the data-modeling session engine.

Every failure the engine reports to a caller is one of the named conditions
below. The hierarchy mirrors the four failure categories the engine deals
with, so callers can handle a whole category at once or a single kind.

Exception Categories:
- Source errors: a data source could not be reached or produced no schema
- Session errors: the session lifecycle does not allow the operation
- AI protocol errors: the AI engine failed or answered outside the contract
- Query semantic errors: a candidate query cannot be executed safely
- Persistence errors: the durable store rejected or lacks a record
"""

from __future__ import annotations

from typing import ClassVar


class ModelerError(Exception):
    """Base exception for all session engine failures.

    The `kind` attribute is a stable, transport-friendly name of the failure
    (the class name by default) that the MCP layer reports to clients.
    """

    kind: ClassVar[str] = "ModelerError"

    def __init_subclass__(cls, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        cls.kind = cls.__name__


# ---- source reachability --------------------------------------------------


class SourceError(ModelerError):
    """Base class for data source reachability failures."""


class SourceUnreachableError(SourceError):
    """Raised when a data source cannot be connected to or reflected in time.

    Attributes:
        source_id: Identifier of the source that failed
    """

    def __init__(self, source_id: str, reason: str) -> None:
        self.source_id = source_id
        self.reason = reason
        super().__init__(f"Data source '{source_id}' is unreachable: {reason}")


class UnknownSourceError(SourceError):
    """Raised when a source id is not configured or the user may not access it."""

    def __init__(self, source_id: str) -> None:
        self.source_id = source_id
        super().__init__(f"Data source '{source_id}' not found or access denied")


class NoSchemaAvailableError(SourceError):
    """Raised when none of the requested sources could be collected."""


# ---- session lifecycle ----------------------------------------------------


class SessionError(ModelerError):
    """Base class for session lifecycle failures."""


class NoActiveSessionError(SessionError):
    """Raised when a key has no ACTIVE session (absent, expired or terminated)."""


class MissingTitleError(SessionError):
    """Raised when a session is saved without a usable title."""


class MissingDraftError(SessionError):
    """Raised when a session is saved before any SQL draft exists."""


# ---- AI protocol ----------------------------------------------------------


class AIProtocolError(ModelerError):
    """Base class for AI engine failures. Never retried inside the engine."""


class AIEngineUnavailableError(AIProtocolError):
    """Raised when the AI engine call fails at the transport level."""


class AIEngineTimeoutError(AIEngineUnavailableError):
    """Raised when the AI engine does not answer within the configured timeout."""


class MalformedAIResponseError(AIProtocolError):
    """Raised when an AI reply does not satisfy the structured envelope.

    This covers replies with no parseable envelope, replies whose models and
    SQL sections are not both present or both absent, and SQL entries that
    reference a model id the reply never defined.
    """


# ---- query semantics ------------------------------------------------------


class QuerySemanticError(ModelerError):
    """Base class for failures that always block persistence of a query."""


class QueryExecutionError(QuerySemanticError):
    """Raised when the database rejects a query; carries the engine message verbatim.

    Attributes:
        database_message: Error text as reported by the database driver
        assist_notes: Heuristic hints for fixing the query
    """

    def __init__(
        self,
        database_message: str,
        *,
        sql: str | None = None,
        assist_notes: list[str] | None = None,
    ) -> None:
        self.database_message = database_message
        self.sql = sql
        self.assist_notes = assist_notes or []
        super().__init__(database_message)


class QueryTimeoutError(QuerySemanticError):
    """Raised when a query exceeds its execution deadline."""

    def __init__(self, timeout_sec: float) -> None:
        self.timeout_sec = timeout_sec
        super().__init__(
            f"Query exceeded the {timeout_sec:g}s execution timeout; "
            "retry with a narrower scope (filters, fewer tables, aggregation)"
        )


class UnsupportedFederationError(QuerySemanticError):
    """Raised when a cross-source query cannot be executed with a bounded local join."""


class CircularJoinError(QuerySemanticError):
    """Raised when the join list of a federated query contains a cycle.

    Attributes:
        cycle: Table names forming the cycle, first table repeated at the end
    """

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__("Circular join detected: " + " -> ".join(cycle))


class IncompatibleJoinTypesError(QuerySemanticError):
    """Raised when joined columns have types from incompatible families."""

    def __init__(self, left: str, left_type: str, right: str, right_type: str) -> None:
        self.left = left
        self.left_type = left_type
        self.right = right
        self.right_type = right_type
        super().__init__(
            f"Cannot join {left} ({left_type}) with {right} ({right_type}): "
            "incompatible column types"
        )


# ---- durable storage ------------------------------------------------------


class PersistenceError(ModelerError):
    """Raised when the durable store fails to commit a transfer."""


class DataModelNotFoundError(ModelerError):
    """Raised when a saved data model does not exist or belongs to another user."""
