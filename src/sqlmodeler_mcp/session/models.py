"""Session data: keys, messages, drafts and the session record itself."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from sqlmodeler_mcp.federation.sql_json import JoinOnPair, SqlJson
from sqlmodeler_mcp.schema.collector import CollectionWarning
from sqlmodeler_mcp.schema.models import SchemaSnapshot

from .state import SESSION_TTL_SECONDS, SessionPhase

SOURCE_SET_SEPARATOR = "+"


@dataclass(frozen=True)
class SessionKey:
    """Identity of a session: the (canonical) source set plus the user."""

    source_set_id: str
    user_id: str

    @classmethod
    def for_sources(cls, source_ids: Iterable[str], user_id: str) -> SessionKey:
        """Build a key from source ids in any order, ignoring duplicates."""
        ids = sorted({str(s).strip() for s in source_ids if str(s).strip()})
        if not ids:
            msg = "At least one data source id is required"
            raise ValueError(msg)
        if not str(user_id).strip():
            msg = "A user id is required"
            raise ValueError(msg)
        return cls(source_set_id=SOURCE_SET_SEPARATOR.join(ids), user_id=str(user_id))

    @property
    def source_ids(self) -> list[str]:
        return self.source_set_id.split(SOURCE_SET_SEPARATOR)

    @property
    def cross_source(self) -> bool:
        return len(self.source_ids) > 1

    def __str__(self) -> str:
        return f"{self.source_set_id}:{self.user_id}"


@dataclass(frozen=True)
class Message:
    """One conversational turn. Only `ai` turns carry a structured payload."""

    role: Literal["user", "ai"]
    text: str
    timestamp: datetime
    structured_payload: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "text": self.text,
            "structured_payload": self.structured_payload,
            "timestamp": self.timestamp.isoformat(),
        }


class DraftJoin(BaseModel):
    """A join selected in the draft editor."""

    left_table: str
    right_table: str
    join_type: str = "INNER"
    on_columns: list[JoinOnPair] = Field(default_factory=list)


class ModelDraft(BaseModel):
    """The user-editable candidate data model.

    Updates replace the whole draft. `sql_text` is the ground truth for
    execution; `sql_json` is kept describing the same logical query.
    """

    selected_columns: list[str] = Field(
        default_factory=list, description="Columns chosen for the model, as table.column"
    )
    joins: list[DraftJoin] = Field(default_factory=list, description="Ordered join list")
    filters: list[str] = Field(default_factory=list, description="Filter expressions")
    sql_text: str | None = Field(default=None, description="SQL executed for the model")
    sql_json: SqlJson | None = Field(
        default=None, description="Structural mirror of sql_text for UI editing"
    )


@dataclass
class Session:
    """Ephemeral state of one modeling conversation.

    Owned by the `SessionStore`; callers receive copies.
    """

    session_id: str
    key: SessionKey
    snapshot: SchemaSnapshot
    schema_markdown: str
    created_at: float
    last_activity_at: float
    ttl_seconds: float = SESSION_TTL_SECONDS
    phase: SessionPhase = SessionPhase.ACTIVE
    messages: list[Message] = field(default_factory=list)
    draft: ModelDraft | None = None
    draft_version: int = 0
    draft_modified_at: float | None = None
    warnings: list[CollectionWarning] = field(default_factory=list)

    @property
    def cross_source(self) -> bool:
        return self.snapshot.cross_source

    @property
    def expires_at(self) -> float:
        return self.last_activity_at + self.ttl_seconds

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        def iso(ts: float | None) -> str | None:
            return datetime.fromtimestamp(ts, UTC).isoformat() if ts is not None else None

        return {
            "session_id": self.session_id,
            "source_set_id": self.key.source_set_id,
            "user_id": self.key.user_id,
            "phase": self.phase.name,
            "cross_source": self.cross_source,
            "created_at": iso(self.created_at),
            "last_activity_at": iso(self.last_activity_at),
            "expires_at": iso(self.expires_at),
            "messages": [m.to_dict() for m in self.messages],
            "model_draft": self.draft.model_dump() if self.draft is not None else None,
            "draft_version": self.draft_version,
            "draft_modified_at": iso(self.draft_modified_at),
            "schema": self.snapshot.to_dict(),
            "warnings": [w.to_dict() for w in self.warnings],
        }
