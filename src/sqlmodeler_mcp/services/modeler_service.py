"""Session operations of the data-modeling engine.

`ModelerService` is the single entry point the MCP tools call. It composes
the schema collector, the session store, the conversation gateway, the query
executor and the persistence transfer, and maps the public operations onto
them:

- InitializeSession: collect (or restore), format and greet
- SendMessage: one AI round-trip through the gateway
- UpdateDraft: replace the draft, keeping sql_text and sql_json aligned
- GetSessionState: full snapshot of an ACTIVE session
- ExecuteQuery: validate-by-execution against one or several sources
- SaveSession: persistence transfer into durable storage
- CancelSession: idempotent discard
- SuggestJoins: ranked join candidates for one source
- GetSavedConversation: durable read-back
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from fastmcp.utilities.logging import get_logger

from sqlmodeler_mcp.conversation.envelope import StructuredAIResponse
from sqlmodeler_mcp.conversation.gateway import ConversationGateway
from sqlmodeler_mcp.conversation.prompts import greeting
from sqlmodeler_mcp.execute.models import QueryResult, SourceBinding
from sqlmodeler_mcp.execute.runner import QueryExecutor
from sqlmodeler_mcp.federation.sql_json import (
    SqlJsonError,
    logical_signature,
    parse_sql_json,
    render_sql_json,
)
from sqlmodeler_mcp.models import (
    InitializeSessionResult,
    SourceWarning,
    SuggestJoinsResult,
    UpdateDraftResult,
)
from sqlmodeler_mcp.persistence.transfer import (
    DataModel,
    DurableStore,
    PersistenceTransfer,
    SavedConversation,
)
from sqlmodeler_mcp.schema.collector import SchemaCollector
from sqlmodeler_mcp.schema.formatter import format_schema, summarize
from sqlmodeler_mcp.schema.join_inference import suggest_joins
from sqlmodeler_mcp.schema.models import SchemaSnapshot, SourceSchema
from sqlmodeler_mcp.session.models import ModelDraft, Session, SessionKey
from sqlmodeler_mcp.session.store import SessionStore
from sqlmodeler_mcp.sqlglot_tools import Dialect, map_sqlalchemy_to_sqlglot

from .sources import SourceRegistry

_logger = get_logger(__name__)


def draft_dialect(snapshot: SchemaSnapshot) -> Dialect:
    """Dialect drafts are parsed in: the source's own, or generic across sources."""
    if snapshot.cross_source or not snapshot.sources:
        return "sql"
    return map_sqlalchemy_to_sqlglot(snapshot.sources[0].dialect)


def align_draft(draft: ModelDraft, dialect: Dialect) -> tuple[ModelDraft, bool, list[str]]:
    """Make `sql_json` describe the same query as `sql_text`.

    `sql_text` wins whenever it is present. A draft carrying only `sql_json`
    gets its `sql_text` rendered from it.

    Returns:
        The aligned draft, whether anything was recomputed, and notes

    Raises:
        ValueError: If only `sql_json` is given and it cannot be rendered
    """
    notes: list[str] = []
    sql_text = (draft.sql_text or "").strip()
    if sql_text:
        try:
            parsed = parse_sql_json(sql_text, dialect)
        except SqlJsonError as exc:
            notes.append(f"sql_json cleared: {exc}")
            return draft.model_copy(update={"sql_text": sql_text, "sql_json": None}), True, notes
        if draft.sql_json is not None and logical_signature(draft.sql_json) != logical_signature(
            parsed
        ):
            _logger.warning("Supplied sql_json disagrees with sql_text; rebuilt from sql_text")
            notes.append("sql_json did not match sql_text and was rebuilt from sql_text")
        return draft.model_copy(update={"sql_text": sql_text, "sql_json": parsed}), True, notes

    if draft.sql_json is not None:
        try:
            rendered = render_sql_json(draft.sql_json, dialect)
        except SqlJsonError as exc:
            msg = f"sql_json cannot be rendered to SQL: {exc}"
            raise ValueError(msg) from exc
        notes.append("sql_text rendered from sql_json")
        return draft.model_copy(update={"sql_text": rendered}), True, notes
    return draft.model_copy(update={"sql_text": None}), False, notes


class ModelerService:
    """Public operations of the session engine."""

    def __init__(
        self,
        registry: SourceRegistry,
        collector: SchemaCollector,
        store: SessionStore,
        gateway: ConversationGateway,
        executor: QueryExecutor,
        durable: DurableStore,
    ) -> None:
        self.registry = registry
        self.collector = collector
        self.store = store
        self.gateway = gateway
        self.executor = executor
        self.durable = durable
        self.transfer = PersistenceTransfer(store, durable, executor, self.bindings_for)

    # ---- helpers -------------------------------------------------------------
    def bindings_for(self, session: Session) -> list[SourceBinding]:
        """Engines for every source captured in the session snapshot."""
        return self._bind(session.snapshot.sources)

    def _bind(self, sources: Sequence[SourceSchema]) -> list[SourceBinding]:
        return [SourceBinding(schema=s, engine=self.registry.engine(s.source_id)) for s in sources]

    # ---- operations ----------------------------------------------------------
    async def initialize_session(
        self, source_ids: Sequence[str], user_id: str
    ) -> InitializeSessionResult:
        """Start a session for the source set, or restore the ACTIVE one.

        Raises:
            ValueError: If no source id or user id is given
            SourceUnreachableError / UnknownSourceError: Single source failed
            NoSchemaAvailableError: No requested source could be collected
        """
        key = SessionKey.for_sources(source_ids, user_id)
        async with self.store.key_lock(key):
            existing = self.store.peek(key)
            if existing is not None:
                session, restored = self.store.initialize(
                    key, existing.snapshot, existing.schema_markdown
                )
            else:
                collected = await self.collector.collect_many(key.source_ids, user_id=user_id)
                markdown = format_schema(collected.snapshot.sources)
                session, restored = self.store.initialize(
                    key, collected.snapshot, markdown, collected.warnings
                )

        stats = summarize(session.snapshot.sources)
        return InitializeSessionResult(
            session_id=session.session_id,
            source_set_id=key.source_set_id,
            greeting=greeting(stats.table_count, stats.total_columns, stats.source_count),
            tables=session.snapshot.table_references(),
            cross_source=session.cross_source,
            restored=restored,
            warnings=[SourceWarning(**w.to_dict()) for w in session.warnings],
            summary=stats.to_dict(),
        )

    async def send_message(
        self, source_ids: Sequence[str], user_id: str, text: str
    ) -> StructuredAIResponse:
        key = SessionKey.for_sources(source_ids, user_id)
        return await self.gateway.send_message(key, text)

    async def update_draft(
        self, source_ids: Sequence[str], user_id: str, draft: ModelDraft
    ) -> UpdateDraftResult:
        """Replace the session draft (last write wins).

        Raises:
            NoActiveSessionError: If the key has no ACTIVE session
            ValueError: If a draft with only sql_json cannot be rendered
        """
        key = SessionKey.for_sources(source_ids, user_id)
        async with self.store.key_lock(key):
            session = self.store.get(key)
            aligned, recomputed, notes = align_draft(draft, draft_dialect(session.snapshot))
            version = self.store.update_draft(key, aligned, session_id=session.session_id)
            modified = self.store.get(key).draft_modified_at
        _logger.info("Draft for %s updated to version %d", key, version)
        return UpdateDraftResult(
            version=version,
            last_modified=datetime.fromtimestamp(modified or 0.0, UTC).isoformat(),
            sql_json_recomputed=recomputed,
            notes=notes,
        )

    def get_session_state(self, source_ids: Sequence[str], user_id: str) -> dict[str, Any]:
        """Full snapshot of the ACTIVE session: messages, draft, schema, warnings."""
        key = SessionKey.for_sources(source_ids, user_id)
        return self.store.get(key).to_dict()

    async def execute_query(
        self,
        sql: str,
        source_ids: Sequence[str],
        *,
        row_cap: int | None = None,
        user_id: str | None = None,
    ) -> QueryResult:
        """Execute a read-only query against one source or federate across several.

        Uses the ACTIVE session's snapshot for the source set when `user_id`
        has one; otherwise single sources run directly and several sources
        are collected first so their labels and column types are known.
        """
        ids = sorted({s.strip() for s in source_ids if s and s.strip()})
        if not ids:
            msg = "At least one data source id is required"
            raise ValueError(msg)
        for sid in ids:
            self.registry.resolve(sid, user_id)

        session = None
        if user_id is not None:
            session = self.store.peek(SessionKey.for_sources(ids, user_id))
        if session is not None:
            sources = list(session.snapshot.sources)
        elif len(ids) == 1:
            source = self.registry.resolve(ids[0])
            engine = self.registry.engine(ids[0])
            sources = [
                SourceSchema(
                    source_id=source.id, source_label=source.label, dialect=engine.dialect.name
                )
            ]
        else:
            collected = await self.collector.collect_many(ids, user_id=user_id)
            sources = list(collected.snapshot.sources)

        return await self.executor.execute(
            sql, self._bind(sources), row_cap=row_cap, federated=len(ids) > 1
        )

    async def save_session(
        self, source_ids: Sequence[str], user_id: str, title: str | None
    ) -> DataModel:
        key = SessionKey.for_sources(source_ids, user_id)
        return await self.transfer.transfer(key, title)

    def cancel_session(self, source_ids: Sequence[str], user_id: str) -> bool:
        key = SessionKey.for_sources(source_ids, user_id)
        return self.store.cancel(key)

    async def suggest_joins(
        self, source_id: str, *, user_id: str | None = None, limit: int | None = None
    ) -> SuggestJoinsResult:
        """Rank join candidates (foreign keys and inferred) for one source.

        An empty candidate list is a successful result.
        """
        schema, _ = await self.collector.collect(source_id, user_id=user_id)
        candidates = suggest_joins(schema, limit=limit)
        _logger.info("suggest_joins(%s): %d candidates", source_id, len(candidates))
        return SuggestJoinsResult(
            source_id=source_id, candidates=[c.to_dict() for c in candidates]
        )

    async def get_saved_conversation(self, data_model_id: str, user_id: str) -> SavedConversation:
        return await asyncio.to_thread(self.durable.get_saved_conversation, data_model_id, user_id)

    async def shutdown(self) -> None:
        """Release source engines and the durable store engine."""
        self.registry.dispose()
        self.durable.engine.dispose()
