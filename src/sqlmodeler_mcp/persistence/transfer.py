"""Transfer of a finished session into durable storage.

Saving is the single forward transition out of the ephemeral store. The
draft query is validated by execution first; only a query that runs is
persisted. The conversation, its messages and the data model are written in
one transaction, and the ephemeral session is cleared only after that
transaction commits. A failed write leaves the session ACTIVE so the user
can retry.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any
import uuid

from fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, Field
import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from sqlmodeler_mcp.exceptions import (
    DataModelNotFoundError,
    MissingDraftError,
    MissingTitleError,
    NoActiveSessionError,
    PersistenceError,
)
from sqlmodeler_mcp.execute.models import SourceBinding
from sqlmodeler_mcp.execute.runner import QueryExecutor
from sqlmodeler_mcp.session.models import Session, SessionKey
from sqlmodeler_mcp.session.store import SessionStore

from .models import Base, ConversationRecord, DataModelRecord, MessageRecord

_logger = get_logger(__name__)

BindingsResolver = Callable[[Session], Sequence[SourceBinding]]


class DataModel(BaseModel):
    """A saved data model."""

    id: str = Field(description="Data model identifier")
    title: str = Field(description="Title given when saving")
    sql_text: str = Field(description="Query that materializes the model")
    sql_json: dict[str, Any] | None = Field(
        default=None, description="Structural form of the query"
    )
    source_ids: list[str] = Field(description="Data sources the query reads")
    created_from_conversation_id: str = Field(description="Conversation the model came from")
    created_at: datetime = Field(description="UTC time of the save")


class SavedMessage(BaseModel):
    role: str
    text: str
    structured_payload: dict[str, Any] | None = None
    timestamp: datetime


class SavedConversation(BaseModel):
    """A saved conversation read back together with its data model."""

    id: str
    user_id: str
    source_set_id: str
    title: str
    status: str
    started_at: datetime
    saved_at: datetime
    messages: list[SavedMessage] = Field(description="Messages in their original order")
    data_model: DataModel


def _utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _data_model(record: DataModelRecord) -> DataModel:
    return DataModel(
        id=record.id,
        title=record.title,
        sql_text=record.sql_text,
        sql_json=record.sql_json,
        source_ids=list(record.source_ids),
        created_from_conversation_id=record.created_from_conversation_id,
        created_at=_utc(record.created_at),
    )


class DurableStore:
    """SQLAlchemy-backed storage for saved conversations and data models."""

    def __init__(self, engine: sa.Engine) -> None:
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    def create_schema(self) -> None:
        """Create the storage tables when they do not exist yet."""
        Base.metadata.create_all(self.engine)

    def save_conversation(self, session: Session, *, title: str) -> DataModel:
        """Write conversation, messages and data model in one transaction.

        Raises:
            PersistenceError: If the transaction fails; nothing is written then
        """
        if session.draft is None or not session.draft.sql_text:
            msg = "Cannot persist a session without draft SQL"
            raise MissingDraftError(msg)
        now = datetime.now(UTC)
        conversation_id = str(uuid.uuid4())
        data_model_id = str(uuid.uuid4())
        conversation = ConversationRecord(
            id=conversation_id,
            user_id=session.key.user_id,
            source_set_id=session.key.source_set_id,
            title=title,
            status="saved",
            started_at=datetime.fromtimestamp(session.created_at, UTC),
            saved_at=now,
            messages=[
                MessageRecord(
                    position=i,
                    role=m.role,
                    text=m.text,
                    structured_payload=m.structured_payload,
                    timestamp=m.timestamp,
                )
                for i, m in enumerate(session.messages)
            ],
        )
        record = DataModelRecord(
            id=data_model_id,
            user_id=session.key.user_id,
            title=title,
            sql_text=session.draft.sql_text,
            sql_json=(
                session.draft.sql_json.model_dump(mode="json")
                if session.draft.sql_json is not None
                else None
            ),
            source_ids=list(session.snapshot.source_ids),
            created_from_conversation_id=conversation_id,
            created_at=now,
        )
        try:
            with self._sessions.begin() as db:
                db.add(conversation)
                db.add(record)
        except SQLAlchemyError as exc:
            _logger.exception("Durable write failed for session %s", session.session_id)
            msg = f"Failed to save the session: {exc}"
            raise PersistenceError(msg) from exc
        return _data_model(record)

    def get_saved_conversation(self, data_model_id: str, user_id: str) -> SavedConversation:
        """Read a saved conversation back through the data model created from it.

        Raises:
            DataModelNotFoundError: Unknown id, or the model belongs to another user
            PersistenceError: If the read fails
        """
        try:
            with self._sessions() as db:
                record = db.get(DataModelRecord, data_model_id)
                if record is None or record.user_id != user_id:
                    msg = f"Data model '{data_model_id}' not found"
                    raise DataModelNotFoundError(msg)
                conv = record.conversation
                return SavedConversation(
                    id=conv.id,
                    user_id=conv.user_id,
                    source_set_id=conv.source_set_id,
                    title=conv.title,
                    status=conv.status,
                    started_at=_utc(conv.started_at),
                    saved_at=_utc(conv.saved_at),
                    messages=[
                        SavedMessage(
                            role=m.role,
                            text=m.text,
                            structured_payload=m.structured_payload,
                            timestamp=_utc(m.timestamp),
                        )
                        for m in conv.messages
                    ],
                    data_model=_data_model(record),
                )
        except SQLAlchemyError as exc:
            msg = f"Failed to read data model '{data_model_id}': {exc}"
            raise PersistenceError(msg) from exc


class PersistenceTransfer:
    """Validate, persist and clear a session in that order."""

    def __init__(
        self,
        store: SessionStore,
        durable: DurableStore,
        executor: QueryExecutor,
        bindings_for: BindingsResolver,
    ) -> None:
        self._store = store
        self._durable = durable
        self._executor = executor
        self._bindings_for = bindings_for

    async def transfer(self, key: SessionKey, title: str | None) -> DataModel:
        """Save the session for `key` as a data model.

        Raises:
            NoActiveSessionError: If the key has no ACTIVE session
            MissingTitleError: If the title is blank
            MissingDraftError: If the draft has no SQL
            QuerySemanticError: If the draft SQL fails validation by execution
            PersistenceError: If the durable write fails (the session stays ACTIVE)
        """
        async with self._store.key_lock(key):
            session = self._store.get(key)
            clean_title = (title or "").strip()
            if not clean_title:
                msg = "A title is required to save the session"
                raise MissingTitleError(msg)
            draft = session.draft
            if draft is None or not (draft.sql_text or "").strip():
                msg = "The session has no draft SQL to save; update the draft first"
                raise MissingDraftError(msg)

            await self._executor.execute(
                draft.sql_text or "",
                self._bindings_for(session),
                row_cap=1,
                federated=session.cross_source,
            )
            # A cancel during validation wins; nothing is written for that session.
            self._store.ensure_active(key, session.session_id)
            model = await asyncio.to_thread(
                self._durable.save_conversation, session, title=clean_title
            )

            try:
                self._store.mark_saved(key, session.session_id)
            except NoActiveSessionError:
                _logger.warning(
                    "Session %s ended while saving; data model %s was already committed",
                    session.session_id,
                    model.id,
                )
            else:
                _logger.info(
                    "Saved session %s for %s as data model %s", session.session_id, key, model.id
                )
            return model
