"""In-memory, TTL-bound session store.

The store is the only shared mutable resource of the engine. All of its
methods are synchronous and run on the event loop thread, so each call is
atomic with respect to other coroutines. Multi-step flows that await in the
middle (an AI round-trip, a validating query, a durable write) take the
per-key lock from `key_lock` and pass the `session_id` they started with to
every mutation: if the session was cancelled, expired or replaced meanwhile,
the mutation fails with `NoActiveSessionError` and the late result is
discarded instead of resurrecting the key.

Expiry is enforced on every access and by `purge_expired`, which the server
runs periodically.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
import copy
import time
import uuid

from fastmcp.utilities.logging import get_logger

from sqlmodeler_mcp.exceptions import NoActiveSessionError
from sqlmodeler_mcp.schema.collector import CollectionWarning
from sqlmodeler_mcp.schema.models import SchemaSnapshot

from .models import Message, ModelDraft, Session, SessionKey
from .state import SESSION_TTL_SECONDS, TERMINAL_PHASES, SessionPhase

_logger = get_logger(__name__)

Clock = Callable[[], float]


class SessionStore:
    """Keyed session container with sliding 24h expiry."""

    def __init__(
        self, *, clock: Clock = time.time, ttl_seconds: float = SESSION_TTL_SECONDS
    ) -> None:
        if ttl_seconds <= 0 or ttl_seconds > SESSION_TTL_SECONDS:
            msg = f"ttl_seconds must be in (0, {SESSION_TTL_SECONDS:g}]"
            raise ValueError(msg)
        self._clock = clock
        self._ttl = ttl_seconds
        self._sessions: dict[SessionKey, Session] = {}
        self._locks: dict[SessionKey, asyncio.Lock] = {}

    # ---- helpers -------------------------------------------------------------
    def key_lock(self, key: SessionKey) -> asyncio.Lock:
        """Per-key lock serializing multi-step operations on one session."""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _expire_if_due(self, key: SessionKey) -> Session | None:
        """Return the live session for `key`, reclaiming it first if it expired."""
        session = self._sessions.get(key)
        if session is None:
            return None
        if session.is_expired(self._clock()):
            self._end(key, session, SessionPhase.EXPIRED)
            _logger.info("Session %s for %s expired", session.session_id, key)
            return None
        return session

    def _require(self, key: SessionKey, session_id: str | None) -> Session:
        session = self._expire_if_due(key)
        if session is None:
            msg = f"No active session for {key}; initialize a new session"
            raise NoActiveSessionError(msg)
        if session_id is not None and session.session_id != session_id:
            msg = f"Session {session_id} for {key} is no longer active"
            raise NoActiveSessionError(msg)
        return session

    def _end(self, key: SessionKey, session: Session, phase: SessionPhase) -> None:
        if phase not in TERMINAL_PHASES:
            msg = f"{phase.name} is not a terminal phase"
            raise ValueError(msg)
        session.phase = phase
        del self._sessions[key]

    def _touch(self, session: Session) -> None:
        session.last_activity_at = self._clock()

    @staticmethod
    def _copy(session: Session) -> Session:
        clone = copy.copy(session)
        clone.messages = list(session.messages)
        clone.warnings = list(session.warnings)
        return clone

    # ---- lifecycle -----------------------------------------------------------
    def peek(self, key: SessionKey) -> Session | None:
        """Return a copy of the ACTIVE session for `key`, or None. Does not touch."""
        session = self._expire_if_due(key)
        return self._copy(session) if session is not None else None

    def initialize(
        self,
        key: SessionKey,
        snapshot: SchemaSnapshot,
        schema_markdown: str,
        warnings: Iterable[CollectionWarning] = (),
    ) -> tuple[Session, bool]:
        """Create the session for `key`, or restore the existing one.

        Returns:
            The session and True when an existing ACTIVE session was restored
        """
        existing = self._expire_if_due(key)
        if existing is not None:
            self._touch(existing)
            _logger.info("Restored session %s for %s", existing.session_id, key)
            return self._copy(existing), True

        now = self._clock()
        session = Session(
            session_id=uuid.uuid4().hex,
            key=key,
            snapshot=snapshot,
            schema_markdown=schema_markdown,
            created_at=now,
            last_activity_at=now,
            ttl_seconds=self._ttl,
            warnings=list(warnings),
        )
        self._sessions[key] = session
        _logger.info(
            "Created session %s for %s (%d sources, cross_source=%s)",
            session.session_id,
            key,
            len(snapshot.sources),
            snapshot.cross_source,
        )
        return self._copy(session), False

    def get(self, key: SessionKey) -> Session:
        """Return a copy of the ACTIVE session.

        Raises:
            NoActiveSessionError: If the key is absent, expired or terminated
        """
        return self._copy(self._require(key, None))

    def ensure_active(self, key: SessionKey, session_id: str) -> None:
        """Check that `session_id` is still the ACTIVE session for `key`. Does not touch.

        Raises:
            NoActiveSessionError: If it was cancelled, saved, expired or replaced
        """
        self._require(key, session_id)

    def append_message(
        self, key: SessionKey, message: Message, *, session_id: str | None = None
    ) -> int:
        """Append a message and return the new history length.

        Raises:
            NoActiveSessionError: If there is no ACTIVE session, or it is not
                the session identified by `session_id`
        """
        session = self._require(key, session_id)
        session.messages.append(message)
        self._touch(session)
        return len(session.messages)

    def update_draft(
        self, key: SessionKey, draft: ModelDraft, *, session_id: str | None = None
    ) -> int:
        """Replace the draft and return its new version.

        Raises:
            NoActiveSessionError: If there is no ACTIVE session
        """
        session = self._require(key, session_id)
        session.draft = draft
        session.draft_version += 1
        session.draft_modified_at = self._clock()
        self._touch(session)
        return session.draft_version

    def cancel(self, key: SessionKey) -> bool:
        """Discard the session for `key`. Idempotent.

        Returns:
            True when an ACTIVE session was cancelled
        """
        session = self._expire_if_due(key)
        if session is None:
            _logger.debug("Cancel for %s: no active session", key)
            return False
        self._end(key, session, SessionPhase.CANCELLED)
        _logger.info("Cancelled session %s for %s", session.session_id, key)
        return True

    def mark_saved(self, key: SessionKey, session_id: str) -> None:
        """Move a committed session to SAVED and drop the ephemeral copy.

        Raises:
            NoActiveSessionError: If the session is no longer the ACTIVE one
        """
        session = self._require(key, session_id)
        self._end(key, session, SessionPhase.SAVED)
        _logger.info("Session %s for %s saved and cleared", session_id, key)

    def purge_expired(self) -> int:
        """Reclaim every expired session; returns how many were removed."""
        removed = 0
        for key in list(self._sessions):
            if self._expire_if_due(key) is None:
                removed += 1
        for key in list(self._locks):
            if key not in self._sessions and not self._locks[key].locked():
                del self._locks[key]
        if removed:
            _logger.info("Purged %d expired sessions", removed)
        return removed

    def __len__(self) -> int:
        return len(self._sessions)
