"""Ephemeral modeling sessions keyed by source set and user."""

from .models import Message, ModelDraft, Session, SessionKey
from .state import SESSION_TTL_SECONDS, SessionPhase
from .store import SessionStore

__all__ = [
    "SESSION_TTL_SECONDS",
    "Message",
    "ModelDraft",
    "Session",
    "SessionKey",
    "SessionPhase",
    "SessionStore",
]
