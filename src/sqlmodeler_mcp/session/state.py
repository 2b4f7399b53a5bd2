"""Typed lifecycle state for modeling sessions."""

from __future__ import annotations

from enum import Enum, auto
from typing import Final


class SessionPhase(Enum):
    """Lifecycle phase of a session.

    ACTIVE is the only mutable phase. SAVED, CANCELLED and EXPIRED are
    terminal: a session that enters one of them is never readable again.
    """

    UNINITIALIZED = auto()
    ACTIVE = auto()
    SAVED = auto()
    CANCELLED = auto()
    EXPIRED = auto()


TERMINAL_PHASES: Final[frozenset[SessionPhase]] = frozenset(
    {SessionPhase.SAVED, SessionPhase.CANCELLED, SessionPhase.EXPIRED}
)

# Upper bound on conversational continuity, measured from the last touch.
SESSION_TTL_SECONDS: Final[float] = 24 * 60 * 60
