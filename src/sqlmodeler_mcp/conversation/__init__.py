"""AI conversation: engine adapter, response envelope and gateway."""

from .engine import AIEngine, PydanticAIEngine
from .envelope import StructuredAIResponse, parse_envelope
from .gateway import ConversationGateway

__all__ = [
    "AIEngine",
    "ConversationGateway",
    "PydanticAIEngine",
    "StructuredAIResponse",
    "parse_envelope",
]
