"""Durable storage of saved conversations and data models."""

from .transfer import DataModel, DurableStore, PersistenceTransfer, SavedConversation

__all__ = [
    "DataModel",
    "DurableStore",
    "PersistenceTransfer",
    "SavedConversation",
]
