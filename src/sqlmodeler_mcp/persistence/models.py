"""SQLAlchemy models for saved conversations and data models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""


class ConversationRecord(Base):
    """A modeling conversation that was saved."""

    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    source_set_id: Mapped[str] = mapped_column(String(1024))
    title: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default="saved")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    saved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    messages: Mapped[list[MessageRecord]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="MessageRecord.position",
    )


class MessageRecord(Base):
    """One turn of a saved conversation; `position` keeps the original order."""

    __tablename__ = "conversation_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(String(36), ForeignKey("conversations.id"))
    position: Mapped[int] = mapped_column(Integer)
    role: Mapped[str] = mapped_column(String(10))
    text: Mapped[str] = mapped_column(Text)
    structured_payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    conversation: Mapped[ConversationRecord] = relationship(back_populates="messages")


class DataModelRecord(Base):
    """A saved data model: the query that materializes it plus its structure."""

    __tablename__ = "data_models"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    title: Mapped[str] = mapped_column(String(255))
    sql_text: Mapped[str] = mapped_column(Text)
    sql_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    source_ids: Mapped[list[str]] = mapped_column(JSON)
    created_from_conversation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("conversations.id")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    conversation: Mapped[ConversationRecord] = relationship()
