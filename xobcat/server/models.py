"""SQLAlchemy ORM models — imported chat sessions and their messages.

Timestamps are stored as naive UTC.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from xobcat.server.db import Base


class ChatSessionRow(Base):
    """One chatbot conversation, as imported from a session export."""

    __tablename__ = "chat_sessions"
    __table_args__ = (Index("ix_chat_sessions_start_time", "start_time"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[str] = mapped_column(String(200), unique=True)
    user_id: Mapped[str] = mapped_column(String(200), default="")
    start_time: Mapped[datetime] = mapped_column()
    end_time: Mapped[datetime] = mapped_column()
    containment_type: Mapped[str | None] = mapped_column(String(50), default=None)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)
    message_count: Mapped[int] = mapped_column(Integer, default=0)
    user_message_count: Mapped[int] = mapped_column(Integer, default=0)
    bot_message_count: Mapped[int] = mapped_column(Integer, default=0)
    duration_seconds: Mapped[float] = mapped_column(default=0.0)
    imported_at: Mapped[datetime] = mapped_column(default=func.now())

    messages: Mapped[list[ChatMessageRow]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ChatMessageRow.position",
    )


class ChatMessageRow(Base):
    __tablename__ = "chat_messages"

    id: Mapped[int] = mapped_column(primary_key=True)
    session_pk: Mapped[int] = mapped_column(ForeignKey("chat_sessions.id", ondelete="CASCADE"))
    position: Mapped[int] = mapped_column(Integer, default=0)
    timestamp: Mapped[datetime] = mapped_column()
    message_type: Mapped[str] = mapped_column(String(10))  # "user" or "bot"
    message: Mapped[str] = mapped_column(Text, default="")

    session: Mapped[ChatSessionRow] = relationship(back_populates="messages")
