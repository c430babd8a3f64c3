"""SQLite-backed session source, plus the JSON importer that fills it."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.orm import Session as SASession
from sqlalchemy.orm import selectinload

from xobcat.models import ChatSession, Message
from xobcat.server.models import ChatMessageRow, ChatSessionRow

logger = logging.getLogger(__name__)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _row_to_session(row: ChatSessionRow) -> ChatSession:
    return ChatSession(
        session_id=row.session_id,
        user_id=row.user_id,
        start_time=row.start_time,
        end_time=row.end_time,
        containment_type=row.containment_type,
        tags=list(row.tags or []),
        messages=[
            Message(timestamp=m.timestamp, message_type=m.message_type, message=m.message)
            for m in row.messages
        ],
        message_count=row.message_count,
        user_message_count=row.user_message_count,
        bot_message_count=row.bot_message_count,
        duration_seconds=row.duration_seconds,
    )


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def load_sessions_json(path: Path) -> list[ChatSession]:
    """Read a session export: a JSON list, or an object with a ``sessions`` list."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("sessions", data.get("data", []))
    if not isinstance(data, list):
        raise ValueError(f"{path.name}: expected a list of sessions")
    return [ChatSession.model_validate(item) for item in data]


def import_sessions(db: SASession, sessions: list[ChatSession]) -> int:
    """Insert sessions not already present (by ``session_id``).  Returns the count added."""
    ids = [s.session_id for s in sessions]
    existing = set(
        db.scalars(select(ChatSessionRow.session_id).where(ChatSessionRow.session_id.in_(ids)))
    )

    added = 0
    for session in sessions:
        if session.session_id in existing:
            continue
        existing.add(session.session_id)
        row = ChatSessionRow(
            session_id=session.session_id,
            user_id=session.user_id,
            start_time=_naive_utc(session.start_time),
            end_time=_naive_utc(session.end_time),
            containment_type=session.containment_type,
            tags=list(session.tags),
            message_count=session.message_count,
            user_message_count=session.user_message_count,
            bot_message_count=session.bot_message_count,
            duration_seconds=session.duration_seconds,
        )
        row.messages = [
            ChatMessageRow(
                position=i,
                timestamp=_naive_utc(m.timestamp),
                message_type=m.message_type,
                message=m.message,
            )
            for i, m in enumerate(session.messages)
        ]
        db.add(row)
        added += 1

    db.commit()
    logger.info("Imported %d sessions (%d already present)", added, len(sessions) - added)
    return added


# ---------------------------------------------------------------------------
# Source
# ---------------------------------------------------------------------------


class DatabaseSessionSource:
    """Serves imported sessions whose start time falls in ``[start, end)``."""

    def __init__(self, db_factory: Callable[[], SASession]) -> None:
        self.db_factory = db_factory

    async def fetch_sessions(self, start: datetime, end: datetime) -> list[ChatSession]:
        return await asyncio.to_thread(self._query, start, end)

    def _query(self, start: datetime, end: datetime) -> list[ChatSession]:
        """Blocking window query; runs in a worker thread off the event loop."""
        db = self.db_factory()
        try:
            rows = db.scalars(
                select(ChatSessionRow)
                .where(
                    ChatSessionRow.start_time >= _naive_utc(start),
                    ChatSessionRow.start_time < _naive_utc(end),
                )
                .options(selectinload(ChatSessionRow.messages))
                .order_by(ChatSessionRow.start_time)
            ).all()
            return [_row_to_session(row) for row in rows]
        finally:
            db.close()
