"""Session sources — where the sampler gets its raw chat sessions.

A source is anything with an async ``fetch_sessions(start, end)`` method
returning :class:`~xobcat.models.ChatSession` objects whose ``start_time``
falls in ``[start, end)``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from xobcat.models import ChatSession


class SessionSource(Protocol):
    async def fetch_sessions(self, start: datetime, end: datetime) -> list[ChatSession]:
        ...


class InMemorySessionSource:
    """A fixed list of sessions, filtered by start time.

    Used by tests and by the CLI when analysing an exported JSON file
    without importing it first.
    """

    def __init__(self, sessions: list[ChatSession]) -> None:
        self.sessions = list(sessions)
        self.calls: list[tuple[datetime, datetime]] = []

    async def fetch_sessions(self, start: datetime, end: datetime) -> list[ChatSession]:
        self.calls.append((start, end))
        return [s for s in self.sessions if start <= s.start_time < end]


__all__ = ["InMemorySessionSource", "SessionSource"]
