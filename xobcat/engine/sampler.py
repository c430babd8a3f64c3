"""Time-window sampler — collects enough sessions for one analysis.

Windows all start at the configured start timestamp and grow (3 h, 6 h,
12 h, 6 days).  Each window is queried in turn until the distinct session
count reaches the target; the collection is then randomly sampled down to
exactly the target.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from xobcat.errors import EmptyResultError, UpstreamError
from xobcat.models import ChatSession
from xobcat.sources import SessionSource

logger = logging.getLogger(__name__)

#: (duration in hours, label) for the window expansion strategy
DEFAULT_WINDOWS: tuple[tuple[int, str], ...] = (
    (3, "Initial 3-hour window"),
    (6, "6-hour window"),
    (12, "12-hour window"),
    (144, "6-day window"),
)

_MIN_CONTENT_CHARS = 10

#: (step text, sessions found so far, windows searched, window)
WindowCallback = Callable[[str, int, int, "TimeWindow"], None]


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime
    duration_hours: int
    label: str


@dataclass
class SamplingResult:
    sessions: list[ChatSession]
    windows_used: list[TimeWindow]
    total_found: int


def parse_start(start_date: str, start_time: str, tz: str = "America/New_York") -> datetime:
    """Combine a YYYY-MM-DD date and HH:MM time in ``tz`` into a UTC datetime."""
    local = datetime.strptime(f"{start_date} {start_time}", "%Y-%m-%d %H:%M")
    return local.replace(tzinfo=ZoneInfo(tz)).astimezone(timezone.utc)


def build_windows(
    start: datetime,
    strategy: tuple[tuple[int, str], ...] = DEFAULT_WINDOWS,
) -> list[TimeWindow]:
    return [
        TimeWindow(
            start=start,
            end=start + timedelta(hours=hours),
            duration_hours=hours,
            label=label,
        )
        for hours, label in strategy
    ]


def is_valid_session(session: ChatSession, min_messages: int = 2) -> bool:
    """Keep sessions with at least ``min_messages`` turns and some real text.

    Sources that only return metadata (no ``messages``) are judged by
    ``message_count`` alone.
    """
    if not session.messages:
        return session.message_count >= min_messages
    if len(session.messages) < min_messages:
        return False
    content = " ".join(m.message.strip() for m in session.messages).strip()
    return len(content) >= _MIN_CONTENT_CHARS


def random_sample(
    sessions: list[ChatSession], count: int, rng: random.Random | None = None
) -> list[ChatSession]:
    if len(sessions) <= count:
        return list(sessions)
    return (rng or random.Random()).sample(sessions, count)


async def sample_sessions(
    source: SessionSource,
    start: datetime,
    target_count: int,
    *,
    windows: list[TimeWindow] | None = None,
    on_window: WindowCallback | None = None,
    rng: random.Random | None = None,
    min_messages: int = 2,
) -> SamplingResult:
    """Query expanding windows until ``target_count`` distinct sessions are found.

    Raises:
        UpstreamError: the session source failed.
        EmptyResultError: every window came back empty.
    """
    if windows is None:
        windows = build_windows(start)

    found: dict[str, ChatSession] = {}
    used: list[TimeWindow] = []

    def _notify(step: str, searched: int, window: TimeWindow) -> None:
        if on_window is not None:
            on_window(step, len(found), searched, window)

    for i, window in enumerate(windows):
        _notify(f"Searching in {window.label}...", i, window)

        try:
            batch = await source.fetch_sessions(window.start, window.end)
        except Exception as exc:
            raise UpstreamError(f"Session source failed for {window.label}: {exc}") from exc

        for session in batch:
            if is_valid_session(session, min_messages):
                found.setdefault(session.session_id, session)
        used.append(window)

        logger.info("%s: %d sessions (%d distinct so far)", window.label, len(batch), len(found))
        _notify(f"Found {len(found)} sessions in {window.label}", i + 1, window)

        if len(found) >= target_count:
            _notify(
                f"Found sufficient sessions ({len(found)}), completing search...", i + 1, window
            )
            break

    if not found:
        raise EmptyResultError(
            f"No sessions found in any time window starting {start.isoformat()}"
        )

    sessions = random_sample(list(found.values()), target_count, rng)
    return SamplingResult(sessions=sessions, windows_used=used, total_found=len(found))
