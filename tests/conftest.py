"""Shared test fixtures for XOB CAT tests.

Sessions carry their intended labels in ``tags`` (``[intent, reason,
location]``) so :class:`FakeExtractor` can label them deterministically
without an LLM.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from xobcat.config import XobcatSettings
from xobcat.engine.extractor import ExtractionResult, TokenUsage, attach_facts, normalize_facts
from xobcat.engine.taxonomy import Taxonomy
from xobcat.models import AnalysisMetadata, ChatSession, Message, SessionWithFacts

#: 2025-06-02 09:00 America/New_York (EDT) in UTC
BASE_TIME = datetime(2025, 6, 2, 13, 0, tzinfo=timezone.utc)


def make_session(
    index: int,
    *,
    start: datetime = BASE_TIME,
    offset_minutes: float | None = None,
    containment_type: str | None = "selfService",
    intent: str = "Claim Status",
    reason: str = "",
    location: str = "",
    n_messages: int = 4,
) -> ChatSession:
    """Build a session ``offset_minutes`` after ``start`` (default: ``index`` minutes)."""
    begin = start + timedelta(minutes=index if offset_minutes is None else offset_minutes)
    messages = [
        Message(
            timestamp=begin + timedelta(seconds=10 * i),
            message_type="user" if i % 2 else "bot",
            message=f"Message {i} in session {index}: how can I help you today?",
        )
        for i in range(n_messages)
    ]
    return ChatSession(
        session_id=f"s-{index:04d}",
        user_id=f"u-{index:04d}",
        start_time=begin,
        end_time=begin + timedelta(seconds=10 * max(n_messages, 1)),
        containment_type=containment_type,
        tags=[intent, reason, location],
        messages=messages,
    )


class FakeExtractor:
    """Labels sessions from their tags; records every call.

    Args:
        delay: Seconds to sleep inside each call.
        fail_on: ``(round_number, stream_id)`` pairs that raise instead.
        block_rounds_from: Calls in this round or later wait on ``release``.
        on_call: Called at the start of every call (e.g. to sample progress).
    """

    def __init__(
        self,
        *,
        delay: float = 0.0,
        fail_on: set[tuple[int, int]] | None = None,
        block_rounds_from: int | None = None,
        on_call: Callable[[], None] | None = None,
        tokens_per_session: int = 100,
    ) -> None:
        self.delay = delay
        self.fail_on = fail_on or set()
        self.block_rounds_from = block_rounds_from
        self.on_call = on_call
        self.tokens_per_session = tokens_per_session
        self.release = asyncio.Event()
        self.calls: list[dict[str, object]] = []
        self.in_flight = 0

    async def extract(
        self,
        sessions: list[ChatSession],
        taxonomy: Taxonomy,
        *,
        batch_number: int = 0,
        round_number: int = 0,
        stream_id: int = 0,
    ) -> ExtractionResult:
        if self.on_call is not None:
            self.on_call()
        self.calls.append(
            {
                "round": round_number,
                "stream": stream_id,
                "batch": batch_number,
                "ids": [s.session_id for s in sessions],
                "intents_seen": sorted(taxonomy.general_intents),
            }
        )
        self.in_flight += 1
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.block_rounds_from is not None and round_number >= self.block_rounds_from:
                await self.release.wait()
            if (round_number, stream_id) in self.fail_on:
                raise RuntimeError(f"boom in round {round_number} stream {stream_id}")
        finally:
            self.in_flight -= 1

        labelled = []
        for s in sessions:
            intent, reason, location = (list(s.tags) + ["", "", ""])[:3]
            facts = normalize_facts(
                intent,
                "Transfer" if reason else "Contained",
                reason,
                location,
                notes=f"Session {s.session_id}",
            )
            metadata = AnalysisMetadata(
                tokens_used=self.tokens_per_session,
                batch_number=batch_number,
                round_number=round_number,
                stream_id=stream_id,
                model="gpt-4o-mini",
            )
            labelled.append(attach_facts(s, facts, metadata))

        tokens = self.tokens_per_session * len(sessions)
        return ExtractionResult(
            sessions=labelled,
            usage=TokenUsage(
                prompt_tokens=tokens, completion_tokens=0, cost=tokens / 1_000_000, model="gpt-4o-mini"
            ),
        )


@pytest.fixture
def make_sessions() -> Callable[..., list[ChatSession]]:
    """``make_sessions(n, **kwargs)`` → n sessions one minute apart."""

    def _make(n: int, *, first: int = 0, **kwargs: object) -> list[ChatSession]:
        return [make_session(first + i, **kwargs) for i in range(n)]  # type: ignore[arg-type]

    return _make


@pytest.fixture
def make_one() -> Callable[..., ChatSession]:
    return make_session


@pytest.fixture
def fake_extractor() -> type[FakeExtractor]:
    return FakeExtractor


@pytest.fixture
def labelled() -> Callable[..., SessionWithFacts]:
    """``labelled(index, intent, reason="", location="")`` → a SessionWithFacts."""

    def _labelled(index: int, intent: str, reason: str = "", location: str = "") -> SessionWithFacts:
        facts = normalize_facts(intent, "Transfer" if reason else "Contained", reason, location)
        return attach_facts(make_session(index), facts, AnalysisMetadata())

    return _labelled


@pytest.fixture
def settings(tmp_path: Path) -> XobcatSettings:
    """Settings isolated from the developer's environment, summary off."""
    return XobcatSettings(
        data_dir=tmp_path,
        database_url="sqlite://",
        generate_summary=False,
        session_api_url="",
    )


@pytest.fixture
def valid_config() -> dict[str, object]:
    return {
        "startDate": "2025-06-02",
        "startTime": "09:00",
        "sessionCount": 20,
        "modelId": "gpt-4o-mini",
        "openaiApiKey": "sk-test-1234567890",
    }


class FakeLLMClient:
    """Stands in for :class:`~xobcat.llm.client.LLMClient`.

    ``respond(user_prompt, response_model)`` builds each answer; by default
    the response model's empty instance is returned.  Every call records
    fixed token counts on the caller's tracker.
    """

    def __init__(
        self,
        respond: Callable[[str, type], object] | None = None,
        *,
        error: Exception | None = None,
        input_tokens: int = 50,
        output_tokens: int = 10,
        model: str = "gpt-4o-mini",
    ) -> None:
        self.respond = respond
        self.error = error
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.model = model
        self.prompts: list[str] = []

    async def analyze(
        self,
        system_prompt: str,
        user_prompt: str,
        response_model: type,
        max_tokens: int | None = None,
        tracker: object | None = None,
    ) -> object:
        self.prompts.append(user_prompt)
        if tracker is not None:
            tracker.record(self.input_tokens, self.output_tokens)  # type: ignore[attr-defined]
        if self.error is not None:
            raise self.error
        if self.respond is not None:
            return self.respond(user_prompt, response_model)
        return response_model()


@pytest.fixture
def fake_llm_client() -> type[FakeLLMClient]:
    return FakeLLMClient
