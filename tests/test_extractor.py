"""Tests for the LLM fact extractor and its helpers (LLM mocked)."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from xobcat.engine.extractor import (
    FALLBACK_INTENT,
    LLMFactExtractor,
    build_session_batch,
    format_transcript,
    normalize_facts,
)
from xobcat.engine.taxonomy import Taxonomy
from xobcat.errors import UpstreamError
from xobcat.llm.structured import FactExtractionBatchResult, SessionFactsItem


def _mock_client(items: list[SessionFactsItem] | Exception, *, tokens: tuple[int, int] = (900, 100)):
    client = MagicMock()
    client.model = "gpt-4o-mini"

    async def _analyze(system_prompt, user_prompt, response_model, max_tokens=None, tracker=None):
        if isinstance(items, Exception):
            raise items
        if tracker is not None:
            tracker.record(*tokens)
        return FactExtractionBatchResult(sessions=items)

    client.analyze = AsyncMock(side_effect=_analyze)
    return client


class TestNormalizeFacts:
    def test_contained_blanks_transfer_fields(self) -> None:
        facts = normalize_facts("Billing", "Contained", "Agent requested", "Main menu")
        assert facts.session_outcome == "Contained"
        assert facts.transfer_reason == ""
        assert facts.drop_off_location == ""

    def test_transfer_keeps_fields(self) -> None:
        facts = normalize_facts("Billing", "transferred", "Agent requested", "Main menu")
        assert facts.session_outcome == "Transfer"
        assert facts.transfer_reason == "Agent requested"

    def test_blank_intent_falls_back(self) -> None:
        assert normalize_facts("  ", "Contained").general_intent == FALLBACK_INTENT


class TestFormatting:
    def test_transcript_lines(self, make_one) -> None:
        text = format_transcript(make_one(1, n_messages=2))
        assert text.splitlines()[0].startswith("bot: Message 0")
        assert text.splitlines()[1].startswith("user: Message 1")

    def test_transcript_truncated(self, make_one) -> None:
        text = format_transcript(make_one(1, n_messages=20), max_chars=50)
        assert text.endswith("[transcript truncated]")

    def test_batch_carries_session_ids(self, make_sessions) -> None:
        text = build_session_batch(make_sessions(2))
        assert "Session ID: s-0000" in text
        assert "--- Session 2 ---" in text


class TestLLMFactExtractor:
    @pytest.mark.asyncio
    async def test_maps_results_by_session_id(self, make_sessions) -> None:
        sessions = make_sessions(2)
        items = [
            SessionFactsItem(
                session_id="s-0001",
                general_intent="Eligibility",
                session_outcome="Transfer",
                transfer_reason="Agent requested",
                drop_off_location="Member ID",
            ),
            SessionFactsItem(session_id="s-0000", general_intent="Billing", session_outcome="Contained"),
        ]
        extractor = LLMFactExtractor(_mock_client(items))

        result = await extractor.extract(sessions, Taxonomy(), round_number=2, stream_id=3)

        assert [s.session_id for s in result.sessions] == ["s-0000", "s-0001"]
        assert result.sessions[0].facts.general_intent == "Billing"
        assert result.sessions[1].facts.session_outcome == "Transfer"
        assert result.sessions[1].analysis_metadata.round_number == 2
        assert result.sessions[1].analysis_metadata.stream_id == 3
        assert result.usage.total_tokens == 1000
        assert result.usage.cost > 0

    @pytest.mark.asyncio
    async def test_missing_session_gets_fallback(self, make_sessions, caplog) -> None:
        items = [SessionFactsItem(session_id="s-0000", general_intent="Billing", session_outcome="Contained")]
        extractor = LLMFactExtractor(_mock_client(items))

        with caplog.at_level("WARNING"):
            result = await extractor.extract(make_sessions(2), Taxonomy())

        assert result.sessions[1].facts.general_intent == FALLBACK_INTENT
        assert "No classification returned for session s-0001" in caplog.text

    @pytest.mark.asyncio
    async def test_prompt_includes_taxonomy_and_context(self, make_sessions) -> None:
        client = _mock_client([])
        extractor = LLMFactExtractor(client, additional_context="Members are dentists")

        await extractor.extract(make_sessions(1), Taxonomy(general_intents={"Claim Status"}))

        user_prompt = client.analyze.call_args.kwargs["user_prompt"]
        assert "Existing General Intent classifications: Claim Status" in user_prompt
        assert "Members are dentists" in user_prompt
        assert "Session ID: s-0000" in user_prompt

    @pytest.mark.asyncio
    async def test_failure_becomes_upstream_error(self, make_sessions) -> None:
        extractor = LLMFactExtractor(_mock_client(RuntimeError("429 for key sk-live-abc123")))
        with pytest.raises(UpstreamError) as exc_info:
            await extractor.extract(make_sessions(1), Taxonomy(), round_number=1, stream_id=2)
        assert "round 1, stream 2" in str(exc_info.value)
        assert "sk-live" not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_empty_batch_skips_call(self) -> None:
        client = _mock_client([])
        result = await LLMFactExtractor(client).extract([], Taxonomy())
        assert result.sessions == []
        client.analyze.assert_not_called()
