"""Tests for the multi-provider LLM client (SDK calls mocked)."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from xobcat.config import XobcatSettings
from xobcat.llm.client import LLMClient, LLMUsageTracker
from xobcat.llm.structured import FactExtractionBatchResult, SummaryResult

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _openai_response(content: str | None, finish_reason: str = "stop") -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content), finish_reason=finish_reason)],
        usage=SimpleNamespace(prompt_tokens=120, completion_tokens=30),
    )


def _anthropic_response(tool_input: dict, stop_reason: str = "tool_use") -> SimpleNamespace:
    return SimpleNamespace(
        stop_reason=stop_reason,
        content=[SimpleNamespace(type="tool_use", name="structured_output", input=tool_input)],
        usage=SimpleNamespace(input_tokens=200, output_tokens=40),
    )


_SUMMARY = {"overview": "o", "summary": "s", "containment_suggestion": "c"}


class TestConstruction:
    def test_provider_from_model(self, settings: XobcatSettings) -> None:
        assert LLMClient(settings, model="gpt-4o", api_key="sk-x").provider == "openai"
        assert (
            LLMClient(settings, model="claude-sonnet-4-20250514", api_key="sk-ant-x").provider
            == "anthropic"
        )

    def test_empty_key_rejected(self, settings: XobcatSettings) -> None:
        with pytest.raises(ValueError, match="ChatGPT API key not set"):
            LLMClient(settings, model="gpt-4o-mini", api_key="")


class TestOpenAI:
    @pytest.mark.asyncio
    async def test_parses_json_and_records_usage(self, settings: XobcatSettings) -> None:
        client = LLMClient(settings, model="gpt-4o-mini", api_key="sk-x")
        mock_openai = AsyncMock()
        mock_openai.chat.completions.create = AsyncMock(
            return_value=_openai_response(json.dumps(_SUMMARY))
        )
        client._openai_client = mock_openai
        tracker = LLMUsageTracker()

        result = await client.analyze("sys", "user", SummaryResult, tracker=tracker)

        assert result.overview == "o"
        assert tracker.total_tokens == 150
        assert client.tracker.total_tokens == 150
        kwargs = mock_openai.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["model"] == "gpt-4o-mini"
        assert "valid JSON matching this schema" in kwargs["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_stringified_sessions_array(self, settings: XobcatSettings) -> None:
        client = LLMClient(settings, model="gpt-4o-mini", api_key="sk-x")
        payload = {
            "sessions": json.dumps(
                [{"session_id": "a", "general_intent": "Billing", "session_outcome": "Contained"}]
            )
        }
        mock_openai = AsyncMock()
        mock_openai.chat.completions.create = AsyncMock(
            return_value=_openai_response(json.dumps(payload))
        )
        client._openai_client = mock_openai

        result = await client.analyze("sys", "user", FactExtractionBatchResult)
        assert result.sessions[0].general_intent == "Billing"

    @pytest.mark.asyncio
    async def test_empty_content_raises(self, settings: XobcatSettings) -> None:
        client = LLMClient(settings, model="gpt-4o-mini", api_key="sk-x")
        mock_openai = AsyncMock()
        mock_openai.chat.completions.create = AsyncMock(return_value=_openai_response(None))
        client._openai_client = mock_openai

        with pytest.raises(RuntimeError, match="Empty response"):
            await client.analyze("sys", "user", SummaryResult)

    @pytest.mark.asyncio
    async def test_truncation_raises(self, settings: XobcatSettings) -> None:
        client = LLMClient(settings, model="gpt-4o-mini", api_key="sk-x")
        mock_openai = AsyncMock()
        mock_openai.chat.completions.create = AsyncMock(
            return_value=_openai_response('{"overview": "o', finish_reason="length")
        )
        client._openai_client = mock_openai

        with pytest.raises(RuntimeError, match="max_tokens=1024"):
            await client.analyze("sys", "user", SummaryResult, max_tokens=1024)


class TestAnthropic:
    @pytest.mark.asyncio
    async def test_tool_use_output(self, settings: XobcatSettings) -> None:
        client = LLMClient(settings, model="claude-sonnet-4-20250514", api_key="sk-ant-x")
        mock_anthropic = AsyncMock()
        mock_anthropic.messages.create = AsyncMock(return_value=_anthropic_response(_SUMMARY))
        client._anthropic_client = mock_anthropic

        result = await client.analyze("sys", "user", SummaryResult)

        assert result.containment_suggestion == "c"
        assert client.tracker.input_tokens == 200
        kwargs = mock_anthropic.messages.create.call_args.kwargs
        assert kwargs["tool_choice"] == {"type": "tool", "name": "structured_output"}
        assert kwargs["max_tokens"] == settings.llm_max_tokens

    @pytest.mark.asyncio
    async def test_truncation_raises(self, settings: XobcatSettings) -> None:
        client = LLMClient(settings, model="claude-sonnet-4-20250514", api_key="sk-ant-x")
        mock_anthropic = AsyncMock()
        mock_anthropic.messages.create = AsyncMock(
            return_value=_anthropic_response({}, stop_reason="max_tokens")
        )
        client._anthropic_client = mock_anthropic

        with pytest.raises(RuntimeError, match=r"XOBCAT_LLM_MAX_TOKENS=\d+ in your \.env"):
            await client.analyze("sys", "user", SummaryResult)

    @pytest.mark.asyncio
    async def test_no_tool_block_raises(self, settings: XobcatSettings) -> None:
        client = LLMClient(settings, model="claude-sonnet-4-20250514", api_key="sk-ant-x")
        response = SimpleNamespace(
            stop_reason="end_turn",
            content=[SimpleNamespace(type="text", name=None, input=None)],
            usage=None,
        )
        mock_anthropic = AsyncMock()
        mock_anthropic.messages.create = AsyncMock(return_value=response)
        client._anthropic_client = mock_anthropic

        with pytest.raises(RuntimeError, match="No structured output"):
            await client.analyze("sys", "user", SummaryResult)
