"""Tests for LLM usage tracking, cost estimation, and batch sizing."""

from __future__ import annotations

from xobcat.engine.extractor import TokenUsage
from xobcat.llm.client import LLMUsageTracker
from xobcat.llm.pricing import (
    MODELS,
    PRICING_URLS,
    estimate_cost,
    max_sessions_per_call,
    provider_for_model,
)

# ---------------------------------------------------------------------------
# LLMUsageTracker
# ---------------------------------------------------------------------------


class TestLLMUsageTracker:
    def test_starts_at_zero(self) -> None:
        t = LLMUsageTracker()
        assert t.input_tokens == 0
        assert t.output_tokens == 0
        assert t.calls == 0
        assert t.total_tokens == 0

    def test_record_accumulates(self) -> None:
        t = LLMUsageTracker()
        t.record(100, 50)
        t.record(200, 75)
        assert t.input_tokens == 300
        assert t.output_tokens == 125
        assert t.calls == 2
        assert t.total_tokens == 425


class TestTokenUsage:
    def test_addition(self) -> None:
        total = TokenUsage(100, 10, 0.5, "gpt-4o") + TokenUsage(50, 5, 0.25)
        assert total.prompt_tokens == 150
        assert total.completion_tokens == 15
        assert total.total_tokens == 165
        assert total.cost == 0.75
        assert total.model == "gpt-4o"


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------


class TestEstimateCost:
    def test_known_model_sonnet(self) -> None:
        # claude-sonnet-4-20250514: $3/MTok in, $15/MTok out
        cost = estimate_cost("claude-sonnet-4-20250514", 1_000_000, 1_000_000)
        assert cost == 3.0 + 15.0

    def test_known_model_gpt4o_mini(self) -> None:
        cost = estimate_cost("gpt-4o-mini", 10_000, 2_000)
        assert cost is not None
        expected = (10_000 * 0.15 + 2_000 * 0.60) / 1_000_000
        assert abs(cost - expected) < 1e-9

    def test_unknown_model_returns_none(self) -> None:
        assert estimate_cost("unknown-model-v99", 1000, 1000) is None

    def test_zero_tokens(self) -> None:
        assert estimate_cost("gpt-4o", 0, 0) == 0.0

    def test_pricing_urls_cover_every_provider(self) -> None:
        assert {info.provider for info in MODELS.values()} <= set(PRICING_URLS)


class TestProviderForModel:
    def test_catalogue_models(self) -> None:
        assert provider_for_model("gpt-4.1-nano") == "openai"
        assert provider_for_model("claude-haiku-3-5-20241022") == "anthropic"

    def test_unknown_models_guess_by_prefix(self) -> None:
        assert provider_for_model("claude-future") == "anthropic"
        assert provider_for_model("o9-preview") == "openai"


class TestMaxSessionsPerCall:
    def test_large_context_capped(self) -> None:
        assert max_sessions_per_call("gpt-4.1") == 50

    def test_128k_context(self) -> None:
        # (128000 - 5500) / (1500 * 1.2) = 68 → capped at 50
        assert max_sessions_per_call("gpt-4o") == 50

    def test_unknown_model_is_conservative(self) -> None:
        assert max_sessions_per_call("mystery") == 5
