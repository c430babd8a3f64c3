"""Model catalogue, pricing, and per-call batch sizing.

Prices are approximate and may be outdated; they only feed the
``estimatedCost`` field shown while a job runs.
"""

from __future__ import annotations

import math
from typing import NamedTuple


class ModelInfo(NamedTuple):
    provider: str  # "openai" or "anthropic"
    name: str
    input_per_million: float  # USD
    output_per_million: float  # USD
    context_window: int  # tokens


MODELS: dict[str, ModelInfo] = {
    # OpenAI
    "gpt-4o": ModelInfo("openai", "GPT-4o", 2.50, 10.0, 128_000),
    "gpt-4o-mini": ModelInfo("openai", "GPT-4o mini", 0.15, 0.60, 128_000),
    "gpt-4.1": ModelInfo("openai", "GPT-4.1 (base)", 2.00, 8.00, 1_047_576),
    "gpt-4.1-mini": ModelInfo("openai", "GPT-4.1 mini", 0.40, 1.60, 1_047_576),
    "gpt-4.1-nano": ModelInfo("openai", "GPT-4.1 nano", 0.10, 0.40, 1_047_576),
    # Anthropic (Claude)
    "claude-sonnet-4-20250514": ModelInfo("anthropic", "Claude Sonnet 4", 3.0, 15.0, 200_000),
    "claude-haiku-3-5-20241022": ModelInfo("anthropic", "Claude Haiku 3.5", 0.80, 4.0, 200_000),
}

PRICING_URLS: dict[str, str] = {
    "anthropic": "https://docs.anthropic.com/en/docs/about-claude/models",
    "openai": "https://platform.openai.com/docs/pricing",
}

# Batch sizing: empirical averages from chatbot transcripts
_AVG_TOKENS_PER_SESSION = 1500
_SAFETY_MARGIN = 1.2
_RESERVED_TOKENS = 5500  # system prompt, taxonomy, schema, response buffer
_MAX_SESSIONS_CAP = 50  # response quality drops above this
_UNKNOWN_MODEL_SESSIONS = 5


def estimate_cost(
    model: str, input_tokens: int, output_tokens: int,
) -> float | None:
    """Return estimated cost in USD, or None if model not in pricing table."""
    info = MODELS.get(model)
    if info is None:
        return None
    return (
        input_tokens * info.input_per_million + output_tokens * info.output_per_million
    ) / 1_000_000


def provider_for_model(model: str) -> str:
    """Pick the LLM provider for a model id (unknown ids go to OpenAI)."""
    info = MODELS.get(model)
    if info is not None:
        return info.provider
    return "anthropic" if model.startswith("claude") else "openai"


def max_sessions_per_call(model: str) -> int:
    """How many sessions fit in one extraction call for this model."""
    info = MODELS.get(model)
    if info is None:
        return _UNKNOWN_MODEL_SESSIONS
    available = info.context_window - _RESERVED_TOKENS
    fit = math.floor(available / (_AVG_TOKENS_PER_SESSION * _SAFETY_MARGIN))
    return max(min(fit, _MAX_SESSIONS_CAP), 1)
