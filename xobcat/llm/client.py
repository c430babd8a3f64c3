"""Multi-provider LLM client with structured output support."""

from __future__ import annotations

import json
import logging
from typing import TypeVar

from pydantic import BaseModel

from xobcat.config import XobcatSettings
from xobcat.llm.pricing import provider_for_model

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def _truncated_message(max_tokens: int) -> str:
    return (
        f"LLM response was truncated (max_tokens={max_tokens}). "
        f"Set XOBCAT_LLM_MAX_TOKENS={max_tokens * 2} in your .env to raise the limit."
    )


class LLMUsageTracker:
    """Accumulates token usage across multiple LLM calls.

    Safe to share across concurrent asyncio tasks (single-threaded event loop).
    """

    def __init__(self) -> None:
        self.input_tokens: int = 0
        self.output_tokens: int = 0
        self.calls: int = 0

    def record(self, input_tokens: int, output_tokens: int) -> None:
        """Record token usage from a single API call."""
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.calls += 1

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMClient:
    """Unified interface for LLM calls with Pydantic-validated structured output.

    Supports ChatGPT (OpenAI) and Claude (Anthropic).  The provider follows
    from the model id; the API key is supplied per analysis job rather than
    read from settings.
    """

    def __init__(self, settings: XobcatSettings, *, model: str, api_key: str) -> None:
        self.settings = settings
        self.model = model
        self.provider = provider_for_model(model)
        self._api_key = api_key
        self._anthropic_client: object | None = None
        self._openai_client: object | None = None
        self.tracker = LLMUsageTracker()

        self._validate_api_key()

    def _validate_api_key(self) -> None:
        if not self._api_key:
            name = "Claude" if self.provider == "anthropic" else "ChatGPT"
            raise ValueError(f"{name} API key not set for model {self.model}")

    async def analyze(
        self,
        system_prompt: str,
        user_prompt: str,
        response_model: type[T],
        max_tokens: int | None = None,
        tracker: LLMUsageTracker | None = None,
    ) -> T:
        """Send a prompt and parse the response into a Pydantic model.

        Args:
            system_prompt: System-level instructions.
            user_prompt: The user prompt with the actual task.
            response_model: Pydantic model class for structured output.
            max_tokens: Override max tokens (defaults to settings.llm_max_tokens).
            tracker: Extra tracker that receives this call's usage, so
                concurrent callers can attribute tokens to their own batch.
                The client's own ``tracker`` always records as well.

        Returns:
            An instance of response_model populated from the LLM response.
        """
        max_tokens = max_tokens or self.settings.llm_max_tokens

        if self.provider == "anthropic":
            return await self._analyze_anthropic(
                system_prompt, user_prompt, response_model, max_tokens, tracker
            )
        elif self.provider == "openai":
            return await self._analyze_openai(
                system_prompt, user_prompt, response_model, max_tokens, tracker
            )
        else:
            raise ValueError(f"Unsupported LLM provider: {self.provider}")

    def _record(
        self, input_tokens: int, output_tokens: int, tracker: LLMUsageTracker | None
    ) -> None:
        self.tracker.record(input_tokens, output_tokens)
        if tracker is not None:
            tracker.record(input_tokens, output_tokens)

    async def _analyze_anthropic(
        self,
        system_prompt: str,
        user_prompt: str,
        response_model: type[T],
        max_tokens: int,
        tracker: LLMUsageTracker | None,
    ) -> T:
        """Call Anthropic API with tool use for structured output."""
        import anthropic

        if self._anthropic_client is None:
            self._anthropic_client = anthropic.AsyncAnthropic(api_key=self._api_key)

        client: anthropic.AsyncAnthropic = self._anthropic_client  # type: ignore[assignment]

        # Build a tool definition from the Pydantic schema
        schema = response_model.model_json_schema()
        tool_name = "structured_output"

        tool = {
            "name": tool_name,
            "description": f"Return the analysis result as a {response_model.__name__} object.",
            "input_schema": schema,
        }

        logger.debug("Calling Anthropic API: model=%s", self.model)

        response = await client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=self.settings.llm_temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            tools=[tool],
            tool_choice={"type": "tool", "name": tool_name},
        )

        if hasattr(response, "usage") and response.usage:
            self._record(response.usage.input_tokens, response.usage.output_tokens, tracker)

        if getattr(response, "stop_reason", None) == "max_tokens":
            raise RuntimeError(_truncated_message(max_tokens))

        for block in response.content:
            if block.type == "tool_use" and block.name == tool_name:
                return response_model.model_validate(block.input)

        raise RuntimeError("No structured output found in Anthropic response")

    async def _analyze_openai(
        self,
        system_prompt: str,
        user_prompt: str,
        response_model: type[T],
        max_tokens: int,
        tracker: LLMUsageTracker | None,
    ) -> T:
        """Call OpenAI API with JSON mode for structured output."""
        import openai

        if self._openai_client is None:
            self._openai_client = openai.AsyncOpenAI(api_key=self._api_key)

        client: openai.AsyncOpenAI = self._openai_client  # type: ignore[assignment]

        # Add JSON schema instruction to the system prompt
        schema = response_model.model_json_schema()
        schema_instruction = (
            f"\n\nYou must respond with valid JSON matching this schema:\n"
            f"```json\n{json.dumps(schema, indent=2)}\n```"
        )

        logger.debug("Calling OpenAI API: model=%s", self.model)

        response = await client.chat.completions.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=self.settings.llm_temperature,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": system_prompt + schema_instruction},
                {"role": "user", "content": user_prompt},
            ],
        )

        if hasattr(response, "usage") and response.usage:
            self._record(
                response.usage.prompt_tokens, response.usage.completion_tokens, tracker
            )

        if getattr(response.choices[0], "finish_reason", None) == "length":
            raise RuntimeError(_truncated_message(max_tokens))

        content = response.choices[0].message.content
        if content is None:
            raise RuntimeError("Empty response from OpenAI")

        data = json.loads(content)
        return response_model.model_validate(data)
