"""Fact extractor adapter — labels a batch of sessions against the taxonomy.

The engine only depends on the :class:`FactExtractor` protocol.
:class:`LLMFactExtractor` is the production implementation; tests plug in
deterministic fakes.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from xobcat.errors import UpstreamError, sanitize_error
from xobcat.llm.pricing import estimate_cost
from xobcat.models import AnalysisMetadata, ChatSession, SessionFacts, SessionWithFacts

if TYPE_CHECKING:
    from xobcat.engine.taxonomy import Taxonomy
    from xobcat.llm.client import LLMClient
    from xobcat.llm.structured import SessionFactsItem

logger = logging.getLogger(__name__)

FALLBACK_INTENT = "Unknown"


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0  # USD
    model: str = ""

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            cost=self.cost + other.cost,
            model=self.model or other.model,
        )


@dataclass
class ExtractionResult:
    sessions: list[SessionWithFacts]
    usage: TokenUsage


class FactExtractor(Protocol):
    async def extract(
        self,
        sessions: list[ChatSession],
        taxonomy: Taxonomy,
        *,
        batch_number: int = 0,
        round_number: int = 0,
        stream_id: int = 0,
    ) -> ExtractionResult:
        """Return one SessionWithFacts per input session, in input order."""
        ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_facts(
    general_intent: str,
    session_outcome: str,
    transfer_reason: str = "",
    drop_off_location: str = "",
    notes: str = "",
) -> SessionFacts:
    """Build SessionFacts, blanking transfer fields for contained sessions."""
    outcome = "Transfer" if session_outcome.strip().lower().startswith("transfer") else "Contained"
    if outcome == "Contained":
        transfer_reason = ""
        drop_off_location = ""
    return SessionFacts(
        general_intent=general_intent.strip() or FALLBACK_INTENT,
        session_outcome=outcome,
        transfer_reason=transfer_reason.strip(),
        drop_off_location=drop_off_location.strip(),
        notes=notes.strip(),
    )


def fallback_facts() -> SessionFacts:
    return SessionFacts(
        general_intent=FALLBACK_INTENT,
        session_outcome="Contained",
        notes="Session could not be classified",
    )


def format_transcript(session: ChatSession, max_chars: int = 0) -> str:
    """Render a session as ``role: text`` lines, truncated to ``max_chars``."""
    text = "\n".join(f"{m.message_type}: {m.message}" for m in session.messages)
    if max_chars and len(text) > max_chars:
        text = text[:max_chars] + "\n[transcript truncated]"
    return text


def build_session_batch(sessions: list[ChatSession], max_chars: int = 0) -> str:
    blocks: list[str] = []
    for i, session in enumerate(sessions, start=1):
        blocks.append(
            f"--- Session {i} ---\n"
            f"Session ID: {session.session_id}\n"
            f"Transcript:\n{format_transcript(session, max_chars)}"
        )
    return "\n\n".join(blocks)


def attach_facts(
    session: ChatSession, facts: SessionFacts, metadata: AnalysisMetadata
) -> SessionWithFacts:
    return SessionWithFacts(
        **session.model_dump(include=set(ChatSession.model_fields)),
        facts=facts,
        analysis_metadata=metadata,
    )


# ---------------------------------------------------------------------------
# LLM implementation
# ---------------------------------------------------------------------------


class LLMFactExtractor:
    """Classify sessions with one structured LLM call per batch."""

    def __init__(
        self,
        client: LLMClient,
        *,
        additional_context: str = "",
        max_transcript_chars: int = 8000,
    ) -> None:
        self.client = client
        self.additional_context = additional_context
        self.max_transcript_chars = max_transcript_chars

    async def extract(
        self,
        sessions: list[ChatSession],
        taxonomy: Taxonomy,
        *,
        batch_number: int = 0,
        round_number: int = 0,
        stream_id: int = 0,
    ) -> ExtractionResult:
        from xobcat.llm.client import LLMUsageTracker
        from xobcat.llm.prompts import get_prompt
        from xobcat.llm.structured import FactExtractionBatchResult

        if not sessions:
            return ExtractionResult(sessions=[], usage=TokenUsage(model=self.client.model))

        prompt_pair = get_prompt("fact-extraction")
        context_section = (
            f"\nAdditional context and instructions from the user: {self.additional_context}\n"
            if self.additional_context
            else ""
        )
        user_prompt = prompt_pair.user.format(
            context_section=context_section,
            taxonomy_section=taxonomy.format_for_prompt(),
            sessions_text=build_session_batch(sessions, self.max_transcript_chars),
        )

        tracker = LLMUsageTracker()
        started = time.monotonic()
        try:
            result = await self.client.analyze(
                system_prompt=prompt_pair.system,
                user_prompt=user_prompt,
                response_model=FactExtractionBatchResult,
                tracker=tracker,
            )
        except Exception as exc:
            raise UpstreamError(
                f"Fact extraction failed (round {round_number}, stream {stream_id}): "
                f"{sanitize_error(str(exc))}"
            ) from exc
        elapsed_ms = int((time.monotonic() - started) * 1000)

        model = self.client.model
        usage = TokenUsage(
            prompt_tokens=tracker.input_tokens,
            completion_tokens=tracker.output_tokens,
            cost=estimate_cost(model, tracker.input_tokens, tracker.output_tokens) or 0.0,
            model=model,
        )

        by_id: dict[str, SessionFactsItem] = {item.session_id: item for item in result.sessions}
        tokens_each = usage.total_tokens // len(sessions)

        labelled: list[SessionWithFacts] = []
        for session in sessions:
            item = by_id.get(session.session_id)
            if item is None:
                logger.warning(
                    "No classification returned for session %s (round %d, stream %d)",
                    session.session_id,
                    round_number,
                    stream_id,
                )
                facts = fallback_facts()
            else:
                facts = normalize_facts(
                    item.general_intent,
                    item.session_outcome,
                    item.transfer_reason,
                    item.drop_off_location,
                    item.notes,
                )
            metadata = AnalysisMetadata(
                tokens_used=tokens_each,
                processing_time=elapsed_ms,
                batch_number=batch_number,
                round_number=round_number,
                stream_id=stream_id,
                model=model,
            )
            labelled.append(attach_facts(session, facts, metadata))

        return ExtractionResult(sessions=labelled, usage=usage)
