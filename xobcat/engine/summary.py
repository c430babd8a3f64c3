"""Analysis summary — local statistics plus an LLM-written report."""

from __future__ import annotations

import logging
import random
from collections import Counter
from typing import TYPE_CHECKING

from xobcat.models import AnalysisSummary, LabelCount, SessionWithFacts, SummaryStatistics

if TYPE_CHECKING:
    from xobcat.llm.client import LLMClient, LLMUsageTracker

logger = logging.getLogger(__name__)

TOP_N = 5
SAMPLE_TRANSCRIPTS = 5


def _top(counter: Counter[str], denominator: int, n: int = TOP_N) -> list[LabelCount]:
    return [
        LabelCount(label=label, count=count, percentage=round(100 * count / denominator, 1))
        for label, count in counter.most_common(n)
    ]


def compute_statistics(sessions: list[SessionWithFacts]) -> SummaryStatistics:
    total = len(sessions)
    if total == 0:
        return SummaryStatistics()

    transfers = [s for s in sessions if s.facts.session_outcome == "Transfer"]
    intents = Counter(s.facts.general_intent for s in sessions)
    reasons = Counter(s.facts.transfer_reason for s in transfers if s.facts.transfer_reason)

    return SummaryStatistics(
        total_sessions=total,
        transfer_rate=round(100 * len(transfers) / total, 1),
        containment_rate=round(100 * (total - len(transfers)) / total, 1),
        average_session_length=round(sum(s.duration_seconds for s in sessions) / total, 1),
        average_messages_per_session=round(sum(s.message_count for s in sessions) / total, 1),
        top_intents=_top(intents, total),
        top_transfer_reasons=_top(reasons, len(transfers) or 1),
    )


# ---------------------------------------------------------------------------
# Prompt formatting
# ---------------------------------------------------------------------------


def _breakdown(counter: Counter[str], total: int) -> str:
    if not counter:
        return "  (none)"
    return "\n".join(
        f"  - {label}: {count} sessions ({100 * count / total:.1f}%)"
        for label, count in counter.most_common()
    )


def _analysis_period(sessions: list[SessionWithFacts]) -> str:
    if not sessions:
        return "No sessions available"
    times = sorted(s.start_time for s in sessions)
    first, last = times[0], times[-1]
    fmt = "%b %d, %Y"
    if first.date() == last.date():
        return first.strftime(fmt)
    return f"{first.strftime(fmt)} - {last.strftime(fmt)}"


def _sample_transcripts(sessions: list[SessionWithFacts], rng: random.Random) -> str:
    picked = rng.sample(sessions, min(SAMPLE_TRANSCRIPTS, len(sessions)))
    blocks: list[str] = []
    for i, s in enumerate(picked, start=1):
        lines = [
            f"### Sample {i}: {s.facts.general_intent} ({s.facts.session_outcome})",
            f"**Session ID:** {s.session_id}",
            "",
        ]
        lines.extend(
            f"**{'User' if m.message_type == 'user' else 'Bot'}**: {m.message}" for m in s.messages
        )
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def build_summary_prompt_fields(
    sessions: list[SessionWithFacts], rng: random.Random | None = None
) -> dict[str, str]:
    """Values for the ``analysis-summary`` prompt placeholders."""
    rng = rng or random.Random()
    total = len(sessions)
    transfers = [s for s in sessions if s.facts.session_outcome == "Transfer"]
    stats = compute_statistics(sessions)
    return {
        "total_sessions": str(total),
        "analysis_period": _analysis_period(sessions),
        "transfer_rate": f"{stats.transfer_rate:.1f}",
        "transfer_count": str(len(transfers)),
        "contained_count": str(total - len(transfers)),
        "average_minutes": f"{stats.average_session_length / 60:.1f}",
        "average_messages": f"{stats.average_messages_per_session:.1f}",
        "intent_breakdown": _breakdown(Counter(s.facts.general_intent for s in sessions), total),
        "transfer_breakdown": _breakdown(
            Counter(s.facts.transfer_reason for s in transfers if s.facts.transfer_reason), total
        ),
        "dropoff_breakdown": _breakdown(
            Counter(s.facts.drop_off_location for s in transfers if s.facts.drop_off_location),
            total,
        ),
        "session_notes": "\n".join(
            f"{i}. {s.facts.notes}" for i, s in enumerate(sessions, start=1) if s.facts.notes
        ),
        "sample_transcripts": _sample_transcripts(sessions, rng),
    }


async def generate_summary(
    sessions: list[SessionWithFacts],
    client: LLMClient,
    *,
    tracker: LLMUsageTracker | None = None,
    rng: random.Random | None = None,
) -> AnalysisSummary:
    """Ask the LLM for overview, detailed analysis, and a containment suggestion."""
    from xobcat.llm.prompts import get_prompt
    from xobcat.llm.structured import SummaryResult

    prompt_pair = get_prompt("analysis-summary")
    result = await client.analyze(
        system_prompt=prompt_pair.system,
        user_prompt=prompt_pair.user.format(**build_summary_prompt_fields(sessions, rng)),
        response_model=SummaryResult,
        tracker=tracker,
    )
    logger.info("Generated analysis summary for %d sessions", len(sessions))
    return AnalysisSummary(
        overview=result.overview.strip(),
        summary=result.summary.strip(),
        containment_suggestion=result.containment_suggestion.strip(),
        sessions_analyzed=len(sessions),
        statistics=compute_statistics(sessions),
    )
