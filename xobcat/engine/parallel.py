"""Parallel processing — concurrent streams, one round at a time.

The remaining sessions are cut into rounds of ``S × P``: in round *k*,
stream *i* labels sessions ``[k·S·P + i·P, k·S·P + (i+1)·P)``.  All streams
of a round run concurrently; the round ends when every stream has
returned, and conflict resolution runs over the whole round before the next
round is dispatched.  Round *k+1* therefore always sees the labels round *k*
settled on.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field

from xobcat.engine.conflicts import ConflictResolver, ConflictReviewer, ReviewOutcome
from xobcat.engine.extractor import ExtractionResult, FactExtractor, TokenUsage
from xobcat.errors import AnalysisCancelledError, UpstreamError, sanitize_error
from xobcat.llm.pricing import max_sessions_per_call
from xobcat.models import ChatSession, ConflictStats, SessionWithFacts

logger = logging.getLogger(__name__)

DEFAULT_STREAM_COUNT = 8
DEFAULT_SESSIONS_PER_STREAM = 4


@dataclass(frozen=True)
class ParallelPlan:
    stream_count: int
    sessions_per_stream: int
    total_rounds: int

    @property
    def round_size(self) -> int:
        return self.stream_count * self.sessions_per_stream


@dataclass
class ParallelResult:
    sessions: list[SessionWithFacts] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    rounds_completed: int = 0


class ParallelListener:
    """Receives progress events from :func:`run_parallel`.  No-op by default."""

    def step(self, text: str) -> None:
        pass

    def stream_started(self, stream_id: int) -> None:
        pass

    def stream_finished(self, stream_id: int, result: ExtractionResult | None) -> None:
        """``result`` is None when the stream failed or was cancelled."""

    def review_finished(self, round_number: int, review: ReviewOutcome) -> None:
        """Called after an LLM conflict review ran, failed or not."""

    def round_finished(self, round_number: int, stats: ConflictStats) -> None:
        pass


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def plan_parallel(
    session_count: int,
    model_id: str,
    *,
    stream_count: int = DEFAULT_STREAM_COUNT,
    sessions_per_stream: int = DEFAULT_SESSIONS_PER_STREAM,
    max_streams: int = DEFAULT_STREAM_COUNT,
) -> ParallelPlan:
    """Choose streams, sessions per stream, and round count for ``session_count``.

    Small samples (fewer than one full round) use fewer streams so each
    stream still gets a useful batch.  Batch size never exceeds what fits
    in one call for ``model_id``.
    """
    streams = max(1, min(stream_count, max_streams))
    per = max(1, sessions_per_stream)

    if 0 < session_count < streams * per:
        streams = max(1, math.ceil(session_count / per))
        per = math.ceil(session_count / streams)

    per = min(per, max_sessions_per_call(model_id))
    rounds = math.ceil(session_count / (streams * per)) if session_count > 0 else 0
    return ParallelPlan(stream_count=streams, sessions_per_stream=per, total_rounds=rounds)


def partition_streams(
    sessions: list[ChatSession], plan: ParallelPlan
) -> list[list[list[ChatSession]]]:
    """Return ``rounds[k][i]``: the sessions stream *i* labels in round *k*.

    Streams with nothing left in a round are omitted from that round.
    """
    rounds: list[list[list[ChatSession]]] = []
    size = plan.round_size
    per = plan.sessions_per_stream
    for k in range(plan.total_rounds):
        base = k * size
        chunks = [
            sessions[base + i * per : base + (i + 1) * per] for i in range(plan.stream_count)
        ]
        rounds.append([c for c in chunks if c])
    return rounds


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


async def run_parallel(
    sessions: list[ChatSession],
    plan: ParallelPlan,
    extractor: FactExtractor,
    resolver: ConflictResolver,
    *,
    listener: ParallelListener | None = None,
    check_cancelled: Callable[[], None] | None = None,
    reviewer: ConflictReviewer | None = None,
) -> ParallelResult:
    """Label ``sessions`` round by round with a barrier between rounds.

    With a ``reviewer``, a round ends with an LLM review of any candidate
    duplicate groups not reviewed yet.  A failed review leaves the labels
    as they are and processing continues.

    Raises:
        UpstreamError: any stream failed; its sibling streams are cancelled.
        AnalysisCancelledError: ``check_cancelled`` fired before a call.
    """
    listener = listener or ParallelListener()
    result = ParallelResult()
    rounds = partition_streams(sessions, plan)
    total = len(rounds)

    for k, chunks in enumerate(rounds):
        round_number = k + 1
        if check_cancelled is not None:
            check_cancelled()
        listener.step(f"Parallel processing: Round {round_number}/{total}")
        logger.info(
            "Round %d/%d: %d streams, %d sessions",
            round_number,
            total,
            len(chunks),
            sum(len(c) for c in chunks),
        )

        async def _run_stream(stream_id: int, chunk: list[ChatSession]) -> ExtractionResult:
            if check_cancelled is not None:
                check_cancelled()
            listener.stream_started(stream_id)
            outcome: ExtractionResult | None = None
            try:
                outcome = await extractor.extract(
                    chunk,
                    resolver.taxonomy,
                    batch_number=k * plan.stream_count + stream_id,
                    round_number=round_number,
                    stream_id=stream_id,
                )
            except (UpstreamError, AnalysisCancelledError):
                raise
            except Exception as exc:
                raise UpstreamError(
                    f"Stream {stream_id} failed in round {round_number}: "
                    f"{sanitize_error(str(exc))}"
                ) from exc
            finally:
                listener.stream_finished(stream_id, outcome)
            return outcome

        tasks = [
            asyncio.create_task(_run_stream(i, chunk)) for i, chunk in enumerate(chunks, start=1)
        ]
        try:
            outcomes = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        # Barrier passed: resolve the whole round before dispatching the next
        listener.step(f"Conflict resolution after round {round_number}")
        round_sessions = [s for outcome in outcomes for s in outcome.sessions]
        resolution = resolver.resolve(round_sessions)
        result.sessions.extend(round_sessions)
        for outcome in outcomes:
            result.usage = result.usage + outcome.usage
        result.rounds_completed = round_number

        logger.info(
            "Round %d conflicts: %d found, %d rewrites",
            round_number,
            resolution.conflicts_found,
            resolution.rewrites,
        )

        review_failed = False
        if reviewer is not None and reviewer.pending(resolver):
            review = await reviewer.review(
                resolver, on_step=listener.step, check_cancelled=check_cancelled
            )
            result.usage = result.usage + review.usage
            if review.merged:
                resolver.resolve(result.sessions)
            listener.review_finished(round_number, review)
            review_failed = review.error is not None

        listener.round_finished(round_number, resolver.stats())
        if review_failed:
            listener.step(f"Conflict resolution failed (round {round_number})")
        else:
            listener.step(f"Conflict resolution complete (round {round_number})")

    return result
