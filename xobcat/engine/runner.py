"""Auto-Analyze job runner — drives one job through every phase.

:func:`run_analysis_job` is the coroutine spawned by
``asyncio.create_task()`` when a job starts.  Nothing it raises escapes:
failures, cancellation, and empty samples all end up in the job's progress
record, where the next poll finds them.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING

from xobcat.engine.conflicts import ConflictResolver, ConflictReviewer, ReviewOutcome
from xobcat.engine.discovery import run_discovery
from xobcat.engine.extractor import ExtractionResult, FactExtractor, TokenUsage
from xobcat.engine.parallel import ParallelListener, plan_parallel, run_parallel
from xobcat.engine.sampler import build_windows, parse_start, sample_sessions
from xobcat.engine.state import CANCELLED_MESSAGE, JobStateMachine
from xobcat.engine.summary import generate_summary
from xobcat.errors import AnalysisCancelledError, EmptyResultError
from xobcat.llm.pricing import estimate_cost
from xobcat.logging import bind_analysis_id, unbind_analysis_id
from xobcat.models import ConflictStats, DiscoveryStats, Phase, SamplingProgress

if TYPE_CHECKING:
    from xobcat.config import XobcatSettings
    from xobcat.engine.sampler import TimeWindow
    from xobcat.llm.client import LLMClient
    from xobcat.sources import SessionSource

logger = logging.getLogger(__name__)

NO_SESSIONS_MESSAGE = (
    "No sessions found in the selected time range. "
    "Try a different date or time."
)


class _StateListener(ParallelListener):
    """Feeds parallel-stage events into the state machine."""

    def __init__(self, machine: JobStateMachine, already_processed: int) -> None:
        self.machine = machine
        self.processed = already_processed
        self.active = 0

    def step(self, text: str) -> None:
        self.machine.update(current_step=text)

    def stream_started(self, stream_id: int) -> None:
        self.active += 1
        self.machine.update(streams_active=self.active)

    def stream_finished(self, stream_id: int, result: ExtractionResult | None) -> None:
        self.active -= 1
        if result is None:
            self.machine.update(streams_active=self.active)
            return
        self.processed += len(result.sessions)
        self.machine.add_usage(result.usage)
        self.machine.update(streams_active=self.active, sessions_processed=self.processed)

    def review_finished(self, round_number: int, review: ReviewOutcome) -> None:
        self.machine.add_usage(review.usage)

    def round_finished(self, round_number: int, stats: ConflictStats) -> None:
        self.machine.update(rounds_completed=round_number, conflict_stats=stats)


async def run_analysis_job(
    machine: JobStateMachine,
    *,
    source: SessionSource,
    extractor: FactExtractor,
    settings: XobcatSettings,
    llm_client: LLMClient | None = None,
    rng: random.Random | None = None,
) -> None:
    """Execute sampling → discovery → parallel rounds → consolidation → summary.

    ``llm_client`` is used for the between-round conflict review and the
    summary; pass None to skip both.
    """
    job = machine.job
    config = job.config
    rng = rng or random.Random()
    log_token = bind_analysis_id(job.analysis_id)

    try:
        machine.update(current_step="Initializing parallel analysis", model_id=config.model_id)

        # ── Sampling ───────────────────────────────────────────────
        start = parse_start(config.start_date, config.start_time, settings.timezone)
        windows = build_windows(start)

        def _on_window(step: str, found: int, searched: int, window: TimeWindow) -> None:
            machine.update(
                current_step=step,
                sessions_found=found,
                sampling_progress=SamplingProgress(
                    current_window_index=searched,
                    total_windows=len(windows),
                    current_window_label=window.label,
                    target_session_count=config.session_count,
                ),
            )

        try:
            sampled = await sample_sessions(
                source,
                start,
                config.session_count,
                windows=windows,
                on_window=_on_window,
                rng=rng,
                min_messages=settings.min_messages_per_session,
            )
        except EmptyResultError as exc:
            logger.info("Analysis %s: %s", job.analysis_id, exc)
            job.message = NO_SESSIONS_MESSAGE
            machine.update(no_sessions_found=True)
            machine.complete("No sessions found")
            return

        sessions = sampled.sessions
        machine.check_cancelled()
        machine.update(sessions_found=sampled.total_found, total_sessions=len(sessions))
        logger.info(
            "Analysis %s sampled %d of %d sessions from %d windows",
            job.analysis_id,
            len(sessions),
            sampled.total_found,
            len(sampled.windows_used),
        )

        # ── Discovery ──────────────────────────────────────────────
        machine.advance(Phase.DISCOVERY, "Selecting diverse sessions for discovery...")
        resolver = ConflictResolver(cutoff=settings.conflict_similarity_cutoff)

        def _on_discovery(
            step: str, processed: int, stats: DiscoveryStats, usage: TokenUsage | None
        ) -> None:
            if usage is not None:
                machine.add_usage(usage)
            machine.update(current_step=step, sessions_processed=processed, discovery_stats=stats)

        discovery = await run_discovery(
            sessions,
            extractor,
            resolver,
            batch_size=settings.discovery_batch_size,
            on_progress=_on_discovery,
            check_cancelled=machine.check_cancelled,
            rng=rng,
        )
        machine.check_cancelled()

        # ── Parallel rounds ────────────────────────────────────────
        plan = plan_parallel(
            len(discovery.remaining),
            config.model_id,
            stream_count=settings.stream_count,
            sessions_per_stream=settings.sessions_per_stream,
            max_streams=settings.max_streams,
        )
        machine.advance(Phase.PARALLEL_PROCESSING, "Initializing parallel processing")
        machine.update(total_rounds=plan.total_rounds)
        logger.info(
            "Analysis %s parallel plan: %d streams × %d sessions, %d rounds",
            job.analysis_id,
            plan.stream_count,
            plan.sessions_per_stream,
            plan.total_rounds,
        )

        reviewer = None
        if settings.conflict_review and llm_client is not None:
            reviewer = ConflictReviewer(
                llm_client,
                model_id=config.model_id,
                groups_per_batch=settings.conflict_review_batch_size,
            )

        parallel = await run_parallel(
            discovery.remaining,
            plan,
            extractor,
            resolver,
            listener=_StateListener(machine, len(discovery.processed)),
            check_cancelled=machine.check_cancelled,
            reviewer=reviewer,
        )
        machine.check_cancelled()

        # ── Final consolidation ────────────────────────────────────
        machine.advance(Phase.CONFLICT_RESOLUTION, "Consolidating classifications")
        labelled = discovery.processed + parallel.sessions
        resolver.consolidate(labelled)
        machine.update(conflict_stats=resolver.stats(), sessions_processed=len(labelled))
        machine.check_cancelled()

        # ── Summary ────────────────────────────────────────────────
        summary = None
        if settings.generate_summary and llm_client is not None and labelled:
            machine.advance(Phase.GENERATING_SUMMARY, "Generating analysis summary...")
            from xobcat.llm.client import LLMUsageTracker

            tracker = LLMUsageTracker()
            try:
                summary = await generate_summary(labelled, llm_client, tracker=tracker, rng=rng)
            except Exception:
                logger.exception("Summary generation failed for analysis %s", job.analysis_id)
            machine.add_usage(
                TokenUsage(
                    prompt_tokens=tracker.input_tokens,
                    completion_tokens=tracker.output_tokens,
                    cost=estimate_cost(config.model_id, tracker.input_tokens, tracker.output_tokens)
                    or 0.0,
                    model=config.model_id,
                )
            )
            machine.check_cancelled()

        job.sessions = labelled
        job.taxonomy = resolver.taxonomy.snapshot()
        job.summary = summary
        machine.complete()
        logger.info(
            "Analysis %s complete: %d sessions, %d tokens, $%.4f",
            job.analysis_id,
            len(labelled),
            machine.progress.tokens_used,
            machine.progress.estimated_cost,
        )

    except AnalysisCancelledError:
        logger.info("Analysis %s cancelled", job.analysis_id)
        machine.cancel()
    except asyncio.CancelledError:
        machine.cancel()
        raise
    except Exception as exc:
        logger.exception("Analysis %s failed: %s", job.analysis_id, exc)
        if job.cancel_requested:
            machine.cancel()
        else:
            machine.fail(str(exc) or type(exc).__name__)
    finally:
        unbind_analysis_id(log_token)


__all__ = ["CANCELLED_MESSAGE", "NO_SESSIONS_MESSAGE", "run_analysis_job"]
