"""Job state machine — the single writer of a job's progress record.

Stages never touch :class:`~xobcat.models.AnalysisProgress` directly; they
call the machine, which enforces the lifecycle rules:

- phases only move forward through ``PHASE_ORDER`` or to ``error``
- counters never decrease, and ``sessions_processed ≤ total_sessions``
- once ``complete`` or ``error``, further writes are ignored

After every write the projected percentage is recomputed and the running
maximum stored on the job, so polls never see the bar go backwards.
Writes contain no ``await``, so on one event loop they never interleave.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime

from xobcat.engine.extractor import TokenUsage
from xobcat.engine.progress import project_percentage
from xobcat.engine.status_text import normalize_status
from xobcat.errors import AnalysisCancelledError, InvalidTransitionError, sanitize_error
from xobcat.models import (
    PHASE_ORDER,
    TERMINAL_PHASES,
    AnalysisConfig,
    AnalysisProgress,
    AnalysisSummary,
    Phase,
    SessionWithFacts,
    TaxonomySnapshot,
    utcnow,
)

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Analysis cancelled by user"
COMPLETED_STEP = "Analysis completed successfully"

_MONOTONIC_FIELDS = frozenset(
    {
        "sessions_found",
        "sessions_processed",
        "total_sessions",
        "tokens_used",
        "estimated_cost",
        "rounds_completed",
        "total_rounds",
    }
)
_FREE_FIELDS = frozenset(
    {
        "current_step",
        "streams_active",
        "sampling_progress",
        "discovery_stats",
        "conflict_stats",
        "no_sessions_found",
        "model_id",
    }
)


@dataclass
class AnalysisJob:
    """One Auto-Analyze run and everything it accumulates."""

    analysis_id: str
    config: AnalysisConfig
    progress: AnalysisProgress
    max_percentage: int = 0
    cancel_requested: bool = False
    sessions: list[SessionWithFacts] = field(default_factory=list)
    taxonomy: TaxonomySnapshot = field(default_factory=TaxonomySnapshot)
    summary: AnalysisSummary | None = None
    message: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    task: asyncio.Task[None] | None = field(default=None, repr=False)


class JobStateMachine:
    def __init__(self, job: AnalysisJob) -> None:
        self.job = job

    @property
    def progress(self) -> AnalysisProgress:
        return self.job.progress

    @property
    def is_terminal(self) -> bool:
        return self.progress.phase in TERMINAL_PHASES

    def _reproject(self) -> None:
        self.job.max_percentage = project_percentage(self.progress, self.job.max_percentage)

    def _reject(self, what: str) -> bool:
        logger.debug(
            "Ignoring %s on %s job %s", what, self.progress.phase.value, self.job.analysis_id
        )
        return False

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def advance(self, phase: Phase, step: str | None = None) -> None:
        """Move to a later lifecycle phase.

        Raises:
            InvalidTransitionError: ``phase`` is not after the current one,
                is ``error`` (use :meth:`fail`), or the job already finished.
        """
        current = self.progress.phase
        if current in TERMINAL_PHASES:
            raise InvalidTransitionError(f"Job already {current.value}; cannot enter {phase.value}")
        if phase is Phase.ERROR:
            raise InvalidTransitionError("Use fail() or cancel() to enter the error phase")
        if PHASE_ORDER.index(phase) <= PHASE_ORDER.index(current):
            raise InvalidTransitionError(f"Cannot move from {current.value} to {phase.value}")

        self.progress.phase = phase
        if step is not None:
            self.progress.current_step = step
        if phase is Phase.COMPLETE:
            self.progress.end_time = utcnow()
            self.progress.streams_active = 0
        logger.info("Analysis %s → %s", self.job.analysis_id, phase.value)
        self._reproject()

    def update(self, **fields: object) -> bool:
        """Write progress fields.  Returns False if the job is already finished.

        Counter fields are clamped so they never decrease.
        """
        if self.is_terminal:
            return self._reject("update")

        progress = self.progress
        for name, value in fields.items():
            if name in _MONOTONIC_FIELDS:
                value = max(getattr(progress, name), value)  # type: ignore[call-overload]
            elif name not in _FREE_FIELDS:
                raise ValueError(f"Unknown or read-only progress field: {name}")
            setattr(progress, name, value)

        if progress.total_sessions and progress.sessions_processed > progress.total_sessions:
            progress.sessions_processed = progress.total_sessions
        self._reproject()
        return True

    def add_usage(self, usage: TokenUsage) -> bool:
        if self.is_terminal:
            return self._reject("usage")
        self.progress.tokens_used += usage.total_tokens
        self.progress.estimated_cost += usage.cost
        self._reproject()
        return True

    def fail(self, message: str) -> bool:
        """Enter ``error`` with ``message``.  The percentage freezes where it was."""
        if self.is_terminal:
            return self._reject("fail")
        self.progress.phase = Phase.ERROR
        self.progress.error = sanitize_error(message)
        self.progress.streams_active = 0
        self.progress.end_time = utcnow()
        logger.warning("Analysis %s failed: %s", self.job.analysis_id, self.progress.error)
        self._reproject()
        return True

    def cancel(self) -> bool:
        """Request cancellation.  Returns True if a running job was cancelled."""
        self.job.cancel_requested = True
        if self.is_terminal:
            return False
        self.progress.current_step = CANCELLED_MESSAGE
        self.fail(CANCELLED_MESSAGE)
        return True

    def complete(self, step: str = COMPLETED_STEP) -> None:
        self.advance(Phase.COMPLETE, step)

    def check_cancelled(self) -> None:
        """Cancellation checkpoint for stages.

        Raises:
            AnalysisCancelledError: cancellation was requested.
        """
        if self.job.cancel_requested:
            raise AnalysisCancelledError(CANCELLED_MESSAGE)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> AnalysisProgress:
        """A deep copy for pollers, with percentage and display text filled in."""
        return self.progress.model_copy(
            deep=True,
            update={
                "percentage": self.job.max_percentage,
                "display_step": normalize_status(self.progress.current_step),
            },
        )
