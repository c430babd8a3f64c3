"""Progress projector — a single 0-100 figure from a progress record.

Each phase owns a fixed band of the bar.  :func:`project_percentage` is pure;
the running maximum it clamps against is kept on the job by the state
machine, so two jobs never share it.
"""

from __future__ import annotations

from xobcat.models import AnalysisProgress, Phase

#: Share of the bar owned by each phase, in lifecycle order.  Sums to 100.
PHASE_WEIGHTS: dict[Phase, int] = {
    Phase.SAMPLING: 20,
    Phase.DISCOVERY: 15,
    Phase.PARALLEL_PROCESSING: 50,
    Phase.CONFLICT_RESOLUTION: 10,
    Phase.GENERATING_SUMMARY: 5,
}

_DEFAULT_DISCOVERY_RATE = 0.3
_INTER_ROUND_MARKERS = ("Conflict resolution", "Consolidating classifications")


def _phase_base(phase: Phase) -> int:
    base = 0
    for p, weight in PHASE_WEIGHTS.items():
        if p is phase:
            return base
        base += weight
    return base


def _sampling_fraction(progress: AnalysisProgress) -> float | None:
    sp = progress.sampling_progress
    if sp is not None and sp.total_windows > 0:
        window_part = sp.current_window_index / sp.total_windows
        target = sp.target_session_count
        found_part = min(progress.sessions_found / target, 1.0) if target > 0 else 0.0
        return 0.6 * window_part + 0.4 * found_part
    if progress.sessions_found > 0:
        return min(progress.sessions_found / 100, 0.5)
    return None


def _parallel_fraction(progress: AnalysisProgress) -> float:
    rounds = (
        progress.rounds_completed / progress.total_rounds if progress.total_rounds else 0.0
    )
    if any(marker in progress.current_step for marker in _INTER_ROUND_MARKERS):
        return min(rounds + 0.05, 1.0)
    processed = (
        progress.sessions_processed / progress.total_sessions
        if progress.total_sessions
        else 0.0
    )
    return min(max(rounds, processed), 1.0)


def project_percentage(progress: AnalysisProgress, previous: int = 0) -> int:
    """Project a progress record onto 0-100, never below ``previous``.

    ``complete`` is always 100.  ``error`` keeps ``previous``, so a failed
    job's bar freezes where it was.
    """
    phase = progress.phase
    if phase is Phase.COMPLETE:
        return 100
    if phase is Phase.ERROR:
        return previous

    weight = PHASE_WEIGHTS[phase]
    base = _phase_base(phase)

    if phase is Phase.SAMPLING:
        fraction = _sampling_fraction(progress)
        value = 2.0 if fraction is None else base + weight * fraction
    elif phase is Phase.DISCOVERY:
        stats = progress.discovery_stats
        rate = stats.discovery_rate if stats is not None else _DEFAULT_DISCOVERY_RATE
        value = base + weight * rate
    elif phase is Phase.PARALLEL_PROCESSING:
        value = base + weight * _parallel_fraction(progress)
    elif phase is Phase.CONFLICT_RESOLUTION:
        value = base + weight * (0.5 if progress.conflict_stats is not None else 0.3)
    else:
        value = base + weight * 0.5

    return max(previous, min(round(value), 100))
