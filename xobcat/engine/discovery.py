"""Taxonomy discovery — label a small diverse subset first, sequentially.

Sequential batches let each call see the labels the previous batches
created, so the taxonomy settles before the parallel streams fan out and
start inventing spellings concurrently.
"""

from __future__ import annotations

import logging
import math
import random
from collections.abc import Callable
from dataclasses import dataclass, field

from xobcat.engine.conflicts import ConflictResolver
from xobcat.engine.extractor import FactExtractor, TokenUsage
from xobcat.models import ChatSession, DiscoveryStats, SessionWithFacts

logger = logging.getLogger(__name__)

DISCOVERY_BATCH_SIZE = 5
_TARGET_FRACTION = 0.15
_MIN_FRACTION = 0.10
_MIN_SESSIONS = 5
_MAX_SESSIONS = 150

#: (step text, sessions processed, discovery stats, usage of the batch just finished)
DiscoveryCallback = Callable[[str, int, DiscoveryStats, "TokenUsage | None"], None]


@dataclass
class DiscoveryResult:
    processed: list[SessionWithFacts]
    remaining: list[ChatSession]
    stats: DiscoveryStats
    usage: TokenUsage = field(default_factory=TokenUsage)


def discovery_size(total: int) -> int:
    """How many sessions the discovery stage labels, out of ``total``.

    15% of the sample, at least ``max(5, 10%)`` and at most
    ``min(150, 15%)`` (but never below the minimum), capped at ``total``.
    """
    if total <= 0:
        return 0
    minimum = max(_MIN_SESSIONS, math.floor(total * _MIN_FRACTION))
    maximum = max(minimum, min(_MAX_SESSIONS, math.floor(total * _TARGET_FRACTION)))
    size = min(max(math.ceil(total * _TARGET_FRACTION), minimum), maximum)
    return min(size, total)


def select_diverse_sessions(
    sessions: list[ChatSession], count: int, rng: random.Random | None = None
) -> list[ChatSession]:
    """Pick ``count`` sessions spread across containment types.

    Sessions are grouped by ``containment_type``, shuffled within each group,
    then taken round-robin across groups so no single outcome dominates.
    """
    if len(sessions) <= count:
        return list(sessions)
    rng = rng or random.Random()

    groups: dict[str, list[ChatSession]] = {}
    for session in sessions:
        groups.setdefault(session.containment_type or "unknown", []).append(session)
    for members in groups.values():
        rng.shuffle(members)

    ordered = [groups[k] for k in sorted(groups)]
    selected: list[ChatSession] = []
    while len(selected) < count:
        for members in ordered:
            if members and len(selected) < count:
                selected.append(members.pop())
    return selected


async def run_discovery(
    sessions: list[ChatSession],
    extractor: FactExtractor,
    resolver: ConflictResolver,
    *,
    batch_size: int = DISCOVERY_BATCH_SIZE,
    on_progress: DiscoveryCallback | None = None,
    check_cancelled: Callable[[], None] | None = None,
    rng: random.Random | None = None,
) -> DiscoveryResult:
    """Label a diverse subset batch by batch, seeding the taxonomy.

    Raises:
        UpstreamError: an extractor call failed.
        AnalysisCancelledError: raised by ``check_cancelled`` between batches.
    """
    size = discovery_size(len(sessions))
    chosen = select_diverse_sessions(sessions, size, rng)
    chosen_ids = {s.session_id for s in chosen}
    remaining = [s for s in sessions if s.session_id not in chosen_ids]

    taxonomy = resolver.taxonomy
    processed: list[SessionWithFacts] = []
    usage = TokenUsage()

    def _stats() -> DiscoveryStats:
        return DiscoveryStats(
            discovered_intents=len(taxonomy.general_intents),
            discovered_reasons=len(taxonomy.transfer_reasons),
            discovered_locations=len(taxonomy.drop_off_locations),
            discovery_rate=len(processed) / size if size else 1.0,
        )

    total_batches = math.ceil(len(chosen) / batch_size) if chosen else 0
    for number, offset in enumerate(range(0, len(chosen), batch_size), start=1):
        if check_cancelled is not None:
            check_cancelled()

        batch = chosen[offset : offset + batch_size]
        if on_progress is not None:
            on_progress(
                f"Processing discovery batch {number}/{total_batches} ({len(batch)} sessions)",
                len(processed),
                _stats(),
                None,
            )

        result = await extractor.extract(batch, taxonomy, batch_number=number)
        resolution = resolver.resolve(result.sessions)
        processed.extend(result.sessions)
        usage = usage + result.usage

        logger.info(
            "Discovery batch %d/%d: %d new labels, %d conflicts",
            number,
            total_batches,
            len(resolution.new_labels),
            resolution.conflicts_found,
        )
        if on_progress is not None:
            on_progress(
                f"Processing discovery batch {number}/{total_batches} ({len(batch)} sessions)",
                len(processed),
                _stats(),
                result.usage,
            )

    stats = _stats()
    if on_progress is not None:
        on_progress(
            f"Discovery complete: {len(taxonomy)} classifications discovered",
            len(processed),
            stats,
            None,
        )
    return DiscoveryResult(processed=processed, remaining=remaining, stats=stats, usage=usage)
