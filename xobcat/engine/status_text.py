"""Status text normalizer — raw engine step text to user-facing phrases.

The engine writes technical step strings ("Parallel processing: Round 2/4");
clients display friendlier ones ("Analyzing sessions: Round 2/4").
:func:`normalize_status` is pure: the same input always yields the same
output, and an output fed back in comes out unchanged.

Rules are tried in order:

1. empty input
2. already-normalized display phrases (returned as-is)
3. direct mapping table
4. regex templates
5. keyword fallbacks
6. identity
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

EMPTY_STATUS = "Preparing analysis"


@dataclass(frozen=True)
class StatusTransform:
    """One normalization, as reported to an optional sink."""

    input: str
    output: str
    rule: str


# ---------------------------------------------------------------------------
# Rule tables
# ---------------------------------------------------------------------------

_CANONICAL: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"^Preparing analysis$",
        r"^Initializing( analysis)?$",
        r"^Searching for sessions$",
        r"^Found sufficient sessions, completing search$",
        r"^Generating analysis report$",
        r"^Analysis completed successfully$",
        r"^Analyzing initial sessions( \(\d+/\d+\))?$",
        r"^Analyzing sessions(: Round \d+/\d+)?$",
        r"^Consolidating classifications(: Round \d+)?$",
        r"^Classifications consolidated(: Round \d+)?$",
        r"^Resolving conflicts( \(\d+/\d+\))?$",
    )
)

_DIRECT: dict[str, str] = {
    "Initializing parallel analysis": "Initializing analysis",
    "Initializing parallel analysis...": "Initializing",
    "Searching in Initial 3-hour window": "Searching for sessions",
    "Searching in Initial 3-hour window...": "Searching for sessions",
    "Searching in 6-hour window": "Searching for sessions",
    "Searching in 6-hour window...": "Searching for sessions",
    "Searching in 12-hour window": "Searching for sessions",
    "Searching in 12-hour window...": "Searching for sessions",
    "Searching in 6-day window": "Searching for sessions",
    "Searching in 6-day window...": "Searching for sessions",
    "Generating analysis summary...": "Generating analysis report",
}

# (rule name, pattern, output template using match groups)
_TEMPLATES: tuple[tuple[str, re.Pattern[str], str], ...] = (
    (
        "discovery_batch",
        re.compile(r"Processing discovery batch (\d+)/(\d+)"),
        "Analyzing initial sessions ({0}/{1})",
    ),
    (
        "parallel_round",
        re.compile(r"Parallel processing: Round (\d+)/(\d+)"),
        "Analyzing sessions: Round {0}/{1}",
    ),
    (
        "conflict_complete",
        re.compile(r"Conflict resolution complete \(round (\d+)\)", re.IGNORECASE),
        "Classifications consolidated: Round {0}",
    ),
    (
        "conflict_after_round",
        re.compile(r"Conflict resolution after round (\d+)", re.IGNORECASE),
        "Consolidating classifications: Round {0}",
    ),
    (
        "conflict_batch",
        re.compile(r"Conflict resolution: Processing batch (\d+)/(\d+)"),
        "Resolving conflicts ({0}/{1})",
    ),
    (
        "sufficient_sessions",
        re.compile(r"^Found sufficient sessions \(\d+\), completing search"),
        "Found sufficient sessions, completing search",
    ),
)

# (rule name, keywords, output), matched case-insensitively
_KEYWORDS: tuple[tuple[str, tuple[str, ...], str], ...] = (
    ("keyword_discovery", ("discovery",), "Analyzing initial sessions"),
    ("keyword_parallel", ("parallel",), "Analyzing sessions"),
    ("keyword_conflict", ("conflict", "consolidat"), "Resolving conflicts"),
    ("keyword_search", ("search",), "Searching for sessions"),
    ("keyword_summary", ("summary", "generating"), "Generating analysis report"),
)


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------


def _classify(raw: str) -> tuple[str, str]:
    if not raw or not raw.strip():
        return EMPTY_STATUS, "empty"

    text = raw.strip()

    for pattern in _CANONICAL:
        if pattern.match(text):
            return text, "canonical"

    if text in _DIRECT:
        return _DIRECT[text], "direct"

    for name, pattern, template in _TEMPLATES:
        match = pattern.search(text)
        if match:
            return template.format(*match.groups()), name

    lower = text.lower()
    for name, keywords, output in _KEYWORDS:
        if any(k in lower for k in keywords):
            return output, name

    return text, "identity"


def normalize_status(
    raw: str | None,
    *,
    sink: Callable[[StatusTransform], None] | None = None,
) -> str:
    """Map a raw engine step string to its display phrase.

    Args:
        raw: The ``current_step`` text written by the engine.
        sink: Optional callback receiving a :class:`StatusTransform` for
            every call, for tracing transformations in tests or debug UIs.
    """
    raw = raw or ""
    output, rule = _classify(raw)
    logger.debug("Status text %r → %r (%s)", raw, output, rule)
    if sink is not None:
        sink(StatusTransform(input=raw, output=output, rule=rule))
    return output
