"""Exception hierarchy for the Auto-Analyze engine.

Only :class:`ConfigValidationError` ever reaches the caller of ``start``.
Everything raised inside a running job is caught by the runner and recorded
into the job's progress record, where the client finds it on the next poll.
"""

from __future__ import annotations

import re

_API_KEY_RE = re.compile(r"sk-[A-Za-z0-9_\-]+")
_BEARER_RE = re.compile(r"Bearer [A-Za-z0-9._\-]+")


class AnalysisError(Exception):
    """Base class for every error the engine raises on purpose."""


class ConfigValidationError(AnalysisError):
    """An AnalysisConfig failed validation; no job was created.

    ``errors`` holds every failing constraint in check order; the message is
    the first one.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__(self.errors[0] if self.errors else "Invalid analysis config")


class AnalysisNotFoundError(AnalysisError):
    def __init__(self, analysis_id: str) -> None:
        self.analysis_id = analysis_id
        super().__init__(f"Analysis not found: {analysis_id}")


class ResultsNotReadyError(AnalysisError):
    def __init__(self, analysis_id: str, phase: str) -> None:
        self.analysis_id = analysis_id
        self.phase = phase
        super().__init__(f"Analysis not complete (phase: {phase})")


class UpstreamError(AnalysisError):
    """The session source or the fact extractor failed.  Fatal to the job."""


class EmptyResultError(AnalysisError):
    """Every sampling window came back empty.

    Not a failure: the runner completes the job with zero sessions.
    """


class AnalysisCancelledError(AnalysisError):
    """Raised at a cancellation checkpoint to unwind a cancelled job."""


class InvalidTransitionError(AnalysisError):
    """The state machine was asked to move backwards or out of a terminal state."""


def sanitize_error(message: str) -> str:
    """Strip API keys and bearer tokens from a message before it is stored."""
    message = _API_KEY_RE.sub("[API_KEY]", message)
    message = _BEARER_RE.sub("[TOKEN]", message)
    return message.strip()
