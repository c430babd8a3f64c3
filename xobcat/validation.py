"""AnalysisConfig validation — runs before a job exists.

Checks run in a fixed order and every failure is collected, but callers
surface only the first one (``ConfigValidationError.args[0]``).
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import date, datetime
from zoneinfo import ZoneInfo

from xobcat.errors import ConfigValidationError
from xobcat.llm.pricing import MODELS
from xobcat.models import AnalysisConfig

MIN_SESSION_COUNT = 5
MAX_SESSION_COUNT = 1000

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")

# (wire name, python name) for required fields, in check order
_REQUIRED: tuple[tuple[str, str], ...] = (
    ("startDate", "start_date"),
    ("startTime", "start_time"),
    ("sessionCount", "session_count"),
    ("openaiApiKey", "openai_api_key"),
    ("modelId", "model_id"),
)


def _get(raw: Mapping[str, object], wire: str, py: str) -> object:
    if wire in raw:
        return raw[wire]
    return raw.get(py)


def collect_config_errors(
    raw: Mapping[str, object],
    *,
    today: date | None = None,
    tz: str = "America/New_York",
) -> list[str]:
    """Return every failing constraint for a raw config payload, in order."""
    errors: list[str] = []

    for wire, py in _REQUIRED:
        value = _get(raw, wire, py)
        if value is None or value == "":
            errors.append(f"{wire} is required")

    count = _get(raw, "sessionCount", "session_count")
    if count is not None:
        if isinstance(count, bool) or not isinstance(count, int):
            errors.append("sessionCount must be a number")
        elif not MIN_SESSION_COUNT <= count <= MAX_SESSION_COUNT:
            errors.append(
                f"sessionCount must be between {MIN_SESSION_COUNT} and {MAX_SESSION_COUNT}"
            )

    api_key = _get(raw, "openaiApiKey", "openai_api_key")
    if api_key and (not isinstance(api_key, str) or not api_key.startswith("sk-")):
        errors.append("Invalid OpenAI API key format")

    start_date = _get(raw, "startDate", "start_date")
    parsed_date: date | None = None
    if start_date:
        if not isinstance(start_date, str) or not _DATE_RE.match(start_date):
            errors.append("Invalid date format. Use YYYY-MM-DD")
        else:
            try:
                parsed_date = date.fromisoformat(start_date)
            except ValueError:
                errors.append("Invalid date format. Use YYYY-MM-DD")

    if parsed_date is not None:
        if today is None:
            today = datetime.now(ZoneInfo(tz)).date()
        if parsed_date >= today:
            errors.append("Date must be in the past")

    start_time = _get(raw, "startTime", "start_time")
    if start_time and (not isinstance(start_time, str) or not _TIME_RE.match(start_time)):
        errors.append("Invalid time format. Use HH:MM (24-hour format)")

    model_id = _get(raw, "modelId", "model_id")
    if model_id and model_id not in MODELS:
        errors.append(f"Invalid modelId. Must be one of: {', '.join(MODELS)}")

    return errors


def validate_analysis_config(
    raw: Mapping[str, object],
    *,
    today: date | None = None,
    tz: str = "America/New_York",
) -> AnalysisConfig:
    """Validate a raw payload and build an immutable AnalysisConfig.

    Raises:
        ConfigValidationError: with the first failing constraint as message.
    """
    errors = collect_config_errors(raw, today=today, tz=tz)
    if errors:
        raise ConfigValidationError(errors)

    context = _get(raw, "additionalContext", "additional_context") or ""
    return AnalysisConfig(
        start_date=str(_get(raw, "startDate", "start_date")),
        start_time=str(_get(raw, "startTime", "start_time")),
        session_count=int(_get(raw, "sessionCount", "session_count")),  # type: ignore[arg-type]
        model_id=str(_get(raw, "modelId", "model_id")),
        openai_api_key=str(_get(raw, "openaiApiKey", "openai_api_key")),
        additional_context=str(context),
    )
