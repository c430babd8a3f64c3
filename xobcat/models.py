"""Pydantic models for sessions, analysis configs, progress, and results.

Session records keep the snake_case field names of the session API they
come from.  Everything the Auto-Analyze API emits (config, progress,
results) is camelCase on the wire via an alias generator, so Python code
uses snake_case attributes throughout.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class Message(BaseModel):
    """One turn of a chat session."""

    timestamp: datetime
    message_type: Literal["user", "bot"]
    message: str = ""

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class ChatSession(BaseModel):
    """A chatbot conversation as returned by a session source."""

    session_id: str
    user_id: str = ""
    start_time: datetime
    end_time: datetime
    containment_type: str | None = None  # "agent", "selfService", "dropOff"
    tags: list[str] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)
    message_count: int = 0
    user_message_count: int = 0
    bot_message_count: int = 0
    duration_seconds: float = 0.0

    @field_validator("start_time", "end_time")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    @model_validator(mode="after")
    def _fill_counts(self) -> ChatSession:
        # Sources that only send messages leave the counters at zero.
        if self.messages and not self.message_count:
            self.message_count = len(self.messages)
            self.user_message_count = sum(1 for m in self.messages if m.message_type == "user")
            self.bot_message_count = self.message_count - self.user_message_count
        if not self.duration_seconds:
            self.duration_seconds = max((self.end_time - self.start_time).total_seconds(), 0.0)
        return self


class SessionFacts(_CamelModel):
    """Classification facts the extractor assigns to one session."""

    general_intent: str
    session_outcome: Literal["Transfer", "Contained"]
    transfer_reason: str = ""  # empty when Contained
    drop_off_location: str = ""  # empty when Contained
    notes: str = ""


class AnalysisMetadata(_CamelModel):
    tokens_used: int = 0
    processing_time: int = 0  # milliseconds
    batch_number: int = 0
    round_number: int = 0  # 0 = discovery
    stream_id: int = 0  # 0 = discovery
    timestamp: datetime = Field(default_factory=utcnow)
    model: str = ""


class SessionWithFacts(ChatSession):
    facts: SessionFacts
    analysis_metadata: AnalysisMetadata = Field(
        default_factory=AnalysisMetadata, alias="analysisMetadata"
    )

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


class AnalysisConfig(_CamelModel):
    """A validated request to run Auto-Analyze.  Immutable once accepted."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    start_date: str  # YYYY-MM-DD
    start_time: str  # HH:MM, dashboard time zone
    session_count: int
    model_id: str
    openai_api_key: str = Field(repr=False)
    additional_context: str = ""


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


class Phase(str, Enum):
    SAMPLING = "sampling"
    DISCOVERY = "discovery"
    PARALLEL_PROCESSING = "parallel_processing"
    CONFLICT_RESOLUTION = "conflict_resolution"
    GENERATING_SUMMARY = "generating_summary"
    COMPLETE = "complete"
    ERROR = "error"


#: Forward order of the lifecycle.  ``error`` sits outside it.
PHASE_ORDER: tuple[Phase, ...] = (
    Phase.SAMPLING,
    Phase.DISCOVERY,
    Phase.PARALLEL_PROCESSING,
    Phase.CONFLICT_RESOLUTION,
    Phase.GENERATING_SUMMARY,
    Phase.COMPLETE,
)

TERMINAL_PHASES = frozenset({Phase.COMPLETE, Phase.ERROR})


class SamplingProgress(_CamelModel):
    current_window_index: int = 0
    total_windows: int = 0
    current_window_label: str = ""
    target_session_count: int = 0


class DiscoveryStats(_CamelModel):
    discovered_intents: int = 0
    discovered_reasons: int = 0
    discovered_locations: int = 0
    discovery_rate: float = Field(default=0.0, ge=0.0, le=1.0)


class ConflictStats(_CamelModel):
    conflicts_found: int = 0
    conflicts_resolved: int = 0
    canonical_mappings: int = 0


class AnalysisProgress(_CamelModel):
    analysis_id: str
    phase: Phase = Phase.SAMPLING
    current_step: str = ""
    sessions_found: int = 0
    sessions_processed: int = 0
    total_sessions: int = 0
    tokens_used: int = 0
    estimated_cost: float = 0.0
    model_id: str = ""
    sampling_progress: SamplingProgress | None = None
    discovery_stats: DiscoveryStats | None = None
    rounds_completed: int = 0
    total_rounds: int = 0
    streams_active: int = 0
    conflict_stats: ConflictStats | None = None
    no_sessions_found: bool = False
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None
    error: str | None = None
    # Filled in on every snapshot, never written by stages
    percentage: int = 0
    display_step: str = ""


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class LabelCount(_CamelModel):
    label: str
    count: int
    percentage: float


class SummaryStatistics(_CamelModel):
    total_sessions: int = 0
    transfer_rate: float = 0.0
    containment_rate: float = 0.0
    average_session_length: float = 0.0  # seconds
    average_messages_per_session: float = 0.0
    top_intents: list[LabelCount] = Field(default_factory=list)
    top_transfer_reasons: list[LabelCount] = Field(default_factory=list)


class AnalysisSummary(_CamelModel):
    overview: str
    summary: str
    containment_suggestion: str
    generated_at: datetime = Field(default_factory=utcnow)
    sessions_analyzed: int = 0
    statistics: SummaryStatistics = Field(default_factory=SummaryStatistics)


class TaxonomySnapshot(_CamelModel):
    general_intents: list[str] = Field(default_factory=list)
    transfer_reasons: list[str] = Field(default_factory=list)
    drop_off_locations: list[str] = Field(default_factory=list)


class AnalysisResults(_CamelModel):
    analysis_id: str
    sessions: list[SessionWithFacts] = Field(default_factory=list)
    taxonomy: TaxonomySnapshot = Field(default_factory=TaxonomySnapshot)
    analysis_summary: AnalysisSummary | None = None
    message: str | None = None


class StartResponse(_CamelModel):
    analysis_id: str
    status: Literal["started"] = "started"
