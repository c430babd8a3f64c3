"""Pydantic models for structured LLM output parsing."""

from __future__ import annotations

import json

from pydantic import BaseModel, Field, field_validator

# ---------------------------------------------------------------------------
# Fact extraction (discovery + parallel rounds)
# ---------------------------------------------------------------------------


class SessionFactsItem(BaseModel):
    """Classification of a single session in a batch."""

    session_id: str = Field(description="The Session ID shown in the session header")
    general_intent: str = Field(
        description=(
            "What the user is trying to accomplish, usually 1-2 words "
            "(e.g. 'Claim Status', 'Billing'). 'Unknown' if unclear."
        )
    )
    session_outcome: str = Field(description="One of: Transfer, Contained")
    transfer_reason: str = Field(
        default="",
        description="Why the session was transferred. Empty string if Contained.",
    )
    drop_off_location: str = Field(
        default="",
        description=(
            "The prompt at which the user started getting routed to an agent. "
            "Empty string if Contained."
        ),
    )
    notes: str = Field(default="", description="One sentence summary of the session")


class FactExtractionBatchResult(BaseModel):
    """LLM output for one batch of sessions."""

    sessions: list[SessionFactsItem] = Field(description="One classification per session")

    @field_validator("sessions", mode="before")
    @classmethod
    def _parse_stringified_json(cls, v: object) -> object:
        """Some LLM providers double-serialize nested arrays as JSON strings."""
        if isinstance(v, str):
            return json.loads(v)
        return v


# ---------------------------------------------------------------------------
# Analysis summary
# ---------------------------------------------------------------------------


class SummaryResult(BaseModel):
    """LLM output for the end-of-run analysis report."""

    overview: str = Field(
        description="Executive summary in markdown, about 150-200 words"
    )
    summary: str = Field(
        description="Detailed analysis in markdown with headers, about 300-400 words"
    )
    containment_suggestion: str = Field(
        description="A single actionable sentence for improving bot containment"
    )


# ---------------------------------------------------------------------------
# Conflict resolution
# ---------------------------------------------------------------------------


class LabelGroup(BaseModel):
    """Labels that mean the same thing, folded onto one canonical label."""

    canonical: str = Field(
        description="The label to keep, copied exactly from the candidate group"
    )
    aliases: list[str] = Field(
        default_factory=list,
        description="Other labels from the same group that should map to the canonical label",
    )


class ConflictResolutionResult(BaseModel):
    """LLM output for one batch of candidate label groups.

    Categories with no semantic duplicates are empty lists.
    """

    general_intents: list[LabelGroup] = Field(
        default_factory=list, description="Duplicate groups among general intents"
    )
    transfer_reasons: list[LabelGroup] = Field(
        default_factory=list, description="Duplicate groups among transfer reasons"
    )
    drop_off_locations: list[LabelGroup] = Field(
        default_factory=list, description="Duplicate groups among drop-off locations"
    )

    @field_validator("general_intents", "transfer_reasons", "drop_off_locations", mode="before")
    @classmethod
    def _parse_stringified_json(cls, v: object) -> object:
        if isinstance(v, str):
            return json.loads(v)
        return v
