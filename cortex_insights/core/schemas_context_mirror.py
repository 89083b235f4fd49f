"""Pydantic models for the context mirror (context insight) pipeline.

The InsightPayload validators are the single source of truth for payload
shape. Every generation path (model, retried model, fallback template,
persisted cache) passes through them.
"""

import json
import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from cortex_insights.core.context_policy import word_count
from cortex_insights.core.insight_errors import FailureReason

HEADLINE_MAX_CHARS = 120
INSIGHT_MIN_WORDS = 150
INSIGHT_MAX_WORDS = 220
ACTION_COUNT = 3
WATCHOUT_COUNT = 2
LIST_ITEM_MAX_WORDS = 14
DISCLAIMER_MAX_CHARS = 140

CURRENT_STORED_VERSION = 2

_PARAGRAPH_BREAK_RE = re.compile(r"\n[ \t]*\n")
# A terminator followed by whitespace and the start of a new capitalized sentence
_SENTENCE_BREAK_RE = re.compile(r"[.!?]+[\"')\]]*\s+(?=[\"'(\[]?[A-Z0-9])")
# Initialisms such as U.S., e.g., i.e. and single initials
_INITIALISM_RE = re.compile(r"^\(?(?:[A-Za-z]\.)+$")
_ABBREVIATIONS = {
    "vs.", "etc.", "approx.", "inc.", "ltd.", "co.", "corp.",
    "dr.", "mr.", "mrs.", "ms.", "st.", "no.", "fig.", "dept.",
}


def _is_abbreviation(token: str) -> bool:
    return token.lower() in _ABBREVIATIONS or bool(_INITIALISM_RE.match(token))


def _is_single_sentence(text: str) -> bool:
    if not text or "\n" in text:
        return False
    for match in _SENTENCE_BREAK_RE.finditer(text):
        # The word that owns the terminator, e.g. "U.S." or "vs."
        token = text[: match.start() + 1].split()[-1]
        if text[match.start()] == "." and _is_abbreviation(token):
            continue
        return False
    return True


def split_paragraphs(text: str) -> list[str]:
    """Split narrative text on blank lines."""
    return [part.strip() for part in _PARAGRAPH_BREAK_RE.split(text.strip())]


# =============================================================================
# Input
# =============================================================================


class ContextProfile(BaseModel):
    """Organizational context: ordinal dimensions (0-4) plus two flags."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    regulatory_intensity: int = Field(..., ge=0, le=4)
    data_sensitivity: int = Field(..., ge=0, le=4)
    safety_criticality: int = Field(..., ge=0, le=4)
    brand_exposure: int = Field(..., ge=0, le=4)
    clock_speed: int = Field(..., ge=0, le=4)
    latency_edge: int = Field(..., ge=0, le=4)
    scale_throughput: int = Field(..., ge=0, le=4)
    data_advantage: int = Field(..., ge=0, le=4)
    build_readiness: int = Field(..., ge=0, le=4)
    finops_priority: int = Field(..., ge=0, le=4)
    procurement_constraints: bool
    edge_operations: bool


# =============================================================================
# Output
# =============================================================================


class InsightScenarios(BaseModel):
    """Two fixed-key conditional notes."""

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    if_regulation_tightens: str = Field(..., min_length=1)
    if_budgets_tighten: str = Field(..., min_length=1)

    @field_validator("if_regulation_tightens", "if_budgets_tighten")
    @classmethod
    def _one_sentence(cls, value: str) -> str:
        if not _is_single_sentence(value):
            raise ValueError("scenario must be a single sentence")
        return value


class InsightPayload(BaseModel):
    """The executive brief returned for a context profile."""

    model_config = ConfigDict(frozen=True, extra="ignore", str_strip_whitespace=True)

    headline: str = Field(..., min_length=1, max_length=HEADLINE_MAX_CHARS)
    insight: str
    actions: list[str] = Field(..., min_length=ACTION_COUNT, max_length=ACTION_COUNT)
    watchouts: list[str] = Field(..., min_length=WATCHOUT_COUNT, max_length=WATCHOUT_COUNT)
    scenarios: InsightScenarios
    disclaimer: str = Field(..., min_length=10, max_length=DISCLAIMER_MAX_CHARS)

    @field_validator("headline", "disclaimer")
    @classmethod
    def _one_sentence(cls, value: str) -> str:
        if not _is_single_sentence(value):
            raise ValueError("must be a single sentence")
        return value

    @field_validator("insight")
    @classmethod
    def _two_paragraphs(cls, value: str) -> str:
        paragraphs = split_paragraphs(value)
        if len(paragraphs) != 2 or not all(paragraphs):
            raise ValueError(f"insight must have exactly two paragraphs, got {len(paragraphs)}")
        words = word_count(value)
        if not INSIGHT_MIN_WORDS <= words <= INSIGHT_MAX_WORDS:
            raise ValueError(
                f"insight must be {INSIGHT_MIN_WORDS}-{INSIGHT_MAX_WORDS} words, got {words}"
            )
        return "\n\n".join(paragraphs)

    @field_validator("actions", "watchouts")
    @classmethod
    def _short_items(cls, value: list[str]) -> list[str]:
        cleaned = [item.strip() for item in value]
        for item in cleaned:
            if not item:
                raise ValueError("list items must not be empty")
            if word_count(item) > LIST_ITEM_MAX_WORDS:
                raise ValueError(f"list items must be at most {LIST_ITEM_MAX_WORDS} words: {item!r}")
        return cleaned


# =============================================================================
# Diagnostics
# =============================================================================


class PromptVariant(str, Enum):
    PRIMARY = "primary"
    RETRY = "retry"


class FinalSource(str, Enum):
    """Which path produced the returned payload."""

    PRIMARY_MODEL = "primary_model"
    RETRIED_MODEL = "retried_model"
    FALLBACK_TEMPLATE = "fallback_template"


class GenerationAttempt(BaseModel):
    """One call to the generation client."""

    sequence: int
    prompt_variant: PromptVariant
    started_at: datetime
    ended_at: datetime
    duration_ms: int
    success: bool
    failure_reason: FailureReason | None = None
    raw_response: str | None = None  # truncated, diagnostics only


class GenerationDiagnostics(BaseModel):
    """Every attempt made for one request, and how it ended."""

    attempts: list[GenerationAttempt] = Field(default_factory=list)
    final_source: FinalSource
    total_duration_ms: int
    generated_at: datetime
    archetype: str | None = None  # set when the fallback template was used


# =============================================================================
# Persisted payload (versioned)
# =============================================================================


class LegacyStoredMirror(BaseModel):
    """Version 1: the structured strengths/fragilities format."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    version: Literal[1] = 1
    strengths: list[str] | None = None
    fragilities: list[str] | None = None
    what_works: list[str] | None = Field(default=None, alias="whatWorks")
    disclaimer: str | None = None
    insight: str | None = None


class StoredInsightPayload(InsightPayload):
    """Version 2: the current InsightPayload fields."""

    version: Literal[2] = 2


_STORED_PAYLOAD_ADAPTER: TypeAdapter = TypeAdapter(
    Annotated[Union[LegacyStoredMirror, StoredInsightPayload], Field(discriminator="version")]
)

_LEGACY_KEYS = {"strengths", "fragilities", "whatWorks"}


def _infer_stored_version(data: dict[str, Any]) -> int:
    if "headline" in data:
        return CURRENT_STORED_VERSION
    if _LEGACY_KEYS & data.keys():
        return 1
    return CURRENT_STORED_VERSION


def to_stored_payload(payload: InsightPayload) -> dict[str, Any]:
    """Durable form of a payload: its fields plus the version tag."""
    return {"version": CURRENT_STORED_VERSION, **payload.model_dump(mode="json")}


def parse_stored_payload(raw: Any) -> InsightPayload | None:
    """
    Read a persisted payload through the version tag.

    Returns the payload only for a current-version row that passes full
    validation. Legacy rows, unknown versions, and malformed rows return None
    so the caller regenerates instead of serving a partial value.
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, dict):
        return None

    data = dict(raw)
    data.setdefault("version", _infer_stored_version(data))
    try:
        stored = _STORED_PAYLOAD_ADAPTER.validate_python(data)
    except ValidationError:
        return None

    if not isinstance(stored, StoredInsightPayload):
        return None
    return InsightPayload.model_validate(stored.model_dump(exclude={"version"}))


# =============================================================================
# Assessment store projection
# =============================================================================


class AssessmentRecord(BaseModel):
    """The fields of an assessment row this service reads."""

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    context_profile: ContextProfile | None = None
    context_mirror: Any = None
    context_mirror_updated_at: datetime | None = None


# =============================================================================
# HTTP
# =============================================================================


class ContextMirrorRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assessment_id: UUID = Field(..., alias="assessmentId")


class ContextMirrorResponse(InsightPayload):
    """Payload plus diagnostics for internal consumers."""

    debug: GenerationDiagnostics | None = None


class ErrorResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_message: str = Field(..., alias="userMessage")
    incident_id: str = Field(..., alias="incidentId")
    http_status: int = Field(..., alias="httpStatus")
