"""Schemas for the decision step, corrections, and the inbound wire contract.

Covers: ClassificationResult -> Decision -> AssistantResponse, plus the
correction / pattern-memory records and the decision audit log entry.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from kenny.schemas.intent import Provenance


class DecisionAction(StrEnum):
    """What to do with a classified utterance."""

    EXECUTE = "execute"
    CONFIRM = "confirm"
    CLARIFY = "clarify"
    LEARN = "learn"
    ERROR = "error"


class SemanticBand(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Decision(BaseModel):
    """Output of a decision policy for one utterance."""

    action: DecisionAction
    intent: str
    confidence: float = Field(ge=0.0, le=1.0)
    slots: dict[str, Any] = Field(default_factory=dict)
    provenance: Provenance
    rationale: str
    band: SemanticBand | None = None

    @property
    def dispatches(self) -> bool:
        return self.action in (DecisionAction.EXECUTE, DecisionAction.LEARN)


# --- LLM Output Schema (semantic policy judge) ---


class SemanticJudgement(BaseModel):
    """Structured output from the model asked to grade a classification."""

    band: SemanticBand
    ambiguities: list[str] = Field(
        default_factory=list,
        description="Short phrases naming anything unclear or missing",
    )
    reasoning: str = ""


# --- Corrections / pattern memory ---


class CorrectionRecord(BaseModel):
    """A user-supplied fix for a previous classification."""

    original_text: str
    predicted_intent: str | None = None
    predicted_slots: dict[str, Any] = Field(default_factory=dict)
    corrected_intent: str
    corrected_slots: dict[str, Any] = Field(default_factory=dict)
    always_apply: bool = False


class PatternMemoryEntry(BaseModel):
    """A learned mapping from normalized input text to intent/slots."""

    key: str
    intent: str
    slots: dict[str, Any] = Field(default_factory=dict)
    frequency: int = Field(default=1, ge=1)
    last_seen: datetime = Field(default_factory=lambda: datetime.now(UTC))
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


# --- Wire contract (camelCase on the wire) ---


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AssistantRequest(_WireModel):
    text: str
    session_id: str | None = None
    user_id: str | None = None


class CorrectionRequest(_WireModel):
    session_id: str
    original_text: str | None = None
    predicted_intent: str | None = None
    predicted_slots: dict[str, Any] = Field(default_factory=dict)
    corrected_intent: str
    corrected_slots: dict[str, Any] = Field(default_factory=dict)
    always_apply: bool = False


class AssistantResponse(_WireModel):
    success: bool
    decision: DecisionAction
    intent: str
    confidence: float = Field(ge=0.0, le=1.0)
    slots: dict[str, Any] = Field(default_factory=dict)
    message: str
    spoken_response: str
    follow_up: str | None = None
    session_id: str

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Audit ---


class DecisionLogEntry(BaseModel):
    """One line in the decision audit log (JSONL)."""

    timestamp: datetime
    kind: Literal["decision", "correction"]
    session_id: str
    text: str
    intent: str
    confidence: float
    provenance: Provenance
    decision: DecisionAction
    slots: dict[str, Any] = Field(default_factory=dict)
    outcome_success: bool | None = None
    corrected_from: str | None = None
