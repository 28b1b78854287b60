"""Schemas for utterances and intent classification."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Intent(StrEnum):
    """Intents the dispatcher knows how to route."""

    CREATE_EVENT = "create_event"
    ADD_REMINDER = "add_reminder"
    CREATE_NOTE = "create_note"
    SEND_EMAIL = "send_email"
    READ_EMAIL = "read_email"
    UNKNOWN = "unknown"


KNOWN_INTENTS: frozenset[str] = frozenset(i.value for i in Intent if i != Intent.UNKNOWN)


class Provenance(StrEnum):
    """Which subsystem produced a classification."""

    RULE = "rule"
    MODEL = "model"
    PATTERN_MEMORY = "pattern-memory"


class Utterance(BaseModel):
    """A single piece of user input, as received."""

    model_config = ConfigDict(frozen=True)

    text: str
    session_id: str | None = None
    user_id: str | None = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ClassificationResult(BaseModel):
    """Intent + slots with the confidence of exactly one provenance source.

    ``intent`` is a plain string: the model may name an intent outside
    :class:`Intent`, and pattern memory stores whatever the user corrected to.
    """

    intent: str
    confidence: float = Field(ge=0.0, le=1.0)
    slots: dict[str, Any] = Field(default_factory=dict)
    provenance: Provenance
    ambiguities: list[str] = Field(default_factory=list)

    @classmethod
    def unknown(cls, provenance: Provenance = Provenance.RULE) -> "ClassificationResult":
        return cls(intent=Intent.UNKNOWN.value, confidence=0.0, provenance=provenance)
