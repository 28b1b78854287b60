"""Schemas for per-session conversation state."""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from kenny.schemas.intent import ClassificationResult
from kenny.schemas.orchestrator import CorrectionRecord, Decision


CORRECTION_MARKER = "correction"


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


class Turn(BaseModel):
    """One message in a session. Immutable once appended."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    intent: str | None = None
    confidence: float | None = None
    decision: str | None = None


class WorkingMemory(BaseModel):
    """Best-effort summary of what the user is doing in this session.

    Lists are newest first and bounded by the context manager.
    """

    current_task: str | None = None
    pending_actions: list[str] = Field(default_factory=list)
    key_facts: list[str] = Field(default_factory=list)
    recent_topics: list[str] = Field(default_factory=list)
    # Digest of turns that fell out of the history window
    summary: list[str] = Field(default_factory=list)


class TurnSummary(BaseModel):
    """Model-written digest of turns leaving the history window."""

    key_points: list[str] = Field(default_factory=list, description="What the user asked for or said")
    action_items: list[str] = Field(default_factory=list, description="Things still to be done")
    decisions: list[str] = Field(default_factory=list, description="Choices the user settled on")


class SessionContext(BaseModel):
    """Mutable per-session state owned by the context manager."""

    session_id: str
    user_id: str = "default"
    turns: list[Turn] = Field(default_factory=list)
    working_memory: WorkingMemory = Field(default_factory=WorkingMemory)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_updated: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_classification: ClassificationResult | None = None
    corrections: list[CorrectionRecord] = Field(default_factory=list)
    # Awaiting yes/no from the user; not persisted
    pending_confirmation: Decision | None = None

    def last_user_turn(self) -> Turn | None:
        """Most recent user utterance, skipping recorded corrections."""
        for turn in reversed(self.turns):
            if turn.role == Role.USER and turn.decision != CORRECTION_MARKER:
                return turn
        return None
