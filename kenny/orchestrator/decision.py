"""Confidence gate — maps a classification to execute/confirm/clarify/learn.

Two interchangeable policies behind one interface, chosen per deployment
with ``KENNY_DECISION_POLICY``:

* ``threshold`` — fixed numeric cutoffs. Only confident results execute;
  everything below the execute cutoff asks for confirmation.
* ``semantic`` — confidence is collapsed to a high/medium/low band (by the
  model when one is available) and ambiguity flags push towards confirm.

A single step per utterance; nothing here is persisted.
"""

import logging
from abc import ABC, abstractmethod

from pydantic import ValidationError

from kenny.integrations.ollama import CompletionError, OllamaClient
from kenny.schemas.intent import KNOWN_INTENTS, ClassificationResult, Intent, Provenance
from kenny.schemas.orchestrator import Decision, DecisionAction, SemanticBand, SemanticJudgement
from kenny.schemas.session import SessionContext

logger = logging.getLogger(__name__)

CONFIRM_THRESHOLD = 0.81
EXECUTE_THRESHOLD = 0.91

HIGH_BAND_CUTOFF = 0.85
MEDIUM_BAND_CUTOFF = 0.6

REQUIRED_SLOTS: dict[str, tuple[str, ...]] = {
    Intent.CREATE_EVENT: ("datetime",),
    Intent.ADD_REMINDER: ("datetime",),
    Intent.SEND_EMAIL: ("recipients",),
}


def missing_slots(intent: str, slots: dict) -> list[str]:
    return [name for name in REQUIRED_SLOTS.get(intent, ()) if not slots.get(name)]


class DecisionPolicy(ABC):
    """Strategy interface for the confidence gate."""

    name: str

    @abstractmethod
    async def decide(
        self,
        result: ClassificationResult,
        session: SessionContext | None = None,
        *,
        text: str = "",
    ) -> Decision:
        """Decide what to do with *result*."""

    def _decision(
        self,
        action: DecisionAction,
        result: ClassificationResult,
        rationale: str,
        band: SemanticBand | None = None,
    ) -> Decision:
        logger.info(
            "Decision %s for %s (%.2f, %s): %s",
            action.value, result.intent, result.confidence, result.provenance.value, rationale,
        )
        return Decision(
            action=action,
            intent=result.intent,
            confidence=result.confidence,
            slots=dict(result.slots),
            provenance=result.provenance,
            rationale=rationale,
            band=band,
        )


class ThresholdPolicy(DecisionPolicy):
    """Fixed cutoffs: execute at or above ``execute_threshold``, else confirm.

    Results between the two cutoffs are deliberately not auto-executed.
    """

    name = "threshold"

    def __init__(
        self,
        confirm_threshold: float = CONFIRM_THRESHOLD,
        execute_threshold: float = EXECUTE_THRESHOLD,
    ) -> None:
        if confirm_threshold > execute_threshold:
            raise ValueError("confirm_threshold must not exceed execute_threshold")
        self.confirm_threshold = confirm_threshold
        self.execute_threshold = execute_threshold

    async def decide(
        self,
        result: ClassificationResult,
        session: SessionContext | None = None,
        *,
        text: str = "",
    ) -> Decision:
        if result.provenance == Provenance.PATTERN_MEMORY:
            return self._decision(DecisionAction.EXECUTE, result, "Matched a learned correction")

        if result.intent not in KNOWN_INTENTS:
            return self._decision(
                DecisionAction.CLARIFY, result, f"Intent {result.intent!r} is not actionable"
            )

        if result.confidence >= self.execute_threshold:
            return self._decision(
                DecisionAction.EXECUTE, result,
                f"Confidence {result.confidence:.2f} >= execute threshold {self.execute_threshold:.2f}",
            )

        if result.confidence < self.confirm_threshold:
            rationale = f"Confidence {result.confidence:.2f} < confirm threshold {self.confirm_threshold:.2f}"
        else:
            rationale = (
                f"Confidence {result.confidence:.2f} between thresholds "
                f"{self.confirm_threshold:.2f} and {self.execute_threshold:.2f}"
            )
        return self._decision(DecisionAction.CONFIRM, result, rationale)


JUDGE_SYSTEM_PROMPT = """\
You review the output of an intent classifier for a personal assistant. \
Given the user's request, the predicted intent, its confidence and the \
extracted fields, rate how safe it is to act without asking the user.

- high: the request clearly means this intent and nothing important is missing
- medium: probably right, but the user should confirm
- low: unclear, the user should rephrase

List anything unclear or missing in ambiguities (short phrases). \
Leave ambiguities empty when there is nothing to flag.
"""

JUDGE_USER_PROMPT = """\
Request: {text}
Predicted intent: {intent}
Confidence: {confidence:.2f}
Fields: {slots}
"""


def collapse_band(confidence: float) -> SemanticBand:
    """Numeric fallback when no model judgement is available."""
    if confidence >= HIGH_BAND_CUTOFF:
        return SemanticBand.HIGH
    if confidence >= MEDIUM_BAND_CUTOFF:
        return SemanticBand.MEDIUM
    return SemanticBand.LOW


class SemanticPolicy(DecisionPolicy):
    """Band-based policy, optionally judged by the model.

    high and unambiguous → execute, medium or any ambiguity → confirm,
    low or an unknown intent → clarify. A learned correction → learn.
    """

    name = "semantic"

    def __init__(self, *, ollama: OllamaClient | None = None, model: str | None = None) -> None:
        self._ollama = ollama
        self._model = model

    async def decide(
        self,
        result: ClassificationResult,
        session: SessionContext | None = None,
        *,
        text: str = "",
    ) -> Decision:
        if result.provenance == Provenance.PATTERN_MEMORY:
            return self._decision(
                DecisionAction.LEARN, result, "Matched a learned correction", SemanticBand.HIGH
            )

        if result.intent not in KNOWN_INTENTS:
            return self._decision(
                DecisionAction.CLARIFY, result,
                f"Intent {result.intent!r} could not be parsed into an action", SemanticBand.LOW,
            )

        band, ambiguities = await self._judge(result, text)
        ambiguities = list(result.ambiguities) + ambiguities
        ambiguities += [f"missing {name}" for name in missing_slots(result.intent, result.slots)]
        result = result.model_copy(update={"ambiguities": ambiguities})

        if band == SemanticBand.LOW:
            return self._decision(DecisionAction.CLARIFY, result, "Low confidence band", band)
        if band == SemanticBand.HIGH and not ambiguities:
            return self._decision(DecisionAction.EXECUTE, result, "High confidence, nothing ambiguous", band)
        if ambiguities:
            rationale = f"{band.value.capitalize()} band with ambiguities: {', '.join(ambiguities)}"
        else:
            rationale = "Medium confidence band"
        return self._decision(DecisionAction.CONFIRM, result, rationale, band)

    async def _judge(self, result: ClassificationResult, text: str) -> tuple[SemanticBand, list[str]]:
        if self._ollama is None or not text:
            return collapse_band(result.confidence), []

        prompt = JUDGE_USER_PROMPT.format(
            text=text,
            intent=result.intent,
            confidence=result.confidence,
            slots=result.slots or "none",
        )
        try:
            judgement, _raw = await self._ollama.generate_structured(
                self._model,
                SemanticJudgement,
                JUDGE_SYSTEM_PROMPT,
                prompt,
                temperature=0.1,
            )
        except (CompletionError, ValidationError) as exc:
            logger.warning("Semantic judge unavailable, using numeric band: %s", exc)
            return collapse_band(result.confidence), []

        logger.debug("Semantic judge: %s %s", judgement.band.value, judgement.ambiguities)
        return judgement.band, list(judgement.ambiguities)


def build_policy(
    name: str,
    *,
    ollama: OllamaClient | None = None,
    model: str | None = None,
    confirm_threshold: float = CONFIRM_THRESHOLD,
    execute_threshold: float = EXECUTE_THRESHOLD,
) -> DecisionPolicy:
    """Construct the policy named by configuration.

    Raises:
        ValueError: If *name* is not ``threshold`` or ``semantic``.
    """
    if name == ThresholdPolicy.name:
        return ThresholdPolicy(confirm_threshold, execute_threshold)
    if name == SemanticPolicy.name:
        return SemanticPolicy(ollama=ollama, model=model)
    raise ValueError(f"Unknown decision policy: {name!r} (expected 'threshold' or 'semantic')")
