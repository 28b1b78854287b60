"""Intent classifier — pattern memory, then keyword rules, then the model.

Never raises for backend trouble: a completion failure degrades to the
rule result, or to ``unknown`` at confidence 0.
"""

import logging
import re

from kenny.errors import ClassificationFailure
from kenny.integrations.ollama import CompletionError, OllamaClient
from kenny.memory.pattern_memory import PatternMemory
from kenny.planner.rules import classify_by_rules
from kenny.schemas.intent import KNOWN_INTENTS, ClassificationResult, Provenance

logger = logging.getLogger(__name__)

RULE_CONFIDENCE_CUTOFF = 0.8
MODEL_CONFIDENCE = 0.9

SYSTEM_PROMPT = """\
You are Kenny, a personal assistant. Classify the user's request into \
exactly one of these intents:

- create_event — schedule a meeting, appointment or calendar event
- add_reminder — be reminded of something at a time
- create_note — write down, capture or save a note
- send_email — compose or send an email
- read_email — check, read or list emails
- unknown — none of the above

Respond with ONLY the intent name. No punctuation, no explanation.
"""

USER_PROMPT = """\
{context}Request: {user_input}
Intent:"""


def sanitize_intent(raw: str) -> str:
    """Reduce a model reply to a bare intent token (lower-case letters and ``_``)."""
    return re.sub(r"[^a-z_]", "", raw.strip().lower())


class IntentClassifier:
    """Hybrid rule/model intent classifier.

    Usage::

        classifier = IntentClassifier(ollama=client, pattern_memory=memory)
        result = await classifier.classify("remind me to call mom at 5pm")
    """

    def __init__(
        self,
        *,
        ollama: OllamaClient | None,
        pattern_memory: PatternMemory,
        rule_cutoff: float = RULE_CONFIDENCE_CUTOFF,
        model: str | None = None,
    ) -> None:
        self._ollama = ollama
        self._pattern_memory = pattern_memory
        self._rule_cutoff = rule_cutoff
        self._model = model

    async def classify(self, text: str, *, context: str = "") -> ClassificationResult:
        """Classify *text* into an intent.

        Args:
            text: Raw user input.
            context: Recent conversation lines, included in the model prompt.

        Returns:
            ClassificationResult tagged with the provenance that produced it.
        """
        learned = self._pattern_memory.lookup(text)
        if learned is not None:
            logger.info("Intent from pattern memory: %s (key=%r)", learned.intent, learned.key)
            return ClassificationResult(
                intent=learned.intent,
                confidence=1.0,
                slots=dict(learned.slots),
                provenance=Provenance.PATTERN_MEMORY,
            )

        rule_result = classify_by_rules(text)
        if rule_result is not None and rule_result.confidence > self._rule_cutoff:
            logger.info("Intent from rules: %s (%.2f)", rule_result.intent, rule_result.confidence)
            return rule_result

        if self._ollama is None:
            return rule_result or ClassificationResult.unknown()

        try:
            model_result = await self._classify_with_model(text, context)
        except (CompletionError, ClassificationFailure) as exc:
            logger.warning("Model classification failed, falling back to rules: %s", exc)
            return rule_result or ClassificationResult.unknown(Provenance.RULE)

        if rule_result is not None and rule_result.confidence > model_result.confidence:
            logger.info(
                "Rule result %s (%.2f) beats model result %s (%.2f)",
                rule_result.intent, rule_result.confidence,
                model_result.intent, model_result.confidence,
            )
            return rule_result
        return model_result

    async def _classify_with_model(self, text: str, context: str) -> ClassificationResult:
        prompt = USER_PROMPT.format(
            context=f"Recent conversation:\n{context}\n\n" if context else "",
            user_input=text,
        )
        response = await self._ollama.complete(
            prompt,
            system=SYSTEM_PROMPT,
            temperature=0.1,
            max_tokens=10,
            model=self._model,
        )
        intent = sanitize_intent(response.content)
        if not intent:
            raise ClassificationFailure(f"Model returned no intent: {response.content!r}")

        if intent not in KNOWN_INTENTS:
            logger.info("Model reply %r is not a known intent", response.content)
            return ClassificationResult.unknown(Provenance.MODEL)

        logger.info("Intent from model: %s (%.0fms)", intent, response.elapsed_ms)
        return ClassificationResult(
            intent=intent,
            confidence=MODEL_CONFIDENCE,
            provenance=Provenance.MODEL,
        )
