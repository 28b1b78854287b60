"""Assistant pipeline — the single entry point for an utterance.

Flow per request (under the session lock):

    record user turn → classify → extract slots → decide →
    dispatch (execute/learn) or ask (confirm/clarify) →
    record assistant turn → archive evicted turns → save

A confirm decision is remembered on the session; a following "yes"
executes it and a "no" drops it. Unexpected exceptions while
understanding the utterance become an ``error`` response instead of
escaping to the caller.
"""

import logging
import re
import uuid
from collections.abc import Callable
from datetime import datetime

from kenny.audit.logger import DecisionLog
from kenny.orchestrator.context import ConversationContextManager
from kenny.orchestrator.corrections import CorrectionHandler
from kenny.orchestrator.decision import DecisionPolicy, missing_slots
from kenny.orchestrator.dispatcher import ActionDispatcher, format_when
from kenny.planner.intent_classifier import IntentClassifier
from kenny.planner.slot_extractor import SlotExtractor
from kenny.schemas.actions import ActionResult
from kenny.schemas.intent import KNOWN_INTENTS, ClassificationResult, Intent, Provenance, Utterance
from kenny.schemas.orchestrator import (
    AssistantRequest,
    AssistantResponse,
    CorrectionRecord,
    CorrectionRequest,
    Decision,
    DecisionAction,
)
from kenny.schemas.session import Role, SessionContext, Turn
from kenny.services.base import parse_slot_datetime

logger = logging.getLogger(__name__)

DEFAULT_USER_ID = "default"
CONTEXT_TURNS = 4

_AFFIRMATIVE = r"^(?:yes|yeah|yep|yup|sure|ok|okay|confirm|correct|do it|go ahead|please do)\b[\s.!]*(?:please)?[\s.!]*$"
_NEGATIVE = r"^(?:no|nope|cancel|never ?mind|stop|don't)\b[\s.!]*$"

CLARIFY_MESSAGE = "I'm not sure what you mean. Could you rephrase that?"
CLARIFY_FOLLOW_UP = (
    "Try something like \"remind me to call mom at 5pm\" or \"schedule lunch with Sam on Friday\"."
)
CONFIRM_FOLLOW_UP = "Say yes to go ahead, or tell me what you meant."
ERROR_MESSAGE = "Sorry, I couldn't process that request. Please try again."

_SLOT_QUESTIONS = {
    "datetime": "when",
    "recipients": "who to send it to",
}


def describe_action(intent: str, slots: dict, now: datetime) -> str:
    """Phrase an intent as something the assistant would do ("schedule ...")."""
    when = ""
    start = parse_slot_datetime(slots.get("datetime"))
    if start is not None:
        when = f" {format_when(start, now)}"
    title = slots.get("title")

    if intent == Intent.CREATE_EVENT:
        return f"schedule {'“' + title + '”' if title else 'an event'}{when}"
    if intent == Intent.ADD_REMINDER:
        return f"remind you to {title or 'do something'}{when}"
    if intent == Intent.CREATE_NOTE:
        return f"save a note{' “' + title + '”' if title else ''}"
    if intent == Intent.SEND_EMAIL:
        to = slots.get("recipients") or slots.get("recipient_names") or []
        return f"send an email{' to ' + ', '.join(to) if to else ''}"
    if intent == Intent.READ_EMAIL:
        return "check your email"
    return f"do “{intent}”"


class AssistantPipeline:
    """Wires the components together for one process.

    Every collaborator is passed in; nothing is looked up globally.

    Usage::

        pipeline = AssistantPipeline(
            classifier=classifier, extractor=extractor, policy=policy,
            contexts=contexts, dispatcher=dispatcher, corrections=corrections,
            audit=DecisionLog(path),
        )
        response = await pipeline.handle(AssistantRequest(text="remind me to stretch at 3pm"))
    """

    def __init__(
        self,
        *,
        classifier: IntentClassifier,
        extractor: SlotExtractor,
        policy: DecisionPolicy,
        contexts: ConversationContextManager,
        dispatcher: ActionDispatcher,
        corrections: CorrectionHandler,
        audit: DecisionLog | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._classifier = classifier
        self._extractor = extractor
        self._policy = policy
        self._contexts = contexts
        self._dispatcher = dispatcher
        self._corrections = corrections
        self._audit = audit
        self._clock = clock or (lambda: datetime.now().astimezone())

    @property
    def contexts(self) -> ConversationContextManager:
        return self._contexts

    async def handle(self, request: AssistantRequest) -> AssistantResponse:
        """Process one utterance and return the wire response."""
        utterance = Utterance(
            text=request.text.strip(),
            session_id=request.session_id or str(uuid.uuid4()),
            user_id=request.user_id or DEFAULT_USER_ID,
        )
        session_id = utterance.session_id

        async with self._contexts.lock(session_id):
            context = self._contexts.get_or_create(session_id, utterance.user_id)
            history = self._contexts.recent_context(session_id, CONTEXT_TURNS)
            pending = context.pending_confirmation
            context.pending_confirmation = None

            self._contexts.append(session_id, Turn(role=Role.USER, content=utterance.text))

            result: ClassificationResult | None = None
            if pending is not None and re.match(_AFFIRMATIVE, utterance.text, re.IGNORECASE):
                decision = pending.model_copy(
                    update={"action": DecisionAction.EXECUTE, "rationale": "Confirmed by user"}
                )
            elif pending is not None and re.match(_NEGATIVE, utterance.text, re.IGNORECASE):
                decision = None
            else:
                try:
                    result, decision = await self._decide(session_id, context, utterance.text, history)
                except Exception as exc:
                    logger.exception("Failed to understand %r", utterance.text)
                    decision = Decision(
                        action=DecisionAction.ERROR,
                        intent=Intent.UNKNOWN.value,
                        confidence=0.0,
                        provenance=Provenance.RULE,
                        rationale=f"{type(exc).__name__} while classifying",
                    )

            if decision is None:
                response = self._cancelled(pending, session_id)
                outcome = None
            else:
                outcome = None
                if decision.dispatches:
                    outcome = await self._dispatcher.dispatch(
                        decision.intent, decision.slots, session_id, user_id=utterance.user_id
                    )
                response = self._respond(decision, outcome, session_id)
                if decision.action == DecisionAction.CONFIRM:
                    context.pending_confirmation = decision

            if result is not None:
                self._contexts.set_classification(session_id, result)
            self._contexts.append(
                session_id,
                Turn(
                    role=Role.ASSISTANT,
                    content=response.message,
                    intent=response.intent,
                    confidence=response.confidence,
                    decision=response.decision.value,
                ),
            )
            await self._contexts.archive(session_id)
            self._contexts.save(session_id)

        if self._audit is not None and decision is not None:
            self._audit.log_decision(session_id, utterance.text, decision, outcome)
        return response

    async def correct(self, request: CorrectionRequest) -> AssistantResponse:
        """Apply a user correction and return the wire response."""
        correction = CorrectionRecord(
            original_text=request.original_text or "",
            predicted_intent=request.predicted_intent,
            predicted_slots=request.predicted_slots,
            corrected_intent=request.corrected_intent,
            corrected_slots=request.corrected_slots,
            always_apply=request.always_apply,
        )
        decision, outcome = await self._corrections.apply_correction(request.session_id, correction)
        return self._respond(decision, outcome, request.session_id)

    async def _decide(
        self,
        session_id: str,
        context: SessionContext,
        text: str,
        history: str,
    ) -> tuple[ClassificationResult, Decision]:
        """Classify *text* and put the result through the policy.

        A correction made earlier in this session skips the policy and
        executes. Nothing was stored for it, so it is never reported as
        ``learn``.
        """
        correction = self._contexts.find_correction(session_id, text) if text else None
        if correction is None:
            result = await self._understand(text, history)
            return result, await self._policy.decide(result, context, text=text)

        logger.info("Session correction applies to %r", text)
        result = await self._with_slots(
            ClassificationResult(
                intent=correction.corrected_intent,
                confidence=1.0,
                slots=dict(correction.corrected_slots),
                provenance=Provenance.PATTERN_MEMORY,
            ),
            text,
        )
        decision = Decision(
            action=DecisionAction.EXECUTE,
            intent=result.intent,
            confidence=result.confidence,
            slots=dict(result.slots),
            provenance=result.provenance,
            rationale="Matched a correction made earlier in this session",
        )
        return result, decision

    async def _understand(self, text: str, history: str) -> ClassificationResult:
        if not text:
            return ClassificationResult.unknown()
        result = await self._classifier.classify(text, context=history)
        return await self._with_slots(result, text)

    async def _with_slots(self, result: ClassificationResult, text: str) -> ClassificationResult:
        """Fill slots for *result*; slots it already carries (learned ones) win."""
        if result.intent not in KNOWN_INTENTS:
            return result
        extracted = await self._extractor.extract_slots(text, result.intent)
        return result.model_copy(update={"slots": {**extracted, **result.slots}})

    def _respond(
        self,
        decision: Decision,
        outcome: ActionResult | None,
        session_id: str,
    ) -> AssistantResponse:
        fields = {
            "decision": decision.action,
            "intent": decision.intent,
            "confidence": decision.confidence,
            "slots": decision.slots,
            "session_id": session_id,
        }

        if outcome is not None:
            return AssistantResponse(
                success=outcome.success,
                message=outcome.message,
                spoken_response=outcome.spoken_response,
                follow_up=outcome.follow_up,
                **fields,
            )

        if decision.action == DecisionAction.CONFIRM:
            question = f"Do you want me to {describe_action(decision.intent, decision.slots, self._clock())}?"
            return AssistantResponse(
                success=True,
                message=question,
                spoken_response=question,
                follow_up=CONFIRM_FOLLOW_UP,
                **fields,
            )

        if decision.action == DecisionAction.CLARIFY:
            message = CLARIFY_MESSAGE
            missing = missing_slots(decision.intent, decision.slots)
            if decision.intent in KNOWN_INTENTS and missing:
                wanted = " and ".join(_SLOT_QUESTIONS.get(m, m) for m in missing)
                message = f"I can {describe_action(decision.intent, decision.slots, self._clock())}, but I need to know {wanted}."
            return AssistantResponse(
                success=True,
                message=message,
                spoken_response=message,
                follow_up=CLARIFY_FOLLOW_UP,
                **fields,
            )

        return AssistantResponse(success=False, message=ERROR_MESSAGE, spoken_response=ERROR_MESSAGE, **fields)

    def _cancelled(self, pending: Decision, session_id: str) -> AssistantResponse:
        message = "Okay, I won't do that."
        return AssistantResponse(
            success=True,
            decision=DecisionAction.CLARIFY,
            intent=pending.intent,
            confidence=pending.confidence,
            slots=pending.slots,
            message=message,
            spoken_response=message,
            follow_up="What would you like instead?",
            session_id=session_id,
        )
