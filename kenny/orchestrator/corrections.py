"""Correction handler — learn from a user's fix and act on it.

A correction always re-dispatches with the corrected intent/slots at
confidence 1.0. With ``always_apply`` it is also written to pattern
memory, so the same utterance takes the pattern-memory path from then on;
without it, the correction only applies within its session.
"""

import logging

from kenny.audit.logger import DecisionLog
from kenny.memory.pattern_memory import PatternMemory
from kenny.orchestrator.context import ConversationContextManager
from kenny.orchestrator.dispatcher import ActionDispatcher
from kenny.schemas.actions import ActionResult
from kenny.schemas.intent import Intent, Provenance
from kenny.schemas.orchestrator import CorrectionRecord, Decision, DecisionAction
from kenny.schemas.session import CORRECTION_MARKER, Role, Turn

logger = logging.getLogger(__name__)


class CorrectionHandler:
    """Applies user corrections.

    Usage::

        handler = CorrectionHandler(
            contexts=contexts, pattern_memory=memory, dispatcher=dispatcher,
        )
        decision, outcome = await handler.apply_correction(session_id, correction)
    """

    def __init__(
        self,
        *,
        contexts: ConversationContextManager,
        pattern_memory: PatternMemory,
        dispatcher: ActionDispatcher,
        audit: DecisionLog | None = None,
    ) -> None:
        self._contexts = contexts
        self._pattern_memory = pattern_memory
        self._dispatcher = dispatcher
        self._audit = audit

    async def apply_correction(
        self,
        session_id: str,
        correction: CorrectionRecord,
    ) -> tuple[Decision, ActionResult]:
        """Record *correction* and dispatch the corrected action.

        An empty ``original_text`` means "the last thing I said": it is
        filled from the session's most recent user turn, and the predicted
        intent/slots from the session's last classification.

        Returns:
            (Decision, ActionResult). For an unknown session the decision is
            ``error`` and nothing is dispatched or learned.
        """
        async with self._contexts.lock(session_id):
            context = self._contexts.get(session_id)
            if context is None:
                logger.warning("Correction for unknown session %s", session_id)
                message = "Session not found. Start a new request and try again."
                decision = Decision(
                    action=DecisionAction.ERROR,
                    intent=correction.corrected_intent,
                    confidence=0.0,
                    slots=dict(correction.corrected_slots),
                    provenance=Provenance.PATTERN_MEMORY,
                    rationale=f"Session not found: {session_id}",
                )
                return decision, ActionResult(success=False, message=message, spoken_response=message)

            correction = self._complete(correction, session_id)
            context.pending_confirmation = None

            if correction.always_apply and correction.original_text:
                entry = self._pattern_memory.record(
                    correction.original_text,
                    correction.corrected_intent,
                    correction.corrected_slots,
                )
                rationale = f"User correction, learned (frequency {entry.frequency})"
            else:
                if correction.original_text:
                    self._contexts.add_correction(session_id, correction)
                rationale = "User correction for this session"

            decision = Decision(
                action=DecisionAction.EXECUTE,
                intent=correction.corrected_intent,
                confidence=1.0,
                slots=dict(correction.corrected_slots),
                provenance=Provenance.PATTERN_MEMORY,
                rationale=rationale,
            )
            logger.info(
                "Correction %s -> %s (always_apply=%s)",
                correction.predicted_intent, correction.corrected_intent, correction.always_apply,
            )

            outcome = await self._dispatcher.dispatch(
                decision.intent, decision.slots, session_id, user_id=context.user_id
            )

            self._contexts.append(
                session_id,
                Turn(
                    role=Role.USER,
                    content=f"Correction: I meant {correction.corrected_intent}",
                    intent=correction.corrected_intent,
                    confidence=1.0,
                    decision=CORRECTION_MARKER,
                ),
            )
            self._contexts.append(
                session_id,
                Turn(
                    role=Role.ASSISTANT,
                    content=outcome.message,
                    intent=decision.intent,
                    confidence=decision.confidence,
                    decision=decision.action.value,
                ),
            )
            await self._contexts.archive(session_id)
            self._contexts.save(session_id)

        if self._audit is not None:
            self._audit.log_correction(session_id, correction, decision, outcome)
        return decision, outcome

    def _complete(self, correction: CorrectionRecord, session_id: str) -> CorrectionRecord:
        """Fill original text and prediction from the session when omitted."""
        context = self._contexts.get(session_id)
        update = {}
        if not correction.original_text:
            last_turn = context.last_user_turn()
            if last_turn is not None:
                update["original_text"] = last_turn.content
        last = context.last_classification
        if correction.predicted_intent is None and last is not None:
            update["predicted_intent"] = last.intent
            update["predicted_slots"] = dict(last.slots)
        if correction.predicted_intent is None and last is None:
            update["predicted_intent"] = Intent.UNKNOWN.value
        return correction.model_copy(update=update) if update else correction
