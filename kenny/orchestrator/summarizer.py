"""Digest turns that are about to leave a session's history window.

The context manager keeps only the newest turns. Before older turns are
dropped they are folded into ``WorkingMemory.summary`` so later requests
can still see what happened earlier in the session.
"""

import logging

from pydantic import ValidationError

from kenny.integrations.ollama import CompletionError, OllamaClient
from kenny.schemas.intent import Intent
from kenny.schemas.session import CORRECTION_MARKER, Role, Turn, TurnSummary

logger = logging.getLogger(__name__)

MAX_POINT_CHARS = 120

SUMMARY_SYSTEM_PROMPT = """You condense the older part of a conversation between a user and Kenny, \
a personal assistant. Keep only what matters for later requests: what the user asked for, \
anything still left to do, and choices the user settled on. Use short phrases, at most three \
items per list. Respond with JSON matching the schema."""


def _clip(text: str) -> str:
    text = " ".join(text.split())
    if len(text) <= MAX_POINT_CHARS:
        return text
    return text[: MAX_POINT_CHARS - 3].rstrip() + "..."


def summarize_turns(turns: list[Turn]) -> list[str]:
    """Heuristic digest, one point per user turn, oldest first.

    A user turn is labelled with the intent and decision recorded on the
    assistant turn that answered it. Corrections are kept verbatim.
    """
    points = []
    for i, turn in enumerate(turns):
        if turn.role != Role.USER:
            continue
        if turn.decision == CORRECTION_MARKER:
            points.append(_clip(turn.content))
            continue
        reply = turns[i + 1] if i + 1 < len(turns) and turns[i + 1].role == Role.ASSISTANT else None
        if reply is not None and reply.intent and reply.intent != Intent.UNKNOWN.value:
            points.append(_clip(f"{reply.intent} ({reply.decision}): {turn.content}"))
        else:
            points.append(_clip(f"Said: {turn.content}"))
    return points


def _transcript(turns: list[Turn]) -> str:
    lines = []
    for turn in turns:
        speaker = "User" if turn.role == Role.USER else "Kenny"
        lines.append(f"{speaker}: {turn.content}")
    return "\n".join(lines)


class TurnSummarizer:
    """Summarize evicted turns with the model, falling back to :func:`summarize_turns`."""

    def __init__(self, ollama: OllamaClient | None = None, *, model: str | None = None) -> None:
        self._ollama = ollama
        self._model = model

    async def summarize(self, turns: list[Turn]) -> list[str]:
        if not turns:
            return []
        if self._ollama is None:
            return summarize_turns(turns)

        try:
            summary, _raw = await self._ollama.generate_structured(
                self._model,
                TurnSummary,
                SUMMARY_SYSTEM_PROMPT,
                f"Conversation:\n{_transcript(turns)}",
                temperature=0.1,
            )
        except (CompletionError, ValidationError) as exc:
            logger.warning("Model summary failed, using heuristic digest: %s", exc)
            return summarize_turns(turns)

        points = [
            *summary.key_points,
            *(f"To do: {item}" for item in summary.action_items),
            *(f"Decided: {item}" for item in summary.decisions),
        ]
        points = [_clip(p) for p in points if p.strip()]
        logger.debug("Summarized %d turns into %d points", len(turns), len(points))
        return points or summarize_turns(turns)
