"""Per-session conversation context with optional SQLite persistence.

Holds a bounded turn history per session and a heuristic working memory
derived from what the user says. The in-memory history never exceeds
``max_turns``; older turns stay in the store but are not reloaded.
Evicted turns are folded into ``WorkingMemory.summary`` before they go.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from kenny.errors import SessionNotFound
from kenny.memory.pattern_memory import normalize
from kenny.orchestrator.summarizer import TurnSummarizer, summarize_turns
from kenny.planner.temporal import WEEKDAYS
from kenny.schemas.intent import ClassificationResult
from kenny.schemas.orchestrator import CorrectionRecord
from kenny.schemas.session import Role, SessionContext, Turn, WorkingMemory

if TYPE_CHECKING:
    from kenny.orchestrator.session_store import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 10

MAX_PENDING_ACTIONS = 10
MAX_KEY_FACTS = 20
MAX_RECENT_TOPICS = 10
MAX_SESSION_CORRECTIONS = 20
MAX_SUMMARY_POINTS = 12

_TASK_TRIGGER = r"\b(?:working on|trying to|need to|help me)\s+(.+?)(?:[.!?]|$)"
_ACTION_TRIGGER = r"\b(?:todo|to-do|will|need to|should|must)\b"
_FACT_TRIGGER = r"\b(?:is|are|was|were|called|named)\b"

_NOT_TOPICS = {d.capitalize() for d in WEEKDAYS} | {"Today", "Tomorrow", "Tonight", "Please", "Could", "Would"}


def _sentences(text: str) -> list[str]:
    return [s.strip() for s in re.split(r"(?<=[.!?])\s+", text) if s.strip()]


def _push(items: list[str], value: str, limit: int) -> list[str]:
    """Return *items* with *value* moved to the front, bounded to *limit*."""
    return ([value] + [i for i in items if i != value])[:limit]


def update_working_memory(memory: WorkingMemory, content: str) -> WorkingMemory:
    """Derive working-memory updates from one user message. Best-effort."""
    updated = memory.model_copy(deep=True)

    m = re.search(_TASK_TRIGGER, content, re.IGNORECASE)
    if m:
        updated.current_task = m.group(1).strip()[:100]

    for sentence in _sentences(content):
        if re.search(_ACTION_TRIGGER, sentence, re.IGNORECASE):
            updated.pending_actions = _push(updated.pending_actions, sentence, MAX_PENDING_ACTIONS)
        elif "?" not in sentence and re.search(_FACT_TRIGGER, sentence, re.IGNORECASE):
            updated.key_facts = _push(updated.key_facts, sentence, MAX_KEY_FACTS)

    for topic in re.findall(r"\b[A-Z][a-z]{4,}\b", content):
        if topic not in _NOT_TOPICS:
            updated.recent_topics = _push(updated.recent_topics, topic, MAX_RECENT_TOPICS)

    return updated


class ConversationContextManager:
    """Owns every SessionContext in the process.

    Mutations for one session must happen while holding :meth:`lock` for
    that session; different sessions never contend.

    Usage::

        contexts = ConversationContextManager(store=SessionStore(path))
        async with contexts.lock(session_id):
            contexts.get_or_create(session_id, user_id)
            contexts.append(session_id, Turn(role=Role.USER, content=text))
            await contexts.archive(session_id)
            contexts.save(session_id)
    """

    def __init__(
        self,
        *,
        store: SessionStore | None = None,
        max_turns: int = DEFAULT_MAX_TURNS,
        summarizer: TurnSummarizer | None = None,
    ) -> None:
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self._store = store
        self._max_turns = max_turns
        self._summarizer = summarizer
        self._sessions: dict[str, SessionContext] = {}
        self._unsaved: dict[str, list[Turn]] = {}
        # Turns dropped from the window but not yet folded into the summary
        self._evicted: dict[str, list[Turn]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def max_turns(self) -> int:
        return self._max_turns

    def lock(self, session_id: str) -> asyncio.Lock:
        """Return the lock that serializes work on *session_id*."""
        return self._locks.setdefault(session_id, asyncio.Lock())

    def get(self, session_id: str) -> SessionContext | None:
        """Return the session from memory, falling back to the store."""
        context = self._sessions.get(session_id)
        if context is None and self._store is not None:
            context = self._store.load_session(session_id, self._max_turns)
            if context is not None:
                logger.info("Resumed session %s (%d turns)", session_id[:8], len(context.turns))
                self._sessions[session_id] = context
        return context

    def exists(self, session_id: str) -> bool:
        return self.get(session_id) is not None

    def get_or_create(self, session_id: str, user_id: str = "default") -> SessionContext:
        context = self.get(session_id)
        if context is None:
            context = SessionContext(session_id=session_id, user_id=user_id)
            self._sessions[session_id] = context
            logger.info("Created session %s for user %s", session_id[:8], user_id)
        return context

    def append(self, session_id: str, turn: Turn) -> SessionContext:
        """Append *turn*, evicting the oldest turns beyond the cap.

        Evicted turns are held until :meth:`archive` (or :meth:`save`)
        folds them into the working-memory summary.

        Raises:
            SessionNotFound: If the session was never created.
        """
        context = self.get(session_id)
        if context is None:
            raise SessionNotFound(session_id)

        context.turns.append(turn)
        if len(context.turns) > self._max_turns:
            overflow = len(context.turns) - self._max_turns
            self._evicted.setdefault(session_id, []).extend(context.turns[:overflow])
            context.turns = context.turns[overflow:]
        if turn.role == Role.USER:
            context.working_memory = update_working_memory(context.working_memory, turn.content)
        context.last_updated = datetime.now(UTC)
        self._unsaved.setdefault(session_id, []).append(turn)
        return context

    def set_classification(self, session_id: str, result: ClassificationResult) -> None:
        context = self.get(session_id)
        if context is None:
            raise SessionNotFound(session_id)
        context.last_classification = result

    def add_correction(self, session_id: str, correction: CorrectionRecord) -> None:
        """Keep a correction that applies to this session only (newest wins)."""
        context = self.get(session_id)
        if context is None:
            raise SessionNotFound(session_id)
        key = normalize(correction.original_text)
        kept = [c for c in context.corrections if normalize(c.original_text) != key]
        context.corrections = ([correction] + kept)[:MAX_SESSION_CORRECTIONS]

    def find_correction(self, session_id: str, text: str) -> CorrectionRecord | None:
        """Return the session-scoped correction for *text*, if any."""
        context = self._sessions.get(session_id)
        if context is None:
            return None
        key = normalize(text)
        for correction in context.corrections:
            if normalize(correction.original_text) == key:
                return correction
        return None

    async def archive(self, session_id: str) -> None:
        """Fold turns evicted since the last archive into the summary.

        Uses the configured summarizer (which may call the model); without
        one, or for a session with nothing evicted, this is cheap.
        """
        evicted = self._evicted.pop(session_id, None)
        context = self._sessions.get(session_id)
        if not evicted or context is None:
            return
        if self._summarizer is not None:
            points = await self._summarizer.summarize(evicted)
        else:
            points = summarize_turns(evicted)
        self._fold_summary(context, points)
        logger.debug("Archived %d turns of session %s", len(evicted), session_id[:8])

    def _fold_summary(self, context: SessionContext, points: list[str]) -> None:
        summary = context.working_memory.summary
        for point in points:
            summary = _push(summary, point, MAX_SUMMARY_POINTS)
        context.working_memory.summary = summary

    def save(self, session_id: str) -> None:
        """Persist the session and any turns appended since the last save.

        Evicted turns that were never archived are summarized heuristically
        first, so nothing leaves the window without a trace.
        """
        context = self._sessions.get(session_id)
        if context is None:
            raise SessionNotFound(session_id)
        evicted = self._evicted.pop(session_id, None)
        if evicted:
            self._fold_summary(context, summarize_turns(evicted))
        pending = self._unsaved.pop(session_id, [])
        if self._store is not None:
            self._store.save_session(context, pending)

    def clear(self, session_id: str) -> bool:
        """Forget a session in memory and in the store.

        Not to be called while holding the session's :meth:`lock`.
        """
        removed = self._sessions.pop(session_id, None) is not None
        self._unsaved.pop(session_id, None)
        self._evicted.pop(session_id, None)
        self._locks.pop(session_id, None)
        if self._store is not None:
            removed = self._store.delete_session(session_id) or removed
        if removed:
            logger.info("Cleared session %s", session_id[:8])
        return removed

    def recent_context(self, session_id: str, max_turns: int = 5) -> str:
        """Return the last *max_turns* turns as ``User: ...`` / ``Kenny: ...`` lines.

        When older turns have been summarized, an ``Earlier: ...`` line
        (oldest point first) comes before them.
        """
        context = self._sessions.get(session_id)
        if context is None or not context.turns:
            return ""
        lines = []
        if context.working_memory.summary:
            lines.append("Earlier: " + "; ".join(reversed(context.working_memory.summary)))
        for turn in context.turns[-max_turns:]:
            speaker = "User" if turn.role == Role.USER else "Kenny"
            lines.append(f"{speaker}: {turn.content}")
        return "\n".join(lines)
