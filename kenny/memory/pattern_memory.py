"""Process-wide memory of user corrections.

Maps normalized input text to the intent/slots the user said it should
have produced. The intent classifier checks it before anything else, so
a corrected utterance never goes back through rules or the model.

Safe to share across sessions: the in-memory map and every frequency
increment are guarded by one lock, and the persistent increment is a
single UPSERT.
"""

import logging
import re
import threading
from datetime import UTC, datetime
from typing import Any

from kenny.memory.pattern_store import PatternStore
from kenny.schemas.orchestrator import PatternMemoryEntry

logger = logging.getLogger(__name__)

# Keys shorter than this only ever match exactly
MIN_SUBSTRING_KEY_LENGTH = 8


def normalize(text: str) -> str:
    """Lower-case, drop punctuation, and collapse whitespace."""
    lowered = text.lower()
    lowered = re.sub(r"[^\w\s']", " ", lowered)
    return re.sub(r"\s+", " ", lowered).strip()


class PatternMemory:
    """Frequency-ranked exact/substring match store.

    Without a store the memory lives only as long as the process, which is
    what tests and one-shot CLI calls without a database want.
    """

    def __init__(self, store: PatternStore | None = None) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._entries: dict[str, PatternMemoryEntry] = {}
        if store is not None:
            for entry in store.list_entries():
                self._entries[entry.key] = entry
            logger.info("Loaded %d learned pattern(s)", len(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, text: str) -> PatternMemoryEntry | None:
        """Find the entry for *text*: exact key first, then the best contained key.

        A key is contained when it appears in the normalized text on word
        boundaries. Among contained keys the most frequent wins, then the
        longest.
        """
        key = normalize(text)
        if not key:
            return None

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                padded = f" {key} "
                candidates = [
                    e
                    for k, e in self._entries.items()
                    if len(k) >= MIN_SUBSTRING_KEY_LENGTH and f" {k} " in padded
                ]
                if candidates:
                    entry = max(candidates, key=lambda e: (e.frequency, len(e.key)))
            if entry is None:
                return None
            entry.last_seen = datetime.now(UTC)
            hit = entry.model_copy(deep=True)

        if self._store is not None:
            self._store.touch(hit.key)
        logger.debug("Pattern memory hit: %r -> %s", hit.key, hit.intent)
        return hit

    def record(self, text: str, intent: str, slots: dict[str, Any] | None = None) -> PatternMemoryEntry:
        """Store a correction for *text*, reinforcing any existing entry.

        A new entry starts at frequency 1. An existing entry has its
        frequency incremented and its intent/slots replaced by this
        correction.
        """
        key = normalize(text)
        if not key:
            raise ValueError("Cannot learn a pattern from empty text")
        slots = dict(slots or {})

        with self._lock:
            if self._store is not None:
                entry = self._store.reinforce(key, intent, slots)
            else:
                now = datetime.now(UTC)
                existing = self._entries.get(key)
                if existing is None:
                    entry = PatternMemoryEntry(key=key, intent=intent, slots=slots, last_seen=now, created_at=now)
                else:
                    entry = existing.model_copy(
                        update={
                            "intent": intent,
                            "slots": slots,
                            "frequency": existing.frequency + 1,
                            "last_seen": now,
                        }
                    )
            self._entries[key] = entry
            result = entry.model_copy(deep=True)

        logger.info("Learned pattern %r -> %s (frequency %d)", key, intent, result.frequency)
        return result

    def get(self, text: str) -> PatternMemoryEntry | None:
        """Exact-key read, with no substring matching and no last-seen update."""
        with self._lock:
            entry = self._entries.get(normalize(text))
            return entry.model_copy(deep=True) if entry else None

    def forget(self, text: str) -> bool:
        key = normalize(text)
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            if self._store is not None:
                removed = self._store.delete(key) or removed
        return removed

    def entries(self) -> list[PatternMemoryEntry]:
        """All entries, most frequent first."""
        with self._lock:
            snapshot = [e.model_copy(deep=True) for e in self._entries.values()]
        return sorted(snapshot, key=lambda e: (-e.frequency, e.key))
