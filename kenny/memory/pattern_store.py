"""SQLite persistence for learned correction patterns.

Uses stdlib sqlite3 — same pattern as SessionStore. The frequency
increment happens inside a single UPSERT statement, so concurrent
writers cannot lose an update.
"""

import json
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from kenny.schemas.orchestrator import PatternMemoryEntry

logger = logging.getLogger(__name__)

_CREATE_PATTERNS = """
CREATE TABLE IF NOT EXISTS patterns (
    key         TEXT PRIMARY KEY,
    intent      TEXT NOT NULL,
    slots_json  TEXT NOT NULL,
    frequency   INTEGER NOT NULL DEFAULT 1,
    last_seen   TEXT NOT NULL,
    created_at  TEXT NOT NULL
)
"""

_UPSERT_PATTERN = """
INSERT INTO patterns (key, intent, slots_json, frequency, last_seen, created_at)
VALUES (?, ?, ?, 1, ?, ?)
ON CONFLICT(key) DO UPDATE SET
    intent = excluded.intent,
    slots_json = excluded.slots_json,
    frequency = patterns.frequency + 1,
    last_seen = excluded.last_seen
"""

_TOUCH_PATTERN = """
UPDATE patterns SET last_seen = ? WHERE key = ?
"""

_SELECT_PATTERN = """
SELECT key, intent, slots_json, frequency, last_seen, created_at
FROM patterns WHERE key = ?
"""

_SELECT_ALL = """
SELECT key, intent, slots_json, frequency, last_seen, created_at
FROM patterns
ORDER BY frequency DESC, last_seen DESC
"""

_DELETE_PATTERN = """
DELETE FROM patterns WHERE key = ?
"""


def _row_to_entry(row: sqlite3.Row) -> PatternMemoryEntry:
    return PatternMemoryEntry(
        key=row["key"],
        intent=row["intent"],
        slots=json.loads(row["slots_json"]),
        frequency=row["frequency"],
        last_seen=datetime.fromisoformat(row["last_seen"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class PatternStore:
    """SQLite-backed store for pattern memory entries.

    Usage::

        with PatternStore("data/patterns.db") as store:
            entry = store.reinforce("weekly sync tomorrow", "create_event", {})
            for entry in store.list_entries():
                ...
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_CREATE_PATTERNS)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "PatternStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def reinforce(self, key: str, intent: str, slots: dict[str, Any]) -> PatternMemoryEntry:
        """Insert *key* at frequency 1, or bump its frequency and replace intent/slots."""
        now = datetime.now(UTC).isoformat()
        self._conn.execute(_UPSERT_PATTERN, (key, intent, json.dumps(slots), now, now))
        self._conn.commit()
        entry = self.get(key)
        logger.debug("Pattern %r now at frequency %d", key, entry.frequency)
        return entry

    def touch(self, key: str) -> None:
        self._conn.execute(_TOUCH_PATTERN, (datetime.now(UTC).isoformat(), key))
        self._conn.commit()

    def get(self, key: str) -> PatternMemoryEntry | None:
        row = self._conn.execute(_SELECT_PATTERN, (key,)).fetchone()
        if row is None:
            return None
        return _row_to_entry(row)

    def list_entries(self) -> list[PatternMemoryEntry]:
        """Return all entries, most frequent first."""
        return [_row_to_entry(row) for row in self._conn.execute(_SELECT_ALL).fetchall()]

    def delete(self, key: str) -> bool:
        cursor = self._conn.execute(_DELETE_PATTERN, (key,))
        self._conn.commit()
        return cursor.rowcount > 0
