"""SQLite-backed persistence for session contexts.

Stores each session's metadata and working memory plus every turn, so a
session can be resumed after a restart. Uses stdlib sqlite3 in WAL mode.
"""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from pydantic import TypeAdapter

from kenny.schemas.intent import ClassificationResult
from kenny.schemas.orchestrator import CorrectionRecord
from kenny.schemas.session import Role, SessionContext, Turn, WorkingMemory

logger = logging.getLogger(__name__)

_CORRECTIONS = TypeAdapter(list[CorrectionRecord])

_CREATE_SESSIONS = """
CREATE TABLE IF NOT EXISTS sessions (
    id                    TEXT PRIMARY KEY,
    user_id               TEXT NOT NULL,
    working_memory_json   TEXT NOT NULL,
    last_classification   TEXT,
    corrections_json      TEXT NOT NULL DEFAULT '[]',
    created_at            TEXT NOT NULL,
    updated_at            TEXT NOT NULL
)
"""

_CREATE_TURNS = """
CREATE TABLE IF NOT EXISTS turns (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id  TEXT NOT NULL REFERENCES sessions(id),
    role        TEXT NOT NULL,
    content     TEXT NOT NULL,
    intent      TEXT,
    confidence  REAL,
    decision    TEXT,
    created_at  TEXT NOT NULL
)
"""

_CREATE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_turns_session_id
ON turns(session_id)
"""

_UPSERT_SESSION = """
INSERT INTO sessions (id, user_id, working_memory_json, last_classification, corrections_json, created_at, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    user_id = excluded.user_id,
    working_memory_json = excluded.working_memory_json,
    last_classification = excluded.last_classification,
    corrections_json = excluded.corrections_json,
    updated_at = excluded.updated_at
"""

_INSERT_TURN = """
INSERT INTO turns (session_id, role, content, intent, confidence, decision, created_at)
VALUES (?, ?, ?, ?, ?, ?, ?)
"""

_SELECT_SESSION = """
SELECT id, user_id, working_memory_json, last_classification, corrections_json, created_at, updated_at
FROM sessions WHERE id = ?
"""

_SELECT_RECENT_TURNS = """
SELECT role, content, intent, confidence, decision, created_at FROM (
    SELECT * FROM turns WHERE session_id = ? ORDER BY id DESC LIMIT ?
) ORDER BY id ASC
"""

_SELECT_SESSIONS = """
SELECT s.id, s.user_id, s.created_at, s.updated_at,
       (SELECT COUNT(*) FROM turns t WHERE t.session_id = s.id) AS turn_count
FROM sessions s
ORDER BY s.updated_at DESC
LIMIT ?
"""

_SELECT_SESSION_ID_BY_PREFIX = """
SELECT id FROM sessions
WHERE id LIKE ?
ORDER BY updated_at DESC
LIMIT 1
"""

_DELETE_TURNS = """
DELETE FROM turns WHERE session_id = ?
"""

_DELETE_SESSION = """
DELETE FROM sessions WHERE id = ?
"""


class SessionStore:
    """SQLite-backed store for session contexts.

    Usage::

        with SessionStore("data/sessions.db") as store:
            store.save_session(context, new_turns)
            context = store.load_session(session_id, max_turns=10)
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_CREATE_SESSIONS)
        self._conn.execute(_CREATE_TURNS)
        self._conn.execute(_CREATE_INDEX)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SessionStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def save_session(self, context: SessionContext, new_turns: list[Turn]) -> None:
        """Upsert the session row and append *new_turns* in one transaction."""
        last = context.last_classification.model_dump_json() if context.last_classification else None
        with self._conn:
            self._conn.execute(
                _UPSERT_SESSION,
                (
                    context.session_id,
                    context.user_id,
                    context.working_memory.model_dump_json(),
                    last,
                    _CORRECTIONS.dump_json(context.corrections).decode(),
                    context.created_at.isoformat(),
                    context.last_updated.isoformat(),
                ),
            )
            self._conn.executemany(
                _INSERT_TURN,
                [
                    (
                        context.session_id,
                        turn.role.value,
                        turn.content,
                        turn.intent,
                        turn.confidence,
                        turn.decision,
                        turn.timestamp.isoformat(),
                    )
                    for turn in new_turns
                ],
            )
        logger.debug("Saved session %s (+%d turns)", context.session_id[:8], len(new_turns))

    def load_session(self, session_id: str, max_turns: int) -> SessionContext | None:
        """Load a session with its most recent *max_turns* turns, or None."""
        row = self._conn.execute(_SELECT_SESSION, (session_id,)).fetchone()
        if row is None:
            return None

        turn_rows = self._conn.execute(_SELECT_RECENT_TURNS, (session_id, max_turns)).fetchall()
        turns = [
            Turn(
                role=Role(t["role"]),
                content=t["content"],
                intent=t["intent"],
                confidence=t["confidence"],
                decision=t["decision"],
                timestamp=datetime.fromisoformat(t["created_at"]),
            )
            for t in turn_rows
        ]
        last = row["last_classification"]
        return SessionContext(
            session_id=row["id"],
            user_id=row["user_id"],
            turns=turns,
            working_memory=WorkingMemory.model_validate_json(row["working_memory_json"]),
            last_classification=ClassificationResult.model_validate_json(last) if last else None,
            corrections=_CORRECTIONS.validate_json(row["corrections_json"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            last_updated=datetime.fromisoformat(row["updated_at"]),
        )

    def exists(self, session_id: str) -> bool:
        return self._conn.execute(_SELECT_SESSION, (session_id,)).fetchone() is not None

    def resolve_id(self, session_id: str) -> str | None:
        """Accept a full session id or a prefix (first N characters)."""
        if self.exists(session_id):
            return session_id
        row = self._conn.execute(_SELECT_SESSION_ID_BY_PREFIX, (session_id + "%",)).fetchone()
        return row["id"] if row else None

    def list_sessions(self, limit: int = 20) -> list[dict]:
        """List recent sessions with metadata.

        Returns:
            List of dicts with keys: id, user_id, created_at, updated_at, turn_count.
        """
        rows = self._conn.execute(_SELECT_SESSIONS, (limit,)).fetchall()
        return [
            {
                "id": row["id"],
                "user_id": row["user_id"],
                "created_at": row["created_at"],
                "updated_at": row["updated_at"],
                "turn_count": row["turn_count"],
            }
            for row in rows
        ]

    def delete_session(self, session_id: str) -> bool:
        with self._conn:
            self._conn.execute(_DELETE_TURNS, (session_id,))
            cursor = self._conn.execute(_DELETE_SESSION, (session_id,))
        return cursor.rowcount > 0
