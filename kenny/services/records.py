"""SQLite record store shared by the domain services.

One table, one row per created item, with the item's fields as a JSON
payload. Stands in for the real calendar/reminder/note backends.
"""

import json
import logging
import sqlite3
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_CREATE_RECORDS = """
CREATE TABLE IF NOT EXISTS records (
    id           TEXT PRIMARY KEY,
    kind         TEXT NOT NULL,
    user_id      TEXT NOT NULL,
    payload_json TEXT NOT NULL,
    created_at   TEXT NOT NULL
)
"""

_CREATE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_records_kind_user
ON records(kind, user_id)
"""

_INSERT_RECORD = """
INSERT INTO records (id, kind, user_id, payload_json, created_at)
VALUES (?, ?, ?, ?, ?)
"""

_SELECT_BY_KIND = """
SELECT id, payload_json, created_at FROM records
WHERE kind = ? AND user_id = ?
ORDER BY created_at DESC
LIMIT ?
"""

_COUNT_BY_KIND = """
SELECT kind, COUNT(*) AS n FROM records GROUP BY kind
"""


class RecordStore:
    """SQLite-backed store for domain records.

    Usage::

        with RecordStore("data/records.db") as records:
            record = records.add("event", "default", {"title": "Standup"})
            events = records.list("event", "default")
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_CREATE_RECORDS)
        self._conn.execute(_CREATE_INDEX)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "RecordStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def add(self, kind: str, user_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Insert a record and return its payload with ``id`` and ``created_at``."""
        record_id = str(uuid.uuid4())
        now = datetime.now(UTC).isoformat()
        self._conn.execute(_INSERT_RECORD, (record_id, kind, user_id, json.dumps(payload), now))
        self._conn.commit()
        logger.debug("Stored %s %s", kind, record_id[:8])
        return {"id": record_id, **payload, "created_at": now}

    def list(self, kind: str, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        """Records of *kind* for *user_id*, newest first."""
        rows = self._conn.execute(_SELECT_BY_KIND, (kind, user_id, limit)).fetchall()
        return [
            {"id": row["id"], **json.loads(row["payload_json"]), "created_at": row["created_at"]}
            for row in rows
        ]

    def counts(self) -> dict[str, int]:
        return {row["kind"]: row["n"] for row in self._conn.execute(_COUNT_BY_KIND).fetchall()}
