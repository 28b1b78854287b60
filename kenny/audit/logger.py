"""Append-only decision log for the intent pipeline.

Writes DecisionLogEntry records as JSON Lines (one JSON object per line).
Every decision and every correction is logged here, which is what the
``kenny stats`` command reads back.
"""

import logging
from collections import Counter
from datetime import UTC, datetime
from pathlib import Path

from kenny.schemas.actions import ActionResult
from kenny.schemas.orchestrator import CorrectionRecord, Decision, DecisionLogEntry

logger = logging.getLogger(__name__)


class DecisionLog:
    """Append-only JSONL decision log.

    Usage::

        log = DecisionLog("/path/to/decisions.jsonl")
        log.log_decision(session_id, text, decision, result)

        entries = log.read_entries(since=some_datetime)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, entry: DecisionLogEntry) -> None:
        """Append a single entry to the log file."""
        with self._path.open("a") as f:
            f.write(entry.model_dump_json() + "\n")
        logger.debug(
            "Decision log: %s %s session=%s",
            entry.kind,
            entry.decision.value,
            entry.session_id[:8],
        )

    def log_decision(
        self,
        session_id: str,
        text: str,
        decision: Decision,
        outcome: ActionResult | None = None,
    ) -> DecisionLogEntry:
        """Log the decision taken for an utterance (and the dispatch outcome, if any)."""
        entry = DecisionLogEntry(
            timestamp=datetime.now(UTC),
            kind="decision",
            session_id=session_id,
            text=text,
            intent=decision.intent,
            confidence=decision.confidence,
            provenance=decision.provenance,
            decision=decision.action,
            slots=decision.slots,
            outcome_success=outcome.success if outcome else None,
        )
        self.log(entry)
        return entry

    def log_correction(
        self,
        session_id: str,
        correction: CorrectionRecord,
        decision: Decision,
        outcome: ActionResult,
    ) -> DecisionLogEntry:
        """Log a user correction and the re-dispatch it triggered."""
        entry = DecisionLogEntry(
            timestamp=datetime.now(UTC),
            kind="correction",
            session_id=session_id,
            text=correction.original_text,
            intent=correction.corrected_intent,
            confidence=decision.confidence,
            provenance=decision.provenance,
            decision=decision.action,
            slots=correction.corrected_slots,
            outcome_success=outcome.success,
            corrected_from=correction.predicted_intent,
        )
        self.log(entry)
        return entry

    def read_entries(
        self,
        *,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[DecisionLogEntry]:
        """Read log entries, optionally filtered by timestamp.

        Args:
            since: Only return entries after this timestamp.
            limit: Maximum number of entries to return (newest after filtering).

        Returns:
            List of DecisionLogEntry objects, oldest first.
        """
        if not self._path.exists():
            return []

        entries: list[DecisionLogEntry] = []
        with self._path.open() as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                entry = DecisionLogEntry.model_validate_json(line)
                if since and entry.timestamp <= since:
                    continue
                entries.append(entry)

        if limit is not None:
            entries = entries[-limit:]

        return entries


def summarize(entries: list[DecisionLogEntry]) -> dict:
    """Aggregate counts for the stats view.

    Returns:
        Dict with total, corrections, correction_rate, by_decision,
        by_provenance and by_intent.
    """
    decisions = [e for e in entries if e.kind == "decision"]
    corrections = [e for e in entries if e.kind == "correction"]
    return {
        "total": len(decisions),
        "corrections": len(corrections),
        "correction_rate": len(corrections) / len(decisions) if decisions else 0.0,
        "by_decision": dict(Counter(e.decision.value for e in decisions)),
        "by_provenance": dict(Counter(e.provenance.value for e in decisions)),
        "by_intent": dict(Counter(e.intent for e in decisions)),
    }
