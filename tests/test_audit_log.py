"""Tests for the JSONL decision log."""

import json
from datetime import UTC, datetime, timedelta

from kenny.audit.logger import DecisionLog, summarize
from kenny.schemas.actions import ActionResult
from kenny.schemas.intent import Provenance
from kenny.schemas.orchestrator import CorrectionRecord, Decision, DecisionAction


def _decision(action=DecisionAction.EXECUTE, intent="create_note", provenance=Provenance.RULE):
    return Decision(
        action=action,
        intent=intent,
        confidence=0.95,
        slots={"body": "buy milk"},
        provenance=provenance,
        rationale="test",
    )


def _ok():
    return ActionResult(success=True, message="Saved.", spoken_response="Saved.")


def test_log_decision_writes_one_line(tmp_path):
    path = tmp_path / "decisions.jsonl"
    log = DecisionLog(path)

    log.log_decision("session-1", "note buy milk", _decision(), _ok())

    lines = path.read_text().splitlines()
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["kind"] == "decision"
    assert record["decision"] == "execute"
    assert record["outcome_success"] is True


def test_decision_without_outcome(tmp_path):
    log = DecisionLog(tmp_path / "decisions.jsonl")
    entry = log.log_decision("session-1", "hmm", _decision(DecisionAction.CONFIRM))
    assert entry.outcome_success is None


def test_log_correction(tmp_path):
    log = DecisionLog(tmp_path / "decisions.jsonl")
    correction = CorrectionRecord(
        original_text="weekly sync tomorrow",
        predicted_intent="unknown",
        corrected_intent="create_event",
        corrected_slots={"recurring": "weekly"},
    )
    log.log_correction(
        "session-1", correction, _decision(intent="create_event", provenance=Provenance.PATTERN_MEMORY), _ok()
    )

    entry = log.read_entries()[0]
    assert entry.kind == "correction"
    assert entry.corrected_from == "unknown"
    assert entry.intent == "create_event"
    assert entry.slots == {"recurring": "weekly"}


def test_read_entries_missing_file(tmp_path):
    assert DecisionLog(tmp_path / "nope.jsonl").read_entries() == []


def test_read_entries_since_and_limit(tmp_path):
    log = DecisionLog(tmp_path / "decisions.jsonl")
    for i in range(3):
        log.log_decision(f"session-{i}", "x", _decision())

    assert len(log.read_entries(since=datetime.now(UTC) - timedelta(hours=1))) == 3
    assert log.read_entries(since=datetime.now(UTC) + timedelta(hours=1)) == []
    assert [e.session_id for e in log.read_entries(limit=2)] == ["session-1", "session-2"]


def test_summarize(tmp_path):
    log = DecisionLog(tmp_path / "decisions.jsonl")
    log.log_decision("s", "a", _decision())
    log.log_decision("s", "b", _decision(DecisionAction.CONFIRM, intent="create_event"))
    log.log_correction(
        "s",
        CorrectionRecord(original_text="b", corrected_intent="create_note"),
        _decision(provenance=Provenance.PATTERN_MEMORY),
        _ok(),
    )

    summary = summarize(log.read_entries())

    assert summary["total"] == 2
    assert summary["corrections"] == 1
    assert summary["correction_rate"] == 0.5
    assert summary["by_decision"] == {"execute": 1, "confirm": 1}
    assert summary["by_provenance"] == {"rule": 2}
    assert summary["by_intent"] == {"create_note": 1, "create_event": 1}


def test_summarize_empty():
    assert summarize([])["correction_rate"] == 0.0
