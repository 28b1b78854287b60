"""Shared fixtures for Kenny tests."""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from kenny.audit.logger import DecisionLog
from kenny.integrations.ollama import CompletionTimeout, OllamaClient
from kenny.memory.pattern_memory import PatternMemory
from kenny.orchestrator.context import ConversationContextManager
from kenny.orchestrator.corrections import CorrectionHandler
from kenny.orchestrator.decision import ThresholdPolicy
from kenny.orchestrator.dispatcher import ActionDispatcher
from kenny.orchestrator.pipeline import AssistantPipeline
from kenny.planner.intent_classifier import IntentClassifier
from kenny.planner.slot_extractor import SlotExtractor
from kenny.services.events import CalendarService
from kenny.services.mail import EmailService
from kenny.services.notes import NoteService
from kenny.services.records import RecordStore
from kenny.services.reminders import ReminderService


@pytest.fixture(autouse=True)
def _no_sops(monkeypatch):
    """Ensure tests never try to invoke SOPS."""
    monkeypatch.setenv("KENNY_USE_SOPS", "false")


@pytest.fixture()
def project_root():
    """Return the project root path."""
    return os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


@pytest.fixture()
def now():
    """Wednesday 2026-03-04 10:00 at UTC-5."""
    return datetime(2026, 3, 4, 10, 0, tzinfo=timezone(timedelta(hours=-5)))


@pytest.fixture()
def records(tmp_path):
    with RecordStore(tmp_path / "records.db") as store:
        yield store


@pytest.fixture()
def dispatcher(records, now):
    return ActionDispatcher(
        calendar=CalendarService(records),
        reminders=ReminderService(records),
        notes=NoteService(records),
        email=EmailService(records),
        clock=lambda: now,
    )


# ------------------------------------------------------------------
# Pipeline wiring (completion backend always times out)
# ------------------------------------------------------------------


@pytest.fixture()
def ollama_down():
    ollama = AsyncMock(spec=OllamaClient)
    ollama.complete.side_effect = CompletionTimeout("Ollama did not respond in time")
    ollama.generate_structured.side_effect = CompletionTimeout("Ollama did not respond in time")
    return ollama


@pytest.fixture()
def pattern_memory():
    return PatternMemory()


@pytest.fixture()
def contexts():
    return ConversationContextManager(max_turns=10)


@pytest.fixture()
def audit(tmp_path):
    return DecisionLog(tmp_path / "decisions.jsonl")


@pytest.fixture()
def corrections(contexts, pattern_memory, dispatcher, audit):
    return CorrectionHandler(
        contexts=contexts, pattern_memory=pattern_memory, dispatcher=dispatcher, audit=audit
    )


@pytest.fixture()
def pipeline(ollama_down, pattern_memory, contexts, dispatcher, corrections, audit, now):
    return AssistantPipeline(
        classifier=IntentClassifier(ollama=ollama_down, pattern_memory=pattern_memory),
        extractor=SlotExtractor(ollama=ollama_down, clock=lambda: now),
        policy=ThresholdPolicy(),
        contexts=contexts,
        dispatcher=dispatcher,
        corrections=corrections,
        audit=audit,
        clock=lambda: now,
    )
