"""Tests for the conversation context manager."""

from unittest.mock import AsyncMock

import pytest

from kenny.errors import SessionNotFound
from kenny.integrations.ollama import CompletionTimeout, OllamaClient
from kenny.orchestrator.context import MAX_SUMMARY_POINTS, ConversationContextManager, update_working_memory
from kenny.orchestrator.session_store import SessionStore
from kenny.orchestrator.summarizer import TurnSummarizer
from kenny.schemas.intent import ClassificationResult, Provenance
from kenny.schemas.orchestrator import CorrectionRecord
from kenny.schemas.session import CORRECTION_MARKER, Role, Turn, TurnSummary, WorkingMemory


def _user(text):
    return Turn(role=Role.USER, content=text)


# ------------------------------------------------------------------
# Turn history
# ------------------------------------------------------------------


class TestTurnHistory:
    def test_turn_cap_evicts_oldest(self):
        contexts = ConversationContextManager(max_turns=10)
        contexts.get_or_create("s1")
        for i in range(15):
            contexts.append("s1", _user(f"message {i}"))

        turns = contexts.get("s1").turns
        assert len(turns) == 10
        assert turns[0].content == "message 5"
        assert turns[-1].content == "message 14"

    def test_append_to_unknown_session(self):
        with pytest.raises(SessionNotFound):
            ConversationContextManager().append("nope", _user("hi"))

    def test_get_or_create_is_idempotent(self):
        contexts = ConversationContextManager()
        first = contexts.get_or_create("s1", "alice")
        assert contexts.get_or_create("s1") is first
        assert first.user_id == "alice"

    def test_rejects_zero_turns(self):
        with pytest.raises(ValueError):
            ConversationContextManager(max_turns=0)

    def test_recent_context(self):
        contexts = ConversationContextManager()
        contexts.get_or_create("s1")
        contexts.append("s1", _user("lunch with Sam"))
        contexts.append("s1", Turn(role=Role.ASSISTANT, content="When?"))

        assert contexts.recent_context("s1") == "User: lunch with Sam\nKenny: When?"
        assert contexts.recent_context("s1", max_turns=1) == "Kenny: When?"
        assert contexts.recent_context("other") == ""

    def test_lock_is_per_session(self):
        contexts = ConversationContextManager()
        assert contexts.lock("a") is contexts.lock("a")
        assert contexts.lock("a") is not contexts.lock("b")

    async def test_clear_drops_the_session_lock(self):
        contexts = ConversationContextManager()
        contexts.get_or_create("s1")
        async with contexts.lock("s1"):
            pass

        contexts.clear("s1")

        assert "s1" not in contexts._locks
        assert contexts.lock("s1") is contexts.lock("s1")

    def test_set_classification(self):
        contexts = ConversationContextManager()
        contexts.get_or_create("s1")
        result = ClassificationResult(intent="create_note", confidence=0.7, provenance=Provenance.RULE)
        contexts.set_classification("s1", result)
        assert contexts.get("s1").last_classification == result


# ------------------------------------------------------------------
# Working memory
# ------------------------------------------------------------------


class TestWorkingMemory:
    def test_current_task(self):
        memory = update_working_memory(WorkingMemory(), "I'm working on the quarterly report.")
        assert memory.current_task == "the quarterly report"

    def test_pending_actions(self):
        memory = update_working_memory(WorkingMemory(), "I need to call the bank. Nice weather.")
        assert memory.pending_actions == ["I need to call the bank."]

    def test_key_facts(self):
        memory = update_working_memory(WorkingMemory(), "My manager is Dana.")
        assert memory.key_facts == ["My manager is Dana."]

    def test_topics_skip_weekdays(self):
        memory = update_working_memory(WorkingMemory(), "Lunch with Priya on Friday")
        assert "Priya" in memory.recent_topics
        assert "Friday" not in memory.recent_topics

    def test_updated_from_user_turns(self):
        contexts = ConversationContextManager()
        contexts.get_or_create("s1")
        contexts.append("s1", _user("Help me plan the Falcon launch"))
        contexts.append("s1", Turn(role=Role.ASSISTANT, content="Help me with nothing"))
        assert contexts.get("s1").working_memory.current_task == "plan the Falcon launch"


# ------------------------------------------------------------------
# Session-scoped corrections
# ------------------------------------------------------------------


class TestSessionCorrections:
    def test_find_by_normalized_text(self):
        contexts = ConversationContextManager()
        contexts.get_or_create("s1")
        contexts.add_correction(
            "s1", CorrectionRecord(original_text="Ping Sam!", corrected_intent="send_email")
        )
        assert contexts.find_correction("s1", "ping sam").corrected_intent == "send_email"
        assert contexts.find_correction("s2", "ping sam") is None

    def test_newest_correction_wins(self):
        contexts = ConversationContextManager()
        contexts.get_or_create("s1")
        contexts.add_correction("s1", CorrectionRecord(original_text="ping Sam", corrected_intent="send_email"))
        contexts.add_correction("s1", CorrectionRecord(original_text="ping Sam", corrected_intent="add_reminder"))
        assert len(contexts.get("s1").corrections) == 1
        assert contexts.find_correction("s1", "ping Sam").corrected_intent == "add_reminder"


# ------------------------------------------------------------------
# Summaries of evicted turns
# ------------------------------------------------------------------


def _exchange(contexts, text, intent, decision, reply="Done."):
    contexts.append("s1", _user(text))
    contexts.append("s1", Turn(role=Role.ASSISTANT, content=reply, intent=intent, decision=decision))


class TestEvictionSummary:
    async def test_evicted_turns_are_summarized(self):
        contexts = ConversationContextManager(max_turns=2)
        contexts.get_or_create("s1")
        _exchange(contexts, "jot down the wifi password", "create_note", "confirm", "Save a note?")
        _exchange(contexts, "yes", "create_note", "execute", "Saved.")

        await contexts.archive("s1")

        memory = contexts.get("s1").working_memory
        assert memory.summary == ["create_note (confirm): jot down the wifi password"]
        assert [t.content for t in contexts.get("s1").turns] == ["yes", "Saved."]

    async def test_summary_leads_recent_context(self):
        contexts = ConversationContextManager(max_turns=2)
        contexts.get_or_create("s1")
        _exchange(contexts, "jot down the wifi password", "create_note", "confirm", "Save a note?")
        _exchange(contexts, "what's the weather", "unknown", "clarify", "Could you rephrase that?")
        _exchange(contexts, "yes", "create_note", "execute", "Saved.")

        await contexts.archive("s1")

        assert contexts.recent_context("s1") == (
            "Earlier: create_note (confirm): jot down the wifi password; Said: what's the weather\n"
            "User: yes\nKenny: Saved."
        )

    async def test_model_summary_is_used_when_configured(self):
        ollama = AsyncMock(spec=OllamaClient)
        ollama.generate_structured.return_value = (
            TurnSummary(key_points=["User wants the wifi password saved"], action_items=["save the note"]),
            None,
        )
        contexts = ConversationContextManager(max_turns=2, summarizer=TurnSummarizer(ollama))
        contexts.get_or_create("s1")
        _exchange(contexts, "jot down the wifi password", "create_note", "confirm")
        _exchange(contexts, "yes", "create_note", "execute")

        await contexts.archive("s1")

        ollama.generate_structured.assert_awaited_once()
        assert "User: jot down the wifi password" in ollama.generate_structured.call_args.args[3]
        assert contexts.recent_context("s1").splitlines()[0] == (
            "Earlier: User wants the wifi password saved; To do: save the note"
        )

    async def test_model_failure_falls_back_to_heuristic(self):
        ollama = AsyncMock(spec=OllamaClient)
        ollama.generate_structured.side_effect = CompletionTimeout("slow")
        contexts = ConversationContextManager(max_turns=2, summarizer=TurnSummarizer(ollama))
        contexts.get_or_create("s1")
        _exchange(contexts, "jot down the wifi password", "create_note", "confirm")
        _exchange(contexts, "yes", "create_note", "execute")

        await contexts.archive("s1")

        assert contexts.get("s1").working_memory.summary == ["create_note (confirm): jot down the wifi password"]

    def test_summary_is_bounded(self):
        contexts = ConversationContextManager(max_turns=1)
        contexts.get_or_create("s1")
        for i in range(MAX_SUMMARY_POINTS + 5):
            contexts.append("s1", _user(f"message {i}"))
        contexts.save("s1")

        summary = contexts.get("s1").working_memory.summary
        assert len(summary) == MAX_SUMMARY_POINTS
        # newest first
        assert summary[0] == f"Said: message {MAX_SUMMARY_POINTS + 3}"

    def test_save_folds_unarchived_turns_and_persists_them(self, tmp_path):
        with SessionStore(tmp_path / "sessions.db") as store:
            contexts = ConversationContextManager(store=store, max_turns=2)
            contexts.get_or_create("s1")
            correction = Turn(role=Role.USER, content="Correction: I meant create_event", decision=CORRECTION_MARKER)
            contexts.append("s1", correction)
            _exchange(contexts, "lunch friday", "create_event", "confirm")
            contexts.save("s1")

            resumed = ConversationContextManager(store=store, max_turns=2).get("s1")

        assert resumed.working_memory.summary == ["Correction: I meant create_event"]


# ------------------------------------------------------------------
# Persistence
# ------------------------------------------------------------------


class TestPersistence:
    def test_resume_after_restart(self, tmp_path):
        path = tmp_path / "sessions.db"
        with SessionStore(path) as store:
            contexts = ConversationContextManager(store=store)
            contexts.get_or_create("s1", "alice")
            contexts.append("s1", _user("I'm working on the budget"))
            contexts.append("s1", Turn(role=Role.ASSISTANT, content="Okay."))
            contexts.save("s1")

        with SessionStore(path) as store:
            resumed = ConversationContextManager(store=store).get("s1")

        assert resumed.user_id == "alice"
        assert [t.content for t in resumed.turns] == ["I'm working on the budget", "Okay."]
        assert resumed.working_memory.current_task == "the budget"

    def test_reload_respects_cap(self, tmp_path):
        with SessionStore(tmp_path / "sessions.db") as store:
            contexts = ConversationContextManager(store=store, max_turns=10)
            contexts.get_or_create("s1")
            for i in range(15):
                contexts.append("s1", _user(f"message {i}"))
            contexts.save("s1")

            resumed = ConversationContextManager(store=store, max_turns=10).get("s1")

        assert len(resumed.turns) == 10
        assert resumed.turns[0].content == "message 5"

    def test_turns_saved_once(self, tmp_path):
        with SessionStore(tmp_path / "sessions.db") as store:
            contexts = ConversationContextManager(store=store)
            contexts.get_or_create("s1")
            contexts.append("s1", _user("one"))
            contexts.save("s1")
            contexts.append("s1", _user("two"))
            contexts.save("s1")

            assert store.list_sessions()[0]["turn_count"] == 2

    def test_clear(self, tmp_path):
        with SessionStore(tmp_path / "sessions.db") as store:
            contexts = ConversationContextManager(store=store)
            contexts.get_or_create("s1")
            contexts.save("s1")

            assert contexts.clear("s1") is True
            assert contexts.get("s1") is None
            assert not store.exists("s1")
