"""Tests for digests of turns leaving the history window."""

from unittest.mock import AsyncMock

from kenny.integrations.ollama import CompletionMalformed, OllamaClient
from kenny.orchestrator.summarizer import MAX_POINT_CHARS, TurnSummarizer, summarize_turns
from kenny.schemas.session import CORRECTION_MARKER, Role, Turn, TurnSummary


def _user(text, **kwargs):
    return Turn(role=Role.USER, content=text, **kwargs)


def _kenny(text, intent=None, decision=None):
    return Turn(role=Role.ASSISTANT, content=text, intent=intent, decision=decision)


class TestHeuristicDigest:
    def test_labels_user_turn_with_reply_intent(self):
        turns = [_user("remind me to stretch at 3pm"), _kenny("Done.", "add_reminder", "execute")]
        assert summarize_turns(turns) == ["add_reminder (execute): remind me to stretch at 3pm"]

    def test_unanswered_or_unknown_turns_are_plain(self):
        turns = [
            _user("hmm"),
            _user("what's the weather"),
            _kenny("Could you rephrase that?", "unknown", "clarify"),
        ]
        assert summarize_turns(turns) == ["Said: hmm", "Said: what's the weather"]

    def test_corrections_kept_verbatim(self):
        turns = [
            _user("Correction: I meant send_email", decision=CORRECTION_MARKER),
            _kenny("Email sent.", "send_email", "execute"),
        ]
        assert summarize_turns(turns) == ["Correction: I meant send_email"]

    def test_orphan_assistant_turn_is_skipped(self):
        assert summarize_turns([_kenny("Saved.", "create_note", "execute")]) == []

    def test_long_turns_are_clipped(self):
        (point,) = summarize_turns([_user("note " + "word " * 100)])
        assert len(point) == MAX_POINT_CHARS
        assert point.endswith("...")


class TestTurnSummarizer:
    async def test_without_model_uses_heuristic(self):
        turns = [_user("jot this down"), _kenny("Saved.", "create_note", "execute")]
        assert await TurnSummarizer().summarize(turns) == ["create_note (execute): jot this down"]

    async def test_nothing_to_summarize(self):
        ollama = AsyncMock(spec=OllamaClient)
        assert await TurnSummarizer(ollama).summarize([]) == []
        ollama.generate_structured.assert_not_awaited()

    async def test_model_points_in_order(self):
        ollama = AsyncMock(spec=OllamaClient)
        ollama.generate_structured.return_value = (
            TurnSummary(key_points=["Lunch with Sam"], action_items=["book a table"], decisions=["Friday"]),
            None,
        )
        points = await TurnSummarizer(ollama, model="qwen2.5").summarize([_user("lunch with Sam friday")])

        assert points == ["Lunch with Sam", "To do: book a table", "Decided: Friday"]
        assert ollama.generate_structured.call_args.args[:2] == ("qwen2.5", TurnSummary)

    async def test_empty_model_summary_falls_back(self):
        ollama = AsyncMock(spec=OllamaClient)
        ollama.generate_structured.return_value = (TurnSummary(key_points=["  "]), None)

        assert await TurnSummarizer(ollama).summarize([_user("hmm")]) == ["Said: hmm"]

    async def test_unreadable_reply_falls_back(self):
        ollama = AsyncMock(spec=OllamaClient)
        ollama.generate_structured.side_effect = CompletionMalformed("not json")

        assert await TurnSummarizer(ollama).summarize([_user("hmm")]) == ["Said: hmm"]
