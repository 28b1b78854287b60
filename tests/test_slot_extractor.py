"""Tests for rule-based slot extraction and the model fallback tier."""

from unittest.mock import AsyncMock

import httpx
import pytest

from kenny.errors import ExtractionFailure
from kenny.integrations.ollama import CompletionResponse, CompletionTimeout, OllamaClient
from kenny.planner.slot_extractor import (
    DETERMINISTIC_RULES,
    SlotExtractor,
    apply_rules,
    parse_model_slots,
)
from kenny.schemas.intent import Intent


def _reply(content: str) -> CompletionResponse:
    return CompletionResponse(content=content, model="qwen2.5", elapsed_ms=40.0)


@pytest.fixture()
def extractor(now):
    return SlotExtractor(ollama=None, clock=lambda: now)


# ------------------------------------------------------------------
# Rule tiers
# ------------------------------------------------------------------


class TestReminderSlots:
    async def test_title_and_datetime(self, extractor, now):
        slots = await extractor.extract_slots("remind me to stretch tomorrow at 3pm", Intent.ADD_REMINDER)
        assert slots["title"] == "stretch"
        assert slots["datetime"] == now.replace(day=5, hour=15).isoformat()

    async def test_recurring(self, extractor, now):
        slots = await extractor.extract_slots(
            "remind me to take vitamins every day at 8am", Intent.ADD_REMINDER
        )
        assert slots["recurring"] == "daily"
        assert slots["title"] == "take vitamins"
        # 8am has passed at 10:00
        assert slots["datetime"] == now.replace(day=5, hour=8).isoformat()


class TestEventSlots:
    async def test_attendees_location_title(self, extractor, now):
        slots = await extractor.extract_slots(
            "schedule lunch with Sam at Cafe Luna friday at noon", Intent.CREATE_EVENT
        )
        assert slots["attendees"] == ["Sam"]
        assert slots["location"] == "Cafe Luna"
        assert slots["title"] == "Lunch with Sam"
        assert slots["datetime"] == now.replace(day=6, hour=12).isoformat()
        assert slots["duration_min"] == 60

    async def test_range_sets_duration(self, extractor, now):
        slots = await extractor.extract_slots("book a meeting from 2 to 4pm tomorrow", Intent.CREATE_EVENT)
        assert slots["datetime"] == now.replace(day=5, hour=14).isoformat()
        assert slots["end_datetime"] == now.replace(day=5, hour=16).isoformat()
        # explicit range wins over the "meeting" default
        assert slots["duration_min"] == 120

    async def test_default_duration_by_keyword(self, extractor):
        slots = await extractor.extract_slots("schedule a standup tomorrow at 9am", Intent.CREATE_EVENT)
        assert slots["duration_min"] == 15

    async def test_quoted_title(self, extractor):
        slots = await extractor.extract_slots('schedule "Quarterly Review" on monday', Intent.CREATE_EVENT)
        assert slots["title"] == "Quarterly Review"


class TestNoteSlots:
    async def test_body_title_tags(self, extractor):
        slots = await extractor.extract_slots(
            "note that the wifi password is hunter2 #home", Intent.CREATE_NOTE
        )
        assert slots["body"] == "the wifi password is hunter2"
        assert slots["title"] == "The wifi password is hunter2"
        assert slots["tags"] == ["home"]


class TestEmailSlots:
    async def test_recipients_and_subject(self, extractor):
        slots = await extractor.extract_slots(
            "send an email to bob@example.com about the budget", Intent.SEND_EMAIL
        )
        assert slots["recipients"] == ["bob@example.com"]
        assert slots["subject"] == "the budget"

    async def test_recipient_name_without_address(self, extractor):
        slots = await extractor.extract_slots("email Sam about lunch", Intent.SEND_EMAIL)
        assert slots["recipient_names"] == ["Sam"]
        assert "recipients" not in slots

    async def test_read_filters(self, extractor):
        slots = await extractor.extract_slots("show my last 3 unread emails from Dana", Intent.READ_EMAIL)
        assert slots == {"unread_only": True, "limit": 3, "sender_name": "Dana"}


def test_apply_rules_keeps_first_value(now):
    slots = apply_rules(DETERMINISTIC_RULES, "tomorrow at 3pm", Intent.ADD_REMINDER, now, {"datetime": "fixed"})
    assert slots["datetime"] == "fixed"


# ------------------------------------------------------------------
# Model tier
# ------------------------------------------------------------------


class TestModelTier:
    async def test_deterministic_datetime_never_overwritten(self, now):
        ollama = AsyncMock(spec=OllamaClient)
        ollama.complete.return_value = _reply(
            '{"datetime": "2030-01-01T00:00:00", "title": "something else", "location": "Home"}'
        )
        extractor = SlotExtractor(ollama=ollama, min_slots=5, clock=lambda: now)

        slots = await extractor.extract_slots("remind me to stretch tomorrow at 3pm", Intent.ADD_REMINDER)

        ollama.complete.assert_awaited_once()
        assert slots["datetime"] == now.replace(day=5, hour=15).isoformat()
        assert slots["title"] == "stretch"
        assert slots["location"] == "Home"

    async def test_model_skipped_when_rules_suffice(self, now):
        ollama = AsyncMock(spec=OllamaClient)
        extractor = SlotExtractor(ollama=ollama, clock=lambda: now)

        await extractor.extract_slots("remind me to stretch tomorrow at 3pm", Intent.ADD_REMINDER)

        ollama.complete.assert_not_awaited()

    async def test_model_requested_as_json(self, now):
        ollama = AsyncMock(spec=OllamaClient)
        ollama.complete.return_value = _reply('{"body": "buy milk"}')
        extractor = SlotExtractor(ollama=ollama, clock=lambda: now)

        slots = await extractor.extract_slots("jot down", Intent.CREATE_NOTE)

        assert slots == {"body": "buy milk"}
        assert ollama.complete.call_args.kwargs["response_format"] == "json"

    async def test_malformed_json_means_no_model_slots(self, now):
        ollama = AsyncMock(spec=OllamaClient)
        ollama.complete.return_value = _reply("title: buy milk")
        extractor = SlotExtractor(ollama=ollama, clock=lambda: now)

        assert await extractor.extract_slots("jot down", Intent.CREATE_NOTE) == {}

    async def test_timeout_means_no_model_slots(self, now):
        ollama = AsyncMock(spec=OllamaClient)
        ollama.complete.side_effect = CompletionTimeout("slow")
        extractor = SlotExtractor(ollama=ollama, clock=lambda: now)

        assert await extractor.extract_slots("jot down", Intent.CREATE_NOTE) == {}

    async def test_unreadable_backend_reply_means_no_model_slots(self, now):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>"))
        async with OllamaClient("http://localhost:11434", default_model="qwen2.5", transport=transport) as ollama:
            extractor = SlotExtractor(ollama=ollama, clock=lambda: now)
            slots = await extractor.extract_slots("ping", Intent.ADD_REMINDER)

        rules_only = await SlotExtractor(ollama=None, clock=lambda: now).extract_slots("ping", Intent.ADD_REMINDER)
        assert slots == rules_only

    async def test_unknown_intent_never_calls_model(self, now):
        ollama = AsyncMock(spec=OllamaClient)
        extractor = SlotExtractor(ollama=ollama, clock=lambda: now)

        assert await extractor.extract_slots("hello", Intent.UNKNOWN) == {}
        ollama.complete.assert_not_awaited()


class TestParseModelSlots:
    def test_drops_empty_values(self):
        assert parse_model_slots('{"title": "x", "location": null, "attendees": []}') == {"title": "x"}

    def test_rejects_non_object(self):
        with pytest.raises(ExtractionFailure):
            parse_model_slots("[1, 2]")

    def test_rejects_malformed(self):
        with pytest.raises(ExtractionFailure):
            parse_model_slots("{not json")
