"""Keyword rules for the cheap classification path.

Pure: no I/O, no model calls. Rules are checked in order; the first
matching intent wins. Read-email is checked before send-email because
"check my email" would otherwise match the broader send pattern.
"""

import re

from kenny.schemas.intent import ClassificationResult, Intent, Provenance

BASE_CONFIDENCE = 0.7

RULES: list[tuple[Intent, str]] = [
    (Intent.ADD_REMINDER, r"\b(remind|reminder|ping|nudge|alert)\b"),
    (Intent.CREATE_EVENT, r"\b(schedule|meeting|appointment|event|calendar)\b"),
    (Intent.CREATE_NOTE, r"\b(note|notes|write down|capture|jot|memo)\b"),
    (Intent.READ_EMAIL, r"\b(read|check|show|list|view)\b.*\b(email|emails|mail|messages?|inbox)\b"),
    (Intent.SEND_EMAIL, r"\b(send|email|mail|compose|write to)\b"),
]

# Phrases that make a rule match near-certain
BOOSTS: list[tuple[Intent, str, float]] = [
    (Intent.ADD_REMINDER, r"\bremind me\b", 0.95),
    (Intent.CREATE_EVENT, r"\b(schedule|meeting)\b", 0.9),
]


def classify_by_rules(text: str) -> ClassificationResult | None:
    """Match *text* against the keyword rules.

    Returns:
        ClassificationResult with provenance ``rule``, or None when no rule
        matches.
    """
    lowered = text.lower()
    for intent, pattern in RULES:
        if not re.search(pattern, lowered):
            continue
        confidence = BASE_CONFIDENCE
        for boost_intent, boost_pattern, boost_confidence in BOOSTS:
            if boost_intent == intent and re.search(boost_pattern, lowered):
                confidence = max(confidence, boost_confidence)
        return ClassificationResult(
            intent=intent.value,
            confidence=confidence,
            provenance=Provenance.RULE,
        )
    return None
