"""Deterministic short-circuits checked before the classifier is called.

Only unambiguous cases live here: a safety emergency, a wrong number, a
robocall, or an upset caller asking for a person.
"""

import logging
from dataclasses import dataclass

from callbrain.emotion import Emotion, EmotionResult, is_emergency
from callbrain.intents import Action, Intent, Priority
from callbrain.validation import match_any_keyword

logger = logging.getLogger(__name__)

WRONG_NUMBER_KEYWORDS = frozenset({"wrong number", "pizza", "who is this", "didn't call you"})
SPAM_KEYWORDS = frozenset({
    "press 1", "press one", "extended warranty", "car warranty", "social security",
    "irs", "final notice", "google listing", "this is a recorded message",
})
HUMAN_REQUEST_KEYWORDS = frozenset({
    "manager", "supervisor", "real person", "human", "someone real",
    "speak to someone", "talk to someone", "operator", "representative",
})

# Service words that make "who is this" a legitimate question, not a wrong number
SERVICE_CONTEXT = frozenset({"ac", "heat", "furnace", "appointment", "technician", "repair", "leak"})

ESCALATE_EMOTIONS = (Emotion.FRUSTRATED, Emotion.ANGRY)


@dataclass(frozen=True)
class QuickDecision:
    target: str
    action: Action
    intent: Intent
    priority: Priority = Priority.NORMAL
    confidence: float = 0.95
    reason: str = ""


def check_quick_decision(text: str, emotion: EmotionResult | None = None) -> QuickDecision | None:
    if not text:
        return None

    if is_emergency(text):
        return QuickDecision(
            target="emergency",
            action=Action.TRANSFER,
            intent=Intent.EMERGENCY,
            priority=Priority.EMERGENCY,
            confidence=0.99,
            reason="safety keyword",
        )

    if match_any_keyword(text, WRONG_NUMBER_KEYWORDS) and not match_any_keyword(text, SERVICE_CONTEXT):
        return QuickDecision(
            target="wrong_number",
            action=Action.END,
            intent=Intent.WRONG_NUMBER,
            reason="wrong number phrase",
        )

    if match_any_keyword(text, SPAM_KEYWORDS):
        return QuickDecision(
            target="spam",
            action=Action.END,
            intent=Intent.SPAM,
            reason="robocall phrase",
        )

    if (
        emotion is not None
        and emotion.primary in ESCALATE_EMOTIONS
        and match_any_keyword(text, HUMAN_REQUEST_KEYWORDS)
    ):
        return QuickDecision(
            target="human_request",
            action=Action.TRANSFER,
            intent=Intent.OTHER,
            priority=Priority.HIGH,
            confidence=0.9,
            reason=f"{emotion.primary.value.lower()} caller asked for a person",
        )

    return None
