"""Deterministic slot extraction from a single caller utterance.

Returns a nested dict shaped like ExtractedSlots, holding only what the
caller actually said. Merging into the call context is set-once, so a
noisy later utterance can never overwrite an earlier good value.
"""

import logging
import re

from callbrain.validation import (
    match_any_keyword,
    validate_address,
    validate_name,
    validate_phone,
    validate_text,
    validate_zip,
    words_to_digits,
)

logger = logging.getLogger(__name__)

URGENT_SIGNALS = frozenset({
    "today", "asap", "right away", "as soon as", "emergency", "right now", "soonest",
    "urgent", "immediately", "earliest", "soon as possible",
})
ROUTINE_SIGNALS = frozenset({"whenever", "this week", "next few days", "no rush", "not urgent"})
TIME_PATTERNS = frozenset({
    "tomorrow", "monday", "tuesday", "wednesday", "thursday",
    "friday", "saturday", "sunday", "morning", "afternoon", "evening",
    "following day", "next day",
})
DAY_WORDS = ("today", "tomorrow", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
WINDOW_WORDS = ("morning", "afternoon", "evening")

_PHONE_RE = re.compile(r"(?<!\d)(?:\+?1[\s.-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}(?!\d)")
_SPOKEN_ZIP_RE = re.compile(r"\bzip(?: code)?(?: is)?\s+((?:[a-z]+|\d)(?:[\s-]+(?:[a-z]+|\d)){4})", re.IGNORECASE)
_ZIP_RE = re.compile(r"(?<!\d)(\d{5})(?!\d)")
_NAME_RE = re.compile(
    r"\b(?i:my name is|my name's|this is|name is)\s+([A-Z][a-z'-]+(?:\s+[A-Z][a-z'-]+)?)"
)
_ADDRESS_RE = re.compile(
    r"\b(\d{2,6}\s+(?:[A-Z0-9][\w'-]*\s+){0,3}"
    r"(?:street|st|avenue|ave|road|rd|drive|dr|lane|ln|boulevard|blvd|court|ct|way|circle|cir|place|pl|parkway|pkwy|trail|trl)\b\.?)",
    re.IGNORECASE,
)
_GATE_RE = re.compile(r"\bgate code (?:is )?([0-9#*]{3,8})", re.IGNORECASE)
_DURATION_RE = re.compile(
    r"\b(since (?:yesterday|last \w+|this morning|monday|tuesday|wednesday|thursday|friday|saturday|sunday)"
    r"|for (?:about |like )?(?:a|an|one|two|three|four|five|six|a few|a couple(?: of)?|\d+) (?:hours?|days?|weeks?|months?)"
    r"|(?:this morning|last night|yesterday))\b",
    re.IGNORECASE,
)

PET_WORDS = frozenset({"dog", "dogs", "cat", "pet", "pets"})


DURATION_SIGNALS = (
    ("acute", ("today", "this morning", "tonight", "last night", "just", "hour")),
    ("ongoing", ("week", "month", "a while", "long time")),
    ("recent", ("yesterday", "day", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")),
)
_DAY_COUNT_RE = re.compile(r"(\d+) days?")


def categorize_duration(duration: str) -> str:
    """acute (<24h), recent (1-7 days) or ongoing (>7 days); empty when unknown."""
    lower = (duration or "").lower()
    if not lower:
        return ""
    days = _DAY_COUNT_RE.search(lower)
    if days and int(days.group(1)) > 7:
        return "ongoing"
    for category, signals in DURATION_SIGNALS:
        if any(s in lower for s in signals):
            return category
    return ""


def extract_time_preference(text: str) -> dict:
    if match_any_keyword(text, URGENT_SIGNALS):
        return {"preferred_window": "soonest available"}
    if match_any_keyword(text, ROUTINE_SIGNALS):
        return {"preferred_window": "flexible"}
    if not match_any_keyword(text, TIME_PATTERNS):
        return {}
    lower = text.lower()
    out = {}
    day = next((d for d in DAY_WORDS if re.search(rf"\b{d}\b", lower)), "")
    window = next((w for w in WINDOW_WORDS if re.search(rf"\b{w}\b", lower)), "")
    if day:
        out["preferred_date"] = day
    if window:
        out["preferred_window"] = window
    if not out:
        out["preferred_window"] = validate_text(text, max_length=60)
    return out


def extract_slots(text: str) -> dict:
    """Pull contact, location, scheduling and access details out of one utterance."""
    if not text:
        return {}
    slots: dict[str, dict] = {}

    def put(group: str, key: str, value: str):
        if value:
            slots.setdefault(group, {})[key] = value

    phone_match = _PHONE_RE.search(text)
    if phone_match:
        put("contact", "phone", validate_phone(phone_match.group(0)))

    name_match = _NAME_RE.search(text)
    if name_match:
        put("contact", "name", validate_name(name_match.group(1)))

    address_match = _ADDRESS_RE.search(text)
    if address_match:
        put("location", "address_line1", validate_address(address_match.group(1)))

    zip_match = _ZIP_RE.search(_ADDRESS_RE.sub(" ", _PHONE_RE.sub(" ", text)))
    if zip_match:
        put("location", "zip", validate_zip(zip_match.group(1)))
    else:
        spoken = _SPOKEN_ZIP_RE.search(text)
        if spoken:
            put("location", "zip", validate_zip(words_to_digits(spoken.group(1))))

    for key, value in extract_time_preference(text).items():
        put("scheduling", key, value)

    duration_match = _DURATION_RE.search(text)
    if duration_match:
        duration = duration_match.group(1).lower()
        put("problem", "duration", duration)
        put("problem", "duration_category", categorize_duration(duration))

    gate_match = _GATE_RE.search(text)
    if gate_match:
        put("access", "gate_code", gate_match.group(1))
    if match_any_keyword(text, PET_WORDS):
        put("access", "notes", "pet on property")

    if slots:
        logger.debug("extracted: %s", {g: sorted(v) for g, v in slots.items()})
    return slots
