"""Transcript cleanup that runs before any classification.

normalize() canonicalizes trade vocabulary and common STT mishears;
strip_fillers() drops disfluencies. Both are pure and never raise: on an
internal error they hand back the trimmed input unchanged.
"""

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Canonical trade spellings. Keys are matched case-insensitively on word
# boundaries, longest key first.
SPELLING_VARIANTS = {
    "a/c": "AC",
    "a.c.": "AC",
    "ac": "AC",
    "hvac": "HVAC",
    "h.v.a.c.": "HVAC",
    "asap": "ASAP",
    "a.s.a.p.": "ASAP",
    "a.s.a.p": "ASAP",
    "heatpump": "heat pump",
    "heat-pump": "heat pump",
    "tuneup": "tune-up",
    "tune up": "tune-up",
    "no cool": "not cooling",
    "no cooling": "not cooling",
    "air-conditioning": "air conditioning",
    "co2 detector": "CO detector",
    "co detector": "CO detector",
}

# Common transcription typos and dropped apostrophes.
TYPO_FIXES = {
    "furnance": "furnace",
    "furnice": "furnace",
    "thermastat": "thermostat",
    "thermostate": "thermostat",
    "themostat": "thermostat",
    "compresser": "compressor",
    "condensor": "condenser",
    "evaparator": "evaporator",
    "airconditioner": "air conditioner",
    "air conditoner": "air conditioner",
    "appointmnet": "appointment",
    "apointment": "appointment",
    "tommorow": "tomorrow",
    "tomorow": "tomorrow",
    "tommorrow": "tomorrow",
    "plumer": "plumber",
    "dont": "don't",
    "doesnt": "doesn't",
    "didnt": "didn't",
    "isnt": "isn't",
    "wasnt": "wasn't",
    "im": "I'm",
}

_CORRECTIONS = {**SPELLING_VARIANTS, **TYPO_FIXES}
_CORRECTION_RE = re.compile(
    r"(?<!\w)(?:"
    + "|".join(re.escape(k) for k in sorted(_CORRECTIONS, key=len, reverse=True))
    + r")(?!\w)",
    re.IGNORECASE,
)

MAX_NORMALIZE_PASSES = 4

_SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+([,.!?;:])")
_SPACE_AFTER_PUNCT_RE = re.compile(r"([,!?;])(?=[A-Za-z])")
_SENTENCE_BREAK_RE = re.compile(r"(?<=[a-z]{2})\.(?=[A-Z])")
_WHITESPACE_RE = re.compile(r"\s+")

DISCOURSE_MARKERS = ("like", "you know", "i mean")

_FILLER_RE = re.compile(r"(?<![\w'-])(?:[Uu]m+|[Uu]h+|[Ee]rm?|[Hh]m+)(?![\w'-])\s*[,.]?")
_MARKERS = "|".join(re.escape(m) for m in DISCOURSE_MARKERS)
# "it's, like, broken" -> "it's broken"
_MID_MARKER_RE = re.compile(rf"\s*,\s*(?:{_MARKERS})\s*,\s*", re.IGNORECASE)
# "Like, my AC died" -> "my AC died"
_LEADING_MARKER_RE = re.compile(rf"(^|[.!?]\s*)(?:{_MARKERS})\s*,\s*", re.IGNORECASE)
# "it's broken, you know." -> "it's broken."
_TRAILING_MARKER_RE = re.compile(r"\s*,\s*you know\s*(?=[.!?]|$)", re.IGNORECASE)
_DOUBLE_COMMA_RE = re.compile(r",(\s*,)+")


@dataclass
class Preprocessed:
    raw: str
    normalized: str
    cleaned: str
    corrections: list[str] = field(default_factory=list)
    fillers_removed: list[str] = field(default_factory=list)


def _collapse(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def _fix_punctuation(text: str) -> str:
    text = _SPACE_BEFORE_PUNCT_RE.sub(r"\1", text)
    text = _SPACE_AFTER_PUNCT_RE.sub(r"\1 ", text)
    return _SENTENCE_BREAK_RE.sub(". ", text)


def _normalize(text: str, corrections: list[str] | None = None) -> str:
    def _replace(match: re.Match) -> str:
        canonical = _CORRECTIONS[match.group(0).lower()]
        if corrections is not None and match.group(0) != canonical:
            corrections.append(f"{match.group(0)}->{canonical}")
        return canonical

    # A correction can open a new sentence break ("tomorrow.im") and a
    # punctuation fix can complete a correction key ("a.c ."), so run both
    # until the text stops changing.
    text = _collapse(text)
    for _ in range(MAX_NORMALIZE_PASSES):
        fixed = _collapse(_fix_punctuation(_CORRECTION_RE.sub(_replace, text)))
        if fixed == text:
            break
        text = fixed
    return text


def normalize(text: str) -> str:
    """Normalize a raw transcript. Idempotent; never raises."""
    if not text:
        return ""
    try:
        return _normalize(text)
    except Exception as e:
        logger.warning("normalize failed, returning trimmed input: %s", e)
        return str(text).strip()


def _strip(text: str, removed: list[str] | None = None) -> str:
    if removed is not None:
        removed.extend(m.group(0).strip(" ,.").lower() for m in _FILLER_RE.finditer(text))
    text = _FILLER_RE.sub(" ", text)
    text = _MID_MARKER_RE.sub(" ", text)
    text = _LEADING_MARKER_RE.sub(r"\1", text)
    text = _TRAILING_MARKER_RE.sub("", text)
    text = _DOUBLE_COMMA_RE.sub(",", text)
    text = _SPACE_BEFORE_PUNCT_RE.sub(r"\1", _collapse(text))
    return text.lstrip(" ,.;")


def strip_fillers(text: str) -> str:
    """Remove disfluencies ("um", "uh", comma-delimited "like") from text.

    Content uses of the same words ("I'd like to book", "looks like rain")
    are left alone because discourse markers are only removed when set off
    by commas.
    """
    if not text:
        return ""
    try:
        return _strip(text)
    except Exception as e:
        logger.warning("strip_fillers failed, returning trimmed input: %s", e)
        return str(text).strip()


def preprocess(text: str) -> Preprocessed:
    """normalize + strip_fillers, keeping a record of what changed."""
    raw = text or ""
    corrections: list[str] = []
    removed: list[str] = []
    try:
        normalized = _normalize(raw, corrections) if raw else ""
    except Exception as e:
        logger.warning("normalize failed, returning trimmed input: %s", e)
        normalized = raw.strip()
    try:
        cleaned = _strip(normalized, removed) if normalized else ""
    except Exception as e:
        logger.warning("strip_fillers failed, returning trimmed input: %s", e)
        cleaned = normalized
    return Preprocessed(
        raw=raw,
        normalized=normalized,
        # An all-filler utterance ("um, uh") still needs something to route on
        cleaned=cleaned or normalized,
        corrections=corrections,
        fillers_removed=removed,
    )
