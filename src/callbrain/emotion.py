"""Pattern-based caller emotion scoring.

No model call: each category has keywords, phrases, disqualifiers and an
intensity multiplier. A disqualifier vetoes the category outright. Intensity
is then boosted by delivery signals (punctuation, caps, repetition,
profanity) and by how many times this caller has already called.

is_emergency() is deliberately separate and never runs the scorer.
"""

import re
from dataclasses import dataclass, field
from enum import Enum

from callbrain.validation import match_any_keyword, matched_keywords

KEYWORD_POINTS = 0.15
PHRASE_POINTS = 0.30
MIN_THRESHOLD = 0.10


class Emotion(Enum):
    NEUTRAL = "NEUTRAL"
    HUMOROUS = "HUMOROUS"
    FRUSTRATED = "FRUSTRATED"
    ANGRY = "ANGRY"
    STRESSED = "STRESSED"
    PANICKED = "PANICKED"
    SAD = "SAD"
    URGENT = "URGENT"


@dataclass(frozen=True)
class EmotionPattern:
    keywords: tuple[str, ...]
    phrases: tuple[str, ...]
    disqualifiers: tuple[str, ...] = ()
    multiplier: float = 1.0


# Ties go to the category listed first; NEUTRAL is last so it never wins a tie.
EMOTION_PATTERNS: dict[Emotion, EmotionPattern] = {
    Emotion.PANICKED: EmotionPattern(
        keywords=("panicking", "panic", "scared", "terrified", "help"),
        phrases=("oh my god", "please hurry", "what do i do", "water everywhere", "it's everywhere"),
        disqualifiers=("no emergency", "not an emergency"),
        multiplier=1.4,
    ),
    Emotion.ANGRY: EmotionPattern(
        keywords=("angry", "furious", "mad", "pissed", "unacceptable", "outrageous", "worst", "terrible"),
        phrases=("this is unacceptable", "speak to a manager", "want a refund", "never using you", "sick of"),
        disqualifiers=("not mad", "not angry"),
        multiplier=1.3,
    ),
    Emotion.FRUSTRATED: EmotionPattern(
        keywords=("frustrated", "frustrating", "annoyed", "annoying", "ridiculous", "fed up"),
        phrases=("third time", "keeps happening", "still broken", "still not working",
                 "no one called back", "nobody called", "waiting all day", "second time"),
        disqualifiers=("not frustrated", "no worries"),
        multiplier=1.2,
    ),
    Emotion.URGENT: EmotionPattern(
        keywords=("urgent", "ASAP", "immediately", "quickly", "today"),
        phrases=("as soon as possible", "right away", "same day", "can't wait", "right now"),
        disqualifiers=("no rush", "not urgent", "whenever"),
        multiplier=1.2,
    ),
    Emotion.STRESSED: EmotionPattern(
        keywords=("stressed", "overwhelmed", "worried", "anxious", "nervous"),
        phrases=("don't know what to do", "wits end", "so much going on", "newborn at home"),
        disqualifiers=("not worried",),
        multiplier=1.1,
    ),
    Emotion.SAD: EmotionPattern(
        keywords=("sad", "upset", "crying", "devastated", "unfortunately"),
        phrases=("passed away", "lost my", "can't afford"),
        multiplier=1.0,
    ),
    Emotion.HUMOROUS: EmotionPattern(
        keywords=("haha", "lol", "hilarious", "funny", "kidding"),
        phrases=("just kidding", "killing me"),
        disqualifiers=("not funny",),
        multiplier=1.0,
    ),
    Emotion.NEUTRAL: EmotionPattern(
        keywords=("okay", "fine", "sure", "thanks"),
        phrases=("just wondering", "quick question", "no rush"),
        multiplier=0.5,
    ),
}

# Words that are legitimately upper-case after normalization
ACRONYMS = frozenset({"AC", "HVAC", "ASAP", "CO", "OK", "TV", "AM", "PM", "ID", "USA", "ZIP"})

PROFANITY = frozenset({"damn", "dammit", "hell", "crap", "shit", "bullshit", "fuck", "fucking", "pissed"})

EMERGENCY_KEYWORDS = frozenset({
    "fire", "on fire", "gas leak", "smell gas", "gas smell", "rotten egg",
    "carbon monoxide", "CO detector", "co alarm", "flooding", "burst pipe",
    "sparks", "sparking", "smoke", "burning smell", "explosion", "electrocuted",
    "emergency",
})

EMERGENCY_RETRACTIONS = frozenset({
    "no emergency", "not an emergency", "never mind", "nevermind", "actually no",
    "forget i said", "i'm fine", "we're okay", "false alarm", "not the issue",
})

_REPEATED_PUNCT_RE = re.compile(r"[!?]{2,}")
_CAPS_TOKEN_RE = re.compile(r"\b[A-Z]{2,}\b")
_REPEATED_WORD_RE = re.compile(r"\b(\w+)\s+\1\b", re.IGNORECASE)
_WORD_RE = re.compile(r"[a-z']+")


PERSISTENT_EMOTIONS = (Emotion.FRUSTRATED, Emotion.ANGRY, Emotion.STRESSED, Emotion.PANICKED)


@dataclass
class CallerHistory:
    call_count: int = 1
    last_emotion: Emotion | None = None


@dataclass
class EmotionResult:
    primary: Emotion = Emotion.NEUTRAL
    intensity: float = 0.0
    signals: list[str] = field(default_factory=list)
    scores: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "primary": self.primary.value,
            "intensity": round(self.intensity, 3),
            "signals": list(self.signals),
        }


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def score_category(text: str, pattern: EmotionPattern) -> float:
    if match_any_keyword(text, pattern.disqualifiers):
        return 0.0
    keyword_hits = len(matched_keywords(text, pattern.keywords))
    phrase_hits = len(matched_keywords(text, pattern.phrases))
    raw = keyword_hits * KEYWORD_POINTS + phrase_hits * PHRASE_POINTS
    return _clamp(raw * pattern.multiplier)


def _delivery_boosts(text: str, signals: list[str]) -> float:
    boost = 0.0

    punct_runs = len(_REPEATED_PUNCT_RE.findall(text))
    if punct_runs:
        boost += min(0.2, 0.1 * punct_runs)
        signals.append("repeated_punctuation")

    caps = [t for t in _CAPS_TOKEN_RE.findall(text) if t not in ACRONYMS]
    if caps:
        boost += min(0.15, 0.05 * len(caps))
        signals.append("all_caps")

    if _REPEATED_WORD_RE.search(text):
        boost += 0.1
        signals.append("word_repetition")

    words = _WORD_RE.findall(text.lower())
    profane = sum(1 for w in words if w in PROFANITY)
    if profane:
        density = profane / len(words)
        boost += min(0.25, 0.1 * profane + density)
        signals.append("profanity")

    return boost


def _history_boost(history: CallerHistory | None, primary: Emotion, signals: list[str]) -> float:
    if history is None:
        return 0.0
    boost = 0.0
    if history.call_count >= 2:
        signals.append(f"repeat_caller:{history.call_count}")
        boost += 0.2 if history.call_count >= 3 else 0.1
    # Same distress as the previous turn
    if history.last_emotion == primary and primary in PERSISTENT_EMOTIONS:
        signals.append(f"persisting:{primary.value.lower()}")
        boost += 0.1
    return boost


def analyze(text: str, caller_history: CallerHistory | None = None) -> EmotionResult:
    """Score text against every emotion category and pick the primary one."""
    if not text or not text.strip():
        return EmotionResult()

    scores = {emotion.value: score_category(text, pattern) for emotion, pattern in EMOTION_PATTERNS.items()}

    primary = Emotion.NEUTRAL
    best = 0.0
    for emotion in EMOTION_PATTERNS:
        if scores[emotion.value] > best:
            primary, best = emotion, scores[emotion.value]

    if best < MIN_THRESHOLD:
        return EmotionResult(primary=Emotion.NEUTRAL, intensity=0.0, scores=scores)

    signals = [f"matched:{primary.value.lower()}"]
    boost = _delivery_boosts(text, signals) + _history_boost(caller_history, primary, signals)
    return EmotionResult(
        primary=primary,
        intensity=_clamp(best + boost),
        signals=signals,
        scores=scores,
    )


def is_emergency(text: str) -> bool:
    """Cheap safety check: emergency keyword present and not retracted."""
    if not text or not match_any_keyword(text, EMERGENCY_KEYWORDS):
        return False
    return not match_any_keyword(text, EMERGENCY_RETRACTIONS)
