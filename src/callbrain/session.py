import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field, fields

from callbrain.emotion import EmotionResult
from callbrain.intents import Intent, Tier

logger = logging.getLogger(__name__)

MAX_REASON_CHARS = 200


@dataclass
class Contact:
    name: str = ""
    phone: str = ""
    email: str = ""


@dataclass
class Location:
    address_line1: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""


@dataclass
class Problem:
    summary: str = ""
    category: str = ""
    urgency: str = ""
    duration: str = ""
    duration_category: str = ""


@dataclass
class Scheduling:
    preferred_date: str = ""
    preferred_window: str = ""


@dataclass
class Access:
    gate_code: str = ""
    notes: str = ""


@dataclass
class ExtractedSlots:
    contact: Contact = field(default_factory=Contact)
    location: Location = field(default_factory=Location)
    problem: Problem = field(default_factory=Problem)
    scheduling: Scheduling = field(default_factory=Scheduling)
    access: Access = field(default_factory=Access)

    def merge(self, updates: dict) -> list[str]:
        """Set-once-then-merge: fill empty fields, never clear or overwrite populated ones.

        `updates` is a nested dict shaped like the dataclass
        ({"contact": {"phone": "..."}}). Unknown groups and fields are ignored.
        Returns the dotted names of fields that were filled.
        """
        filled = []
        for group_name, values in (updates or {}).items():
            group = getattr(self, group_name, None)
            if group is None or not isinstance(values, dict):
                continue
            known = {f.name for f in fields(group)}
            for key, value in values.items():
                if key not in known:
                    continue
                value = "" if value is None else str(value).strip()
                if not value:
                    continue
                current = getattr(group, key)
                if not current:
                    setattr(group, key, value)
                    filled.append(f"{group_name}.{key}")
                elif current != value:
                    logger.debug("Keeping %s.%s=%r, ignoring %r", group_name, key, current, value)
        return filled

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class TierRecord:
    turn: int
    tier: Tier
    target: str
    route: str
    confidence: float
    reason: str
    timestamp: float

    def to_dict(self) -> dict:
        return {
            "turn": self.turn,
            "tier": self.tier.value,
            "target": self.target,
            "route": self.route,
            "confidence": round(self.confidence, 3),
            "reason": self.reason,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class TranscriptTurn:
    role: str
    text: str
    timestamp: float


@dataclass
class CallContext:
    """Mutable per-call state. Owned by one call's turn loop; never shared across calls."""

    call_id: str
    company_id: str
    trade: str = ""
    caller_phone: str = ""

    current_intent: Intent = Intent.OTHER
    extracted: ExtractedSlots = field(default_factory=ExtractedSlots)
    ready_to_book: bool = False
    emotion: EmotionResult | None = None
    caller_call_count: int = 1

    turn_count: int = 0
    start_time: float = field(default_factory=time.time)

    _triage_matches: list = field(default_factory=list, init=False, repr=False)
    _tier_trace: list = field(default_factory=list, init=False, repr=False)
    _transcript: list = field(default_factory=list, init=False, repr=False)
    _closed: bool = field(default=False, init=False, repr=False)
    _inflight: set = field(default_factory=set, init=False, repr=False)
    _turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    # Append-only views

    @property
    def triage_matches(self) -> tuple[str, ...]:
        return tuple(self._triage_matches)

    @property
    def tier_trace(self) -> tuple[TierRecord, ...]:
        return tuple(self._tier_trace)

    @property
    def transcript(self) -> tuple[TranscriptTurn, ...]:
        return tuple(self._transcript)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def turn_lock(self) -> asyncio.Lock:
        return self._turn_lock

    # Mutations

    def set_trade(self, trade: str) -> None:
        if not self.trade and trade:
            self.trade = trade

    def set_intent(self, intent: Intent) -> None:
        if self.current_intent == Intent.EMERGENCY:
            return
        self.current_intent = intent

    def merge_extracted(self, updates: dict) -> list[str]:
        filled = self.extracted.merge(updates)
        if filled:
            logger.debug("[%s] filled slots: %s", self.call_id, ", ".join(filled))
        return filled

    def missing_booking_slots(self) -> list[str]:
        slots = self.extracted
        missing = []
        if not slots.contact.name:
            missing.append("name")
        if not (slots.contact.phone or self.caller_phone):
            missing.append("phone")
        if not (slots.location.address_line1 or slots.location.zip):
            missing.append("address")
        if not slots.problem.summary:
            missing.append("problem")
        if not (slots.scheduling.preferred_date or slots.scheduling.preferred_window):
            missing.append("time")
        return missing

    def mark_ready_to_book(self) -> bool:
        """Flip ready_to_book once every booking slot is populated. Never flips back."""
        if not self.ready_to_book and not self.missing_booking_slots():
            self.ready_to_book = True
            logger.info("[%s] ready to book", self.call_id)
        return self.ready_to_book

    def record_triage_match(self, card_id: str) -> None:
        if card_id:
            self._triage_matches.append(card_id)

    def record_tier(self, tier: Tier, target: str, route: str, confidence: float, reason: str) -> TierRecord:
        record = TierRecord(
            turn=self.turn_count,
            tier=tier,
            target=target,
            route=route,
            confidence=confidence,
            reason=(reason or "")[:MAX_REASON_CHARS],
            timestamp=time.time(),
        )
        self._tier_trace.append(record)
        return record

    def add_turn(self, role: str, text: str) -> TranscriptTurn:
        turn = TranscriptTurn(role=role, text=text, timestamp=time.time())
        self._transcript.append(turn)
        return turn

    # Lifecycle

    def track(self, task: asyncio.Task) -> None:
        """Register an in-flight task so close() can cancel it."""
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    def close(self) -> None:
        """Tear down the call: cancel in-flight work, reject further turns."""
        if self._closed:
            return
        self._closed = True
        pending = [t for t in self._inflight if not t.done()]
        for task in pending:
            task.cancel()
        logger.info("[%s] call context closed (%d in-flight cancelled)", self.call_id, len(pending))

    def to_dict(self) -> dict:
        """Snapshot for the persistence layer."""
        return {
            "call_id": self.call_id,
            "company_id": self.company_id,
            "trade": self.trade,
            "caller_phone": self.caller_phone,
            "current_intent": self.current_intent.value,
            "extracted": self.extracted.to_dict(),
            "ready_to_book": self.ready_to_book,
            "turn_count": self.turn_count,
            "triage_matches": list(self._triage_matches),
            "tier_trace": [r.to_dict() for r in self._tier_trace],
            "transcript": [
                {"role": t.role, "text": t.text, "timestamp": t.timestamp}
                for t in self._transcript
            ],
            "emotion": self.emotion.to_dict() if self.emotion else None,
        }
