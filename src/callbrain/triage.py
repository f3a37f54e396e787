"""Deterministic triage: company rule cards plus built-in intent rules.

Card ordering is explicit: active cards sorted by `priority` descending,
then by their position in the configured list. Every lookup, tie-break and
fallback below walks cards in that order.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from callbrain.emotion import EMERGENCY_KEYWORDS, EMERGENCY_RETRACTIONS
from callbrain.intents import Action, Intent, Priority
from callbrain.preprocess import normalize
from callbrain.validation import match_any_keyword, matched_keywords

logger = logging.getLogger(__name__)


class CardAction(Enum):
    DIRECT_TO_3TIER = "DIRECT_TO_3TIER"
    EXPLAIN_AND_PUSH = "EXPLAIN_AND_PUSH"
    ESCALATE_TO_HUMAN = "ESCALATE_TO_HUMAN"
    TAKE_MESSAGE = "TAKE_MESSAGE"
    END_CALL_POLITE = "END_CALL_POLITE"
    BOOK = "BOOK"

    @classmethod
    def parse(cls, value) -> "CardAction":
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return cls.DIRECT_TO_3TIER


# Frontline action implied by a card's own action
CARD_ACTION_TO_ACTION = {
    CardAction.DIRECT_TO_3TIER: Action.ROUTE_TO_SCENARIO,
    CardAction.EXPLAIN_AND_PUSH: Action.ROUTE_TO_SCENARIO,
    CardAction.ESCALATE_TO_HUMAN: Action.TRANSFER,
    CardAction.TAKE_MESSAGE: Action.MESSAGE_ONLY,
    CardAction.END_CALL_POLITE: Action.END,
    CardAction.BOOK: Action.BOOK,
}


@dataclass(frozen=True)
class Playbook:
    pre_transfer_lines: tuple[str, ...] = ()
    explanation_lines: tuple[str, ...] = ()
    message_intro_lines: tuple[str, ...] = ()
    closing_lines: tuple[str, ...] = ()


@dataclass(frozen=True)
class RuleCard:
    card_id: str
    label: str
    priority: int = 100
    must_have: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    action: CardAction = CardAction.DIRECT_TO_3TIER
    scenario_key: str = ""
    category: str = ""
    opening_line: str = ""
    opening_lines: tuple[str, ...] = ()
    playbook: Playbook = field(default_factory=Playbook)
    explanation: str = ""
    goal: str = ""
    active: bool = True

    def is_excluded(self, text: str) -> bool:
        return match_any_keyword(text, self.exclude)

    def keyword_hits(self, text: str) -> list[str]:
        return matched_keywords(text, self.must_have)

    @classmethod
    def from_dict(cls, data: dict, index: int = 0) -> "RuleCard":
        """Build a card from a config document.

        Accepts flat snake_case keys as well as the nested camelCase layout
        used by the admin tooling (quickRuleConfig / frontlinePlaybook /
        actionPlaybooks).
        """
        quick = data.get("quickRuleConfig") or {}
        frontline = data.get("frontlinePlaybook") or {}
        actions = data.get("actionPlaybooks") or {}
        raw_playbook = data.get("playbook") or {}

        label = str(data.get("label") or data.get("triageLabel") or "").strip()
        card_id = str(data.get("card_id") or data.get("id") or data.get("_id") or label or f"card_{index}")

        playbook = Playbook(
            pre_transfer_lines=_lines(
                raw_playbook.get("pre_transfer_lines")
                or (actions.get("escalateToHuman") or {}).get("preTransferLines")
            ),
            explanation_lines=_lines(
                raw_playbook.get("explanation_lines")
                or (actions.get("explainAndPush") or {}).get("explanationLines")
            ),
            message_intro_lines=_lines(
                raw_playbook.get("message_intro_lines")
                or (actions.get("takeMessage") or {}).get("introLines")
            ),
            closing_lines=_lines(
                raw_playbook.get("closing_lines")
                or (actions.get("endCallPolite") or {}).get("closingLines")
            ),
        )

        try:
            priority = int(data.get("priority", 100))
        except (TypeError, ValueError):
            priority = 100

        return cls(
            card_id=card_id,
            label=label or card_id,
            priority=priority,
            must_have=_keywords(data.get("must_have") or data.get("keywords") or quick.get("keywordsMustHave")),
            exclude=_keywords(data.get("exclude") or data.get("exclude_keywords") or quick.get("keywordsExclude")),
            action=CardAction.parse(data.get("action") or quick.get("action")),
            scenario_key=str(data.get("scenario_key") or data.get("scenarioKey") or ""),
            category=str(data.get("category") or data.get("triageCategory") or ""),
            opening_line=str(data.get("opening_line") or frontline.get("openingLine") or "").strip(),
            opening_lines=_lines(data.get("opening_lines") or frontline.get("openingLines")),
            playbook=playbook,
            explanation=str(data.get("explanation") or quick.get("explanation") or "").strip(),
            goal=str(data.get("goal") or frontline.get("frontlineGoal") or "").strip(),
            active=bool(data.get("active", data.get("isActive", True))),
        )


def _lines(value) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        value = [value]
    return tuple(str(v).strip() for v in value if v and str(v).strip())


def _keywords(value) -> tuple[str, ...]:
    # Keywords go through the same normalizer as transcripts so "a/c" matches "AC"
    out = []
    for kw in _lines(value):
        kw = normalize(kw).lower()
        if kw and kw not in out:
            out.append(kw)
    return tuple(out)


def load_rule_cards(documents) -> tuple[RuleCard, ...]:
    """Parse card documents, skipping malformed ones, in configured order."""
    cards = []
    for i, doc in enumerate(documents or []):
        if isinstance(doc, RuleCard):
            cards.append(doc)
            continue
        if not isinstance(doc, dict):
            logger.warning("Skipping rule card %d: expected dict, got %s", i, type(doc).__name__)
            continue
        card = RuleCard.from_dict(doc, index=i)
        if not card.must_have and card.action != CardAction.ESCALATE_TO_HUMAN:
            logger.warning("Rule card %s has no must-have keywords; it can only match by label", card.card_id)
        cards.append(card)
    return tuple(cards)


def order_cards(cards) -> list[RuleCard]:
    """Active cards, highest priority first, configured order within a priority."""
    return sorted((c for c in cards if c.active), key=lambda c: -c.priority)


@dataclass(frozen=True)
class RoutingRule:
    """One candidate target for the router, from a card or the built-in table."""

    target: str
    keywords: tuple[str, ...]
    negative_keywords: tuple[str, ...] = ()
    action: Action = Action.ROUTE_TO_SCENARIO
    intent: Intent = Intent.OTHER
    priority: Priority = Priority.NORMAL
    description: str = ""
    card_id: str = ""


GENERAL_INQUIRY = "general_inquiry"

BUILTIN_RULES: tuple[RoutingRule, ...] = (
    RoutingRule(
        target="emergency",
        keywords=tuple(sorted(k.lower() for k in EMERGENCY_KEYWORDS)),
        negative_keywords=tuple(sorted(EMERGENCY_RETRACTIONS)),
        action=Action.TRANSFER,
        intent=Intent.EMERGENCY,
        priority=Priority.EMERGENCY,
        description="Safety emergency: gas, fire, smoke, CO, flooding",
    ),
    RoutingRule(
        target="human_request",
        keywords=("manager", "supervisor", "real person", "speak to someone", "talk to someone",
                  "human", "operator", "representative", "owner"),
        action=Action.TRANSFER,
        intent=Intent.OTHER,
        priority=Priority.HIGH,
        description="Caller asks for a person",
    ),
    RoutingRule(
        target="update_appointment",
        keywords=("my appointment", "reschedule", "cancel my", "cancel the", "change my appointment",
                  "move my appointment", "running late", "still coming"),
        action=Action.BOOK,
        intent=Intent.UPDATE_APPOINTMENT,
        description="Change or check an existing appointment",
    ),
    RoutingRule(
        target="booking",
        keywords=("schedule", "appointment", "book", "come out", "send someone", "send a tech",
                  "technician", "service call", "someone out"),
        negative_keywords=("reschedule", "cancel"),
        action=Action.BOOK,
        intent=Intent.BOOKING,
        description="Schedule a service visit",
    ),
    RoutingRule(
        target="billing",
        keywords=("bill", "billing", "invoice", "charged", "charge", "payment", "refund", "receipt"),
        action=Action.ROUTE_TO_SCENARIO,
        intent=Intent.BILLING,
        description="Billing or payment question",
    ),
    RoutingRule(
        target="wrong_number",
        keywords=("wrong number", "who is this", "didn't call", "pizza"),
        action=Action.END,
        intent=Intent.WRONG_NUMBER,
        description="Caller dialed the wrong business",
    ),
    RoutingRule(
        target="spam",
        keywords=("press 1", "extended warranty", "car warranty", "social security", "irs",
                  "final notice", "google listing"),
        action=Action.END,
        intent=Intent.SPAM,
        description="Robocall or telemarketing",
    ),
    RoutingRule(
        target="vendor",
        keywords=("vendor", "supplier", "partnership", "selling", "hiring", "job opening", "apply"),
        action=Action.MESSAGE_ONLY,
        intent=Intent.OTHER,
        description="Vendor, sales or job inquiry",
    ),
    RoutingRule(
        target="goodbye",
        keywords=("goodbye", "bye", "that's all", "nothing else", "that's it"),
        action=Action.END,
        intent=Intent.OTHER,
        description="Caller is wrapping up",
    ),
)


def _card_intent(card: RuleCard) -> Intent:
    if card.action == CardAction.BOOK:
        return Intent.BOOKING
    if card.action == CardAction.ESCALATE_TO_HUMAN and "emergency" in f"{card.label} {card.category}".lower():
        return Intent.EMERGENCY
    return Intent.TROUBLESHOOTING


def card_rule(card: RuleCard) -> RoutingRule:
    emergency = card.action == CardAction.ESCALATE_TO_HUMAN and _card_intent(card) == Intent.EMERGENCY
    return RoutingRule(
        target=card.label,
        keywords=card.must_have,
        negative_keywords=card.exclude,
        action=CARD_ACTION_TO_ACTION[card.action],
        intent=_card_intent(card),
        priority=Priority.EMERGENCY if emergency else Priority.NORMAL,
        description=card.explanation or card.goal or card.label,
        card_id=card.card_id,
    )


@dataclass(frozen=True)
class CardMatch:
    card: RuleCard
    hits: tuple[str, ...]

    @property
    def score(self) -> int:
        return len(self.hits)


@dataclass
class TriageResult:
    matches: list[CardMatch] = field(default_factory=list)
    excluded: list[str] = field(default_factory=list)
    candidate_rules: tuple[RoutingRule, ...] = BUILTIN_RULES

    @property
    def best(self) -> CardMatch | None:
        """Highest score wins; ties keep the earlier (higher-priority) card."""
        best = None
        for match in self.matches:
            if best is None or match.score > best.score:
                best = match
        return best

    @property
    def matched_cards(self) -> list[RuleCard]:
        return [m.card for m in self.matches]


def candidate_rules(cards) -> tuple[RoutingRule, ...]:
    """Company card rules in priority order, then the built-in rules."""
    return tuple(card_rule(c) for c in order_cards(cards)) + BUILTIN_RULES


def match_cards(text: str, cards) -> TriageResult:
    """Run every active card against text.

    A card whose exclude keywords match is disqualified no matter how many
    must-have keywords it also hits, and its rule is left out of the
    candidate rules offered to the router for this turn.
    """
    result = TriageResult(candidate_rules=candidate_rules(cards))
    if not text:
        return result
    for card in order_cards(cards):
        if card.is_excluded(text):
            result.excluded.append(card.card_id)
            continue
        hits = card.keyword_hits(text)
        if hits:
            result.matches.append(CardMatch(card=card, hits=tuple(hits)))
    if result.excluded:
        logger.debug("Excluded cards: %s", ", ".join(result.excluded))
        excluded = set(result.excluded)
        result.candidate_rules = tuple(r for r in result.candidate_rules if r.card_id not in excluded)
    return result
