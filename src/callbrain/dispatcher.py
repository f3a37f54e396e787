"""Turn a frontline decision into a dispatch route plus opening-line metadata.

Order of precedence:
    1. emergency         -> TRANSFER, always
    2. direct actions    -> BOOK, TRANSFER, END, MESSAGE_ONLY, ASK_FOLLOWUP
    3. ROUTE_TO_SCENARIO -> best rule card; the card's own action picks the route
    4. knowledge search  -> SCENARIO_ENGINE
    5. anything else     -> MESSAGE_ONLY

Nothing here speaks to the caller; the result is metadata for the prompt layer.
"""

import logging
from dataclasses import dataclass

from callbrain.intents import Action, Intent, Route
from callbrain.triage import CARD_ACTION_TO_ACTION, RuleCard, order_cards

logger = logging.getLogger(__name__)

MAX_GOAL_AS_LINE = 120

DIRECT_ROUTES = {
    Action.BOOK: Route.BOOKING_FLOW,
    Action.TRANSFER: Route.TRANSFER,
    Action.END: Route.END_CALL,
    Action.MESSAGE_ONLY: Route.MESSAGE_ONLY,
    Action.ASK_FOLLOWUP: Route.MESSAGE_ONLY,
}

ACTION_TO_ROUTE = {
    **DIRECT_ROUTES,
    Action.ROUTE_TO_SCENARIO: Route.SCENARIO_ENGINE,
}


@dataclass(frozen=True)
class FrontlineDecision:
    action: Action
    triage_tag: str = ""
    intent: Intent = Intent.OTHER
    is_emergency: bool = False
    needs_knowledge_search: bool = False
    wants_human: bool = False
    confidence: float = 0.0
    reason: str = ""


@dataclass(frozen=True)
class DispatchResult:
    route: Route
    matched_card_id: str = ""
    matched_card_label: str = ""
    scenario_hint: str = ""
    transfer_config: object = None
    opening_line: str = ""
    reason: str = ""


def find_card(decision: FrontlineDecision, cards, text: str = "", score_keywords: bool = True) -> RuleCard | None:
    """Pick the rule card for a decision.

    An exact label match on the triage tag wins. Otherwise score must-have
    keyword overlap against the caller text, skipping excluded cards; ties
    keep the first card in priority order. A card excluded by the text is
    never returned, whichever way it was found.
    """
    ordered = order_cards(cards)
    tag = (decision.triage_tag or "").strip().lower()

    if tag:
        for card in ordered:
            if card.label.lower() == tag and not (text and card.is_excluded(text)):
                return card

    if not (text and score_keywords):
        return None

    best, best_score = None, 0
    for card in ordered:
        if card.is_excluded(text):
            continue
        score = len(card.keyword_hits(text))
        if score > best_score:
            best, best_score = card, score
    return best


def _pick(lines: tuple[str, ...], turn: int) -> str:
    if not lines:
        return ""
    return lines[turn % len(lines)]


def _playbook_line(card: RuleCard, route: Route, turn: int) -> str:
    playbook = card.playbook
    if route == Route.TRANSFER:
        return _pick(playbook.pre_transfer_lines, turn)
    if route == Route.SCENARIO_ENGINE:
        return _pick(playbook.explanation_lines, turn)
    if route == Route.MESSAGE_ONLY:
        return _pick(playbook.message_intro_lines, turn)
    if route == Route.END_CALL:
        return _pick(playbook.closing_lines, turn)
    return ""


def opening_line_for(card: RuleCard | None, route: Route, turn: int = 0) -> str:
    """Explicit opening line, then route playbook line, then explanation, then a short goal."""
    if card is None:
        return ""
    line = card.opening_line or _pick(card.opening_lines, turn)
    if line:
        return line
    line = _playbook_line(card, route, turn)
    if line:
        return line
    if card.explanation:
        return card.explanation
    if card.goal and len(card.goal) <= MAX_GOAL_AS_LINE:
        return card.goal
    return ""


def _result(route: Route, card: RuleCard | None, transfer_config, turn: int, reason: str) -> DispatchResult:
    return DispatchResult(
        route=route,
        matched_card_id=card.card_id if card else "",
        matched_card_label=card.label if card else "",
        scenario_hint=(card.scenario_key or card.label) if card else "",
        transfer_config=transfer_config if route == Route.TRANSFER else None,
        opening_line=opening_line_for(card, route, turn),
        reason=reason,
    )


def dispatch(
    decision: FrontlineDecision,
    cards=(),
    transfer_config=None,
    turn: int = 0,
    text: str = "",
) -> DispatchResult:
    cards = tuple(cards or ())

    if decision.is_emergency:
        card = find_card(decision, cards, text) if decision.triage_tag else None
        return _result(Route.TRANSFER, card, transfer_config, turn, "emergency override")

    if decision.action in DIRECT_ROUTES:
        route = DIRECT_ROUTES[decision.action]
        card = find_card(decision, cards, text, score_keywords=False) if decision.triage_tag else None
        return _result(route, card, transfer_config, turn, f"direct action {decision.action.value}")

    if decision.action == Action.ROUTE_TO_SCENARIO:
        card = find_card(decision, cards, text)
        if card is not None:
            route = ACTION_TO_ROUTE[CARD_ACTION_TO_ACTION[card.action]]
            logger.debug("Dispatch matched card %s -> %s", card.card_id, route.value)
            return _result(route, card, transfer_config, turn, f"rule card {card.label} ({card.action.value})")

    if decision.needs_knowledge_search:
        return _result(Route.SCENARIO_ENGINE, None, transfer_config, turn, "knowledge search")

    return _result(Route.MESSAGE_ONLY, None, transfer_config, turn, "no route matched")
