"""Per-turn orchestration.

process_turn() runs one caller utterance through the pipeline:

    preprocess -> emotion + triage -> quick rules -> router -> dispatcher
    -> slot merge -> tier trace + transcript -> TurnResult

Everything up to and including the router is computed without touching the
call context; the context is only mutated after the router returns and the
call is confirmed still open. A call closed mid-turn therefore gets None back
and no partial state.
"""

import asyncio
import logging
import time
from dataclasses import dataclass

from callbrain.classifier import ClassifierClient, build_classifier_prompt
from callbrain.config import CompanyConfig, Settings, validate_config
from callbrain.dispatcher import DispatchResult, FrontlineDecision, dispatch
from callbrain.emotion import CallerHistory, EmotionResult, analyze, is_emergency
from callbrain.extraction import extract_slots
from callbrain.intents import Action, Intent, Priority, Route, Tier
from callbrain.preprocess import Preprocessed, preprocess
from callbrain.prompts import BAILOUT_PROMPT, FALLBACK_PROMPT, build_next_prompt
from callbrain.quick_rules import HUMAN_REQUEST_KEYWORDS, check_quick_decision
from callbrain.router import Router, RoutingDecision
from callbrain.session import CallContext
from callbrain.triage import (
    GENERAL_INQUIRY,
    TriageResult,
    candidate_rules,
    match_cards,
)
from callbrain.validation import match_any_keyword, validate_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TurnDecision:
    target: str
    tier: Tier
    route: Route
    action: Action
    intent: Intent
    priority: Priority
    confidence: float
    fallback_used: bool
    is_emergency: bool = False
    matched_card_id: str = ""
    matched_card_label: str = ""
    scenario_hint: str = ""
    opening_line: str = ""
    transfer_config: object = None
    reason: str = ""


@dataclass
class TurnResult:
    decision: TurnDecision
    next_prompt: str
    context: CallContext
    emotion: EmotionResult
    latency_ms: float
    routing: RoutingDecision | None = None
    dispatch: DispatchResult | None = None
    preprocessed: Preprocessed | None = None


class OrchestrationEngine:
    """Routes turns for one company. Safe to share across that company's calls."""

    def __init__(self, router: Router, company: CompanyConfig, classifier_client: ClassifierClient | None = None):
        self.router = router
        self.company = company
        self.cards = company.rule_cards
        self.rules = candidate_rules(self.cards)
        self._rules_by_target = {}
        for rule in self.rules:
            self._rules_by_target.setdefault(rule.target.lower(), rule)
        self._classifier_client = classifier_client

    async def close(self):
        if self._classifier_client is not None:
            await self._classifier_client.close()

    # Isolated signal sources: a failure in one never sinks the turn

    def _emotion(self, ctx: CallContext, text: str) -> EmotionResult:
        history = CallerHistory(
            call_count=ctx.caller_call_count,
            last_emotion=ctx.emotion.primary if ctx.emotion else None,
        )
        try:
            return analyze(text, history)
        except Exception as e:
            logger.warning("[%s] emotion analysis failed: %s", ctx.call_id, e)
            return EmotionResult()

    def _triage(self, ctx: CallContext, text: str) -> TriageResult:
        try:
            return match_cards(text, self.cards)
        except Exception as e:
            logger.warning("[%s] triage failed: %s", ctx.call_id, e)
            return TriageResult(candidate_rules=self.rules)

    def _quick(self, ctx: CallContext, text: str, emotion: EmotionResult) -> RoutingDecision | None:
        # Only a clearly upset caller skips the classifier when asking for a person
        upset = emotion if emotion.intensity >= self.company.thresholds.escalation_intensity else None
        try:
            quick = check_quick_decision(text, upset)
        except Exception as e:
            logger.warning("[%s] quick rules failed: %s", ctx.call_id, e)
            return None
        if quick is None:
            return None
        return RoutingDecision(
            target=quick.target,
            thought=quick.reason,
            confidence=quick.confidence,
            priority=quick.priority,
            tier=Tier.RULE,
        )

    async def _route(self, ctx: CallContext, text: str, rules) -> RoutingDecision:
        prompt = build_classifier_prompt(rules, ctx, company=self.company.name, trade=self.company.trade)
        task = asyncio.ensure_future(self.router.route(prompt, text, rules))
        ctx.track(task)
        return await task

    def _frontline(self, routing: RoutingDecision, triage: TriageResult, text: str) -> FrontlineDecision:
        rule = self._rules_by_target.get(routing.target.lower())
        if rule is not None:
            action, intent = rule.action, rule.intent
        else:
            action = Action.ROUTE_TO_SCENARIO
            intent = Intent.INFO if routing.target == GENERAL_INQUIRY else Intent.OTHER

        emergency = (
            is_emergency(text)
            or routing.priority == Priority.EMERGENCY
            or intent == Intent.EMERGENCY
        )
        if emergency:
            intent, action = Intent.EMERGENCY, Action.TRANSFER

        if rule is not None and rule.card_id:
            tag = rule.target
        elif triage.best is not None:
            tag = triage.best.card.label
        else:
            tag = ""
        if action == Action.ROUTE_TO_SCENARIO and triage.best is not None and intent in (Intent.INFO, Intent.OTHER):
            intent = Intent.TROUBLESHOOTING

        return FrontlineDecision(
            action=action,
            triage_tag=tag,
            intent=intent,
            is_emergency=emergency,
            needs_knowledge_search=action == Action.ROUTE_TO_SCENARIO,
            wants_human=routing.target == "human_request" or match_any_keyword(text, HUMAN_REQUEST_KEYWORDS),
            confidence=routing.confidence,
            reason=routing.thought,
        )

    def _slots(self, text: str, routing: RoutingDecision, frontline: FrontlineDecision, result: DispatchResult) -> list[dict]:
        """Slot updates in merge order: what the caller said verbatim, then classifier entities."""
        updates = [extract_slots(text)]
        if frontline.intent in (Intent.TROUBLESHOOTING, Intent.EMERGENCY) or result.matched_card_id:
            category = ""
            card = next((c for c in self.cards if c.card_id == result.matched_card_id), None)
            if card is not None:
                category = card.category or card.label
            updates.append({"problem": {
                "summary": validate_text(text),
                "category": category,
                "urgency": "emergency" if frontline.is_emergency else "",
            }})
        if routing.entities:
            updates.append(routing.entities)
        return updates

    async def process_turn(self, ctx: CallContext, utterance: str) -> TurnResult | None:
        if ctx.closed:
            logger.info("[%s] turn ignored, call closed", ctx.call_id)
            return None
        async with ctx.turn_lock:
            if ctx.closed:
                return None
            start = time.perf_counter()
            turn_no = ctx.turn_count + 1
            try:
                return await self._process(ctx, utterance, turn_no, start)
            except asyncio.CancelledError:
                if ctx.closed:
                    logger.info("[%s] call closed mid-turn, discarding turn %d", ctx.call_id, turn_no)
                    return None
                raise
            except Exception as e:
                logger.error("[%s] turn %d failed: %s", ctx.call_id, turn_no, e, exc_info=True)
                return self._safe_result(ctx, utterance, turn_no, start, e)

    async def _process(self, ctx: CallContext, utterance: str, turn_no: int, start: float) -> TurnResult | None:
        pre = preprocess(utterance)
        text = pre.cleaned
        emotion = self._emotion(ctx, text)
        triage = self._triage(ctx, text)

        routing = self._quick(ctx, text, emotion)
        if routing is None:
            routing = await self._route(ctx, text, triage.candidate_rules)
        if ctx.closed:
            logger.info("[%s] call closed during routing, discarding turn %d", ctx.call_id, turn_no)
            return None

        frontline = self._frontline(routing, triage, text)
        result = dispatch(
            frontline,
            self.cards,
            transfer_config=self.company.transfer,
            turn=turn_no - 1,
            text=text,
        )
        updates = self._slots(text, routing, frontline, result)

        # Apply: synchronous from here on
        ctx.turn_count = turn_no
        ctx.set_trade(self.company.trade)
        ctx.emotion = emotion
        ctx.set_intent(frontline.intent)
        for update in updates:
            ctx.merge_extracted(update)
        ctx.mark_ready_to_book()
        if result.matched_card_id:
            ctx.record_triage_match(result.matched_card_id)

        next_prompt = build_next_prompt(result.route, result.opening_line, ctx, company=self.company.name)
        ctx.record_tier(
            routing.tier,
            routing.target,
            result.route.value,
            routing.confidence,
            f"{result.reason}; {routing.thought}" if routing.thought else result.reason,
        )
        ctx.add_turn("caller", (pre.raw or "").strip())
        ctx.add_turn("agent", next_prompt)

        decision = TurnDecision(
            target=routing.target,
            tier=routing.tier,
            route=result.route,
            action=frontline.action,
            intent=ctx.current_intent,
            priority=routing.priority,
            confidence=routing.confidence,
            fallback_used=routing.fallback_used,
            is_emergency=frontline.is_emergency,
            matched_card_id=result.matched_card_id,
            matched_card_label=result.matched_card_label,
            scenario_hint=result.scenario_hint,
            opening_line=result.opening_line,
            transfer_config=result.transfer_config,
            reason=result.reason,
        )
        latency_ms = round((time.perf_counter() - start) * 1000, 1)
        logger.info(
            "[%s] turn %d: %s -> %s via %s (%.2f) in %.0fms",
            ctx.call_id, turn_no, routing.target, result.route.value, routing.tier.value,
            routing.confidence, latency_ms,
        )
        return TurnResult(
            decision=decision,
            next_prompt=next_prompt,
            context=ctx,
            emotion=emotion,
            latency_ms=latency_ms,
            routing=routing,
            dispatch=result,
            preprocessed=pre,
        )

    def _safe_result(self, ctx: CallContext, utterance: str, turn_no: int, start: float, error: Exception) -> TurnResult:
        emergency = is_emergency(utterance or "")
        route = Route.TRANSFER if emergency else Route.MESSAGE_ONLY
        next_prompt = BAILOUT_PROMPT if emergency else FALLBACK_PROMPT
        reason = f"engine error: {type(error).__name__}"

        ctx.turn_count = turn_no
        if emergency:
            ctx.set_intent(Intent.EMERGENCY)
        if not ctx.tier_trace or ctx.tier_trace[-1].turn != turn_no:
            ctx.record_tier(Tier.SAFE_DEFAULT, GENERAL_INQUIRY, route.value, 0.0, reason)
            ctx.add_turn("caller", (utterance or "").strip())
            ctx.add_turn("agent", next_prompt)

        decision = TurnDecision(
            target=GENERAL_INQUIRY,
            tier=Tier.SAFE_DEFAULT,
            route=route,
            action=Action.TRANSFER if emergency else Action.MESSAGE_ONLY,
            intent=ctx.current_intent,
            priority=Priority.EMERGENCY if emergency else Priority.NORMAL,
            confidence=0.0,
            fallback_used=True,
            is_emergency=emergency,
            transfer_config=self.company.transfer if emergency else None,
            reason=reason,
        )
        return TurnResult(
            decision=decision,
            next_prompt=next_prompt,
            context=ctx,
            emotion=ctx.emotion or EmotionResult(),
            latency_ms=round((time.perf_counter() - start) * 1000, 1),
        )


def build_engine(
    company: CompanyConfig,
    settings: Settings | None = None,
    classifier=None,
) -> OrchestrationEngine:
    """Wire a Router (and, with an API key, a classifier client) for one company."""
    if settings is None:
        settings = Settings.from_env()
        validate_config()
    client = None
    if classifier is None and settings.classifier_enabled:
        client = ClassifierClient(
            api_key=settings.openai_api_key,
            model=settings.classifier_model,
            url=settings.classifier_url,
            timeout=settings.classifier_timeout_s,
        )
        classifier = client
    elif classifier is None:
        logger.warning("No classifier configured for %s; routing on keyword rules only", company.company_id)
    router = Router.from_settings(settings, company.thresholds, classifier=classifier)
    return OrchestrationEngine(router, company, classifier_client=client)
