"""Routing tiers.

A Router walks an ordered list of tiers and returns the first decision any
of them produces:

    ClassifierTier    model call, hard timeout, retries, circuit breaker
    RuleFallbackTier  keyword hits against the candidate rules
    SafeDefaultTier   general_inquiry, always answers

route() never raises. The one exception is task cancellation, which
propagates so a hung-up call can abandon its in-flight classifier request.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field, replace

from callbrain.circuit_breaker import CircuitBreaker
from callbrain.classifier import ClassifierError, ClassifierTimeoutError, parse_classifier_payload
from callbrain.emotion import is_emergency
from callbrain.intents import Priority, Tier
from callbrain.triage import GENERAL_INQUIRY
from callbrain.validation import match_any_keyword, matched_keywords

logger = logging.getLogger(__name__)


def _clamp_confidence(value) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


@dataclass(frozen=True)
class RoutingDecision:
    target: str
    thought: str = ""
    confidence: float = 0.0
    priority: Priority = Priority.NORMAL
    success: bool = True
    fallback_used: bool = False
    tier: Tier = Tier.CLASSIFIER
    attempts: int = 0
    latency_ms: float = 0.0
    entities: dict = field(default_factory=dict, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "target", (self.target or "").strip() or GENERAL_INQUIRY)
        object.__setattr__(self, "confidence", _clamp_confidence(self.confidence))
        object.__setattr__(self, "priority", Priority.parse(self.priority))


@dataclass
class RouteState:
    """Scratch state for one route() call, shared by its tiers."""

    attempts: int = 0
    errors: list[str] = field(default_factory=list)


class ClassifierTier:
    tier = Tier.CLASSIFIER

    def __init__(
        self,
        classifier,
        timeout_s: float = 5.0,
        max_retries: int = 2,
        backoff_base: float = 0.1,
        breaker: CircuitBreaker | None = None,
        min_confidence: float = 0.0,
        sleep=asyncio.sleep,
    ):
        self.classifier = classifier
        self.timeout_s = timeout_s
        self.max_retries = max(0, max_retries)
        self.backoff_base = backoff_base
        self.breaker = breaker or CircuitBreaker(label="classifier")
        self.min_confidence = min_confidence
        self._sleep = sleep

    async def decide(self, prompt: str, user_input: str, rules, state: RouteState) -> RoutingDecision | None:
        for attempt in range(self.max_retries + 1):
            if not self.breaker.should_try():
                logger.warning("Classifier circuit open, skipping to fallback")
                state.errors.append("circuit_open")
                return None
            state.attempts += 1
            try:
                raw = await asyncio.wait_for(
                    self.classifier.classify(prompt, user_input),
                    timeout=self.timeout_s,
                )
                parsed = parse_classifier_payload(raw)
            except asyncio.CancelledError:
                self.breaker.abandon_trial()
                raise
            except (asyncio.TimeoutError, ClassifierTimeoutError):
                self.breaker.record_failure()
                logger.warning("Classifier timed out after %.1fs (attempt %d)", self.timeout_s, attempt + 1)
                state.errors.append("timeout")
            except ClassifierError as e:
                self.breaker.record_failure()
                logger.warning("Classifier failed (attempt %d): %s", attempt + 1, e)
                state.errors.append(type(e).__name__)
            except Exception as e:
                self.breaker.record_failure()
                logger.error("Classifier raised unexpectedly (attempt %d): %s", attempt + 1, e)
                state.errors.append(type(e).__name__)
            else:
                self.breaker.record_success()
                if parsed["confidence"] < self.min_confidence:
                    logger.info(
                        "Classifier picked %s at %.2f, below %.2f; falling back",
                        parsed["target"], parsed["confidence"], self.min_confidence,
                    )
                    state.errors.append("low_confidence")
                    return None
                return RoutingDecision(
                    target=parsed["target"],
                    thought=parsed["thought"],
                    confidence=parsed["confidence"],
                    priority=parsed["priority"],
                    tier=self.tier,
                    entities=parsed["entities"],
                )

            if attempt < self.max_retries:
                await self._sleep(self.backoff_base * 2 ** attempt)
        return None


class RuleFallbackTier:
    """Keyword scoring over the candidate rules. Ties go to the first rule."""

    tier = Tier.FALLBACK

    def __init__(self, base: float = 0.5, step: float = 0.1, cap: float = 0.85):
        self.base = base
        self.step = step
        self.cap = cap

    async def decide(self, prompt: str, user_input: str, rules, state: RouteState) -> RoutingDecision | None:
        best_rule, best_hits = None, []
        for rule in rules:
            if match_any_keyword(user_input, rule.negative_keywords):
                continue
            hits = matched_keywords(user_input, rule.keywords)
            if len(hits) > len(best_hits):
                best_rule, best_hits = rule, hits
        if best_rule is None:
            return None

        priority = best_rule.priority
        if is_emergency(user_input):
            priority = Priority.EMERGENCY
        return RoutingDecision(
            target=best_rule.target,
            thought=f"keyword match: {', '.join(best_hits)}",
            confidence=min(self.cap, self.base + self.step * len(best_hits)),
            priority=priority,
            fallback_used=True,
            tier=self.tier,
        )


class SafeDefaultTier:
    tier = Tier.SAFE_DEFAULT

    def __init__(self, confidence: float = 0.2):
        self.confidence = confidence

    async def decide(self, prompt: str, user_input: str, rules, state: RouteState) -> RoutingDecision:
        return self.default(user_input)

    def default(self, user_input: str) -> RoutingDecision:
        return RoutingDecision(
            target=GENERAL_INQUIRY,
            thought="no confident match",
            confidence=self.confidence,
            priority=Priority.EMERGENCY if is_emergency(user_input) else Priority.NORMAL,
            success=False,
            fallback_used=True,
            tier=self.tier,
        )


class Router:
    def __init__(
        self,
        classifier=None,
        timeout_s: float = 5.0,
        max_retries: int = 2,
        backoff_base: float = 0.1,
        breaker: CircuitBreaker | None = None,
        min_confidence: float = 0.0,
        fallback_base: float = 0.5,
        fallback_step: float = 0.1,
        fallback_cap: float = 0.85,
        safe_default_confidence: float = 0.2,
        sleep=asyncio.sleep,
    ):
        self.tiers = []
        if classifier is not None:
            self.tiers.append(ClassifierTier(
                classifier,
                timeout_s=timeout_s,
                max_retries=max_retries,
                backoff_base=backoff_base,
                breaker=breaker,
                min_confidence=min_confidence,
                sleep=sleep,
            ))
        self.tiers.append(RuleFallbackTier(base=fallback_base, step=fallback_step, cap=fallback_cap))
        self.safe_default = SafeDefaultTier(confidence=safe_default_confidence)
        self.tiers.append(self.safe_default)

    @classmethod
    def from_settings(cls, settings, thresholds, classifier=None, breaker: CircuitBreaker | None = None) -> "Router":
        return cls(
            classifier=classifier,
            timeout_s=settings.classifier_timeout_s,
            max_retries=settings.classifier_max_retries,
            backoff_base=settings.classifier_backoff_s,
            breaker=breaker or CircuitBreaker(
                failure_threshold=settings.breaker_failure_threshold,
                cooldown_seconds=settings.breaker_cooldown_s,
                label="classifier",
            ),
            min_confidence=thresholds.min_classifier_confidence,
            fallback_base=thresholds.fallback_base,
            fallback_step=thresholds.fallback_step,
            fallback_cap=thresholds.fallback_cap,
            safe_default_confidence=thresholds.safe_default_confidence,
        )

    async def route(self, prompt: str, user_input: str, rules=()) -> RoutingDecision:
        start = time.perf_counter()
        user_input = user_input or ""
        rules = tuple(rules or ())
        state = RouteState()

        decision = None
        for tier in self.tiers:
            try:
                decision = await tier.decide(prompt or "", user_input, rules, state)
            except Exception as e:
                logger.error("Routing tier %s failed: %s", tier.tier.value, e)
                state.errors.append(f"{tier.tier.value}:{type(e).__name__}")
                continue
            if decision is not None:
                break

        if decision is None:
            decision = self.safe_default.default(user_input)

        latency_ms = (time.perf_counter() - start) * 1000
        if decision.tier.is_degraded:
            logger.warning(
                "Routing degraded to %s -> %s (attempts=%d, errors=%s)",
                decision.tier.value, decision.target, state.attempts, ",".join(state.errors) or "none",
            )
        return replace(decision, attempts=state.attempts, latency_ms=round(latency_ms, 1))
