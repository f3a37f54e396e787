import asyncio
from unittest.mock import AsyncMock

import pytest

from callbrain.circuit_breaker import CLOSED, CircuitBreaker
from callbrain.classifier import ClassifierError
from callbrain.intents import Priority, Tier
from callbrain.router import RoutingDecision, Router
from callbrain.triage import BUILTIN_RULES, candidate_rules


class HangingClassifier:
    def __init__(self):
        self.calls = 0

    async def classify(self, prompt, user_input):
        self.calls += 1
        await asyncio.sleep(10)


def fake_classifier(*results):
    classifier = AsyncMock()
    classifier.classify.side_effect = list(results)
    return classifier


def make_router(classifier, **kwargs):
    kwargs.setdefault("timeout_s", 0.01)
    kwargs.setdefault("backoff_base", 0.0)
    return Router(classifier, **kwargs)


class TestRoutingDecision:
    def test_confidence_clamped(self):
        assert RoutingDecision(target="x", confidence=3.0).confidence == 1.0
        assert RoutingDecision(target="x", confidence=-1).confidence == 0.0
        assert RoutingDecision(target="x", confidence=float("inf")).confidence == 0.0
        assert RoutingDecision(target="x", confidence="junk").confidence == 0.0

    def test_empty_target_becomes_general_inquiry(self):
        assert RoutingDecision(target="  ").target == "general_inquiry"


class TestClassifierTier:
    @pytest.mark.asyncio
    async def test_classifier_decision(self):
        classifier = fake_classifier({"target": "booking", "thought": "visit", "confidence": 0.92, "priority": "NORMAL"})
        decision = await make_router(classifier).route("prompt", "can someone come out", BUILTIN_RULES)
        assert decision.target == "booking"
        assert decision.tier == Tier.CLASSIFIER
        assert not decision.fallback_used
        assert decision.attempts == 1
        classifier.classify.assert_awaited_once_with("prompt", "can someone come out")

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        classifier = fake_classifier(
            ClassifierError("503"),
            {"target": "billing", "confidence": 0.8},
        )
        decision = await make_router(classifier).route("p", "question about my bill", BUILTIN_RULES)
        assert decision.target == "billing"
        assert decision.attempts == 2
        assert not decision.fallback_used

    @pytest.mark.asyncio
    async def test_malformed_response_is_retried(self):
        classifier = fake_classifier(
            {"target": "booking", "confidence": "very"},
            {"target": "booking", "confidence": 0.7},
        )
        decision = await make_router(classifier).route("p", "book me", BUILTIN_RULES)
        assert decision.tier == Tier.CLASSIFIER
        assert decision.attempts == 2

    @pytest.mark.asyncio
    async def test_backoff_is_exponential(self):
        sleep = AsyncMock()
        classifier = fake_classifier(ClassifierError("a"), ClassifierError("b"), ClassifierError("c"))
        router = Router(classifier, timeout_s=0.01, max_retries=2, backoff_base=0.5, sleep=sleep)
        await router.route("p", "hello", BUILTIN_RULES)
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_low_confidence_falls_through(self):
        classifier = fake_classifier({"target": "booking", "confidence": 0.1})
        router = make_router(classifier, min_confidence=0.3)
        decision = await router.route("p", "schedule a technician", BUILTIN_RULES)
        assert decision.tier == Tier.FALLBACK
        assert decision.target == "booking"


class TestFallback:
    @pytest.mark.asyncio
    async def test_repeated_timeouts_use_fallback(self):
        classifier = HangingClassifier()
        router = make_router(classifier, max_retries=2)
        decision = await router.route("p", "I want to schedule an appointment", BUILTIN_RULES)
        assert classifier.calls == 3
        assert decision.fallback_used
        assert decision.tier == Tier.FALLBACK
        assert decision.target == "booking"
        assert decision.attempts == 3

    @pytest.mark.asyncio
    async def test_fallback_confidence_formula(self):
        router = Router(None, fallback_base=0.5, fallback_step=0.1, fallback_cap=0.65)
        one = await router.route("p", "can you send a tech", BUILTIN_RULES)
        many = await router.route("p", "schedule an appointment, send a tech, book a technician", BUILTIN_RULES)
        assert one.confidence == pytest.approx(0.6)
        assert many.confidence == pytest.approx(0.65)

    @pytest.mark.asyncio
    async def test_negative_keyword_disqualifies(self):
        router = Router(None)
        decision = await router.route("p", "I need to reschedule my appointment", BUILTIN_RULES)
        assert decision.target == "update_appointment"

    @pytest.mark.asyncio
    async def test_tie_goes_to_first_rule(self, cards):
        router = Router(None)
        # "cooling" and "water" hit one keyword each; cooling_problem is listed first
        decision = await router.route("p", "cooling and water", candidate_rules(cards))
        assert decision.target == "cooling_problem"

    @pytest.mark.asyncio
    async def test_emergency_priority_in_fallback(self):
        router = Router(None)
        decision = await router.route("p", "I smell gas", BUILTIN_RULES)
        assert decision.target == "emergency"
        assert decision.priority == Priority.EMERGENCY


class TestSafeDefault:
    @pytest.mark.asyncio
    async def test_no_match_is_general_inquiry(self):
        classifier = fake_classifier(ClassifierError("down"), ClassifierError("down"), ClassifierError("down"))
        decision = await make_router(classifier).route("p", "what are your hours", BUILTIN_RULES)
        assert decision.target == "general_inquiry"
        assert decision.fallback_used
        assert decision.tier == Tier.SAFE_DEFAULT
        assert decision.priority == Priority.NORMAL

    @pytest.mark.asyncio
    async def test_never_raises(self):
        classifier = fake_classifier(RuntimeError("boom"), ValueError("bad"), KeyError("x"))
        decision = await make_router(classifier).route(None, None, None)
        assert decision.target
        assert 0.0 <= decision.confidence <= 1.0


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_open_circuit_skips_classifier(self):
        breaker = CircuitBreaker(failure_threshold=1, cooldown_seconds=60)
        breaker.record_failure()
        classifier = fake_classifier({"target": "booking", "confidence": 0.9})
        decision = await make_router(classifier, breaker=breaker).route("p", "book me", BUILTIN_RULES)
        classifier.classify.assert_not_awaited()
        assert decision.fallback_used
        assert decision.attempts == 0


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        router = make_router(HangingClassifier(), timeout_s=5.0)
        task = asyncio.ensure_future(router.route("p", "hello", BUILTIN_RULES))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_cancelled_trial_call_releases_breaker(self):
        now = [1000.0]
        breaker = CircuitBreaker(failure_threshold=1, cooldown_seconds=1.0, clock=lambda: now[0])
        breaker.record_failure()
        now[0] += 2

        hanging = HangingClassifier()
        task = asyncio.ensure_future(
            make_router(hanging, timeout_s=5.0, breaker=breaker).route("p", "book me", BUILTIN_RULES)
        )
        await asyncio.sleep(0.01)
        assert hanging.calls == 1
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        now[0] += 10_000
        healthy = fake_classifier({"target": "booking", "confidence": 0.9})
        decision = await make_router(healthy, breaker=breaker).route("p", "book me", BUILTIN_RULES)
        healthy.classify.assert_awaited_once()
        assert decision.tier == Tier.CLASSIFIER
        assert breaker.state == CLOSED
