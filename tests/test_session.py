import asyncio

import pytest

from callbrain.intents import Intent, Tier
from callbrain.session import MAX_REASON_CHARS, CallContext, ExtractedSlots


class TestExtractedSlots:
    def test_fills_empty_fields(self):
        slots = ExtractedSlots()
        filled = slots.merge({"contact": {"name": "Jane Doe", "phone": "+15125550101"}})
        assert slots.contact.name == "Jane Doe"
        assert sorted(filled) == ["contact.name", "contact.phone"]

    def test_empty_value_never_clears(self):
        slots = ExtractedSlots()
        slots.merge({"contact": {"phone": "+15125550101"}})
        slots.merge({"contact": {"phone": ""}})
        slots.merge({"contact": {"phone": None}})
        assert slots.contact.phone == "+15125550101"

    def test_first_value_wins(self):
        slots = ExtractedSlots()
        slots.merge({"location": {"zip": "78701"}})
        filled = slots.merge({"location": {"zip": "78745"}})
        assert slots.location.zip == "78701"
        assert filled == []

    def test_unknown_groups_and_fields_ignored(self):
        slots = ExtractedSlots()
        assert slots.merge({"billing": {"card": "4111"}, "contact": {"ssn": "x"}}) == []
        assert slots.merge({"contact": "not a dict"}) == []


class TestCallContext:
    def test_defaults(self, ctx):
        assert ctx.current_intent == Intent.OTHER
        assert ctx.tier_trace == ()
        assert ctx.transcript == ()
        assert not ctx.closed

    def test_emergency_intent_is_sticky(self, ctx):
        ctx.set_intent(Intent.EMERGENCY)
        ctx.set_intent(Intent.BOOKING)
        assert ctx.current_intent == Intent.EMERGENCY

    def test_intent_updates_otherwise(self, ctx):
        ctx.set_intent(Intent.TROUBLESHOOTING)
        ctx.set_intent(Intent.BOOKING)
        assert ctx.current_intent == Intent.BOOKING

    def test_trade_set_once(self):
        ctx = CallContext(call_id="c", company_id="co")
        ctx.set_trade("HVAC")
        ctx.set_trade("plumbing")
        assert ctx.trade == "HVAC"

    def test_caller_id_counts_as_phone(self, ctx):
        assert "phone" not in ctx.missing_booking_slots()
        bare = CallContext(call_id="c", company_id="co")
        assert "phone" in bare.missing_booking_slots()

    def test_ready_to_book_is_monotonic(self, ctx):
        ctx.merge_extracted({
            "contact": {"name": "Jane Doe"},
            "location": {"zip": "78701"},
            "problem": {"summary": "AC not cooling"},
            "scheduling": {"preferred_window": "morning"},
        })
        assert ctx.mark_ready_to_book() is True
        # Later empty updates cannot clear fields or flip the flag back
        ctx.merge_extracted({"contact": {"name": "", "phone": ""}})
        assert ctx.mark_ready_to_book() is True
        assert ctx.ready_to_book
        assert ctx.extracted.contact.name == "Jane Doe"

    def test_not_ready_with_missing_slots(self, ctx):
        ctx.merge_extracted({"contact": {"name": "Jane Doe"}})
        assert ctx.mark_ready_to_book() is False
        assert ctx.missing_booking_slots() == ["address", "problem", "time"]

    def test_record_tier_truncates_reason(self, ctx):
        record = ctx.record_tier(Tier.CLASSIFIER, "booking", "BOOKING_FLOW", 0.9, "x" * 500)
        assert len(record.reason) == MAX_REASON_CHARS
        assert ctx.tier_trace == (record,)

    def test_views_are_read_only(self, ctx):
        ctx.add_turn("caller", "hi")
        view = ctx.transcript
        assert isinstance(view, tuple)
        ctx.add_turn("agent", "hello")
        assert len(view) == 1
        assert [t.role for t in ctx.transcript] == ["caller", "agent"]

    def test_triage_matches_append_only(self, ctx):
        ctx.record_triage_match("cooling_problem")
        ctx.record_triage_match("")
        ctx.record_triage_match("water_leak")
        assert ctx.triage_matches == ("cooling_problem", "water_leak")

    def test_to_dict(self, ctx):
        ctx.record_tier(Tier.FALLBACK, "general_inquiry", "SCENARIO_ENGINE", 0.2, "no match")
        snapshot = ctx.to_dict()
        assert snapshot["call_id"] == "call_test"
        assert snapshot["tier_trace"][0]["tier"] == "fallback"
        assert snapshot["extracted"]["contact"]["name"] == ""
        assert snapshot["emotion"] is None


class TestClose:
    @pytest.mark.asyncio
    async def test_close_cancels_inflight(self, ctx):
        task = asyncio.ensure_future(asyncio.sleep(10))
        ctx.track(task)
        ctx.close()
        assert ctx.closed
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_finished_tasks_are_forgotten(self, ctx):
        task = asyncio.ensure_future(asyncio.sleep(0))
        ctx.track(task)
        await task
        await asyncio.sleep(0)
        ctx.close()
        assert task.done() and not task.cancelled()

    def test_close_is_idempotent(self, ctx):
        ctx.close()
        ctx.close()
        assert ctx.closed
