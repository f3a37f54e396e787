from callbrain.intents import Action, Intent, Priority
from callbrain.triage import (
    BUILTIN_RULES,
    CardAction,
    RuleCard,
    candidate_rules,
    card_rule,
    load_rule_cards,
    match_cards,
    order_cards,
)


class TestRuleCardLoading:
    def test_snake_case(self, cards):
        card = cards[0]
        assert card.card_id == "cooling_problem"
        assert card.action == CardAction.DIRECT_TO_3TIER
        assert "stopped cooling" in card.must_have
        assert card.playbook.explanation_lines

    def test_camel_case_document(self):
        doc = {
            "_id": "abc123",
            "triageLabel": "furnace_no_heat",
            "priority": 120,
            "quickRuleConfig": {
                "keywordsMustHave": ["furnace", "no heat"],
                "keywordsExclude": ["tune up"],
                "action": "explain_and_push",
                "explanation": "Let's get your heat back on.",
            },
            "frontlinePlaybook": {"openingLines": ["No heat is no fun."], "frontlineGoal": "Book a heating repair"},
            "actionPlaybooks": {"escalateToHuman": {"preTransferLines": ["Connecting you now."]}},
            "isActive": True,
        }
        card = RuleCard.from_dict(doc)
        assert card.card_id == "abc123"
        assert card.label == "furnace_no_heat"
        assert card.priority == 120
        assert card.action == CardAction.EXPLAIN_AND_PUSH
        # Keywords are normalized like transcripts
        assert card.exclude == ("tune-up",)
        assert card.opening_lines == ("No heat is no fun.",)
        assert card.playbook.pre_transfer_lines == ("Connecting you now.",)
        assert card.goal == "Book a heating repair"

    def test_unknown_action_defaults(self):
        card = RuleCard.from_dict({"label": "x", "must_have": ["x"], "action": "DANCE"})
        assert card.action == CardAction.DIRECT_TO_3TIER

    def test_malformed_documents_skipped(self):
        cards = load_rule_cards([{"label": "ok", "must_have": ["ok"]}, "junk", None])
        assert [c.label for c in cards] == ["ok"]


class TestOrdering:
    def test_priority_then_configured_order(self):
        cards = load_rule_cards([
            {"card_id": "a", "priority": 50, "must_have": ["a"]},
            {"card_id": "b", "priority": 100, "must_have": ["b"]},
            {"card_id": "c", "priority": 100, "must_have": ["c"]},
            {"card_id": "d", "priority": 100, "must_have": ["d"], "active": False},
        ])
        assert [c.card_id for c in order_cards(cards)] == ["b", "c", "a"]

    def test_candidate_rules_cards_first(self, cards):
        rules = candidate_rules(cards)
        assert [r.target for r in rules[:3]] == ["cooling_problem", "water_leak", "new_system_quote"]
        assert rules[3:] == BUILTIN_RULES


class TestMatchCards:
    def test_best_match(self, cards):
        result = match_cards("my AC stopped cooling completely", cards)
        assert result.best.card.card_id == "cooling_problem"
        assert set(result.best.hits) == {"stopped cooling", "cooling"}

    def test_excluded_card_never_selected(self, cards):
        # Lots of must-have hits, but "new system" excludes the cooling card
        result = match_cards("not cooling, stopped cooling, want a new system", cards)
        assert "cooling_problem" in result.excluded
        assert "cooling_problem" not in [c.card_id for c in result.matched_cards]
        assert result.best.card.card_id == "new_system_quote"
        assert "cooling_problem" not in [r.target for r in result.candidate_rules]
        assert "new_system_quote" in [r.target for r in result.candidate_rules]

    def test_tie_keeps_higher_priority_card(self, cards):
        # one hit each: "cooling" (priority 100) and "water" (priority 90)
        result = match_cards("cooling and water", cards)
        assert result.best.card.card_id == "cooling_problem"

    def test_no_match(self, cards):
        result = match_cards("what are your hours", cards)
        assert result.best is None
        assert result.matched_cards == []

    def test_empty_text(self, cards):
        assert match_cards("", cards).best is None


class TestCardRule:
    def test_card_rule_maps_action(self, cards):
        rule = card_rule(cards[2])
        assert rule.action == Action.MESSAGE_ONLY
        assert rule.card_id == "new_system_quote"

    def test_emergency_escalation_card(self):
        card = RuleCard.from_dict({
            "label": "gas_emergency",
            "must_have": ["gas"],
            "action": "ESCALATE_TO_HUMAN",
        })
        rule = card_rule(card)
        assert rule.intent == Intent.EMERGENCY
        assert rule.priority == Priority.EMERGENCY
        assert rule.action == Action.TRANSFER
