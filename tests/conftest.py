import pytest

from callbrain.config import CompanyConfig, Thresholds, TransferConfig
from callbrain.session import CallContext
from callbrain.triage import load_rule_cards

CARD_DOCS = [
    {
        "card_id": "cooling_problem",
        "label": "cooling_problem",
        "priority": 100,
        "category": "AC repair",
        "must_have": ["stopped cooling", "not cooling", "warm air", "cooling"],
        "exclude": ["install", "new system"],
        "action": "DIRECT_TO_3TIER",
        "scenario_key": "ac_not_cooling",
        "playbook": {"explanation_lines": ["Sounds like the cooling isn't kicking in. Let's figure out why."]},
    },
    {
        "card_id": "water_leak",
        "label": "water_leak",
        "priority": 90,
        "must_have": ["leak", "leaking", "dripping", "water"],
        "action": "EXPLAIN_AND_PUSH",
        "opening_lines": ["Let's get a tech out to stop that leak.", "Water leaks can get worse fast."],
    },
    {
        "card_id": "new_system_quote",
        "label": "new_system_quote",
        "priority": 80,
        "must_have": ["new system", "replace", "replacement", "quote"],
        "action": "TAKE_MESSAGE",
        "playbook": {"message_intro_lines": ["I'll have our comfort advisor call you about options."]},
    },
]


@pytest.fixture
def cards():
    return load_rule_cards(CARD_DOCS)


@pytest.fixture
def company(cards):
    return CompanyConfig(
        company_id="co_ace",
        name="ACE Cooling",
        trade="HVAC",
        thresholds=Thresholds(),
        transfer=TransferConfig(number="+15125550000", label="on-call tech"),
        rule_cards=cards,
    )


@pytest.fixture
def ctx():
    return CallContext(call_id="call_test", company_id="co_ace", caller_phone="+15125551234")
