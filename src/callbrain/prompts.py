from callbrain.intents import Intent, Route
from callbrain.session import CallContext

FALLBACK_PROMPT = "I'm here to help. Could you please tell me your name and what you need assistance with?"
BAILOUT_PROMPT = (
    "I'm having a bit of trouble on my end. "
    "Let me connect you with someone who can help you right away."
)
EMERGENCY_PROMPT = (
    "Okay, this sounds like a safety emergency. If you smell gas or see smoke, "
    "leave the house now and call 911 from outside. I'm connecting you to our on-call team."
)

ROUTE_PROMPTS = {
    Route.SCENARIO_ENGINE: "Got it. Let me help you figure out what's going on.",
    Route.TRANSFER: "Let me get you over to someone who can help. One moment.",
    Route.BOOKING_FLOW: "I can get a technician out to you.",
    Route.MESSAGE_ONLY: "I'll take a message and have the right person call you back.",
    Route.END_CALL: "Thanks for calling {company}. Have a good one.",
}

SLOT_QUESTIONS = {
    "name": "Can I get your name?",
    "phone": "What's the best number to reach you?",
    "address": "What's the service address?",
    "problem": "What's going on with the system?",
    "time": "When works best for the visit?",
}


def build_next_prompt(route: Route, opening_line: str, ctx: CallContext, company: str = "us") -> str:
    """What the agent says next: the card's opening line, else a route default.

    The booking flow always ends with the next missing slot question so the
    caller is never left without a prompt.
    """
    if route == Route.TRANSFER and ctx.current_intent == Intent.EMERGENCY and not opening_line:
        return EMERGENCY_PROMPT

    line = opening_line or ROUTE_PROMPTS.get(route, FALLBACK_PROMPT).format(company=company)

    if route == Route.BOOKING_FLOW:
        missing = ctx.missing_booking_slots()
        if missing:
            return f"{line} {SLOT_QUESTIONS[missing[0]]}"
        return f"{line} I have everything I need to get you on the schedule."
    return line
