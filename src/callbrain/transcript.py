from callbrain.session import CallContext

ROLE_LABELS = {"agent": "Agent", "caller": "Caller"}


def to_plain_text(turns) -> str:
    """Render transcript turns as "Caller: ..." / "Agent: ..." lines."""
    if not turns:
        return ""
    lines = []
    for turn in turns:
        label = ROLE_LABELS.get(turn.role)
        if label:
            lines.append(f"{label}: {turn.text}")
    return "\n".join(lines)


def to_json_array(turns) -> list[dict]:
    """Structured {role, content} list for the dashboard."""
    return [
        {"role": turn.role, "content": turn.text}
        for turn in turns or ()
        if turn.role in ROLE_LABELS
    ]


def tier_summary(trace) -> dict[str, int]:
    """Count of turns decided by each tier, e.g. {"classifier": 3, "fallback": 1}."""
    counts: dict[str, int] = {}
    for record in trace or ():
        counts[record.tier.value] = counts.get(record.tier.value, 0) + 1
    return counts


def to_timestamped_dump(ctx: CallContext) -> dict:
    """Audit dump: transcript and tier trace on one timeline, seconds from call start.

    If start_time is 0, the first entry's timestamp is the base.
    """
    events: list[tuple[float, dict]] = []
    for turn in ctx.transcript:
        events.append((turn.timestamp, {"role": turn.role, "content": turn.text}))
    for record in ctx.tier_trace:
        events.append((record.timestamp, {
            "role": "router",
            "turn": record.turn,
            "tier": record.tier.value,
            "target": record.target,
            "route": record.route,
            "confidence": round(record.confidence, 3),
            "reason": record.reason,
        }))
    events.sort(key=lambda e: e[0])

    base_time = ctx.start_time
    if base_time <= 0 and events:
        base_time = events[0][0]

    return {
        "call_id": ctx.call_id,
        "company_id": ctx.company_id,
        "phone": ctx.caller_phone,
        "final_intent": ctx.current_intent.value,
        "ready_to_book": ctx.ready_to_book,
        "tiers": tier_summary(ctx.tier_trace),
        "entries": [{"t": round(ts - base_time, 1), **entry} for ts, entry in events],
    }

