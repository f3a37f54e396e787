#!/usr/bin/env python3
"""Replay caller utterances through the routing engine offline.

The classifier is disabled unless --live is given, so every turn is routed
by quick rules, rule-card keywords or the safe default.

Usage:
    python scripts/replay_turns.py company.json "my AC died" "my name is Sam"
    python scripts/replay_turns.py company.json --file utterances.txt
    python scripts/replay_turns.py company.json --file utterances.txt --json
    python scripts/replay_turns.py company.json --live "is anyone there?"
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace

from callbrain.config import CompanyConfig, Settings, validate_config
from callbrain.engine import build_engine
from callbrain.session import CallContext
from callbrain.transcript import to_timestamped_dump


def load_company(path: str) -> CompanyConfig:
    with open(path) as f:
        return CompanyConfig.from_dict(json.load(f))


def read_utterances(path: str) -> list[str]:
    """One utterance per line; blank lines and '#' comments are skipped."""
    with open(path) as f:
        return [line.strip() for line in f if line.strip() and not line.lstrip().startswith("#")]


def format_turn(index: int, utterance: str, result) -> str:
    d = result.decision
    card = f" card={d.matched_card_id}" if d.matched_card_id else ""
    flag = " FALLBACK" if d.fallback_used else ""
    return (
        f"{index:>2}. Caller: {utterance}\n"
        f"    [{d.tier.value} -> {d.target} ({d.confidence:.2f}) => {d.route.value}{card}{flag}]\n"
        f"    Agent: {result.next_prompt}"
    )


async def replay(company: CompanyConfig, utterances: list[str], settings: Settings, caller_phone: str = ""):
    engine = build_engine(company, settings)
    ctx = CallContext(call_id="replay", company_id=company.company_id, caller_phone=caller_phone)
    results = []
    try:
        for utterance in utterances:
            results.append(await engine.process_turn(ctx, utterance))
    finally:
        ctx.close()
        await engine.close()
    return ctx, results


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Replay utterances through the routing engine")
    parser.add_argument("company", help="Company config JSON (rule cards, thresholds, transfer)")
    parser.add_argument("utterances", nargs="*", help="Caller utterances, in order")
    parser.add_argument("--file", help="Read utterances from a file, one per line")
    parser.add_argument("--phone", default="", help="Caller ID for the simulated call")
    parser.add_argument("--live", action="store_true", help="Use the classifier (needs OPENAI_API_KEY)")
    parser.add_argument("--json", action="store_true", help="Print the audit dump as JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    # Utterances may follow the flags: company.json --live "is anyone there?"
    args = parser.parse_intermixed_args(argv)

    settings = Settings.from_env()
    logging.basicConfig(level=logging.DEBUG if args.verbose else settings.log_level)

    utterances = list(args.utterances)
    if args.file:
        utterances.extend(read_utterances(args.file))
    if not utterances:
        print("No utterances given.", file=sys.stderr)
        return 1

    company = load_company(args.company)
    if args.live:
        validate_config()
    else:
        settings = replace(settings, openai_api_key="")

    ctx, results = asyncio.run(replay(company, utterances, settings, caller_phone=args.phone))

    if args.json:
        print(json.dumps(to_timestamped_dump(ctx), indent=2))
        return 0

    for i, (utterance, result) in enumerate(zip(utterances, results), start=1):
        if result is not None:
            print(format_turn(i, utterance, result))
    print(f"\nintent={ctx.current_intent.value} ready_to_book={ctx.ready_to_book}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
