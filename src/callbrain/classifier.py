import json
import logging
import math
import os
from typing import Protocol

import httpx

from callbrain.intents import Priority

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-4o-mini"

CLASSIFIER_PROMPT = """You route phone calls for {company}, a {trade} service company.
Pick the ONE target below that best matches what the CALLER wants right now.
Return ONLY valid JSON: {{"target": "...", "thought": "...", "confidence": 0.0-1.0, "priority": "NORMAL|HIGH|EMERGENCY", "entities": {{}}}}

Targets:
{targets}
- general_inquiry: anything else (hours, pricing, service area, general questions)

Rules:
- Use EMERGENCY priority only for safety hazards (gas, smoke, fire, CO, flooding).
- "entities" may carry what the caller explicitly said, e.g. {{"contact": {{"name": "..."}}, "location": {{"zip": "..."}}}}. Never guess.
- "thought" is one short sentence."""


class ClassifierError(Exception):
    """The classifier could not produce a decision."""


class ClassifierTimeoutError(ClassifierError):
    pass


class ClassifierResponseError(ClassifierError):
    """The classifier answered, but not with a usable decision."""


class Classifier(Protocol):
    async def classify(self, prompt: str, user_input: str) -> dict: ...


def build_classifier_prompt(rules, ctx=None, company: str = "the company", trade: str = "") -> str:
    """Render the candidate routing rules as the classifier's system prompt."""
    lines = []
    for rule in rules:
        hint = ", ".join(rule.keywords[:6])
        line = f"- {rule.target}: {rule.description or rule.target}"
        if hint:
            line += f" (e.g. {hint})"
        lines.append(line)
    prompt = CLASSIFIER_PROMPT.format(
        company=company,
        trade=trade or (ctx.trade if ctx is not None else "") or "home service",
        targets="\n".join(lines),
    )
    if ctx is not None:
        known = [f"Current intent: {ctx.current_intent.value}"]
        if ctx.extracted.problem.summary:
            known.append(f"Issue so far: {ctx.extracted.problem.summary}")
        if ctx.extracted.contact.name:
            known.append(f"Caller's name: {ctx.extracted.contact.name}")
        prompt += "\n\n## Known so far\n" + "\n".join(known)
    return prompt


def parse_classifier_payload(payload) -> dict:
    """Validate a raw classifier answer into target/thought/confidence/priority/entities.

    Raises ClassifierResponseError on anything that is not a usable decision.
    """
    if not isinstance(payload, dict):
        raise ClassifierResponseError(f"expected object, got {type(payload).__name__}")

    target = payload.get("target")
    if not isinstance(target, str) or not target.strip():
        raise ClassifierResponseError("missing target")

    confidence = payload.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise ClassifierResponseError(f"confidence is not a number: {confidence!r}")
    if not math.isfinite(confidence) or not 0.0 <= confidence <= 1.0:
        raise ClassifierResponseError(f"confidence out of range: {confidence!r}")

    entities = payload.get("entities")
    return {
        "target": target.strip(),
        "thought": str(payload.get("thought") or "")[:500],
        "confidence": float(confidence),
        "priority": Priority.parse(payload.get("priority")),
        "entities": entities if isinstance(entities, dict) else {},
    }


class ClassifierClient:
    """Chat-completions classifier (JSON mode) over a shared httpx client."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        url: str = OPENAI_CHAT_URL,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY", "")
        self.model = model
        self.url = url
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(timeout=timeout)

    async def close(self):
        """Close the shared HTTP client. Call at end of call."""
        await self._client.aclose()

    async def classify(self, prompt: str, user_input: str) -> dict:
        try:
            resp = await self._client.post(
                self.url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "model": self.model,
                    "temperature": 0.0,
                    "response_format": {"type": "json_object"},
                    "messages": [
                        {"role": "system", "content": prompt},
                        {"role": "user", "content": user_input},
                    ],
                },
            )
            resp.raise_for_status()
        except httpx.TimeoutException as e:
            raise ClassifierTimeoutError(str(e) or "request timed out") from e
        except httpx.HTTPError as e:
            raise ClassifierError(f"classifier request failed: {e}") from e

        try:
            content = resp.json()["choices"][0]["message"]["content"]
            return json.loads(content)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ClassifierResponseError(f"unreadable classifier response: {e}") from e
