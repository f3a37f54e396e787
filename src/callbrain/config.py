"""Runtime settings and per-company configuration.

Process settings come from the environment (.env loaded via python-dotenv).
Company data (thresholds, transfer target, rule cards) arrives as plain
dicts from the persistence collaborator and is frozen on load. Missing
values fall back to defaults with a warning; nothing here raises on absence.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from callbrain.triage import RuleCard, load_rule_cards

logger = logging.getLogger(__name__)

OPTIONAL_VARS = [
    "OPENAI_API_KEY",
    "CLASSIFIER_MODEL",
    "CLASSIFIER_TIMEOUT_S",
    "CLASSIFIER_MAX_RETRIES",
    "LOG_LEVEL",
]


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using %s", name, raw, default)
        return default


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_log_level(name: str, default: str) -> str:
    raw = (os.getenv(name) or "").strip().upper()
    if not raw:
        return default
    if raw not in LOG_LEVELS:
        logger.warning("Invalid %s=%r, using %s", name, raw, default)
        return default
    return raw


@dataclass(frozen=True)
class Settings:
    openai_api_key: str = ""
    classifier_model: str = "gpt-4o-mini"
    classifier_url: str = "https://api.openai.com/v1/chat/completions"
    classifier_timeout_s: float = 5.0
    classifier_max_retries: int = 2
    classifier_backoff_s: float = 0.1
    breaker_failure_threshold: int = 3
    breaker_cooldown_s: float = 30.0
    log_level: str = "INFO"

    @property
    def classifier_enabled(self) -> bool:
        return bool(self.openai_api_key)

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv()
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            classifier_model=os.getenv("CLASSIFIER_MODEL", cls.classifier_model),
            classifier_url=os.getenv("CLASSIFIER_URL", cls.classifier_url),
            classifier_timeout_s=_env_float("CLASSIFIER_TIMEOUT_S", cls.classifier_timeout_s),
            classifier_max_retries=_env_int("CLASSIFIER_MAX_RETRIES", cls.classifier_max_retries),
            classifier_backoff_s=_env_float("CLASSIFIER_BACKOFF_S", cls.classifier_backoff_s),
            breaker_failure_threshold=_env_int("BREAKER_FAILURE_THRESHOLD", cls.breaker_failure_threshold),
            breaker_cooldown_s=_env_float("BREAKER_COOLDOWN_S", cls.breaker_cooldown_s),
            log_level=_env_log_level("LOG_LEVEL", cls.log_level),
        )


def validate_config() -> list[str]:
    """Log a warning for each unset optional variable and return their names.

    Without OPENAI_API_KEY the classifier tier is disabled and every turn is
    routed by keyword rules.
    """
    missing = [var for var in OPTIONAL_VARS if not os.getenv(var)]
    for var in missing:
        logger.warning("Optional env var %s is not set", var)
    return missing


@dataclass(frozen=True)
class Thresholds:
    min_classifier_confidence: float = 0.3
    fallback_base: float = 0.5
    fallback_step: float = 0.1
    fallback_cap: float = 0.85
    safe_default_confidence: float = 0.2
    # Intensity at which an upset caller's request for a person is honored immediately
    escalation_intensity: float = 0.25

    @classmethod
    def from_dict(cls, data: dict | None) -> "Thresholds":
        data = data or {}
        values = {}
        for name in cls.__dataclass_fields__:
            if name not in data:
                continue
            try:
                values[name] = float(data[name])
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid threshold %s=%r", name, data[name])
        return cls(**values)


@dataclass(frozen=True)
class TransferConfig:
    number: str = ""
    label: str = "on-call technician"
    warm: bool = True

    @classmethod
    def from_dict(cls, data: dict | None) -> "TransferConfig":
        data = data or {}
        return cls(
            number=str(data.get("number") or data.get("phone") or ""),
            label=str(data.get("label") or cls.label),
            warm=bool(data.get("warm", True)),
        )


@dataclass(frozen=True)
class CompanyConfig:
    company_id: str
    name: str = "our office"
    trade: str = "HVAC"
    thresholds: Thresholds = field(default_factory=Thresholds)
    transfer: TransferConfig = field(default_factory=TransferConfig)
    rule_cards: tuple[RuleCard, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "CompanyConfig":
        company_id = str(data.get("company_id") or data.get("companyId") or data.get("_id") or "")
        if not company_id:
            logger.warning("Company config has no id")
        if not data.get("trade") and not data.get("tradeKey"):
            logger.warning("Company %s has no trade, defaulting to HVAC", company_id or "?")
        cards = load_rule_cards(data.get("rule_cards") or data.get("triageCards") or [])
        if not cards:
            logger.warning("Company %s has no rule cards; routing on built-in rules only", company_id or "?")
        if not (data.get("transfer") or {}).get("number") and not (data.get("transfer") or {}).get("phone"):
            logger.warning("Company %s has no transfer number", company_id or "?")
        return cls(
            company_id=company_id,
            name=str(data.get("name") or data.get("companyName") or cls.name),
            trade=str(data.get("trade") or data.get("tradeKey") or cls.trade),
            thresholds=Thresholds.from_dict(data.get("thresholds")),
            transfer=TransferConfig.from_dict(data.get("transfer")),
            rule_cards=cards,
        )
