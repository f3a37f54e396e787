from enum import Enum


class Intent(Enum):
    BOOKING = "booking"
    UPDATE_APPOINTMENT = "update_appointment"
    TROUBLESHOOTING = "troubleshooting"
    INFO = "info"
    BILLING = "billing"
    EMERGENCY = "emergency"
    WRONG_NUMBER = "wrong_number"
    SPAM = "spam"
    OTHER = "other"

    @classmethod
    def parse(cls, value) -> "Intent":
        """Lenient lookup; unknown or empty values map to OTHER."""
        if isinstance(value, Intent):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.OTHER


class Priority(Enum):
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    EMERGENCY = "EMERGENCY"

    @classmethod
    def parse(cls, value) -> "Priority":
        if isinstance(value, Priority):
            return value
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return cls.NORMAL


class Tier(Enum):
    CLASSIFIER = "classifier"
    RULE = "rule"
    FALLBACK = "fallback"
    SAFE_DEFAULT = "safe_default"

    @property
    def is_degraded(self) -> bool:
        return self in (Tier.FALLBACK, Tier.SAFE_DEFAULT)


class Action(Enum):
    """Frontline actions handed from the engine to the dispatcher."""

    ROUTE_TO_SCENARIO = "ROUTE_TO_SCENARIO"
    TRANSFER = "TRANSFER"
    BOOK = "BOOK"
    ASK_FOLLOWUP = "ASK_FOLLOWUP"
    MESSAGE_ONLY = "MESSAGE_ONLY"
    END = "END"


class Route(Enum):
    SCENARIO_ENGINE = "SCENARIO_ENGINE"
    TRANSFER = "TRANSFER"
    BOOKING_FLOW = "BOOKING_FLOW"
    MESSAGE_ONLY = "MESSAGE_ONLY"
    END_CALL = "END_CALL"
