import re
from functools import lru_cache


@lru_cache(maxsize=4096)
def _keyword_pattern(keyword: str) -> re.Pattern:
    # Lookarounds instead of \b so keywords ending in punctuation ("a/c", "help!") still anchor.
    return re.compile(rf"(?<!\w){re.escape(keyword.lower())}(?!\w)")


def match_any_keyword(text: str, keywords) -> bool:
    """Check if any keyword appears in text as a whole word (not substring)."""
    lower = text.lower()
    return any(
        _keyword_pattern(kw.strip()).search(lower)
        for kw in keywords
        if kw and kw.strip()
    )


def matched_keywords(text: str, keywords) -> list[str]:
    """Keywords present in text, in the order given, without duplicates."""
    lower = text.lower()
    hits = []
    for kw in keywords:
        kw = (kw or "").strip()
        if kw and kw.lower() not in hits and _keyword_pattern(kw).search(lower):
            hits.append(kw.lower())
    return hits


SENTINEL_VALUES = {
    "not provided", "n/a", "na", "unknown", "none", "tbd", "null",
    "{{customer_name}}", "{{zip_code}}", "{{service_address}}",
    "customer_name", "service_address", "...",
}

WORD_TO_DIGIT = {
    "zero": "0", "oh": "0", "o": "0",
    "one": "1", "two": "2", "three": "3", "four": "4",
    "five": "5", "six": "6", "seven": "7", "eight": "8", "nine": "9",
}


def words_to_digits(text: str) -> str:
    """Convert spoken single-digit words and digits to a digit string.

    Example: "seven eight seven zero one" -> "78701"
    """
    tokens = re.findall(r"[a-zA-Z]+|\d", text.lower())
    digits = []
    for tok in tokens:
        if tok in WORD_TO_DIGIT:
            digits.append(WORD_TO_DIGIT[tok])
        elif tok.isdigit():
            digits.append(tok)
    return "".join(digits)


def _is_sentinel(cleaned: str) -> bool:
    return cleaned.lower() in SENTINEL_VALUES or "{{" in cleaned or "}}" in cleaned


def validate_zip(value: str | None) -> str:
    if not value:
        return ""
    cleaned = value.strip()
    if re.match(r"^\d{5}$", cleaned):
        return cleaned
    return ""


def validate_phone(value: str | None) -> str:
    """Return a 10-digit US phone number (or +1 prefixed E.164) or ""."""
    if not value:
        return ""
    digits = re.sub(r"\D", "", value)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) != 10:
        return ""
    return f"+1{digits}"


def validate_name(value: str | None) -> str:
    if not value:
        return ""
    cleaned = value.strip().strip(".,")
    if _is_sentinel(cleaned):
        return ""
    # Reject phone numbers used as names
    if re.match(r"^[\d+\-() ]{7,}$", cleaned):
        return ""
    if not re.search(r"[a-zA-Z]", cleaned):
        return ""
    return cleaned


def validate_address(value: str | None) -> str:
    if not value:
        return ""
    cleaned = value.strip().strip(".,")
    if _is_sentinel(cleaned):
        return ""
    if re.search(r"\bor\b", cleaned, re.IGNORECASE):
        return ""
    # Must contain a house number and a letter (rejects "7801", "Oak")
    if not re.search(r"\d", cleaned) or not re.search(r"[a-zA-Z]", cleaned):
        return ""
    if len(cleaned) < 5:
        return ""
    return cleaned


def validate_text(value: str | None, max_length: int = 200) -> str:
    """Generic free-text slot: trimmed, sentinel-free, length-capped."""
    if not value:
        return ""
    cleaned = " ".join(str(value).split())
    if _is_sentinel(cleaned):
        return ""
    return cleaned[:max_length]
