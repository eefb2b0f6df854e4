"""
Utility functions for the application.
"""
from datetime import datetime, timezone
import re

_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the database stores naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_currency_code(code: str) -> str:
    """
    Normalize a currency code to upper-case ISO 4217 form.

    Only the format is checked (three letters), not membership in any
    canonical currency list.

    Raises:
        ValueError: If the code is not three ASCII letters
    """
    normalized = (code or "").strip().upper()
    if not _CURRENCY_CODE.match(normalized):
        raise ValueError(f"Invalid currency code: {code!r}")
    return normalized
