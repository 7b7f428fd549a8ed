"""Field coercion helpers shared by the stock and invoice validators.

Each parser returns ``(value, error)``; ``error`` is a user-facing message or
``None``. Blank input yields ``(None, None)`` so callers decide whether the
field is required.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

MONEY_QUANT = Decimal("0.01")

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_text(value, *, label: str, required: bool = False, limit: int = 255):
    if _is_blank(value):
        if required:
            return None, f"{label} is required"
        return None, None
    text = str(value).strip()
    if len(text) > limit:
        return None, f"{label} must be {limit} characters or fewer"
    return text, None


def parse_email(value, *, label: str, required: bool = False):
    text, error = parse_text(value, label=label, required=required)
    if error or text is None:
        return text, error
    if not _EMAIL_PATTERN.match(text):
        return None, f"{label} must be a valid email address"
    return text, None


def parse_decimal(value, *, label: str, minimum: Decimal | None = None, strict: bool = False):
    """Parse a money-like value with at most two decimal places.

    Extra precision is rejected rather than rounded, since the columns store
    cents. ``strict`` turns the minimum into an exclusive bound.
    """

    if _is_blank(value):
        return None, None
    if isinstance(value, bool):
        return None, f"{label} must be a number"
    if isinstance(value, float):
        value = repr(value)
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None, f"{label} must be a number"
    if not number.is_finite():
        return None, f"{label} must be a number"
    try:
        cents = number.quantize(MONEY_QUANT)
    except InvalidOperation:
        return None, f"{label} is too large"
    if cents != number:
        return None, f"{label} must have at most 2 decimal places"
    number = cents
    if minimum is not None:
        if strict and number <= minimum:
            return None, f"{label} must be greater than {minimum}"
        if not strict and number < minimum:
            return None, f"{label} must be a non-negative number"
    return number, None


def parse_int(value, *, label: str, minimum: int | None = None):
    if _is_blank(value):
        return None, None
    if isinstance(value, bool):
        return None, f"{label} must be an integer"
    if isinstance(value, float):
        if not value.is_integer():
            return None, f"{label} must be an integer"
        value = int(value)
    try:
        number = int(str(value).strip())
    except ValueError:
        return None, f"{label} must be an integer"
    if minimum is not None and number < minimum:
        if minimum == 0:
            return None, f"{label} must be a non-negative integer"
        return None, f"{label} must be at least {minimum}"
    return number, None


def parse_date(value, *, label: str):
    """Accept ``date``/``datetime`` objects or ISO-8601 strings."""

    if _is_blank(value):
        return None, None
    if isinstance(value, datetime):
        return value.date(), None
    if isinstance(value, date):
        return value, None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).date(), None
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10]), None
    except ValueError:
        return None, f"{label} must be a valid date"


def parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "on"}
