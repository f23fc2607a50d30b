"""
Permissive numeric parsing for processor residual files.

Handles the conventions seen in processor exports:
- $1,234.56 / 1,234.56 / 1234.56
- (1,234.56)        -> negative (parentheses)
- -1,234.56         -> negative (leading minus)
- 1,234.56-         -> negative (trailing minus)
- 12.5%             -> 12.5 (percent sign dropped)
- blank, "-", "N/A" -> no value

Parsing never raises; callers decide what a missing value defaults to.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import BaseModel

_CURRENCY_TOKENS = ("USD", "usd", "US$", "$", chr(163), chr(8364))
_EMPTY_TOKENS = {"", "-", "--", "---", "n/a", "na", "nan", "none", "null"}


class AmountParseResult(BaseModel):
    amount: Optional[Decimal] = None
    raw_text: str


def parse_amount(raw: object) -> AmountParseResult:
    """Parse a monetary amount from a processor export cell."""
    raw_text = "" if raw is None else str(raw)
    s = raw_text.strip()

    if s.lower() in _EMPTY_TOKENS:
        return AmountParseResult(amount=None, raw_text=raw_text)

    for token in _CURRENCY_TOKENS:
        s = s.replace(token, "")
    s = s.replace("%", "").strip()

    if not s:
        return AmountParseResult(amount=None, raw_text=raw_text)

    is_negative = False

    # Parentheses: (100.00) -> negative
    if s.startswith("(") and s.endswith(")"):
        s = s[1:-1].strip()
        is_negative = True

    # Trailing minus: 100.00-
    if not is_negative and s.endswith("-"):
        s = s[:-1].strip()
        is_negative = True

    # Leading minus: -100.00 (ASCII or unicode minus)
    if not is_negative and (s.startswith("-") or s.startswith(chr(8722))):
        s = s[1:].strip()
        is_negative = True

    # Thousands separators and stray spaces
    s = s.replace(",", "").replace(" ", "")

    try:
        amount = Decimal(s)
    except (InvalidOperation, ValueError):
        return AmountParseResult(amount=None, raw_text=raw_text)

    if not amount.is_finite():
        return AmountParseResult(amount=None, raw_text=raw_text)

    if is_negative:
        amount = amount * Decimal("-1")

    return AmountParseResult(amount=amount, raw_text=raw_text)


def parse_decimal(raw: object, default: Decimal = Decimal("0")) -> Decimal:
    """Parse an amount, falling back to ``default`` when it cannot be read."""
    result = parse_amount(raw)
    return result.amount if result.amount is not None else default


def parse_count(raw: object, default: int = 0) -> int:
    """Parse a transaction count. Fractional counts are truncated."""
    result = parse_amount(raw)
    if result.amount is None:
        return default
    return int(result.amount)


def is_amount_like(text: str) -> bool:
    """Quick check if text looks like it could be a monetary amount."""
    if not text or not text.strip():
        return False
    return parse_amount(text).amount is not None and bool(re.search(r"\d", text))
