"""Integer-cent money helpers.

All amounts in the ledger are integer cents. Dollar strings only appear at
the edges (user input and display).
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .exceptions import ValidationError

_NON_NUMERIC = re.compile(r"[^0-9.\-]")


def parse_dollars_to_cents(dollars: str) -> int:
    """
    Parse a user-facing dollar string into integer cents.

    Everything except digits, '.' and '-' is stripped first, so "$1,234.50"
    and "1234.5" both parse. Sub-cent input is rounded half-up.

    Args:
        dollars: Dollar amount as typed by a user

    Returns:
        Amount in cents

    Raises:
        ValidationError: If nothing numeric remains after cleaning
    """
    cleaned = _NON_NUMERIC.sub("", dollars)
    try:
        amount = Decimal(cleaned)
    except InvalidOperation as e:
        raise ValidationError(f"Not a dollar amount: {dollars!r}") from e
    if not amount.is_finite():
        raise ValidationError(f"Not a dollar amount: {dollars!r}")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_cents(cents: int) -> str:
    """Format the absolute value of an amount, e.g. 1250 -> "$12.50"."""
    return f"${abs(cents) // 100}.{abs(cents) % 100:02d}"


def format_cents_with_sign(cents: int) -> str:
    """Format a net result with an explicit sign: "+$12.50", "-$12.50", "$0.00"."""
    if cents == 0:
        return "$0.00"
    sign = "+" if cents > 0 else "-"
    return f"{sign}{format_cents(cents)}"
