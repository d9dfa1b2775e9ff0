# ============================================================
# schoolcash/core/money.py
#
# Amounts arrive from the school backend and from the cashier as
# decimal strings ("70000", "70000.00", "12.5"). Every calculation
# in the desk runs on integer minor units (cents), so sums and
# comparisons are exact: no floating point tolerance anywhere.
#
#   Decimal string ──parse──▶ int cents ──format──▶ Decimal string
# ============================================================

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Annotated, Any, Optional

from pydantic import BeforeValidator, PlainSerializer

from schoolcash.core.config import settings

CENT = Decimal("0.01")


def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Parse a user or wire value into a finite Decimal.
    Returns None for anything that is not a number (None, "", "abc",
    NaN, Infinity, booleans).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    else:
        text = str(value).strip().replace(" ", "")
        if not text:
            return None
        try:
            number = Decimal(text)
        except (InvalidOperation, ValueError):
            return None
    if not number.is_finite():
        return None
    return number


def is_too_large(value: Decimal) -> bool:
    return abs(value) > settings.MAX_AMOUNT


def decimal_to_cents(value: Decimal) -> int:
    """Raises ValueError when the amount is out of range."""
    if is_too_large(value):
        raise ValueError(f"amount out of range: {value}")
    try:
        return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation as e:
        raise ValueError(f"amount out of range: {value}") from e


def parse_cents(value: Any, default: int = 0) -> int:
    """
    Lenient parse used for backend records: a garbage amount counts as
    `default` instead of poisoning a whole summary.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        value = Decimal(value)
    number = to_decimal(value)
    if number is None:
        return default
    try:
        return decimal_to_cents(number)
    except ValueError:
        return default


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def cents_to_str(cents: int) -> str:
    """Wire format: always two decimals, no grouping ("70000.00")."""
    return str(cents_to_decimal(cents))


def format_amount(cents: int, currency: Optional[str] = None) -> str:
    """
    Display format used on receipts and messages: thousands grouped with
    spaces, decimals only when there are some ("70 000 FCFA", "12 500.50").
    """
    negative = cents < 0
    whole, part = divmod(abs(cents), 100)
    text = f"{whole:,}".replace(",", " ")
    if part:
        text = f"{text}.{part:02d}"
    if negative:
        text = f"-{text}"
    return f"{text} {currency}" if currency else text


def percent_of(part_cents: int, whole_cents: int) -> str:
    """round(part / whole * 100, 2) as a string; "0.00" when whole is zero."""
    if whole_cents == 0:
        return "0.00"
    ratio = Decimal(part_cents) * 100 / Decimal(whole_cents)
    return str(ratio.quantize(CENT, rounding=ROUND_HALF_UP))


# ── Pydantic field types ──────────────────────────────────────
# WireAmount: a decimal amount as sent by the school backend, stored
#             as cents once parsed.
# Cents:      an amount the desk computed itself (already cents).
# Both serialize back to a decimal string in JSON output. WireAmount does
# so in every dump mode, so a dumped record re-validates to the same cents.
WireAmount = Annotated[
    int,
    BeforeValidator(parse_cents),
    PlainSerializer(cents_to_str, return_type=str),
]

Cents = Annotated[
    int,
    PlainSerializer(cents_to_str, return_type=str, when_used="json"),
]
