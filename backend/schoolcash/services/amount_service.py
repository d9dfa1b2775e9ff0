# schoolcash/services/amount_service.py
#
# Single-field amount check used by every input of the desk
# (allocated amount, method amount, given amount, discount).
# Never raises: the caller always gets an AmountValidation back.

from typing import Any, Optional

from schoolcash.core.config import settings
from schoolcash.core.money import CENT, decimal_to_cents, format_amount, is_too_large, to_decimal
from schoolcash.schemas.payments import AmountValidation


def validate_amount(raw: Any, ceiling: Optional[int] = None) -> AmountValidation:
    """
    Validate one amount typed by the operator.

    - not a number          → invalid
    - negative              → invalid ("negative amount")
    - above MAX_AMOUNT      → invalid ("amount is too large")
    - more than 2 decimals  → rounded, still valid, error carries a warning
    - above `ceiling` cents → invalid
    """
    number = to_decimal(raw)
    if number is None:
        return AmountValidation(is_valid=False, error="amount is not a number")

    if number < 0:
        return AmountValidation(is_valid=False, error="negative amount")

    if is_too_large(number):
        return AmountValidation(is_valid=False, error="amount is too large")

    warning = None
    if number != number.quantize(CENT):
        warning = "amount rounded to 2 decimal places"

    try:
        cents = decimal_to_cents(number)
    except ValueError:
        return AmountValidation(is_valid=False, error="amount is too large")

    if ceiling is not None and cents > ceiling:
        return AmountValidation(
            value=cents,
            is_valid=False,
            error=f"amount cannot exceed {format_amount(ceiling, settings.CURRENCY)}",
        )

    return AmountValidation(value=cents, is_valid=True, error=warning)
