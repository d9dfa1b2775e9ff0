# schoolcash/services/discount_service.py
#
# A discount lowers the payable ceiling of ONE pricing line for the
# current desk session. It is never stored as its own record.
#
#   ceiling(pricing) = pricing.amount − discount.amount

from typing import Any, Iterable, Optional
from decimal import Decimal

from schoolcash.core.config import settings
from schoolcash.core.money import format_amount, percent_of
from schoolcash.schemas.payments import AppliedDiscount, DiscountValidation
from schoolcash.schemas.school import Pricing
from schoolcash.services.amount_service import validate_amount


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def compute_discount(
    pricing_id: Optional[int],
    raw_amount: Any,
    available_pricing: Iterable[Pricing],
) -> DiscountValidation:
    """
    Validate a discount against the selected pricing line.

    No pricing or no amount → neutral result (valid, no discount).
    Errors are fatal; warnings (large discounts) are not.
    """
    if pricing_id is None or _is_blank(raw_amount):
        return DiscountValidation()

    pricing = next((p for p in available_pricing if p.id == pricing_id), None)
    if pricing is None:
        return DiscountValidation(
            is_valid=False,
            pricing_id=pricing_id,
            errors=[f"Selected pricing {pricing_id} was not found for this student."],
        )

    check = validate_amount(raw_amount)
    if not check.is_valid:
        reason = {
            "negative amount":     "cannot be negative",
            "amount is too large": "is too large",
        }.get(check.error, "must be a number")
        return DiscountValidation(
            is_valid=False,
            pricing_id=pricing_id,
            errors=[f"Discount amount {reason}."],
        )

    amount = check.value
    currency = settings.CURRENCY
    if amount > pricing.amount:
        return DiscountValidation(
            is_valid=False,
            pricing_id=pricing_id,
            errors=[
                f"Discount ({format_amount(amount, currency)}) cannot exceed the amount of "
                f"{pricing.display_label} ({format_amount(pricing.amount, currency)})."
            ],
        )

    percentage = percent_of(amount, pricing.amount)
    warnings = []
    if check.error:
        warnings.append(f"Discount {check.error}.")

    share = Decimal(percentage)
    if share > settings.DISCOUNT_STRONG_WARNING_PERCENT:
        warnings.append(
            f"Discount covers {percentage}% of {pricing.display_label}. "
            f"Please confirm this exceptional reduction."
        )
    elif share > settings.DISCOUNT_WARNING_PERCENT:
        warnings.append(f"Discount covers more than {settings.DISCOUNT_WARNING_PERCENT}% of {pricing.display_label}.")

    return DiscountValidation(
        is_valid=True,
        pricing_id=pricing_id,
        discount_amount=amount,
        discount_percentage=percentage,
        warnings=warnings,
    )


def to_applied(result: DiscountValidation) -> Optional[AppliedDiscount]:
    """What gets published to the session: the discount, or nothing."""
    if not result.is_active:
        return None
    return AppliedDiscount(
        pricing_id=result.pricing_id,
        amount=result.discount_amount,
        percentage=result.discount_percentage,
    )
