# schoolcash/services/batch_validator.py
#
# The gate in front of "Submit". A pure function of the desk session
# and the financial summary, recomputed after every change.
#
# Checks, in order:
#   1. at least one installment selected
#   2. total allocated > 0
#   3. discounted pricing: its own installments ≤ amount − discount
#   4. whole batch ≤ total due after discount (no overpayment)
#   5. amount given ≥ total allocated
#   6. every installment's method split is complete and exact
#
# Every failure is collected; only the first message of each
# category is surfaced in `errors`.

from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from schoolcash.core.config import settings
from schoolcash.core.money import format_amount
from schoolcash.schemas.desk import DeskSession
from schoolcash.schemas.payments import (
    BatchError,
    BatchErrorCategory,
    BatchValidation,
    FinancialSummary,
)


def _fmt(cents: int) -> str:
    return format_amount(cents, settings.CURRENCY)


def validate_batch(
    session: DeskSession,
    summary: Optional[FinancialSummary],
    known_method_ids: Optional[Iterable[int]] = None,
    in_flight: bool = False,
) -> BatchValidation:
    failures: List[BatchError] = []
    alerts: List[str] = []
    method_ids = set(known_method_ids) if known_method_ids is not None else None

    selected = list(session.selected_installments)
    allocations = {i: session.allocations.get(i, 0) for i in selected}
    total_allocated = sum(allocations.values())

    # 1. selection
    if not selected:
        failures.append(BatchError(
            category=BatchErrorCategory.selection,
            message="Select at least one installment.",
        ))

    # 2. positive total
    if total_allocated <= 0:
        failures.append(BatchError(
            category=BatchErrorCategory.total,
            message="The total amount paid must be greater than 0.",
        ))

    # Group the batch by pricing line
    by_pricing: Dict[int, List[int]] = defaultdict(list)
    remaining: Dict[int, int] = {}
    for installment_id in selected:
        detail = summary.detail(installment_id) if summary else None
        if detail is None:
            failures.append(BatchError(
                category=BatchErrorCategory.selection,
                message=f"Installment {installment_id} is not part of this student's schedule.",
                installment_id=installment_id,
            ))
            continue
        by_pricing[detail.pricing_id].append(installment_id)
        remaining[installment_id] = detail.remaining_amount

    # 3. discount ceiling, on the discounted pricing's own installments only
    discount = session.discount
    discounted_ceiling: Optional[int] = None
    if discount is not None and summary is not None:
        pricing = summary.pricing_by_id(discount.pricing_id)
        if pricing is not None:
            discounted_ceiling = max(0, pricing.amount - discount.amount)
            allocated_on_pricing = sum(allocations[i] for i in by_pricing.get(pricing.id, []))
            if allocated_on_pricing > discounted_ceiling:
                message = (
                    f"The amount allocated to {pricing.display_label} ({_fmt(allocated_on_pricing)}) "
                    f"exceeds the amount after discount ({_fmt(discounted_ceiling)} = "
                    f"{_fmt(pricing.amount)} − {_fmt(discount.amount)})."
                )
                failures.append(BatchError(category=BatchErrorCategory.discount_ceiling, message=message))
                alerts.append(message)

    # 4. overpayment guard over the whole batch
    total_due_after_discount = 0
    for pricing_id, installment_ids in by_pricing.items():
        group_due = sum(remaining[i] for i in installment_ids)
        if discount is not None and discount.pricing_id == pricing_id and discounted_ceiling is not None:
            group_due = min(group_due, discounted_ceiling)
        total_due_after_discount += group_due

        for installment_id in installment_ids:
            if allocations[installment_id] > remaining[installment_id]:
                failures.append(BatchError(
                    category=BatchErrorCategory.overpayment,
                    message=(
                        f"Installment {installment_id}: {_fmt(allocations[installment_id])} exceeds "
                        f"the remaining {_fmt(remaining[installment_id])}."
                    ),
                    installment_id=installment_id,
                ))

    if total_allocated > total_due_after_discount:
        failures.append(BatchError(
            category=BatchErrorCategory.overpayment,
            message=(
                f"The total allocated ({_fmt(total_allocated)}) exceeds the total due "
                f"after discount ({_fmt(total_due_after_discount)})."
            ),
        ))

    # 5. the cashier must have received the money
    if session.given_amount < total_allocated:
        failures.append(BatchError(
            category=BatchErrorCategory.given_amount,
            message=(
                f"The amount given ({_fmt(session.given_amount)}) is less than the "
                f"total allocated ({_fmt(total_allocated)})."
            ),
        ))

    # 6. method splits
    for installment_id in selected:
        methods = session.method_splits.get(installment_id) or []
        if not methods:
            failures.append(BatchError(
                category=BatchErrorCategory.methods,
                message=f"Installment {installment_id}: choose at least one payment method.",
                installment_id=installment_id,
            ))
            continue

        for method in methods:
            if method.method_id <= 0 or (method_ids is not None and method.method_id not in method_ids):
                failures.append(BatchError(
                    category=BatchErrorCategory.methods,
                    message=f"Installment {installment_id}: payment method {method.method_id} is not valid.",
                    installment_id=installment_id,
                ))
            if method.amount <= 0:
                failures.append(BatchError(
                    category=BatchErrorCategory.methods,
                    message=f"Installment {installment_id}: every payment method needs an amount above 0.",
                    installment_id=installment_id,
                ))

        split_total = sum(m.amount for m in methods)
        if split_total != allocations[installment_id]:
            failures.append(BatchError(
                category=BatchErrorCategory.methods,
                message=(
                    f"Installment {installment_id}: the payment methods add up to {_fmt(split_total)} "
                    f"instead of {_fmt(allocations[installment_id])}."
                ),
                installment_id=installment_id,
            ))

    surfaced: List[str] = []
    for category in BatchErrorCategory:
        first = next((f for f in failures if f.category == category), None)
        if first is not None:
            surfaced.append(first.message)

    is_valid = not failures
    return BatchValidation(
        is_valid=is_valid,
        can_proceed=is_valid and not in_flight,
        errors=surfaced,
        failures=failures,
        alerts=alerts,
        total_allocated=total_allocated,
        total_due_after_discount=total_due_after_discount,
        given_amount=session.given_amount,
        change_amount=max(0, session.given_amount - total_allocated),
    )
