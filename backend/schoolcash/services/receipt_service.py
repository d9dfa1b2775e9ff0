# schoolcash/services/receipt_service.py
#
# Folds committed payments back into what the printed receipt shows:
#   - one line per fee type (original, discount, net, paid, remaining)
#   - one line per payment method actually used in the batch
#
# Rendering (HTML/PDF/print) happens in the dashboard, not here.

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from schoolcash.core.config import settings
from schoolcash.schemas.payments import (
    AppliedDiscount,
    FeeTypeLine,
    FinancialSummary,
    MethodSplit,
    MethodTotal,
    ReceiptSummary,
)
from schoolcash.schemas.school import Payment, PaymentMethod, Student
from schoolcash.utils.receipt import generate_receipt_number


def summarize_methods(
    payments: Iterable[Payment],
    catalog: Iterable[PaymentMethod],
    submitted_splits: Optional[Dict[int, List[MethodSplit]]] = None,
) -> List[MethodTotal]:
    """
    Aggregate method amounts over the batch. When the backend did not
    echo the methods of a payment, the split that was submitted is used.
    """
    names = {m.id: m.name for m in catalog}
    totals: Dict[int, int] = {}

    for payment in payments:
        if payment.payment_methods:
            lines = [(m.id, m.amount) for m in payment.payment_methods]
        else:
            lines = [
                (s.method_id, s.amount)
                for s in (submitted_splits or {}).get(payment.installment_id, [])
            ]
        for method_id, amount in lines:
            totals[method_id] = totals.get(method_id, 0) + amount

    return [
        MethodTotal(method_id=method_id, name=names.get(method_id) or f"Method #{method_id}", amount=amount)
        for method_id, amount in totals.items()
    ]


def build_receipt(
    summary: FinancialSummary,
    student: Student,
    batch_payments: List[Payment],
    catalog: Iterable[PaymentMethod] = (),
    discount: Optional[AppliedDiscount] = None,
    given_amount: int = 0,
    submitted_splits: Optional[Dict[int, List[MethodSplit]]] = None,
    now: Optional[datetime] = None,
) -> ReceiptSummary:
    """
    `summary` may be built before or after the post-commit refresh:
    batch payments already counted in it are not counted twice.
    """
    known_payment_ids = {pid for d in summary.installments for pid in d.payment_ids}
    pricing_of = {d.installment_id: d.pricing_id for d in summary.installments}

    fee_lines: List[FeeTypeLine] = []
    for pricing in summary.applicable_pricing:
        reduction = 0
        if discount is not None and discount.pricing_id == pricing.id:
            reduction = min(discount.amount, pricing.amount)
        total = max(0, pricing.amount - reduction)

        paid = sum(d.amount_paid for d in summary.installments if d.pricing_id == pricing.id)
        paid += sum(
            p.amount for p in batch_payments
            if p.id not in known_payment_ids and pricing_of.get(p.installment_id) == pricing.id
        )

        fee_lines.append(FeeTypeLine(
            pricing_id=pricing.id,
            label=pricing.display_label,
            original_amount=pricing.amount,
            reduction=reduction,
            total=total,
            paid=paid,
            remaining=max(0, total - paid),
        ))

    methods = summarize_methods(batch_payments, catalog, submitted_splits)
    batch_total = sum(p.amount for p in batch_payments)

    return ReceiptSummary(
        receipt_number=generate_receipt_number(now),
        student_id=student.id,
        student_name=student.full_name,
        registration_number=student.registration_number,
        class_label=summary.class_label,
        currency=settings.CURRENCY,
        fee_lines=fee_lines,
        methods=methods,
        methods_total=sum(m.amount for m in methods),
        total_original=sum(line.original_amount for line in fee_lines),
        total_reduction=sum(line.reduction for line in fee_lines),
        total_paid=batch_total,
        total_remaining=sum(line.remaining for line in fee_lines),
        given_amount=given_amount,
        change_amount=max(0, given_amount - batch_total),
        payment_ids=[p.id for p in batch_payments],
    )
