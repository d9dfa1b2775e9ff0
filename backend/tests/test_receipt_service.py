import re
from datetime import datetime

from schoolcash.schemas.payments import AppliedDiscount, MethodSplit
from schoolcash.schemas.school import Payment
from schoolcash.services.receipt_service import build_receipt, summarize_methods
from schoolcash.services.summary_service import summary_from_snapshot
from schoolcash.utils.receipt import generate_receipt_number


NOW = datetime(2025, 11, 1, 10, 30, 5)


def test_receipt_number_format():
    assert generate_receipt_number(NOW) == "REC/2025/1101103005"
    assert re.fullmatch(r"REC/\d{4}/\d{10}", generate_receipt_number())


def test_methods_fall_back_to_submitted_split(snapshot):
    payments = [
        Payment(id=700, student_id=1, installment_id=11, amount="60000"),
        Payment.model_validate({
            "id": 701, "student_id": 1, "installment_id": 12, "amount": "10000",
            "payment_methods": [{"id": 2, "pivot": {"montant": "10000"}}],
        }),
    ]
    splits = {11: [MethodSplit(method_id=1, amount=4_000_000), MethodSplit(method_id=7, amount=2_000_000)]}

    totals = summarize_methods(payments, snapshot.payment_methods, splits)

    assert [(t.method_id, t.name, t.amount) for t in totals] == [
        (1, "Cash", 4_000_000),
        (7, "Method #7", 2_000_000),
        (2, "Mobile Money", 1_000_000),
    ]


def test_receipt_after_refresh_does_not_double_count(snapshot):
    batch = [Payment(id=700, student_id=1, installment_id=11, amount="60000",
                     payment_methods=[{"id": 1, "pivot": {"montant": "60000"}}])]
    refreshed = snapshot.model_copy(update={"payments": snapshot.payments + batch})
    summary = summary_from_snapshot(refreshed, 1, as_of=NOW)

    receipt = build_receipt(
        summary,
        snapshot.find_student(1),
        batch,
        catalog=snapshot.payment_methods,
        discount=AppliedDiscount(pricing_id=1, amount=1_000_000, percentage="10.00"),
        given_amount=6_500_000,
        now=NOW,
    )

    tuition, registration = receipt.fee_lines
    assert tuition.label == "Scolarite"
    assert tuition.original_amount == 10_000_000
    assert tuition.reduction == 1_000_000
    assert tuition.total == 9_000_000
    assert tuition.paid == 6_000_000
    assert tuition.remaining == 3_000_000
    assert registration.remaining == 0

    assert receipt.student_name == "Aya Kouassi"
    assert receipt.class_label == "6eme A"
    assert receipt.total_paid == 6_000_000
    assert receipt.total_reduction == 1_000_000
    assert receipt.methods_total == 6_000_000
    assert receipt.change_amount == 500_000
    assert receipt.payment_ids == [700]
    assert receipt.receipt_number == "REC/2025/1101103005"


def test_receipt_before_refresh_adds_batch_payments(snapshot):
    summary = summary_from_snapshot(snapshot, 1, as_of=NOW)
    batch = [Payment(id=700, student_id=1, installment_id=12, amount="40000")]

    receipt = build_receipt(summary, snapshot.find_student(1), batch, now=NOW)

    assert receipt.fee_lines[0].paid == 4_000_000
    assert receipt.fee_lines[0].remaining == 6_000_000
    assert receipt.total_remaining == 6_000_000
