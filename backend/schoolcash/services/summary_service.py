# schoolcash/services/summary_service.py
#
# Builds the per-installment balance sheet of one student for one
# academic year. This is the single source of truth the splitter,
# the batch validator and the receipt read from.
#
# It is rebuilt from the four source collections every time any of
# them changes. Nothing is cached and nothing is patched in place.

from typing import Iterable, List, Optional
from datetime import datetime, time
import logging

from schoolcash.schemas.payments import FinancialSummary, InstallmentDetail
from schoolcash.schemas.school import (
    Classe,
    Installment,
    Payment,
    Pricing,
    Registration,
    SchoolSnapshot,
    Student,
)
from schoolcash.utils.clock import school_now

logger = logging.getLogger(__name__)


def find_registration(
    student: Student,
    registrations: Iterable[Registration],
    academic_year_id: int,
) -> Optional[Registration]:
    return next(
        (
            r for r in registrations
            if r.student_id == student.id and r.academic_year_id == academic_year_id
        ),
        None,
    )


def resolve_classe(registration: Registration, classes: Iterable[Classe] = ()) -> Optional[Classe]:
    if registration.classe is not None:
        return registration.classe
    return next((c for c in classes if c.id == registration.class_id), None)


def applicable_pricing(
    student: Student,
    level_id: int,
    pricing: Iterable[Pricing],
    academic_year_id: int,
) -> List[Pricing]:
    """Fee lines matching the student's tier, the year and the class level."""
    return [
        p for p in pricing
        if p.assignment_type_id == student.assignment_type_id
        and p.academic_years_id == academic_year_id
        and p.level_id == level_id
    ]


def build_summary(
    student: Student,
    registrations: Iterable[Registration],
    pricing: Iterable[Pricing],
    installments: Iterable[Installment],
    payments: Iterable[Payment],
    academic_year_id: int,
    classes: Iterable[Classe] = (),
    as_of: Optional[datetime] = None,
) -> Optional[FinancialSummary]:
    """
    Returns None when the student has no registration for the year.

    A payment counts towards an installment only when it matches BOTH
    the installment and the student.
    """
    registration = find_registration(student, registrations, academic_year_id)
    if registration is None:
        return None

    classe = resolve_classe(registration, classes)
    if classe is None:
        logger.warning(
            f"Registration {registration.id} points to unknown class {registration.class_id}; "
            f"no pricing applies to student {student.id}"
        )
        level_id = None
        lines: List[Pricing] = []
    else:
        level_id = classe.level_id
        lines = applicable_pricing(student, level_id, pricing, academic_year_id)

    now = as_of or school_now()
    installments = list(installments)
    payments = list(payments)

    details: List[InstallmentDetail] = []
    total_due = 0
    total_paid = 0
    overdue_amount = 0

    for line in lines:
        for installment in (i for i in installments if i.pricing_id == line.id):
            matched = [
                p for p in payments
                if p.installment_id == installment.id and p.student_id == student.id
            ]
            amount_paid = sum(p.amount for p in matched)
            remaining = max(0, installment.amount_due - amount_paid)
            is_overdue = datetime.combine(installment.due_date, time.min) < now and remaining > 0

            total_due += installment.amount_due
            total_paid += amount_paid
            if is_overdue:
                overdue_amount += remaining

            details.append(InstallmentDetail(
                installment_id=installment.id,
                pricing_id=line.id,
                fee_label=line.display_label,
                due_date=installment.due_date,
                status=installment.status,
                amount_due=installment.amount_due,
                amount_paid=amount_paid,
                remaining_amount=remaining,
                is_overdue=is_overdue,
                payment_ids=[p.id for p in matched],
            ))

    return FinancialSummary(
        student_id=student.id,
        registration_id=registration.id,
        academic_year_id=academic_year_id,
        class_id=registration.class_id,
        class_label=classe.label if classe else "",
        level_id=level_id,
        applicable_pricing=lines,
        installments=details,
        total_due=total_due,
        total_paid=total_paid,
        total_remaining=total_due - total_paid,
        overdue_amount=overdue_amount,
    )


def summary_from_snapshot(
    snapshot: SchoolSnapshot,
    student_id: int,
    as_of: Optional[datetime] = None,
) -> Optional[FinancialSummary]:
    student = snapshot.find_student(student_id)
    if student is None:
        return None
    return build_summary(
        student,
        snapshot.registrations,
        snapshot.pricing,
        snapshot.installments,
        snapshot.payments,
        snapshot.academic_year_id,
        classes=snapshot.classes,
        as_of=as_of,
    )
