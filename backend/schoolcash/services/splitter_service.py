# schoolcash/services/splitter_service.py
#
# Per-installment allocation and payment-method split.
#
# The splitter keeps the form in a sane shape (one method seeded on
# selection, single-method auto-sync, at least one method per
# installment) but it never rebalances several methods on its own.
# Whether the split adds up is decided by the batch validator.

from typing import Any, List, Optional
import logging

from schoolcash.core.config import settings
from schoolcash.core.money import format_amount
from schoolcash.schemas.common import NoticeLevel
from schoolcash.schemas.desk import DeskSession
from schoolcash.schemas.payments import FinancialSummary, MethodSplit
from schoolcash.services.amount_service import validate_amount

logger = logging.getLogger(__name__)


class PaymentMethodSplitter:
    """Mutates the payment form of `session` against the balances of `summary`."""

    def __init__(self, session: DeskSession, summary: Optional[FinancialSummary]):
        self.session = session
        self.summary = summary

    # ── Selection ────────────────────────────────────────────
    def toggle(self, installment_id: int) -> bool:
        """Select or deselect an installment. Returns True when the form changed."""
        session = self.session
        detail = self.summary.detail(installment_id) if self.summary else None

        if installment_id in session.selected_installments:
            session.selected_installments = [i for i in session.selected_installments if i != installment_id]
            session.allocations.pop(installment_id, None)
            session.method_splits.pop(installment_id, None)
            session.installment_errors.pop(installment_id, None)
            self._refresh_global_error()
            return True

        if detail is None:
            logger.warning(f"Toggle on unknown installment {installment_id} (session {session.id})")
            session.notify(
                f"Installment {installment_id} is not part of this student's schedule.",
                level=NoticeLevel.warning,
            )
            return False

        if detail.remaining_amount <= 0:
            session.notify("This installment is already fully paid.", level=NoticeLevel.warning)
            return False

        amount = detail.remaining_amount
        session.selected_installments = session.selected_installments + [installment_id]
        session.allocations[installment_id] = amount
        session.method_splits[installment_id] = [
            MethodSplit(method_id=session.default_method_id, amount=amount)
        ]
        self._refresh_global_error()
        return True

    # ── Allocated amount ─────────────────────────────────────
    def set_amount(self, installment_id: int, raw_amount: Any) -> bool:
        session = self.session
        if installment_id not in session.selected_installments:
            session.notify(
                f"Select installment {installment_id} before entering an amount.",
                level=NoticeLevel.warning,
            )
            return False

        detail = self.summary.detail(installment_id) if self.summary else None
        if detail is None:
            session.notify(
                f"Installment {installment_id} is no longer part of this student's schedule.",
                level=NoticeLevel.warning,
            )
            return False

        # An emptied field means 0, as the form shows it
        if isinstance(raw_amount, str) and not raw_amount.strip():
            raw_amount = "0"

        check = validate_amount(raw_amount)
        if not check.is_valid:
            session.installment_errors[installment_id] = f"Invalid amount: {check.error}."
            return False

        amount = check.value
        if amount > detail.remaining_amount:
            session.installment_errors[installment_id] = (
                f"The amount cannot exceed {format_amount(detail.remaining_amount, settings.CURRENCY)}."
            )
            return False

        session.installment_errors.pop(installment_id, None)
        session.allocations[installment_id] = amount

        methods = session.method_splits.get(installment_id) or []
        if len(methods) == 1:
            session.method_splits[installment_id] = [
                MethodSplit(method_id=methods[0].method_id, amount=amount)
            ]

        self._refresh_global_error()
        return True

    def set_given_amount(self, raw_amount: Any) -> bool:
        session = self.session
        if isinstance(raw_amount, str) and not raw_amount.strip():
            raw_amount = "0"
        check = validate_amount(raw_amount)
        if not check.is_valid:
            session.global_error = f"Invalid amount given: {check.error}."
            return False
        session.given_amount = check.value
        self._refresh_global_error()
        return True

    # ── Methods ──────────────────────────────────────────────
    def add_method(self, installment_id: int, method_id: Optional[int] = None) -> bool:
        session = self.session
        if installment_id not in session.selected_installments:
            session.notify(
                f"Select installment {installment_id} before adding a payment method.",
                level=NoticeLevel.warning,
            )
            return False
        methods = list(session.method_splits.get(installment_id) or [])
        methods.append(MethodSplit(
            method_id=method_id if method_id is not None else session.default_method_id,
            amount=0,
        ))
        session.method_splits[installment_id] = methods
        self._check_split(installment_id)
        return True

    def remove_method(self, installment_id: int, index: int) -> bool:
        session = self.session
        methods = list(session.method_splits.get(installment_id) or [])
        if not 0 <= index < len(methods):
            session.notify(f"No payment method at position {index + 1}.", level=NoticeLevel.warning)
            return False
        if len(methods) <= 1:
            session.notify(
                "An installment needs at least one payment method.",
                level=NoticeLevel.warning,
            )
            return False
        methods.pop(index)
        session.method_splits[installment_id] = methods
        self._check_split(installment_id)
        return True

    def update_method(self, installment_id: int, index: int, field: str, value: Any) -> bool:
        session = self.session
        methods = list(session.method_splits.get(installment_id) or [])
        if not 0 <= index < len(methods):
            session.notify(f"No payment method at position {index + 1}.", level=NoticeLevel.warning)
            return False

        current = methods[index]
        if field == "amount":
            check = validate_amount("0" if value == "" else value)
            if not check.is_valid:
                session.installment_errors[installment_id] = f"Invalid method amount: {check.error}."
                return False
            methods[index] = MethodSplit(method_id=current.method_id, amount=check.value)
        elif field == "method_id":
            try:
                method_id = int(value)
            except (TypeError, ValueError):
                session.installment_errors[installment_id] = "Invalid payment method."
                return False
            methods[index] = MethodSplit(method_id=method_id, amount=current.amount)
        else:
            logger.warning(f"Unknown payment method field {field!r} (session {session.id})")
            return False

        session.method_splits[installment_id] = methods
        self._check_split(installment_id)
        return True

    # ── Feedback ─────────────────────────────────────────────
    def _check_split(self, installment_id: int) -> None:
        session = self.session
        methods: List[MethodSplit] = session.method_splits.get(installment_id) or []
        split_total = sum(m.amount for m in methods)
        allocated = session.allocations.get(installment_id, 0)
        if split_total != allocated:
            session.installment_errors[installment_id] = (
                f"The payment methods add up to {format_amount(split_total, settings.CURRENCY)} "
                f"but the installment amount is {format_amount(allocated, settings.CURRENCY)}."
            )
        else:
            session.installment_errors.pop(installment_id, None)

    def _refresh_global_error(self) -> None:
        # Soft error: shown while editing, enforced only by the batch validator
        session = self.session
        total = session.total_allocated
        if session.given_amount > 0 and total > session.given_amount:
            session.global_error = (
                f"The allocated total ({format_amount(total, settings.CURRENCY)}) exceeds the "
                f"amount given ({format_amount(session.given_amount, settings.CURRENCY)})."
            )
        else:
            session.global_error = ""
