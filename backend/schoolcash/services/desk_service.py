# ============================================================
# schoolcash/services/desk_service.py
#
# The cash desk use case. DeskController owns one DeskSession and
# the latest SchoolSnapshot, and after EVERY mutation it rebuilds:
#
#   snapshot + student ──▶ FinancialSummary
#   session + summary  ──▶ BatchValidation
#
# There is no reactive framework: each public method ends with an
# explicit recompute(). Services below it stay pure functions of
# the session they are handed.
# ============================================================

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging
import time

from schoolcash.core.backend import BackendError, SchoolAPI
from schoolcash.core.config import settings
from schoolcash.schemas.common import NoticeLevel
from schoolcash.schemas.desk import DeskSession, DeskStateResponse, OpenDeskRequest
from schoolcash.schemas.payments import (
    BatchValidation,
    CommitContext,
    CommitResult,
    DiscountValidation,
    FinancialSummary,
    ReceiptSummary,
)
from schoolcash.schemas.school import SchoolSnapshot
from schoolcash.services.batch_validator import validate_batch
from schoolcash.services.commit_service import ALREADY_RUNNING, PaymentCommitOrchestrator
from schoolcash.services.discount_service import compute_discount, to_applied
from schoolcash.services.receipt_service import build_receipt
from schoolcash.services.splitter_service import PaymentMethodSplitter
from schoolcash.services.summary_service import summary_from_snapshot
from schoolcash.utils.clock import school_now

logger = logging.getLogger(__name__)


class DeskController:
    def __init__(
        self,
        session: DeskSession,
        snapshot: SchoolSnapshot,
        orchestrator: Optional[PaymentCommitOrchestrator] = None,
        clock: Callable[[], datetime] = school_now,
    ):
        self.session = session
        self.snapshot = snapshot
        self.orchestrator = orchestrator
        self.clock = clock
        self.summary: Optional[FinancialSummary] = None
        self.validation: Optional[BatchValidation] = None
        self.discount_result: Optional[DiscountValidation] = None
        self.receipt: Optional[ReceiptSummary] = None
        self.last_commit: Optional[CommitResult] = None
        self._last_alerts: List[str] = []
        if not session.default_method_id:
            session.default_method_id = snapshot.default_method_id()
        self.recompute()

    # ── Derived state ────────────────────────────────────────
    @property
    def in_flight(self) -> bool:
        return bool(self.orchestrator and self.orchestrator.in_flight)

    def recompute(self) -> BatchValidation:
        session = self.session
        if session.student_id is None:
            self.summary = None
        else:
            self.summary = summary_from_snapshot(self.snapshot, session.student_id, as_of=self.clock())

        self.validation = validate_batch(
            session,
            self.summary,
            known_method_ids=[m.id for m in self.snapshot.payment_methods] or None,
            in_flight=self.in_flight,
        )

        # Toast a ceiling violation once, when it appears
        for alert in self.validation.alerts:
            if alert not in self._last_alerts:
                session.notify(alert, level=NoticeLevel.destructive, title="Error")
        self._last_alerts = list(self.validation.alerts)
        return self.validation

    def replace_snapshot(self, snapshot: SchoolSnapshot) -> BatchValidation:
        """New data from the backend: the form stays, balances are rebuilt."""
        self.snapshot = snapshot
        return self.recompute()

    def state(self) -> DeskStateResponse:
        return DeskStateResponse(
            session=self.session,
            summary=self.summary,
            validation=self.validation,
            discount=self.discount_result,
            receipt=self.receipt,
            last_commit=self.last_commit,
            notices=self.session.drain_notices(),
        )

    def _splitter(self) -> PaymentMethodSplitter:
        return PaymentMethodSplitter(self.session, self.summary)

    # ── Student ──────────────────────────────────────────────
    def select_student_by_registration_number(self, number: str) -> bool:
        student = self.snapshot.find_student_by_registration_number(number)
        if student is None:
            self.session.notify(
                f"No student with registration number {number.strip()}.", level=NoticeLevel.warning,
            )
            return False
        return self.select_student(student.id)

    def select_student(self, student_id: int) -> bool:
        if self.snapshot.find_student(student_id) is None:
            self.session.notify(f"Student {student_id} was not found.", level=NoticeLevel.warning)
            return False
        if student_id != self.session.student_id:
            self.session.reset_payment_form()
            self.discount_result = None
            self.receipt = None
        self.session.student_id = student_id
        self.recompute()
        if self.summary is None:
            self.session.notify(
                "This student has no registration for the current academic year.",
                level=NoticeLevel.warning,
            )
        return True

    # ── Payment form ─────────────────────────────────────────
    def toggle(self, installment_id: int) -> bool:
        changed = self._splitter().toggle(installment_id)
        self.recompute()
        return changed

    def set_amount(self, installment_id: int, amount: Any) -> bool:
        changed = self._splitter().set_amount(installment_id, amount)
        self.recompute()
        return changed

    def set_given_amount(self, amount: Any) -> bool:
        changed = self._splitter().set_given_amount(amount)
        self.recompute()
        return changed

    def add_method(self, installment_id: int, method_id: Optional[int] = None) -> bool:
        changed = self._splitter().add_method(installment_id, method_id)
        self.recompute()
        return changed

    def remove_method(self, installment_id: int, index: int) -> bool:
        changed = self._splitter().remove_method(installment_id, index)
        self.recompute()
        return changed

    def update_method(self, installment_id: int, index: int, field: str, value: Any) -> bool:
        changed = self._splitter().update_method(installment_id, index, field, value)
        self.recompute()
        return changed

    # ── Discount ─────────────────────────────────────────────
    def apply_discount(self, pricing_id: Optional[int], amount: Any) -> DiscountValidation:
        """Validate and publish (or clear) the session discount."""
        available = self.summary.applicable_pricing if self.summary else []
        result = compute_discount(pricing_id, amount, available)
        self.session.discount = to_applied(result)
        self.discount_result = result

        for error in result.errors:
            self.session.notify(error, level=NoticeLevel.destructive, title="Error")
        for warning in result.warnings:
            self.session.notify(warning, level=NoticeLevel.warning, title="Warning")

        self.recompute()
        return result

    def clear_discount(self) -> DiscountValidation:
        return self.apply_discount(None, None)

    # ── Submit ───────────────────────────────────────────────
    async def submit(self) -> Tuple[CommitResult, Optional[ReceiptSummary]]:
        session = self.session
        if self.orchestrator is None:
            raise RuntimeError("DeskController.submit needs a PaymentCommitOrchestrator")

        if self.in_flight:
            session.notify(ALREADY_RUNNING, level=NoticeLevel.warning)
            return CommitResult(rejected=True, error=ALREADY_RUNNING), None

        validation = self.recompute()
        if not validation.can_proceed:
            message = validation.errors[0] if validation.errors else "The payment cannot be submitted."
            session.notify(message, level=NoticeLevel.destructive, title="Error")
            return CommitResult(rejected=True, error=message), None

        context = CommitContext(
            student_id=session.student_id,
            user_id=session.user_id,
            cash_register_session=session.cash_register_session,
        )
        result = await self.orchestrator.commit(
            list(session.selected_installments),
            dict(session.allocations),
            {k: list(v) for k, v in session.method_splits.items()},
            context,
        )

        if result.rejected:
            session.notify(result.error, level=NoticeLevel.destructive, title="Error")
            self.recompute()
            return result, None

        if result.refreshed:
            self.snapshot = self.snapshot.model_copy(update={
                "transactions": result.latest_transactions,
                "payments":     result.latest_payments,
            })
        else:
            # Keep what we know was created until the next full reload
            self.snapshot = self.snapshot.model_copy(update={
                "transactions": self.snapshot.transactions + result.transactions,
                "payments":     self.snapshot.payments + result.payments,
            })

        receipt = None
        if result.payments:
            summary = summary_from_snapshot(self.snapshot, session.student_id, as_of=self.clock())
            receipt = build_receipt(
                summary or self.summary,
                self.snapshot.find_student(session.student_id),
                result.payments,
                catalog=self.snapshot.payment_methods,
                discount=session.discount,
                given_amount=session.given_amount,
                submitted_splits=session.method_splits,
                now=self.clock(),
            )
        self.receipt = receipt
        self.last_commit = result

        if result.success:
            session.notify(
                f"{result.committed_count} payment(s) recorded successfully",
                level=NoticeLevel.success,
                title="Success",
            )
            session.reset_payment_form()
            self.discount_result = None
        else:
            message = result.error
            if result.committed_count:
                message += f" ({result.committed_count} installment(s) were recorded before the failure)"
            session.notify(message, level=NoticeLevel.destructive, title="Error")
            # Drop what went through; the rest stays on the form for a manual retry
            for item in result.installments:
                if item.is_committed:
                    self._splitter().toggle(item.installment_id)

        self.recompute()
        return result, receipt


# ── Desk registry ────────────────────────────────────────────
# One controller per open desk, kept in process memory. The desk
# is a working form; the backend remains the system of record.
# A desk untouched for DESK_SESSION_TTL_SECONDS is dropped on the
# next get/add. A desk with a commit in flight is never dropped.
class DeskRegistry:
    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.DESK_SESSION_TTL_SECONDS
        self.clock = clock
        self._desks: Dict[str, DeskController] = {}
        self._touched: Dict[str, float] = {}

    def _cleanup(self, now: float) -> None:
        cutoff = now - self.ttl_seconds
        stale = [
            desk_id for desk_id, touched in self._touched.items()
            if touched < cutoff and not self._desks[desk_id].in_flight
        ]
        for desk_id in stale:
            self._desks.pop(desk_id, None)
            self._touched.pop(desk_id, None)
            logger.info(f"Desk {desk_id} expired after {self.ttl_seconds}s idle")

    def get(self, desk_id: str) -> Optional[DeskController]:
        now = self.clock()
        self._cleanup(now)
        controller = self._desks.get(desk_id)
        if controller is not None:
            self._touched[desk_id] = now
        return controller

    def add(self, controller: DeskController) -> DeskController:
        now = self.clock()
        self._cleanup(now)
        self._desks[controller.session.id] = controller
        self._touched[controller.session.id] = now
        return controller

    def close(self, desk_id: str) -> bool:
        self._touched.pop(desk_id, None)
        return self._desks.pop(desk_id, None) is not None

    def __len__(self) -> int:
        return len(self._desks)


async def open_desk(api: SchoolAPI, body: OpenDeskRequest) -> DeskController:
    """Load a fresh snapshot and open a desk, optionally on a student."""
    snapshot = await api.load_snapshot(body.academic_year_id)

    cash_session = None
    if body.cash_register_session_id is not None:
        try:
            cash_session = await api.get_cash_register_session(body.cash_register_session_id)
        except BackendError as e:
            logger.warning(f"Cash register session {body.cash_register_session_id} unavailable: {e}")

    session = DeskSession(
        academic_year_id=body.academic_year_id,
        user_id=body.user_id,
        cash_register_session=cash_session,
    )
    controller = DeskController(session, snapshot, PaymentCommitOrchestrator(api))
    if body.student_id is not None:
        controller.select_student(body.student_id)
    elif body.registration_number:
        controller.select_student_by_registration_number(body.registration_number)
    logger.info(f"Desk {session.id} opened by user {body.user_id} for year {body.academic_year_id}")
    return controller
