# ============================================================
# schoolcash/services/commit_service.py
#
# Writes a validated batch to the school backend, one installment
# at a time, as a small saga:
#
#   pending ──POST /api/transaction──▶ transaction_created
#           ──POST /api/payment──────▶ payment_created
#                     │ payment refused
#                     └─DELETE /api/transaction/{id}──▶ compensated
#                                                 (or failed if the
#                                                  delete fails too)
#
# "Refused" means a non-2xx answer or no answer. A 2xx whose body
# cannot be read is a saved payment: nothing is rolled back, the
# batch stops, and the refresh recovers the record.
#
# Installments run strictly in selection order, never in parallel:
# a Payment must reference a Transaction that already exists.
#
# The first failure stops the batch. Installments committed before
# it are NOT undone: each one is a valid ledger entry on its own,
# and the operator is told exactly which ones went through.
#
# No retry here. Resubmitting is the operator's decision, because
# the ledger is append-only and a blind retry could book twice.
# ============================================================

from typing import Callable, Dict, List, Optional
from datetime import datetime
import logging

from schoolcash.core.backend import BackendError, SchoolAPI
from schoolcash.core.config import settings
from schoolcash.core.money import cents_to_str
from schoolcash.schemas.payments import (
    CommitContext,
    CommitResult,
    CommitState,
    InstallmentCommit,
    MethodSplit,
)
from schoolcash.utils.clock import school_now

logger = logging.getLogger(__name__)

ALREADY_RUNNING = "A payment is already being processed..."
NO_CASH_SESSION = "No cash register session is open. Open a session before taking a payment."


def format_transaction_date(moment: datetime) -> str:
    """Backend format: 'YYYY-MM-DD HH:MM:SS'."""
    return moment.strftime("%Y-%m-%d %H:%M:%S")


class PaymentCommitOrchestrator:
    """
    One orchestrator per desk. `in_flight` is the only mutable state:
    a second commit while one is running is refused outright.
    """

    def __init__(self, api: SchoolAPI, clock: Callable[[], datetime] = school_now):
        self.api = api
        self.clock = clock
        self.in_flight = False

    async def commit(
        self,
        selected_installments: List[int],
        allocations: Dict[int, int],
        method_splits: Dict[int, List[MethodSplit]],
        context: CommitContext,
    ) -> CommitResult:
        if self.in_flight:
            logger.warning(f"Commit refused for student {context.student_id}: one is already running")
            return CommitResult(rejected=True, error=ALREADY_RUNNING)

        if context.cash_register_session is None:
            return CommitResult(rejected=True, error=NO_CASH_SESSION)

        # Set before the first await so a double click cannot slip in
        self.in_flight = True
        try:
            return await self._run(selected_installments, allocations, method_splits, context)
        finally:
            self.in_flight = False

    async def _run(
        self,
        selected_installments: List[int],
        allocations: Dict[int, int],
        method_splits: Dict[int, List[MethodSplit]],
        context: CommitContext,
    ) -> CommitResult:
        result = CommitResult()
        result.installments = [
            InstallmentCommit(installment_id=i, amount=allocations.get(i, 0))
            for i in selected_installments
        ]

        for step in result.installments:
            error = await self._commit_one(step, method_splits.get(step.installment_id) or [], context, result)
            if error:
                result.error = error
                break

        if result.committed_count:
            await self._refresh(result)

        result.success = result.error is None
        logger.info(
            f"Commit for student {context.student_id}: "
            f"{result.committed_count}/{len(result.installments)} installment(s) committed"
            + (f", stopped on: {result.error}" if result.error else "")
        )
        return result

    async def _commit_one(
        self,
        step: InstallmentCommit,
        methods: List[MethodSplit],
        context: CommitContext,
        result: CommitResult,
    ) -> Optional[str]:
        """Runs one saga. Returns the error message that stops the batch, if any."""
        cash_session = context.cash_register_session
        amount = cents_to_str(step.amount)

        # Step 1: transaction
        try:
            transaction = await self.api.create_transaction({
                "user_id":                  context.user_id,
                "cash_register_session_id": cash_session.id,
                "transaction_date":         format_transaction_date(self.clock()),
                "total_amount":             amount,
                "transaction_type":         settings.COLLECTION_TRANSACTION_TYPE,
            })
        except BackendError as e:
            step.error = f"Could not create the transaction for installment {step.installment_id}"
            step.move_to(CommitState.failed)
            logger.error(f"{step.error}: {e}")
            return step.error

        step.transaction_id = transaction.id
        step.move_to(CommitState.transaction_created)
        result.transactions.append(transaction)
        logger.debug(f"Installment {step.installment_id}: transaction {transaction.id} created")

        # Step 2: payment referencing it
        try:
            payment = await self.api.create_payment({
                "student_id":       context.student_id,
                "installment_id":   step.installment_id,
                "cash_register_id": cash_session.cash_register.id,
                "cashier_id":       context.user_id,
                "amount":           amount,
                "transaction_id":   transaction.id,
                "methods": [
                    {"id": m.method_id, "montant": cents_to_str(m.amount)}
                    for m in methods
                ],
            })
        except BackendError as e:
            if e.accepted:
                return self._accepted_unreadable(step, e)
            step.error = f"Could not create the payment for installment {step.installment_id}"
            logger.error(f"{step.error}: {e}")
            await self._compensate(step, result)
            return step.error

        step.payment_id = payment.id
        step.move_to(CommitState.payment_created)
        result.payments.append(payment)
        logger.debug(f"Installment {step.installment_id}: payment {payment.id} created")
        return None

    def _accepted_unreadable(self, step: InstallmentCommit, error: BackendError) -> str:
        """
        The backend saved the payment but its reply was unusable. Its
        transaction is kept and the batch stops; the refresh recovers the
        payment record by its transaction.
        """
        body = error.body if isinstance(error.body, dict) else {}
        returned_id = body.get("id")
        step.payment_id = returned_id if isinstance(returned_id, int) else None
        step.move_to(CommitState.payment_created)
        step.error = (
            f"The payment for installment {step.installment_id} was recorded "
            f"but the backend reply could not be read"
        )
        logger.error(f"{step.error} (transaction {step.transaction_id}): {error}")
        return step.error

    async def _compensate(self, step: InstallmentCommit, result: CommitResult) -> None:
        logger.info(f"Rolling back transaction {step.transaction_id} (installment {step.installment_id})")
        if await self.api.delete_transaction(step.transaction_id):
            step.move_to(CommitState.compensated)
            result.transactions = [t for t in result.transactions if t.id != step.transaction_id]
        else:
            # Left for the accountant: a transaction without its payment
            step.move_to(CommitState.failed)
            logger.error(
                f"Compensation failed: transaction {step.transaction_id} has no payment "
                f"and could not be deleted"
            )

    async def _refresh(self, result: CommitResult) -> None:
        """Re-read the authoritative collections; local copies are never trusted."""
        try:
            result.latest_transactions = await self.api.list_transactions()
            result.latest_payments = await self.api.list_payments()
            result.refreshed = True
        except BackendError as e:
            logger.warning(f"Post-commit refresh failed: {e}")
            result.refreshed = False
            return

        known = {p.id for p in result.payments}
        for step in result.installments:
            if not step.is_committed or (step.payment_id is not None and step.payment_id in known):
                continue
            match = next(
                (p for p in result.latest_payments if p.transaction_id == step.transaction_id),
                None,
            )
            if match is not None:
                step.payment_id = match.id
                result.payments.append(match)
                known.add(match.id)
