# schoolcash/schemas/payments.py
#
# Results produced by the reconciliation core. All money fields are
# integer cents internally and decimal strings in JSON.

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date
from enum import Enum

from schoolcash.core.money import Cents
from schoolcash.schemas.school import Pricing, Payment, Transaction, CashRegisterSession


# ── Amount validation ────────────────────────────────────────
class AmountValidation(BaseModel):
    value: Optional[Cents] = None
    is_valid: bool
    error: Optional[str] = None     # also set (as a warning) when rounding happened


# ── Discount ─────────────────────────────────────────────────
class DiscountValidation(BaseModel):
    is_valid: bool = True
    pricing_id: Optional[int] = None
    discount_amount: Optional[Cents] = None
    discount_percentage: Optional[str] = None
    errors: List[str] = []
    warnings: List[str] = []

    @property
    def is_active(self) -> bool:
        return self.is_valid and self.pricing_id is not None and self.discount_amount is not None


class AppliedDiscount(BaseModel):
    """What the desk session holds once a discount passed validation."""
    pricing_id: int
    amount: Cents
    percentage: str


# ── Financial summary ────────────────────────────────────────
class InstallmentDetail(BaseModel):
    installment_id: int
    pricing_id: int
    fee_label: str
    due_date: date
    status: str = ""
    amount_due: Cents
    amount_paid: Cents
    remaining_amount: Cents
    is_overdue: bool
    payment_ids: List[int] = []


class FinancialSummary(BaseModel):
    student_id: int
    registration_id: int
    academic_year_id: int
    class_id: int
    class_label: str = ""
    level_id: Optional[int] = None
    applicable_pricing: List[Pricing] = []
    installments: List[InstallmentDetail] = []
    total_due: Cents = 0
    total_paid: Cents = 0
    total_remaining: Cents = 0
    overdue_amount: Cents = 0

    def detail(self, installment_id: int) -> Optional[InstallmentDetail]:
        return next((d for d in self.installments if d.installment_id == installment_id), None)

    def pricing_by_id(self, pricing_id: int) -> Optional[Pricing]:
        return next((p for p in self.applicable_pricing if p.id == pricing_id), None)


# ── Method split ─────────────────────────────────────────────
class MethodSplit(BaseModel):
    method_id: int
    amount: Cents = 0


# ── Batch validation ─────────────────────────────────────────
class BatchErrorCategory(str, Enum):
    selection        = "selection"
    total            = "total"
    discount_ceiling = "discount_ceiling"
    overpayment      = "overpayment"
    given_amount     = "given_amount"
    methods          = "methods"


class BatchError(BaseModel):
    category: BatchErrorCategory
    message: str
    installment_id: Optional[int] = None


class BatchValidation(BaseModel):
    is_valid: bool
    can_proceed: bool
    # First message of each failing category, in check order.
    errors: List[str] = []
    # Every failure found, for gating and debugging.
    failures: List[BatchError] = []
    # Failures that must also be pushed to the operator as a toast.
    alerts: List[str] = []
    total_allocated: Cents = 0
    total_due_after_discount: Cents = 0
    given_amount: Cents = 0
    change_amount: Cents = 0


# ── Commit saga ──────────────────────────────────────────────
class CommitState(str, Enum):
    pending             = "pending"
    transaction_created = "transaction_created"
    payment_created     = "payment_created"
    compensated         = "compensated"
    failed              = "failed"


_ALLOWED_TRANSITIONS = {
    CommitState.pending:             {CommitState.transaction_created, CommitState.failed},
    CommitState.transaction_created: {CommitState.payment_created, CommitState.compensated, CommitState.failed},
    CommitState.payment_created:     set(),
    CommitState.compensated:         set(),
    CommitState.failed:              set(),
}


class InstallmentCommit(BaseModel):
    """One installment's transaction+payment pair as it moves through the saga."""
    installment_id: int
    amount: Cents
    state: CommitState = CommitState.pending
    transaction_id: Optional[int] = None
    payment_id: Optional[int] = None
    error: Optional[str] = None

    def move_to(self, state: CommitState) -> None:
        if state not in _ALLOWED_TRANSITIONS[self.state]:
            raise ValueError(f"Illegal commit transition {self.state.value} -> {state.value}")
        self.state = state

    @property
    def is_committed(self) -> bool:
        return self.state == CommitState.payment_created

    @property
    def is_failed(self) -> bool:
        return self.state in (CommitState.compensated, CommitState.failed)


class CommitContext(BaseModel):
    student_id: int
    user_id: int
    cash_register_session: Optional[CashRegisterSession] = None


class CommitResult(BaseModel):
    success: bool = False
    rejected: bool = False              # refused before touching the backend
    error: Optional[str] = None
    installments: List[InstallmentCommit] = []
    transactions: List[Transaction] = []
    payments: List[Payment] = []
    refreshed: bool = False
    latest_transactions: Optional[List[Transaction]] = None
    latest_payments: Optional[List[Payment]] = None

    @property
    def committed_count(self) -> int:
        return sum(1 for item in self.installments if item.is_committed)


# ── Receipt ──────────────────────────────────────────────────
class FeeTypeLine(BaseModel):
    pricing_id: int
    label: str
    original_amount: Cents
    reduction: Cents = 0
    total: Cents
    paid: Cents
    remaining: Cents


class MethodTotal(BaseModel):
    method_id: int
    name: str
    amount: Cents


class ReceiptSummary(BaseModel):
    receipt_number: str
    student_id: int
    student_name: str = ""
    registration_number: str = ""
    class_label: str = ""
    currency: str
    fee_lines: List[FeeTypeLine] = []
    methods: List[MethodTotal] = []
    methods_total: Cents = 0
    total_original: Cents = 0
    total_reduction: Cents = 0
    total_paid: Cents = 0
    total_remaining: Cents = 0
    given_amount: Cents = 0
    change_amount: Cents = 0
    payment_ids: List[int] = Field(default_factory=list)
