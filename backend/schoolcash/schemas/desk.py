# schoolcash/schemas/desk.py
#
# DeskSession is the application state of one cashier working on one
# student. It is passed explicitly into every core function, never
# held as a module-level singleton.

from pydantic import BaseModel, Field, model_validator
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from schoolcash.core.money import Cents
from schoolcash.schemas.common import Notice, NoticeLevel
from schoolcash.schemas.payments import (
    AppliedDiscount,
    BatchValidation,
    CommitResult,
    DiscountValidation,
    FinancialSummary,
    MethodSplit,
    ReceiptSummary,
)
from schoolcash.schemas.school import CashRegisterSession


class DeskSession(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    academic_year_id: int
    user_id: int
    cash_register_session: Optional[CashRegisterSession] = None
    default_method_id: int = 0

    student_id: Optional[int] = None

    # Payment form
    selected_installments: List[int] = []           # selection order
    allocations: Dict[int, Cents] = {}
    method_splits: Dict[int, List[MethodSplit]] = {}
    given_amount: Cents = 0
    discount: Optional[AppliedDiscount] = None

    # Feedback
    installment_errors: Dict[int, str] = {}
    global_error: str = ""
    notices: List[Notice] = []

    @property
    def total_allocated(self) -> int:
        return sum(self.allocations.values())

    def notify(self, message: str, level: NoticeLevel = NoticeLevel.info, title: str = "Information") -> None:
        self.notices.append(Notice(level=level, title=title, message=message))

    def drain_notices(self) -> List[Notice]:
        notices, self.notices = self.notices, []
        return notices

    def reset_payment_form(self) -> None:
        self.selected_installments = []
        self.allocations = {}
        self.method_splits = {}
        self.given_amount = 0
        self.discount = None
        self.installment_errors = {}
        self.global_error = ""


# ── Requests ─────────────────────────────────────────────────
class OpenDeskRequest(BaseModel):
    academic_year_id: int
    user_id: int
    student_id: Optional[int] = None
    registration_number: Optional[str] = None
    cash_register_session_id: Optional[int] = None


class SelectStudentRequest(BaseModel):
    """Pick a student by id or by registration number (matricule)."""
    student_id: Optional[int] = None
    registration_number: Optional[str] = None

    @model_validator(mode="after")
    def check_one_key(self):
        if self.student_id is None and not (self.registration_number or "").strip():
            raise ValueError("student_id or registration_number is required")
        return self


class ToggleInstallmentRequest(BaseModel):
    installment_id: int


class AllocationRequest(BaseModel):
    installment_id: int
    amount: Any                     # raw operator input, validated by the desk


class AddMethodRequest(BaseModel):
    installment_id: int
    method_id: Optional[int] = None


class UpdateMethodRequest(BaseModel):
    installment_id: int
    field: Literal["method_id", "amount"]
    value: Any


class GivenAmountRequest(BaseModel):
    amount: Any


class DiscountRequest(BaseModel):
    pricing_id: Optional[int] = None
    amount: Any = None


class DiscountPreviewRequest(BaseModel):
    academic_year_id: int
    student_id: int
    pricing_id: Optional[int] = None
    amount: Any = None


# ── Response ─────────────────────────────────────────────────
class DeskStateResponse(BaseModel):
    session: DeskSession
    summary: Optional[FinancialSummary] = None
    validation: Optional[BatchValidation] = None
    discount: Optional[DiscountValidation] = None
    receipt: Optional[ReceiptSummary] = None
    last_commit: Optional[CommitResult] = None
    notices: List[Notice] = []
