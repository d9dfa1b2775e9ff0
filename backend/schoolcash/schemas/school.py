# ============================================================
# schoolcash/schemas/school.py
#
# Records owned by the school backend, as the desk receives them.
# The desk never writes these shapes except through the backend
# client (transactions and payments).
#
# Money fields use WireAmount: the backend sends decimal strings,
# we keep integer cents. A malformed amount counts as 0.
# ============================================================

from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_validator
from typing import Optional, List
from datetime import date, datetime

from schoolcash.core.money import WireAmount


class SchoolRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class AssignmentType(SchoolRecord):
    id: int
    label: str = ""


class Student(SchoolRecord):
    id: int
    assignment_type_id: int                 # pricing tier (boarder, day student...)
    registration_number: str = ""
    name: str = ""
    first_name: str = ""

    @field_validator("registration_number", "name", "first_name", mode="before")
    @classmethod
    def _null_as_empty(cls, value):
        return "" if value is None else value

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.name}".strip()


class Classe(SchoolRecord):
    id: int
    level_id: int
    label: str = ""


class Level(SchoolRecord):
    id: int
    label: str = ""


class Registration(SchoolRecord):
    id: int
    student_id: int
    academic_year_id: int
    class_id: int
    classe: Optional[Classe] = None


class FeeType(SchoolRecord):
    id: int
    label: str = ""


class Pricing(SchoolRecord):
    """A fee line (tuition, registration fee...) for one tier/year/level."""
    id: int
    assignment_type_id: int
    academic_years_id: int
    level_id: int
    fee_type_id: Optional[int] = None
    label: str = ""
    amount: WireAmount = 0
    fee_type: Optional[FeeType] = None

    @property
    def display_label(self) -> str:
        if self.fee_type and self.fee_type.label:
            return self.fee_type.label
        return self.label or f"Pricing #{self.id}"


class Installment(SchoolRecord):
    id: int
    pricing_id: int
    amount_due: WireAmount = 0
    due_date: date
    status: str = ""

    @field_validator("due_date", mode="before")
    @classmethod
    def _date_part(cls, value):
        # Backend sends either "2025-10-01" or "2025-10-01 00:00:00"
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str):
            return value.strip()[:10]
        return value


class PaymentMethod(SchoolRecord):
    id: int
    name: str = Field(default="", validation_alias=AliasChoices("name", "label"))
    is_principal: bool = Field(default=False, validation_alias=AliasChoices("is_principal", "isPrincipal"))


class MethodPivot(SchoolRecord):
    montant: WireAmount = 0


class PaymentMethodLine(SchoolRecord):
    """A payment method as attached to a committed payment (pivot holds the sub-amount)."""
    id: int
    name: str = ""
    pivot: Optional[MethodPivot] = None

    @property
    def amount(self) -> int:
        return self.pivot.montant if self.pivot else 0


class Payment(SchoolRecord):
    id: int
    student_id: int
    installment_id: int
    cash_register_id: Optional[int] = None
    cashier_id: Optional[int] = None
    transaction_id: Optional[int] = None
    amount: WireAmount = 0
    payment_methods: List[PaymentMethodLine] = []
    created_at: Optional[datetime] = None


class Transaction(SchoolRecord):
    id: int
    user_id: Optional[int] = None
    cash_register_session_id: Optional[int] = None
    transaction_date: Optional[str] = None
    total_amount: WireAmount = 0
    transaction_type: str = ""


class CashRegister(SchoolRecord):
    id: int
    cash_register_number: str = ""


class CashRegisterSession(SchoolRecord):
    id: int
    user_id: int
    cash_register: CashRegister


# ── Snapshot ─────────────────────────────────────────────────
class SchoolSnapshot(BaseModel):
    """
    Read-only view of the collections the desk works from.
    Rebuilt from the backend; never patched in place by the core.
    """
    academic_year_id: int
    students: List[Student] = []
    registrations: List[Registration] = []
    classes: List[Classe] = []
    levels: List[Level] = []
    pricing: List[Pricing] = []
    installments: List[Installment] = []
    payments: List[Payment] = []
    transactions: List[Transaction] = []
    payment_methods: List[PaymentMethod] = []

    def find_student(self, student_id: int) -> Optional[Student]:
        return next((s for s in self.students if s.id == student_id), None)

    def find_student_by_registration_number(self, number: str) -> Optional[Student]:
        number = (number or "").strip().casefold()
        if not number:
            return None
        return next((s for s in self.students if s.registration_number.strip().casefold() == number), None)

    def default_method_id(self) -> int:
        """The principal payment method, else the first one, else 0."""
        principal = next((m for m in self.payment_methods if m.is_principal), None)
        if principal:
            return principal.id
        return self.payment_methods[0].id if self.payment_methods else 0
