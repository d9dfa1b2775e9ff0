import json
import os
import sys
from pathlib import Path

import httpx
import pytest


# Ensure `import schoolcash...` resolves when tests run from repo root.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))


# Minimal defaults so settings can initialize in test environments.
os.environ.setdefault("SCHOOL_API_BASE_URL", "http://school.test")
os.environ.setdefault("ENVIRONMENT", "development")


YEAR = 2025


# ── Backend records, as the school API sends them ─────────────
def wire_collections():
    return {
        "student": [
            {"id": 1, "assignment_type_id": 1, "registration_number": "MAT-001",
             "name": "Kouassi", "first_name": "Aya"},
            {"id": 2, "assignment_type_id": 1, "registration_number": "MAT-002",
             "name": "Traore", "first_name": "Ali"},
            {"id": 3, "assignment_type_id": 1, "registration_number": "MAT-003",
             "name": "Bamba", "first_name": "Ines"},
        ],
        "registration": [
            {"id": 100, "student_id": 1, "academic_year_id": YEAR, "class_id": 10},
            {"id": 101, "student_id": 2, "academic_year_id": YEAR, "class_id": 10},
            # Student 3 is only registered for an older year
            {"id": 102, "student_id": 3, "academic_year_id": YEAR - 1, "class_id": 10},
        ],
        "classe": [
            {"id": 10, "level_id": 3, "label": "6eme A"},
        ],
        "level": [
            {"id": 3, "label": "6eme"},
        ],
        "pricing": [
            {"id": 1, "assignment_type_id": 1, "academic_years_id": YEAR, "level_id": 3,
             "fee_type_id": 1, "label": "Tuition", "amount": "100000.00",
             "fee_type": {"id": 1, "label": "Scolarite"}},
            {"id": 2, "assignment_type_id": 1, "academic_years_id": YEAR, "level_id": 3,
             "fee_type_id": 2, "label": "Registration", "amount": "25000.00",
             "fee_type": {"id": 2, "label": "Inscription"}},
            # Another tier: never applicable to the students above
            {"id": 3, "assignment_type_id": 2, "academic_years_id": YEAR, "level_id": 3,
             "label": "Boarding", "amount": "300000.00"},
        ],
        "installment": [
            {"id": 11, "pricing_id": 1, "amount_due": "60000.00", "due_date": "2025-10-01", "status": "pending"},
            {"id": 12, "pricing_id": 1, "amount_due": "40000.00", "due_date": "2026-01-15 00:00:00", "status": "pending"},
            {"id": 21, "pricing_id": 2, "amount_due": "25000.00", "due_date": "2025-09-15", "status": "paid"},
            {"id": 31, "pricing_id": 3, "amount_due": "300000.00", "due_date": "2025-09-15", "status": "pending"},
        ],
        "payment": [
            {"id": 501, "student_id": 1, "installment_id": 21, "transaction_id": 901, "amount": "25000.00",
             "payment_methods": [{"id": 1, "name": "Cash", "pivot": {"montant": "25000.00"}}]},
            # Same installment ids, other student: must not count for student 1
            {"id": 502, "student_id": 2, "installment_id": 11, "transaction_id": 902, "amount": "10000.00"},
        ],
        "transaction": [
            {"id": 901, "user_id": 3, "cash_register_session_id": 7, "total_amount": "25000.00",
             "transaction_type": "encaissement"},
            {"id": 902, "user_id": 3, "cash_register_session_id": 7, "total_amount": "10000.00",
             "transaction_type": "encaissement"},
        ],
        "paymentMethod": [
            {"id": 1, "name": "Cash", "isPrincipal": True},
            {"id": 2, "label": "Mobile Money"},
        ],
    }


CASH_SESSION = {"id": 7, "user_id": 3, "cash_register": {"id": 4, "cash_register_number": "C-01"}}


class FakeSchoolBackend:
    """
    In-memory school backend behind httpx.MockTransport.

    `fail` maps "METHOD /path" to a status code (or a list of codes,
    consumed one per call) to force errors on specific calls.
    `replies` maps "METHOD /path" to a function of the stored record that
    builds the answer, for writes that succeed with an odd reply.
    """

    def __init__(self, collections=None):
        self.collections = collections or wire_collections()
        self.requests = []
        self.fail = {}
        self.replies = {}
        self._next_id = 1000

    def _failure(self, key):
        code = self.fail.get(key)
        if isinstance(code, list):
            return code.pop(0) if code else None
        return code

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, body))

        key = f"{request.method} {path}"
        code = self._failure(key) or self._failure(f"{request.method} {path.rsplit('/', 1)[0]}/*")
        if code:
            return httpx.Response(code, json={"message": "refused"})

        resource = path.split("/")[2]
        if request.method == "GET" and resource == "cashRegisterSession":
            return httpx.Response(200, json={"data": CASH_SESSION})
        if request.method == "GET":
            return httpx.Response(200, json={"data": self.collections.get(resource, [])})
        if request.method == "POST":
            self._next_id += 1
            record = dict(body, id=self._next_id)
            if resource == "payment":
                record["payment_methods"] = [
                    {"id": m["id"], "name": "", "pivot": {"montant": m["montant"]}}
                    for m in body.get("methods", [])
                ]
            self.collections.setdefault(resource, []).append(record)
            if key in self.replies:
                return self.replies[key](record)
            return httpx.Response(201, json=record)
        if request.method == "DELETE":
            record_id = int(path.rsplit("/", 1)[1])
            rows = self.collections.get(resource, [])
            self.collections[resource] = [r for r in rows if r["id"] != record_id]
            return httpx.Response(204)
        return httpx.Response(405)

    def calls(self, method, prefix=""):
        return [(m, p, b) for m, p, b in self.requests if m == method and p.startswith(prefix)]

    def api(self):
        from schoolcash.core.backend import SchoolAPI

        client = httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler),
            base_url="http://school.test",
        )
        return SchoolAPI(client=client, token="test-token")


@pytest.fixture
def backend():
    return FakeSchoolBackend()


@pytest.fixture
def snapshot():
    from schoolcash.schemas.school import SchoolSnapshot

    data = wire_collections()
    return SchoolSnapshot(
        academic_year_id=YEAR,
        students=data["student"],
        registrations=data["registration"],
        classes=data["classe"],
        levels=data["level"],
        pricing=data["pricing"],
        installments=data["installment"],
        payments=data["payment"],
        transactions=data["transaction"],
        payment_methods=data["paymentMethod"],
    )


@pytest.fixture
def cash_session():
    from schoolcash.schemas.school import CashRegisterSession

    return CashRegisterSession.model_validate(CASH_SESSION)
