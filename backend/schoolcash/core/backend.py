# ============================================================
# schoolcash/core/backend.py
#
# The school backend owns every record the desk reads or writes.
# SchoolAPI is a small typed wrapper around httpx.AsyncClient:
#
#   reads   → students, registrations, pricing, installments,
#             payments, transactions, payment methods
#   writes  → POST /api/transaction, POST /api/payment
#   undo    → DELETE /api/transaction/{id}  (compensation only)
#
# Any non-2xx answer or network failure raises BackendError.
# delete_transaction is the exception: it reports success as a
# bool because a failed compensation must never escalate.
# ============================================================

from typing import Any, List, Optional, Type, TypeVar

import httpx
import logging
from pydantic import BaseModel, ValidationError

from schoolcash.core.config import settings
from schoolcash.schemas.school import (
    CashRegisterSession,
    Classe,
    Installment,
    Level,
    Payment,
    PaymentMethod,
    Pricing,
    Registration,
    SchoolSnapshot,
    Student,
    Transaction,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class BackendError(Exception):
    """
    The school backend refused a call or could not be reached.

    `accepted` is True when the backend answered 2xx but the body could
    not be read: the write went through, only its echo is unusable.
    `body` then holds whatever was decoded.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        detail: Any = None,
        accepted: bool = False,
        body: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail
        self.accepted = accepted
        self.body = body


def _unwrap(body: Any) -> Any:
    # Some endpoints answer {"data": [...]} instead of the bare list
    if isinstance(body, dict) and "data" in body and "id" not in body:
        return body["data"]
    return body


class SchoolAPI:
    """
    Async client for the school backend.
    Pass `client` to reuse a pool or to inject httpx.MockTransport in tests.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        token = token if token is not None else settings.SCHOOL_API_TOKEN
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        if client is None:
            client = httpx.AsyncClient(
                base_url=base_url or settings.SCHOOL_API_BASE_URL,
                timeout=timeout or settings.HTTP_TIMEOUT_SECONDS,
                headers=headers,
            )
        else:
            client.headers.update(headers)
        self._client = client

    async def __aenter__(self) -> "SchoolAPI":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Raw request ──────────────────────────────────────────
    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> Any:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise BackendError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            try:
                detail = response.json()
            except ValueError:
                detail = response.text
            raise BackendError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
                detail=detail,
            )

        if not response.content:
            return None
        try:
            return _unwrap(response.json())
        except ValueError as e:
            raise BackendError(
                f"{method} {path} returned invalid JSON",
                status_code=response.status_code,
                accepted=True,
            ) from e

    def _parse(self, model: Type[M], data: Any, path: str) -> M:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise BackendError(
                f"{path} returned an unexpected {model.__name__}",
                detail=e.errors(),
                accepted=True,
                body=data,
            ) from e

    async def _list(self, path: str, model: Type[M]) -> List[M]:
        rows = await self._request("GET", path)
        return [self._parse(model, row, path) for row in (rows or [])]

    # ── Reads ────────────────────────────────────────────────
    async def list_students(self) -> List[Student]:
        return await self._list("/api/student", Student)

    async def list_registrations(self) -> List[Registration]:
        return await self._list("/api/registration", Registration)

    async def list_classes(self) -> List[Classe]:
        return await self._list("/api/classe", Classe)

    async def list_levels(self) -> List[Level]:
        return await self._list("/api/level", Level)

    async def list_pricing(self) -> List[Pricing]:
        return await self._list("/api/pricing", Pricing)

    async def list_installments(self) -> List[Installment]:
        return await self._list("/api/installment", Installment)

    async def list_payments(self) -> List[Payment]:
        return await self._list("/api/payment", Payment)

    async def list_transactions(self) -> List[Transaction]:
        return await self._list("/api/transaction", Transaction)

    async def list_payment_methods(self) -> List[PaymentMethod]:
        return await self._list("/api/paymentMethod", PaymentMethod)

    async def get_cash_register_session(self, session_id: int) -> CashRegisterSession:
        data = await self._request("GET", f"/api/cashRegisterSession/{session_id}")
        return self._parse(CashRegisterSession, data, "/api/cashRegisterSession")

    async def load_snapshot(self, academic_year_id: int) -> SchoolSnapshot:
        """Pull every collection the desk needs, fresh, in one go."""
        return SchoolSnapshot(
            academic_year_id=academic_year_id,
            students=await self.list_students(),
            registrations=await self.list_registrations(),
            classes=await self.list_classes(),
            levels=await self.list_levels(),
            pricing=await self.list_pricing(),
            installments=await self.list_installments(),
            payments=await self.list_payments(),
            transactions=await self.list_transactions(),
            payment_methods=await self.list_payment_methods(),
        )

    # ── Writes ───────────────────────────────────────────────
    async def create_transaction(self, payload: dict) -> Transaction:
        data = await self._request("POST", "/api/transaction", json=payload)
        return self._parse(Transaction, data, "/api/transaction")

    async def create_payment(self, payload: dict) -> Payment:
        data = await self._request("POST", "/api/payment", json=payload)
        return self._parse(Payment, data, "/api/payment")

    async def delete_transaction(self, transaction_id: int) -> bool:
        try:
            await self._request("DELETE", f"/api/transaction/{transaction_id}")
            return True
        except BackendError as e:
            logger.error(f"Could not delete transaction {transaction_id}: {e}")
            return False

    # ── Health check ─────────────────────────────────────────
    async def check_connection(self) -> bool:
        try:
            await self._request("GET", "/api/paymentMethod")
            return True
        except BackendError as e:
            logger.error(f"School backend health check failed: {e}")
            return False
