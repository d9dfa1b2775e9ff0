import asyncio
from datetime import datetime

import httpx

from schoolcash.schemas.payments import CommitContext, CommitState, MethodSplit
from schoolcash.services.commit_service import (
    ALREADY_RUNNING,
    NO_CASH_SESSION,
    PaymentCommitOrchestrator,
)


NOW = datetime(2025, 11, 1, 10, 30, 0)


def orchestrator_for(backend):
    return PaymentCommitOrchestrator(backend.api(), clock=lambda: NOW)


def two_installments():
    return (
        [11, 12],
        {11: 6_000_000, 12: 1_000_000},
        {
            11: [MethodSplit(method_id=1, amount=4_000_000), MethodSplit(method_id=2, amount=2_000_000)],
            12: [MethodSplit(method_id=1, amount=1_000_000)],
        },
    )


def context(cash_session):
    return CommitContext(student_id=1, user_id=3, cash_register_session=cash_session)


def test_commit_writes_transaction_then_payment(backend, cash_session):
    selected, allocations, splits = two_installments()

    result = asyncio.run(orchestrator_for(backend).commit(selected, allocations, splits, context(cash_session)))

    assert result.success
    assert result.committed_count == 2
    assert [i.state for i in result.installments] == [CommitState.payment_created] * 2

    posts = [(p, b) for m, p, b in backend.requests if m == "POST"]
    assert [p for p, _ in posts] == ["/api/transaction", "/api/payment", "/api/transaction", "/api/payment"]

    transaction_body = posts[0][1]
    assert transaction_body == {
        "user_id": 3,
        "cash_register_session_id": 7,
        "transaction_date": "2025-11-01 10:30:00",
        "total_amount": "60000.00",
        "transaction_type": "encaissement",
    }

    payment_body = posts[1][1]
    assert payment_body["transaction_id"] == result.transactions[0].id
    assert payment_body["cash_register_id"] == 4
    assert payment_body["cashier_id"] == 3
    assert payment_body["amount"] == "60000.00"
    assert payment_body["methods"] == [
        {"id": 1, "montant": "40000.00"},
        {"id": 2, "montant": "20000.00"},
    ]


def test_commit_refreshes_transactions_and_payments(backend, cash_session):
    selected, allocations, splits = two_installments()

    result = asyncio.run(orchestrator_for(backend).commit(selected, allocations, splits, context(cash_session)))

    assert result.refreshed
    latest_ids = {p.id for p in result.latest_payments}
    assert {p.id for p in result.payments} <= latest_ids
    assert len(result.latest_transactions) == 4


def test_failed_payment_is_compensated_and_earlier_ones_kept(backend, cash_session):
    backend.fail["POST /api/payment"] = [None, 500]
    selected, allocations, splits = two_installments()

    result = asyncio.run(orchestrator_for(backend).commit(selected, allocations, splits, context(cash_session)))

    assert not result.success
    assert result.error == "Could not create the payment for installment 12"

    first, second = result.installments
    assert first.state == CommitState.payment_created
    assert second.state == CommitState.compensated
    assert second.is_failed

    deletes = backend.calls("DELETE")
    assert [p for _, p, _ in deletes] == [f"/api/transaction/{second.transaction_id}"]

    assert [t.id for t in result.transactions] == [first.transaction_id]
    assert [p.id for p in result.payments] == [first.payment_id]
    assert result.refreshed
    assert second.transaction_id not in {t.id for t in result.latest_transactions}


def test_failed_compensation_leaves_the_installment_failed(backend, cash_session):
    backend.fail["POST /api/payment"] = 500
    backend.fail["DELETE /api/transaction/*"] = 500

    result = asyncio.run(orchestrator_for(backend).commit(
        [11], {11: 6_000_000}, {11: [MethodSplit(method_id=1, amount=6_000_000)]}, context(cash_session),
    ))

    assert not result.success
    assert result.installments[0].state == CommitState.failed
    assert len(backend.calls("DELETE")) == 1
    # Orphan transaction stays visible for the accountant
    assert [t.id for t in result.transactions] == [result.installments[0].transaction_id]
    assert not result.refreshed
    assert backend.calls("GET") == []


def test_failed_transaction_stops_before_any_payment(backend, cash_session):
    backend.fail["POST /api/transaction"] = 503
    selected, allocations, splits = two_installments()

    result = asyncio.run(orchestrator_for(backend).commit(selected, allocations, splits, context(cash_session)))

    assert not result.success
    assert result.installments[0].state == CommitState.failed
    assert result.installments[1].state == CommitState.pending
    assert backend.calls("POST", "/api/payment") == []
    assert backend.calls("DELETE") == []


def test_refresh_failure_does_not_fail_the_commit(backend, cash_session):
    backend.fail["GET /api/payment"] = 500

    result = asyncio.run(orchestrator_for(backend).commit(
        [11], {11: 6_000_000}, {11: [MethodSplit(method_id=1, amount=6_000_000)]}, context(cash_session),
    ))

    assert result.success
    assert not result.refreshed
    assert result.latest_payments is None


def test_second_commit_while_in_flight_is_rejected(backend, cash_session):
    orchestrator = orchestrator_for(backend)
    orchestrator.in_flight = True

    result = asyncio.run(orchestrator.commit([11], {11: 100}, {}, context(cash_session)))

    assert result.rejected
    assert result.error == ALREADY_RUNNING
    assert backend.requests == []


def test_in_flight_is_held_during_the_run_and_released_after(backend, cash_session):
    seen = []
    running = []
    handler = backend.handler

    def spying_handler(request):
        seen.append(running[0].in_flight)
        return handler(request)

    backend.handler = spying_handler
    orchestrator = orchestrator_for(backend)
    running.append(orchestrator)
    asyncio.run(orchestrator.commit(
        [11], {11: 6_000_000}, {11: [MethodSplit(method_id=1, amount=6_000_000)]}, context(cash_session),
    ))

    assert seen and all(seen)
    assert orchestrator.in_flight is False


def test_commit_without_cash_session_is_rejected(backend):
    orchestrator = orchestrator_for(backend)

    result = asyncio.run(orchestrator.commit([11], {11: 100}, {}, CommitContext(student_id=1, user_id=3)))

    assert result.rejected
    assert result.error == NO_CASH_SESSION
    assert backend.requests == []


def test_payment_saved_with_unreadable_reply_is_not_rolled_back(backend, cash_session):
    backend.replies["POST /api/payment"] = lambda record: httpx.Response(
        201, json={"id": record["id"], "message": "created"},
    )
    selected, allocations, splits = two_installments()

    result = asyncio.run(orchestrator_for(backend).commit(selected, allocations, splits, context(cash_session)))

    assert backend.calls("DELETE") == []
    assert not result.success
    assert result.error == "The payment for installment 11 was recorded but the backend reply could not be read"

    first, second = result.installments
    assert first.state == CommitState.payment_created
    assert first.payment_id == 1002
    assert second.state == CommitState.pending
    assert len(backend.calls("POST", "/api/transaction")) == 1

    # The refresh brings the saved record back into the result
    assert result.refreshed
    assert [p.id for p in result.payments] == [1002]
    assert result.payments[0].transaction_id == first.transaction_id
    assert [t.id for t in result.transactions] == [first.transaction_id]


def test_empty_success_reply_still_counts_as_saved(backend, cash_session):
    backend.replies["POST /api/payment"] = lambda record: httpx.Response(201)

    result = asyncio.run(orchestrator_for(backend).commit(
        [11], {11: 6_000_000}, {11: [MethodSplit(method_id=1, amount=6_000_000)]}, context(cash_session),
    ))

    assert backend.calls("DELETE") == []
    assert result.installments[0].state == CommitState.payment_created
    assert result.installments[0].payment_id == 1002
    assert result.committed_count == 1
