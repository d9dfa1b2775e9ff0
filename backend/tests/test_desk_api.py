import pytest
from fastapi.testclient import TestClient

from schoolcash.api.deps import get_school_api
from schoolcash.main import app


@pytest.fixture
def client(backend):
    api = backend.api()
    app.dependency_overrides[get_school_api] = lambda: api
    yield TestClient(app)
    app.dependency_overrides.clear()


def open_desk(client, **extra):
    body = {"academic_year_id": 2025, "user_id": 3, "student_id": 1, "cash_register_session_id": 7}
    body.update(extra)
    response = client.post("/api/v1/desk/sessions", json=body)
    assert response.status_code == 201
    return response.json()["data"]


def test_open_desk_returns_summary_with_decimal_strings(client):
    state = open_desk(client)

    summary = state["summary"]
    assert summary["total_due"] == "125000.00"
    assert summary["total_paid"] == "25000.00"
    assert summary["total_remaining"] == "100000.00"
    assert summary["applicable_pricing"][0]["amount"] == "100000.00"
    assert state["session"]["cash_register_session"]["cash_register"]["id"] == 4
    assert state["validation"]["can_proceed"] is False


def test_full_payment_flow(client, backend):
    desk_id = open_desk(client)["session"]["id"]
    base = f"/api/v1/desk/sessions/{desk_id}"

    state = client.post(f"{base}/toggle", json={"installment_id": 11}).json()["data"]
    assert state["session"]["allocations"] == {"11": "60000.00"}

    client.post(f"{base}/amount", json={"installment_id": 11, "amount": "50000"})
    client.post(f"{base}/methods", json={"installment_id": 11, "method_id": 2})
    client.patch(f"{base}/methods/0", json={"installment_id": 11, "field": "amount", "value": "30000"})
    state = client.patch(
        f"{base}/methods/1", json={"installment_id": 11, "field": "amount", "value": "20000"},
    ).json()["data"]
    assert [m["amount"] for m in state["session"]["method_splits"]["11"]] == ["30000.00", "20000.00"]

    state = client.post(f"{base}/given-amount", json={"amount": "55000"}).json()["data"]
    assert state["validation"]["can_proceed"] is True
    assert state["validation"]["change_amount"] == "5000.00"

    response = client.post(f"{base}/submit")
    body = response.json()
    assert response.status_code == 200
    assert body["success"] is True
    assert body["message"] == "1 payment(s) recorded"

    receipt = body["data"]["receipt"]
    assert receipt["total_paid"] == "50000.00"
    assert receipt["change_amount"] == "5000.00"
    assert receipt["receipt_number"].startswith("REC/")
    assert {m["name"] for m in receipt["methods"]} == {"Cash", "Mobile Money"}
    assert body["data"]["summary"]["total_paid"] == "75000.00"
    assert body["data"]["session"]["selected_installments"] == []

    payment_post = backend.calls("POST", "/api/payment")[0][2]
    assert payment_post["methods"] == [{"id": 1, "montant": "30000.00"}, {"id": 2, "montant": "20000.00"}]


def test_fully_paid_installment_is_refused_with_notice(client):
    desk_id = open_desk(client)["session"]["id"]

    body = client.post(f"/api/v1/desk/sessions/{desk_id}/toggle", json={"installment_id": 21}).json()

    assert body["success"] is False
    assert body["data"]["session"]["selected_installments"] == []
    assert body["data"]["notices"][0]["message"] == "This installment is already fully paid."


def test_discount_endpoint_reports_first_error(client):
    desk_id = open_desk(client)["session"]["id"]

    body = client.post(
        f"/api/v1/desk/sessions/{desk_id}/discount", json={"pricing_id": 1, "amount": "-10"},
    ).json()

    assert body["success"] is False
    assert body["message"] == "Discount amount cannot be negative."
    assert body["data"]["session"]["discount"] is None


def test_unknown_desk_is_404(client):
    response = client.get("/api/v1/desk/sessions/does-not-exist")

    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Desk session not found or already closed"}


def test_closed_desk_is_gone(client):
    desk_id = open_desk(client)["session"]["id"]

    assert client.delete(f"/api/v1/desk/sessions/{desk_id}").status_code == 200
    assert client.get(f"/api/v1/desk/sessions/{desk_id}").status_code == 404


def test_backend_down_on_open_is_502(client, backend):
    backend.fail["GET /api/student"] = 500

    response = client.post("/api/v1/desk/sessions", json={"academic_year_id": 2025, "user_id": 3})

    assert response.status_code == 502
    assert response.json()["success"] is False


def test_request_validation_uses_error_shape(client):
    response = client.post("/api/v1/desk/sessions", json={"academic_year_id": 2025})

    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Validation error"
    assert any("user_id" in line for line in body["detail"])


def test_discount_preview(client):
    response = client.post(
        "/api/v1/discounts/preview",
        json={"academic_year_id": 2025, "student_id": 1, "pricing_id": 1, "amount": "95000"},
    )

    body = response.json()
    assert body["success"] is True
    assert body["data"]["discount_amount"] == "95000.00"
    assert body["data"]["discount_percentage"] == "95.00"
    assert len(body["data"]["warnings"]) == 1


def test_discount_preview_for_unregistered_student_is_404(client):
    response = client.post(
        "/api/v1/discounts/preview",
        json={"academic_year_id": 2025, "student_id": 3, "pricing_id": 1, "amount": "10"},
    )
    assert response.status_code == 404


def test_health_reports_backend_state(client, backend):
    assert client.get("/health").status_code == 200

    backend.fail["GET /api/paymentMethod"] = 500
    assert client.get("/health").status_code == 503


def test_oversized_amount_is_refused_not_a_server_error(client):
    desk_id = open_desk(client)["session"]["id"]
    base = f"/api/v1/desk/sessions/{desk_id}"
    client.post(f"{base}/toggle", json={"installment_id": 11})

    response = client.post(f"{base}/amount", json={"installment_id": 11, "amount": "1e30"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["data"]["session"]["installment_errors"]["11"] == "Invalid amount: amount is too large."
    assert body["data"]["session"]["allocations"] == {"11": "60000.00"}

    assert client.post(f"{base}/given-amount", json={"amount": "9" * 30}).status_code == 200
    preview = client.post(
        "/api/v1/discounts/preview",
        json={"academic_year_id": 2025, "student_id": 1, "pricing_id": 1, "amount": "1e30"},
    )
    assert preview.status_code == 200
    assert preview.json()["success"] is False


def test_select_student_by_registration_number(client):
    desk_id = open_desk(client)["session"]["id"]
    url = f"/api/v1/desk/sessions/{desk_id}/student"

    body = client.post(url, json={"registration_number": "MAT-002"}).json()
    assert body["success"] is True
    assert body["data"]["session"]["student_id"] == 2
    assert body["data"]["summary"]["student_id"] == 2

    body = client.post(url, json={"registration_number": "MAT-404"}).json()
    assert body["success"] is False
    assert body["data"]["session"]["student_id"] == 2


def test_select_student_needs_an_id_or_registration_number(client):
    desk_id = open_desk(client)["session"]["id"]

    response = client.post(f"/api/v1/desk/sessions/{desk_id}/student", json={"registration_number": "  "})

    assert response.status_code == 422
    assert response.json()["success"] is False
