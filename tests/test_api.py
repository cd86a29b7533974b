"""
Integration tests for the Loan Servicing API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from loan_servicing.api import create_app
from loan_servicing.api.dependencies import ServicingSystem, get_servicing_system


TERMS = {
    "principal": "10000.00",
    "annual_rate_percent": "12",
    "term_count": 12,
    "frequency": "monthly",
    "start_date": "2024-01-01",
}

WEEKLY_TERMS = {
    "principal": "1000",
    "annual_rate_percent": "0",
    "term_count": 4,
    "frequency": "weekly",
    "start_date": "2024-01-01",
}


@pytest.fixture
def client():
    """Create a test client backed by a fresh in-memory servicing system"""
    app = create_app()
    test_system = ServicingSystem()
    app.dependency_overrides[get_servicing_system] = lambda: test_system
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_loan(client, terms=WEEKLY_TERMS, client_id="client-1"):
    r = client.post("/loans", json={"client_id": client_id, "terms": terms})
    assert r.status_code == 201
    return r.json()


class TestHealthEndpoints:
    """Test basic health endpoint"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "healthy"
        assert data["service"] == "loan_servicing_api"


class TestSchedulePreview:
    """Test the loan calculator endpoint"""

    def test_preview(self, client):
        r = client.post("/loans/schedule/preview", json=TERMS)
        assert r.status_code == 200
        data = r.json()

        assert len(data["schedule"]) == 12
        first = data["schedule"][0]
        assert first["number"] == 1
        assert first["due_date"] == "2024-01-31"
        assert first["payment_amount"] == {"amount": "888.49", "currency": "DOP"}
        assert first["interest_portion"]["amount"] == "100.00"
        assert first["status"] == "pending"
        assert data["schedule"][-1]["balance_after"]["amount"] == "0.00"
        assert data["summary"]["installment_amount"]["amount"] == "888.49"
        assert data["summary"]["total_principal"]["amount"] == "10000.00"

    def test_preview_with_spanish_frequency_and_closing_costs(self, client):
        terms = dict(WEEKLY_TERMS, frequency="Semanal", closing_costs="200", currency="USD")
        r = client.post("/loans/schedule/preview", json=terms)
        assert r.status_code == 200
        data = r.json()

        assert [row["payment_amount"]["amount"] for row in data["schedule"]] == ["300.00"] * 4
        assert data["schedule"][0]["payment_amount"]["currency"] == "USD"
        assert data["summary"]["effective_rate_percent"] == "20.00"

    def test_preview_invalid_terms(self, client):
        terms = dict(TERMS, principal="0", frequency="yearly")
        r = client.post("/loans/schedule/preview", json=terms)
        assert r.status_code == 400
        detail = r.json()["detail"]

        assert "Principal must be greater than 0" in detail
        assert "Invalid payment frequency" in detail

    def test_preview_unsupported_currency(self, client):
        r = client.post("/loans/schedule/preview", json=dict(TERMS, currency="XYZ"))
        assert r.status_code == 400
        assert r.json()["detail"] == ["Unsupported currency: XYZ"]

    def test_preview_principal_above_maximum(self, client):
        r = client.post("/loans/schedule/preview", json=dict(TERMS, principal="1" + "0" * 26))
        assert r.status_code == 400
        assert r.json()["detail"] == ["Principal exceeds the maximum supported amount"]

    def test_preview_unrepresentable_schedule(self, client):
        terms = dict(TERMS, principal="1000000000000000", annual_rate_percent="1000000000000000", term_count=1)
        r = client.post("/loans/schedule/preview", json=terms)
        assert r.status_code == 400

    def test_preview_flat(self, client):
        terms = dict(TERMS, principal="1000", annual_rate_percent="20", term_count=3, amortization_type="flat")
        r = client.post("/loans/schedule/preview", json=terms)
        assert r.status_code == 200
        data = r.json()

        assert [row["payment_amount"]["amount"] for row in data["schedule"]] == ["400.00"] * 3
        assert data["summary"]["total_interest"]["amount"] == "200.00"

    def test_preview_fixed_payment_must_cover_principal(self, client):
        terms = dict(WEEKLY_TERMS, amortization_type="fixed_payment", fixed_amount="100")
        r = client.post("/loans/schedule/preview", json=terms)
        assert r.status_code == 400
        assert r.json()["detail"] == ["Fixed payment does not cover the financed amount"]

    def test_preview_unknown_amortization_type(self, client):
        r = client.post("/loans/schedule/preview", json=dict(TERMS, amortization_type="balloon"))
        assert r.status_code == 400
        assert r.json()["detail"] == ["Invalid amortization type"]


class TestLoanFlow:
    """End-to-end loan and payment tests"""

    def test_create_and_get_loan(self, client):
        loan = create_loan(client, TERMS)

        assert loan["status"] == "active"
        assert loan["client_id"] == "client-1"
        assert loan["principal"]["amount"] == "10000.00"
        assert loan["frequency"] == "monthly"
        assert len(loan["schedule"]) == 12

        r = client.get(f"/loans/{loan['id']}")
        assert r.status_code == 200
        assert r.json() == loan

    def test_create_loan_with_invalid_terms(self, client):
        r = client.post("/loans", json={"client_id": "client-1", "terms": dict(TERMS, term_count=0)})
        assert r.status_code == 400
        assert r.json()["detail"] == ["Term must be at least 1 installment"]

    def test_get_unknown_loan(self, client):
        r = client.get("/loans/missing")
        assert r.status_code == 404

        r = client.get("/loans/missing/receipts")
        assert r.status_code == 404

    def test_pay_installment(self, client):
        loan = create_loan(client)

        r = client.post(f"/loans/{loan['id']}/payments", json={
            "installment_number": 1,
            "with_penalty": True,
            "penalty_amount": "50"
        })
        assert r.status_code == 200
        data = r.json()

        assert data["loan"]["schedule"][0]["status"] == "paid"
        assert data["loan"]["total_paid"]["amount"] == "300.00"
        assert data["receipt"]["payment_amount"]["amount"] == "250.00"
        assert data["receipt"]["penalty"]["amount"] == "50.00"
        assert data["receipt"]["total_payment"]["amount"] == "300.00"
        assert data["receipt"]["remaining_balance"]["amount"] == "700.00"

    def test_pay_installment_twice(self, client):
        loan = create_loan(client)
        client.post(f"/loans/{loan['id']}/payments", json={"installment_number": 1})

        r = client.post(f"/loans/{loan['id']}/payments", json={"installment_number": 1})
        assert r.status_code == 409
        assert "already paid" in r.json()["detail"]

    def test_pay_unknown_installment(self, client):
        loan = create_loan(client)

        r = client.post(f"/loans/{loan['id']}/payments", json={"installment_number": 99})
        assert r.status_code == 404

    def test_pay_unknown_loan(self, client):
        r = client.post("/loans/missing/payments", json={"installment_number": 1})
        assert r.status_code == 404

    def test_custom_payment(self, client):
        loan = create_loan(client)

        r = client.post(f"/loans/{loan['id']}/payments/custom", json={
            "installment_number": 1,
            "amount": "100"
        })
        assert r.status_code == 200
        data = r.json()

        assert data["loan"]["schedule"][0]["status"] == "partial"
        assert data["receipt"]["is_partial_payment"] is True
        assert data["receipt"]["remaining_on_installment"]["amount"] == "150.00"
        assert data["receipt"]["full_installment_amount"]["amount"] == "250.00"

    def test_custom_overpayment_rejected(self, client):
        loan = create_loan(client)

        r = client.post(f"/loans/{loan['id']}/payments/custom", json={
            "installment_number": 1,
            "amount": "1000"
        })
        assert r.status_code == 400

    def test_custom_payment_invalid_amount(self, client):
        loan = create_loan(client)

        r = client.post(f"/loans/{loan['id']}/payments/custom", json={
            "installment_number": 1,
            "amount": "abc"
        })
        assert r.status_code == 400

    def test_receipts_and_payoff(self, client):
        loan = create_loan(client)
        for number in range(1, 5):
            r = client.post(f"/loans/{loan['id']}/payments", json={"installment_number": number})
            assert r.status_code == 200

        assert r.json()["loan"]["status"] == "paid"

        r = client.get(f"/loans/{loan['id']}/receipts")
        assert r.status_code == 200
        receipts = r.json()["receipts"]
        assert [receipt["installment_number"] for receipt in receipts] == [1, 2, 3, 4]
        assert receipts[-1]["remaining_balance"]["amount"] == "0.00"

    def test_custom_payment_above_maximum(self, client):
        loan = create_loan(client)

        r = client.post(f"/loans/{loan['id']}/payments/custom", json={
            "installment_number": 1,
            "amount": "1" + "0" * 26
        })
        assert r.status_code == 400

    def test_penalty_above_maximum(self, client):
        loan = create_loan(client)

        r = client.post(f"/loans/{loan['id']}/payments", json={
            "installment_number": 1,
            "with_penalty": True,
            "penalty_amount": "1" + "0" * 26
        })
        assert r.status_code == 400

        r = client.get(f"/loans/{loan['id']}/receipts")
        assert r.json()["receipts"] == []


class TestRescheduleLoan:
    """Test replacing the terms of a loan"""

    def test_reschedule(self, client):
        loan = create_loan(client)

        terms = dict(WEEKLY_TERMS, principal="1200", term_count=3, frequency="monthly",
                     amortization_type="fixed_profit", fixed_amount="300")
        r = client.put(f"/loans/{loan['id']}", json=terms)
        assert r.status_code == 200
        data = r.json()

        assert data["id"] == loan["id"]
        assert data["amortization_type"] == "fixed_profit"
        assert data["fixed_amount"] == {"amount": "300.00", "currency": "DOP"}
        assert [row["payment_amount"]["amount"] for row in data["schedule"]] == ["500.00"] * 3

        r = client.get(f"/loans/{loan['id']}")
        assert r.json() == data

    def test_reschedule_after_payment(self, client):
        loan = create_loan(client)
        client.post(f"/loans/{loan['id']}/payments", json={"installment_number": 1})

        r = client.put(f"/loans/{loan['id']}", json=dict(WEEKLY_TERMS, term_count=8))
        assert r.status_code == 400
        assert "cannot be rescheduled" in r.json()["detail"]

        assert len(client.get(f"/loans/{loan['id']}").json()["schedule"]) == 4

    def test_reschedule_invalid_terms(self, client):
        loan = create_loan(client)

        r = client.put(f"/loans/{loan['id']}", json=dict(WEEKLY_TERMS, principal="0"))
        assert r.status_code == 400
        assert r.json()["detail"] == ["Principal must be greater than 0"]

    def test_reschedule_unknown_loan(self, client):
        r = client.put("/loans/missing", json=WEEKLY_TERMS)
        assert r.status_code == 404
