from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from app.core.config import settings
from app.core.database import get_db
from app.core.schema import get_schema_capabilities
from app.core.security import get_branch_scope, get_current_user_id
from app.main import app


@pytest.fixture
def client(db, capabilities):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_schema_capabilities] = lambda: capabilities
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def signed_in(client, scope, seed):
    app.dependency_overrides[get_branch_scope] = lambda: scope
    app.dependency_overrides[get_current_user_id] = lambda: seed.user_id
    return client


def token_for(**claims):
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_create_transfer(signed_in, seed, balance_of):
    response = signed_in.post("/api/v1/finance/transfers", json={
        "from_account_id": seed.cash_id,
        "to_account_id": seed.bank_id,
        "amount": "125.50",
        "transfer_date": "2026-03-02",
    })

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "posted"
    assert Decimal(body["amount"]) == Decimal("125.50")
    assert balance_of(seed.cash_id) == Decimal("874.50")

    accounts = signed_in.get("/api/v1/finance/accounts").json()
    assert {a["id"]: Decimal(a["balance"]) for a in accounts}[seed.bank_id] == Decimal("625.50")


def test_engine_errors_map_to_status_and_kind(signed_in, seed):
    response = signed_in.post("/api/v1/finance/transfers", json={
        "from_account_id": seed.cash_id,
        "to_account_id": seed.cash_id,
        "amount": "10.00",
    })

    assert response.status_code == 400
    assert response.json()["kind"] == "bad_request"
    assert response.json()["detail"]

    missing = signed_in.get("/api/v1/finance/accounts/9999")
    assert missing.status_code == 404
    assert missing.json()["kind"] == "not_found"


def test_invalid_payload_is_rejected_before_the_engine(signed_in, seed):
    response = signed_in.post("/api/v1/finance/transfers", json={
        "from_account_id": seed.cash_id,
        "to_account_id": seed.bank_id,
        "amount": "-5",
    })
    assert response.status_code == 422


def test_patch_only_touches_sent_fields(signed_in, seed, balance_of):
    created = signed_in.post("/api/v1/finance/transfers", json={
        "from_account_id": seed.cash_id,
        "to_account_id": seed.bank_id,
        "amount": "100.00",
        "note": "float",
    }).json()

    response = signed_in.patch(f"/api/v1/finance/transfers/{created['id']}", json={"note": None})
    assert response.status_code == 200
    assert response.json()["note"] is None
    assert Decimal(response.json()["amount"]) == Decimal("100.00")
    assert balance_of(seed.cash_id) == Decimal("900.00")

    voided = signed_in.patch(f"/api/v1/finance/transfers/{created['id']}", json={"status": "void"})
    assert voided.json()["status"] == "void"
    assert balance_of(seed.cash_id) == Decimal("1000.00")


def test_customer_receipt_and_balance(signed_in, seed):
    response = signed_in.post("/api/v1/finance/customer-receipts", json={
        "customer_id": seed.customer_id,
        "account_id": seed.cash_id,
        "amount": "120.00",
    })
    assert response.status_code == 201

    balance = signed_in.get(f"/api/v1/finance/customers/{seed.customer_id}/balance").json()
    assert Decimal(balance["balance"]) == Decimal("180.00")
    assert balance["source"] == "balance_column"

    unpaid = signed_in.get("/api/v1/finance/customers/unpaid").json()
    assert [row["party_id"] for row in unpaid] == [seed.customer_id]

    deleted = signed_in.delete(f"/api/v1/finance/customer-receipts/{response.json()['id']}")
    assert deleted.json() == {"message": "Customer receipt deleted"}


def test_budget_charge_twice_returns_bad_request(signed_in, seed, expense):
    budget = signed_in.post("/api/v1/finance/expense-budgets", json={
        "expense_id": expense.id,
        "fixed_amount": "200.00",
    }).json()

    first = signed_in.post(f"/api/v1/finance/expense-budgets/{budget['id']}/charge",
                           json={"pay_date": "2026-03-05"})
    assert first.status_code == 201

    second = signed_in.post(f"/api/v1/finance/expense-budgets/{budget['id']}/charge",
                            json={"pay_date": "2026-03-20"})
    assert second.status_code == 400
    assert "already charged" in second.json()["detail"].lower()


def test_payroll_endpoints(signed_in, seed, employees):
    charged = signed_in.post("/api/v1/finance/payroll/charge", json={"period_date": "2026-03-31", "oper": "insert"})
    assert charged.json() == {"created": 2}

    runs = signed_in.get("/api/v1/finance/payroll", params={"period": "2026-03"}).json()
    line_id = runs[0]["lines"][0]["id"]

    paid = signed_in.post("/api/v1/finance/payroll/pay", json={
        "payroll_line_id": line_id,
        "account_id": seed.cash_id,
        "amount": "100.00",
    })
    assert paid.status_code == 201

    bad_period = signed_in.post("/api/v1/finance/payroll/delete", json={"mode": "period", "period": "03-2026"})
    assert bad_period.status_code == 422

    deleted = signed_in.post("/api/v1/finance/payroll/delete", json={"mode": "period", "period": "2026-03"})
    assert deleted.json() == {"deleted": 2}


def test_missing_token_is_unauthorized(client):
    assert client.get("/api/v1/finance/accounts").status_code == 401


def test_token_claims_build_the_scope(client, seed):
    headers = {"Authorization": f"Bearer {token_for(sub='1', branch_ids=[2])}"}
    accounts = client.get("/api/v1/finance/accounts", headers=headers).json()
    assert [a["id"] for a in accounts] == [seed.remote_id]

    forbidden = client.get(f"/api/v1/finance/accounts/{seed.cash_id}", headers=headers)
    assert forbidden.status_code == 403
    assert forbidden.json()["kind"] == "forbidden"


def test_token_without_branches_is_forbidden(client, seed):
    headers = {"Authorization": f"Bearer {token_for(sub='1')}"}
    assert client.get("/api/v1/finance/accounts", headers=headers).status_code == 403


def test_write_without_subject_is_unauthorized(client, seed):
    headers = {"Authorization": f"Bearer {token_for(branch_ids=[1])}"}
    response = client.post("/api/v1/finance/transfers", headers=headers, json={
        "from_account_id": seed.cash_id,
        "to_account_id": seed.bank_id,
        "amount": "10.00",
        "transfer_date": date(2026, 3, 2).isoformat(),
    })
    assert response.status_code == 401
    assert response.json()["kind"] == "unauthorized"
