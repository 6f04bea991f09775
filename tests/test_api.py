from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import auth
from auth import issue_identity_token
from config import get_settings
from database import Base, get_db, make_engine
from main import app
from models import Account, RecurringIncome, RecurringTransaction, RecurringType
from recurrence import CardBillingProcessor


def make_session():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


@pytest.fixture
def session():
    db = make_session()
    app.dependency_overrides[get_db] = lambda: db
    yield db
    app.dependency_overrides.clear()
    db.close()


@pytest.fixture
def client(session):
    return TestClient(app)


def _headers(user_id: str = "u1") -> dict[str, str]:
    return {"X-Identity-Token": issue_identity_token(user_id)}


def _with_cron_secret(monkeypatch, secret: str) -> None:
    settings = get_settings()
    patched = type(settings)(**{**vars(settings), "cron_secret": secret})
    monkeypatch.setattr(auth, "get_settings", lambda: patched)


def test_requests_without_identity_are_rejected(client):
    assert client.get("/api/accounts").status_code == 401
    response = client.get("/api/accounts", headers={"X-Identity-Token": "forged"})
    assert response.status_code == 401


def test_account_roundtrip_is_scoped_to_the_caller(client):
    created = client.post(
        "/api/accounts", json={"name": "Checking"}, headers=_headers()
    )
    assert created.status_code == 201
    assert created.json()["balance_cents"] == 0

    assert len(client.get("/api/accounts", headers=_headers()).json()) == 1
    assert client.get("/api/accounts", headers=_headers("u2")).json() == []


def test_day_of_month_outside_range_is_unprocessable(client, session):
    account = Account(user_id="u1", name="Checking")
    session.add(account)
    session.commit()

    response = client.post(
        "/api/recurring-transactions",
        json={
            "account_id": account.id,
            "type": "expense",
            "amount_cents": 1_000,
            "description": "Rent",
            "day_of_month": 29,
        },
        headers=_headers(),
    )
    assert response.status_code == 422


def test_unknown_account_is_not_found(client):
    response = client.post(
        "/api/recurring-income",
        json={
            "account_id": 999,
            "amount_cents": 1_000,
            "description": "Salary",
            "day_of_month": 1,
        },
        headers=_headers(),
    )
    assert response.status_code == 404


def test_process_endpoint_reports_per_item_results(client, session, monkeypatch):
    _with_cron_secret(monkeypatch, "s3cret")
    healthy = Account(user_id="u1", name="Checking")
    closed = Account(user_id="u1", name="Closed", is_active=False)
    session.add_all([healthy, closed])
    session.flush()
    for account in (healthy, closed):
        session.add(
            RecurringTransaction(
                user_id="u1",
                account_id=account.id,
                type=RecurringType.expense,
                amount_cents=1_000,
                description="Subscription",
                day_of_month=1,
                next_run_date=date(2000, 1, 1),
            )
        )
    session.commit()

    assert client.post("/api/recurring-transactions/process").status_code == 401
    wrong = {"Authorization": "Bearer nope"}
    assert (
        client.post("/api/recurring-transactions/process", headers=wrong).status_code
        == 401
    )

    response = client.post(
        "/api/recurring-transactions/process",
        headers={"Authorization": "Bearer s3cret"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["processed"] == 2
    statuses = sorted(item["status"] for item in body["results"])
    assert statuses == ["error", "success"]
    success = next(item for item in body["results"] if item["status"] == "success")
    assert success["transaction_id"]


def test_process_endpoints_open_without_configured_secret(client):
    response = client.post("/api/recurring-income/process")
    assert response.status_code == 200
    assert response.json() == {"processed": 0, "results": []}


def test_recalculate_balances_endpoint(client, session):
    account = Account(user_id="u1", name="Checking", balance_cents=123)
    session.add(account)
    session.commit()

    response = client.post("/api/accounts/recalculate-balances", headers=_headers())

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["results"] == [
        {
            "account_id": account.id,
            "account_name": "Checking",
            "old_balance_cents": 123,
            "new_balance_cents": 0,
            "difference_cents": -123,
        }
    ]


def test_deleting_billed_card_purchase_conflicts(client, session):
    account = client.post(
        "/api/accounts", json={"name": "Checking"}, headers=_headers()
    ).json()
    card = client.post(
        "/api/credit-cards",
        json={
            "name": "Visa",
            "last_four_digits": "9876",
            "billing_day": 1,
            "linked_account_id": account["id"],
        },
        headers=_headers(),
    ).json()
    purchase = client.post(
        f"/api/credit-cards/{card['id']}/transactions",
        json={"amount_cents": 500, "description": "Books", "date": "2026-10-02"},
        headers=_headers(),
    ).json()

    CardBillingProcessor(session).process_billing(date(2026, 11, 1))

    response = client.delete(
        f"/api/credit-cards/{card['id']}/transactions/{purchase['id']}",
        headers=_headers(),
    )
    assert response.status_code == 409


def test_contribution_to_foreign_goal_is_not_found(client):
    goal = client.post(
        "/api/goals",
        json={"name": "Bike", "target_cents": 50_000},
        headers=_headers("owner"),
    ).json()

    response = client.post(
        f"/api/goals/{goal['id']}/contributions",
        json={"amount_cents": 100, "date": "2026-10-19", "payment_method": "cash"},
        headers=_headers("someone-else"),
    )
    assert response.status_code == 404

    response = client.post(
        f"/api/goals/{goal['id']}/contributions",
        json={"amount_cents": 100, "date": "2026-10-19", "payment_method": "cash"},
        headers=_headers("owner"),
    )
    assert response.status_code == 201
    assert response.json()["payment_method"] == "cash"


def test_account_contribution_uses_snake_case_fields(client, session):
    account = client.post(
        "/api/accounts",
        json={"name": "Checking", "balance_cents": 10_000},
        headers=_headers(),
    ).json()
    goal = client.post(
        "/api/goals",
        json={"name": "Bike", "target_cents": 50_000},
        headers=_headers(),
    ).json()

    response = client.post(
        f"/api/goals/{goal['id']}/contributions",
        json={
            "amount_cents": 2_500,
            "date": "2026-10-19",
            "payment_method": "account",
            "source_id": account["id"],
        },
        headers=_headers(),
    )

    assert response.status_code == 201
    assert response.json()["payment_method"] == "account"
    accounts = client.get("/api/accounts", headers=_headers()).json()
    assert accounts[0]["balance_cents"] == 7_500


def test_patch_with_null_required_field_is_rejected(client, session):
    account = Account(user_id="u1", name="Checking")
    session.add(account)
    session.commit()
    income = client.post(
        "/api/recurring-income",
        json={
            "account_id": account.id,
            "amount_cents": 1_000,
            "description": "Salary",
            "day_of_month": 28,
        },
        headers=_headers(),
    ).json()

    response = client.patch(
        f"/api/recurring-income/{income['id']}",
        json={"description": None},
        headers=_headers(),
    )

    assert response.status_code == 400
    assert "description" in response.json()["detail"]
    stored = session.get(RecurringIncome, income["id"])
    session.refresh(stored)
    assert stored.description == "Salary"
