import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from main import app, get_ai_client, get_proof_storage
from models import Profile, User
from storage import ProofStorage


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def client(tmp_path, session_factory):
    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_proof_storage] = lambda: ProofStorage(
        root=tmp_path, base_url="http://files.test"
    )
    app.dependency_overrides[get_ai_client] = lambda: None
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()


def signup(client: TestClient, email: str) -> dict[str, str]:
    response = client.post(
        "/auth/signup", json={"email": email, "password": "correct horse"}
    )
    assert response.status_code == 201
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def make_admin(session_factory, email: str) -> None:
    with session_factory() as db:
        user = db.query(User).filter(User.email == email).one()
        db.get(Profile, user.id).is_admin = True
        db.commit()


def test_signup_login_and_profile(client) -> None:
    headers = signup(client, "Ana@Example.com")
    me = client.get("/me", headers=headers).json()
    assert me["is_premium"] is False
    assert me["premium_type"] == "free"
    assert me["is_admin"] is False

    response = client.post(
        "/auth/login", json={"email": "ana@example.com", "password": "correct horse"}
    )
    assert response.status_code == 200
    assert response.json()["token_type"] == "bearer"


def test_duplicate_signup_and_bad_login(client) -> None:
    signup(client, "ana@example.com")
    duplicate = client.post(
        "/auth/signup", json={"email": "ana@example.com", "password": "another one"}
    )
    assert duplicate.status_code == 400

    response = client.post(
        "/auth/login", json={"email": "ana@example.com", "password": "wrong password"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"


def test_requests_without_token_are_rejected(client) -> None:
    assert client.get("/me").status_code == 401
    assert client.put("/budget", json={"amount": "100", "period": "monthly"}).status_code == 401
    bogus = {"Authorization": "Bearer not-a-token"}
    assert client.get("/me", headers=bogus).status_code == 401


def test_budget_and_expenses_feed_summary(client) -> None:
    headers = signup(client, "ana@example.com")
    saved = client.put(
        "/budget", json={"amount": "₱5,000", "period": "monthly"}, headers=headers
    )
    assert saved.status_code == 200
    assert saved.json()["budget"]["amount_cents"] == 500_000

    for amount in ("1,000", 2000):
        added = client.post(
            "/expenses",
            json={"amount": amount, "category": "food & dining"},
            headers=headers,
        )
        assert added.status_code == 201
        assert added.json()["message"] == "Expense added"
        assert added.json()["expense"]["category"] == "Food & Dining"

    summary = client.get("/budget/summary", headers=headers).json()
    assert summary["total_spent_cents"] == 300_000
    assert summary["remaining_cents"] == 200_000
    assert summary["percentage_used"] == pytest.approx(60)
    assert len(summary["expenses"]) == 2

    categories = client.get("/charts/categories", headers=headers).json()
    assert categories[0]["name"] == "Food & Dining"
    assert categories[0]["amount_cents"] == 300_000

    series = client.get("/charts/spending?days=7", headers=headers).json()
    assert len(series) == 7
    assert series[-1]["amount_cents"] == 300_000


def test_invalid_expense_input_is_rejected(client) -> None:
    headers = signup(client, "ana@example.com")
    for payload in (
        {"amount": "abc", "category": "Other"},
        {"amount": "0", "category": "Other"},
        {"amount": "10", "category": "   "},
    ):
        response = client.post("/expenses", json=payload, headers=headers)
        assert response.status_code == 400
    assert client.get("/expenses", headers=headers).json()["items"] == []
    assert client.get("/charts/spending?days=10", headers=headers).status_code == 400


def test_delete_only_touches_own_expenses(client) -> None:
    ana = signup(client, "ana@example.com")
    ben = signup(client, "ben@example.com")
    expense = client.post(
        "/expenses", json={"amount": "50", "category": "Other"}, headers=ben
    ).json()["expense"]

    assert client.delete(f"/expenses/{expense['id']}", headers=ana).status_code == 200
    assert len(client.get("/expenses", headers=ben).json()["items"]) == 1

    assert client.delete(f"/expenses/{expense['id']}", headers=ben).status_code == 200
    assert client.get("/expenses", headers=ben).json()["items"] == []


def test_free_user_sees_locked_insights(client) -> None:
    headers = signup(client, "ana@example.com")
    body = client.get("/insights", headers=headers).json()
    assert body["locked"] is True
    assert body["source"] == "sample"
    assert len(body["insights"]) == 3


def test_premium_submission_requires_proof(client) -> None:
    headers = signup(client, "ana@example.com")
    response = client.post("/premium/requests", headers=headers)
    assert response.status_code == 400
    assert client.get("/premium/request", headers=headers).json()["request"] is None


def test_premium_approval_flow(client, session_factory) -> None:
    user = signup(client, "ana@example.com")
    admin = signup(client, "admin@example.com")
    make_admin(session_factory, "admin@example.com")

    submitted = client.post(
        "/premium/requests",
        files={"payment_proof": ("gcash.png", b"\x89PNGproof", "image/png")},
        headers=user,
    )
    assert submitted.status_code == 201
    request = submitted.json()["request"]
    assert request["status"] == "pending"
    assert request["amount_paid_cents"] == 19_900
    pending = client.get("/premium/request", headers=user).json()["request"]
    assert pending["id"] == request["id"]

    assert client.get("/admin/premium-requests", headers=user).status_code == 403
    queue = client.get("/admin/premium-requests", headers=admin).json()["items"]
    assert [(r["id"], r["user_email"]) for r in queue] == [
        (request["id"], "ana@example.com")
    ]

    approve_url = f"/admin/premium-requests/{request['id']}/approve"
    approved = client.post(approve_url, headers=admin)
    assert approved.status_code == 200
    assert approved.json()["request"]["status"] == "approved"
    assert client.post(approve_url, headers=admin).status_code == 409
    reject_url = f"/admin/premium-requests/{request['id']}/reject"
    assert client.post(reject_url, headers=admin).status_code == 409
    assert client.post("/admin/premium-requests/999/approve", headers=admin).status_code == 404

    me = client.get("/me", headers=user).json()
    assert me["is_premium"] is True
    assert me["premium_type"] == "lifetime"

    insights = client.get("/insights", headers=user).json()
    assert insights["locked"] is False
    assert insights["source"] == "fallback"
    assert len(insights["insights"]) == 4


def test_admin_manual_downgrade(client, session_factory) -> None:
    user = signup(client, "ana@example.com")
    admin = signup(client, "admin@example.com")
    make_admin(session_factory, "admin@example.com")
    user_id = client.get("/me", headers=user).json()["user_id"]

    assert client.post(f"/admin/users/{user_id}/upgrade", headers=user).status_code == 403
    upgraded = client.post(f"/admin/users/{user_id}/upgrade", headers=admin)
    assert upgraded.json()["profile"]["is_premium"] is True
    downgraded = client.post(f"/admin/users/{user_id}/downgrade", headers=admin)
    assert downgraded.json()["profile"]["premium_type"] == "free"
    assert client.get("/me", headers=user).json()["is_premium"] is False


def test_add_expense_keeps_typed_category_and_offers_suggestion(client) -> None:
    headers = signup(client, "ana@example.com")
    body = client.post(
        "/expenses", json={"amount": "80", "category": "Traval"}, headers=headers
    ).json()
    assert body["expense"]["category"] == "Traval"
    assert body["suggested_category"] == "Travel"

    exact = client.post(
        "/expenses", json={"amount": "80", "category": "travel"}, headers=headers
    ).json()
    assert exact["expense"]["category"] == "Travel"
    assert exact["suggested_category"] is None
