from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from database import Base
from models import BudgetPeriod, PremiumType, Profile, User
from schemas import BudgetIn, ExpenseIn
from services import (
    AuthError,
    BudgetService,
    ExpenseService,
    ValidationError,
    budget_progress,
)

TODAY = date(2026, 10, 18)  # a Sunday


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def make_user(session: Session, email: str = "ana@example.com") -> User:
    user = User(email=email, password_hash="x")
    user.profile = Profile(is_premium=False, premium_type=PremiumType.free)
    session.add(user)
    session.commit()
    return user


def add(session: Session, user_id: int, amount_cents: int, on: date, category="Other"):
    return ExpenseService(session, user_id).create(
        ExpenseIn(amount_cents=amount_cents, category=category, date=on)
    )


def test_monthly_budget_summary_totals_current_month() -> None:
    session = make_session()
    user = make_user(session)
    BudgetService(session, user.id).set_budget(
        BudgetIn(amount_cents=500_000, period=BudgetPeriod.monthly)
    )
    add(session, user.id, 100_000, date(2026, 10, 2))
    add(session, user.id, 200_000, date(2026, 10, 31))
    add(session, user.id, 999_900, date(2026, 9, 30))

    summary = BudgetService(session, user.id).summary(today=TODAY)
    assert summary.budget is not None
    assert summary.total_spent_cents == 300_000
    assert summary.remaining_cents == 200_000
    assert summary.percentage_used == 60
    assert summary.period.start == date(2026, 10, 1)
    assert summary.period.end == date(2026, 10, 31)
    assert [e.amount_cents for e in summary.expenses] == [200_000, 100_000]


def test_summary_without_budget_still_reports_spending() -> None:
    session = make_session()
    user = make_user(session)
    add(session, user.id, 50_000, date(2026, 10, 5))

    summary = BudgetService(session, user.id).summary(today=TODAY)
    assert summary.budget is None
    assert summary.total_spent_cents == 50_000
    assert summary.remaining_cents == 0
    assert summary.percentage_used == 0


def test_weekly_budget_only_counts_sunday_to_saturday() -> None:
    session = make_session()
    user = make_user(session)
    BudgetService(session, user.id).set_budget(
        BudgetIn(amount_cents=100_000, period=BudgetPeriod.weekly)
    )
    add(session, user.id, 10_000, date(2026, 10, 17))  # previous Saturday
    add(session, user.id, 20_000, date(2026, 10, 18))
    add(session, user.id, 30_000, date(2026, 10, 24))
    add(session, user.id, 40_000, date(2026, 10, 25))  # next Sunday

    summary = BudgetService(session, user.id).summary(today=date(2026, 10, 21))
    assert summary.period.start == date(2026, 10, 18)
    assert summary.total_spent_cents == 50_000
    assert summary.percentage_used == 50


def test_overspending_clamps_remaining_and_percentage() -> None:
    session = make_session()
    user = make_user(session)
    BudgetService(session, user.id).set_budget(
        BudgetIn(amount_cents=10_000, period=BudgetPeriod.monthly)
    )
    add(session, user.id, 25_000, TODAY)

    summary = BudgetService(session, user.id).summary(today=TODAY)
    assert summary.remaining_cents == 0
    assert summary.percentage_used == 100


@pytest.mark.parametrize("budget", [0, 1, 500, 10_000, 1_000_000])
@pytest.mark.parametrize("spent", [0, 1, 499, 500, 10_001, 5_000_000])
def test_budget_progress_stays_in_bounds(budget: int, spent: int) -> None:
    remaining, percentage = budget_progress(budget, spent)
    assert remaining >= 0
    assert 0 <= percentage <= 100


def test_summary_only_sees_callers_expenses() -> None:
    session = make_session()
    ana = make_user(session, "ana@example.com")
    ben = make_user(session, "ben@example.com")
    add(session, ana.id, 1_000, TODAY)
    add(session, ben.id, 7_000, TODAY)

    assert BudgetService(session, ana.id).summary(today=TODAY).total_spent_cents == 1_000


def test_set_budget_updates_in_place() -> None:
    session = make_session()
    user = make_user(session)
    service = BudgetService(session, user.id)
    first = service.set_budget(BudgetIn(amount_cents=100_000, period=BudgetPeriod.monthly))
    second = service.set_budget(BudgetIn(amount_cents=20_000, period=BudgetPeriod.weekly))

    assert first.id == second.id
    budget = service.get_budget()
    assert budget.amount_cents == 20_000
    assert budget.period == BudgetPeriod.weekly


def test_set_budget_rejects_non_positive_amount() -> None:
    session = make_session()
    user = make_user(session)
    with pytest.raises(ValidationError):
        BudgetService(session, user.id).set_budget(
            BudgetIn.model_construct(amount_cents=0, period=BudgetPeriod.monthly)
        )


def test_set_budget_requires_identity() -> None:
    session = make_session()
    with pytest.raises(AuthError):
        BudgetService(session, None).set_budget(
            BudgetIn(amount_cents=1_000, period=BudgetPeriod.monthly)
        )


def test_anonymous_summary_is_empty() -> None:
    session = make_session()
    summary = BudgetService(session, None).summary(today=TODAY)
    assert summary.budget is None
    assert summary.total_spent_cents == 0
    assert summary.expenses == []


def test_store_failure_yields_empty_summary(monkeypatch) -> None:
    session = make_session()
    user = make_user(session)
    add(session, user.id, 1_000, TODAY)

    def broken(*_args, **_kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(session, "scalar", broken)
    summary = BudgetService(session, user.id).summary(today=TODAY)
    assert summary.budget is None
    assert summary.total_spent_cents == 0
    assert summary.remaining_cents == 0
    assert summary.percentage_used == 0
