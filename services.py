from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import httpx
from openai import OpenAI, OpenAIError
from pydantic import TypeAdapter, ValidationError as SchemaError
from rapidfuzz.distance import Levenshtein
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from currency import format_peso
from models import (
    Budget,
    Expense,
    InsightCache,
    InsightSource,
    PremiumRequest,
    PremiumType,
    Profile,
    RequestStatus,
    User,
)
from periods import Period, budget_period, current_month, local_today, trailing_days
from schemas import (
    BudgetIn,
    ExpenseIn,
    FinancialSnapshot,
    Insight,
    InsightsOut,
    PremiumRequestOut,
)
from storage import ProofStorage

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    pass


class AuthError(ServiceError):
    pass


class PermissionDenied(ServiceError):
    pass


class ValidationError(ServiceError, ValueError):
    pass


class NotFound(ServiceError, ValueError):
    pass


class InvalidTransition(ServiceError, ValueError):
    pass


class StoreError(ServiceError):
    pass


class UploadError(ServiceError):
    pass


class ExternalServiceError(ServiceError):
    pass


SUGGESTED_CATEGORIES = [
    "Food & Dining",
    "Transportation",
    "Shopping",
    "Entertainment",
    "Bills & Utilities",
    "Health & Fitness",
    "Education",
    "Travel",
    "Other",
]

CATEGORY_COLORS = [
    "#3B82F6",
    "#EF4444",
    "#10B981",
    "#F59E0B",
    "#8B5CF6",
    "#EC4899",
    "#06B6D4",
    "#F97316",
    "#84CC16",
]

SPENDING_WINDOWS = (7, 14, 30)
DAILY_AVERAGE_WINDOW_DAYS = 30


def normalize_category(raw: str) -> str:
    """Trim the typed category and match suggested names case-insensitively.

    Anything else is stored exactly as typed.
    """
    name = (raw or "").strip()
    if not name:
        raise ValidationError("Category is required")
    lowered = name.lower()
    for suggested in SUGGESTED_CATEGORIES:
        if suggested.lower() == lowered:
            return suggested
    return name


def suggest_category(name: str) -> Optional[str]:
    """Suggested name one edit away from ``name``, when exactly one is."""
    lowered = (name or "").strip().lower()
    if not lowered:
        return None
    close = [
        suggested
        for suggested in SUGGESTED_CATEGORIES
        if 0 < Levenshtein.distance(lowered, suggested.lower()) <= 1
    ]
    return close[0] if len(close) == 1 else None


def budget_progress(budget_cents: int, spent_cents: int) -> tuple[int, float]:
    remaining = max(0, budget_cents - spent_cents)
    if budget_cents <= 0:
        return remaining, 0.0
    return remaining, min(100.0, spent_cents / budget_cents * 100)


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class _UserScoped:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id

    def _require_user(self) -> int:
        if self.user_id is None:
            raise AuthError("Not authenticated")
        return self.user_id


class ProfileService(_UserScoped):
    def get(self) -> Optional[Profile]:
        if self.user_id is None:
            return None
        try:
            return self.session.get(Profile, self.user_id)
        except SQLAlchemyError as exc:
            logger.error(f"profile_fetch_failed: user_id={self.user_id} error={exc}")
            return None

    def check_premium_status(self) -> bool:
        profile = self.get()
        return bool(profile and profile.is_premium)

    def premium_type(self) -> PremiumType:
        profile = self.get()
        return profile.premium_type if profile else PremiumType.free

    def is_admin(self) -> bool:
        profile = self.get()
        return bool(profile and profile.is_admin)


@dataclass
class BudgetSummary:
    budget: Optional[Budget]
    period: Period
    total_spent_cents: int = 0
    remaining_cents: int = 0
    percentage_used: float = 0.0
    expenses: list[Expense] = field(default_factory=list)

    @classmethod
    def empty(cls, period: Period) -> "BudgetSummary":
        return cls(budget=None, period=period)


class BudgetService(_UserScoped):
    def _load(self) -> Optional[Budget]:
        return self.session.scalar(select(Budget).where(Budget.user_id == self.user_id))

    def get_budget(self) -> Optional[Budget]:
        if self.user_id is None:
            return None
        try:
            return self._load()
        except SQLAlchemyError as exc:
            logger.error(f"budget_fetch_failed: user_id={self.user_id} error={exc}")
            return None

    def set_budget(self, data: BudgetIn) -> Budget:
        user_id = self._require_user()
        if data.amount_cents <= 0:
            raise ValidationError("Budget amount must be greater than zero")
        try:
            existing = self._load()
            if existing:
                existing.amount_cents = data.amount_cents
                existing.period = data.period
                budget = existing
            else:
                budget = Budget(
                    user_id=user_id, amount_cents=data.amount_cents, period=data.period
                )
                self.session.add(budget)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValidationError("Budget amount must be greater than zero") from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"budget_save_failed: user_id={user_id} error={exc}")
            raise StoreError("Failed to save budget") from exc
        self.session.refresh(budget)
        logger.info(
            f"budget_set: user_id={user_id} amount_cents={budget.amount_cents} "
            f"period={budget.period.value}"
        )
        return budget

    def summary(self, *, today: Optional[date] = None) -> BudgetSummary:
        today = today or local_today()
        if self.user_id is None:
            return BudgetSummary.empty(budget_period(None, today=today))
        try:
            budget = self._load()
            period = budget_period(budget.period if budget else None, today=today)
            expenses = self.session.scalars(
                select(Expense)
                .where(
                    Expense.user_id == self.user_id,
                    Expense.date.between(period.start, period.end),
                )
                .order_by(Expense.date.desc(), Expense.created_at.desc())
            ).all()
        except SQLAlchemyError as exc:
            logger.error(f"budget_summary_failed: user_id={self.user_id} error={exc}")
            return BudgetSummary.empty(budget_period(None, today=today))

        total = sum(e.amount_cents for e in expenses)
        budget_cents = budget.amount_cents if budget else 0
        remaining, percentage = budget_progress(budget_cents, total)
        return BudgetSummary(
            budget=budget,
            period=period,
            total_spent_cents=total,
            remaining_cents=remaining,
            percentage_used=percentage,
            expenses=list(expenses),
        )


class ExpenseService(_UserScoped):
    def create(self, data: ExpenseIn) -> Expense:
        user_id = self._require_user()
        if data.amount_cents <= 0:
            raise ValidationError("Amount must be greater than zero")
        description = (data.description or "").strip() or None
        expense = Expense(
            user_id=user_id,
            amount_cents=data.amount_cents,
            category=normalize_category(data.category),
            description=description,
            date=data.date,
        )
        self.session.add(expense)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValidationError("Expense rejected: amount must be positive") from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"expense_add_failed: user_id={user_id} error={exc}")
            raise StoreError("Failed to add expense") from exc
        self.session.refresh(expense)
        return expense

    def list(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[Expense]:
        if self.user_id is None:
            return []
        stmt = (
            select(Expense)
            .where(Expense.user_id == self.user_id)
            .order_by(
                Expense.date.desc(), Expense.created_at.desc(), Expense.id.desc()
            )
        )
        if start:
            stmt = stmt.where(Expense.date >= start)
        if end:
            stmt = stmt.where(Expense.date <= end)
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            logger.error(f"expense_list_failed: user_id={self.user_id} error={exc}")
            return []

    def delete(self, expense_id: int) -> None:
        user_id = self._require_user()
        # rows owned by someone else match nothing; that is not an error
        try:
            result = self.session.execute(
                delete(Expense).where(
                    Expense.id == expense_id, Expense.user_id == user_id
                )
            )
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"expense_delete_failed: user_id={user_id} error={exc}")
            raise StoreError("Failed to delete expense") from exc
        logger.info(
            f"expense_delete: user_id={user_id} id={expense_id} rows={result.rowcount}"
        )

    def category_breakdown(self, *, today: Optional[date] = None) -> list[dict]:
        if self.user_id is None:
            return []
        period = current_month(today)
        total_col = func.sum(Expense.amount_cents).label("total")
        stmt = (
            select(Expense.category, total_col)
            .where(
                Expense.user_id == self.user_id,
                Expense.date.between(period.start, period.end),
            )
            .group_by(Expense.category)
            .order_by(total_col.desc(), Expense.category.asc())
        )
        try:
            rows = self.session.execute(stmt).all()
        except SQLAlchemyError as exc:
            logger.error(f"category_breakdown_failed: user_id={self.user_id} error={exc}")
            return []
        grand_total = sum(int(row.total or 0) for row in rows)
        breakdown = []
        for index, row in enumerate(rows):
            amount = int(row.total or 0)
            breakdown.append(
                {
                    "name": row.category,
                    "amount_cents": amount,
                    "percent": (amount / grand_total * 100) if grand_total else 0,
                    "color": CATEGORY_COLORS[index % len(CATEGORY_COLORS)],
                }
            )
        return breakdown

    def spending_over_time(
        self, days: int = 30, *, today: Optional[date] = None
    ) -> list[dict]:
        if days not in SPENDING_WINDOWS:
            allowed = ", ".join(str(d) for d in SPENDING_WINDOWS)
            raise ValidationError(f"days must be one of {allowed}")
        period = trailing_days(days, today=today)
        totals: dict[date, int] = {}
        if self.user_id is not None:
            stmt = (
                select(Expense.date, func.sum(Expense.amount_cents).label("total"))
                .where(
                    Expense.user_id == self.user_id,
                    Expense.date.between(period.start, period.end),
                )
                .group_by(Expense.date)
            )
            try:
                totals = {
                    row.date: int(row.total or 0)
                    for row in self.session.execute(stmt).all()
                }
            except SQLAlchemyError as exc:
                logger.error(f"spending_series_failed: user_id={self.user_id} error={exc}")
                totals = {}
        series = []
        for offset in range(days):
            day = period.start + timedelta(days=offset)
            series.append({"date": day.isoformat(), "amount_cents": totals.get(day, 0)})
        return series


def _grant_lifetime(profile: Profile, when: datetime) -> None:
    profile.is_premium = True
    profile.premium_type = PremiumType.lifetime
    profile.premium_since = when


class PremiumService(_UserScoped):
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        storage: Optional[ProofStorage] = None,
    ) -> None:
        super().__init__(session, user_id)
        self.storage = storage or ProofStorage()
        self.price_cents = get_settings().premium_price_cents

    def _require_admin(self) -> int:
        user_id = self._require_user()
        if not ProfileService(self.session, user_id).is_admin():
            raise PermissionDenied("Admin access required")
        return user_id

    def _get_request(self, request_id: int) -> PremiumRequest:
        request = self.session.get(PremiumRequest, request_id)
        if not request:
            raise NotFound("Request not found")
        return request

    def submit(self, filename: str, content: Optional[bytes]) -> PremiumRequest:
        user_id = self._require_user()
        if not content:
            raise ValidationError("Payment proof is required")
        try:
            artifact = self.storage.save(user_id, filename, content)
        except OSError as exc:
            logger.error(f"proof_upload_failed: user_id={user_id} error={exc}")
            raise UploadError("Failed to upload payment proof") from exc

        request = PremiumRequest(
            user_id=user_id,
            status=RequestStatus.pending,
            payment_proof_url=artifact.public_url,
            amount_paid_cents=self.price_cents,
        )
        self.session.add(request)
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            self.storage.delete(artifact.key)
            logger.error(f"premium_submit_failed: user_id={user_id} error={exc}")
            raise StoreError("Failed to submit premium request") from exc
        self.session.refresh(request)
        logger.info(f"premium_submit: user_id={user_id} request_id={request.id}")
        return request

    def pending_request(self) -> Optional[PremiumRequest]:
        if self.user_id is None:
            return None
        stmt = (
            select(PremiumRequest)
            .where(
                PremiumRequest.user_id == self.user_id,
                PremiumRequest.status == RequestStatus.pending,
            )
            .order_by(PremiumRequest.created_at.desc(), PremiumRequest.id.desc())
            .limit(1)
        )
        try:
            return self.session.scalar(stmt)
        except SQLAlchemyError as exc:
            logger.error(f"premium_pending_failed: user_id={self.user_id} error={exc}")
            return None

    def list_pending(self) -> list[PremiumRequestOut]:
        self._require_admin()
        stmt = (
            select(PremiumRequest, User.email)
            .join(User, User.id == PremiumRequest.user_id)
            .where(PremiumRequest.status == RequestStatus.pending)
            .order_by(PremiumRequest.created_at.desc(), PremiumRequest.id.desc())
        )
        try:
            rows = self.session.execute(stmt).all()
        except SQLAlchemyError as exc:
            logger.error(f"premium_list_failed: error={exc}")
            return []
        return [
            PremiumRequestOut.model_validate(request).model_copy(
                update={"user_email": email}
            )
            for request, email in rows
        ]

    def _review(self, request_id: int, status: RequestStatus) -> PremiumRequest:
        reviewer_id = self._require_admin()
        request = self._get_request(request_id)
        if request.status != RequestStatus.pending:
            raise InvalidTransition(f"Request already {request.status.value}")
        now = datetime.utcnow()
        try:
            # conditional on status so a concurrent review cannot apply twice
            result = self.session.execute(
                update(PremiumRequest)
                .where(
                    PremiumRequest.id == request_id,
                    PremiumRequest.status == RequestStatus.pending,
                )
                .values(status=status, reviewed_by=reviewer_id, reviewed_at=now)
            )
            if result.rowcount != 1:
                self.session.rollback()
                raise InvalidTransition("Request already reviewed")
            if status == RequestStatus.approved:
                profile = self.session.get(Profile, request.user_id)
                if profile is None:
                    self.session.rollback()
                    raise NotFound("Requester profile not found")
                self._grant_lifetime(profile, now)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(
                f"premium_review_failed: request_id={request_id} "
                f"status={status.value} error={exc}"
            )
            verb = "approve" if status == RequestStatus.approved else "reject"
            raise StoreError(f"Failed to {verb} request") from exc
        self.session.refresh(request)
        logger.info(
            f"premium_review: request_id={request_id} status={status.value} "
            f"reviewer={reviewer_id}"
        )
        return request

    @staticmethod
    def _grant_lifetime(profile: Profile, when: datetime) -> None:
        _grant_lifetime(profile, when)

    def approve(self, request_id: int) -> PremiumRequest:
        return self._review(request_id, RequestStatus.approved)

    def reject(self, request_id: int) -> PremiumRequest:
        return self._review(request_id, RequestStatus.rejected)

    def _target_profile(self, target_user_id: Optional[int]) -> Profile:
        admin_id = self._require_admin()
        profile = self.session.get(Profile, target_user_id or admin_id)
        if not profile:
            raise NotFound("Profile not found")
        return profile

    def upgrade_to_lifetime(self, target_user_id: Optional[int] = None) -> Profile:
        profile = self._target_profile(target_user_id)
        self._grant_lifetime(profile, datetime.utcnow())
        return self._save_profile(profile, "upgrade")

    def downgrade_to_free(self, target_user_id: Optional[int] = None) -> Profile:
        profile = self._target_profile(target_user_id)
        profile.is_premium = False
        profile.premium_type = PremiumType.free
        profile.premium_since = None
        profile.premium_revoked_at = datetime.utcnow()
        return self._save_profile(profile, "downgrade")

    def _save_profile(self, profile: Profile, action: str) -> Profile:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"profile_{action}_failed: user_id={profile.user_id} error={exc}")
            raise StoreError(f"Failed to {action} user") from exc
        self.session.refresh(profile)
        logger.info(f"profile_{action}: user_id={profile.user_id} by={self.user_id}")
        return profile


def reconcile_approved_requests(session: Session) -> int:
    """Upgrade requesters whose approved request never reached their profile.

    Profiles downgraded after the review are left alone.
    """
    stmt = (
        select(PremiumRequest, Profile)
        .join(Profile, Profile.user_id == PremiumRequest.user_id)
        .where(
            PremiumRequest.status == RequestStatus.approved,
            Profile.is_premium.is_(False),
        )
        .order_by(PremiumRequest.reviewed_at.asc(), PremiumRequest.id.asc())
    )
    repaired: set[int] = set()
    for request, profile in session.execute(stmt).all():
        if profile.user_id in repaired:
            continue
        reviewed_at = request.reviewed_at or request.created_at
        if profile.premium_revoked_at and profile.premium_revoked_at >= reviewed_at:
            continue
        _grant_lifetime(profile, reviewed_at)
        repaired.add(profile.user_id)
    session.commit()
    return len(repaired)


SAMPLE_INSIGHTS = [
    Insight(
        icon="trend",
        title="Spending Trend Analysis",
        description=(
            "Your dining expenses have increased 23% compared to last month. "
            "Consider setting a restaurant budget."
        ),
        type="warning",
    ),
    Insight(
        icon="lightbulb",
        title="Smart Saving Tip",
        description=(
            "Based on your spending pattern, you could save ₱2,500/month by "
            "reducing impulse purchases."
        ),
        type="tip",
    ),
    Insight(
        icon="alert",
        title="Budget Alert",
        description=(
            "You're on track to exceed your monthly transportation budget by 15%."
        ),
        type="alert",
    ),
]

INSIGHT_COUNT = 4

_INSIGHT_LIST = TypeAdapter(list[Insight])
_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)

SYSTEM_PROMPT = (
    "You are a smart, direct, and helpful financial advisor. Provide concise, "
    "actionable insights based on spending data."
)


def risk_level(percent_used: int) -> str:
    if percent_used > 75:
        return "high"
    if percent_used >= 40:
        return "moderate"
    return "low"


def build_snapshot(
    summary: BudgetSummary, expenses: list[Expense], *, today: Optional[date] = None
) -> FinancialSnapshot:
    today = today or local_today()
    budget_cents = summary.budget.amount_cents if summary.budget else 0
    spent = summary.total_spent_cents
    percent_used = (
        _round_half_up(Decimal(spent) * 100 / Decimal(budget_cents))
        if budget_cents > 0
        else 0
    )

    window = trailing_days(DAILY_AVERAGE_WINDOW_DAYS, today=today)
    recent_total = sum(e.amount_cents for e in expenses if window.contains(e.date))
    daily_average = _round_half_up(
        Decimal(recent_total) / Decimal(DAILY_AVERAGE_WINDOW_DAYS)
    )
    if daily_average > 0 and budget_cents > spent:
        projected_days = (budget_cents - spent) // daily_average
    else:
        projected_days = 0

    by_category: dict[str, int] = {}
    for expense in expenses:
        by_category[expense.category] = (
            by_category.get(expense.category, 0) + expense.amount_cents
        )
    top_category = "None"
    if by_category:
        top_category = sorted(by_category.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]

    return FinancialSnapshot(
        budget_cents=budget_cents,
        total_spent_cents=spent,
        percent_used=percent_used,
        daily_average_cents=daily_average,
        projected_days_remaining=projected_days,
        top_category=top_category,
        risk_level=risk_level(percent_used),
    )


def fallback_insights(snapshot: FinancialSnapshot) -> list[Insight]:
    pct = snapshot.percent_used
    if snapshot.risk_level == "high":
        status = Insight(
            icon="alert",
            title="Budget Critical",
            description=(
                f"You've used {pct}% of your budget. "
                "Cut non-essential spending immediately."
            ),
            type="alert",
        )
    elif snapshot.risk_level == "moderate":
        status = Insight(
            icon="warning",
            title="Budget Warning",
            description=(
                f"You're at {pct}% budget usage. "
                "Slow down spending to stay on track."
            ),
            type="warning",
        )
    else:
        status = Insight(
            icon="check",
            title="Budget Healthy",
            description=(
                f"Great job! Only {pct}% used. You're well within your budget."
            ),
            type="success",
        )

    days = snapshot.projected_days_remaining
    daily = Insight(
        icon="trend",
        title="Daily Spending",
        description=(
            f"Your daily average is {format_peso(snapshot.daily_average_cents)}. "
            f"At this rate, budget runs out in {days} days."
        ),
        type="warning" if days < 7 else "tip",
    )

    top = Insight(
        icon="lightbulb",
        title="Top Category Focus",
        description=(
            f"{snapshot.top_category} is your biggest expense. "
            "Review these transactions for savings opportunities."
        ),
        type="tip",
    )

    if pct < 50:
        savings = Insight(
            icon="trend",
            title="Savings Potential",
            description=(
                "You're on track to save "
                f"{format_peso(snapshot.budget_cents - snapshot.total_spent_cents)} "
                "this period. Keep it up!"
            ),
            type="success",
        )
    else:
        savings = Insight(
            icon="trend",
            title="Savings Potential",
            description=(
                "Reduce discretionary spending to avoid exceeding your "
                f"{format_peso(snapshot.budget_cents)} budget."
            ),
            type="warning",
        )
    return [status, daily, top, savings]


def build_prompt(snapshot: FinancialSnapshot) -> str:
    return f"""Based on this financial data, generate {INSIGHT_COUNT} concise, personalized financial insights with actionable advice.

Financial Summary:
- Budget: {format_peso(snapshot.budget_cents)}
- Total Spent: {format_peso(snapshot.total_spent_cents)}
- Percentage Used: {snapshot.percent_used}%
- Daily Average: {format_peso(snapshot.daily_average_cents)}
- Projected Days Remaining: {snapshot.projected_days_remaining}
- Top Spending Category: {snapshot.top_category}
- Risk Level: {snapshot.risk_level}

Format each insight as a JSON object with:
- icon: one of ["trend", "lightbulb", "alert", "check", "warning"]
- title: max 5 words
- description: 1-2 sentences, specific and actionable
- type: one of ["tip", "warning", "alert", "success"]

Return ONLY a JSON array of {INSIGHT_COUNT} insights."""


def parse_insights(content: Optional[str]) -> list[Insight]:
    """Pull the insight array out of a model reply and validate its shape."""
    if not content or not content.strip():
        raise ExternalServiceError("Empty response from AI provider")
    text = content.strip()
    fenced = _FENCED_JSON.search(text)
    if fenced:
        text = fenced.group(1)
    start, end = text.find("["), text.rfind("]")
    if start == -1 or end < start:
        raise ExternalServiceError("No JSON array in AI response")
    try:
        payload = json.loads(text[start : end + 1])
        insights = _INSIGHT_LIST.validate_python(payload)
    except (json.JSONDecodeError, SchemaError) as exc:
        raise ExternalServiceError(f"Malformed AI response: {exc}") from exc
    if len(insights) != INSIGHT_COUNT:
        raise ExternalServiceError(
            f"Expected {INSIGHT_COUNT} insights, got {len(insights)}"
        )
    return insights


_DEFAULT_CLIENT = object()


def default_ai_client():
    settings = get_settings()
    if not settings.openai_api_key:
        return None
    return OpenAI(
        api_key=settings.openai_api_key,
        timeout=settings.openai_timeout_secs,
        max_retries=0,
    )


class InsightService(_UserScoped):
    def __init__(
        self, session: Session, user_id: Optional[int] = None, client=_DEFAULT_CLIENT
    ) -> None:
        super().__init__(session, user_id)
        self.settings = get_settings()
        self.client = default_ai_client() if client is _DEFAULT_CLIENT else client

    def _complete(self, snapshot: FinancialSnapshot) -> Optional[str]:
        try:
            completion = self.client.chat.completions.create(
                model=self.settings.openai_model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(snapshot)},
                ],
                temperature=0.7,
                max_tokens=800,
            )
            return completion.choices[0].message.content
        except (
            OpenAIError,
            httpx.HTTPError,
            AttributeError,
            IndexError,
            KeyError,
            TypeError,
            ValueError,
        ) as exc:
            raise ExternalServiceError(f"AI provider call failed: {exc}") from exc

    def generate(
        self, snapshot: FinancialSnapshot
    ) -> tuple[list[Insight], InsightSource, Optional[str]]:
        if self.client is None:
            logger.info(f"insights_fallback: user_id={self.user_id} reason=unconfigured")
            return (
                fallback_insights(snapshot),
                InsightSource.fallback,
                "AI insights temporarily using local analysis.",
            )
        try:
            insights = parse_insights(self._complete(snapshot))
        except ExternalServiceError as exc:
            logger.warning(f"insights_fallback: user_id={self.user_id} reason={exc}")
            return (
                fallback_insights(snapshot),
                InsightSource.fallback,
                "Using local analysis. AI service temporarily unavailable.",
            )
        return insights, InsightSource.ai, None

    def _cache_row(self) -> Optional[InsightCache]:
        return self.session.scalar(
            select(InsightCache).where(InsightCache.user_id == self.user_id)
        )

    def cached(self, *, now: Optional[datetime] = None) -> Optional[InsightsOut]:
        now = now or datetime.utcnow()
        try:
            row = self._cache_row()
        except SQLAlchemyError as exc:
            logger.error(f"insights_cache_read_failed: user_id={self.user_id} error={exc}")
            return None
        if not row:
            return None
        if now - row.generated_at >= timedelta(hours=self.settings.insights_ttl_hours):
            return None
        return InsightsOut(
            locked=False,
            source=row.source.value,
            insights=_INSIGHT_LIST.validate_json(row.insights_json),
            snapshot=FinancialSnapshot.model_validate_json(row.snapshot_json),
            generated_at=row.generated_at,
            cached=True,
        )

    def invalidate(self) -> None:
        try:
            self.session.execute(
                delete(InsightCache).where(InsightCache.user_id == self.user_id)
            )
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"insights_cache_clear_failed: user_id={self.user_id} error={exc}")

    def _store(
        self,
        snapshot: FinancialSnapshot,
        insights: list[Insight],
        source: InsightSource,
        generated_at: datetime,
    ) -> None:
        insights_json = _INSIGHT_LIST.dump_json(insights).decode("utf-8")
        try:
            row = self._cache_row()
            if row is None:
                row = InsightCache(user_id=self.user_id)
                self.session.add(row)
            row.snapshot_json = snapshot.model_dump_json()
            row.insights_json = insights_json
            row.source = source
            row.generated_at = generated_at
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"insights_cache_write_failed: user_id={self.user_id} error={exc}")

    def insights(
        self,
        *,
        refresh: bool = False,
        now: Optional[datetime] = None,
        today: Optional[date] = None,
    ) -> InsightsOut:
        user_id = self._require_user()
        if not ProfileService(self.session, user_id).check_premium_status():
            return InsightsOut(
                locked=True,
                source="sample",
                insights=SAMPLE_INSIGHTS,
                message="Upgrade to premium to unlock AI insights.",
            )

        now = now or datetime.utcnow()
        if refresh:
            self.invalidate()
        else:
            hit = self.cached(now=now)
            if hit:
                return hit

        today = today or local_today()
        summary = BudgetService(self.session, user_id).summary(today=today)
        expenses = ExpenseService(self.session, user_id).list()
        snapshot = build_snapshot(summary, expenses, today=today)
        insights, source, message = self.generate(snapshot)
        self._store(snapshot, insights, source, now)
        logger.info(f"insights_generated: user_id={user_id} source={source.value}")
        return InsightsOut(
            locked=False,
            source=source.value,
            insights=insights,
            snapshot=snapshot,
            generated_at=now,
            cached=False,
            message=message,
        )
