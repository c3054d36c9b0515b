import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import BudgetPeriod, PremiumType, RequestStatus

InsightIcon = Literal["trend", "lightbulb", "alert", "check", "warning"]
InsightType = Literal["tip", "warning", "alert", "success"]
RiskLevel = Literal["low", "moderate", "high"]


class SignupIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=8, max_length=200)
    full_name: Optional[str] = Field(default=None, max_length=120)

    @field_validator("email")
    @classmethod
    def _email_shape(cls, value: str) -> str:
        value = value.strip().lower()
        if "@" not in value or value.startswith("@") or value.endswith("@"):
            raise ValueError("Invalid email address")
        return value


class LoginIn(BaseModel):
    email: str
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"


class BudgetIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    period: BudgetPeriod


class ExpenseIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    date: date

    @field_validator("category")
    @classmethod
    def _category_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Category is required")
        return value


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount_cents: int
    period: BudgetPeriod
    created_at: datetime


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount_cents: int
    category: str
    description: Optional[str]
    date: date
    created_at: datetime


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    full_name: Optional[str]
    is_premium: bool
    premium_type: PremiumType
    premium_since: Optional[datetime]
    is_admin: bool


class PremiumRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    status: RequestStatus
    payment_proof_url: str
    amount_paid_cents: int
    created_at: datetime
    reviewed_at: Optional[datetime]
    reviewed_by: Optional[int]
    user_email: Optional[str] = None


class Insight(BaseModel):
    model_config = ConfigDict(extra="ignore")

    icon: InsightIcon
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    type: InsightType

    @field_validator("title")
    @classmethod
    def _short_title(cls, value: str) -> str:
        if len(value.split()) > 5:
            raise ValueError("Title must be at most 5 words")
        return value


class FinancialSnapshot(BaseModel):
    budget_cents: int
    total_spent_cents: int
    percent_used: int
    daily_average_cents: int
    projected_days_remaining: int
    top_category: str
    risk_level: RiskLevel


class InsightsOut(BaseModel):
    locked: bool
    source: Optional[Literal["ai", "fallback", "sample"]]
    insights: list[Insight]
    snapshot: Optional[FinancialSnapshot] = None
    generated_at: Optional[datetime] = None
    cached: bool = False
    message: Optional[str] = None


AmountInput = Union[str, int, float, Decimal]


class BudgetForm(BaseModel):
    amount: AmountInput
    period: BudgetPeriod


class ExpenseForm(BaseModel):
    amount: AmountInput
    category: str
    description: Optional[str] = None
    date: Optional[dt.date] = None
