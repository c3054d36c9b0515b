import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session

from auth import AccountService, issue_token, verify_token
from config import get_settings
from currency import parse_amount
from database import get_db
from periods import local_today
from scheduler import SchedulerManager
from schemas import (
    BudgetForm,
    BudgetIn,
    BudgetOut,
    ExpenseForm,
    ExpenseIn,
    ExpenseOut,
    InsightsOut,
    LoginIn,
    PremiumRequestOut,
    ProfileOut,
    SignupIn,
    TokenOut,
)
from services import (
    AuthError,
    BudgetService,
    ExpenseService,
    InsightService,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    PremiumService,
    ProfileService,
    ServiceError,
    StoreError,
    UploadError,
    ValidationError,
    default_ai_client,
    suggest_category,
)
from storage import ProofStorage

logger = logging.getLogger(__name__)

settings = get_settings()
settings.upload_dir.mkdir(parents=True, exist_ok=True)

app = FastAPI(title="Budget Tracker")
app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

ERROR_STATUS: list[tuple[type[ServiceError], int]] = [
    (AuthError, 401),
    (PermissionDenied, 403),
    (NotFound, 404),
    (InvalidTransition, 409),
    (ValidationError, 400),
    (UploadError, 502),
    (StoreError, 503),
]


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status_code = 500
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error(f"request_failed: path={request.url.path} error={exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


bearer_scheme = HTTPBearer(auto_error=False)


def current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[int]:
    if credentials is None:
        return None
    return verify_token(credentials.credentials)


def get_proof_storage() -> ProofStorage:
    return ProofStorage()


def get_ai_client():
    return default_ai_client()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def ok(message: str, **payload) -> dict[str, object]:
    return {"success": True, "message": message, **payload}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "version": APP_VERSION,
        "ai": "enabled" if settings.openai_api_key else "disabled (using fallback)",
    }


@app.post("/auth/signup", status_code=201)
def signup(data: SignupIn, db: Session = Depends(get_db)):
    user = AccountService(db).signup(data)
    return TokenOut(access_token=issue_token(user.id))


@app.post("/auth/login")
def login(data: LoginIn, db: Session = Depends(get_db)):
    user = AccountService(db).authenticate(data.email, data.password)
    return TokenOut(access_token=issue_token(user.id))


@app.get("/me")
def me(
    db: Session = Depends(get_db), user_id: Optional[int] = Depends(current_user_id)
):
    profile = ProfileService(db, user_id).get()
    if profile is None:
        raise AuthError("Not authenticated")
    return ProfileOut.model_validate(profile)


@app.get("/budget")
def get_budget(
    db: Session = Depends(get_db), user_id: Optional[int] = Depends(current_user_id)
):
    budget = BudgetService(db, user_id).get_budget()
    return {"budget": BudgetOut.model_validate(budget) if budget else None}


@app.put("/budget")
def set_budget(
    form: BudgetForm,
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(current_user_id),
):
    try:
        data = BudgetIn(amount_cents=parse_amount(form.amount), period=form.period)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    budget = BudgetService(db, user_id).set_budget(data)
    return ok("Budget saved", budget=BudgetOut.model_validate(budget))


@app.get("/budget/summary")
def budget_summary(
    db: Session = Depends(get_db), user_id: Optional[int] = Depends(current_user_id)
):
    summary = BudgetService(db, user_id).summary()
    return {
        "budget": BudgetOut.model_validate(summary.budget) if summary.budget else None,
        "period_start": summary.period.start.isoformat(),
        "period_end": summary.period.end.isoformat(),
        "total_spent_cents": summary.total_spent_cents,
        "remaining_cents": summary.remaining_cents,
        "percentage_used": summary.percentage_used,
        "expenses": [ExpenseOut.model_validate(e) for e in summary.expenses],
    }


@app.get("/expenses")
def list_expenses(
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(current_user_id),
):
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="Start date must be before end date")
    items = ExpenseService(db, user_id).list(start, end)
    return {"items": [ExpenseOut.model_validate(e) for e in items]}


@app.post("/expenses", status_code=201)
def add_expense(
    form: ExpenseForm,
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(current_user_id),
):
    try:
        data = ExpenseIn(
            amount_cents=parse_amount(form.amount),
            category=form.category,
            description=form.description,
            date=form.date or local_today(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    expense = ExpenseService(db, user_id).create(data)
    return ok(
        "Expense added",
        expense=ExpenseOut.model_validate(expense),
        suggested_category=suggest_category(expense.category),
    )


@app.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(current_user_id),
):
    ExpenseService(db, user_id).delete(expense_id)
    return ok("Expense deleted")


@app.get("/charts/categories")
def chart_categories(
    db: Session = Depends(get_db), user_id: Optional[int] = Depends(current_user_id)
):
    return ExpenseService(db, user_id).category_breakdown()


@app.get("/charts/spending")
def chart_spending(
    days: int = 30,
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(current_user_id),
):
    return ExpenseService(db, user_id).spending_over_time(days)


@app.get("/premium/request")
def my_pending_request(
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(current_user_id),
    storage: ProofStorage = Depends(get_proof_storage),
):
    request = PremiumService(db, user_id, storage).pending_request()
    return {"request": PremiumRequestOut.model_validate(request) if request else None}


@app.post("/premium/requests", status_code=201)
async def submit_premium_request(
    payment_proof: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(current_user_id),
    storage: ProofStorage = Depends(get_proof_storage),
):
    content = await payment_proof.read() if payment_proof else None
    filename = payment_proof.filename if payment_proof else ""
    request = PremiumService(db, user_id, storage).submit(filename or "", content)
    return ok(
        "Payment proof submitted. We'll review it shortly.",
        request=PremiumRequestOut.model_validate(request),
    )


@app.get("/admin/premium-requests")
def admin_pending_requests(
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(current_user_id),
    storage: ProofStorage = Depends(get_proof_storage),
):
    return {"items": PremiumService(db, user_id, storage).list_pending()}


@app.post("/admin/premium-requests/{request_id}/approve")
def admin_approve(
    request_id: int,
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(current_user_id),
    storage: ProofStorage = Depends(get_proof_storage),
):
    request = PremiumService(db, user_id, storage).approve(request_id)
    return ok("Request approved", request=PremiumRequestOut.model_validate(request))


@app.post("/admin/premium-requests/{request_id}/reject")
def admin_reject(
    request_id: int,
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(current_user_id),
    storage: ProofStorage = Depends(get_proof_storage),
):
    request = PremiumService(db, user_id, storage).reject(request_id)
    return ok("Request rejected", request=PremiumRequestOut.model_validate(request))


@app.post("/admin/users/{target_id}/upgrade")
def admin_upgrade(
    target_id: int,
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(current_user_id),
    storage: ProofStorage = Depends(get_proof_storage),
):
    profile = PremiumService(db, user_id, storage).upgrade_to_lifetime(target_id)
    return ok("User upgraded", profile=ProfileOut.model_validate(profile))


@app.post("/admin/users/{target_id}/downgrade")
def admin_downgrade(
    target_id: int,
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(current_user_id),
    storage: ProofStorage = Depends(get_proof_storage),
):
    profile = PremiumService(db, user_id, storage).downgrade_to_free(target_id)
    return ok("User downgraded", profile=ProfileOut.model_validate(profile))


@app.get("/insights", response_model=InsightsOut)
def insights(
    refresh: bool = False,
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(current_user_id),
    client=Depends(get_ai_client),
):
    return InsightService(db, user_id, client=client).insights(refresh=refresh)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
