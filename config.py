import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        token_max_age_hours: int,
        upload_dir: Path,
        public_base_url: str,
        premium_price_cents: int,
        admin_emails: frozenset[str],
        insights_ttl_hours: int,
        openai_api_key: Optional[str],
        openai_model: str,
        openai_timeout_secs: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.token_max_age_hours = token_max_age_hours
        self.upload_dir = upload_dir
        self.public_base_url = public_base_url
        self.premium_price_cents = premium_price_cents
        self.admin_emails = admin_emails
        self.insights_ttl_hours = insights_ttl_hours
        self.openai_api_key = openai_api_key
        self.openai_model = openai_model
        self.openai_timeout_secs = openai_timeout_secs


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _openai_key() -> Optional[str]:
    key = os.getenv("OPENAI_API_KEY", "").strip()
    # .env.example ships "your_openai_api_key"
    if not key or "your_" in key:
        return None
    return key


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGET_TIMEZONE", "Asia/Manila")
    secret_key = os.getenv(
        "BUDGET_SECRET_KEY",
        "3f0c9a5e1d7b42c8a6e4f2b0d8c6a4e2f0b8d6c4a2e0f8b6d4c2a0e8f6b4d2c0",
    )
    token_max_age_hours = int(os.getenv("BUDGET_TOKEN_MAX_AGE_HOURS", "168"))
    upload_dir = Path(
        os.getenv("BUDGET_UPLOAD_DIR", str(data_dir / "uploads"))
    ).resolve()
    public_base_url = os.getenv(
        "BUDGET_PUBLIC_BASE_URL", "http://localhost:8000"
    ).rstrip("/")
    premium_price_cents = int(os.getenv("BUDGET_PREMIUM_PRICE_CENTS", "19900"))
    admin_emails = frozenset(
        email.strip().lower()
        for email in os.getenv("BUDGET_ADMIN_EMAILS", "").split(",")
        if email.strip()
    )
    insights_ttl_hours = int(os.getenv("BUDGET_INSIGHTS_TTL_HOURS", "24"))
    openai_model = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    openai_timeout_secs = float(os.getenv("OPENAI_TIMEOUT_SECS", "20"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        token_max_age_hours=token_max_age_hours,
        upload_dir=upload_dir,
        public_base_url=public_base_url,
        premium_price_cents=premium_price_cents,
        admin_emails=admin_emails,
        insights_ttl_hours=insights_ttl_hours,
        openai_api_key=_openai_key(),
        openai_model=openai_model,
        openai_timeout_secs=openai_timeout_secs,
    )
