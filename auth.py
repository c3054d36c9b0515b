import logging
from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from passlib.context import CryptContext
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from models import PremiumType, Profile, User
from schemas import SignupIn
from services import AuthError, StoreError, ValidationError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt="access-token")


def issue_token(user_id: int) -> str:
    return _serializer().dumps({"u": user_id})


def verify_token(token: str) -> Optional[int]:
    max_age = get_settings().token_max_age_hours * 3600
    try:
        data = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        logger.info("auth_token_expired")
        return None
    except BadSignature:
        return None
    user_id = data.get("u") if isinstance(data, dict) else None
    return user_id if isinstance(user_id, int) else None


class AccountService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def signup(self, data: SignupIn) -> User:
        existing = self.session.scalar(
            select(User.id).where(func.lower(User.email) == data.email)
        )
        if existing is not None:
            raise ValidationError("An account with this email already exists")
        user = User(email=data.email, password_hash=pwd_context.hash(data.password))
        # profile row mirrors the signup trigger: every identity gets one
        user.profile = Profile(
            full_name=data.full_name,
            is_premium=False,
            premium_type=PremiumType.free,
            is_admin=data.email in get_settings().admin_emails,
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValidationError("An account with this email already exists") from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"signup_failed: email={data.email} error={exc}")
            raise StoreError("Could not create account") from exc
        self.session.refresh(user)
        logger.info(f"signup: user_id={user.id} admin={user.profile.is_admin}")
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.session.scalar(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )
        if not user or not pwd_context.verify(password, user.password_hash):
            raise AuthError("Invalid email or password")
        return user

    def get_user(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)
