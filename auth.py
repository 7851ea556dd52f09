import logging
from typing import Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy import select
from sqlalchemy.orm import Session

from access import AccessPolicy, Principal
from config import Settings
from errors import AuthenticationError
from models import User


logger = logging.getLogger(__name__)


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode(
        "utf-8"
    )


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


class SessionTokens:
    def __init__(self, settings: Settings) -> None:
        self.serializer = URLSafeTimedSerializer(
            settings.session_secret, salt="session-token"
        )
        self.max_age = settings.session_max_age_hours * 3600

    def issue(self, user: User) -> str:
        return self.serializer.dumps({"u": user.id})

    def load(self, token: str) -> int:
        try:
            data = self.serializer.loads(token, max_age=self.max_age)
        except SignatureExpired as exc:
            raise AuthenticationError("Session expired") from exc
        except BadSignature as exc:
            raise AuthenticationError("Invalid session") from exc
        user_id = data.get("u") if isinstance(data, dict) else None
        if not isinstance(user_id, int):
            raise AuthenticationError("Invalid session")
        return user_id


def authenticate(session: Session, email: str, password: str) -> User:
    user = session.scalar(select(User).where(User.email == email.strip().lower()))
    if not user or not verify_password(password, user.password_hash):
        logger.info(f"login_failed: email={email}")
        raise AuthenticationError("Invalid email or password")
    logger.info(f"login: user_id={user.id}")
    return user


def principal_for_token(
    session: Session,
    tokens: SessionTokens,
    token: Optional[str],
    policy: Optional[AccessPolicy] = None,
) -> Principal:
    policy = policy or AccessPolicy()
    principal: Optional[Principal] = None
    if token:
        user = session.get(User, tokens.load(token))
        if user:
            principal = Principal(id=user.id, role=user.role)
    return policy.require_authenticated(principal)
