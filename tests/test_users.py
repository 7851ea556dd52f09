from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from access import Principal
from auth import (
    SessionTokens,
    authenticate,
    hash_password,
    principal_for_token,
    verify_password,
)
from config import Settings
from database import Base
from errors import AuthenticationError, AuthorizationError, ValidationError
from models import Category, DailySummary, OperationType, User, UserRole
from schemas import OperationIn, UserCreateIn, UserPatch
from services import OperationService, UserService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_settings() -> Settings:
    return Settings(
        database_url="sqlite:///:memory:",
        timezone="Europe/Paris",
        session_secret="test-secret",
        session_max_age_hours=1,
        bcrypt_rounds=4,
    )


def bootstrap_admin(session) -> tuple[UserService, Principal]:
    service = UserService(session, bcrypt_rounds=4)
    admin = service.ensure_admin("Admin@Example.com", "s3cret!")
    return service, Principal(admin.id, admin.role)


def test_password_hashing_round_trip() -> None:
    hashed = hash_password("hunter22", rounds=4)
    assert hashed != "hunter22"
    assert verify_password("hunter22", hashed)
    assert not verify_password("hunter23", hashed)
    assert not verify_password("hunter22", "not-a-bcrypt-hash")


def test_ensure_admin_is_idempotent() -> None:
    session = make_session()
    service, admin = bootstrap_admin(session)
    again = service.ensure_admin("admin@example.com", "other")
    assert again.id == admin.id
    assert again.role == UserRole.admin
    assert len(session.scalars(select(User)).all()) == 1


def test_admin_creates_and_updates_users() -> None:
    session = make_session()
    service, admin = bootstrap_admin(session)

    user = service.create(
        admin,
        UserCreateIn(email="Jane@Example.com", name="Jane", password="password1"),
    )
    assert user.email == "jane@example.com"
    assert user.role == UserRole.user
    assert verify_password("password1", user.password_hash)

    with pytest.raises(ValidationError):
        service.create(
            admin, UserCreateIn(email="jane@example.com", name="Jane2", password="password2")
        )

    updated = service.update(
        admin, user.id, UserPatch(role=UserRole.admin, password="changed99")
    )
    assert updated.role == UserRole.admin
    assert updated.name == "Jane"
    assert verify_password("changed99", updated.password_hash)

    listed = service.list_all(admin)
    assert {u.email for u in listed} == {"admin@example.com", "jane@example.com"}


def test_user_management_requires_admin() -> None:
    session = make_session()
    service, admin = bootstrap_admin(session)
    plain = service.create(
        admin, UserCreateIn(email="joe@example.com", name="Joe", password="password1")
    )
    joe = Principal(plain.id, plain.role)

    with pytest.raises(AuthorizationError):
        service.list_all(joe)
    with pytest.raises(AuthorizationError):
        service.update(joe, plain.id, UserPatch(role=UserRole.admin))
    with pytest.raises(AuthorizationError):
        service.delete(joe, admin.id)


def test_admin_cannot_delete_self() -> None:
    session = make_session()
    service, admin = bootstrap_admin(session)
    with pytest.raises(ValidationError):
        service.delete(admin, admin.id)


def test_user_with_operations_cannot_be_deleted_until_they_are_gone() -> None:
    session = make_session()
    service, admin = bootstrap_admin(session)
    user = service.create(
        admin, UserCreateIn(email="kim@example.com", name="Kim", password="password1")
    )
    food = Category(name="Food", type=OperationType.expense)
    session.add(food)
    session.commit()

    operations = OperationService(session, timezone="Europe/Paris")
    op = operations.create(
        Principal(user.id, user.role),
        OperationIn(
            amount=Decimal("9.99"),
            category_id=food.id,
            type=OperationType.expense,
            date=datetime(2025, 6, 17, 12, 0),
        ),
    )

    with pytest.raises(ValidationError) as excinfo:
        service.delete(admin, user.id)
    assert excinfo.value.details == {"operations_count": 1}

    operations.delete(op.id, admin)
    assert session.scalars(select(DailySummary)).all()

    service.delete(admin, user.id)
    assert session.get(User, user.id) is None
    assert session.scalars(select(DailySummary)).all() == []


def test_login_and_session_tokens() -> None:
    session = make_session()
    bootstrap_admin(session)
    tokens = SessionTokens(make_settings())

    with pytest.raises(AuthenticationError):
        authenticate(session, "admin@example.com", "wrong")

    user = authenticate(session, " ADMIN@example.com ", "s3cret!")
    token = tokens.issue(user)
    principal = principal_for_token(session, tokens, token)
    assert principal == Principal(user.id, UserRole.admin)

    with pytest.raises(AuthenticationError):
        principal_for_token(session, tokens, None)
    with pytest.raises(AuthenticationError):
        principal_for_token(session, tokens, token + "x")

    other_secret = SessionTokens(
        Settings(
            database_url="sqlite:///:memory:",
            timezone="Europe/Paris",
            session_secret="another-secret",
            session_max_age_hours=1,
            bcrypt_rounds=4,
        )
    )
    with pytest.raises(AuthenticationError):
        principal_for_token(session, other_secret, token)


def test_token_of_removed_user_fails_closed() -> None:
    session = make_session()
    service, admin = bootstrap_admin(session)
    gone = service.create(
        admin, UserCreateIn(email="gone@example.com", name="Gone", password="password1")
    )
    tokens = SessionTokens(make_settings())
    token = tokens.issue(gone)
    assert principal_for_token(session, tokens, token).id == gone.id

    service.delete(admin, gone.id)
    with pytest.raises(AuthenticationError):
        principal_for_token(session, tokens, token)
