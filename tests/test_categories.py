from datetime import datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from access import Principal
from database import Base
from errors import AuthorizationError, NotFoundError, ValidationError
from models import Category, Operation, OperationType, User, UserRole
from schemas import CategoryIn
from services import CategoryService


ADMIN = Principal(1, UserRole.admin)
USER = Principal(2, UserRole.user)


def make_engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


def test_category_with_operations_cannot_be_deleted() -> None:
    with Session(make_engine()) as session:
        service = CategoryService(session)
        food = service.create(ADMIN, CategoryIn(name="Food", type=OperationType.expense))
        spare = service.create(ADMIN, CategoryIn(name="Spare", type=OperationType.expense))
        owner = User(email="u@example.com", password_hash="x", role=UserRole.user)
        session.add(owner)
        session.flush()
        session.add_all(
            [
                Operation(
                    user_id=owner.id,
                    category_id=food.id,
                    type=OperationType.expense,
                    amount_cents=100 * i,
                    date=datetime(2025, 6, i, 12, 0),
                )
                for i in (1, 2)
            ]
        )
        session.commit()

        with pytest.raises(ValidationError) as excinfo:
            service.delete(ADMIN, food.id)
        assert excinfo.value.details == {"operations_count": 2}

        service.delete(ADMIN, spare.id)
        names = session.scalars(select(Category.name)).all()
        assert names == ["Food"]


def test_category_names_are_unique_case_insensitive() -> None:
    with Session(make_engine()) as session:
        service = CategoryService(session)
        service.create(ADMIN, CategoryIn(name="Food", type=OperationType.expense))
        rent = service.create(ADMIN, CategoryIn(name="Rent", type=OperationType.expense))

        with pytest.raises(ValidationError):
            service.create(ADMIN, CategoryIn(name=" food ", type=OperationType.income))
        with pytest.raises(ValidationError):
            service.update(ADMIN, rent.id, CategoryIn(name="FOOD", type=OperationType.expense))

        renamed = service.update(
            ADMIN, rent.id, CategoryIn(name="Housing", type=OperationType.expense)
        )
        assert renamed.name == "Housing"
        assert [c.name for c in service.list_all(USER)] == ["Food", "Housing"]


def test_category_mutations_require_admin() -> None:
    with Session(make_engine()) as session:
        service = CategoryService(session)
        food = service.create(ADMIN, CategoryIn(name="Food", type=OperationType.expense))

        with pytest.raises(AuthorizationError):
            service.create(USER, CategoryIn(name="Mine", type=OperationType.expense))
        with pytest.raises(AuthorizationError):
            service.update(USER, food.id, CategoryIn(name="X", type=OperationType.income))
        with pytest.raises(AuthorizationError):
            service.delete(USER, food.id)
        with pytest.raises(AuthorizationError):
            service.get(USER, food.id)


def test_missing_category_is_not_found() -> None:
    with Session(make_engine()) as session:
        with pytest.raises(NotFoundError):
            CategoryService(session).delete(ADMIN, 42)
        with pytest.raises(NotFoundError):
            CategoryService(session).get(ADMIN, 42)
