from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload

from access import NOT_VISIBLE, AccessPolicy, OwnerScope, Principal
from aggregation import AggregationEngine
from auth import hash_password
from errors import (
    AggregationError,
    AggregationInconsistency,
    NotFoundError,
    StoreError,
    ValidationError,
)
from models import (
    Category,
    DailySummary,
    MonthlySummary,
    Operation,
    OperationType,
    User,
    UserRole,
    WeeklySummary,
)
from periods import (
    Bucket,
    day_bucket,
    iso_week_key,
    local_now,
    month_bucket,
    month_weeks,
    reference_moment,
    sunday_week_bucket,
    to_local_naive,
    week_days,
)
from schemas import (
    MAX_AMOUNT,
    CategoryIn,
    OperationIn,
    OperationPatch,
    UserCreateIn,
    UserPatch,
)


logger = logging.getLogger(__name__)


def amount_to_cents(amount: Decimal) -> int:
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents <= 0:
        raise ValidationError.for_field("amount", "Amount must be positive")
    if cents > MAX_AMOUNT * 100:
        raise ValidationError.for_field(
            "amount", f"Amount must not exceed {MAX_AMOUNT}"
        )
    return cents


def cents_to_amount(cents: int) -> float:
    return cents / 100


def _commit(session: Session, action: str) -> None:
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception(f"store_error: action={action}")
        raise StoreError() from exc


class OperationService:
    def __init__(
        self,
        session: Session,
        *,
        timezone: str,
        aggregation: Optional[AggregationEngine] = None,
        policy: Optional[AccessPolicy] = None,
    ) -> None:
        self.session = session
        self.aggregation = aggregation or AggregationEngine(session)
        self.policy = policy or AccessPolicy()
        self.timezone = timezone

    def _category(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise ValidationError.for_field("category_id", "Category not found")
        return category

    def _writable(self, principal: Principal, operation_id: int) -> Operation:
        operation = self.session.get(Operation, operation_id)
        if not operation:
            raise NotFoundError("Operation not found")
        self.policy.ensure_writable(principal, operation.user_id, "Operation")
        return operation

    def _recompute(
        self, operation_id: int, user_id: int, moments: Iterable[datetime]
    ) -> None:
        failed: list[str] = []
        seen: set[datetime] = set()
        for moment in moments:
            if moment in seen:
                continue
            seen.add(moment)
            try:
                self.aggregation.recompute(user_id, moment)
            except AggregationError as exc:
                failed.extend(b for b in exc.failed_buckets if b not in failed)
        if failed:
            logger.error(
                f"aggregation_inconsistency: operation_id={operation_id} "
                f"user_id={user_id} buckets={','.join(failed)}"
            )
            raise AggregationInconsistency(operation_id, failed)

    def create(self, principal: Principal, data: OperationIn) -> Operation:
        owner_id = data.user_id if data.user_id is not None else principal.id
        if owner_id != principal.id:
            self.policy.require_admin(principal)
            if not self.session.get(User, owner_id):
                raise ValidationError.for_field("user_id", "User not found")
        self._category(data.category_id)
        amount_cents = amount_to_cents(data.amount)
        moment = (
            to_local_naive(data.date, self.timezone)
            if data.date
            else local_now(self.timezone)
        )

        operation = Operation(
            user_id=owner_id,
            category_id=data.category_id,
            type=data.type,
            amount_cents=amount_cents,
            description=data.description,
            date=moment,
        )
        self.session.add(operation)
        _commit(self.session, "operation_create")
        logger.info(
            f"operation_create: id={operation.id} user_id={owner_id} "
            f"type={data.type.value} amount_cents={amount_cents}"
        )
        self._recompute(operation.id, owner_id, [moment])
        return operation

    def update(
        self, operation_id: int, patch: OperationPatch, principal: Principal
    ) -> Operation:
        operation = self._writable(principal, operation_id)
        changes = patch.model_dump(exclude_unset=True)
        if "category_id" in changes:
            self._category(changes["category_id"])
        amount_cents = (
            amount_to_cents(changes["amount"]) if "amount" in changes else None
        )

        previous_date = operation.date
        if amount_cents is not None:
            operation.amount_cents = amount_cents
        if "category_id" in changes:
            operation.category_id = changes["category_id"]
        if "type" in changes:
            operation.type = changes["type"]
        if "description" in changes:
            operation.description = changes["description"]
        if "date" in changes:
            operation.date = to_local_naive(changes["date"], self.timezone)
        _commit(self.session, "operation_update")
        logger.info(
            f"operation_update: id={operation.id} user_id={operation.user_id} "
            f"fields={','.join(sorted(changes))}"
        )
        # the bucket being left first, then the one being entered
        self._recompute(operation.id, operation.user_id, [previous_date, operation.date])
        return operation

    def delete(self, operation_id: int, principal: Principal) -> None:
        operation = self._writable(principal, operation_id)
        user_id = operation.user_id
        moment = operation.date
        self.session.delete(operation)
        _commit(self.session, "operation_delete")
        logger.info(f"operation_delete: id={operation_id} user_id={user_id}")
        self._recompute(operation_id, user_id, [moment])

    def rebuild_summaries(self, principal: Principal, user_id: int) -> int:
        self.policy.require_admin(principal)
        if not self.session.get(User, user_id):
            raise NotFoundError("User not found")
        return self.aggregation.rebuild(user_id)


@dataclass
class Totals:
    income_cents: int = 0
    expense_cents: int = 0

    @property
    def balance_cents(self) -> int:
        return self.income_cents - self.expense_cents

    @classmethod
    def of(cls, operations: Iterable[Operation]) -> "Totals":
        totals = cls()
        for op in operations:
            if op.type == OperationType.income:
                totals.income_cents += op.amount_cents
            elif op.type == OperationType.expense:
                totals.expense_cents += op.amount_cents
        return totals


@dataclass(frozen=True)
class ExportRow:
    date: datetime
    description: str
    amount_cents: int
    type: OperationType
    user: str
    category: str


@dataclass
class Breakdown:
    start: datetime
    end: datetime
    totals: Totals
    operations: list[Operation]


@dataclass
class SummaryView:
    period: str
    bucket: Bucket
    key: dict[str, object]
    totals: Totals
    operations: list[Operation]
    is_admin: bool
    filtered_by_user: Optional[int]
    breakdown: list[Breakdown] = field(default_factory=list)

    def export_rows(self) -> list[ExportRow]:
        return [
            ExportRow(
                date=op.date,
                description=op.description or "",
                amount_cents=op.amount_cents,
                type=op.type,
                user=(op.user.name or "") if op.user else "",
                category=op.category.name if op.category else "",
            )
            for op in self.operations
        ]


@dataclass
class Page:
    items: list
    total: int
    limit: int
    offset: int


SUMMARY_MODELS = {
    "daily": (DailySummary, (DailySummary.date.desc(),)),
    "weekly": (WeeklySummary, (WeeklySummary.year.desc(), WeeklySummary.week.desc())),
    "monthly": (
        MonthlySummary,
        (MonthlySummary.year.desc(), MonthlySummary.month.desc()),
    ),
}


class QueryService:
    """Read-only access to operations and stored summaries."""

    def __init__(
        self,
        session: Session,
        *,
        timezone: str,
        policy: Optional[AccessPolicy] = None,
    ) -> None:
        self.session = session
        self.policy = policy or AccessPolicy()
        self.timezone = timezone

    def list_operations(
        self,
        principal: Principal,
        *,
        limit: int = 50,
        offset: int = 0,
        user_id: Optional[int] = None,
    ) -> Page:
        owner = self.policy.scope_owner(principal, user_id)
        if owner is NOT_VISIBLE:
            return Page([], 0, limit, offset)
        stmt = (
            select(Operation)
            .options(joinedload(Operation.category), joinedload(Operation.user))
            .order_by(Operation.date.desc(), Operation.id.desc())
            .limit(limit)
            .offset(offset)
        )
        count_stmt = select(func.count(Operation.id))
        if owner is not None:
            stmt = stmt.where(Operation.user_id == owner)
            count_stmt = count_stmt.where(Operation.user_id == owner)
        items = self.session.scalars(stmt).all()
        total = int(self.session.execute(count_stmt).scalar_one() or 0)
        return Page(list(items), total, limit, offset)

    def get_operation(self, principal: Principal, operation_id: int) -> Operation:
        operation = self.session.scalar(
            select(Operation)
            .options(joinedload(Operation.category), joinedload(Operation.user))
            .where(Operation.id == operation_id)
        )
        if not operation:
            raise NotFoundError("Operation not found")
        self.policy.ensure_visible(principal, operation.user_id, "Operation")
        return operation

    def _bucket_operations(self, bucket: Bucket, owner: OwnerScope) -> list[Operation]:
        if owner is NOT_VISIBLE:
            return []
        upper = (
            Operation.date <= bucket.end
            if bucket.inclusive_end
            else Operation.date < bucket.end
        )
        stmt = (
            select(Operation)
            .options(joinedload(Operation.category), joinedload(Operation.user))
            .where(Operation.date >= bucket.start, upper)
            .order_by(Operation.date.desc(), Operation.id.desc())
        )
        if owner is not None:
            stmt = stmt.where(Operation.user_id == owner)
        return list(self.session.scalars(stmt).all())

    def _stored_totals(self, model, key: dict[str, object], owner: OwnerScope) -> Totals:
        if owner is NOT_VISIBLE:
            return Totals()
        stmt = select(
            func.coalesce(func.sum(model.total_income_cents), 0),
            func.coalesce(func.sum(model.total_expense_cents), 0),
        )
        for column, value in key.items():
            stmt = stmt.where(getattr(model, column) == value)
        if owner is not None:
            stmt = stmt.where(model.user_id == owner)
        income, expense = self.session.execute(stmt).one()
        return Totals(int(income or 0), int(expense or 0))

    def _view(
        self,
        principal: Principal,
        period: str,
        bucket: Bucket,
        model,
        key: dict[str, object],
        user_id: Optional[int],
    ) -> SummaryView:
        owner = self.policy.scope_owner(principal, user_id)
        return SummaryView(
            period=period,
            bucket=bucket,
            key=key,
            totals=self._stored_totals(model, key, owner),
            operations=self._bucket_operations(bucket, owner),
            is_admin=principal.is_admin,
            filtered_by_user=user_id,
        )

    def day_summary(
        self, principal: Principal, on: Optional[date] = None, user_id: Optional[int] = None
    ) -> SummaryView:
        moment = reference_moment(on, self.timezone)
        return self._view(
            principal,
            "day",
            day_bucket(moment),
            DailySummary,
            {"date": moment.date()},
            user_id,
        )

    def week_summary(
        self, principal: Principal, on: Optional[date] = None, user_id: Optional[int] = None
    ) -> SummaryView:
        moment = reference_moment(on, self.timezone)
        week, year = iso_week_key(moment)
        view = self._view(
            principal,
            "week",
            sunday_week_bucket(moment),
            WeeklySummary,
            {"week": week, "year": year},
            user_id,
        )
        for day in week_days(view.bucket):
            members = [op for op in view.operations if day.contains(op.date)]
            view.breakdown.append(
                Breakdown(day.start, day.end, Totals.of(members), members)
            )
        return view

    def month_summary(
        self, principal: Principal, on: Optional[date] = None, user_id: Optional[int] = None
    ) -> SummaryView:
        moment = reference_moment(on, self.timezone)
        view = self._view(
            principal,
            "month",
            month_bucket(moment),
            MonthlySummary,
            {"month": moment.month, "year": moment.year},
            user_id,
        )
        for chunk in month_weeks(view.bucket):
            members = [op for op in view.operations if chunk.contains(op.date)]
            view.breakdown.append(
                Breakdown(chunk.start, chunk.end, Totals.of(members), members)
            )
        return view

    def list_summaries(
        self,
        principal: Principal,
        granularity: str,
        *,
        user_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Page:
        if granularity not in SUMMARY_MODELS:
            raise ValidationError.for_field(
                "granularity", "Expected one of: daily, weekly, monthly"
            )
        model, ordering = SUMMARY_MODELS[granularity]
        owner = self.policy.scope_owner(principal, user_id)
        if owner is NOT_VISIBLE:
            return Page([], 0, limit, offset)
        stmt = select(model).order_by(*ordering, model.user_id).limit(limit).offset(offset)
        count_stmt = select(func.count(model.id))
        if owner is not None:
            stmt = stmt.where(model.user_id == owner)
            count_stmt = count_stmt.where(model.user_id == owner)
        items = self.session.scalars(stmt).all()
        total = int(self.session.execute(count_stmt).scalar_one() or 0)
        return Page(list(items), total, limit, offset)


class CategoryService:
    def __init__(self, session: Session, policy: Optional[AccessPolicy] = None) -> None:
        self.session = session
        self.policy = policy or AccessPolicy()

    def list_all(self, principal: Principal) -> list[Category]:
        return self.session.scalars(select(Category).order_by(Category.name)).all()

    def get(self, principal: Principal, category_id: int) -> Category:
        self.policy.require_admin(principal)
        category = self.session.scalar(
            select(Category)
            .options(selectinload(Category.operations))
            .where(Category.id == category_id)
        )
        if not category:
            raise NotFoundError("Category not found")
        return category

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Category.id).where(func.lower(Category.name) == name.lower())
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def create(self, principal: Principal, data: CategoryIn) -> Category:
        self.policy.require_admin(principal)
        if self._name_taken(data.name):
            raise ValidationError.for_field(
                "name", "Category with this name already exists"
            )
        category = Category(name=data.name, type=data.type)
        self.session.add(category)
        _commit(self.session, "category_create")
        logger.info(f"category_create: id={category.id} type={data.type.value}")
        return category

    def update(self, principal: Principal, category_id: int, data: CategoryIn) -> Category:
        self.policy.require_admin(principal)
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFoundError("Category not found")
        if self._name_taken(data.name, exclude_id=category_id):
            raise ValidationError.for_field(
                "name", "Category with this name already exists"
            )
        category.name = data.name
        category.type = data.type
        _commit(self.session, "category_update")
        logger.info(f"category_update: id={category.id}")
        return category

    def delete(self, principal: Principal, category_id: int) -> None:
        self.policy.require_admin(principal)
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFoundError("Category not found")
        in_use = int(
            self.session.execute(
                select(func.count(Operation.id)).where(
                    Operation.category_id == category_id
                )
            ).scalar_one()
            or 0
        )
        if in_use:
            raise ValidationError(
                "Category still has operations and cannot be deleted",
                details={"operations_count": in_use},
            )
        self.session.delete(category)
        _commit(self.session, "category_delete")
        logger.info(f"category_delete: id={category_id}")


class UserService:
    def __init__(
        self,
        session: Session,
        policy: Optional[AccessPolicy] = None,
        bcrypt_rounds: int = 12,
    ) -> None:
        self.session = session
        self.policy = policy or AccessPolicy()
        self.bcrypt_rounds = bcrypt_rounds

    def _email_taken(self, email: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(User.id).where(User.email == email)
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def profile(self, principal: Principal) -> User:
        user = self.session.get(User, principal.id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def list_all(self, principal: Principal) -> list[User]:
        self.policy.require_admin(principal)
        return self.session.scalars(
            select(User).order_by(User.created_at.desc(), User.id.desc())
        ).all()

    def create(self, principal: Principal, data: UserCreateIn) -> User:
        self.policy.require_admin(principal)
        email = str(data.email).strip().lower()
        if self._email_taken(email):
            raise ValidationError.for_field("email", "Email already in use")
        user = User(
            email=email,
            name=data.name.strip(),
            password_hash=hash_password(data.password, self.bcrypt_rounds),
            role=data.role,
        )
        self.session.add(user)
        _commit(self.session, "user_create")
        logger.info(f"user_create: id={user.id} role={user.role.value}")
        return user

    def update(self, principal: Principal, user_id: int, patch: UserPatch) -> User:
        self.policy.require_admin(principal)
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        changes = patch.model_dump(exclude_unset=True, exclude_none=True)
        if "email" in changes:
            email = str(changes["email"]).strip().lower()
            if self._email_taken(email, exclude_id=user_id):
                raise ValidationError.for_field("email", "Email already in use")
            user.email = email
        if "name" in changes:
            user.name = changes["name"].strip()
        if "role" in changes:
            user.role = changes["role"]
        if "password" in changes:
            user.password_hash = hash_password(changes["password"], self.bcrypt_rounds)
        _commit(self.session, "user_update")
        logger.info(
            f"user_update: id={user.id} fields={','.join(sorted(changes))}"
        )
        return user

    def delete(self, principal: Principal, user_id: int) -> None:
        self.policy.require_admin(principal)
        if user_id == principal.id:
            raise ValidationError("You cannot delete your own account")
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        owned = int(
            self.session.execute(
                select(func.count(Operation.id)).where(Operation.user_id == user_id)
            ).scalar_one()
            or 0
        )
        if owned:
            raise ValidationError(
                "User still owns operations and cannot be deleted",
                details={"operations_count": owned},
            )
        for model in (DailySummary, WeeklySummary, MonthlySummary):
            self.session.execute(delete(model).where(model.user_id == user_id))
        self.session.delete(user)
        _commit(self.session, "user_delete")
        logger.info(f"user_delete: id={user_id}")

    def ensure_admin(self, email: str, password: str) -> User:
        email = email.strip().lower()
        user = self.session.scalar(select(User).where(User.email == email))
        if user:
            logger.info(f"admin_seed: exists user_id={user.id}")
            return user
        user = User(
            email=email,
            name="Administrator",
            password_hash=hash_password(password, self.bcrypt_rounds),
            role=UserRole.admin,
        )
        self.session.add(user)
        _commit(self.session, "admin_seed")
        logger.info(f"admin_seed: created user_id={user.id}")
        return user
