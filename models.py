from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class OperationType(str, Enum):
    income = "income"
    expense = "expense"


class UserRole(str, Enum):
    admin = "ADMIN"
    user = "USER"


USER_ROLE_ENUM = SAEnum(
    UserRole,
    name="userrole",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(100))
    role: Mapped[UserRole] = mapped_column(
        USER_ROLE_ENUM, nullable=False, default=UserRole.user
    )

    operations: Mapped[list["Operation"]] = relationship(
        "Operation", back_populates="user"
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    type: Mapped[OperationType] = mapped_column(SAEnum(OperationType), nullable=False)

    operations: Mapped[list["Operation"]] = relationship(
        "Operation", back_populates="category"
    )


class Operation(Base, TimestampMixin):
    __tablename__ = "operations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    type: Mapped[OperationType] = mapped_column(SAEnum(OperationType), nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    # naive datetime in the configured local timezone
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="operations")
    category: Mapped["Category"] = relationship(
        "Category", back_populates="operations"
    )

    __table_args__ = (
        Index("ix_operations_user_date", "user_id", "date"),
        Index("ix_operations_category", "category_id"),
        CheckConstraint("amount_cents > 0", name="ck_operations_amount_positive"),
    )


class SummaryColumnsMixin:
    total_income_cents: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    total_expense_cents: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    balance_cents: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )


class DailySummary(Base, SummaryColumnsMixin, TimestampMixin):
    __tablename__ = "daily_summaries"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_daily_summary_user_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)


class WeeklySummary(Base, SummaryColumnsMixin, TimestampMixin):
    __tablename__ = "weekly_summaries"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "week", "year", name="uq_weekly_summary_user_week"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    week: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)


class MonthlySummary(Base, SummaryColumnsMixin, TimestampMixin):
    __tablename__ = "monthly_summaries"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "month", "year", name="uq_monthly_summary_user_month"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
