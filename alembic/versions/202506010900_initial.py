"""initial schema: ledger and summary tables

Revision ID: 202506010900
Revises:
Create Date: 2025-06-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202506010900"
down_revision = None
branch_labels = None
depends_on = None


def _summary_columns():
    return [
        sa.Column("total_income_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column(
            "total_expense_cents", sa.BigInteger(), nullable=False, server_default="0"
        ),
        sa.Column("balance_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=100)),
        sa.Column(
            "role", sa.Enum("ADMIN", "USER", name="userrole"), nullable=False
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column(
            "type", sa.Enum("income", "expense", name="operationtype"), nullable=False
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "operations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column(
            "type", sa.Enum("income", "expense", name="operationtype"), nullable=False
        ),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_operations_amount_positive"),
    )
    op.create_index("ix_operations_user_date", "operations", ["user_id", "date"])
    op.create_index("ix_operations_category", "operations", ["category_id"])

    op.create_table(
        "daily_summaries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        *_summary_columns(),
        sa.UniqueConstraint("user_id", "date", name="uq_daily_summary_user_date"),
    )

    op.create_table(
        "weekly_summaries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("week", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        *_summary_columns(),
        sa.UniqueConstraint(
            "user_id", "week", "year", name="uq_weekly_summary_user_week"
        ),
    )

    op.create_table(
        "monthly_summaries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        *_summary_columns(),
        sa.UniqueConstraint(
            "user_id", "month", "year", name="uq_monthly_summary_user_month"
        ),
    )


def downgrade():
    op.drop_table("monthly_summaries")
    op.drop_table("weekly_summaries")
    op.drop_table("daily_summaries")
    op.drop_index("ix_operations_category", table_name="operations")
    op.drop_index("ix_operations_user_date", table_name="operations")
    op.drop_table("operations")
    op.drop_table("categories")
    op.drop_table("users")
