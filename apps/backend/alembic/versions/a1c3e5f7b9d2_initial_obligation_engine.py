"""initial obligation engine tables

Revision ID: a1c3e5f7b9d2
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a1c3e5f7b9d2"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_table(
        "userprofile",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, unique=True),
        sa.Column("display_name", sa.String(length=100), nullable=True),
        sa.Column("base_currency", sa.String(length=3), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["user.id"], ),
    )
    op.create_table(
        "account",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("institution", sa.String(length=120), nullable=True),
        sa.Column("current_balance", sa.Numeric(18, 4), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["user.id"], ),
        sa.UniqueConstraint("user_id", "name", name="uq_account_name"),
    )
    op.create_table(
        "recurringrule",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("type", sa.Enum("INCOME", "EXPENSE", name="txntype"), nullable=False),
        sa.Column("category", sa.String(length=60), nullable=False),
        sa.Column("amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=True),
        sa.Column(
            "frequency",
            sa.Enum("DAILY", "WEEKLY", "BIWEEKLY", "MONTHLY", "YEARLY", name="recurringfrequency"),
            nullable=False,
        ),
        sa.Column("day_of_month", sa.Integer(), nullable=True),
        sa.Column("day_of_week", sa.Integer(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("next_due_date", sa.Date(), nullable=True),
        sa.Column("last_generated_date", sa.Date(), nullable=True),
        sa.Column("is_installment", sa.Boolean(), nullable=False),
        sa.Column("total_installments", sa.Integer(), nullable=False),
        sa.Column("current_installment", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("notify_days_before", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["user.id"], ),
        sa.ForeignKeyConstraint(["account_id"], ["account.id"], ondelete="SET NULL"),
        sa.CheckConstraint("amount > 0", name="ck_recurring_amount_positive"),
        sa.CheckConstraint("day_of_month IS NULL OR (day_of_month BETWEEN 1 AND 31)", name="ck_recurring_day_of_month"),
        sa.CheckConstraint("day_of_week IS NULL OR (day_of_week BETWEEN 0 AND 6)", name="ck_recurring_day_of_week"),
        sa.CheckConstraint("end_date IS NULL OR end_date >= start_date", name="ck_recurring_window"),
        sa.CheckConstraint("total_installments >= 1 AND current_installment >= 1", name="ck_recurring_installments"),
    )
    op.create_index("ix_recurring_user_active", "recurringrule", ["user_id", "is_active"], unique=False)
    op.create_index("ix_recurring_next_due", "recurringrule", ["next_due_date"], unique=False)

    op.create_table(
        "bill",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("category", sa.String(length=60), nullable=False),
        sa.Column("amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("due_day", sa.Integer(), nullable=False),
        sa.Column("is_paid", sa.Boolean(), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("current_month", sa.Integer(), nullable=False),
        sa.Column("current_year", sa.Integer(), nullable=False),
        sa.Column("is_renewable", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["user.id"], ),
        sa.CheckConstraint("amount > 0", name="ck_bill_amount_positive"),
        sa.CheckConstraint("due_day BETWEEN 1 AND 31", name="ck_bill_due_day"),
        sa.CheckConstraint("current_month BETWEEN 1 AND 12", name="ck_bill_month"),
    )
    op.create_index("ix_bill_user_period", "bill", ["user_id", "current_year", "current_month"], unique=False)

    op.create_table(
        "transaction",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("occurred_at", sa.Date(), nullable=False),
        sa.Column("type", sa.Enum("INCOME", "EXPENSE", name="txn_type"), nullable=False),
        sa.Column("amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("category", sa.String(length=60), nullable=True),
        sa.Column("account_id", sa.Integer(), nullable=True),
        sa.Column("recurring_rule_id", sa.Integer(), nullable=True),
        sa.Column("bill_id", sa.Integer(), nullable=True),
        sa.Column("installment_number", sa.Integer(), nullable=True),
        sa.Column("total_installments", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["user.id"], ),
        sa.ForeignKeyConstraint(["account_id"], ["account.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["recurring_rule_id"], ["recurringrule.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["bill_id"], ["bill.id"], ondelete="SET NULL"),
        sa.CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
    )
    op.create_index("ix_transaction_user_date", "transaction", ["user_id", "occurred_at"], unique=False)

    op.create_table(
        "recurringoverride",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("rule_id", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("SKIP", "CUSTOM_AMOUNT", "PARTIAL_PAYMENT", name="overridekind"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(18, 4), nullable=True),
        sa.Column("original_amount", sa.Numeric(18, 4), nullable=True),
        sa.Column("paid_amount", sa.Numeric(18, 4), nullable=True),
        sa.Column("name", sa.String(length=120), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["user.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["rule_id"], ["recurringrule.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("rule_id", "month", "year", name="uq_recurring_override_period"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_recurring_override_month"),
    )
    op.create_index(
        "ix_recurring_override_user_period", "recurringoverride", ["user_id", "year", "month"], unique=False
    )

    op.create_table(
        "recurringpayment",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("rule_id", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("amount_paid", sa.Numeric(18, 4), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["user.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["rule_id"], ["recurringrule.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["transaction_id"], ["transaction.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("rule_id", "month", "year", name="uq_recurring_payment_period"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_recurring_payment_month"),
    )
    op.create_index(
        "ix_recurring_payment_user_period", "recurringpayment", ["user_id", "year", "month"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_recurring_payment_user_period", table_name="recurringpayment")
    op.drop_table("recurringpayment")
    op.drop_index("ix_recurring_override_user_period", table_name="recurringoverride")
    op.drop_table("recurringoverride")
    op.drop_index("ix_transaction_user_date", table_name="transaction")
    op.drop_table("transaction")
    op.drop_index("ix_bill_user_period", table_name="bill")
    op.drop_table("bill")
    op.drop_index("ix_recurring_next_due", table_name="recurringrule")
    op.drop_index("ix_recurring_user_active", table_name="recurringrule")
    op.drop_table("recurringrule")
    op.drop_table("account")
    op.drop_table("userprofile")
    op.drop_table("user")
