from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Index,
    Boolean,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .core.database import Base


def now_utc_naive() -> datetime:
    """Return a naive datetime on the UTC calendar."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc_naive, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc_naive, onupdate=now_utc_naive, nullable=False)


class User(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    profile: Mapped["UserProfile"] = relationship(back_populates="user", uselist=False)


class UserProfile(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(100))
    base_currency: Mapped[str | None] = mapped_column(String(3))

    user: Mapped[User] = relationship(back_populates="profile")


class Account(Base, TimestampMixin):
    """Source of the starting balance for projections.

    The ledger collaborator owns this schema; the engine only reads
    ``current_balance`` and nudges it when a settlement is recorded.
    ``current_balance`` is NULL while the balance is unknown (e.g. not synced yet).
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    institution: Mapped[str | None] = mapped_column(String(120))
    current_balance: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), default=0, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="BRL", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_account_name"),)

    @property
    def balance(self) -> float:
        return float(self.current_balance or 0)


class TxnType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"

    @property
    def sign(self) -> int:
        return 1 if self is TxnType.INCOME else -1


class Transaction(Base, TimestampMixin):
    """Ledger entry. Amounts are stored as positive magnitudes; ``type`` carries direction."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    occurred_at: Mapped[date] = mapped_column(Date, nullable=False)
    type: Mapped[TxnType] = mapped_column(SAEnum(TxnType, name="txn_type"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="BRL", nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str | None] = mapped_column(String(60))
    account_id: Mapped[int | None] = mapped_column(ForeignKey("account.id", ondelete="SET NULL"))
    recurring_rule_id: Mapped[int | None] = mapped_column(ForeignKey("recurringrule.id", ondelete="SET NULL"))
    bill_id: Mapped[int | None] = mapped_column(ForeignKey("bill.id", ondelete="SET NULL"))
    installment_number: Mapped[int | None] = mapped_column(Integer)
    total_installments: Mapped[int | None] = mapped_column(Integer)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
        Index("ix_transaction_user_date", "user_id", "occurred_at"),
    )

    @property
    def signed_amount(self) -> Decimal:
        return Decimal(self.amount) * self.type.sign


class RecurringFrequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class RecurringRule(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[TxnType] = mapped_column(SAEnum(TxnType), nullable=False)
    category: Mapped[str] = mapped_column(String(60), nullable=False, default="outros")
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    account_id: Mapped[int | None] = mapped_column(ForeignKey("account.id", ondelete="SET NULL"))
    frequency: Mapped[RecurringFrequency] = mapped_column(SAEnum(RecurringFrequency), nullable=False)
    day_of_month: Mapped[int | None] = mapped_column(Integer)  # 1-31, clamped to month length
    day_of_week: Mapped[int | None] = mapped_column(Integer)  # 0=Sun .. 6=Sat
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date)
    next_due_date: Mapped[date | None] = mapped_column(Date)
    last_generated_date: Mapped[date | None] = mapped_column(Date)
    is_installment: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    total_installments: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    current_installment: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_days_before: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    # bumped on every UPDATE; a stale copy fails to flush with StaleDataError
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    account: Mapped["Account | None"] = relationship("Account", foreign_keys=[account_id])
    overrides: Mapped[list["RecurringOverride"]] = relationship(
        back_populates="rule", cascade="all, delete-orphan", passive_deletes=True
    )
    payments: Mapped[list["RecurringPayment"]] = relationship(
        back_populates="rule", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_recurring_amount_positive"),
        CheckConstraint("day_of_month IS NULL OR (day_of_month BETWEEN 1 AND 31)", name="ck_recurring_day_of_month"),
        CheckConstraint("day_of_week IS NULL OR (day_of_week BETWEEN 0 AND 6)", name="ck_recurring_day_of_week"),
        CheckConstraint("end_date IS NULL OR end_date >= start_date", name="ck_recurring_window"),
        CheckConstraint("total_installments >= 1 AND current_installment >= 1", name="ck_recurring_installments"),
        Index("ix_recurring_user_active", "user_id", "is_active"),
        Index("ix_recurring_next_due", "next_due_date"),
    )
    __mapper_args__ = {"version_id_col": version}

    @property
    def anchor_day(self) -> int:
        return self.day_of_month or self.start_date.day


class OverrideKind(str, Enum):
    SKIP = "skip"
    CUSTOM_AMOUNT = "custom_amount"
    PARTIAL_PAYMENT = "partial_payment"


class RecurringOverride(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    rule_id: Mapped[int] = mapped_column(ForeignKey("recurringrule.id", ondelete="CASCADE"), nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[OverrideKind] = mapped_column(SAEnum(OverrideKind), nullable=False, default=OverrideKind.CUSTOM_AMOUNT)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    original_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    paid_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    name: Mapped[str | None] = mapped_column(String(120))
    notes: Mapped[str | None] = mapped_column(Text)

    rule: Mapped[RecurringRule] = relationship(back_populates="overrides")

    __table_args__ = (
        UniqueConstraint("rule_id", "month", "year", name="uq_recurring_override_period"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_recurring_override_month"),
        Index("ix_recurring_override_user_period", "user_id", "year", "month"),
    )


class RecurringPayment(Base, TimestampMixin):
    """Proof that a rule was settled for a period. At most one per (rule, month, year)."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    rule_id: Mapped[int] = mapped_column(ForeignKey("recurringrule.id", ondelete="CASCADE"), nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    paid_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc_naive, nullable=False)
    transaction_id: Mapped[int | None] = mapped_column(ForeignKey("transaction.id", ondelete="SET NULL"))

    rule: Mapped[RecurringRule] = relationship(back_populates="payments")

    __table_args__ = (
        UniqueConstraint("rule_id", "month", "year", name="uq_recurring_payment_period"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_recurring_payment_month"),
        Index("ix_recurring_payment_user_period", "user_id", "year", "month"),
    )


class Bill(Base, TimestampMixin):
    """One-off obligation stamped to a single (month, year)."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    category: Mapped[str] = mapped_column(String(60), nullable=False, default="outros")
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    due_day: Mapped[int] = mapped_column(Integer, nullable=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime)
    current_month: Mapped[int] = mapped_column(Integer, nullable=False)
    current_year: Mapped[int] = mapped_column(Integer, nullable=False)
    is_renewable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_bill_amount_positive"),
        CheckConstraint("due_day BETWEEN 1 AND 31", name="ck_bill_due_day"),
        CheckConstraint("current_month BETWEEN 1 AND 12", name="ck_bill_month"),
        Index("ix_bill_user_period", "user_id", "current_year", "current_month"),
    )
