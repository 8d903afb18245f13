from __future__ import annotations

import math
from datetime import date, datetime
import datetime as dt
from typing import Optional, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import OverrideKind, RecurringFrequency, TxnType


def _finite(v: float | None) -> float | None:
    if v is not None and not math.isfinite(v):
        raise ValueError("amount must be finite")
    return v


# ---- Recurring rules ------------------------------------------------------
class RecurringRuleCreate(BaseModel):
    name: str
    type: TxnType = TxnType.EXPENSE
    category: str = "outros"
    amount: float
    account_id: Optional[int] = None
    frequency: RecurringFrequency = RecurringFrequency.MONTHLY
    day_of_month: Optional[int] = None
    day_of_week: Optional[int] = None
    start_date: date
    end_date: Optional[date] = None
    is_installment: bool = False
    total_installments: int = 1
    notify_days_before: int = 3

    @field_validator("amount")
    def amount_finite(cls, v: float):
        return _finite(v)

    @field_validator("name", "category")
    def strip_text(cls, v: str):
        return v.strip()


class RecurringRuleUpdate(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    amount: Optional[float] = None
    account_id: Optional[int] = None
    day_of_month: Optional[int] = None
    day_of_week: Optional[int] = None
    end_date: Optional[date] = None
    is_active: Optional[bool] = None
    notify_days_before: Optional[int] = None

    @field_validator("amount")
    def amount_finite(cls, v: float | None):
        return _finite(v)


class InstallmentPlanCreate(BaseModel):
    name: str
    total_amount: float
    installments: int
    purchase_date: date
    category: str = "outros"
    account_id: Optional[int] = None
    first_due_next_month: bool = False

    @field_validator("total_amount")
    def amount_finite(cls, v: float):
        return _finite(v)


class RecurringRuleOut(BaseModel):
    id: int
    user_id: int
    name: str
    type: TxnType
    category: str
    amount: float
    account_id: Optional[int]
    frequency: RecurringFrequency
    day_of_month: Optional[int]
    day_of_week: Optional[int]
    start_date: date
    end_date: Optional[date]
    next_due_date: Optional[date]
    last_generated_date: Optional[date]
    is_installment: bool
    total_installments: int
    current_installment: int
    is_active: bool
    notify_days_before: int

    model_config = ConfigDict(from_attributes=True)


# ---- Overrides ------------------------------------------------------------
class RecurringOverrideUpsert(BaseModel):
    kind: OverrideKind = OverrideKind.CUSTOM_AMOUNT
    amount: Optional[float] = None
    paid_amount: Optional[float] = None
    name: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("amount", "paid_amount")
    def amount_finite(cls, v: float | None):
        return _finite(v)


class RecurringOverrideOut(BaseModel):
    id: int
    rule_id: int
    month: int
    year: int
    kind: OverrideKind
    amount: Optional[float]
    original_amount: Optional[float]
    paid_amount: Optional[float]
    name: Optional[str]
    notes: Optional[str]

    model_config = ConfigDict(from_attributes=True)


# ---- Bills ----------------------------------------------------------------
class BillCreate(BaseModel):
    name: str
    category: str = "contas"
    amount: float
    due_day: int
    current_month: Optional[int] = None
    current_year: Optional[int] = None
    is_renewable: bool = True
    notes: Optional[str] = None

    @field_validator("amount")
    def amount_finite(cls, v: float):
        return _finite(v)

    @model_validator(mode="after")
    def month_and_year_together(self):
        if (self.current_month is None) != (self.current_year is None):
            raise ValueError("current_month and current_year must be provided together")
        return self


class BillUpdate(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    amount: Optional[float] = None
    due_day: Optional[int] = None
    is_renewable: Optional[bool] = None
    notes: Optional[str] = None

    @field_validator("amount")
    def amount_finite(cls, v: float | None):
        return _finite(v)


class BillOut(BaseModel):
    id: int
    name: str
    category: str
    amount: float
    due_day: int
    is_paid: bool
    paid_at: Optional[datetime]
    current_month: int
    current_year: int
    is_renewable: bool
    notes: Optional[str]

    model_config = ConfigDict(from_attributes=True)


# ---- Obligations ----------------------------------------------------------
class ObligationOut(BaseModel):
    id: int
    is_recurring: bool
    name: str
    category: str
    type: TxnType
    amount: float
    nominal_amount: float
    due_date: date
    due_day: int
    month: int
    year: int
    is_paid: bool
    urgency: Literal["paid", "overdue", "today", "soon", "upcoming", "normal"]
    days_until_due: int
    account_id: Optional[int] = None
    override_kind: Optional[OverrideKind] = None
    amount_paid: Optional[float] = None
    occurrence_count: int = 1
    installment_number: Optional[int] = None
    period_installment: Optional[int] = None
    total_installments: Optional[int] = None
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ObligationSummaryOut(BaseModel):
    month: int
    year: int
    total: float
    paid: float
    pending: float
    expected_income: float
    paid_count: int
    pending_count: int
    overdue_count: int
    total_count: int
    by_urgency: dict[str, int] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class SettleRequest(BaseModel):
    is_recurring: bool = False
    month: Optional[int] = Field(default=None, ge=1, le=12)
    year: Optional[int] = Field(default=None, ge=1900, le=9999)


class TransactionOut(BaseModel):
    id: int
    occurred_at: date
    type: TxnType
    amount: float
    description: str
    category: Optional[str]
    account_id: Optional[int]
    recurring_rule_id: Optional[int]
    bill_id: Optional[int]
    installment_number: Optional[int]
    total_installments: Optional[int]

    model_config = ConfigDict(from_attributes=True)


class RecurringPaymentOut(BaseModel):
    id: int
    rule_id: int
    month: int
    year: int
    amount_paid: float
    paid_at: datetime
    transaction_id: Optional[int]

    model_config = ConfigDict(from_attributes=True)


class SettlementOut(BaseModel):
    transaction: TransactionOut
    payment: Optional[RecurringPaymentOut] = None
    rule: Optional[RecurringRuleOut] = None
    bill: Optional[BillOut] = None

    model_config = ConfigDict(from_attributes=True)


# ---- Projections ----------------------------------------------------------
class ProjectedEventOut(BaseModel):
    source: Literal["rule", "bill"]
    id: int
    name: str
    amount: float

    model_config = ConfigDict(from_attributes=True)


class DayProjectionOut(BaseModel):
    date: dt.date
    income: float
    expense: float
    net: float
    balance: float
    confidence: float
    events: list[ProjectedEventOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class ForecastAlertOut(BaseModel):
    level: Literal["critical", "warning"]
    date: dt.date
    balance: float
    message: str

    model_config = ConfigDict(from_attributes=True)


class CashflowForecastOut(BaseModel):
    user_id: int
    start_date: date
    horizon_days: int
    start_balance: float
    end_balance: float
    min_balance: float
    min_balance_date: date
    max_balance: float
    total_income: float
    total_expense: float
    days: list[DayProjectionOut]
    alerts: list[ForecastAlertOut]
    data_complete: bool
    warnings: list[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class MonthProjectionOut(BaseModel):
    month: int
    year: int
    start_balance: float
    fixed_income: float
    fixed_expense: float
    bills_due: int
    bills_total: float
    variable_income: float
    variable_expense: float
    net_flow: float
    end_balance: float
    confidence: float

    model_config = ConfigDict(from_attributes=True)


class TrendAnalysisOut(BaseModel):
    trend: Literal["positive", "negative", "stable"]
    average_net_flow: float
    months_to_negative: Optional[float] = None
    savings_rate: float
    methodology: str
    description: str
    recommendation: str

    model_config = ConfigDict(from_attributes=True)


class BalanceForecastOut(BaseModel):
    user_id: int
    current_balance: float
    average_income: float
    average_expense: float
    projections: list[MonthProjectionOut]
    analysis: TrendAnalysisOut
    alerts: list[ForecastAlertOut]
    data_complete: bool
    warnings: list[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class CategoryMonthProjectionOut(BaseModel):
    month: int
    year: int
    projected: float
    confidence: float

    model_config = ConfigDict(from_attributes=True)


class CategoryProjectionOut(BaseModel):
    category: str
    average_monthly: float
    total_spent: float
    months_of_data: int
    direction: Literal["up", "down", "stable"]
    rate: float
    description: str
    projections: list[CategoryMonthProjectionOut]

    model_config = ConfigDict(from_attributes=True)


class CategoryAverageOut(BaseModel):
    category: str
    average_monthly: float

    model_config = ConfigDict(from_attributes=True)


class CategorySpendingSummaryOut(BaseModel):
    total_categories: int
    average_projected_expense: float
    top_categories: list[CategoryAverageOut]
    growing_categories: list[str]
    declining_categories: list[str]

    model_config = ConfigDict(from_attributes=True)


class CategoryForecastOut(BaseModel):
    user_id: int
    horizon_months: int
    categories: list[CategoryProjectionOut]
    summary: CategorySpendingSummaryOut

    model_config = ConfigDict(from_attributes=True)


class BalanceOutlookOut(BaseModel):
    current_balance: float
    projected_balance: Optional[float] = None
    trend: Literal["positive", "negative", "stable"]
    savings_rate: float


class ExpenseOutlookOut(BaseModel):
    top_categories: list[CategoryAverageOut]
    growing_categories: list[str]
    average_monthly: float


class CashflowOutlookOut(BaseModel):
    lowest_balance: float
    lowest_balance_date: date
    alerts: int
    critical: bool


class ProjectionSummaryOut(BaseModel):
    user_id: int
    balance: BalanceOutlookOut
    expenses: ExpenseOutlookOut
    cashflow: CashflowOutlookOut
    data_complete: bool

    model_config = ConfigDict(from_attributes=True)
