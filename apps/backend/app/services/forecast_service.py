"""Forward balance projection over recurring obligations and bills.

Projections are advisory: they read whatever snapshot of rules, overrides and
payments the session sees and never write. Missing account data degrades the
result (``data_complete = False``) instead of failing.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session, sessionmaker

from app import models
from app.core.config import settings
from app.core.database import SessionLocal, session_scope
from app.services.calendar_evaluator import Period, evaluate
from app.services.obligation_service import ObligationService, bill_obligation, resolve_obligation


logger = logging.getLogger(__name__)


@dataclass
class ProjectedEvent:
    source: str  # "rule" | "bill"
    id: int
    name: str
    amount: float  # signed


@dataclass
class DayProjection:
    date: date
    income: float
    expense: float
    net: float
    balance: float
    confidence: float
    events: list[ProjectedEvent] = field(default_factory=list)


@dataclass
class MonthProjection:
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


@dataclass
class ForecastAlert:
    level: str  # "critical" | "warning"
    date: date
    balance: float
    message: str


@dataclass
class CashflowForecast:
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
    days: list[DayProjection]
    alerts: list[ForecastAlert]
    data_complete: bool
    warnings: list[str] = field(default_factory=list)


@dataclass
class TrendAnalysis:
    trend: str  # "positive" | "negative" | "stable"
    average_net_flow: float
    months_to_negative: Optional[float]
    savings_rate: float
    methodology: str
    description: str = ""
    recommendation: str = ""


@dataclass
class BalanceForecast:
    user_id: int
    current_balance: float
    average_income: float
    average_expense: float
    projections: list[MonthProjection]
    analysis: TrendAnalysis
    alerts: list[ForecastAlert]
    data_complete: bool
    warnings: list[str] = field(default_factory=list)


@dataclass
class BatchProjection:
    results: dict[int, CashflowForecast] = field(default_factory=dict)
    failures: dict[int, str] = field(default_factory=dict)


@dataclass
class CategoryMonthProjection:
    month: int
    year: int
    projected: float
    confidence: float


@dataclass
class CategoryProjection:
    category: str
    average_monthly: float
    total_spent: float
    months_of_data: int
    direction: str  # "up" | "down" | "stable"
    rate: float  # mean month-over-month change, percent
    description: str
    projections: list[CategoryMonthProjection] = field(default_factory=list)


@dataclass
class CategoryAverage:
    category: str
    average_monthly: float


@dataclass
class CategorySpendingSummary:
    total_categories: int
    average_projected_expense: float
    top_categories: list[CategoryAverage]
    growing_categories: list[str]
    declining_categories: list[str]


@dataclass
class CategoryForecast:
    user_id: int
    horizon_months: int
    categories: list[CategoryProjection]
    summary: CategorySpendingSummary


@dataclass
class BalanceOutlook:
    current_balance: float
    projected_balance: Optional[float]
    trend: str
    savings_rate: float


@dataclass
class ExpenseOutlook:
    top_categories: list[CategoryAverage]
    growing_categories: list[str]
    average_monthly: float


@dataclass
class CashflowOutlook:
    lowest_balance: float
    lowest_balance_date: date
    alerts: int
    critical: bool


@dataclass
class ProjectionSummary:
    user_id: int
    balance: BalanceOutlook
    expenses: ExpenseOutlook
    cashflow: CashflowOutlook
    data_complete: bool


def day_confidence(days_ahead: int) -> float:
    return max(0.5, 1.0 - 0.01 * days_ahead)


def month_confidence(months_ahead: int) -> float:
    return max(0.5, 1.0 - 0.1 * months_ahead)


def balance_alerts(points: Iterable[tuple[date, float]], threshold: float) -> list[ForecastAlert]:
    """Alert on the lowest point of a trajectory.

    ``critical`` fires at the first day the balance goes negative; otherwise a
    single ``warning`` is raised at the minimum when it dips below ``threshold``.
    """
    points = list(points)
    if not points:
        return []
    for when, balance in points:
        if balance < 0:
            return [ForecastAlert("critical", when, round(balance, 2), "Projected balance goes negative")]
    when, low = min(points, key=lambda p: p[1])
    if low < threshold:
        return [ForecastAlert("warning", when, round(low, 2), f"Projected balance drops below {threshold:.2f}")]
    return []


def trend_description(trend: str, average_net_flow: float) -> str:
    if trend == "positive":
        return f"Saving {average_net_flow:.2f} per month on average"
    if trend == "negative":
        return f"Spending {abs(average_net_flow):.2f} more than earned per month"
    return "Balance is stable"


def balance_recommendation(trend: str, average_net_flow: float, balance: float) -> str:
    if trend == "negative":
        return "Cut variable spending and review subscriptions to balance the budget"
    if balance < settings.EMERGENCY_RESERVE:
        return "Build an emergency reserve before taking on new commitments"
    if average_net_flow > settings.INVESTABLE_SURPLUS:
        return "Consider investing part of the monthly surplus"
    return "Keep spending under control"


def spending_trend(values: list[float], threshold: float) -> tuple[str, float]:
    """Mean relative month-over-month change of ``values`` and its direction.

    Steps starting from a zero month add nothing but still count in the mean.
    """
    if len(values) < 2:
        return "stable", 0.0
    total = sum((cur - prev) / prev for prev, cur in zip(values, values[1:]) if prev > 0)
    rate = total / (len(values) - 1)
    if rate > threshold:
        return "up", rate
    if rate < -threshold:
        return "down", rate
    return "stable", rate


class ForecastProjector:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.obligations = ObligationService(db)

    # ---- Inputs ----------------------------------------------------------
    def starting_balance(self, user_id: int) -> tuple[float, list[str]]:
        accounts = (
            self.db.query(models.Account)
            .filter(models.Account.user_id == user_id, models.Account.is_active.is_(True))
            .all()
        )
        warnings: list[str] = []
        if not accounts:
            warnings.append("no active accounts; starting balance assumed 0")
        unknown = [a.name for a in accounts if a.current_balance is None]
        if unknown:
            warnings.append(f"balance unknown for: {', '.join(sorted(unknown))}")
        return sum(a.balance for a in accounts), warnings

    def period_events(self, user_id: int, period: Period, today: date) -> list[tuple[date, ProjectedEvent]]:
        """Dated, signed cash movements of one period that are still outstanding.

        Skipped and settled periods contribute nothing; a rule's period amount
        is spread evenly across that period's occurrences.
        """
        svc = self.obligations
        overrides = svc.overrides.resolve_many(user_id, period.month, period.year)
        payments = svc.ledger.payments_for_period(user_id, period.month, period.year)
        events: list[tuple[date, ProjectedEvent]] = []
        for rule in svc.rules_for_period(user_id, period.month, period.year):
            evaluation = evaluate(rule, period.month, period.year)
            ob = resolve_obligation(rule, evaluation, overrides.get(rule.id), payments.get(rule.id), today)
            if ob is None or ob.is_paid:
                continue
            share = float(ob.signed_amount) / ob.occurrence_count
            for when in evaluation.occurrences:
                events.append((when, ProjectedEvent("rule", rule.id, ob.name, share)))
        for bill in svc.list_bills(user_id, period.month, period.year):
            if bill.is_paid:
                continue
            ob = bill_obligation(bill, today)
            events.append((ob.due_date, ProjectedEvent("bill", bill.id, ob.name, float(ob.signed_amount))))
        return events

    def variable_averages(self, user_id: int, today: date) -> tuple[float, float, int]:
        """Monthly average of non-recurring income and expense.

        Looks at the complete months before ``today``'s month; months without
        activity count as zero. Returns ``(income, expense, months_with_data)``.
        """
        months = settings.HISTORY_MONTHS
        current = Period.of(today)
        first = current.shift(-months)
        last = current.shift(-1)
        rows = (
            self.db.query(models.Transaction.type, models.Transaction.occurred_at, models.Transaction.amount)
            .filter(
                models.Transaction.user_id == user_id,
                models.Transaction.occurred_at >= first.first_day,
                models.Transaction.occurred_at <= last.last_day,
                models.Transaction.recurring_rule_id.is_(None),
                models.Transaction.bill_id.is_(None),
            )
            .all()
        )
        income = sum(float(amount) for kind, _, amount in rows if kind == models.TxnType.INCOME)
        expense = sum(float(amount) for kind, _, amount in rows if kind == models.TxnType.EXPENSE)
        active_months = len({Period.of(occurred) for _, occurred, _ in rows})
        return income / months, expense / months, active_months

    # ---- Projections -----------------------------------------------------
    def project_days(self, user_id: int, horizon_days: int, today: date) -> CashflowForecast:
        start_balance, warnings = self.starting_balance(user_id)
        end = today + timedelta(days=horizon_days)

        by_day: dict[date, list[ProjectedEvent]] = {}
        period = Period.of(today)
        while period <= Period.of(end):
            for when, event in self.period_events(user_id, period, today):
                if today <= when <= end:
                    by_day.setdefault(when, []).append(event)
            period = period.shift(1)

        days: list[DayProjection] = []
        balance = start_balance
        total_income = total_expense = 0.0
        for offset in range(horizon_days + 1):
            day = today + timedelta(days=offset)
            events = by_day.get(day, [])
            income = sum(e.amount for e in events if e.amount > 0)
            expense = -sum(e.amount for e in events if e.amount < 0)
            balance += income - expense
            total_income += income
            total_expense += expense
            days.append(
                DayProjection(
                    date=day,
                    income=round(income, 2),
                    expense=round(expense, 2),
                    net=round(income - expense, 2),
                    balance=round(balance, 2),
                    confidence=round(day_confidence(offset), 2),
                    events=events,
                )
            )

        low = min(days, key=lambda d: d.balance)
        if warnings:
            logger.warning("partial cash-flow projection for user=%s: %s", user_id, "; ".join(warnings))
        return CashflowForecast(
            user_id=user_id,
            start_date=today,
            horizon_days=horizon_days,
            start_balance=round(start_balance, 2),
            end_balance=days[-1].balance,
            min_balance=low.balance,
            min_balance_date=low.date,
            max_balance=max(d.balance for d in days),
            total_income=round(total_income, 2),
            total_expense=round(total_expense, 2),
            days=days,
            alerts=balance_alerts(((d.date, d.balance) for d in days), settings.LOW_BALANCE_THRESHOLD),
            data_complete=not warnings,
            warnings=warnings,
        )

    def project_months(self, user_id: int, horizon_months: int, today: date) -> BalanceForecast:
        start_balance, warnings = self.starting_balance(user_id)
        avg_income, avg_expense, active_months = self.variable_averages(user_id, today)
        weight = settings.VARIABLE_SPENDING_WEIGHT
        variable_income = avg_income * weight
        variable_expense = avg_expense * weight

        projections: list[MonthProjection] = []
        balance = start_balance
        current = Period.of(today)
        for i in range(1, horizon_months + 1):
            period = current.shift(i)
            fixed_income = fixed_expense = bills_total = 0.0
            bills_due = 0
            for _, event in self.period_events(user_id, period, today):
                if event.source == "bill":
                    bills_due += 1
                    bills_total += -event.amount
                elif event.amount > 0:
                    fixed_income += event.amount
                else:
                    fixed_expense += -event.amount
            net = fixed_income - fixed_expense - bills_total + variable_income - variable_expense
            opening = balance
            balance += net
            projections.append(
                MonthProjection(
                    month=period.month,
                    year=period.year,
                    start_balance=round(opening, 2),
                    fixed_income=round(fixed_income, 2),
                    fixed_expense=round(fixed_expense, 2),
                    bills_due=bills_due,
                    bills_total=round(bills_total, 2),
                    variable_income=round(variable_income, 2),
                    variable_expense=round(variable_expense, 2),
                    net_flow=round(net, 2),
                    end_balance=round(balance, 2),
                    confidence=round(month_confidence(i), 2),
                )
            )

        analysis = self._analyze(start_balance, projections, active_months)
        alerts = balance_alerts(
            ((Period(p.year, p.month).first_day, p.end_balance) for p in projections),
            settings.LOW_BALANCE_THRESHOLD,
        )
        if warnings:
            logger.warning("partial balance projection for user=%s: %s", user_id, "; ".join(warnings))
        return BalanceForecast(
            user_id=user_id,
            current_balance=round(start_balance, 2),
            average_income=round(avg_income, 2),
            average_expense=round(avg_expense, 2),
            projections=projections,
            analysis=analysis,
            alerts=alerts,
            data_complete=not warnings,
            warnings=warnings,
        )

    def _analyze(self, start_balance: float, projections: list[MonthProjection], active_months: int) -> TrendAnalysis:
        methodology = "three_month_average" if active_months else "insufficient_data"
        if not projections:
            return TrendAnalysis("stable", 0.0, None, 0.0, methodology)
        n = len(projections)
        avg_net = sum(p.net_flow for p in projections) / n
        avg_in = sum(p.fixed_income + p.variable_income for p in projections) / n
        trend = "positive" if avg_net > 0.005 else "negative" if avg_net < -0.005 else "stable"
        months_to_negative = None
        if trend == "negative":
            if start_balance <= 0:
                months_to_negative = 0.0
            else:
                months_to_negative = round(start_balance / abs(avg_net), 1)
        savings_rate = round(avg_net / avg_in * 100, 1) if avg_in > 0 else 0.0
        return TrendAnalysis(
            trend,
            round(avg_net, 2),
            months_to_negative,
            savings_rate,
            methodology,
            description=trend_description(trend, avg_net),
            recommendation=balance_recommendation(trend, avg_net, start_balance),
        )

    def project_categories(self, user_id: int, horizon_months: int, today: date) -> CategoryForecast:
        """Per-category expense outlook extrapolated from recent monthly totals.

        Only months in which a category had spending enter its history. The
        last observed month is compounded forward by the category's mean
        month-over-month change.
        """
        current = Period.of(today)
        first = current.shift(-settings.CATEGORY_HISTORY_MONTHS)
        last = current.shift(-1)
        rows = (
            self.db.query(models.Transaction.category, models.Transaction.occurred_at, models.Transaction.amount)
            .filter(
                models.Transaction.user_id == user_id,
                models.Transaction.type == models.TxnType.EXPENSE,
                models.Transaction.occurred_at >= first.first_day,
                models.Transaction.occurred_at <= last.last_day,
            )
            .all()
        )
        totals: dict[str, dict[Period, float]] = {}
        for category, occurred, amount in rows:
            by_month = totals.setdefault(category or "outros", {})
            period = Period.of(occurred)
            by_month[period] = by_month.get(period, 0.0) + float(amount)

        categories: list[CategoryProjection] = []
        for category, by_month in totals.items():
            values = [by_month[p] for p in sorted(by_month)]
            direction, rate = spending_trend(values, settings.CATEGORY_TREND_THRESHOLD)
            label = {"up": "Increasing", "down": "Decreasing"}.get(direction, "Stable")
            projected = values[-1]
            months: list[CategoryMonthProjection] = []
            for i in range(1, horizon_months + 1):
                projected *= 1 + rate
                period = current.shift(i)
                months.append(
                    CategoryMonthProjection(period.month, period.year, round(projected, 2), round(month_confidence(i), 2))
                )
            categories.append(
                CategoryProjection(
                    category=category,
                    average_monthly=round(sum(values) / len(values), 2),
                    total_spent=round(sum(values), 2),
                    months_of_data=len(values),
                    direction=direction,
                    rate=round(rate * 100, 1),
                    description=f"{label} {abs(rate) * 100:.1f}% per month",
                    projections=months,
                )
            )
        categories.sort(key=lambda c: (-c.average_monthly, c.category))

        projected_total = sum(m.projected for c in categories for m in c.projections)
        summary = CategorySpendingSummary(
            total_categories=len(categories),
            average_projected_expense=round(projected_total / horizon_months, 2) if horizon_months else 0.0,
            top_categories=[CategoryAverage(c.category, c.average_monthly) for c in categories[:5]],
            growing_categories=[c.category for c in categories if c.direction == "up"][:3],
            declining_categories=[c.category for c in categories if c.direction == "down"][:3],
        )
        return CategoryForecast(user_id, horizon_months, categories, summary)

    def summarize(self, user_id: int, today: date) -> ProjectionSummary:
        """Headline numbers of the balance, category and cash-flow projections."""
        months = settings.SUMMARY_MONTHS
        balance = self.project_months(user_id, months, today)
        spending = self.project_categories(user_id, months, today)
        cashflow = self.project_days(user_id, settings.DEFAULT_FORECAST_DAYS, today)
        return ProjectionSummary(
            user_id=user_id,
            balance=BalanceOutlook(
                current_balance=balance.current_balance,
                projected_balance=(balance.projections[-1].end_balance if balance.projections else None),
                trend=balance.analysis.trend,
                savings_rate=balance.analysis.savings_rate,
            ),
            expenses=ExpenseOutlook(
                top_categories=spending.summary.top_categories[:3],
                growing_categories=spending.summary.growing_categories,
                average_monthly=spending.summary.average_projected_expense,
            ),
            cashflow=CashflowOutlook(
                lowest_balance=cashflow.min_balance,
                lowest_balance_date=cashflow.min_balance_date,
                alerts=len(cashflow.alerts),
                critical=any(a.level == "critical" for a in cashflow.alerts),
            ),
            data_complete=balance.data_complete and cashflow.data_complete,
        )


def _project_one(factory: sessionmaker, user_id: int, horizon_days: int, today: date) -> CashflowForecast:
    with session_scope(factory) as db:
        return ForecastProjector(db).project_days(user_id, horizon_days, today)


def project_many(
    user_ids: Iterable[int],
    horizon_days: int,
    today: date,
    *,
    max_workers: Optional[int] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> BatchProjection:
    """Recompute cash-flow projections for many users on a bounded pool.

    Every task opens its own session; a failing user is logged and reported
    in ``failures`` without affecting the others.
    """
    factory = session_factory or SessionLocal
    workers = max(1, min(max_workers or settings.FORECAST_MAX_WORKERS, 32))
    ids = list(dict.fromkeys(user_ids))
    batch = BatchProjection()
    if not ids:
        return batch
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="forecast") as pool:
        futures = {uid: pool.submit(_project_one, factory, uid, horizon_days, today) for uid in ids}
        for uid, future in futures.items():
            try:
                batch.results[uid] = future.result()
            except Exception as exc:  # noqa: BLE001 - reported per user
                logger.exception("forecast failed for user=%s", uid)
                batch.failures[uid] = str(exc) or exc.__class__.__name__
    logger.info("batch forecast: %d ok, %d failed, workers=%d", len(batch.results), len(batch.failures), workers)
    return batch
