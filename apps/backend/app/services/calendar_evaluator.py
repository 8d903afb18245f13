"""Calendar arithmetic for recurring rules.

Everything here is pure: functions read rule attributes and never mutate them.
Dates are naive ``date`` values on a UTC calendar. A *period* is a
``(month, year)`` pair; rules are evaluated one period at a time.

Rule objects are duck-typed: anything exposing the ``RecurringRule`` columns
(``frequency``, ``start_date``, ``end_date``, ``day_of_month``, ``day_of_week``,
``next_due_date``, ``last_generated_date``, installment fields, ``is_active``)
works, which keeps the evaluator testable without a database.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from app.models import RecurringFrequency


_STEP_DAYS = {
    RecurringFrequency.DAILY: 1,
    RecurringFrequency.WEEKLY: 7,
    RecurringFrequency.BIWEEKLY: 14,
}


@dataclass(frozen=True, order=True)
class Period:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {self.month}")

    @classmethod
    def of(cls, value: date) -> "Period":
        return cls(value.year, value.month)

    def shift(self, months: int) -> "Period":
        index = self.year * 12 + (self.month - 1) + months
        return Period(index // 12, index % 12 + 1)

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, days_in_month(self.year, self.month))

    def contains(self, value: date) -> bool:
        return value.year == self.year and value.month == self.month


@dataclass(frozen=True)
class Evaluation:
    """Concrete occurrence data for one rule in one period."""

    period: Period
    due_date: date
    occurrences: tuple[date, ...]
    installment: int | None = None


@dataclass(frozen=True)
class RuleCursor:
    """Rule state produced by :func:`advance`; apply it with :func:`apply_cursor`."""

    next_due_date: date
    last_generated_date: date | None
    current_installment: int
    is_active: bool


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamp_day(year: int, month: int, day: int) -> date:
    """Build a date, pulling ``day`` back to the month's last day when it overflows."""
    return date(year, month, min(day, days_in_month(year, month)))


def months_between(start: date | Period, target: date | Period) -> int:
    a = start if isinstance(start, Period) else Period.of(start)
    b = target if isinstance(target, Period) else Period.of(target)
    return (b.year - a.year) * 12 + (b.month - a.month)


def _anchor_day(rule: Any) -> int:
    return rule.day_of_month or rule.start_date.day


def python_weekday(day_of_week: int) -> int:
    """Map a stored weekday (0=Sunday .. 6=Saturday) onto ``date.weekday()`` (0=Monday)."""
    return (day_of_week - 1) % 7


def _frequency(rule: Any) -> RecurringFrequency:
    return RecurringFrequency(rule.frequency)


def first_occurrence(rule: Any) -> date:
    """First due date on or after ``start_date``."""
    start: date = rule.start_date
    freq = _frequency(rule)
    if freq == RecurringFrequency.DAILY:
        return start
    if freq in (RecurringFrequency.WEEKLY, RecurringFrequency.BIWEEKLY):
        if rule.day_of_week is None:
            return start
        return start + timedelta(days=(python_weekday(rule.day_of_week) - start.weekday()) % 7)
    if freq == RecurringFrequency.MONTHLY:
        candidate = clamp_day(start.year, start.month, _anchor_day(rule))
        if candidate < start:
            nxt = Period.of(start).shift(1)
            candidate = clamp_day(nxt.year, nxt.month, _anchor_day(rule))
        return candidate
    # YEARLY
    candidate = clamp_day(start.year, start.month, _anchor_day(rule))
    if candidate < start:
        candidate = clamp_day(start.year + 1, start.month, _anchor_day(rule))
    return candidate


initial_next_due_date = first_occurrence


def step(rule: Any, current: date) -> date:
    """Apply one cadence step to ``current``. Always strictly later."""
    freq = _frequency(rule)
    if freq in _STEP_DAYS:
        return current + timedelta(days=_STEP_DAYS[freq])
    if freq == RecurringFrequency.MONTHLY:
        nxt = Period.of(current).shift(1)
        return clamp_day(nxt.year, nxt.month, _anchor_day(rule))
    return clamp_day(current.year + 1, rule.start_date.month, _anchor_day(rule))


def occurrences_in_period(rule: Any, month: int, year: int) -> list[date]:
    """All due dates of ``rule`` that fall inside the period and the rule window."""
    period = Period(year, month)
    start: date = rule.start_date
    end: date | None = rule.end_date
    if period < Period.of(start):
        return []
    if end is not None and period > Period.of(end):
        return []

    first = first_occurrence(rule)
    lo = max(period.first_day, first)
    hi = period.last_day if end is None else min(period.last_day, end)
    if lo > hi:
        return []

    freq = _frequency(rule)
    if freq in _STEP_DAYS:
        stride = _STEP_DAYS[freq]
        gap = (lo - first).days
        skip = -(-gap // stride) if gap > 0 else 0
        current = first + timedelta(days=skip * stride)
        found: list[date] = []
        while current <= hi:
            found.append(current)
            current += timedelta(days=stride)
        return found

    if freq == RecurringFrequency.YEARLY and month != start.month:
        return []
    candidate = clamp_day(year, month, _anchor_day(rule))
    return [candidate] if lo <= candidate <= hi else []


def installment_for_period(rule: Any, month: int, year: int) -> int | None:
    """1-based installment index the period maps to, counted from the ``start_date`` month."""
    if not rule.is_installment:
        return None
    return months_between(rule.start_date, Period(year, month)) + 1


def evaluate(rule: Any, month: int, year: int) -> Evaluation | None:
    """Resolve ``rule`` for a period, or ``None`` when it does not apply there.

    Installment rules whose index falls outside ``[1, total_installments]`` do
    not apply even if the date arithmetic alone would succeed.
    """
    dates = occurrences_in_period(rule, month, year)
    if not dates:
        return None
    installment = installment_for_period(rule, month, year)
    if installment is not None and not 1 <= installment <= rule.total_installments:
        return None
    return Evaluation(
        period=Period(year, month),
        due_date=dates[0],
        occurrences=tuple(dates),
        installment=installment,
    )


def due_date_for(rule: Any, month: int, year: int) -> date | None:
    result = evaluate(rule, month, year)
    return result.due_date if result else None


def advance(rule: Any, settled_on: date | None = None) -> RuleCursor:
    """Compute the rule state after one settlement.

    ``settled_on`` is the due date of the settled occurrence. When it lies on or
    after the cached ``next_due_date`` the cursor steps from it; settling an
    older period leaves ``next_due_date`` where it is. Deterministic: the same
    rule state and argument always give the same cursor.
    """
    base = rule.next_due_date or first_occurrence(rule)
    settled = settled_on or base
    next_due = step(rule, settled) if settled >= base else base

    last = rule.last_generated_date
    last = settled if last is None else max(last, settled)

    current = rule.current_installment
    active = bool(rule.is_active)
    if rule.is_installment:
        current += 1
        if current > rule.total_installments:
            active = False
    if rule.end_date is not None and next_due > rule.end_date:
        active = False
    return RuleCursor(
        next_due_date=next_due,
        last_generated_date=last,
        current_installment=current,
        is_active=active,
    )


def apply_cursor(rule: Any, cursor: RuleCursor) -> None:
    rule.next_due_date = cursor.next_due_date
    rule.last_generated_date = cursor.last_generated_date
    rule.current_installment = cursor.current_installment
    rule.is_active = cursor.is_active
