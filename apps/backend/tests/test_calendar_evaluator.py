from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from app import models
from app.services.calendar_evaluator import (
    Period,
    advance,
    apply_cursor,
    due_date_for,
    evaluate,
    first_occurrence,
    installment_for_period,
    months_between,
    occurrences_in_period,
    python_weekday,
    step,
)


def make_rule(**overrides) -> models.RecurringRule:
    """Transient rule with every column the evaluator reads filled in."""
    fields = dict(
        id=1,
        user_id=1,
        name="Rule",
        type=models.TxnType.EXPENSE,
        category="outros",
        amount=Decimal("100"),
        account_id=None,
        frequency=models.RecurringFrequency.MONTHLY,
        day_of_month=None,
        day_of_week=None,
        start_date=date(2025, 1, 1),
        end_date=None,
        next_due_date=None,
        last_generated_date=None,
        is_installment=False,
        total_installments=1,
        current_installment=1,
        is_active=True,
        notify_days_before=3,
    )
    fields.update(overrides)
    rule = models.RecurringRule(**fields)
    if rule.next_due_date is None:
        rule.next_due_date = first_occurrence(rule)
    return rule


@pytest.fixture
def three_installments():
    return make_rule(
        start_date=date(2025, 1, 10),
        day_of_month=10,
        is_installment=True,
        total_installments=3,
    )


def test_period_shift_crosses_year_boundaries():
    assert Period(2025, 12).shift(1) == Period(2026, 1)
    assert Period(2025, 1).shift(-1) == Period(2024, 12)
    assert Period(2025, 3).shift(-15) == Period(2023, 12)


def test_period_rejects_bad_month():
    with pytest.raises(ValueError):
        Period(2025, 13)


def test_months_between():
    assert months_between(date(2025, 1, 31), date(2025, 3, 1)) == 2
    assert months_between(Period(2025, 1), Period(2024, 12)) == -1


def test_day_31_clamps_in_february_and_april():
    rule = make_rule(start_date=date(2025, 1, 31), day_of_month=31)
    assert due_date_for(rule, 2, 2025) == date(2025, 2, 28)
    assert due_date_for(rule, 4, 2025) == date(2025, 4, 30)
    assert due_date_for(rule, 5, 2025) == date(2025, 5, 31)


def test_day_31_in_leap_february():
    rule = make_rule(start_date=date(2024, 1, 31), day_of_month=31)
    assert due_date_for(rule, 2, 2024) == date(2024, 2, 29)


def test_anchor_falls_back_to_start_day():
    rule = make_rule(start_date=date(2025, 1, 30))
    assert due_date_for(rule, 2, 2025) == date(2025, 2, 28)
    assert due_date_for(rule, 3, 2025) == date(2025, 3, 30)


def test_step_keeps_anchor_after_short_month():
    rule = make_rule(start_date=date(2025, 1, 31), day_of_month=31)
    feb = step(rule, date(2025, 1, 31))
    assert feb == date(2025, 2, 28)
    assert step(rule, feb) == date(2025, 3, 31)


def test_anchor_before_start_moves_to_next_month():
    rule = make_rule(start_date=date(2025, 1, 20), day_of_month=10)
    assert first_occurrence(rule) == date(2025, 2, 10)
    assert evaluate(rule, 1, 2025) is None
    assert due_date_for(rule, 2, 2025) == date(2025, 2, 10)


def test_period_before_start_is_not_applicable():
    rule = make_rule(start_date=date(2025, 3, 1), day_of_month=5)
    assert evaluate(rule, 2, 2025) is None
    assert evaluate(rule, 12, 2024) is None


def test_period_after_end_is_not_applicable():
    rule = make_rule(start_date=date(2025, 1, 5), end_date=date(2025, 3, 31), day_of_month=5)
    assert due_date_for(rule, 3, 2025) == date(2025, 3, 5)
    assert evaluate(rule, 4, 2025) is None


def test_end_date_inside_period_cuts_occurrence():
    rule = make_rule(start_date=date(2025, 1, 20), end_date=date(2025, 3, 15), day_of_month=20)
    assert evaluate(rule, 3, 2025) is None


@pytest.mark.parametrize("month,expected", [(1, 1), (2, 2), (3, 3)])
def test_installment_index_inside_range(three_installments, month, expected):
    result = evaluate(three_installments, month, 2025)
    assert result is not None
    assert result.installment == expected


def test_installment_outside_range_is_excluded(three_installments):
    assert evaluate(three_installments, 4, 2025) is None
    assert evaluate(three_installments, 12, 2024) is None


def test_installment_index_excludes_even_when_dates_apply(three_installments):
    assert installment_for_period(three_installments, 4, 2025) == 4
    assert occurrences_in_period(three_installments, 4, 2025) == [date(2025, 4, 10)]
    assert evaluate(three_installments, 4, 2025) is None


def test_installment_index_counts_from_start_month():
    rule = make_rule(
        start_date=date(2025, 1, 20),
        day_of_month=10,
        is_installment=True,
        total_installments=3,
    )
    found = {}
    for month in range(1, 5):
        result = evaluate(rule, month, 2025)
        found[month] = result.installment if result else None
    assert found == {1: None, 2: 2, 3: 3, 4: None}


def test_non_installment_has_no_index():
    assert installment_for_period(make_rule(), 5, 2025) is None


def test_stored_weekday_zero_is_sunday():
    assert python_weekday(0) == 6
    assert python_weekday(1) == 0
    assert python_weekday(6) == 5


def test_weekly_aligned_to_day_of_week():
    # 2025-01-01 is a Wednesday; day_of_week=1 aligns to Mondays
    rule = make_rule(
        frequency=models.RecurringFrequency.WEEKLY,
        start_date=date(2025, 1, 1),
        day_of_week=1,
    )
    assert occurrences_in_period(rule, 1, 2025) == [
        date(2025, 1, 6),
        date(2025, 1, 13),
        date(2025, 1, 20),
        date(2025, 1, 27),
    ]
    assert due_date_for(rule, 2, 2025) == date(2025, 2, 3)


def test_weekly_on_sunday():
    rule = make_rule(
        frequency=models.RecurringFrequency.WEEKLY,
        start_date=date(2025, 1, 1),
        day_of_week=0,
    )
    assert due_date_for(rule, 1, 2025) == date(2025, 1, 5)
    assert len(occurrences_in_period(rule, 1, 2025)) == 4


def test_biweekly_steps_from_start():
    rule = make_rule(frequency=models.RecurringFrequency.BIWEEKLY, start_date=date(2025, 1, 6))
    assert occurrences_in_period(rule, 1, 2025) == [date(2025, 1, 6), date(2025, 1, 20)]
    assert occurrences_in_period(rule, 2, 2025) == [date(2025, 2, 3), date(2025, 2, 17)]
    assert due_date_for(rule, 3, 2025) == date(2025, 3, 3)


def test_daily_covers_every_day_in_window():
    rule = make_rule(frequency=models.RecurringFrequency.DAILY, start_date=date(2025, 2, 1))
    assert len(occurrences_in_period(rule, 2, 2025)) == 28
    capped = make_rule(
        frequency=models.RecurringFrequency.DAILY,
        start_date=date(2025, 2, 1),
        end_date=date(2025, 2, 10),
    )
    assert len(occurrences_in_period(capped, 2, 2025)) == 10


def test_yearly_uses_start_month_and_clamps():
    rule = make_rule(frequency=models.RecurringFrequency.YEARLY, start_date=date(2024, 2, 29))
    assert due_date_for(rule, 2, 2025) == date(2025, 2, 28)
    assert due_date_for(rule, 2, 2028) == date(2028, 2, 29)
    assert evaluate(rule, 3, 2025) is None
    assert step(rule, date(2024, 2, 29)) == date(2025, 2, 28)


def test_advance_installment_example():
    rule = make_rule(
        amount=Decimal("450"),
        start_date=date(2025, 1, 10),
        day_of_month=10,
        is_installment=True,
        total_installments=12,
    )
    cursor = advance(rule, date(2025, 1, 10))
    assert cursor.current_installment == 2
    assert cursor.next_due_date == date(2025, 2, 10)
    assert cursor.last_generated_date == date(2025, 1, 10)
    assert cursor.is_active is True


def test_advance_is_a_pure_step_function():
    rule = make_rule(start_date=date(2025, 1, 31), day_of_month=31)
    before = (rule.next_due_date, rule.current_installment, rule.last_generated_date)
    first = advance(rule)
    again = advance(rule)
    assert first == again
    assert (rule.next_due_date, rule.current_installment, rule.last_generated_date) == before

    apply_cursor(rule, first)
    second = advance(rule)
    assert first.next_due_date == date(2025, 2, 28)
    assert second.next_due_date == date(2025, 3, 31)
    assert second.next_due_date > first.next_due_date


def test_advance_result_is_strictly_later():
    for freq in models.RecurringFrequency:
        rule = make_rule(frequency=freq, start_date=date(2025, 1, 15))
        assert advance(rule).next_due_date > rule.next_due_date


def test_settling_older_period_keeps_next_due():
    rule = make_rule(
        start_date=date(2025, 1, 10),
        day_of_month=10,
        next_due_date=date(2025, 3, 10),
        last_generated_date=date(2025, 2, 10),
    )
    cursor = advance(rule, date(2025, 1, 10))
    assert cursor.next_due_date == date(2025, 3, 10)
    assert cursor.last_generated_date == date(2025, 2, 10)


def test_settling_later_period_jumps_from_it():
    rule = make_rule(start_date=date(2025, 1, 10), day_of_month=10)
    cursor = advance(rule, date(2025, 3, 10))
    assert cursor.next_due_date == date(2025, 4, 10)


def test_last_installment_deactivates():
    rule = make_rule(
        start_date=date(2025, 1, 10),
        day_of_month=10,
        is_installment=True,
        total_installments=2,
        current_installment=2,
        next_due_date=date(2025, 2, 10),
    )
    cursor = advance(rule)
    assert cursor.current_installment == 3
    assert cursor.is_active is False


def test_passing_end_date_deactivates():
    rule = make_rule(
        start_date=date(2025, 1, 10),
        end_date=date(2025, 2, 15),
        day_of_month=10,
        next_due_date=date(2025, 2, 10),
    )
    cursor = advance(rule)
    assert cursor.next_due_date == date(2025, 3, 10)
    assert cursor.is_active is False


def test_evaluate_never_mutates():
    rule = make_rule(start_date=date(2025, 1, 10), is_installment=True, total_installments=3)
    snapshot = dict(vars(rule))
    evaluate(rule, 2, 2025)
    occurrences_in_period(rule, 2, 2025)
    assert {k: v for k, v in vars(rule).items() if k != "_sa_instance_state"} == {
        k: v for k, v in snapshot.items() if k != "_sa_instance_state"
    }
