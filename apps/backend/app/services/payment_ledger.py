from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import models
from app.core.errors import DuplicateSettlementError
from app.services.calendar_evaluator import Period, installment_for_period


logger = logging.getLogger(__name__)


def settled_by_cursor(rule: Any, month: int, year: int) -> bool:
    """Whether the rule's own cursor already marks the period as settled.

    Installment rules are settled in order, so every period whose index is
    below ``current_installment`` has been paid. Other rules remember the last
    settled due date in ``last_generated_date``.
    """
    if rule.is_installment:
        index = installment_for_period(rule, month, year)
        return index is not None and rule.current_installment > index
    last = rule.last_generated_date
    return last is not None and Period(year, month).contains(last)


class PaymentLedger:
    """Per-period settlement records for recurring rules."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, rule_id: int, month: int, year: int) -> models.RecurringPayment | None:
        return (
            self.db.query(models.RecurringPayment)
            .filter(
                models.RecurringPayment.rule_id == rule_id,
                models.RecurringPayment.month == month,
                models.RecurringPayment.year == year,
            )
            .first()
        )

    def is_settled(self, rule: models.RecurringRule, month: int, year: int) -> bool:
        if settled_by_cursor(rule, month, year):
            return True
        return self.get(rule.id, month, year) is not None

    def payments_for_period(self, user_id: int, month: int, year: int) -> dict[int, models.RecurringPayment]:
        rows = (
            self.db.query(models.RecurringPayment)
            .filter(
                models.RecurringPayment.user_id == user_id,
                models.RecurringPayment.month == month,
                models.RecurringPayment.year == year,
            )
            .all()
        )
        return {row.rule_id: row for row in rows}

    def record(
        self,
        rule: models.RecurringRule,
        month: int,
        year: int,
        amount_paid: Decimal,
        transaction_id: int | None = None,
    ) -> models.RecurringPayment:
        """Write the settlement record for a period inside the caller's transaction.

        A second record for the same ``(rule, month, year)`` is a conflict. The
        check-then-insert race is closed by the unique constraint: a violation
        rolls the whole unit of work back and surfaces the same error.
        """
        conflict = f"{rule.name} is already settled for {month:02d}/{year}"
        if self.get(rule.id, month, year) is not None:
            raise DuplicateSettlementError(conflict)

        payment = models.RecurringPayment(
            user_id=rule.user_id,
            rule_id=rule.id,
            month=month,
            year=year,
            amount_paid=amount_paid,
            transaction_id=transaction_id,
        )
        self.db.add(payment)
        try:
            self.db.flush()
        except IntegrityError:
            rule_id = payment.rule_id
            self.db.rollback()
            logger.warning("concurrent settlement lost for rule=%s period=%02d/%d", rule_id, month, year)
            raise DuplicateSettlementError(conflict)
        return payment
