from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import models
from app.core.errors import ConflictError, NotFoundError, RuleValidationError
from app.services.calendar_evaluator import evaluate
from app.services.payment_ledger import PaymentLedger


logger = logging.getLogger(__name__)


def apply_override(nominal: Decimal, override: models.RecurringOverride | None) -> Decimal | None:
    """Effective amount of a period once its override is applied.

    ``None`` means the period is skipped and must not appear anywhere.
    """
    if override is None:
        return nominal
    kind = models.OverrideKind(override.kind)
    if kind == models.OverrideKind.SKIP:
        return None
    if kind == models.OverrideKind.CUSTOM_AMOUNT:
        return Decimal(override.amount)
    paid = Decimal(override.paid_amount or 0)
    return max(Decimal(nominal) - paid, Decimal("0"))


class OverrideResolver:
    def __init__(self, db: Session) -> None:
        self.db = db

    def resolve(self, rule_id: int, month: int, year: int) -> models.RecurringOverride | None:
        return (
            self.db.query(models.RecurringOverride)
            .filter(
                models.RecurringOverride.rule_id == rule_id,
                models.RecurringOverride.month == month,
                models.RecurringOverride.year == year,
            )
            .first()
        )

    def resolve_many(self, user_id: int, month: int, year: int) -> dict[int, models.RecurringOverride]:
        rows = (
            self.db.query(models.RecurringOverride)
            .filter(
                models.RecurringOverride.user_id == user_id,
                models.RecurringOverride.month == month,
                models.RecurringOverride.year == year,
            )
            .all()
        )
        return {row.rule_id: row for row in rows}

    def for_rule(self, rule_id: int) -> list[models.RecurringOverride]:
        return (
            self.db.query(models.RecurringOverride)
            .filter(models.RecurringOverride.rule_id == rule_id)
            .order_by(models.RecurringOverride.year, models.RecurringOverride.month)
            .all()
        )

    def upsert(
        self,
        rule: models.RecurringRule,
        month: int,
        year: int,
        *,
        kind: models.OverrideKind,
        amount: Optional[Decimal] = None,
        paid_amount: Optional[Decimal] = None,
        name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> models.RecurringOverride:
        kind = models.OverrideKind(kind)
        if kind == models.OverrideKind.CUSTOM_AMOUNT and (amount is None or Decimal(amount) <= 0):
            raise RuleValidationError("custom_amount override requires a positive amount")
        if kind == models.OverrideKind.PARTIAL_PAYMENT and (paid_amount is None or Decimal(paid_amount) <= 0):
            raise RuleValidationError("partial_payment override requires a positive paid_amount")
        if evaluate(rule, month, year) is None:
            raise RuleValidationError(f"{rule.name} does not apply to {month:02d}/{year}")
        if PaymentLedger(self.db).is_settled(rule, month, year):
            raise ConflictError(f"{rule.name} is already settled for {month:02d}/{year}")

        row = self.resolve(rule.id, month, year)
        if row is None:
            row = models.RecurringOverride(user_id=rule.user_id, rule_id=rule.id, month=month, year=year)
            self.db.add(row)
        row.kind = kind
        row.amount = amount if kind == models.OverrideKind.CUSTOM_AMOUNT else None
        row.paid_amount = paid_amount if kind == models.OverrideKind.PARTIAL_PAYMENT else None
        row.original_amount = rule.amount
        row.name = name
        row.notes = notes
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(f"an override for {month:02d}/{year} was written concurrently")
        self.db.refresh(row)
        logger.info("override %s stored for rule=%s period=%02d/%d", kind.value, rule.id, month, year)
        return row

    def delete(self, rule: models.RecurringRule, month: int, year: int) -> None:
        row = self.resolve(rule.id, month, year)
        if row is None:
            raise NotFoundError("Override not found")
        self.db.delete(row)
        self.db.commit()
