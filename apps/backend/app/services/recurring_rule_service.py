from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app import models
from app.core.errors import ConflictError, NotFoundError, RuleValidationError
from app.services.calendar_evaluator import clamp_day, initial_next_due_date


logger = logging.getLogger(__name__)

_QUANTUM = Decimal("0.0001")

# Fields a caller may change after creation. Cadence and start are fixed because
# the cursor and installment index are derived from them.
UPDATABLE_FIELDS = (
    "name",
    "category",
    "amount",
    "account_id",
    "day_of_month",
    "day_of_week",
    "end_date",
    "is_active",
    "notify_days_before",
)


def validate_rule_fields(data: dict[str, Any]) -> None:
    """Reject malformed rule definitions. Nothing is persisted on failure."""
    name = (data.get("name") or "").strip()
    if not name:
        raise RuleValidationError("Recurring rule name must not be empty")
    amount = data.get("amount")
    if amount is None or Decimal(str(amount)) <= 0:
        raise RuleValidationError("amount must be positive")
    dom = data.get("day_of_month")
    if dom is not None and not 1 <= dom <= 31:
        raise RuleValidationError("day_of_month must be between 1 and 31")
    dow = data.get("day_of_week")
    if dow is not None and not 0 <= dow <= 6:
        raise RuleValidationError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
    start = data.get("start_date")
    end = data.get("end_date")
    if start is not None and end is not None and end < start:
        raise RuleValidationError("end_date must not be earlier than start_date")
    if data.get("notify_days_before") is not None and data["notify_days_before"] < 0:
        raise RuleValidationError("notify_days_before must not be negative")
    if data.get("is_installment"):
        total = data.get("total_installments")
        if total is None or total < 1:
            raise RuleValidationError("installment rules require total_installments >= 1")
        if models.RecurringFrequency(data["frequency"]) != models.RecurringFrequency.MONTHLY:
            raise RuleValidationError("installment rules must use MONTHLY frequency")


class RecurringRuleService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def create_rule(self, payload: dict, *, user_id: int) -> models.RecurringRule:
        data = dict(payload)
        validate_rule_fields(data)
        self._check_account(user_id, data.get("account_id"))
        data["name"] = data["name"].strip()
        data["user_id"] = user_id
        if not data.get("is_installment"):
            data["total_installments"] = 1
        data["current_installment"] = 1
        data.setdefault("is_active", True)

        rule = models.RecurringRule(**data)
        rule.next_due_date = initial_next_due_date(rule)
        if rule.is_installment:
            # installment indexes count from the start month, so start on the first due date
            rule.start_date = rule.next_due_date
            if rule.end_date is not None and rule.end_date < rule.start_date:
                raise RuleValidationError("end_date falls before the first installment")
        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        logger.info("recurring rule %s created for user=%s next_due=%s", rule.id, user_id, rule.next_due_date)
        return rule

    def create_installment_plan(self, payload: dict, *, user_id: int) -> models.RecurringRule:
        """Turn a purchase into a monthly installment rule.

        The per-installment amount is ``total_amount / installments``, due on
        the purchase day of each month starting with the month of
        ``purchase_date`` (or the next one when ``first_due_next_month``).
        """
        count = payload.get("installments") or 0
        if count < 1:
            raise RuleValidationError("installments must be >= 1")
        total = Decimal(str(payload.get("total_amount") or 0))
        if total <= 0:
            raise RuleValidationError("total_amount must be positive")
        purchase: date = payload["purchase_date"]
        start = purchase
        if payload.get("first_due_next_month"):
            start = date(purchase.year + (purchase.month // 12), purchase.month % 12 + 1, 1)
        return self.create_rule(
            {
                "name": payload.get("name"),
                "type": models.TxnType.EXPENSE,
                "category": payload.get("category") or "outros",
                "amount": (total / count).quantize(_QUANTUM, rounding=ROUND_HALF_UP),
                "account_id": payload.get("account_id"),
                "frequency": models.RecurringFrequency.MONTHLY,
                "day_of_month": purchase.day,
                "start_date": start,
                "is_installment": True,
                "total_installments": count,
            },
            user_id=user_id,
        )

    def list_rules(
        self,
        *,
        user_id: int,
        type: Optional[models.TxnType] = None,
        include_inactive: bool = False,
    ) -> list[models.RecurringRule]:
        q = self.db.query(models.RecurringRule).filter(models.RecurringRule.user_id == user_id)
        if type is not None:
            q = q.filter(models.RecurringRule.type == type)
        if not include_inactive:
            q = q.filter(models.RecurringRule.is_active.is_(True))
        return q.order_by(models.RecurringRule.next_due_date, models.RecurringRule.id).all()

    def get_rule(self, user_id: int, rule_id: int) -> models.RecurringRule:
        rule = (
            self.db.query(models.RecurringRule)
            .filter(models.RecurringRule.id == rule_id, models.RecurringRule.user_id == user_id)
            .first()
        )
        if rule is None:
            raise NotFoundError("RecurringRule not found")
        return rule

    def update_rule(self, user_id: int, rule_id: int, patch: dict) -> models.RecurringRule:
        rule = self.get_rule(user_id, rule_id)
        changes = {k: v for k, v in patch.items() if k in UPDATABLE_FIELDS}
        if not changes:
            return rule

        merged = {
            "name": rule.name,
            "amount": rule.amount,
            "day_of_month": rule.day_of_month,
            "day_of_week": rule.day_of_week,
            "start_date": rule.start_date,
            "end_date": rule.end_date,
            "notify_days_before": rule.notify_days_before,
            "frequency": rule.frequency,
            "is_installment": rule.is_installment,
            "total_installments": rule.total_installments,
        }
        merged.update(changes)
        validate_rule_fields(merged)
        if "account_id" in changes:
            self._check_account(user_id, changes["account_id"])
        if "name" in changes:
            changes["name"] = changes["name"].strip()

        exhausted = rule.is_installment and rule.current_installment > rule.total_installments
        if exhausted and changes.get("is_active"):
            raise RuleValidationError(f"{rule.name} has no installments left to pay")

        reanchor = rule.last_generated_date is None and ("day_of_month" in changes or "day_of_week" in changes)
        for key, value in changes.items():
            setattr(rule, key, value)
        if reanchor:
            if rule.is_installment:
                rule.start_date = clamp_day(rule.start_date.year, rule.start_date.month, rule.anchor_day)
            rule.next_due_date = initial_next_due_date(rule)
        if rule.end_date is not None and rule.next_due_date is not None and rule.next_due_date > rule.end_date:
            rule.is_active = False
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            raise ConflictError(f"{rule.name} changed concurrently; reload and retry")
        self.db.refresh(rule)
        return rule

    def deactivate_rule(self, user_id: int, rule_id: int) -> models.RecurringRule:
        rule = self.get_rule(user_id, rule_id)
        if rule.is_active:
            rule.is_active = False
            self.db.commit()
            self.db.refresh(rule)
            logger.info("recurring rule %s deactivated", rule.id)
        return rule

    def upcoming_rules(self, *, user_id: int, days: int, today: date) -> list[models.RecurringRule]:
        horizon = today + timedelta(days=days)
        return (
            self.db.query(models.RecurringRule)
            .filter(
                models.RecurringRule.user_id == user_id,
                models.RecurringRule.is_active.is_(True),
                models.RecurringRule.next_due_date.is_not(None),
                models.RecurringRule.next_due_date <= horizon,
            )
            .order_by(models.RecurringRule.next_due_date, models.RecurringRule.id)
            .all()
        )

    # ---- Helpers ---------------------------------------------------------
    def _check_account(self, user_id: int, account_id: Optional[int]) -> None:
        if account_id is None:
            return
        exists = (
            self.db.query(models.Account.id)
            .filter(models.Account.id == account_id, models.Account.user_id == user_id)
            .first()
        )
        if exists is None:
            raise NotFoundError("Account not found")
