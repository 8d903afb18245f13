"""Unified per-period obligation view and the settlement command.

Reads merge three independently stored records (rule, override, payment)
through :func:`resolve_obligation`. Writes go through :meth:`ObligationService.settle_rule`,
the only code path that advances a rule's cursor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app import models
from app.core.errors import ConflictError, DuplicateSettlementError, NotFoundError, RuleValidationError
from app.services.calendar_evaluator import (
    Evaluation,
    Period,
    advance,
    apply_cursor,
    clamp_day,
    evaluate,
)
from app.services.override_resolver import OverrideResolver, apply_override
from app.services.payment_ledger import PaymentLedger, settled_by_cursor


logger = logging.getLogger(__name__)

BILL_CATEGORY = "contas"

BILL_UPDATABLE_FIELDS = ("name", "category", "amount", "due_day", "is_renewable", "notes")


@dataclass
class Obligation:
    id: int
    is_recurring: bool
    name: str
    category: str
    type: models.TxnType
    amount: Decimal
    nominal_amount: Decimal
    due_date: date
    month: int
    year: int
    is_paid: bool
    urgency: str
    days_until_due: int
    account_id: Optional[int] = None
    override_kind: Optional[models.OverrideKind] = None
    amount_paid: Optional[Decimal] = None
    occurrence_count: int = 1
    installment_number: Optional[int] = None
    period_installment: Optional[int] = None
    total_installments: Optional[int] = None
    notes: Optional[str] = None

    @property
    def due_day(self) -> int:
        return self.due_date.day

    @property
    def signed_amount(self) -> Decimal:
        return self.amount * models.TxnType(self.type).sign


@dataclass
class SettlementResult:
    transaction: models.Transaction
    payment: Optional[models.RecurringPayment] = None
    rule: Optional[models.RecurringRule] = None
    bill: Optional[models.Bill] = None


@dataclass
class ObligationSummary:
    month: int
    year: int
    total: Decimal = Decimal("0")
    paid: Decimal = Decimal("0")
    pending: Decimal = Decimal("0")
    expected_income: Decimal = Decimal("0")
    paid_count: int = 0
    pending_count: int = 0
    overdue_count: int = 0
    total_count: int = 0
    by_urgency: dict[str, int] = field(default_factory=dict)


def urgency_for(days_until_due: int, is_paid: bool) -> str:
    if is_paid:
        return "paid"
    if days_until_due < 0:
        return "overdue"
    if days_until_due == 0:
        return "today"
    if days_until_due <= 3:
        return "soon"
    if days_until_due <= 7:
        return "upcoming"
    return "normal"


def nominal_amount(rule: models.RecurringRule, evaluation: Evaluation) -> Decimal:
    """Rule amount owed for a whole period: one charge per occurrence."""
    return Decimal(rule.amount) * len(evaluation.occurrences)


def resolve_obligation(
    rule: models.RecurringRule,
    evaluation: Evaluation | None,
    override: models.RecurringOverride | None,
    payment: models.RecurringPayment | None,
    today: date,
) -> Obligation | None:
    """Merge a rule, its period override and its period payment into one obligation.

    Returns ``None`` when the rule does not apply to the period or the period
    is skipped.
    """
    if evaluation is None:
        return None
    nominal = nominal_amount(rule, evaluation)
    effective = apply_override(nominal, override)
    if effective is None:
        return None

    period = evaluation.period
    is_paid = payment is not None or settled_by_cursor(rule, period.month, period.year)
    days = (evaluation.due_date - today).days

    installment_number = None
    if evaluation.installment is not None:
        installment_number = min(rule.current_installment, evaluation.installment)

    return Obligation(
        id=rule.id,
        is_recurring=True,
        name=(override.name if override is not None and override.name else rule.name),
        category=rule.category,
        type=models.TxnType(rule.type),
        amount=effective,
        nominal_amount=nominal,
        due_date=evaluation.due_date,
        month=period.month,
        year=period.year,
        is_paid=is_paid,
        urgency=urgency_for(days, is_paid),
        days_until_due=days,
        account_id=rule.account_id,
        override_kind=(models.OverrideKind(override.kind) if override is not None else None),
        amount_paid=(Decimal(payment.amount_paid) if payment is not None else None),
        occurrence_count=len(evaluation.occurrences),
        installment_number=installment_number,
        period_installment=evaluation.installment,
        total_installments=(rule.total_installments if rule.is_installment else None),
        notes=(override.notes if override is not None else None),
    )


def validate_bill_fields(data: dict) -> None:
    if not (data.get("name") or "").strip():
        raise RuleValidationError("Bill name must not be empty")
    if data.get("amount") is None or Decimal(str(data["amount"])) <= 0:
        raise RuleValidationError("amount must be positive")
    if not 1 <= (data.get("due_day") or 0) <= 31:
        raise RuleValidationError("due_day must be between 1 and 31")


def bill_obligation(bill: models.Bill, today: date) -> Obligation:
    due = clamp_day(bill.current_year, bill.current_month, bill.due_day)
    days = (due - today).days
    amount = Decimal(bill.amount)
    return Obligation(
        id=bill.id,
        is_recurring=False,
        name=bill.name,
        category=bill.category,
        type=models.TxnType.EXPENSE,
        amount=amount,
        nominal_amount=amount,
        due_date=due,
        month=bill.current_month,
        year=bill.current_year,
        is_paid=bill.is_paid,
        urgency=urgency_for(days, bill.is_paid),
        days_until_due=days,
        notes=bill.notes,
    )


class ObligationService:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.overrides = OverrideResolver(db)
        self.ledger = PaymentLedger(db)

    # ---- Read side -------------------------------------------------------
    def rules_for_period(self, user_id: int, month: int, year: int) -> list[models.RecurringRule]:
        """Active rules plus inactive ones that were settled in the period."""
        period = Period(year, month)
        paid_ids = (
            select(models.RecurringPayment.rule_id)
            .where(
                models.RecurringPayment.user_id == user_id,
                models.RecurringPayment.month == month,
                models.RecurringPayment.year == year,
            )
        )
        return (
            self.db.query(models.RecurringRule)
            .filter(
                models.RecurringRule.user_id == user_id,
                or_(models.RecurringRule.is_active.is_(True), models.RecurringRule.id.in_(paid_ids)),
                models.RecurringRule.start_date <= period.last_day,
                or_(models.RecurringRule.end_date.is_(None), models.RecurringRule.end_date >= period.first_day),
            )
            .order_by(models.RecurringRule.id)
            .all()
        )

    def list_obligations(
        self,
        user_id: int,
        month: int,
        year: int,
        *,
        today: date,
        status: Optional[str] = None,
    ) -> list[Obligation]:
        items = [bill_obligation(b, today) for b in self.list_bills(user_id, month, year)]

        overrides = self.overrides.resolve_many(user_id, month, year)
        payments = self.ledger.payments_for_period(user_id, month, year)
        for rule in self.rules_for_period(user_id, month, year):
            ob = resolve_obligation(
                rule,
                evaluate(rule, month, year),
                overrides.get(rule.id),
                payments.get(rule.id),
                today,
            )
            if ob is not None:
                items.append(ob)

        if status == "paid":
            items = [o for o in items if o.is_paid]
        elif status == "pending":
            items = [o for o in items if not o.is_paid]
        items.sort(key=lambda o: (o.due_date, o.is_recurring, o.id))
        return items

    def summarize(self, user_id: int, month: int, year: int, *, today: date) -> ObligationSummary:
        summary = ObligationSummary(month=month, year=year)
        for ob in self.list_obligations(user_id, month, year, today=today):
            summary.by_urgency[ob.urgency] = summary.by_urgency.get(ob.urgency, 0) + 1
            if ob.type == models.TxnType.INCOME:
                summary.expected_income += ob.amount
                continue
            summary.total_count += 1
            summary.total += ob.amount
            if ob.is_paid:
                summary.paid_count += 1
                summary.paid += ob.amount
            else:
                summary.pending_count += 1
                summary.pending += ob.amount
                if ob.urgency == "overdue":
                    summary.overdue_count += 1
        return summary

    def upcoming(self, user_id: int, *, days: int, today: date) -> list[Obligation]:
        """Unpaid obligations due within ``days`` of today, overdue ones included."""
        horizon = today + timedelta(days=days)
        period = Period.of(today)
        last = Period.of(horizon)
        found: list[Obligation] = []
        while period <= last:
            for ob in self.list_obligations(user_id, period.month, period.year, today=today, status="pending"):
                if ob.due_date <= horizon:
                    found.append(ob)
            period = period.shift(1)
        return found

    # ---- Write side ------------------------------------------------------
    def settle(
        self,
        user_id: int,
        obligation_id: int,
        *,
        is_recurring: bool,
        month: Optional[int] = None,
        year: Optional[int] = None,
        today: date,
    ) -> SettlementResult:
        if is_recurring:
            return self.settle_rule(
                user_id,
                obligation_id,
                month or today.month,
                year or today.year,
                today=today,
            )
        return self.settle_bill(user_id, obligation_id, today=today)

    def settle_rule(self, user_id: int, rule_id: int, month: int, year: int, *, today: date) -> SettlementResult:
        """Settle one period of a rule.

        The payment record is written first so the unique ``(rule, month, year)``
        constraint decides concurrent attempts; the ledger transaction, the
        rule cursor and the account balance follow in the same unit of work.
        """
        rule = self._get_rule(user_id, rule_id)
        evaluation = evaluate(rule, month, year)
        if evaluation is None:
            raise RuleValidationError(f"{rule.name} does not apply to {month:02d}/{year}")
        if self.ledger.is_settled(rule, month, year):
            raise DuplicateSettlementError(f"{rule.name} is already settled for {month:02d}/{year}")
        if not rule.is_active:
            raise RuleValidationError(f"{rule.name} is inactive")
        override = self.overrides.resolve(rule.id, month, year)
        amount = apply_override(nominal_amount(rule, evaluation), override)
        if amount is None:
            raise RuleValidationError(f"{rule.name} is skipped for {month:02d}/{year}")
        if amount <= 0:
            raise RuleValidationError(f"nothing left to pay for {rule.name} in {month:02d}/{year}")

        payment = self.ledger.record(rule, month, year, amount)

        description = rule.name
        installment_number = None
        if rule.is_installment:
            installment_number = rule.current_installment
            description = f"{rule.name} ({installment_number}/{rule.total_installments})"
        txn = models.Transaction(
            user_id=user_id,
            occurred_at=evaluation.due_date,
            type=models.TxnType(rule.type),
            amount=amount,
            description=description,
            category=rule.category,
            account_id=rule.account_id,
            recurring_rule_id=rule.id,
            installment_number=installment_number,
            total_installments=(rule.total_installments if rule.is_installment else None),
        )
        self.db.add(txn)
        self.db.flush()
        payment.transaction_id = txn.id

        cursor = advance(rule, evaluation.occurrences[-1])
        apply_cursor(rule, cursor)
        self._adjust_balance(rule.account_id, txn.signed_amount)

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning("settlement of rule=%s period=%02d/%d lost a race", rule_id, month, year)
            raise DuplicateSettlementError(f"rule {rule_id} is already settled for {month:02d}/{year}")
        except StaleDataError:
            # another settlement moved the cursor after this session loaded the rule
            self.db.rollback()
            logger.warning("rule=%s changed while settling %02d/%d", rule_id, month, year)
            raise DuplicateSettlementError(f"rule {rule_id} was settled concurrently; reload and retry")
        self.db.refresh(rule)
        logger.info(
            "settled rule=%s period=%02d/%d amount=%s next_due=%s active=%s",
            rule.id, month, year, amount, rule.next_due_date, rule.is_active,
        )
        if not rule.is_active:
            logger.info("recurring rule %s exhausted and deactivated", rule.id)
        return SettlementResult(transaction=txn, payment=payment, rule=rule)

    def settle_bill(self, user_id: int, bill_id: int, *, today: date) -> SettlementResult:
        bill = self._get_bill(user_id, bill_id)
        if bill.is_paid:
            raise ConflictError(f"{bill.name} is already paid")
        # conditional UPDATE: a concurrent payment leaves no unpaid row to flip
        flipped = (
            self.db.query(models.Bill)
            .filter(models.Bill.id == bill.id, models.Bill.is_paid.is_(False))
            .update({models.Bill.is_paid: True, models.Bill.paid_at: models.now_utc_naive()}, synchronize_session=False)
        )
        if flipped != 1:
            self.db.rollback()
            logger.warning("bill=%s was paid concurrently", bill_id)
            raise ConflictError(f"{bill.name} is already paid")
        txn = models.Transaction(
            user_id=user_id,
            occurred_at=today,
            type=models.TxnType.EXPENSE,
            amount=bill.amount,
            description=f"Pagamento: {bill.name}",
            category=BILL_CATEGORY,
            bill_id=bill.id,
        )
        self.db.add(txn)
        self.db.commit()
        self.db.refresh(txn)
        self.db.refresh(bill)
        logger.info("settled bill=%s period=%02d/%d", bill.id, bill.current_month, bill.current_year)
        return SettlementResult(transaction=txn, bill=bill)

    # ---- Bills -----------------------------------------------------------
    def create_bill(self, payload: dict, *, user_id: int, today: date) -> models.Bill:
        data = dict(payload)
        validate_bill_fields(data)
        if data.get("current_month") is None:
            data["current_month"] = today.month
        if data.get("current_year") is None:
            data["current_year"] = today.year
        if not 1 <= data["current_month"] <= 12:
            raise RuleValidationError("current_month must be between 1 and 12")
        data["name"] = data["name"].strip()
        data["user_id"] = user_id
        bill = models.Bill(**data)
        self.db.add(bill)
        self.db.commit()
        self.db.refresh(bill)
        return bill

    def list_bills(self, user_id: int, month: int, year: int) -> list[models.Bill]:
        return (
            self.db.query(models.Bill)
            .filter(
                models.Bill.user_id == user_id,
                models.Bill.current_month == month,
                models.Bill.current_year == year,
            )
            .order_by(models.Bill.due_day, models.Bill.id)
            .all()
        )

    def update_bill(self, user_id: int, bill_id: int, patch: dict) -> models.Bill:
        """Edit a bill in place. The period it is stamped to and its paid state are untouched."""
        bill = self._get_bill(user_id, bill_id)
        changes = {k: v for k, v in patch.items() if k in BILL_UPDATABLE_FIELDS}
        for key in ("category", "is_renewable"):
            if key in changes and changes[key] is None:
                del changes[key]
        if not changes:
            return bill
        merged = {"name": bill.name, "amount": bill.amount, "due_day": bill.due_day}
        merged.update(changes)
        validate_bill_fields(merged)
        if "name" in changes:
            changes["name"] = changes["name"].strip()
        for key, value in changes.items():
            setattr(bill, key, value)
        self.db.commit()
        self.db.refresh(bill)
        logger.info("bill %s updated: %s", bill.id, ", ".join(sorted(changes)))
        return bill

    def renew_bill(self, user_id: int, bill_id: int) -> models.Bill:
        bill = self._get_bill(user_id, bill_id)
        if not bill.is_renewable:
            raise RuleValidationError(f"{bill.name} is not renewable")
        nxt = Period(bill.current_year, bill.current_month).shift(1)
        bill.current_month = nxt.month
        bill.current_year = nxt.year
        bill.is_paid = False
        bill.paid_at = None
        self.db.commit()
        self.db.refresh(bill)
        return bill

    def delete_bill(self, user_id: int, bill_id: int) -> None:
        bill = self._get_bill(user_id, bill_id)
        self.db.delete(bill)
        self.db.commit()

    # ---- Helpers ---------------------------------------------------------
    def _get_rule(self, user_id: int, rule_id: int) -> models.RecurringRule:
        rule = (
            self.db.query(models.RecurringRule)
            .filter(models.RecurringRule.id == rule_id, models.RecurringRule.user_id == user_id)
            .first()
        )
        if rule is None:
            raise NotFoundError("RecurringRule not found")
        return rule

    def _get_bill(self, user_id: int, bill_id: int) -> models.Bill:
        bill = (
            self.db.query(models.Bill)
            .filter(models.Bill.id == bill_id, models.Bill.user_id == user_id)
            .first()
        )
        if bill is None:
            raise NotFoundError("Bill not found")
        return bill

    def _adjust_balance(self, account_id: Optional[int], delta: Decimal) -> None:
        if account_id is None:
            return
        account = self.db.get(models.Account, account_id)
        if account is None or account.current_balance is None:
            return
        account.current_balance = Decimal(account.current_balance) + delta
