from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from .core.database import SessionLocal
from .models import (
    Account,
    Bill,
    RecurringFrequency,
    RecurringRule,
    TxnType,
    User,
    UserProfile,
    utc_today,
)
from .services.calendar_evaluator import initial_next_due_date


def seed() -> None:
    db: Session = SessionLocal()
    try:
        # Demo user
        user = db.query(User).filter_by(email="demo@example.com").first()
        if not user:
            user = User(email="demo@example.com", is_active=True)
            db.add(user)
            db.flush()
            db.add(UserProfile(user_id=user.id, display_name="Demo", base_currency="BRL"))

        account = db.query(Account).filter_by(user_id=user.id, name="Conta Corrente").first()
        if not account:
            account = Account(user_id=user.id, name="Conta Corrente", current_balance=Decimal("2500"))
            db.add(account)
            db.flush()

        today = utc_today()
        samples = [
            dict(name="Salário", type=TxnType.INCOME, category="salario", amount=Decimal("5000"),
                 frequency=RecurringFrequency.MONTHLY, day_of_month=5),
            dict(name="Aluguel", type=TxnType.EXPENSE, category="moradia", amount=Decimal("1800"),
                 frequency=RecurringFrequency.MONTHLY, day_of_month=10),
            dict(name="Academia", type=TxnType.EXPENSE, category="saude", amount=Decimal("35"),
                 frequency=RecurringFrequency.WEEKLY, day_of_week=1),
            dict(name="Notebook", type=TxnType.EXPENSE, category="compras", amount=Decimal("450"),
                 frequency=RecurringFrequency.MONTHLY, day_of_month=10,
                 is_installment=True, total_installments=12),
        ]
        for sample in samples:
            if db.query(RecurringRule).filter_by(user_id=user.id, name=sample["name"]).first():
                continue
            rule = RecurringRule(
                user_id=user.id,
                account_id=account.id,
                start_date=date(today.year, today.month, 1),
                **sample,
            )
            rule.next_due_date = initial_next_due_date(rule)
            db.add(rule)

        if not db.query(Bill).filter_by(user_id=user.id).first():
            db.add(Bill(
                user_id=user.id,
                name="IPVA",
                category="contas",
                amount=Decimal("980"),
                due_day=20,
                current_month=today.month,
                current_year=today.year,
                is_renewable=False,
            ))

        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
