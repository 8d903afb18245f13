from __future__ import annotations

from datetime import date

from fastapi import Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app import models


def get_current_user(db: Session = Depends(get_db)) -> models.User:
    """Very lightweight current user resolver.

    Authentication lives outside this service; until it is wired in, the first
    user is returned (a demo user is created if none exists). Tests override
    this dependency to act as different users.
    """
    user = db.query(models.User).order_by(models.User.id).first()
    if not user:
        user = models.User(email="demo@example.com", is_active=True)
        db.add(user)
        db.flush()
        db.add(models.UserProfile(user_id=user.id, display_name="Demo", base_currency="BRL"))
        db.commit()
        db.refresh(user)
    return user


def get_today() -> date:
    """Calendar day requests are evaluated against. Tests override it to pin the clock."""
    return models.utc_today()
