from __future__ import annotations

from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.deps import get_current_user, get_today
from app.core.errors import ObligationError, to_http_exception
from app.schemas import ObligationOut, ObligationSummaryOut, SettleRequest, SettlementOut
from app.services.obligation_service import ObligationService


router = APIRouter(prefix="/obligations", tags=["obligations"])


def _period(month: Optional[int], year: Optional[int], today: date) -> tuple[int, int]:
    return (month or today.month, year or today.year)


@router.get("", response_model=list[ObligationOut])
def list_obligations(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1900, le=9999),
    status: Optional[Literal["paid", "pending"]] = Query(None),
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
    today: date = Depends(get_today),
):
    m, y = _period(month, year, today)
    rows = ObligationService(db).list_obligations(current_user.id, m, y, today=today, status=status)
    return [ObligationOut.model_validate(o) for o in rows]


@router.get("/summary", response_model=ObligationSummaryOut)
def obligations_summary(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1900, le=9999),
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
    today: date = Depends(get_today),
):
    m, y = _period(month, year, today)
    return ObligationService(db).summarize(current_user.id, m, y, today=today)


@router.get("/upcoming", response_model=list[ObligationOut])
def upcoming_obligations(
    days: int = Query(7, ge=0, le=366),
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
    today: date = Depends(get_today),
):
    rows = ObligationService(db).upcoming(current_user.id, days=days, today=today)
    return [ObligationOut.model_validate(o) for o in rows]


@router.post("/{obligation_id}/settle", response_model=SettlementOut)
def settle_obligation(
    obligation_id: int,
    payload: SettleRequest,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
    today: date = Depends(get_today),
):
    try:
        result = ObligationService(db).settle(
            current_user.id,
            obligation_id,
            is_recurring=payload.is_recurring,
            month=payload.month,
            year=payload.year,
            today=today,
        )
        return SettlementOut.model_validate(result)
    except ObligationError as exc:
        raise to_http_exception(exc)
