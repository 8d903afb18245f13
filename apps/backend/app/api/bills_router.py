from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.deps import get_current_user, get_today
from app.core.errors import ObligationError, to_http_exception
from app.schemas import BillCreate, BillOut, BillUpdate
from app.services.obligation_service import ObligationService


router = APIRouter(prefix="/bills", tags=["bills"])


@router.post("", response_model=BillOut, status_code=201)
def create_bill(
    payload: BillCreate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
    today: date = Depends(get_today),
):
    try:
        return ObligationService(db).create_bill(payload.model_dump(), user_id=current_user.id, today=today)
    except ObligationError as exc:
        raise to_http_exception(exc)


@router.get("", response_model=list[BillOut])
def list_bills(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1900, le=9999),
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
    today: date = Depends(get_today),
):
    return ObligationService(db).list_bills(current_user.id, month or today.month, year or today.year)


@router.put("/{bill_id}", response_model=BillOut)
def update_bill(
    bill_id: int,
    payload: BillUpdate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
):
    try:
        return ObligationService(db).update_bill(current_user.id, bill_id, payload.model_dump(exclude_unset=True))
    except ObligationError as exc:
        raise to_http_exception(exc)


@router.post("/{bill_id}/renew", response_model=BillOut)
def renew_bill(
    bill_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
):
    try:
        return ObligationService(db).renew_bill(current_user.id, bill_id)
    except ObligationError as exc:
        raise to_http_exception(exc)


@router.delete("/{bill_id}", status_code=204)
def delete_bill(
    bill_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
):
    try:
        ObligationService(db).delete_bill(current_user.id, bill_id)
    except ObligationError as exc:
        raise to_http_exception(exc)
    return None
