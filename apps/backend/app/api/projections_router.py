from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db
from app.core.deps import get_current_user, get_today
from app.schemas import BalanceForecastOut, CashflowForecastOut, CategoryForecastOut, ProjectionSummaryOut
from app.services.forecast_service import ForecastProjector


router = APIRouter(prefix="/projections", tags=["projections"])


@router.get("/cashflow", response_model=CashflowForecastOut)
def project_cashflow(
    days: Optional[int] = Query(None, ge=1, le=366),
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
    today: date = Depends(get_today),
):
    horizon = days or settings.DEFAULT_FORECAST_DAYS
    return ForecastProjector(db).project_days(current_user.id, horizon, today)


@router.get("/balance", response_model=BalanceForecastOut)
def project_balance(
    months: Optional[int] = Query(None, ge=1, le=60),
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
    today: date = Depends(get_today),
):
    horizon = months or settings.DEFAULT_FORECAST_MONTHS
    return ForecastProjector(db).project_months(current_user.id, horizon, today)


@router.get("/categories", response_model=CategoryForecastOut)
def project_categories(
    months: Optional[int] = Query(None, ge=1, le=24),
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
    today: date = Depends(get_today),
):
    horizon = months or settings.DEFAULT_CATEGORY_MONTHS
    return ForecastProjector(db).project_categories(current_user.id, horizon, today)


@router.get("/summary", response_model=ProjectionSummaryOut)
def projections_summary(
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
    today: date = Depends(get_today),
):
    return ForecastProjector(db).summarize(current_user.id, today)
