from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.deps import get_current_user, get_today
from app.core.errors import ObligationError, to_http_exception
from app.schemas import (
    InstallmentPlanCreate,
    RecurringOverrideOut,
    RecurringOverrideUpsert,
    RecurringRuleCreate,
    RecurringRuleOut,
    RecurringRuleUpdate,
)
from app.services.override_resolver import OverrideResolver
from app.services.recurring_rule_service import RecurringRuleService
from app import models


router = APIRouter(prefix="/recurring-rules", tags=["recurring-rules"])


@router.post("", response_model=RecurringRuleOut, status_code=201)
def create_recurring_rule(
    payload: RecurringRuleCreate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
):
    try:
        return RecurringRuleService(db).create_rule(payload.model_dump(), user_id=current_user.id)
    except ObligationError as exc:
        raise to_http_exception(exc)


@router.post("/installment-plan", response_model=RecurringRuleOut, status_code=201)
def create_installment_plan(
    payload: InstallmentPlanCreate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
):
    try:
        return RecurringRuleService(db).create_installment_plan(payload.model_dump(), user_id=current_user.id)
    except ObligationError as exc:
        raise to_http_exception(exc)


@router.get("", response_model=list[RecurringRuleOut])
def list_recurring_rules(
    type: Optional[models.TxnType] = Query(None),
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return RecurringRuleService(db).list_rules(
        user_id=current_user.id, type=type, include_inactive=include_inactive
    )


@router.get("/upcoming", response_model=list[RecurringRuleOut])
def upcoming_recurring_rules(
    days: int = Query(7, ge=0, le=366),
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
    today: date = Depends(get_today),
):
    return RecurringRuleService(db).upcoming_rules(user_id=current_user.id, days=days, today=today)


@router.get("/{rule_id}", response_model=RecurringRuleOut)
def get_recurring_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
):
    try:
        return RecurringRuleService(db).get_rule(current_user.id, rule_id)
    except ObligationError as exc:
        raise to_http_exception(exc)


@router.patch("/{rule_id}", response_model=RecurringRuleOut)
def update_recurring_rule(
    rule_id: int,
    payload: RecurringRuleUpdate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
):
    try:
        return RecurringRuleService(db).update_rule(current_user.id, rule_id, payload.model_dump(exclude_unset=True))
    except ObligationError as exc:
        raise to_http_exception(exc)


@router.delete("/{rule_id}", response_model=RecurringRuleOut)
def deactivate_recurring_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
):
    # Soft delete: payments and ledger transactions keep pointing at the rule
    try:
        return RecurringRuleService(db).deactivate_rule(current_user.id, rule_id)
    except ObligationError as exc:
        raise to_http_exception(exc)


@router.get("/{rule_id}/overrides", response_model=list[RecurringOverrideOut])
def list_recurring_overrides(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
):
    try:
        rule = RecurringRuleService(db).get_rule(current_user.id, rule_id)
    except ObligationError as exc:
        raise to_http_exception(exc)
    return OverrideResolver(db).for_rule(rule.id)


@router.put("/{rule_id}/overrides/{year}/{month}", response_model=RecurringOverrideOut)
def upsert_recurring_override(
    rule_id: int,
    payload: RecurringOverrideUpsert,
    year: int = Path(..., ge=1900, le=9999),
    month: int = Path(...),
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
):
    if not 1 <= month <= 12:
        raise to_http_exception(ObligationError("month must be between 1 and 12"))
    try:
        rule = RecurringRuleService(db).get_rule(current_user.id, rule_id)
        return OverrideResolver(db).upsert(rule, month, year, **payload.model_dump())
    except ObligationError as exc:
        raise to_http_exception(exc)


@router.delete("/{rule_id}/overrides/{year}/{month}", status_code=204)
def delete_recurring_override(
    rule_id: int,
    year: int = Path(..., ge=1900, le=9999),
    month: int = Path(...),
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user),
):
    try:
        rule = RecurringRuleService(db).get_rule(current_user.id, rule_id)
        OverrideResolver(db).delete(rule, month, year)
    except ObligationError as exc:
        raise to_http_exception(exc)
    return None
