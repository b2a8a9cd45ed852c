from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.budgets import commit_or_500, get_owned_budget
from app.core.auth import SessionUser, get_current_user
from app.db.session import get_db
from app.models.budget import HistoryAction
from app.schemas.budget import (
    BudgetRead,
    PendingRenewalResponse,
    RenewalCheckResponse,
    RenewalReportResponse,
    RenewalSettingsPatch,
    RenewalToggle,
    RenewNowResponse,
)
from app.services.renewal import RenewalRejected, RenewalRunner

router = APIRouter(prefix="/budgets/renewal", tags=["budget renewal"])
logger = logging.getLogger("app.renewal")


def get_renewal_runner() -> RenewalRunner:
    return RenewalRunner()


@router.post("/check", response_model=RenewalCheckResponse)
def check_renewals(
    db: Session = Depends(get_db),
    current: SessionUser = Depends(get_current_user),
    runner: RenewalRunner = Depends(get_renewal_runner),
) -> RenewalCheckResponse:
    summary = runner.run_for_user(db, current.uuid)
    return RenewalCheckResponse(
        renewed=summary.renewed,
        erros=summary.errors,
        detalhes=[d.as_dict() for d in summary.details],
    )


@router.patch("/{budget_id}/toggle", response_model=BudgetRead)
def toggle_auto_renew(
    budget_id: UUID,
    payload: RenewalToggle,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(get_current_user),
) -> BudgetRead:
    row = get_owned_budget(db, budget_id, current)
    row.auto_renew = payload.auto_renew
    if payload.auto_renew:
        row.add_history(HistoryAction.RENEWAL_ENABLED, None, "Automatic renewal enabled by user", actor_id=current.uuid)
    else:
        row.add_history(HistoryAction.RENEWAL_DISABLED, None, "Automatic renewal disabled by user", actor_id=current.uuid)
    commit_or_500(db, "Renewal toggle")
    db.refresh(row)
    return BudgetRead.model_validate(row)


@router.post("/{budget_id}/renew-now", response_model=RenewNowResponse)
def renew_now(
    budget_id: UUID,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(get_current_user),
    runner: RenewalRunner = Depends(get_renewal_runner),
) -> RenewNowResponse:
    row = get_owned_budget(db, budget_id, current)
    try:
        detail = runner.renew_now(db, row)
    except RenewalRejected as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except SQLAlchemyError as e:
        logger.exception("renew_now_failed id=%s", budget_id)
        raise HTTPException(status_code=500, detail="Renewal failed") from e
    db.refresh(row)
    return RenewNowResponse(budget=BudgetRead.model_validate(row), closed_period=detail.closed_period)


@router.get("/pending", response_model=PendingRenewalResponse)
def pending_renewals(
    db: Session = Depends(get_db),
    current: SessionUser = Depends(get_current_user),
    runner: RenewalRunner = Depends(get_renewal_runner),
) -> PendingRenewalResponse:
    rows = runner.pending(db, current.uuid)
    return PendingRenewalResponse(total=len(rows), budgets=rows)


@router.patch("/settings/{budget_id}", response_model=BudgetRead)
def update_renewal_settings(
    budget_id: UUID,
    payload: RenewalSettingsPatch,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(get_current_user),
) -> BudgetRead:
    config = payload.config.model_dump(exclude_none=True) if payload.config else {}
    if payload.auto_renew is None and not config:
        raise HTTPException(status_code=400, detail="No renewal settings to update")
    row = get_owned_budget(db, budget_id, current)
    changed: list[str] = []
    if payload.auto_renew is not None:
        row.auto_renew = payload.auto_renew
        changed.append("auto_renew")
    for field, val in config.items():
        setattr(row, field, val)
        changed.append(field)
    row.add_history(
        HistoryAction.CONFIG_CHANGED, None, "Renewal settings updated: " + ", ".join(changed), actor_id=current.uuid
    )
    commit_or_500(db, "Renewal settings update")
    db.refresh(row)
    return BudgetRead.model_validate(row)


@router.get("/report", response_model=RenewalReportResponse)
def renewal_report(
    periodo: int = Query(30, ge=1, le=3650),
    db: Session = Depends(get_db),
    current: SessionUser = Depends(get_current_user),
    runner: RenewalRunner = Depends(get_renewal_runner),
) -> RenewalReportResponse:
    return RenewalReportResponse(**runner.report(db, current.uuid, days=periodo))
