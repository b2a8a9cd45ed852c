from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.auth import SessionUser, get_current_user
from app.db.session import get_db
from app.models.budget import Budget, BudgetHistoryEntry, BudgetStatus, HistoryAction, PeriodType
from app.schemas.budget import (
    BudgetCreate,
    BudgetHistoryResponse,
    BudgetListResponse,
    BudgetRead,
    BudgetSummary,
    BudgetUpdate,
    HistoryEntryRead,
    SpendCreate,
)
from app.services.budget_status import InvalidStatusTransition, StatusTrigger, apply_trigger, refresh_status
from app.utils.timeutils import ensure_utc, utcnow

router = APIRouter(prefix="/budgets", tags=["budgets"])

SORT_FIELDS = {
    "period_start": Budget.period_start,
    "period_end": Budget.period_end,
    "name": Budget.name,
    "limit_amount": Budget.limit_amount,
    "created_at": Budget.created_at,
}


def get_owned_budget(db: Session, budget_id: UUID, user: SessionUser) -> Budget:
    row = db.execute(select(Budget).where(Budget.id == budget_id, Budget.user_id == user.uuid)).scalars().first()
    if not row:
        raise HTTPException(status_code=404, detail="Budget not found")
    return row


def commit_or_500(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"{what} failed") from e


@router.get("", response_model=BudgetListResponse)
def list_budgets(
    db: Session = Depends(get_db),
    current: SessionUser = Depends(get_current_user),
    status: BudgetStatus | None = None,
    category: str | None = None,
    period_type: PeriodType | None = None,
    current_only: bool = False,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    sort_by: str = Query("period_start"),
    sort_order: str = Query("desc", pattern=r"^(asc|desc)$"),
) -> BudgetListResponse:
    q = select(Budget).where(Budget.user_id == current.uuid)
    if status:
        q = q.where(Budget.status == status)
    if category:
        q = q.where(Budget.category == category)
    if period_type:
        q = q.where(Budget.period_type == period_type)
    if current_only:
        now = utcnow()
        q = q.where(Budget.period_start <= now, Budget.period_end >= now, Budget.status == BudgetStatus.ACTIVE)
    total = int(db.execute(select(func.count()).select_from(q.subquery())).scalar() or 0)
    column = SORT_FIELDS.get(sort_by, Budget.period_start)
    q = q.order_by(column.desc() if sort_order == "desc" else column.asc())
    rows = db.execute(q.offset((page - 1) * page_size).limit(page_size)).scalars().all()
    return BudgetListResponse(
        items=[BudgetRead.model_validate(r) for r in rows],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/summary", response_model=BudgetSummary)
def budgets_summary(db: Session = Depends(get_db), current: SessionUser = Depends(get_current_user)) -> BudgetSummary:
    now = utcnow()
    rows = db.execute(select(Budget).where(Budget.user_id == current.uuid)).scalars().all()
    running = [
        b for b in rows
        if b.status in (BudgetStatus.ACTIVE, BudgetStatus.EXCEEDED)
        and ensure_utc(b.period_start) <= now <= ensure_utc(b.period_end)
    ]
    total_limit = sum((Decimal(b.limit_amount) for b in running), Decimal("0"))
    total_spent = sum((Decimal(b.spent_amount) for b in running), Decimal("0"))
    efficiency = int(round((1 - total_spent / total_limit) * 100)) if total_limit > 0 else 0
    return BudgetSummary(
        total=len(rows),
        active=len(running),
        exceeded=sum(1 for b in running if b.spent_percent >= 100),
        in_alert=sum(1 for b in running if 80 <= b.spent_percent < 100),
        expiring_in_7_days=sum(1 for b in running if ensure_utc(b.period_end) - now <= timedelta(days=7)),
        with_auto_renew=sum(1 for b in rows if b.auto_renew),
        total_limit=total_limit,
        total_spent=total_spent,
        efficiency_pct=efficiency,
    )


@router.post("", response_model=BudgetRead, status_code=201)
def create_budget(
    payload: BudgetCreate,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(get_current_user),
) -> BudgetRead:
    category = payload.category.strip()
    conflict = db.execute(
        select(Budget).where(
            Budget.user_id == current.uuid,
            Budget.category == category,
            Budget.status == BudgetStatus.ACTIVE,
            Budget.period_start <= payload.period_end,
            Budget.period_end >= payload.period_start,
        )
    ).scalars().first()
    if conflict:
        raise HTTPException(status_code=400, detail="An active budget already covers this category and period")
    row = Budget(
        user_id=current.uuid,
        name=payload.name.strip(),
        category=category,
        description=(payload.description or "").strip() or None,
        color=payload.color,
        icon=payload.icon,
        period_type=payload.period_type,
        period_start=payload.period_start,
        period_end=payload.period_end,
        limit_amount=payload.limit_amount,
        spent_amount=Decimal("0"),
        status=BudgetStatus.ACTIVE,
        auto_renew=payload.auto_renew,
        rollover=payload.rollover,
        auto_adjust=payload.auto_adjust,
        adjust_percent=payload.adjust_percent,
        notify_on_renewal=payload.notify_on_renewal,
        alerts_enabled=payload.alerts_enabled,
        alert_thresholds=payload.alert_thresholds,
        renewal_count=0,
        average_spend=Decimal("0"),
    )
    row.add_history(HistoryAction.CREATED, row.limit_amount, "Budget created")
    db.add(row)
    commit_or_500(db, "Budget creation")
    db.refresh(row)
    return BudgetRead.model_validate(row)


@router.get("/{budget_id}", response_model=BudgetRead)
def get_budget(
    budget_id: UUID,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(get_current_user),
) -> BudgetRead:
    return BudgetRead.model_validate(get_owned_budget(db, budget_id, current))


@router.patch("/{budget_id}", response_model=BudgetRead)
def update_budget(
    budget_id: UUID,
    payload: BudgetUpdate,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(get_current_user),
) -> BudgetRead:
    row = get_owned_budget(db, budget_id, current)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")
    start = changes.get("period_start", ensure_utc(row.period_start))
    end = changes.get("period_end", ensure_utc(row.period_end))
    if start >= end:
        raise HTTPException(status_code=400, detail="period_start must be before period_end")

    old_limit = Decimal(row.limit_amount)
    new_limit = changes.pop("limit_amount", None)
    for field, val in changes.items():
        setattr(row, field, val.strip() if isinstance(val, str) else val)
    if new_limit is not None and Decimal(new_limit) != old_limit:
        row.limit_amount = new_limit
        row.add_history(HistoryAction.LIMIT_CHANGED, new_limit, f"Limit changed from {old_limit} to {new_limit}")
    if changes:
        row.add_history(HistoryAction.EDITED, None, "Updated: " + ", ".join(sorted(changes)))
    refresh_status(row, utcnow())
    commit_or_500(db, "Budget update")
    db.refresh(row)
    return BudgetRead.model_validate(row)


@router.delete("/{budget_id}", status_code=204)
def delete_budget(
    budget_id: UUID,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(get_current_user),
) -> None:
    row = get_owned_budget(db, budget_id, current)
    db.delete(row)
    commit_or_500(db, "Budget deletion")


@router.post("/{budget_id}/spend", response_model=BudgetRead)
def record_spend(
    budget_id: UUID,
    payload: SpendCreate,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(get_current_user),
) -> BudgetRead:
    row = get_owned_budget(db, budget_id, current)
    row.spent_amount = Decimal(row.spent_amount or 0) + payload.amount
    refresh_status(row, utcnow())
    commit_or_500(db, "Spend update")
    db.refresh(row)
    return BudgetRead.model_validate(row)


def _change_status(
    db: Session,
    budget_id: UUID,
    current: SessionUser,
    trigger: StatusTrigger,
    action: HistoryAction,
    note: str,
) -> BudgetRead:
    row = get_owned_budget(db, budget_id, current)
    try:
        apply_trigger(row, trigger)
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    row.add_history(action, None, note, actor_id=current.uuid)
    commit_or_500(db, "Status change")
    db.refresh(row)
    return BudgetRead.model_validate(row)


@router.post("/{budget_id}/pause", response_model=BudgetRead)
def pause_budget(
    budget_id: UUID,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(get_current_user),
) -> BudgetRead:
    return _change_status(db, budget_id, current, StatusTrigger.PAUSE, HistoryAction.PAUSED, "Budget paused by user")


@router.post("/{budget_id}/reactivate", response_model=BudgetRead)
def reactivate_budget(
    budget_id: UUID,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(get_current_user),
) -> BudgetRead:
    return _change_status(
        db, budget_id, current, StatusTrigger.REACTIVATE, HistoryAction.REACTIVATED, "Budget reactivated by user"
    )


@router.post("/{budget_id}/finish", response_model=BudgetRead)
def finish_budget(
    budget_id: UUID,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(get_current_user),
) -> BudgetRead:
    return _change_status(db, budget_id, current, StatusTrigger.FINISH, HistoryAction.FINISHED, "Budget finished by user")


@router.get("/{budget_id}/history", response_model=BudgetHistoryResponse)
def budget_history(
    budget_id: UUID,
    db: Session = Depends(get_db),
    current: SessionUser = Depends(get_current_user),
) -> BudgetHistoryResponse:
    row = get_owned_budget(db, budget_id, current)
    entries = db.execute(
        select(BudgetHistoryEntry)
        .where(BudgetHistoryEntry.budget_id == row.id)
        .order_by(BudgetHistoryEntry.created_at.desc())
    ).scalars().all()
    return BudgetHistoryResponse(budget=row.name, history=[HistoryEntryRead.model_validate(e) for e in entries])
