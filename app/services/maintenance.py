"""Housekeeping passes run by the scheduler: ledger retention, purge of stale budgets, reports, health."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.models.budget import Budget, BudgetHistoryEntry, BudgetStatus, HistoryAction
from app.models.user import User
from app.services.budget_status import StatusTrigger, apply_trigger
from app.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger("app.maintenance")


def prune_history(db: Session, now: datetime | None = None) -> int:
    now = ensure_utc(now) if now else utcnow()
    cutoff = now - timedelta(days=settings.history_retention_days)
    res = db.execute(delete(BudgetHistoryEntry).where(BudgetHistoryEntry.created_at < cutoff))
    db.commit()
    removed = int(res.rowcount or 0)
    logger.info("history_pruned removed=%s cutoff=%s", removed, cutoff.date())
    return removed


def purge_finished_budgets(db: Session, now: datetime | None = None) -> int:
    now = ensure_utc(now) if now else utcnow()
    cutoff = now - timedelta(days=settings.finished_budget_retention_days)
    rows = db.execute(
        select(Budget).where(
            Budget.status == BudgetStatus.FINISHED,
            Budget.auto_renew.is_(False),
            Budget.period_end < cutoff,
        )
    ).scalars().all()
    for row in rows:
        db.delete(row)
    db.commit()
    logger.info("finished_budgets_purged removed=%s", len(rows))
    return len(rows)


def close_expired_budgets(db: Session, now: datetime | None = None) -> int:
    """Finish expired active budgets that will not be renewed."""
    now = ensure_utc(now) if now else utcnow()
    rows = db.execute(
        select(Budget).where(
            Budget.status == BudgetStatus.ACTIVE,
            Budget.auto_renew.is_(False),
            Budget.period_end < now,
        )
    ).scalars().all()
    for row in rows:
        apply_trigger(row, StatusTrigger.PERIOD_EXPIRED)
        row.add_history(HistoryAction.FINISHED, None, "Budget finished automatically", at=now)
    db.commit()
    logger.info("expired_budgets_closed count=%s", len(rows))
    return len(rows)


def run_cleanup(db: Session, now: datetime | None = None) -> dict[str, int]:
    now = ensure_utc(now) if now else utcnow()
    return {
        "closed": close_expired_budgets(db, now),
        "history_removed": prune_history(db, now),
        "budgets_removed": purge_finished_budgets(db, now),
    }


def weekly_report(db: Session, now: datetime | None = None, *, write_to: str | Path | None = None) -> dict[str, Any]:
    now = ensure_utc(now) if now else utcnow()
    week_ago = now - timedelta(days=7)
    next_week = now + timedelta(days=7)
    renewed = db.execute(
        select(Budget).where(Budget.last_renewed_at >= week_ago).options(selectinload(Budget.user))
    ).scalars().all()
    upcoming = db.execute(
        select(Budget)
        .where(
            Budget.period_end >= now,
            Budget.period_end <= next_week,
            Budget.status == BudgetStatus.ACTIVE,
            Budget.auto_renew.is_(True),
        )
        .options(selectinload(Budget.user))
    ).scalars().all()
    report = {
        "generated_at": now.isoformat(),
        "renewals": {
            "total": len(renewed),
            "details": [
                {
                    "user": b.user.name if b.user else None,
                    "budget": b.name,
                    "renewed_at": ensure_utc(b.last_renewed_at).isoformat(),
                    "limit_amount": float(b.limit_amount),
                }
                for b in renewed
            ],
        },
        "upcoming_expirations": {
            "total": len(upcoming),
            "details": [
                {
                    "user": b.user.name if b.user else None,
                    "budget": b.name,
                    "period_end": ensure_utc(b.period_end).isoformat(),
                    "limit_amount": float(b.limit_amount),
                }
                for b in upcoming
            ],
        },
    }
    if write_to is not None:
        out_dir = Path(write_to)
        out_dir.mkdir(parents=True, exist_ok=True)
        path = out_dir / f"budget-renewal-report-{now.date().isoformat()}.json"
        path.write_text(json.dumps(report, indent=2), encoding="utf-8")
        report["file"] = str(path)
        logger.info("weekly_report_written path=%s", path)
    logger.info("weekly_report renewals=%s upcoming=%s", len(renewed), len(upcoming))
    return report


def health_check(db: Session) -> dict[str, Any]:
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("health_check_failed error=%s", e)
        return {"ok": False, "database": False, "error": str(e)}
    invalid_dates = int(
        db.execute(select(func.count(Budget.id)).where(Budget.period_start >= Budget.period_end)).scalar() or 0
    )
    orphans = int(
        db.execute(
            select(func.count(Budget.id)).outerjoin(User, User.id == Budget.user_id).where(User.id.is_(None))
        ).scalar()
        or 0
    )
    if invalid_dates or orphans:
        logger.warning("health_check_issues invalid_dates=%s orphans=%s", invalid_dates, orphans)
    return {
        "ok": invalid_dates == 0 and orphans == 0,
        "database": True,
        "invalid_dates": invalid_dates,
        "orphaned_budgets": orphans,
    }
