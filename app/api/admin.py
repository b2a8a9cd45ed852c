"""Admin endpoints: trigger the renewal batch and maintenance passes on demand."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.budget_renewal import get_renewal_runner
from app.core.auth import require_admin
from app.core.config import settings
from app.db.session import get_db
from app.services import maintenance
from app.services.notifications import NotificationDispatcher
from app.services.renewal import RenewalRunner

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/renewal/run")
def run_renewal_batch(
    db: Session = Depends(get_db),
    runner: RenewalRunner = Depends(get_renewal_runner),
    _=Depends(require_admin),
) -> dict:
    summary = runner.run_scheduled(db)
    return {
        "skipped": summary.skipped,
        "renewed": summary.renewed,
        "errors": summary.errors,
        "details": [d.as_dict() for d in summary.details],
    }


@router.post("/maintenance/cleanup")
def run_cleanup(db: Session = Depends(get_db), _=Depends(require_admin)) -> dict:
    try:
        return {"ok": True, **maintenance.run_cleanup(db)}
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Cleanup failed: {str(e)}") from e


@router.get("/maintenance/weekly-report")
def weekly_report(save: bool = False, db: Session = Depends(get_db), _=Depends(require_admin)) -> dict:
    return maintenance.weekly_report(db, write_to=settings.reports_dir if save else None)


@router.get("/maintenance/health")
def health(db: Session = Depends(get_db), _=Depends(require_admin)) -> dict:
    return maintenance.health_check(db)


@router.post("/notifications/flush")
def flush_notifications(db: Session = Depends(get_db), _=Depends(require_admin)) -> dict:
    return {"ok": True, "processed": NotificationDispatcher().dispatch_pending(db)}
