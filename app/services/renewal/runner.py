from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.models.budget import PERIOD_CLOSED, Budget, BudgetEvent, EventStatus
from app.services.notifications.dispatcher import NotificationDispatcher
from app.services.renewal.evaluator import RENEWABLE_STATUSES, should_renew
from app.services.renewal.periods import is_renewable_period
from app.services.renewal.transition import RenewalResult, renew_budget, snapshot_period
from app.utils.timeutils import ensure_utc, utcnow, whole_days_between

logger = logging.getLogger("app.renewal")

RENEWED = "renewed"
ERROR = "error"

_batch_lock = threading.Lock()


class RenewalRejected(Exception):
    """An explicit renewal request that cannot be honoured; nothing was changed."""


@dataclass
class RenewalDetail:
    id: UUID
    name: str
    owner: str
    outcome: str
    reason: str | None = None
    previous_start: datetime | None = None
    previous_end: datetime | None = None
    new_start: datetime | None = None
    new_end: datetime | None = None
    new_limit: Decimal | None = None
    closed_period: dict[str, Any] | None = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": str(self.id), "name": self.name, "owner": self.owner, "outcome": self.outcome}
        if self.outcome == ERROR:
            data["reason"] = self.reason
            return data
        data.update(
            {
                "previous_start": self.previous_start.isoformat() if self.previous_start else None,
                "previous_end": self.previous_end.isoformat() if self.previous_end else None,
                "new_start": self.new_start.isoformat() if self.new_start else None,
                "new_end": self.new_end.isoformat() if self.new_end else None,
                "new_limit": float(self.new_limit) if self.new_limit is not None else None,
                "closed_period": self.closed_period,
            }
        )
        return data


@dataclass
class RenewalSummary:
    renewed: int = 0
    errors: int = 0
    details: list[RenewalDetail] = field(default_factory=list)
    skipped: bool = False

    def add(self, detail: RenewalDetail) -> None:
        if detail.outcome == RENEWED:
            self.renewed += 1
        else:
            self.errors += 1
        self.details.append(detail)


@dataclass(frozen=True)
class _Ident:
    id: UUID
    name: str
    owner: str


def _owner_name(budget: Budget) -> str:
    user = budget.user
    if user is None:
        return "unknown user"
    return user.name or user.email


class RenewalRunner:
    """
    Applies the renewal transition to every eligible budget, one at a time.

    A failure on one budget rolls back that budget only and is reported in the
    summary; budgets renewed earlier in the batch stay renewed. Notification is
    attempted after each commit and never affects the renewal outcome.
    """

    def __init__(self, dispatcher: NotificationDispatcher | None = None, guard: timedelta | None = None):
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.guard = guard if guard is not None else timedelta(hours=settings.renewal_guard_hours)

    # Candidate queries

    def scheduled_candidates(self, db: Session, now: datetime) -> list[Budget]:
        q = (
            select(Budget)
            .where(
                Budget.period_end < now,
                Budget.auto_renew.is_(True),
                Budget.status.in_(RENEWABLE_STATUSES),
                or_(Budget.last_renewed_at.is_(None), Budget.last_renewed_at < now - self.guard),
            )
            .options(selectinload(Budget.user))
            .order_by(Budget.period_end)
        )
        return list(db.execute(q).scalars().all())

    def user_candidates(self, db: Session, user_id: UUID, now: datetime) -> list[Budget]:
        q = (
            select(Budget)
            .where(
                Budget.user_id == user_id,
                Budget.period_end < now,
                Budget.auto_renew.is_(True),
                Budget.status.in_(RENEWABLE_STATUSES),
            )
            .options(selectinload(Budget.user))
            .order_by(Budget.period_end)
        )
        return list(db.execute(q).scalars().all())

    # Entry points

    def run_scheduled(self, db: Session, now: datetime | None = None) -> RenewalSummary:
        if not _batch_lock.acquire(blocking=False):
            logger.warning("renewal_batch_already_running")
            return RenewalSummary(skipped=True)
        try:
            now = ensure_utc(now) if now else utcnow()
            candidates = self.scheduled_candidates(db, now)
            logger.info("renewal_batch_started candidates=%s", len(candidates))
            summary = self._process(db, candidates, now, check_eligibility=True)
            logger.info("renewal_batch_done renewed=%s errors=%s", summary.renewed, summary.errors)
            return summary
        finally:
            _batch_lock.release()

    def run_for_user(self, db: Session, user_id: UUID, now: datetime | None = None) -> RenewalSummary:
        now = ensure_utc(now) if now else utcnow()
        candidates = self.user_candidates(db, user_id, now)
        summary = self._process(db, candidates, now, check_eligibility=False)
        logger.info("renewal_user_check user=%s renewed=%s errors=%s", user_id, summary.renewed, summary.errors)
        return summary

    def renew_now(self, db: Session, budget: Budget, now: datetime | None = None) -> RenewalDetail:
        now = ensure_utc(now) if now else utcnow()
        if ensure_utc(budget.period_end) > now:
            raise RenewalRejected("Budget period is still running. Only expired budgets can be renewed.")
        ident = _Ident(budget.id, budget.name, _owner_name(budget))
        result = renew_budget(budget, now, manual=True)
        if not result.ok:
            raise RenewalRejected(result.reason or "Budget could not be renewed")
        try:
            event = self._persist(db, budget, result)
        except Exception:
            db.rollback()
            raise
        logger.info("budget_renewed_manually id=%s user=%s new_end=%s", budget.id, budget.user_id, result.new_end)
        self.dispatcher.dispatch(db, event)
        return self._success(ident, result)

    # Read-only views

    def pending(self, db: Session, user_id: UUID, now: datetime | None = None) -> list[dict[str, Any]]:
        now = ensure_utc(now) if now else utcnow()
        rows = []
        for budget in self.user_candidates(db, user_id, now):
            rows.append(
                {
                    "id": str(budget.id),
                    "name": budget.name,
                    "period_type": budget.period_type.value,
                    "period_end": ensure_utc(budget.period_end).isoformat(),
                    "days_overdue": whole_days_between(budget.period_end, now),
                    "limit_amount": float(budget.limit_amount),
                    "closed_period": snapshot_period(budget).as_dict(),
                    "can_renew": is_renewable_period(budget.period_type),
                }
            )
        return rows

    def report(self, db: Session, user_id: UUID, days: int = 30, now: datetime | None = None) -> dict[str, Any]:
        now = ensure_utc(now) if now else utcnow()
        since = now - timedelta(days=days)
        budgets = db.execute(
            select(Budget)
            .where(Budget.user_id == user_id, Budget.last_renewed_at >= since)
            .order_by(Budget.last_renewed_at.desc())
        ).scalars().all()
        return {
            "period_days": days,
            "total": len(budgets),
            "budgets": [
                {
                    "id": str(b.id),
                    "name": b.name,
                    "renewed_at": ensure_utc(b.last_renewed_at).isoformat(),
                    "limit_amount": float(b.limit_amount),
                    "period_type": b.period_type.value,
                    "renewal_count": b.renewal_count,
                }
                for b in budgets
            ],
        }

    # Internals

    def _persist(self, db: Session, budget: Budget, result: RenewalResult) -> BudgetEvent:
        event = BudgetEvent(
            budget_id=budget.id,
            user_id=budget.user_id,
            kind=PERIOD_CLOSED,
            payload=result.event_payload,
            status=EventStatus.PENDING,
            attempts=0,
        )
        db.add(event)
        db.commit()
        return event

    def _success(self, ident: _Ident, result: RenewalResult) -> RenewalDetail:
        return RenewalDetail(
            id=ident.id,
            name=ident.name,
            owner=ident.owner,
            outcome=RENEWED,
            previous_start=result.previous_start,
            previous_end=result.previous_end,
            new_start=result.new_start,
            new_end=result.new_end,
            new_limit=result.new_limit,
            closed_period=result.snapshot.as_dict() if result.snapshot else None,
        )

    def _process(
        self, db: Session, candidates: list[Budget], now: datetime, *, check_eligibility: bool
    ) -> RenewalSummary:
        summary = RenewalSummary()
        idents = [_Ident(b.id, b.name, _owner_name(b)) for b in candidates]
        for budget, ident in zip(candidates, idents):
            if not is_renewable_period(budget.period_type):
                logger.info("renewal_skipped_period id=%s period=%s", ident.id, budget.period_type.value)
                continue
            if check_eligibility and not should_renew(budget, now, guard=self.guard):
                logger.info("renewal_skipped_ineligible id=%s", ident.id)
                continue
            try:
                result = renew_budget(budget, now)
                if not result.ok:
                    logger.warning("renewal_refused id=%s reason=%s", ident.id, result.reason)
                    summary.add(RenewalDetail(ident.id, ident.name, ident.owner, ERROR, reason=result.reason))
                    continue
                event = self._persist(db, budget, result)
            except Exception as exc:
                db.rollback()
                logger.exception("renewal_failed id=%s name=%s", ident.id, ident.name)
                summary.add(RenewalDetail(ident.id, ident.name, ident.owner, ERROR, reason=str(exc)))
                continue
            logger.info("budget_renewed id=%s user=%s new_end=%s", ident.id, budget.user_id, result.new_end)
            summary.add(self._success(ident, result))
            self.dispatcher.dispatch(db, event)
        return summary
