from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.budget import PERIOD_CLOSED, Budget, BudgetEvent, EventStatus
from app.models.user import User
from app.services.notifications.email import EmailTransport
from app.services.notifications.templates import render_renewal_email
from app.utils.timeutils import utcnow

logger = logging.getLogger("app.notifications")


def skip_reason(user: User | None, budget: Budget | None) -> str | None:
    if user is None:
        return "owner not found"
    if not user.email:
        return "owner has no email"
    if not user.notify_email:
        return "email notifications disabled"
    if not user.notify_budgets:
        return "budget notifications disabled"
    if budget is not None and not budget.notify_on_renewal:
        return "renewal notifications disabled for budget"
    return None


class NotificationDispatcher:
    """Consumes period-closed events from the outbox and emails the budget owner."""

    def __init__(self, transport: EmailTransport | None = None):
        self.transport = transport or EmailTransport()

    def _deliver(self, db: Session, event: BudgetEvent) -> EventStatus:
        user = db.get(User, event.user_id)
        budget = db.get(Budget, event.budget_id)
        reason = skip_reason(user, budget)
        if reason:
            event.last_error = reason
            return EventStatus.SKIPPED
        if event.kind != PERIOD_CLOSED:
            event.last_error = f"unknown event kind {event.kind}"
            return EventStatus.SKIPPED
        email = render_renewal_email(
            event.payload, app_url=settings.app_url, currency_symbol=settings.currency_symbol
        )
        sent = self.transport.send(to=user.email, subject=email.subject, html=email.html, text=email.text)
        if not sent:
            event.last_error = "transport declined the message"
            return EventStatus.FAILED
        event.last_error = None
        return EventStatus.SENT

    def dispatch(self, db: Session, event: BudgetEvent) -> EventStatus:
        """Best effort: failures are recorded on the event and logged, never raised."""
        event_id, budget_id = event.id, event.budget_id
        event.attempts = int(event.attempts or 0) + 1
        try:
            status = self._deliver(db, event)
        except Exception as exc:
            logger.exception("notification_failed event=%s budget=%s", event_id, budget_id)
            event.last_error = str(exc)[:500]
            status = EventStatus.FAILED
        event.status = status
        event.processed_at = utcnow()
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("notification_status_not_saved event=%s", event_id)
        logger.info("notification_processed event=%s budget=%s status=%s", event_id, budget_id, status.value)
        return status

    def dispatch_pending(self, db: Session, limit: int = 100) -> dict[str, int]:
        events = db.execute(
            select(BudgetEvent)
            .where(BudgetEvent.status == EventStatus.PENDING)
            .order_by(BudgetEvent.created_at)
            .limit(limit)
        ).scalars().all()
        counts = {s.value: 0 for s in EventStatus if s is not EventStatus.PENDING}
        for event in events:
            counts[self.dispatch(db, event).value] += 1
        return counts
