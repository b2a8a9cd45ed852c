from __future__ import annotations

from datetime import datetime, timedelta

from app.models.budget import Budget, BudgetStatus
from app.services.renewal.periods import is_renewable_period
from app.utils.timeutils import ensure_utc

RENEWAL_GUARD = timedelta(hours=24)
RENEWABLE_STATUSES = (BudgetStatus.ACTIVE, BudgetStatus.EXCEEDED)


def renewed_recently(budget: Budget, now: datetime, guard: timedelta = RENEWAL_GUARD) -> bool:
    last = ensure_utc(budget.last_renewed_at)
    if last is None:
        return False
    return ensure_utc(now) - last <= guard


def should_renew(budget: Budget, now: datetime, *, guard: timedelta = RENEWAL_GUARD) -> bool:
    """True when the budget's period has ended and it is configured and allowed to roll into the next one."""
    if not budget.auto_renew:
        return False
    if not is_renewable_period(budget.period_type):
        return False
    if not ensure_utc(budget.period_end) < ensure_utc(now):
        return False
    if budget.status not in RENEWABLE_STATUSES:
        return False
    return not renewed_recently(budget, now, guard)
