"""
Budget status machine.

States: active, paused, finished, exceeded.
Triggers: spend_updated, period_expired, pause, reactivate, finish, renew.

Each (state, trigger) pair maps to a resolver that picks the next state from
the budget's amounts and renewal flag. Pairs missing from the table are
rejected with InvalidStatusTransition.
"""
from __future__ import annotations

import enum
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

from app.models.budget import Budget, BudgetStatus
from app.utils.timeutils import ensure_utc

ACTIVE = BudgetStatus.ACTIVE
PAUSED = BudgetStatus.PAUSED
FINISHED = BudgetStatus.FINISHED
EXCEEDED = BudgetStatus.EXCEEDED


class StatusTrigger(str, enum.Enum):
    SPEND_UPDATED = "spend_updated"
    PERIOD_EXPIRED = "period_expired"
    PAUSE = "pause"
    REACTIVATE = "reactivate"
    FINISH = "finish"
    RENEW = "renew"


class InvalidStatusTransition(ValueError):
    def __init__(self, current: BudgetStatus, trigger: StatusTrigger):
        super().__init__(f"Cannot apply '{trigger.value}' to a budget that is {current.value}")
        self.current = current
        self.trigger = trigger


Resolver = Callable[[Decimal, Decimal, bool], BudgetStatus]


def _by_spend(spent: Decimal, limit: Decimal, _auto_renew: bool) -> BudgetStatus:
    return EXCEEDED if spent > limit else ACTIVE


def _expire_active(_spent: Decimal, _limit: Decimal, auto_renew: bool) -> BudgetStatus:
    # Auto-renewing budgets wait for the renewal runner instead of closing.
    return ACTIVE if auto_renew else FINISHED


def _to(state: BudgetStatus) -> Resolver:
    return lambda _spent, _limit, _auto_renew: state


TRANSITIONS: dict[tuple[BudgetStatus, StatusTrigger], Resolver] = {
    (ACTIVE, StatusTrigger.SPEND_UPDATED): _by_spend,
    (ACTIVE, StatusTrigger.PERIOD_EXPIRED): _expire_active,
    (ACTIVE, StatusTrigger.PAUSE): _to(PAUSED),
    (ACTIVE, StatusTrigger.FINISH): _to(FINISHED),
    (ACTIVE, StatusTrigger.RENEW): _to(ACTIVE),
    (EXCEEDED, StatusTrigger.SPEND_UPDATED): _by_spend,
    (EXCEEDED, StatusTrigger.PERIOD_EXPIRED): _to(EXCEEDED),
    (EXCEEDED, StatusTrigger.PAUSE): _to(PAUSED),
    (EXCEEDED, StatusTrigger.FINISH): _to(FINISHED),
    (EXCEEDED, StatusTrigger.RENEW): _to(ACTIVE),
    (PAUSED, StatusTrigger.SPEND_UPDATED): _to(PAUSED),
    (PAUSED, StatusTrigger.PERIOD_EXPIRED): _to(PAUSED),
    (PAUSED, StatusTrigger.REACTIVATE): _by_spend,
    (PAUSED, StatusTrigger.FINISH): _to(FINISHED),
    (PAUSED, StatusTrigger.RENEW): _to(ACTIVE),
    (FINISHED, StatusTrigger.SPEND_UPDATED): _to(FINISHED),
    (FINISHED, StatusTrigger.PERIOD_EXPIRED): _to(FINISHED),
    (FINISHED, StatusTrigger.REACTIVATE): _by_spend,
    (FINISHED, StatusTrigger.RENEW): _to(ACTIVE),
}


def next_status(
    current: BudgetStatus,
    trigger: StatusTrigger,
    *,
    spent: Decimal,
    limit: Decimal,
    auto_renew: bool = False,
) -> BudgetStatus:
    resolver = TRANSITIONS.get((BudgetStatus(current), trigger))
    if resolver is None:
        raise InvalidStatusTransition(BudgetStatus(current), trigger)
    return resolver(Decimal(spent or 0), Decimal(limit or 0), bool(auto_renew))


def can_apply(current: BudgetStatus, trigger: StatusTrigger) -> bool:
    return (BudgetStatus(current), trigger) in TRANSITIONS


def apply_trigger(budget: Budget, trigger: StatusTrigger) -> BudgetStatus:
    """Move the budget to its next status and return it."""
    budget.status = next_status(
        budget.status,
        trigger,
        spent=budget.spent_amount,
        limit=budget.limit_amount,
        auto_renew=budget.auto_renew,
    )
    return budget.status


def refresh_status(budget: Budget, now: datetime) -> BudgetStatus:
    """Re-evaluate spend and expiry after amounts or dates changed."""
    apply_trigger(budget, StatusTrigger.SPEND_UPDATED)
    if ensure_utc(budget.period_end) < ensure_utc(now):
        apply_trigger(budget, StatusTrigger.PERIOD_EXPIRED)
    return budget.status
