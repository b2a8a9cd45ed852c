"""
Period transition for a single budget.

renew_budget closes the budget's current period and opens the next one in a
fixed order: snapshot the closed period, compute new dates, compute the new
limit, reset spend, stamp the renewal time, append the ledger entry and fold
the closed period into the running statistics. The returned result carries
the payload of the "period closed" event; sending it is somebody else's job.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from app.core.config import settings
from app.models.budget import CENTS, ZERO, Budget, HistoryAction
from app.services.budget_status import StatusTrigger, apply_trigger, can_apply
from app.services.renewal.periods import is_renewable_period, next_period
from app.services.renewal.statistics import fold_closed_period
from app.utils.timeutils import ensure_utc

MIN_ADJUSTMENT = Decimal("-0.20")
MAX_ADJUSTMENT = Decimal("0.50")
ADJUSTMENT_WEIGHT = Decimal("0.5")
# Renewals needed before the running average is trusted for auto-adjust.
MIN_RENEWALS_FOR_ADJUST = 2

HEALTH_OK = "ok"
HEALTH_ATTENTION = "attention"
HEALTH_CRITICAL = "critical"
HEALTH_EXCEEDED = "exceeded"


def _money(value: Decimal) -> str:
    return f"{settings.currency_symbol} {Decimal(value).quantize(CENTS)}"


@dataclass(frozen=True)
class PeriodSnapshot:
    spent: Decimal
    limit: Decimal
    remaining: Decimal
    exceeded_by: Decimal
    percent: int
    health: str
    period_start: datetime
    period_end: datetime

    @property
    def summary(self) -> str:
        if self.exceeded_by > 0:
            return f"Exceeded the limit by {_money(self.exceeded_by)} ({self.percent}%)"
        return f"Spent {self.percent}% of the limit ({_money(self.spent)} of {_money(self.limit)})"

    def as_dict(self) -> dict[str, Any]:
        return {
            "spent": float(self.spent),
            "limit": float(self.limit),
            "remaining": float(self.remaining),
            "exceeded_by": float(self.exceeded_by),
            "percent": self.percent,
            "health": self.health,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "summary": self.summary,
        }


@dataclass
class RenewalResult:
    ok: bool
    reason: str | None = None
    snapshot: PeriodSnapshot | None = None
    previous_start: datetime | None = None
    previous_end: datetime | None = None
    new_start: datetime | None = None
    new_end: datetime | None = None
    new_limit: Decimal | None = None
    event_payload: dict[str, Any] = field(default_factory=dict)


def classify_health(spent: Decimal, limit: Decimal, percent: int) -> str:
    if spent > limit or percent >= 100:
        return HEALTH_EXCEEDED
    if percent >= 90:
        return HEALTH_CRITICAL
    if percent >= 80:
        return HEALTH_ATTENTION
    return HEALTH_OK


def snapshot_period(budget: Budget) -> PeriodSnapshot:
    spent = Decimal(budget.spent_amount or 0)
    limit = Decimal(budget.limit_amount or 0)
    percent = budget.spent_percent
    return PeriodSnapshot(
        spent=spent,
        limit=limit,
        remaining=max(ZERO, limit - spent),
        exceeded_by=max(ZERO, spent - limit),
        percent=percent,
        health=classify_health(spent, limit, percent),
        period_start=ensure_utc(budget.period_start),
        period_end=ensure_utc(budget.period_end),
    )


def clamp(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    return max(low, min(high, value))


def auto_adjust_ratio(budget: Budget) -> Decimal:
    """
    Fractional change to apply to the next limit, e.g. Decimal("0.1") for +10%.

    Derived from how the historical average spend compares to the current
    limit, clamped to [-20%, +50%], plus the budget's fixed adjust_percent.
    Budgets without enough renewal history get no adjustment at all.
    """
    if int(budget.renewal_count or 0) < MIN_RENEWALS_FOR_ADJUST:
        return ZERO
    limit = Decimal(budget.limit_amount or 0)
    reference = Decimal(budget.average_spend or 0) or Decimal(budget.spent_amount or 0)
    if reference == 0 or limit <= 0:
        return ZERO
    computed = clamp(ADJUSTMENT_WEIGHT * (reference - limit) / limit, MIN_ADJUSTMENT, MAX_ADJUSTMENT)
    return computed + Decimal(budget.adjust_percent or 0) / 100


def compute_new_limit(budget: Budget) -> Decimal:
    new_limit = Decimal(budget.limit_amount or 0)
    if budget.rollover and budget.remaining > 0:
        new_limit += budget.remaining
    if budget.auto_adjust:
        new_limit = max(new_limit * (1 + auto_adjust_ratio(budget)), ZERO)
    return new_limit.quantize(CENTS, rounding=ROUND_HALF_UP)


def _fmt_day(value: datetime) -> str:
    return value.strftime("%Y-%m-%d")


def renew_budget(budget: Budget, now: datetime, *, manual: bool = False) -> RenewalResult:
    if not budget.auto_renew:
        return RenewalResult(ok=False, reason="Automatic renewal is disabled for this budget")
    if not is_renewable_period(budget.period_type):
        return RenewalResult(ok=False, reason=f"Period type '{budget.period_type.value}' cannot be renewed")
    if not can_apply(budget.status, StatusTrigger.RENEW):
        return RenewalResult(ok=False, reason=f"A {budget.status.value} budget cannot be renewed")

    snapshot = snapshot_period(budget)
    new_start, new_end = next_period(budget.period_type, budget.period_end)
    new_limit = compute_new_limit(budget)

    budget.period_start = new_start
    budget.period_end = new_end
    budget.limit_amount = new_limit
    budget.spent_amount = ZERO
    apply_trigger(budget, StatusTrigger.RENEW)
    budget.last_renewed_at = ensure_utc(now)

    kind = "Manual" if manual else "Automatic"
    budget.add_history(
        HistoryAction.RENEWED_MANUAL if manual else HistoryAction.RENEWED,
        new_limit,
        f"{kind} renewal for period {_fmt_day(new_start)} - {_fmt_day(new_end)}. "
        f"Previous period: {snapshot.summary}",
        at=ensure_utc(now),
    )
    fold_closed_period(budget, snapshot)

    payload = {
        "budget_name": budget.name,
        "period_type": budget.period_type.value,
        "color": budget.color,
        "new_period_start": new_start.isoformat(),
        "new_period_end": new_end.isoformat(),
        "new_limit": float(new_limit),
        "manual": manual,
        "closed_period": snapshot.as_dict(),
    }
    return RenewalResult(
        ok=True,
        snapshot=snapshot,
        previous_start=snapshot.period_start,
        previous_end=snapshot.period_end,
        new_start=new_start,
        new_end=new_end,
        new_limit=new_limit,
        event_payload=payload,
    )
