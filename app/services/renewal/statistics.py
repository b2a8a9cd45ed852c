from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from app.models.budget import CENTS, Budget

if TYPE_CHECKING:
    from app.services.renewal.transition import PeriodSnapshot


def fold_closed_period(budget: Budget, snapshot: "PeriodSnapshot") -> None:
    """Fold one closed period into the budget's running renewal statistics."""
    n = int(budget.renewal_count or 0) + 1
    budget.renewal_count = n

    previous_avg = Decimal(budget.average_spend or 0)
    average = (previous_avg * (n - 1) + snapshot.spent) / n
    budget.average_spend = average.quantize(CENTS)

    if budget.best_percent is None or snapshot.percent < budget.best_percent:
        budget.best_percent = snapshot.percent
        budget.best_period_end = snapshot.period_end
    if budget.worst_percent is None or snapshot.percent > budget.worst_percent:
        budget.worst_percent = snapshot.percent
        budget.worst_period_end = snapshot.period_end
