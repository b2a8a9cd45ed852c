from app.models.budget import (
    Budget,
    BudgetEvent,
    BudgetHistoryEntry,
    BudgetStatus,
    EventStatus,
    HistoryAction,
    PeriodType,
)
from app.models.user import User

__all__ = [
    "Budget",
    "BudgetEvent",
    "BudgetHistoryEntry",
    "BudgetStatus",
    "EventStatus",
    "HistoryAction",
    "PeriodType",
    "User",
]
