from app.services.renewal.evaluator import should_renew
from app.services.renewal.periods import RENEWABLE_PERIODS, is_renewable_period, next_period
from app.services.renewal.runner import RenewalDetail, RenewalRejected, RenewalRunner, RenewalSummary
from app.services.renewal.statistics import fold_closed_period
from app.services.renewal.transition import PeriodSnapshot, RenewalResult, renew_budget, snapshot_period

__all__ = [
    "PeriodSnapshot",
    "RENEWABLE_PERIODS",
    "RenewalDetail",
    "RenewalRejected",
    "RenewalResult",
    "RenewalRunner",
    "RenewalSummary",
    "fold_closed_period",
    "is_renewable_period",
    "next_period",
    "renew_budget",
    "should_renew",
    "snapshot_period",
]
