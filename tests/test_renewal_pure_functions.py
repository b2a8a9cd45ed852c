from __future__ import annotations

import unittest
from datetime import timedelta
from decimal import Decimal

from app.models.budget import BudgetStatus, HistoryAction, PeriodType
from app.services.renewal.evaluator import renewed_recently, should_renew
from app.services.renewal.periods import is_renewable_period, next_period
from app.services.renewal.statistics import fold_closed_period
from app.services.renewal.transition import (
    HEALTH_ATTENTION,
    HEALTH_CRITICAL,
    HEALTH_EXCEEDED,
    HEALTH_OK,
    auto_adjust_ratio,
    classify_health,
    compute_new_limit,
    renew_budget,
    snapshot_period,
)
from tests.support import make_budget, utc


class PeriodTests(unittest.TestCase):
    def test_next_period_starts_the_day_after_the_old_end(self):
        start, end = next_period(PeriodType.WEEKLY, utc(2024, 1, 7))
        self.assertEqual(start, utc(2024, 1, 8))
        self.assertEqual(end, utc(2024, 1, 15))

    def test_calendar_lengths(self):
        end = utc(2024, 1, 31)
        expected = {
            PeriodType.MONTHLY: utc(2024, 3, 1),
            PeriodType.QUARTERLY: utc(2024, 5, 1),
            PeriodType.SEMIANNUAL: utc(2024, 8, 1),
            PeriodType.ANNUAL: utc(2025, 2, 1),
        }
        for period_type, new_end in expected.items():
            with self.subTest(period_type=period_type.value):
                start, got = next_period(period_type, end)
                self.assertEqual(start, utc(2024, 2, 1))
                self.assertEqual(got, new_end)

    def test_monthly_from_month_end_clamps_to_shorter_month(self):
        start, end = next_period(PeriodType.MONTHLY, utc(2024, 1, 30))
        self.assertEqual(start, utc(2024, 1, 31))
        self.assertEqual(end, utc(2024, 2, 29))

    def test_custom_is_not_renewable(self):
        self.assertFalse(is_renewable_period(PeriodType.CUSTOM))
        self.assertFalse(is_renewable_period("fortnightly"))
        self.assertTrue(is_renewable_period("monthly"))
        with self.assertRaises(ValueError):
            next_period(PeriodType.CUSTOM, utc(2024, 1, 7))


class EvaluatorTests(unittest.TestCase):
    now = utc(2024, 1, 10)

    def test_expired_auto_renewing_budget_is_eligible(self):
        self.assertTrue(should_renew(make_budget(), self.now))

    def test_ineligible_budgets(self):
        cases = {
            "auto renew off": make_budget(auto_renew=False),
            "custom period": make_budget(period_type=PeriodType.CUSTOM),
            "still running": make_budget(period_end=utc(2024, 1, 12)),
            "paused": make_budget(status=BudgetStatus.PAUSED),
            "finished": make_budget(status=BudgetStatus.FINISHED),
            "renewed an hour ago": make_budget(last_renewed_at=self.now - timedelta(hours=1)),
        }
        for label, budget in cases.items():
            with self.subTest(label):
                self.assertFalse(should_renew(budget, self.now))

    def test_exceeded_budget_is_eligible(self):
        budget = make_budget(status=BudgetStatus.EXCEEDED, spent_amount=130)
        self.assertTrue(should_renew(budget, self.now))

    def test_guard_window(self):
        budget = make_budget(last_renewed_at=self.now - timedelta(hours=24))
        self.assertTrue(renewed_recently(budget, self.now))
        budget.last_renewed_at = self.now - timedelta(hours=25)
        self.assertFalse(renewed_recently(budget, self.now))
        self.assertTrue(should_renew(budget, self.now))


class SnapshotTests(unittest.TestCase):
    def test_health_thresholds(self):
        self.assertEqual(classify_health(Decimal("50"), Decimal("100"), 50), HEALTH_OK)
        self.assertEqual(classify_health(Decimal("80"), Decimal("100"), 80), HEALTH_ATTENTION)
        self.assertEqual(classify_health(Decimal("95"), Decimal("100"), 95), HEALTH_CRITICAL)
        self.assertEqual(classify_health(Decimal("100"), Decimal("100"), 100), HEALTH_EXCEEDED)
        self.assertEqual(classify_health(Decimal("120"), Decimal("100"), 120), HEALTH_EXCEEDED)

    def test_snapshot_of_overspent_period(self):
        snap = snapshot_period(make_budget(spent_amount=125, status=BudgetStatus.EXCEEDED))
        self.assertEqual(snap.percent, 125)
        self.assertEqual(snap.remaining, Decimal("0"))
        self.assertEqual(snap.exceeded_by, Decimal("25.00"))
        self.assertEqual(snap.health, HEALTH_EXCEEDED)
        self.assertIn("Exceeded the limit by", snap.summary)

    def test_snapshot_of_zero_limit(self):
        snap = snapshot_period(make_budget(limit_amount=0, spent_amount=0))
        self.assertEqual(snap.percent, 0)
        self.assertEqual(snap.health, HEALTH_OK)


class LimitTests(unittest.TestCase):
    def test_rollover_carries_unspent_amount(self):
        budget = make_budget(rollover=True, spent_amount=60)
        self.assertEqual(compute_new_limit(budget), Decimal("140.00"))

    def test_rollover_without_remainder_keeps_limit(self):
        budget = make_budget(rollover=True, spent_amount=150)
        self.assertEqual(compute_new_limit(budget), Decimal("100.00"))

    def test_no_adjustment_before_enough_history(self):
        budget = make_budget(auto_adjust=True, adjust_percent=10, renewal_count=1, average_spend=300)
        self.assertEqual(auto_adjust_ratio(budget), Decimal("0"))
        self.assertEqual(compute_new_limit(budget), Decimal("100.00"))

    def test_adjustment_is_clamped(self):
        up = make_budget(auto_adjust=True, renewal_count=3, average_spend=1000)
        self.assertEqual(auto_adjust_ratio(up), Decimal("0.50"))
        self.assertEqual(compute_new_limit(up), Decimal("150.00"))

        down = make_budget(auto_adjust=True, renewal_count=3, average_spend=10)
        self.assertEqual(auto_adjust_ratio(down), Decimal("-0.20"))
        self.assertEqual(compute_new_limit(down), Decimal("80.00"))

    def test_adjustment_adds_fixed_percent(self):
        budget = make_budget(auto_adjust=True, renewal_count=2, average_spend=120, adjust_percent=5)
        # 0.5 * (120 - 100) / 100 = 0.10, plus 5%
        self.assertEqual(auto_adjust_ratio(budget), Decimal("0.15"))
        self.assertEqual(compute_new_limit(budget), Decimal("115.00"))

    def test_adjustment_never_goes_negative(self):
        budget = make_budget(auto_adjust=True, renewal_count=2, average_spend=10, adjust_percent=-90)
        self.assertEqual(compute_new_limit(budget), Decimal("0.00"))


class TransitionTests(unittest.TestCase):
    now = utc(2024, 1, 10)

    def test_weekly_rollover_renewal(self):
        budget = make_budget(rollover=True, spent_amount=60)
        result = renew_budget(budget, self.now)

        self.assertTrue(result.ok)
        self.assertEqual(budget.period_start, utc(2024, 1, 8))
        self.assertEqual(budget.period_end, utc(2024, 1, 15))
        self.assertEqual(budget.limit_amount, Decimal("140.00"))
        self.assertEqual(budget.spent_amount, Decimal("0"))
        self.assertEqual(budget.status, BudgetStatus.ACTIVE)
        self.assertEqual(budget.last_renewed_at, self.now)
        self.assertEqual(result.previous_end, utc(2024, 1, 7))
        self.assertEqual(result.snapshot.percent, 60)

    def test_exceeded_budget_returns_to_active(self):
        budget = make_budget(status=BudgetStatus.EXCEEDED, spent_amount=130)
        renew_budget(budget, self.now)
        self.assertEqual(budget.status, BudgetStatus.ACTIVE)
        self.assertEqual(budget.spent_amount, Decimal("0"))

    def test_single_history_entry(self):
        budget = make_budget(spent_amount=40)
        renew_budget(budget, self.now, manual=True)
        self.assertEqual(len(budget.history), 1)
        entry = budget.history[0]
        self.assertEqual(entry.action, HistoryAction.RENEWED_MANUAL)
        self.assertEqual(entry.value, Decimal("100.00"))
        self.assertTrue(entry.note.startswith("Manual renewal for period 2024-01-08 - 2024-01-15"))
        self.assertIn("Spent 40% of the limit", entry.note)

    def test_event_payload(self):
        budget = make_budget(spent_amount=95)
        result = renew_budget(budget, self.now)
        payload = result.event_payload
        self.assertEqual(payload["budget_name"], "Groceries")
        self.assertFalse(payload["manual"])
        self.assertEqual(payload["new_limit"], 100.0)
        self.assertEqual(payload["closed_period"]["health"], HEALTH_CRITICAL)

    def test_refusals_leave_budget_untouched(self):
        for budget in (make_budget(auto_renew=False), make_budget(period_type=PeriodType.CUSTOM)):
            with self.subTest(period=budget.period_type.value, auto_renew=budget.auto_renew):
                result = renew_budget(budget, self.now)
                self.assertFalse(result.ok)
                self.assertTrue(result.reason)
                self.assertEqual(budget.period_end, utc(2024, 1, 7))
                self.assertEqual(budget.history, [])


class StatisticsTests(unittest.TestCase):
    def test_running_mean_and_extremes(self):
        budget = make_budget(best_percent=None, worst_percent=None)
        spends = [(Decimal("50"), utc(2024, 1, 7)), (Decimal("110"), utc(2024, 1, 14)), (Decimal("30"), utc(2024, 1, 21))]
        for spent, period_end in spends:
            budget.spent_amount = spent
            budget.period_end = period_end
            fold_closed_period(budget, snapshot_period(budget))

        self.assertEqual(budget.renewal_count, 3)
        self.assertEqual(budget.average_spend, Decimal("63.33"))
        self.assertEqual(budget.best_percent, 30)
        self.assertEqual(budget.best_period_end, utc(2024, 1, 21))
        self.assertEqual(budget.worst_percent, 110)
        self.assertEqual(budget.worst_period_end, utc(2024, 1, 14))


if __name__ == "__main__":
    unittest.main()
