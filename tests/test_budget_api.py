from __future__ import annotations

import unittest
import uuid
from datetime import timedelta
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy import func, select

from app.api.budget_renewal import get_renewal_runner
from app.db.session import get_db
from app.main import app
from app.models.budget import Budget, BudgetHistoryEntry
from app.services.notifications.dispatcher import NotificationDispatcher
from app.services.renewal.runner import RenewalRunner
from app.utils.timeutils import utcnow
from tests.support import RecordingTransport, make_session_factory

PAST_WEEK = {"period_start": "2024-01-01T00:00:00Z", "period_end": "2024-01-07T00:00:00Z"}


class BudgetApiTests(unittest.TestCase):
    def setUp(self):
        self.SessionLocal = make_session_factory()
        self.transport = RecordingTransport()

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_renewal_runner] = lambda: RenewalRunner(
            dispatcher=NotificationDispatcher(transport=self.transport)
        )
        self.client = TestClient(app)
        self.headers = self._register("Ana", "ana@example.com")

    def tearDown(self):
        app.dependency_overrides.clear()

    def _register(self, name, email):
        res = self.client.post("/auth/register", json={"name": name, "email": email, "password": "secret123"})
        self.assertEqual(res.status_code, 201, res.text)
        return {"Authorization": f"Bearer {res.json()['token']}"}

    def _create(self, headers=None, **overrides):
        body = {
            "name": "Groceries",
            "category": "food",
            "period_type": "weekly",
            "limit_amount": "100.00",
            "auto_renew": True,
            **PAST_WEEK,
            **overrides,
        }
        res = self.client.post("/budgets", json=body, headers=headers or self.headers)
        self.assertEqual(res.status_code, 201, res.text)
        return res.json()

    def _history_count(self, budget_id):
        with self.SessionLocal() as db:
            return db.execute(
                select(func.count(BudgetHistoryEntry.id)).where(BudgetHistoryEntry.budget_id == uuid.UUID(budget_id))
            ).scalar()

    def test_requires_authentication(self):
        # Registration in setUp left a session cookie on the client.
        self.client.cookies.clear()
        self.assertEqual(self.client.get("/budgets").status_code, 401)
        self.assertEqual(self.client.post("/budgets/renewal/check").status_code, 401)

    def test_create_and_list(self):
        created = self._create(rollover=True)
        self.assertEqual(created["status"], "active")
        self.assertEqual(Decimal(created["limit_amount"]), Decimal("100"))

        res = self.client.get("/budgets", headers=self.headers)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["total"], 1)

    def test_create_rejects_inverted_dates(self):
        res = self.client.post(
            "/budgets",
            json={
                "name": "Bad",
                "category": "food",
                "period_type": "weekly",
                "limit_amount": "10",
                "period_start": "2024-01-07T00:00:00Z",
                "period_end": "2024-01-01T00:00:00Z",
            },
            headers=self.headers,
        )
        self.assertEqual(res.status_code, 400)
        self.assertIsInstance(res.json()["detail"], list)

    def test_spend_marks_budget_exceeded(self):
        budget = self._create(**{"period_end": (utcnow() + timedelta(days=5)).isoformat()})
        res = self.client.post(f"/budgets/{budget['id']}/spend", json={"amount": "120.50"}, headers=self.headers)
        self.assertEqual(res.status_code, 200, res.text)
        self.assertEqual(res.json()["status"], "exceeded")
        self.assertEqual(res.json()["spent_percent"], 121)

    def test_other_users_budget_is_not_found(self):
        budget = self._create()
        other = self._register("Bia", "bia@example.com")
        self.assertEqual(self.client.get(f"/budgets/{budget['id']}", headers=other).status_code, 404)
        res = self.client.post(f"/budgets/renewal/{budget['id']}/renew-now", headers=other)
        self.assertEqual(res.status_code, 404)

    def test_pausing_twice_is_rejected(self):
        budget = self._create()
        self.assertEqual(self.client.post(f"/budgets/{budget['id']}/pause", headers=self.headers).status_code, 200)
        res = self.client.post(f"/budgets/{budget['id']}/pause", headers=self.headers)
        self.assertEqual(res.status_code, 400)

    def test_check_renews_expired_budgets(self):
        budget = self._create(rollover=True)
        self.client.post(f"/budgets/{budget['id']}/spend", json={"amount": "60"}, headers=self.headers)
        self._create(name="Trip", category="travel", period_type="custom")

        res = self.client.post("/budgets/renewal/check", headers=self.headers)

        self.assertEqual(res.status_code, 200, res.text)
        body = res.json()
        self.assertEqual((body["renewed"], body["erros"]), (1, 0))
        self.assertEqual(body["detalhes"][0]["new_limit"], 140.0)
        renewed = self.client.get(f"/budgets/{budget['id']}", headers=self.headers).json()
        self.assertTrue(renewed["period_start"].startswith("2024-01-08"))
        self.assertEqual(Decimal(renewed["spent_amount"]), Decimal("0"))
        self.assertEqual(len(self.transport.sent), 1)

    def test_renew_now_running_period_is_rejected(self):
        budget = self._create(
            period_start=utcnow().isoformat(),
            period_end=(utcnow() + timedelta(days=10)).isoformat(),
        )
        res = self.client.post(f"/budgets/renewal/{budget['id']}/renew-now", headers=self.headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(self._history_count(budget["id"]), 1)

    def test_renew_now_expired_budget(self):
        budget = self._create()
        res = self.client.post(f"/budgets/renewal/{budget['id']}/renew-now", headers=self.headers)
        self.assertEqual(res.status_code, 200, res.text)
        body = res.json()
        self.assertTrue(body["budget"]["period_end"].startswith("2024-01-15"))
        self.assertEqual(body["closed_period"]["health"], "ok")

        history = self.client.get(f"/budgets/{budget['id']}/history", headers=self.headers).json()
        self.assertEqual([h["action"] for h in history["history"]], ["renewed_manual", "created"])

    def test_renew_now_reopens_paused_and_finished_budgets(self):
        for action in ("pause", "finish"):
            with self.subTest(action=action):
                budget = self._create(name=f"Budget {action}", category=action)
                res = self.client.post(f"/budgets/{budget['id']}/{action}", headers=self.headers)
                self.assertEqual(res.status_code, 200, res.text)

                res = self.client.post(f"/budgets/renewal/{budget['id']}/renew-now", headers=self.headers)

                self.assertEqual(res.status_code, 200, res.text)
                renewed = res.json()["budget"]
                self.assertEqual(renewed["status"], "active")
                self.assertTrue(renewed["period_start"].startswith("2024-01-08"))

    def test_toggle_requires_boolean(self):
        budget = self._create()
        res = self.client.patch(
            f"/budgets/renewal/{budget['id']}/toggle", json={"auto_renew": "yes"}, headers=self.headers
        )
        self.assertEqual(res.status_code, 400)

        res = self.client.patch(
            f"/budgets/renewal/{budget['id']}/toggle", json={"auto_renew": False}, headers=self.headers
        )
        self.assertEqual(res.status_code, 200)
        self.assertFalse(res.json()["auto_renew"])
        self.assertIsNone(res.json()["next_renewal_at"])

    def test_settings_patch(self):
        budget = self._create()
        res = self.client.patch(f"/budgets/renewal/settings/{budget['id']}", json={}, headers=self.headers)
        self.assertEqual(res.status_code, 400)

        res = self.client.patch(
            f"/budgets/renewal/settings/{budget['id']}",
            json={"config": {"rollover": True, "adjust_percent": 10}},
            headers=self.headers,
        )
        self.assertEqual(res.status_code, 200, res.text)
        self.assertTrue(res.json()["rollover"])
        self.assertEqual(res.json()["adjust_percent"], 10)

        res = self.client.patch(
            f"/budgets/renewal/settings/{budget['id']}",
            json={"config": {"adjust_percent": 80}},
            headers=self.headers,
        )
        self.assertEqual(res.status_code, 400)

    def test_pending_and_report(self):
        self._create()
        pending = self.client.get("/budgets/renewal/pending", headers=self.headers).json()
        self.assertEqual(pending["total"], 1)

        self.client.post("/budgets/renewal/check", headers=self.headers)
        report = self.client.get("/budgets/renewal/report?periodo=7", headers=self.headers).json()
        self.assertEqual(report["period_days"], 7)
        self.assertEqual(report["total"], 1)

    def test_account_deletion_removes_budgets(self):
        budget = self._create()
        self.client.post(f"/budgets/renewal/{budget['id']}/renew-now", headers=self.headers)

        res = self.client.delete("/auth/me", headers=self.headers)

        self.assertEqual(res.status_code, 204)
        with self.SessionLocal() as db:
            self.assertEqual(db.execute(select(func.count(Budget.id))).scalar(), 0)
            self.assertEqual(db.execute(select(func.count(BudgetHistoryEntry.id))).scalar(), 0)

    def test_admin_routes_require_admin(self):
        self.assertEqual(self.client.post("/admin/renewal/run", headers=self.headers).status_code, 403)


if __name__ == "__main__":
    unittest.main()
