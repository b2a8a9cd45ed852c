from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.session import enable_sqlite_foreign_keys
from app.models.budget import Budget, BudgetStatus, PeriodType
from app.models.user import User
import app.models  # noqa: F401 - register models with Base.metadata


def utc(year: int, month: int, day: int, hour: int = 0) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


def make_session_factory() -> sessionmaker:
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class RecordingTransport:
    """Stands in for SMTP; keeps every message it was asked to send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict[str, Any]] = []

    def send(self, *, to: str, subject: str, html: str, text: str | None = None) -> bool:
        if self.fail:
            raise ConnectionError("smtp unreachable")
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return True


BUDGET_DEFAULTS: dict[str, Any] = {
    "name": "Groceries",
    "category": "food",
    "color": "#007AFF",
    "icon": "wallet",
    "period_type": PeriodType.WEEKLY,
    "period_start": utc(2024, 1, 1),
    "period_end": utc(2024, 1, 7),
    "limit_amount": Decimal("100.00"),
    "spent_amount": Decimal("0.00"),
    "status": BudgetStatus.ACTIVE,
    "auto_renew": True,
    "rollover": False,
    "auto_adjust": False,
    "adjust_percent": 0,
    "notify_on_renewal": True,
    "last_renewed_at": None,
    "alerts_enabled": True,
    "alert_thresholds": [50, 80, 90],
    "renewal_count": 0,
    "average_spend": Decimal("0.00"),
}


def make_budget(**overrides: Any) -> Budget:
    values = {**BUDGET_DEFAULTS, **overrides}
    for key in ("limit_amount", "spent_amount", "average_spend"):
        values[key] = Decimal(str(values[key]))
    return Budget(**values)


def add_user(db: Session, name: str = "Ana", email: str = "ana@example.com", **overrides: Any) -> User:
    values = {
        "name": name,
        "email": email,
        "password_hash": "x",
        "password_salt": "y",
        "is_admin": False,
        "is_active": True,
        "notify_email": True,
        "notify_push": True,
        "notify_budgets": True,
        **overrides,
    }
    user = User(**values)
    db.add(user)
    db.commit()
    return user


def add_budget(db: Session, user: User, **overrides: Any) -> Budget:
    budget = make_budget(user_id=user.id, **overrides)
    db.add(budget)
    db.commit()
    return budget
