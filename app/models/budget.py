from __future__ import annotations

import enum
import uuid
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.utils.timeutils import ensure_utc, utcnow, whole_days_between

ZERO = Decimal("0")
CENTS = Decimal("0.01")


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [m.value for m in enum_cls]


class PeriodType(str, enum.Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMIANNUAL = "semiannual"
    ANNUAL = "annual"
    CUSTOM = "custom"


class BudgetStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    FINISHED = "finished"
    EXCEEDED = "exceeded"


class HistoryAction(str, enum.Enum):
    CREATED = "created"
    EDITED = "edited"
    RENEWED = "renewed"
    RENEWED_MANUAL = "renewed_manual"
    PAUSED = "paused"
    REACTIVATED = "reactivated"
    FINISHED = "finished"
    LIMIT_CHANGED = "limit_changed"
    CONFIG_CHANGED = "config_changed"
    RENEWAL_ENABLED = "renewal_enabled"
    RENEWAL_DISABLED = "renewal_disabled"


class EventStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


PERIOD_CLOSED = "period_closed"


class Budget(Base):
    """Spending limit for one category over a period, optionally renewed when the period ends."""

    __tablename__ = "budgets"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(100))
    category: Mapped[str] = mapped_column(String(128), index=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    color: Mapped[str] = mapped_column(String(16), default="#007AFF")
    icon: Mapped[str] = mapped_column(String(32), default="wallet")

    period_type: Mapped[PeriodType] = mapped_column(
        Enum(PeriodType, name="budget_period_type", values_callable=_enum_values), index=True
    )
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    limit_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=ZERO)
    spent_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=ZERO)
    status: Mapped[BudgetStatus] = mapped_column(
        Enum(BudgetStatus, name="budget_status", values_callable=_enum_values),
        default=BudgetStatus.ACTIVE,
        index=True,
    )

    # Renewal configuration
    auto_renew: Mapped[bool] = mapped_column(default=False, index=True)
    rollover: Mapped[bool] = mapped_column(default=False)
    auto_adjust: Mapped[bool] = mapped_column(default=False)
    adjust_percent: Mapped[int] = mapped_column(Integer, default=0)  # -20..50
    notify_on_renewal: Mapped[bool] = mapped_column(default=True)
    last_renewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    alerts_enabled: Mapped[bool] = mapped_column(default=True)
    alert_thresholds: Mapped[list[int]] = mapped_column(JSON, default=lambda: [50, 80, 90])

    # Running renewal statistics
    renewal_count: Mapped[int] = mapped_column(Integer, default=0)
    average_spend: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=ZERO)
    best_percent: Mapped[int | None] = mapped_column(Integer, nullable=True)
    best_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    worst_percent: Mapped[int | None] = mapped_column(Integer, nullable=True)
    worst_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped["User"] = relationship("User", back_populates="budgets")
    history: Mapped[list["BudgetHistoryEntry"]] = relationship(
        "BudgetHistoryEntry",
        back_populates="budget",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="BudgetHistoryEntry.created_at",
    )
    events: Mapped[list["BudgetEvent"]] = relationship(
        "BudgetEvent", back_populates="budget", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def spent_percent(self) -> int:
        limit = Decimal(self.limit_amount or 0)
        if limit <= 0:
            return 0
        pct = Decimal(self.spent_amount or 0) / limit * 100
        return int(pct.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @property
    def remaining(self) -> Decimal:
        return max(ZERO, Decimal(self.limit_amount or 0) - Decimal(self.spent_amount or 0))

    @property
    def days_remaining(self) -> int:
        return whole_days_between(utcnow(), self.period_end)

    @property
    def is_expired(self) -> bool:
        return utcnow() > ensure_utc(self.period_end)

    @property
    def next_renewal_at(self) -> datetime | None:
        if not self.auto_renew:
            return None
        return ensure_utc(self.period_end) + timedelta(days=1)

    def add_history(
        self,
        action: HistoryAction,
        value: Decimal | None = None,
        note: str | None = None,
        *,
        actor_id: uuid.UUID | None = None,
        at: datetime | None = None,
    ) -> "BudgetHistoryEntry":
        entry = BudgetHistoryEntry(
            action=action,
            value=value,
            note=note,
            user_id=actor_id or self.user_id,
            created_at=at or utcnow(),
        )
        self.history.append(entry)
        return entry


class BudgetHistoryEntry(Base):
    """Append-only audit ledger row for a budget."""

    __tablename__ = "budget_history"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    budget_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("budgets.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    action: Mapped[HistoryAction] = mapped_column(
        Enum(HistoryAction, name="budget_history_action", values_callable=_enum_values), index=True
    )
    value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    budget: Mapped["Budget"] = relationship("Budget", back_populates="history")


class BudgetEvent(Base):
    """Outbox row written with a budget mutation; consumed by the notification dispatcher."""

    __tablename__ = "budget_events"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    budget_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("budgets.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True)
    kind: Mapped[str] = mapped_column(String(32), default=PERIOD_CLOSED)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    status: Mapped[EventStatus] = mapped_column(
        Enum(EventStatus, name="budget_event_status", values_callable=_enum_values),
        default=EventStatus.PENDING,
        index=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    budget: Mapped["Budget"] = relationship("Budget", back_populates="events")
