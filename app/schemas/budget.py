from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, StrictBool, field_validator, model_validator

from app.models.budget import BudgetStatus, HistoryAction, PeriodType
from app.utils.timeutils import ensure_utc


def _utc(value: datetime | None) -> datetime | None:
    return ensure_utc(value)


def _check_thresholds(values: list[int] | None) -> list[int] | None:
    if values is None:
        return None
    for v in values:
        if v < 1 or v > 100:
            raise ValueError("alert thresholds must be between 1 and 100")
    return sorted(set(values))


class BudgetBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    category: str = Field(..., min_length=1, max_length=128)
    description: str | None = Field(default=None, max_length=500)
    color: str = Field(default="#007AFF", max_length=16)
    icon: str = Field(default="wallet", max_length=32)
    period_type: PeriodType
    period_start: datetime
    period_end: datetime
    limit_amount: Decimal = Field(..., ge=0, max_digits=14, decimal_places=2)


class BudgetCreate(BudgetBase):
    auto_renew: bool = False
    rollover: bool = False
    auto_adjust: bool = False
    adjust_percent: int = Field(default=0, ge=-20, le=50)
    notify_on_renewal: bool = True
    alerts_enabled: bool = True
    alert_thresholds: list[int] = Field(default_factory=lambda: [50, 80, 90])

    @field_validator("period_start", "period_end")
    @classmethod
    def dates_utc(cls, v: datetime | None) -> datetime | None:
        return _utc(v)

    @field_validator("alert_thresholds")
    @classmethod
    def valid_thresholds(cls, v: list[int] | None) -> list[int] | None:
        return _check_thresholds(v)

    @model_validator(mode="after")
    def start_before_end(self) -> "BudgetCreate":
        if self.period_start >= self.period_end:
            raise ValueError("period_start must be before period_end")
        return self


class BudgetUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    category: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = Field(default=None, max_length=500)
    color: str | None = Field(default=None, max_length=16)
    icon: str | None = Field(default=None, max_length=32)
    period_type: PeriodType | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None
    limit_amount: Decimal | None = Field(default=None, ge=0, max_digits=14, decimal_places=2)
    alerts_enabled: bool | None = None
    alert_thresholds: list[int] | None = None

    @field_validator("period_start", "period_end")
    @classmethod
    def dates_utc(cls, v: datetime | None) -> datetime | None:
        return _utc(v)

    @field_validator("alert_thresholds")
    @classmethod
    def valid_thresholds(cls, v: list[int] | None) -> list[int] | None:
        return _check_thresholds(v)


class BudgetRead(BudgetBase):
    id: UUID
    user_id: UUID
    spent_amount: Decimal
    status: BudgetStatus
    auto_renew: bool
    rollover: bool
    auto_adjust: bool
    adjust_percent: int
    notify_on_renewal: bool
    last_renewed_at: datetime | None
    alerts_enabled: bool
    alert_thresholds: list[int]
    renewal_count: int
    average_spend: Decimal
    best_percent: int | None
    best_period_end: datetime | None
    worst_percent: int | None
    worst_period_end: datetime | None
    spent_percent: int
    remaining: Decimal
    days_remaining: int
    next_renewal_at: datetime | None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator(
        "period_start",
        "period_end",
        "last_renewed_at",
        "best_period_end",
        "worst_period_end",
        "next_renewal_at",
        "created_at",
        "updated_at",
    )
    @classmethod
    def read_dates_utc(cls, v: datetime | None) -> datetime | None:
        return _utc(v)


class BudgetListResponse(BaseModel):
    items: list[BudgetRead]
    total: int
    page: int
    page_size: int


class BudgetSummary(BaseModel):
    total: int
    active: int
    exceeded: int
    in_alert: int
    expiring_in_7_days: int
    with_auto_renew: int
    total_limit: Decimal
    total_spent: Decimal
    efficiency_pct: int


class SpendCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    note: str | None = Field(default=None, max_length=500)


class HistoryEntryRead(BaseModel):
    id: UUID
    action: HistoryAction
    value: Decimal | None
    note: str | None
    user_id: UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("created_at")
    @classmethod
    def created_utc(cls, v: datetime) -> datetime:
        return _utc(v)


class BudgetHistoryResponse(BaseModel):
    budget: str
    history: list[HistoryEntryRead]


class RenewalToggle(BaseModel):
    auto_renew: StrictBool


class RenewalConfigPatch(BaseModel):
    rollover: StrictBool | None = None
    auto_adjust: StrictBool | None = None
    adjust_percent: int | None = Field(default=None, ge=-20, le=50)
    notify_on_renewal: StrictBool | None = None


class RenewalSettingsPatch(BaseModel):
    auto_renew: StrictBool | None = None
    config: RenewalConfigPatch | None = None


class RenewalCheckResponse(BaseModel):
    renewed: int
    erros: int
    detalhes: list[dict]


class RenewNowResponse(BaseModel):
    budget: BudgetRead
    closed_period: dict | None


class PendingRenewalResponse(BaseModel):
    total: int
    budgets: list[dict]


class RenewalReportResponse(BaseModel):
    period_days: int
    total: int
    budgets: list[dict]
