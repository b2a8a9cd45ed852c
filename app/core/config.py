from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "postgresql+psycopg://postgres:postgres@db:5432/budgets"
    app_env: str = "dev"
    app_cors_origins: str = "*"
    # Link rendered in notification emails
    app_url: str = "http://localhost:8000"
    auth_secret: str = "change-me"
    auth_session_hours: float = 24 * 7
    auth_cookie_name: str = "budgets_session"
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    email_from_name: str = "Finance App"
    email_from_address: str | None = None
    currency_symbol: str = "R$"
    # Renewal runner
    renewal_interval_hours: float = 4
    renewal_guard_hours: float = 24
    # Maintenance
    history_retention_days: int = 730
    finished_budget_retention_days: int = 365
    reports_dir: str = "reports"


settings = Settings()
