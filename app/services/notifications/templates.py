from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Any

HEALTH_COLORS = {
    "ok": "#4CAF50",
    "attention": "#FF9800",
    "critical": "#FF5722",
    "exceeded": "#F44336",
}


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


def _day(iso_value: str) -> str:
    return datetime.fromisoformat(iso_value).strftime("%d/%m/%Y")


def _money(value: float, symbol: str) -> str:
    return f"{symbol} {value:,.2f}"


def render_renewal_email(payload: dict[str, Any], *, app_url: str, currency_symbol: str) -> RenderedEmail:
    closed = payload["closed_period"]
    name = escape(str(payload.get("budget_name") or "Budget"))
    color = escape(str(payload.get("color") or "#007AFF"))
    health = closed.get("health", "ok")
    health_color = HEALTH_COLORS.get(health, HEALTH_COLORS["ok"])
    new_start = _day(payload["new_period_start"])
    new_end = _day(payload["new_period_end"])
    new_limit = _money(payload["new_limit"], currency_symbol)
    how = "manually" if payload.get("manual") else "automatically"
    subject = f'Budget "{payload.get("budget_name")}" was renewed {how}'

    notice = ""
    if health == "exceeded":
        notice = (
            '<div style="background:#ffebee;border:1px solid #ffcdd2;padding:15px;border-radius:8px;">'
            '<h4 style="color:#d32f2f;margin-top:0;">Heads up</h4>'
            "<p>You went over this budget last period. Consider reviewing your spending for the new one.</p>"
            "</div>"
        )
    elif health == "ok":
        notice = (
            '<div style="background:#e8f5e8;border:1px solid #c8e6c9;padding:15px;border-radius:8px;">'
            '<h4 style="color:#388e3c;margin-top:0;">Well done</h4>'
            "<p>You kept your spending within the budget. Keep it up!</p>"
            "</div>"
        )
    extra_tip = "<li><strong>Important:</strong> look at where you spent more than expected</li>" if health == "exceeded" else ""

    html = f"""<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>Budget renewed</title></head>
<body style="font-family:Arial,sans-serif;line-height:1.6;color:#333;">
  <div style="max-width:600px;margin:0 auto;padding:20px;">
    <h1>Budget renewed</h1>
    <p>Your budget was renewed {how} for the next period.</p>
    <div style="background:white;padding:20px;border-radius:10px;border-left:5px solid {color};">
      <h2 style="margin-top:0;color:{color};">{name}</h2>
      <p><strong>New period:</strong> {new_start} to {new_end}</p>
      <p><strong>Limit:</strong> {new_limit}</p>
      <p><strong>Period type:</strong> {escape(str(payload.get("period_type")))}</p>
    </div>
    <h3>Previous period</h3>
    <table style="width:100%;color:{health_color};">
      <tr><td>Total spent</td><td>{_money(closed["spent"], currency_symbol)}</td></tr>
      <tr><td>Of the limit</td><td>{closed["percent"]}%</td></tr>
      <tr><td>Saved</td><td>{_money(closed["remaining"], currency_symbol)}</td></tr>
      <tr><td>Status</td><td>{escape(health.upper())}</td></tr>
    </table>
    <p><strong>Summary:</strong> {escape(closed["summary"])}</p>
    {notice}
    <p><a href="{escape(app_url.rstrip("/"))}/budgets">See details in the app</a></p>
    <h4>Tips for the new period</h4>
    <ul>
      <li>Track your spending regularly in the app</li>
      <li>Set alerts at 50%, 80% and 90% of the limit</li>
      {extra_tip}
    </ul>
    <p style="color:#666;font-size:12px;">This is an automatic message. You can turn these emails off in your settings.</p>
  </div>
</body>
</html>
"""
    text = "\n".join(
        [
            f"Budget '{payload.get('budget_name')}' was renewed {how}.",
            f"New period: {new_start} to {new_end}",
            f"Limit: {new_limit}",
            "",
            f"Previous period: {closed['summary']}",
            f"Status: {health.upper()}",
            "",
            f"{app_url.rstrip('/')}/budgets",
        ]
    )
    return RenderedEmail(subject=subject, html=html, text=text)
