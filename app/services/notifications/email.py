from __future__ import annotations

import logging
import re
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

from app.core.config import settings

logger = logging.getLogger("app.notifications")

_TAG_RE = re.compile(r"<[^>]*>?")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def html_to_text(html: str) -> str:
    text = _TAG_RE.sub("", html or "")
    return _BLANK_LINES_RE.sub("\n\n", text).strip()


class EmailTransport:
    """SMTP delivery. send() returns False when SMTP is not configured."""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        use_tls: bool | None = None,
        from_address: str | None = None,
        from_name: str | None = None,
    ):
        self.host = host if host is not None else settings.smtp_host
        self.port = port if port is not None else settings.smtp_port
        self.user = user if user is not None else settings.smtp_user
        self.password = password if password is not None else settings.smtp_password
        self.use_tls = settings.smtp_use_tls if use_tls is None else use_tls
        self.from_address = from_address or settings.email_from_address or self.user
        self.from_name = from_name or settings.email_from_name

    @property
    def configured(self) -> bool:
        return bool(self.host and self.from_address)

    def send(self, *, to: str, subject: str, html: str, text: str | None = None) -> bool:
        if not self.configured:
            logger.warning("email_not_configured to=%s subject=%s", to, subject)
            return False
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = formataddr((self.from_name, self.from_address))
        msg["To"] = to
        msg.set_content(text or html_to_text(html))
        msg.add_alternative(html, subtype="html")
        with smtplib.SMTP(self.host, self.port, timeout=15) as s:
            if self.use_tls:
                s.starttls()
            if self.user and self.password:
                s.login(self.user, self.password)
            s.send_message(msg)
        logger.info("email_sent to=%s subject=%s", to, subject)
        return True
