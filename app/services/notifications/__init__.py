from app.services.notifications.dispatcher import NotificationDispatcher
from app.services.notifications.email import EmailTransport
from app.services.notifications.templates import render_renewal_email

__all__ = [
    "EmailTransport",
    "NotificationDispatcher",
    "render_renewal_email",
]
