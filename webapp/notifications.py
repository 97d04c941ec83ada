"""Email notification dispatch.

``NotificationDispatcher.send`` renders a template and hands the message to a
transport on a daemon thread. Delivery is best-effort: rendering and
transport failures are logged, never raised to the caller.
"""
from __future__ import annotations

import logging
import smtplib
import ssl
import threading
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from backend.settings import APP_NAME, Settings

log = logging.getLogger("teamhub.notifications")

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates" / "email"

# kind -> subject template
SUBJECTS: Dict[str, str] = {
    "workspace_invitation": "You've been invited to join {{ workspace_name }}",
    "project_invitation": "You've been invited to join {{ project_name }}",
    "task_assignment": "New task assigned: {{ task_title }}",
    "comment_notification": "New comment on task: {{ task_title }}",
    "password_reset": "Password Reset Request",
}


@dataclass
class OutgoingMail:
    kind: str
    to: str
    subject: str
    html: str


class LogTransport:
    """Logs messages instead of sending them (mail disabled)."""

    def deliver(self, mail: OutgoingMail) -> None:
        log.info("Mail (not sent) [%s] to %s: %s", mail.kind, mail.to, mail.subject)


class SmtpTransport:
    def __init__(self, host: str, port: int, username: str = "", password: str = "",
                 use_ssl: bool = True, sender: str = "", timeout: float = 20.0) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.sender = sender or username
        self.timeout = timeout

    def deliver(self, mail: OutgoingMail) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = mail.to
        msg["Subject"] = mail.subject
        msg.set_content("This message requires an HTML-capable mail client.")
        msg.add_alternative(mail.html, subtype="html")

        if self.use_ssl:
            server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout,
                                      context=ssl.create_default_context())
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        with server:
            if not self.use_ssl:
                server.starttls(context=ssl.create_default_context())
            if self.username:
                server.login(self.username, self.password)
            server.send_message(msg)
        log.info("Mail sent [%s] to %s", mail.kind, mail.to)


def transport_from_settings(settings: Settings):
    if settings.mail_enabled and settings.smtp_host and settings.smtp_username:
        return SmtpTransport(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_ssl=settings.smtp_use_ssl,
            sender=settings.mail_from,
        )
    return LogTransport()


class NotificationDispatcher:

    def __init__(self, transport: Any = None, client_url: str = "http://localhost:5173",
                 background: bool = True) -> None:
        self.transport = transport or LogTransport()
        self.client_url = client_url.rstrip("/")
        self.background = background
        self._env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=select_autoescape(["html"], default_for_string=False),
        )

    def link(self, path: str) -> str:
        return f"{self.client_url}/{path.lstrip('/')}"

    def render(self, kind: str, recipient: str, args: Dict[str, Any]) -> OutgoingMail:
        if kind not in SUBJECTS:
            raise ValueError(f"Unknown notification kind '{kind}'")
        ctx = {"app_name": APP_NAME, "year": datetime.now().year, **args}
        subject = self._env.from_string(SUBJECTS[kind]).render(**ctx)
        html = self._env.get_template(f"{kind}.html").render(**ctx)
        return OutgoingMail(kind=kind, to=recipient, subject=subject, html=html)

    def _deliver(self, kind: str, recipient: str, args: Dict[str, Any]) -> None:
        try:
            mail = self.render(kind, recipient, args)
            self.transport.deliver(mail)
        except Exception:
            log.exception("Failed to send %s notification to %s", kind, recipient)

    def send(self, kind: str, recipient: str, args: Optional[Dict[str, Any]] = None) -> None:
        """Fire-and-forget: never raises, never blocks on the transport."""
        args = dict(args or {})
        if not recipient:
            log.warning("Skipping %s notification without recipient", kind)
            return
        if not self.background:
            self._deliver(kind, recipient, args)
            return
        try:
            threading.Thread(target=self._deliver, args=(kind, recipient, args), daemon=True).start()
        except RuntimeError:
            log.exception("Could not start mail thread for %s notification", kind)
