from __future__ import annotations

import logging
import smtplib
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid

from flask import Flask, render_template
from jinja2 import TemplateError

from app.superadmin.models import User

logger = logging.getLogger(__name__)

REMINDER_SUBJECT = "We Miss You! Come Back to SuperAdmin"
WELCOME_BACK_SUBJECT = "Welcome Back to SuperAdmin!"


class MailerError(Exception):
    pass


class Mailer:
    """
    Thin SMTP client. One connection per message; the volume here is a handful of
    reminder mails a day.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int,
        user: str,
        password: str,
        sender: str,
        use_tls: bool = True,
        frontend_url: str = "",
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.use_tls = use_tls
        self.frontend_url = frontend_url
        self.timeout = timeout

    @classmethod
    def from_app(cls, app: Flask) -> "Mailer":
        cfg = app.config
        return cls(
            host=cfg.get("SMTP_HOST", ""),
            port=int(cfg.get("SMTP_PORT", 587)),
            user=cfg.get("SMTP_USER", ""),
            password=cfg.get("SMTP_PASSWORD", ""),
            sender=cfg.get("SMTP_FROM", ""),
            use_tls=bool(cfg.get("SMTP_USE_TLS", True)),
            frontend_url=cfg.get("FRONTEND_URL", ""),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    def send(self, to: str, subject: str, text: str, html: str | None = None) -> str:
        """Send one multipart message and return its Message-ID. Raises MailerError."""
        if not self.is_configured:
            raise MailerError("SMTP not configured")

        msg = MIMEMultipart("alternative")
        msg["From"] = self.sender or self.user
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid(idstring=uuid.uuid4().hex[:8])
        msg.attach(MIMEText(text, "plain", "utf-8"))
        if html:
            msg.attach(MIMEText(html, "html", "utf-8"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP send to %s failed: %s", to, e)
            raise MailerError(f"Failed to send email: {e}") from e

        logger.info("Email sent to %s (subject=%r message_id=%s)", to, subject, msg["Message-ID"])
        return msg["Message-ID"]

    # Rendering needs an app context for the template loader.
    def _render(self, name: str, user: User) -> str:
        try:
            return render_template(name, user=user, frontend_url=self.frontend_url)
        except TemplateError as e:
            raise MailerError(f"Failed to render {name}: {e}") from e

    def send_reminder(self, user: User) -> str:
        return self.send(
            user.email,
            REMINDER_SUBJECT,
            self._render("email/reminder.txt", user),
            self._render("email/reminder.html", user),
        )

    def send_welcome_back(self, user: User) -> str:
        return self.send(
            user.email,
            WELCOME_BACK_SUBJECT,
            self._render("email/welcome_back.txt", user),
            self._render("email/welcome_back.html", user),
        )
