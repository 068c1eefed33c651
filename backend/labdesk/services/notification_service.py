# Overview: Service-layer operations for outbound e-mail; encapsulates dispatch backends and e-mail logging.

"""
Notification Dispatcher

WHY: Invoices are delivered to dentists by e-mail. Delivery is a network
call to an external service that can fail; callers need a plain success /
failure report, never an exception from deep inside smtplib.

BACKENDS (MAIL_BACKEND):
- "smtp": deliver through MAIL_SERVER with optional STARTTLS and login
- "log":  write the message to the application log and report success
          (development default)

The active dispatcher lives in app.extensions["labdesk_mailer"] so tests
can swap in a fake with set_dispatcher().

POLICY: No retries. A failed dispatch is reported to the caller once.
"""

from __future__ import annotations

import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid, parseaddr

from flask import Flask, current_app

from ..extensions import db
from ..models import EmailLog
from labdesk.time_utils import utcnow


EXTENSION_KEY = "labdesk_mailer"

EMAIL_STATUS_SENT = "SENT"
EMAIL_STATUS_FAILED = "FAILED"


class DispatchError(Exception):
    """Delivery failed; the message carries the backend's reported error."""
    pass


@dataclass(frozen=True)
class OutgoingEmail:
    sender: str
    recipient: str
    subject: str
    body: str


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class SmtpDispatcher:
    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 15.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def build_message(self, email: OutgoingEmail) -> EmailMessage:
        """Sender may carry a display name (`LabDesk <invoices@lab.example>`)."""
        address = parseaddr(email.sender)[1]
        domain = address.rpartition("@")[2] or None

        msg = EmailMessage()
        msg["From"] = email.sender
        msg["To"] = email.recipient
        msg["Subject"] = email.subject
        msg["Message-ID"] = make_msgid(domain=domain)
        msg.set_content(email.body)
        return msg

    def send(self, email: OutgoingEmail) -> DispatchResult:
        msg = self.build_message(email)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            return DispatchResult(success=False, error=str(exc) or exc.__class__.__name__)

        return DispatchResult(success=True, message_id=msg["Message-ID"])


class LogDispatcher:
    def send(self, email: OutgoingEmail) -> DispatchResult:
        message_id = make_msgid(domain="labdesk.local")
        current_app.logger.info(
            "MAIL (log backend) to=%s subject=%r message_id=%s\n%s",
            email.recipient, email.subject, message_id, email.body,
        )
        return DispatchResult(success=True, message_id=message_id)


def build_dispatcher(config) -> SmtpDispatcher | LogDispatcher:
    backend = (config.get("MAIL_BACKEND") or "log").lower()
    if backend == "smtp":
        return SmtpDispatcher(
            host=config["MAIL_SERVER"],
            port=config["MAIL_PORT"],
            username=config.get("MAIL_USERNAME"),
            password=config.get("MAIL_PASSWORD"),
            use_tls=config.get("MAIL_USE_TLS", True),
            timeout=config.get("MAIL_TIMEOUT_SECONDS", 15.0),
        )
    if backend == "log":
        return LogDispatcher()
    raise ValueError(f"Unknown MAIL_BACKEND '{backend}'")


def init_app(app: Flask) -> None:
    app.extensions[EXTENSION_KEY] = build_dispatcher(app.config)


def set_dispatcher(app: Flask, dispatcher) -> None:
    app.extensions[EXTENSION_KEY] = dispatcher


def get_dispatcher():
    return current_app.extensions[EXTENSION_KEY]


def dispatch(
    *,
    lab_id: int,
    recipient: str,
    subject: str,
    body: str,
    invoice_id: int | None = None,
    sent_by_user_id: int | None = None,
) -> tuple[DispatchResult, EmailLog]:
    """
    Send one e-mail through the active dispatcher and stage an EmailLog row.

    The log row is added to the session but not committed; the caller
    commits it together with whatever the outcome changes.
    """
    email = OutgoingEmail(
        sender=current_app.config["MAIL_DEFAULT_SENDER"],
        recipient=recipient,
        subject=subject,
        body=body,
    )
    result = get_dispatcher().send(email)

    now = utcnow()
    log = EmailLog(
        lab_id=lab_id,
        invoice_id=invoice_id,
        sent_by_user_id=sent_by_user_id,
        recipient=recipient,
        subject=subject,
        status=EMAIL_STATUS_SENT if result.success else EMAIL_STATUS_FAILED,
        message_id=result.message_id,
        error_message=None if result.success else result.error,
        sent_at=now if result.success else None,
        failed_at=None if result.success else now,
    )
    db.session.add(log)

    if not result.success:
        current_app.logger.warning(
            "E-mail to %s failed (invoice %s): %s", recipient, invoice_id, result.error
        )

    return result, log


def list_email_logs(lab_id: int, invoice_id: int) -> list[EmailLog]:
    return (
        db.session.query(EmailLog)
        .filter_by(lab_id=lab_id, invoice_id=invoice_id)
        .order_by(EmailLog.created_at.desc(), EmailLog.id.desc())
        .all()
    )
