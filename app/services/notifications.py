from __future__ import annotations

import asyncio
import logging
import smtplib
from datetime import date, datetime, timezone
from decimal import Decimal
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotificationDispatchFailure
from app.core.settings import Settings
from app.models.email_queue import EmailQueue
from app.models.shareholder import Shareholder

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(
        self,
        shareholder_id: UUID,
        units_vested: Decimal,
        vesting_date: date,
        is_pre_vest: bool,
    ) -> None: ...


class EmailTransport(Protocol):
    def send(self, recipient: str, subject: str, html: str) -> None: ...


def format_units(units: Decimal) -> str:
    value = Decimal(units)
    if value == value.to_integral_value():
        value = value.quantize(Decimal(1))
    else:
        value = value.normalize()
    return f"{value:,}"


def _wrap_html(heading: str, body: str, app_url: str) -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\"></head><body>"
        f"<h2>{escape(heading)}</h2>"
        f"<p>{body}</p>"
        f"<p><a href=\"{escape(app_url)}/dashboard\">Open the investor portal</a></p>"
        "<p>This is an automated message from Investor Relations.</p>"
        "</body></html>"
    )


def render_vesting_email(
    name: str, units: Decimal, vesting_date: date, is_pre_vest: bool, *, app_url: str = ""
) -> tuple[str, str]:
    amount = format_units(units)
    when = vesting_date.isoformat()
    if is_pre_vest:
        subject = f"Upcoming RSU Vesting: {amount} units on {when}"
        message = f"This is a reminder that {amount} RSUs are scheduled to vest on {when}."
    else:
        subject = f"RSU Vested: {amount} units"
        message = f"{amount} RSUs have vested as of {when}."
    body = f"Dear {escape(name)},</p><p>{escape(message)}"
    return subject, _wrap_html("RSU Vesting Update", body, app_url)


def render_document_email(title: str, document_type: str, *, app_url: str = "") -> tuple[str, str]:
    subject = f"New Document Available: {title}"
    body = f"A new {escape(document_type)} has been uploaded to the investor portal: <strong>{escape(title)}</strong>"
    return subject, _wrap_html("New Document Available", body, app_url)


def queue_email(db: AsyncSession, *, to: str | list[str], subject: str, html: str) -> list[EmailQueue]:
    recipients = [to] if isinstance(to, str) else list(to)
    rows = [EmailQueue(recipient_email=recipient, subject=subject, body=html, sent=False, retry_count=0) for recipient in recipients]
    for row in rows:
        db.add(row)
    return rows


class EmailQueueNotifier:
    """Vesting notifications delivered through the email queue.

    Rows are staged on the shared session; the sweep commits them together
    with the event's notification flag.
    """

    def __init__(self, db: AsyncSession, *, app_url: str = "") -> None:
        self.db = db
        self.app_url = app_url

    async def notify(
        self,
        shareholder_id: UUID,
        units_vested: Decimal,
        vesting_date: date,
        is_pre_vest: bool,
    ) -> None:
        try:
            shareholder = await self.db.get(Shareholder, shareholder_id)
            if shareholder is None:
                logger.warning("No shareholder %s for vesting notification; skipping", shareholder_id)
                return
            subject, html = render_vesting_email(
                shareholder.legal_name,
                units_vested,
                vesting_date,
                is_pre_vest,
                app_url=self.app_url,
            )
            queue_email(self.db, to=shareholder.email, subject=subject, html=html)
            await self.db.flush()
        except SQLAlchemyError as exc:
            raise NotificationDispatchFailure(
                f"Unable to queue vesting notification for shareholder {shareholder_id}"
            ) from exc


async def notify_new_document(
    db: AsyncSession, title: str, document_type: str, *, app_url: str = ""
) -> int:
    stmt = select(Shareholder).where(Shareholder.is_active.is_(True))
    result = await db.execute(stmt)
    shareholders = result.scalars().all()
    subject, html = render_document_email(title, document_type, app_url=app_url)
    for shareholder in shareholders:
        queue_email(db, to=shareholder.email, subject=subject, html=html)
    return len(shareholders)


class SmtpEmailTransport:
    def __init__(
        self,
        host: str,
        port: int,
        *,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        sender: str,
        sender_name: str = "",
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.sender_name = sender_name

    def send(self, recipient: str, subject: str, html: str) -> None:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = f"{self.sender_name} <{self.sender}>" if self.sender_name else self.sender
        message["To"] = recipient
        message.attach(MIMEText(html, "html"))

        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(message)


class LoggingEmailTransport:
    """Used when email delivery is disabled; records what would have been sent."""

    def send(self, recipient: str, subject: str, html: str) -> None:
        logger.info("Email notifications disabled. Would have sent %r to %s", subject, recipient)


def transport_from_settings(settings: Settings) -> EmailTransport:
    if not settings.enable_email_notifications:
        return LoggingEmailTransport()
    return SmtpEmailTransport(
        settings.smtp_host,
        settings.smtp_port,
        username=settings.smtp_user,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        sender=settings.smtp_from,
        sender_name=settings.smtp_from_name,
    )


async def process_email_queue(
    db: AsyncSession,
    transport: EmailTransport,
    *,
    batch_size: int = 50,
    max_retries: int = 3,
) -> tuple[int, int]:
    stmt = (
        select(EmailQueue)
        .where(EmailQueue.sent.is_(False), EmailQueue.retry_count < max_retries)
        .order_by(EmailQueue.created_at.asc())
        .limit(batch_size)
    )
    result = await db.execute(stmt)
    pending = result.scalars().all()

    sent = 0
    failed = 0
    for email in pending:
        try:
            await asyncio.to_thread(transport.send, email.recipient_email, email.subject, email.body)
        except (smtplib.SMTPException, OSError) as exc:
            email.retry_count = int(email.retry_count or 0) + 1
            email.error_message = str(exc) or exc.__class__.__name__
            failed += 1
            logger.warning("Email %s to %s failed (attempt %d): %s", email.id, email.recipient_email, email.retry_count, exc)
        else:
            email.sent = True
            email.sent_at = datetime.now(timezone.utc)
            sent += 1
        db.add(email)
        await db.commit()

    logger.info("Processed email queue: sent=%d failed=%d", sent, failed)
    return sent, failed
