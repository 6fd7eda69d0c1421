import smtplib
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from app.core.settings import Settings
from app.models.email_queue import EmailQueue
from app.models.shareholder import Shareholder
from app.services import notifications
from app.services.notifications import EmailQueueNotifier, LoggingEmailTransport, SmtpEmailTransport
from conftest import FakeResult, make_shareholder


class FakeTransport:
    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.sent: list[tuple[str, str]] = []

    def send(self, recipient: str, subject: str, html: str) -> None:
        if recipient in self.failing:
            raise smtplib.SMTPRecipientsRefused({recipient: (550, b"mailbox unavailable")})
        self.sent.append((recipient, subject))


def _queued(recipient: str, **overrides) -> EmailQueue:
    data = dict(id=uuid4(), recipient_email=recipient, subject="Hello", body="<p>hi</p>", sent=False, retry_count=0)
    data.update(overrides)
    return EmailQueue(**data)


@pytest.mark.parametrize(
    ("units", "expected"),
    [
        (Decimal("1200.000000"), "1,200"),
        (Decimal("33.333334"), "33.333334"),
        (Decimal("0.500000"), "0.5"),
    ],
)
def test_format_units(units, expected):
    assert notifications.format_units(units) == expected


def test_vested_email_content():
    subject, html = notifications.render_vesting_email(
        "Ada <Investor>", Decimal("100.000000"), date(2025, 7, 1), False, app_url="https://portal.example"
    )
    assert subject == "RSU Vested: 100 units"
    assert "100 RSUs have vested as of 2025-07-01." in html
    assert "Ada &lt;Investor&gt;" in html
    assert "https://portal.example/dashboard" in html


def test_pre_vest_email_content():
    subject, html = notifications.render_vesting_email("Ada", Decimal("1200"), date(2025, 7, 1), True)
    assert subject == "Upcoming RSU Vesting: 1,200 units on 2025-07-01"
    assert "scheduled to vest on 2025-07-01" in html


@pytest.mark.asyncio
async def test_queue_notifier_stages_email_for_shareholder(fake_db):
    shareholder = make_shareholder(email="ada@example.com")
    fake_db.on_get(Shareholder, shareholder.id, shareholder)
    notifier = EmailQueueNotifier(fake_db, app_url="https://portal.example")

    await notifier.notify(shareholder.id, Decimal("100"), date(2025, 7, 1), False)

    [row] = fake_db.added_of(EmailQueue)
    assert row.recipient_email == "ada@example.com"
    assert row.subject == "RSU Vested: 100 units"
    assert row.sent is False
    assert fake_db.flushed is True
    # The sweep owns the commit.
    assert fake_db.committed is False


@pytest.mark.asyncio
async def test_queue_notifier_skips_unknown_shareholder(fake_db):
    notifier = EmailQueueNotifier(fake_db)
    await notifier.notify(uuid4(), Decimal("100"), date(2025, 7, 1), True)
    assert fake_db.added_of(EmailQueue) == []


@pytest.mark.asyncio
async def test_notify_new_document_queues_one_email_per_active_shareholder(fake_db):
    shareholders = [make_shareholder(email="a@example.com"), make_shareholder(email="b@example.com")]
    fake_db.on_execute_return(FakeResult(items=shareholders))

    count = await notifications.notify_new_document(fake_db, "Q2 Report", "quarterly_report")

    assert count == 2
    rows = fake_db.added_of(EmailQueue)
    assert [row.recipient_email for row in rows] == ["a@example.com", "b@example.com"]
    assert all(row.subject == "New Document Available: Q2 Report" for row in rows)


@pytest.mark.asyncio
async def test_process_email_queue_marks_sent_and_counts_retries(fake_db):
    ok = _queued("ok@example.com")
    bad = _queued("bad@example.com", retry_count=1)
    fake_db.on_execute_return(FakeResult(items=[ok, bad]))
    transport = FakeTransport(failing={"bad@example.com"})

    sent, failed = await notifications.process_email_queue(fake_db, transport, batch_size=10, max_retries=3)

    assert (sent, failed) == (1, 1)
    assert ok.sent is True
    assert ok.sent_at is not None
    assert bad.sent is False
    assert bad.retry_count == 2
    assert bad.error_message
    assert transport.sent == [("ok@example.com", "Hello")]
    assert fake_db.commit_count == 2


def test_transport_from_settings():
    disabled = Settings(ENABLE_EMAIL_NOTIFICATIONS=False)
    assert isinstance(notifications.transport_from_settings(disabled), LoggingEmailTransport)

    enabled = Settings(ENABLE_EMAIL_NOTIFICATIONS=True, SMTP_HOST="smtp.example", SMTP_PORT=2525, SMTP_SECURE=False)
    transport = notifications.transport_from_settings(enabled)
    assert isinstance(transport, SmtpEmailTransport)
    assert (transport.host, transport.port, transport.use_tls) == ("smtp.example", 2525, False)
