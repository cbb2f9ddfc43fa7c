from datetime import datetime

import aiosmtplib
import pytest

from config import Settings
from email_service import EmailService, days_until

NOW = datetime(2030, 5, 10, 12, 0)


def _service(configured=True) -> EmailService:
    if configured:
        return EmailService(Settings(SMTP_USER="mailer", SMTP_PASSWORD="pw", FRONTEND_URL="http://app.test/"))
    return EmailService(Settings(SMTP_USER="", SMTP_PASSWORD=""))


def _task(**overrides):
    task = {
        "id": "t1",
        "title": "Write report",
        "description": None,
        "priority": "high",
        "status": "in-progress",
        "dueDate": datetime(2030, 5, 11, 15, 0),
        "assignedUser": {"id": "u1", "name": "Alice Doe", "email": "alice@example.com"},
        "createdBy": {"id": "u0", "name": "Admin User", "email": "admin@example.com"},
    }
    task.update(overrides)
    return task


@pytest.fixture
def outbox(monkeypatch):
    """Messages handed to aiosmtplib"""
    sent = []

    async def fake_send(message, **kwargs):
        sent.append((message, kwargs))

    monkeypatch.setattr(aiosmtplib, "send", fake_send)
    return sent


@pytest.fixture
def captured(monkeypatch):
    """(to, subject, html) of every send_email call on the service"""
    service = _service()
    calls = []

    async def fake_send_email(to_email, subject, html_content, text_content=None):
        calls.append((to_email, subject, html_content))
        return True

    monkeypatch.setattr(service, "send_email", fake_send_email)
    return service, calls


def test_days_until_counts_calendar_days():
    assert days_until(datetime(2030, 5, 10, 23, 59), NOW) == 0
    assert days_until(datetime(2030, 5, 11, 0, 0), datetime(2030, 5, 10, 23, 59)) == 1
    assert days_until(datetime(2030, 5, 8, 9, 0), NOW) == -2


def test_render_escapes_every_value():
    html = _service().render(
        _task(title="<script>alert(1)</script>", description="a & b",
              assignedUser={"id": "u1", "name": "<b>Al</b>", "email": "al@example.com"}),
        "Heading", "Intro", "#000",
    )

    assert "<script>" not in html
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in html
    assert "a &amp; b" in html
    assert "&lt;b&gt;Al&lt;/b&gt;" in html
    assert "http://app.test/tasks" in html
    assert "2030-05-11" in html


def test_render_does_not_double_escape_stored_text():
    html = _service().render(_task(title="count&lt;limit"), "Heading", "Intro", "#000")
    assert "count&lt;limit" in html
    assert "&amp;lt;" not in html


def test_render_without_due_date_or_description():
    html = _service().render(_task(dueDate=None), "Heading", "Intro", "#000")
    assert "Due Date" not in html
    assert "No description provided" in html


@pytest.mark.asyncio
async def test_send_email_delivers_through_smtp(outbox):
    assert await _service().send_email("to@example.com", "Hi", "<p>hi</p>", "hi") is True

    message, kwargs = outbox[0]
    assert message["To"] == "to@example.com"
    assert message["Subject"] == "Hi"
    assert kwargs["username"] == "mailer"


@pytest.mark.asyncio
async def test_send_email_reports_smtp_failure_as_false(monkeypatch):
    async def broken_send(message, **kwargs):
        raise aiosmtplib.SMTPException("relay down")

    monkeypatch.setattr(aiosmtplib, "send", broken_send)

    assert await _service().send_email("to@example.com", "Hi", "<p>hi</p>") is False


@pytest.mark.asyncio
async def test_unconfigured_service_skips_sending(outbox):
    service = _service(configured=False)

    assert service.is_configured is False
    assert await service.send_email("to@example.com", "Hi", "<p>hi</p>") is False
    assert outbox == []


@pytest.mark.asyncio
async def test_task_without_assignee_email_is_skipped(outbox):
    assert await _service().send_task_assignment(_task(assignedUser=None)) is False
    assert outbox == []


@pytest.mark.asyncio
async def test_assignment_email_names_creator(captured):
    service, calls = captured

    assert await service.send_task_assignment(_task(title="count&lt;limit")) is True

    to, subject, html = calls[0]
    assert to == "alice@example.com"
    assert subject == "New Task Assigned: count<limit"
    assert "assigned a new task by Admin User" in html


@pytest.mark.asyncio
@pytest.mark.parametrize("due, wording", [
    (datetime(2030, 5, 10, 18, 0), "due today"),
    (datetime(2030, 5, 11, 9, 0), "due in 1 day:"),
    (datetime(2030, 5, 13, 9, 0), "due in 3 days"),
])
async def test_due_soon_wording(captured, due, wording):
    service, calls = captured

    await service.send_due_soon_reminder(_task(dueDate=due), NOW)

    assert wording in calls[0][2]
    assert calls[0][1] == "Task Due Soon: Write report"


@pytest.mark.asyncio
@pytest.mark.parametrize("due, wording", [
    (datetime(2030, 5, 9, 9, 0), "overdue by 1 day."),
    (datetime(2030, 5, 7, 9, 0), "overdue by 3 days"),
])
async def test_overdue_wording(captured, due, wording):
    service, calls = captured

    await service.send_overdue_reminder(_task(dueDate=due), NOW)

    assert wording in calls[0][2]
