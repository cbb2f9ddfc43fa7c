"""
Email Service for ManageEase
============================
Sends task emails over SMTP:
- Assignment notices when an admin gives someone a task
- Due-soon reminders (task due tomorrow)
- Overdue reminders

Sending never raises: failures are logged and reported as False so a batch of
reminders keeps going past a bad address or a flaky relay.
"""
import logging
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape, unescape
from typing import Any, Dict, Optional

import aiosmtplib

from config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

_LAYOUT = """<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: {accent}; color: white; padding: 20px; text-align: center;">
      <h1>{heading}</h1>
    </div>
    <div style="background: #f9f9f9; padding: 20px;">
      <p>Hello {name},</p>
      <p>{intro}</p>
      <div style="background: white; padding: 15px; border-left: 4px solid {accent};">
        <h3>{title}</h3>
        <p><strong>Description:</strong> {description}</p>
        <p><strong>Priority:</strong> {priority}</p>
        <p><strong>Status:</strong> {status}</p>
        {due}
      </div>
      <p><a href="{link}" style="background: {accent}; color: white; padding: 10px 20px; text-decoration: none;">View Tasks</a></p>
    </div>
  </div>
</body>
</html>
"""


def _html(value: Any) -> str:
    """HTML-escape text that may already carry entities"""
    return escape(unescape(str(value)))


def _label(value: Optional[str]) -> str:
    return (value or "").replace("-", " ").upper()


def _format_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    return str(value) if value else ""


def days_until(due: datetime, now: datetime) -> int:
    """Whole calendar days from now until due (0 = today, negative = past)"""
    return (due.date() - now.date()).days


class EmailService:
    """Async SMTP email sender"""

    def __init__(self, config: Settings = default_settings):
        self.smtp_host = config.SMTP_HOST
        self.smtp_port = config.SMTP_PORT
        self.smtp_user = config.SMTP_USER
        self.smtp_password = config.SMTP_PASSWORD
        self.use_tls = config.SMTP_USE_TLS
        self.from_email = config.EMAIL_FROM
        self.from_name = config.EMAIL_FROM_NAME
        self.frontend_url = config.FRONTEND_URL.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password)

    async def send_email(self, to_email: str, subject: str, html_content: str,
                         text_content: Optional[str] = None) -> bool:
        if not self.is_configured:
            logger.warning("Email service not configured, skipping email to %s", to_email)
            return False

        try:
            message = MIMEMultipart("alternative")
            message["From"] = f"{self.from_name} <{self.from_email}>"
            message["To"] = to_email
            message["Subject"] = subject
            if text_content:
                message.attach(MIMEText(text_content, "plain"))
            message.attach(MIMEText(html_content, "html"))

            await aiosmtplib.send(
                message,
                hostname=self.smtp_host,
                port=self.smtp_port,
                username=self.smtp_user,
                password=self.smtp_password,
                start_tls=self.use_tls,
            )
            logger.info("Sent email to %s: %s", to_email, subject)
            return True
        except Exception as e:
            logger.error("Failed to send email to %s: %s", to_email, e)
            return False

    def render(self, task: Dict[str, Any], heading: str, intro: str, accent: str) -> str:
        assignee = task.get("assignedUser") or {}
        due = task.get("dueDate")
        return _LAYOUT.format(
            accent=accent,
            heading=_html(heading),
            name=_html(assignee.get("name") or "there"),
            intro=_html(intro),
            title=_html(task.get("title") or ""),
            description=_html(task.get("description") or "No description provided"),
            priority=_html(_label(task.get("priority"))),
            status=_html(_label(task.get("status"))),
            due=f"<p><strong>Due Date:</strong> {escape(_format_date(due))}</p>" if due else "",
            link=escape(f"{self.frontend_url}/tasks"),
        )

    async def _send_for_task(self, task: Dict[str, Any], subject: str, html: str) -> bool:
        assignee = task.get("assignedUser") or {}
        if not assignee.get("email"):
            logger.warning("Task %s has no assignee email, skipping", task.get("id"))
            return False
        return await self.send_email(assignee["email"], subject, html)

    async def send_task_assignment(self, task: Dict[str, Any]) -> bool:
        creator = (task.get("createdBy") or {}).get("name") or "an administrator"
        html = self.render(task, "New Task Assignment", f"You have been assigned a new task by {creator}:", "#3B82F6")
        return await self._send_for_task(task, f"New Task Assigned: {unescape(task.get('title') or '')}", html)

    async def send_due_soon_reminder(self, task: Dict[str, Any], now: datetime) -> bool:
        days = days_until(task["dueDate"], now)
        when = "today" if days <= 0 else f"in {days} day{'' if days == 1 else 's'}"
        html = self.render(task, "Task Due Soon", f"This is a reminder that you have a task due {when}:", "#F59E0B")
        return await self._send_for_task(task, f"Task Due Soon: {unescape(task.get('title') or '')}", html)

    async def send_overdue_reminder(self, task: Dict[str, Any], now: datetime) -> bool:
        days = -days_until(task["dueDate"], now)
        html = self.render(
            task, "Task Overdue",
            f"This task is overdue by {days} day{'' if days == 1 else 's'}. Please update it or let your admin know:",
            "#EF4444",
        )
        return await self._send_for_task(task, f"Task Overdue: {unescape(task.get('title') or '')}", html)


email_service = EmailService()


def get_mailer() -> EmailService:
    return email_service
