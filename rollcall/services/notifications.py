"""Email notifications to guardians and students.

Delivery reliability (retries, bounces, unsubscribes) belongs to the mail
pipeline; callers here only learn whether a single send went through.
"""
import asyncio
import html
import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional, Protocol

import sib_api_v3_sdk
from sib_api_v3_sdk.rest import ApiException

from rollcall.models.alert import Alert, ConsecutiveAbsenceDetails, LowAttendanceDetails
from rollcall.models.student import Student, Subject

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    ok: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


class NotificationDispatcher(Protocol):
    async def send(self, to: str, subject: str, body: str) -> DispatchResult:
        raise NotImplementedError


def _parse_sender(sender_str: str, default_name: str) -> dict:
    if "<" in sender_str and ">" in sender_str:
        name = sender_str.split("<")[0].strip().replace('"', "")
        email = sender_str.split("<")[1].replace(">", "").strip()
    else:
        name = default_name
        email = sender_str.strip()
    return {"name": name or default_name, "email": email}


class BrevoDispatcher:
    """Transactional email through the Brevo API."""

    def __init__(self, api_key: str, sender: str, sender_name: str = "Rollcall"):
        self._api_key = api_key
        self._sender = _parse_sender(sender, sender_name)
        self._api: Optional[sib_api_v3_sdk.TransactionalEmailsApi] = None

    def _get_api(self) -> Optional[sib_api_v3_sdk.TransactionalEmailsApi]:
        if self._api is not None:
            return self._api
        if not self._api_key:
            logger.warning("BREVO_API_KEY not set. Email notifications are disabled.")
            return None
        configuration = sib_api_v3_sdk.Configuration()
        configuration.api_key["api-key"] = self._api_key
        self._api = sib_api_v3_sdk.TransactionalEmailsApi(sib_api_v3_sdk.ApiClient(configuration))
        return self._api

    async def send(self, to: str, subject: str, body: str) -> DispatchResult:
        api = self._get_api()
        if not api:
            return DispatchResult(ok=False, error="Email transport not configured")

        email = sib_api_v3_sdk.SendSmtpEmail(
            to=[{"email": to}],
            sender=self._sender,
            subject=subject,
            html_content=body,
        )
        try:
            response = await asyncio.to_thread(api.send_transac_email, email)
        except ApiException as e:
            logger.error(f"Brevo rejected email to {to}: {e.status} {e.reason}")
            return DispatchResult(ok=False, error=str(e.reason or e.status))
        logger.info(f"Email sent via Brevo to {to}")
        return DispatchResult(ok=True, message_id=getattr(response, "message_id", None))


def attendance_notice(student: Student, subject: Optional[Subject], status: str, on: date, schedule_slot: Optional[str] = None) -> tuple[str, str]:
    """Subject line and HTML body for an absent/late mark."""
    where = html.escape(subject.subject_name) if subject else "the school"
    slot = f" ({html.escape(schedule_slot)})" if schedule_slot else ""
    name = html.escape(student.full_name)
    title = f"Attendance Alert for {student.full_name}"
    body = (
        f"<h2>Attendance Notice</h2>"
        f"<p>{name} ({html.escape(student.student_number)}) was marked <strong>{html.escape(status)}</strong> "
        f"in {where}{slot} on {on.strftime('%d %b %Y')}.</p>"
        f"<p>Please contact the school if you have any questions.</p>"
    )
    return title, body


def alert_notice(student: Student, alert: Alert, school_name: str) -> tuple[str, str]:
    """Subject line and HTML body for an alert notification."""
    title = f"Attendance Alert: {student.full_name}"
    extra = ""
    match alert.details:
        case ConsecutiveAbsenceDetails(consecutive_days=days):
            extra = f"<p>Consecutive absences: {days} days</p>"
        case LowAttendanceDetails(attendance_rate=rate):
            extra = f"<p>Current attendance rate: {rate}%</p>"
    body = (
        "<h2>Attendance Alert</h2>"
        "<p>Dear Parent/Guardian,</p>"
        f"<p>{html.escape(alert.message)}</p>"
        f"{extra}"
        "<p>Please contact the school if you have any questions.</p>"
        f"<p>Regards,<br>{html.escape(school_name)}</p>"
    )
    return title, body
