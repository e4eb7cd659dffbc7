"""Attendance alerts: threshold scan, acknowledgement and guardian notification."""
import asyncio
import logging
from datetime import date, datetime
from typing import Callable, Optional, Sequence

from pydantic import BaseModel

from rollcall.models.activity import ActivityEntry, RecordType
from rollcall.models.alert import (
    Alert,
    AlertFilters,
    AlertSeverity,
    AlertType,
    ConsecutiveAbsenceDetails,
    LowAttendanceDetails,
)
from rollcall.models.alert_config import AlertConfig, AlertConfigUpdate, EmailRecipient
from rollcall.models.attendance import AttendanceFilters, AttendanceRecord, AttendanceStatus
from rollcall.models.student import Student
from rollcall.repositories.base import (
    ActivitySink,
    AlertConfigRepository,
    AlertRepository,
    AttendanceRepository,
    DirectoryRepository,
)
from rollcall.services.exceptions import DomainError, NoRecipientsError, NotFoundError, ValidationError
from rollcall.services.notifications import NotificationDispatcher, alert_notice
from rollcall.services.pagination import Page, normalize_page

logger = logging.getLogger(__name__)

CRITICAL_CONSECUTIVE_DAYS = 5
CRITICAL_ATTENDANCE_RATE = 60


class ScanResult(BaseModel):
    new_alerts: int
    scanned_students: int
    alerts: list[Alert] = []


class NotifyResult(BaseModel):
    alert_id: str
    sent_to: list[str]
    failed: list[str] = []


class AlertSummary(BaseModel):
    total: int
    critical: int
    warning: int
    unacknowledged: int
    by_type: dict[str, int]


class ConsecutiveAbsenceRow(BaseModel):
    student_id: str
    student_name: str
    student_number: str
    consecutive_days: int
    start_date: date
    end_date: date
    subject_ids: list[str]


class LowAttendanceRow(BaseModel):
    student_id: str
    student_name: str
    student_number: str
    attendance_rate: int
    total_classes: int
    attended_classes: int


class AbsenceRun(BaseModel):
    days: int = 0
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    subject_ids: list[str] = []


def trailing_absences(records: Sequence[AttendanceRecord]) -> AbsenceRun:
    """Length of the absent run at the head of newest-first `records`."""
    run = AbsenceRun()
    for record in records:
        if record.status != AttendanceStatus.ABSENT:
            break
        run.days += 1
        if run.end_date is None:
            run.end_date = record.date
        run.start_date = record.date
        if record.subject_id and record.subject_id not in run.subject_ids:
            run.subject_ids.append(record.subject_id)
    return run


def round_percent(value: float) -> int:
    """Round half up to a whole percent."""
    return int(value + 0.5)


def validate_config_update(patch: AlertConfigUpdate) -> dict:
    changes = patch.model_dump(exclude_unset=True)
    errors = {}
    threshold = changes.get("consecutive_absence_threshold")
    if "consecutive_absence_threshold" in changes and (threshold is None or not 1 <= threshold <= 30):
        errors["consecutive_absence_threshold"] = "Threshold must be between 1 and 30"
    low = changes.get("low_attendance_threshold")
    if "low_attendance_threshold" in changes and (low is None or not 0 <= low <= 100):
        errors["low_attendance_threshold"] = "Threshold must be between 0 and 100"
    for flag in (
        "enable_consecutive_alerts",
        "enable_low_attendance_alerts",
        "enable_pattern_alerts",
        "auto_send_email",
        "email_recipients",
    ):
        if flag in changes and changes[flag] is None:
            errors[flag] = "Value cannot be null"
    if errors:
        raise ValidationError(errors)
    return changes


class AlertEngine:
    def __init__(
        self,
        alerts: AlertRepository,
        configs: AlertConfigRepository,
        attendance: AttendanceRepository,
        directory: DirectoryRepository,
        dispatcher: NotificationDispatcher,
        activity: ActivitySink,
        *,
        clock: Callable[[], datetime] = datetime.utcnow,
        scan_buffer: int = 10,
        scan_floor: int = 10,
        report_floor: int = 5,
        send_delay: float = 0.2,
        school_name: str = "School Administration",
    ):
        self._alerts = alerts
        self._configs = configs
        self._attendance = attendance
        self._directory = directory
        self._dispatcher = dispatcher
        self._activity = activity
        self._clock = clock
        self._scan_buffer = scan_buffer
        self._scan_floor = scan_floor
        self._report_floor = report_floor
        self._send_delay = send_delay
        self._school_name = school_name

    # Config

    async def get_config(self) -> AlertConfig:
        """Stored config, or built-in defaults when none was saved yet."""
        return await self._configs.get() or AlertConfig()

    async def update_config(self, patch: AlertConfigUpdate, actor: str) -> AlertConfig:
        changes = validate_config_update(patch)
        current = await self.get_config()
        merged = current.model_copy(update={**changes, "updated_by": actor, "updated_at": self._clock()})
        saved = await self._configs.save(merged)
        logger.info(f"Alert configuration updated by user {actor}: {sorted(changes)}")
        return saved

    # Scan

    async def scan(self) -> ScanResult:
        config = await self.get_config()
        students = await self._directory.active_students()
        created: list[Alert] = []

        if config.enable_consecutive_alerts:
            for student in students:
                alert = await self._scan_consecutive(student, config)
                if alert:
                    created.append(alert)

        if config.enable_low_attendance_alerts:
            created.extend(await self._scan_low_attendance(students, config))

        if config.auto_send_email and created:
            recipients = [r for r in config.email_recipients if r != EmailRecipient.ADMIN]
            for alert in created:
                try:
                    await self.notify(alert.id, recipients, actor="system")
                except DomainError as e:
                    logger.warning(f"Auto-notification skipped for alert {alert.id}: {e}")

        logger.info(f"Alert scan complete: {len(created)} new alerts generated")
        return ScanResult(new_alerts=len(created), scanned_students=len(students), alerts=created)

    async def _scan_consecutive(self, student: Student, config: AlertConfig) -> Optional[Alert]:
        threshold = config.consecutive_absence_threshold
        records = await self._attendance.recent_for_student(student.id, threshold + self._scan_buffer)
        run = trailing_absences(records)
        if run.days < threshold:
            return None

        # An open alert that already covers at least (run - 1) days blocks a new one.
        existing = await self._alerts.find_open(
            student.id, AlertType.CONSECUTIVE_ABSENCE, min_consecutive_days=run.days - 1
        )
        if existing:
            return None

        return await self._alerts.create(
            Alert(
                type=AlertType.CONSECUTIVE_ABSENCE,
                severity=AlertSeverity.CRITICAL if run.days >= CRITICAL_CONSECUTIVE_DAYS else AlertSeverity.WARNING,
                student_id=student.id,
                message=f"{student.full_name} has been absent for {run.days} consecutive days",
                details=ConsecutiveAbsenceDetails(
                    consecutive_days=run.days,
                    start_date=run.start_date,
                    end_date=run.end_date,
                    threshold=threshold,
                ),
                created_at=self._clock(),
            )
        )

    async def _scan_low_attendance(self, students: Sequence[Student], config: AlertConfig) -> list[Alert]:
        active = {s.id: s for s in students}
        created = []
        for tally in await self._attendance.count_by_student(AttendanceFilters()):
            student = active.get(tally.student_id)
            counts = tally.counts
            if not student or counts.total < self._scan_floor:
                continue
            attendance_rate = counts.attended / counts.total * 100
            if attendance_rate >= config.low_attendance_threshold:
                continue

            # Any open low-attendance alert blocks a new one, whatever its rate.
            if await self._alerts.find_open(student.id, AlertType.LOW_ATTENDANCE):
                continue

            rounded = round_percent(attendance_rate)
            created.append(
                await self._alerts.create(
                    Alert(
                        type=AlertType.LOW_ATTENDANCE,
                        severity=(
                            AlertSeverity.CRITICAL
                            if attendance_rate < CRITICAL_ATTENDANCE_RATE
                            else AlertSeverity.WARNING
                        ),
                        student_id=student.id,
                        message=f"{student.full_name}'s attendance rate is {rounded}%",
                        details=LowAttendanceDetails(
                            attendance_rate=rounded,
                            threshold=config.low_attendance_threshold,
                        ),
                        created_at=self._clock(),
                    )
                )
            )
        return created

    # Reporting views (never create alerts)

    async def consecutive_absence_report(self, threshold: int = 3) -> list[ConsecutiveAbsenceRow]:
        rows = []
        for student in await self._directory.active_students():
            records = await self._attendance.recent_for_student(student.id, threshold + self._scan_buffer)
            run = trailing_absences(records)
            if run.days >= threshold:
                rows.append(
                    ConsecutiveAbsenceRow(
                        student_id=student.id,
                        student_name=student.full_name,
                        student_number=student.student_number,
                        consecutive_days=run.days,
                        start_date=run.start_date,
                        end_date=run.end_date,
                        subject_ids=run.subject_ids,
                    )
                )
        return rows

    async def low_attendance_report(self, threshold: float = 80) -> list[LowAttendanceRow]:
        tallies = await self._attendance.count_by_student(AttendanceFilters())
        candidates = [
            t for t in tallies
            if t.counts.total >= self._report_floor and t.counts.attended / t.counts.total * 100 < threshold
        ]
        students = await self._directory.get_students([t.student_id for t in candidates])

        rows = []
        for tally in sorted(candidates, key=lambda t: t.counts.attended / t.counts.total):
            student = students.get(tally.student_id)
            if not student or not student.is_active:
                continue
            rows.append(
                LowAttendanceRow(
                    student_id=tally.student_id,
                    student_name=student.full_name,
                    student_number=student.student_number,
                    attendance_rate=round_percent(tally.counts.attended / tally.counts.total * 100),
                    total_classes=tally.counts.total,
                    attended_classes=tally.counts.attended,
                )
            )
        return rows

    # Lifecycle

    async def get(self, alert_id: str) -> Alert:
        alert = await self._alerts.get(alert_id)
        if not alert:
            raise NotFoundError("Alert", alert_id)
        return alert

    async def acknowledge(self, alert_id: str, actor: str) -> Alert:
        alert = await self.get(alert_id)
        alert.acknowledged = True
        alert.acknowledged_at = self._clock()
        alert.acknowledged_by = actor
        return await self._alerts.save(alert)

    async def acknowledge_many(self, alert_ids: Sequence[str], actor: str) -> int:
        if not alert_ids:
            raise ValidationError({"alert_ids": "Alert IDs array is required"})
        modified = await self._alerts.acknowledge_many(alert_ids, self._clock(), actor)
        logger.info(f"{modified} alerts acknowledged by user {actor}")
        return modified

    async def dismiss(self, alert_id: str) -> None:
        if not await self._alerts.delete(alert_id):
            raise NotFoundError("Alert", alert_id)

    async def notify(
        self,
        alert_id: str,
        recipients: Sequence[EmailRecipient] = (EmailRecipient.GUARDIAN,),
        actor: str = "system",
    ) -> NotifyResult:
        """Email the alert to the student's guardian and/or the student.

        Sends happen one after another; the alert counts as notified once any
        send succeeds. Transport failures are logged, not raised.
        """
        alert = await self.get(alert_id)
        student = await self._directory.get_student(alert.student_id)
        if not student:
            raise NotFoundError("Student", alert.student_id)

        addresses = []
        if EmailRecipient.GUARDIAN in recipients and student.guardian_email:
            addresses.append(student.guardian_email)
        if EmailRecipient.STUDENT in recipients and student.email:
            addresses.append(student.email)
        if not addresses:
            raise NoRecipientsError(alert_id)

        title, body = alert_notice(student, alert, self._school_name)
        result = NotifyResult(alert_id=alert_id, sent_to=[])
        for i, address in enumerate(addresses):
            if i:
                await asyncio.sleep(self._send_delay)
            try:
                sent = await self._dispatcher.send(address, title, body)
            except Exception:
                logger.exception(f"Failed to send alert {alert_id} to {address}")
                result.failed.append(address)
                continue
            if sent.ok:
                result.sent_to.append(address)
            else:
                logger.warning(f"Alert {alert_id} notification to {address} failed: {sent.error}")
                result.failed.append(address)

        if result.sent_to:
            alert.notification_sent = True
            alert.notification_sent_at = self._clock()
            await self._alerts.save(alert)
            try:
                await self._activity.record(
                    ActivityEntry(
                        record_type=RecordType.ALERT_NOTIFIED,
                        record_data=f"Alert notification sent to {len(result.sent_to)} recipient(s): {title}",
                        student_id=alert.student_id,
                        subject_id=alert.subject_id,
                        performed_by=actor,
                        metadata={"alert_id": alert_id, "recipients": result.sent_to},
                    )
                )
            except Exception:
                logger.exception(f"Failed to write activity log entry for alert {alert_id}")
        return result

    # Queries

    async def list_alerts(self, filters: AlertFilters, page: int = 1, limit: int = 20) -> Page[Alert]:
        page, limit = normalize_page(page, limit)
        items, total = await self._alerts.find(filters, skip=(page - 1) * limit, limit=limit)
        return Page[Alert](items=list(items), page=page, limit=limit, total=total)

    async def summary(self) -> AlertSummary:
        return AlertSummary(
            total=await self._alerts.count(AlertFilters()),
            critical=await self._alerts.count(AlertFilters(severity=AlertSeverity.CRITICAL)),
            warning=await self._alerts.count(AlertFilters(severity=AlertSeverity.WARNING)),
            unacknowledged=await self._alerts.count(AlertFilters(acknowledged=False)),
            by_type=await self._alerts.count_by_type(),
        )
