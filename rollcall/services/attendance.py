"""Attendance marking: create, edit with history, bulk marking and deletion."""
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import PyMongoError

from rollcall.models.activity import ActivityEntry, RecordType
from rollcall.models.attendance import (
    NOTIFY_STATUSES,
    AttendanceFilters,
    AttendanceMark,
    AttendanceRecord,
    AttendanceUpdate,
    make_key,
)
from rollcall.models.student import Student, Subject
from rollcall.repositories.base import ActivitySink, AttendanceRepository, DirectoryRepository
from rollcall.services.exceptions import (
    ConflictError,
    DomainError,
    DuplicateKeyError,
    EnrollmentRequiredError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from rollcall.services.notifications import NotificationDispatcher, attendance_notice
from rollcall.services.pagination import Page, normalize_page

logger = logging.getLogger(__name__)


class BulkFailure(BaseModel):
    index: int
    item_key: Optional[str]  # student id of the failed item
    error: str
    existing: Optional[AttendanceRecord] = None


class BulkResult(BaseModel):
    total: int
    successful: list[AttendanceRecord] = []
    failed: list[BulkFailure] = []


class AttendanceEngine:
    def __init__(
        self,
        attendance: AttendanceRepository,
        directory: DirectoryRepository,
        dispatcher: NotificationDispatcher,
        activity: ActivitySink,
        *,
        clock: Callable[[], datetime] = datetime.utcnow,
        send_delay: float = 0.2,
    ):
        self._attendance = attendance
        self._directory = directory
        self._dispatcher = dispatcher
        self._activity = activity
        self._clock = clock
        self._send_delay = send_delay

    async def _require_student(self, student_id: str) -> Student:
        student = await self._directory.get_student(student_id)
        if not student:
            raise NotFoundError("Student", student_id)
        return student

    async def _require_subject(self, subject_id: str) -> Subject:
        subject = await self._directory.get_subject(subject_id)
        if not subject:
            raise NotFoundError("Subject", subject_id)
        return subject

    async def _record_activity(self, entry: ActivityEntry) -> None:
        try:
            await self._activity.record(entry)
        except Exception:
            logger.exception(f"Failed to write activity log entry {entry.record_type.value}")

    async def mark(self, data: AttendanceMark, actor: str) -> AttendanceRecord:
        """Create a mark for the student on the day.

        Raises ConflictError with the stored record attached when the key is
        already taken, including when a concurrent mark wins the insert.
        """
        student = await self._require_student(data.student_id)
        subject = None
        if data.subject_id:
            subject = await self._require_subject(data.subject_id)
            if not await self._directory.is_enrolled(data.student_id, data.subject_id):
                raise EnrollmentRequiredError(data.student_id, data.subject_id)

        key = make_key(data.student_id, data.subject_id, data.date, data.schedule_slot, data.time_slot)
        existing = await self._attendance.find_by_key(key)
        if existing:
            raise ConflictError(existing)

        now = self._clock()
        record = AttendanceRecord(
            student_id=data.student_id,
            subject_id=data.subject_id,
            date=data.date,
            status=data.status,
            time_slot=data.time_slot,
            schedule_slot=data.schedule_slot,
            remarks=data.remarks,
            marked_by=actor,
            created_at=now,
            updated_at=now,
        )
        try:
            created = await self._attendance.create(record)
        except DuplicateKeyError:
            existing = await self._attendance.find_by_key(key)
            if not existing:
                raise StorageError()
            raise ConflictError(existing)

        where = f" for {subject.subject_name}" if subject else ""
        await self._record_activity(
            ActivityEntry(
                record_type=RecordType.ATTENDANCE_MARKED,
                record_data=f"Attendance marked as {created.status.value}{where}",
                student_id=created.student_id,
                subject_id=created.subject_id,
                performed_by=actor,
            )
        )

        if created.status in NOTIFY_STATUSES:
            await self._notify_mark(student, subject, created, actor)

        logger.info(f"Attendance marked for student {created.student_id} by user {actor}")
        return created

    async def _notify_mark(
        self, student: Student, subject: Optional[Subject], record: AttendanceRecord, actor: str
    ) -> None:
        recipients = [
            (address, kind)
            for address, kind in ((student.guardian_email, "guardian"), (student.email, "student"))
            if address
        ]
        title, body = attendance_notice(student, subject, record.status.value, record.date, record.schedule_slot)
        for i, (address, kind) in enumerate(recipients):
            if i:
                await asyncio.sleep(self._send_delay)
            try:
                result = await self._dispatcher.send(address, title, body)
            except Exception:
                logger.exception(f"Failed to send attendance notification to {kind} {address}")
                continue
            if not result.ok:
                logger.warning(f"Attendance notification to {kind} {address} failed: {result.error}")
                continue
            await self._record_activity(
                ActivityEntry(
                    record_type=RecordType.EMAIL_SENT,
                    record_data=f"Attendance notification sent to {kind} ({address}): {title}",
                    student_id=record.student_id,
                    subject_id=record.subject_id,
                    performed_by=actor,
                    metadata={
                        "recipient": address,
                        "recipient_type": kind,
                        "attendance_status": record.status.value,
                        "message_id": result.message_id,
                    },
                )
            )

    async def update(self, record_id: str, patch: AttendanceUpdate, actor: str) -> AttendanceRecord:
        """Apply a patch, logging the pre-edit state to the record's history."""
        record = await self._attendance.get(record_id)
        if not record:
            raise NotFoundError("Attendance record", record_id)

        changes = patch.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError({"patch": "No fields to update"})
        if "status" in changes and changes["status"] is None:
            raise ValidationError({"status": "Status cannot be null"})

        now = self._clock()
        entry = record.snapshot(edited_at=now, edited_by=actor)
        try:
            updated = AttendanceRecord.model_validate(
                {**record.model_dump(), **changes, "edited_at": now, "edited_by": actor, "updated_at": now}
            )
        except PydanticValidationError as e:
            raise ValidationError({".".join(str(p) for p in err["loc"]): err["msg"] for err in e.errors()})

        if updated.key() != record.key():
            clash = await self._attendance.find_by_key(updated.key())
            if clash and clash.id != record.id:
                raise ConflictError(clash)
        try:
            await self._attendance.save(updated)
        except DuplicateKeyError:
            clash = await self._attendance.find_by_key(updated.key())
            if not clash:
                raise StorageError()
            raise ConflictError(clash)

        # An edit is only visible together with its history entry.
        try:
            await self._attendance.append_history(record_id, entry)
        except (StorageError, PyMongoError):
            logger.exception(f"History append failed for attendance {record_id}, restoring previous state")
            await self._attendance.save(record)
            raise StorageError()
        updated.history = [*record.history, entry]

        await self._record_activity(
            ActivityEntry(
                record_type=RecordType.ATTENDANCE_UPDATED,
                record_data=f"Attendance updated from {record.status.value} to {updated.status.value}",
                student_id=updated.student_id,
                subject_id=updated.subject_id,
                performed_by=actor,
            )
        )
        logger.info(f"Attendance updated: {record_id} by user {actor}")
        return updated

    async def bulk_mark(
        self,
        items: Sequence[Union[AttendanceMark, Mapping[str, Any]]],
        actor: str,
        *,
        subject_id: Optional[str] = None,
    ) -> BulkResult:
        """Mark items one by one in input order.

        A failing item is reported in `failed` and never stops the batch. Only
        an unknown `subject_id` for the whole batch aborts before any item runs.
        """
        if subject_id:
            await self._require_subject(subject_id)

        result = BulkResult(total=len(items))
        for index, item in enumerate(items):
            raw = item.model_dump() if isinstance(item, AttendanceMark) else dict(item)
            if subject_id and not raw.get("subject_id"):
                raw["subject_id"] = subject_id
            try:
                mark = AttendanceMark.model_validate(raw)
                result.successful.append(await self.mark(mark, actor))
            except ConflictError as e:
                result.failed.append(
                    BulkFailure(index=index, item_key=raw.get("student_id"), error=str(e), existing=e.existing)
                )
            except (DomainError, PydanticValidationError) as e:
                result.failed.append(BulkFailure(index=index, item_key=raw.get("student_id"), error=str(e)))
            except PyMongoError:
                logger.exception(f"Bulk attendance item {index} failed on storage")
                result.failed.append(BulkFailure(index=index, item_key=raw.get("student_id"), error=str(StorageError())))

        logger.info(f"Bulk attendance marked: {len(result.successful)}/{result.total} successful")
        return result

    async def delete(self, record_id: str, actor: str) -> None:
        record = await self._attendance.get(record_id)
        if not record:
            raise NotFoundError("Attendance record", record_id)
        await self._attendance.delete(record_id)
        await self._record_activity(
            ActivityEntry(
                record_type=RecordType.ATTENDANCE_DELETED,
                record_data="Attendance record deleted",
                student_id=record.student_id,
                subject_id=record.subject_id,
                performed_by=actor,
            )
        )
        logger.info(f"Attendance deleted: {record_id} by user {actor}")

    async def get(self, record_id: str) -> AttendanceRecord:
        record = await self._attendance.get(record_id)
        if not record:
            raise NotFoundError("Attendance record", record_id)
        return record

    async def list_records(self, filters: AttendanceFilters, page: int = 1, limit: int = 50) -> Page[AttendanceRecord]:
        page, limit = normalize_page(page, limit, default_limit=50)
        items, total = await self._attendance.find(filters, skip=(page - 1) * limit, limit=limit)
        return Page[AttendanceRecord](items=list(items), page=page, limit=limit, total=total)

    async def student_history(self, student_id: str, limit: int = 10) -> list[AttendanceRecord]:
        await self._require_student(student_id)
        return list(await self._attendance.recent_for_student(student_id, limit))
