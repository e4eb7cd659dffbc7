"""Beanie implementations of the repository protocols."""
import logging
from datetime import datetime
from typing import Any, Optional, Sequence

import pymongo
from beanie import PydanticObjectId
from bson.errors import InvalidId
from pymongo.errors import DuplicateKeyError as MongoDuplicateKeyError, PyMongoError

from rollcall.models.activity import ActivityEntry, ActivityLogDocument
from rollcall.models.alert import Alert, AlertBase, AlertDocument, AlertFilters, AlertType
from rollcall.models.alert_config import AlertConfig, AlertConfigDocument
from rollcall.models.attendance import (
    AttendanceBase,
    AttendanceDocument,
    AttendanceFilters,
    AttendanceHistoryDocument,
    AttendanceKey,
    AttendanceRecord,
    HistoryEntry,
    StatusCounts,
    StudentTally,
    storage_key,
)
from rollcall.models.student import EnrollmentDocument, Student, StudentDocument, Subject, SubjectDocument
from rollcall.services.exceptions import DuplicateKeyError, StorageError

logger = logging.getLogger(__name__)

_ATTENDANCE_FIELDS = set(AttendanceBase.model_fields)
_HISTORY_FIELDS = set(HistoryEntry.model_fields)
_ALERT_FIELDS = set(AlertBase.model_fields)
_CONFIG_FIELDS = set(AlertConfig.model_fields)


def _object_id(value: str) -> Optional[PydanticObjectId]:
    try:
        return PydanticObjectId(value)
    except (InvalidId, TypeError):
        return None


def _to_record(doc: AttendanceDocument, history: Sequence[AttendanceHistoryDocument] = ()) -> AttendanceRecord:
    return AttendanceRecord(
        id=str(doc.id),
        history=[HistoryEntry(**h.model_dump(include=_HISTORY_FIELDS)) for h in history],
        **doc.model_dump(include=_ATTENDANCE_FIELDS),
    )


def _to_alert(doc: AlertDocument) -> Alert:
    return Alert(id=str(doc.id), **doc.model_dump(include=_ALERT_FIELDS))


def _attendance_query(filters: AttendanceFilters) -> dict[str, Any]:
    query: dict[str, Any] = {}
    if filters.student_id:
        query["student_id"] = filters.student_id
    if filters.subject_id:
        query["subject_id"] = filters.subject_id
    if filters.status:
        query["status"] = filters.status.value
    if filters.time_slot:
        query["time_slot"] = filters.time_slot.value
    if filters.schedule_slot:
        query["schedule_slot"] = filters.schedule_slot
    if filters.start_date or filters.end_date:
        query["date"] = {}
        if filters.start_date:
            query["date"]["$gte"] = filters.start_date
        if filters.end_date:
            query["date"]["$lte"] = filters.end_date
    return query


def _alert_query(filters: AlertFilters) -> dict[str, Any]:
    query: dict[str, Any] = {}
    if filters.type:
        query["type"] = filters.type.value
    if filters.severity:
        query["severity"] = filters.severity.value
    if filters.acknowledged is not None:
        query["acknowledged"] = filters.acknowledged
    if filters.student_id:
        query["student_id"] = filters.student_id
    if filters.subject_id:
        query["subject_id"] = filters.subject_id
    return query


class MongoAttendanceRepository:
    async def get(self, record_id: str) -> Optional[AttendanceRecord]:
        oid = _object_id(record_id)
        if not oid:
            return None
        doc = await AttendanceDocument.get(oid)
        if not doc:
            return None
        history = (
            await AttendanceHistoryDocument.find(AttendanceHistoryDocument.record_id == record_id)
            .sort(+AttendanceHistoryDocument.sequence)
            .to_list()
        )
        return _to_record(doc, history)

    async def find_by_key(self, key: AttendanceKey) -> Optional[AttendanceRecord]:
        doc = await AttendanceDocument.find_one(AttendanceDocument.attendance_key == storage_key(key))
        if not doc:
            return None
        return await self.get(str(doc.id))

    async def create(self, record: AttendanceRecord) -> AttendanceRecord:
        key = storage_key(record.key())
        doc = AttendanceDocument(attendance_key=key, **record.model_dump(include=_ATTENDANCE_FIELDS))
        try:
            await doc.insert()
        except MongoDuplicateKeyError:
            raise DuplicateKeyError(key)
        except PyMongoError:
            logger.exception(f"Failed to insert attendance for student {record.student_id}")
            raise StorageError()
        return _to_record(doc)

    async def save(self, record: AttendanceRecord) -> AttendanceRecord:
        doc = await AttendanceDocument.get(PydanticObjectId(record.id))
        if not doc:
            raise StorageError("Attendance record disappeared during update")
        for field in _ATTENDANCE_FIELDS:
            setattr(doc, field, getattr(record, field))
        doc.attendance_key = storage_key(record.key())
        try:
            await doc.save()
        except MongoDuplicateKeyError:
            raise DuplicateKeyError(doc.attendance_key)
        except PyMongoError:
            logger.exception(f"Failed to save attendance record {record.id}")
            raise StorageError()
        return record

    async def append_history(self, record_id: str, entry: HistoryEntry) -> int:
        sequence = await AttendanceHistoryDocument.find(AttendanceHistoryDocument.record_id == record_id).count() + 1
        try:
            await AttendanceHistoryDocument(record_id=record_id, sequence=sequence, **entry.model_dump()).insert()
        except PyMongoError:
            logger.exception(f"Failed to append history for attendance record {record_id}")
            raise StorageError()
        return sequence

    async def delete(self, record_id: str) -> bool:
        oid = _object_id(record_id)
        if not oid:
            return False
        doc = await AttendanceDocument.get(oid)
        if not doc:
            return False
        await doc.delete()
        await AttendanceHistoryDocument.find(AttendanceHistoryDocument.record_id == record_id).delete()
        return True

    async def find(
        self, filters: AttendanceFilters, *, skip: int = 0, limit: Optional[int] = 50
    ) -> tuple[Sequence[AttendanceRecord], int]:
        query = _attendance_query(filters)
        total = await AttendanceDocument.find(query).count()
        cursor = (
            AttendanceDocument.find(query)
            .sort([("date", pymongo.DESCENDING), ("created_at", pymongo.DESCENDING)])
            .skip(skip)
        )
        if limit:
            cursor = cursor.limit(limit)
        docs = await cursor.to_list()
        return [_to_record(d) for d in docs], total

    async def recent_for_student(self, student_id: str, limit: int) -> Sequence[AttendanceRecord]:
        docs = (
            await AttendanceDocument.find(AttendanceDocument.student_id == student_id)
            .sort([("date", pymongo.DESCENDING), ("created_at", pymongo.DESCENDING)])
            .limit(limit)
            .to_list()
        )
        return [_to_record(d) for d in docs]

    async def count_by_status(self, filters: AttendanceFilters) -> StatusCounts:
        rows = (
            await AttendanceDocument.find(_attendance_query(filters))
            .aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}])
            .to_list()
        )
        counts = StatusCounts()
        for row in rows:
            counts.add(row["_id"], row["count"])
        return counts

    async def count_by_subject(self, student_id: str, subject_id: Optional[str] = None) -> dict[Optional[str], StatusCounts]:
        query: dict[str, Any] = {"student_id": student_id}
        if subject_id:
            query["subject_id"] = subject_id
        rows = (
            await AttendanceDocument.find(query)
            .aggregate(
                [{"$group": {"_id": {"subject": "$subject_id", "status": "$status"}, "count": {"$sum": 1}}}]
            )
            .to_list()
        )
        by_subject: dict[Optional[str], StatusCounts] = {}
        for row in rows:
            key = row["_id"].get("subject")
            by_subject.setdefault(key, StatusCounts()).add(row["_id"]["status"], row["count"])
        return by_subject

    async def count_by_student(self, filters: AttendanceFilters) -> Sequence[StudentTally]:
        rows = (
            await AttendanceDocument.find(_attendance_query(filters))
            .aggregate(
                [{"$group": {"_id": {"student": "$student_id", "status": "$status"}, "count": {"$sum": 1}}}]
            )
            .to_list()
        )
        by_student: dict[str, StatusCounts] = {}
        for row in rows:
            by_student.setdefault(row["_id"]["student"], StatusCounts()).add(row["_id"]["status"], row["count"])
        return [StudentTally(student_id=sid, counts=c) for sid, c in by_student.items()]


class MongoDirectoryRepository:
    async def get_student(self, student_id: str) -> Optional[Student]:
        oid = _object_id(student_id)
        if not oid:
            return None
        doc = await StudentDocument.get(oid)
        return doc.to_student() if doc else None

    async def get_students(self, student_ids: Sequence[str]) -> dict[str, Student]:
        oids = [oid for oid in (_object_id(s) for s in student_ids) if oid]
        docs = await StudentDocument.find({"_id": {"$in": oids}}).to_list()
        return {str(d.id): d.to_student() for d in docs}

    async def get_subject(self, subject_id: str) -> Optional[Subject]:
        oid = _object_id(subject_id)
        if not oid:
            return None
        doc = await SubjectDocument.get(oid)
        return doc.to_subject() if doc else None

    async def is_enrolled(self, student_id: str, subject_id: str) -> bool:
        enrollment = await EnrollmentDocument.find_one(
            {"student_id": student_id, "subject_id": subject_id, "is_active": True}
        )
        return enrollment is not None

    async def count_active_enrollments(self, subject_id: str) -> int:
        return await EnrollmentDocument.find({"subject_id": subject_id, "is_active": True}).count()

    async def enrolled_students(self, subject_id: str) -> Sequence[Student]:
        enrollments = await EnrollmentDocument.find({"subject_id": subject_id, "is_active": True}).to_list()
        students = await self.get_students([e.student_id for e in enrollments])
        return sorted(students.values(), key=lambda s: s.student_number)

    async def active_students(self) -> Sequence[Student]:
        docs = await StudentDocument.find({"status": "active"}).sort("student_number").to_list()
        return [d.to_student() for d in docs]


class MongoAlertRepository:
    async def get(self, alert_id: str) -> Optional[Alert]:
        oid = _object_id(alert_id)
        if not oid:
            return None
        doc = await AlertDocument.get(oid)
        return _to_alert(doc) if doc else None

    async def create(self, alert: Alert) -> Alert:
        doc = AlertDocument(**alert.model_dump(include=_ALERT_FIELDS))
        await doc.insert()
        return _to_alert(doc)

    async def save(self, alert: Alert) -> Alert:
        doc = await AlertDocument.get(PydanticObjectId(alert.id))
        if not doc:
            raise StorageError("Alert disappeared during update")
        for field in _ALERT_FIELDS:
            setattr(doc, field, getattr(alert, field))
        await doc.save()
        return alert

    async def delete(self, alert_id: str) -> bool:
        oid = _object_id(alert_id)
        if not oid:
            return False
        doc = await AlertDocument.get(oid)
        if not doc:
            return False
        await doc.delete()
        return True

    async def find_open(
        self,
        student_id: str,
        alert_type: AlertType,
        *,
        min_consecutive_days: Optional[int] = None,
    ) -> Optional[Alert]:
        query: dict[str, Any] = {"student_id": student_id, "type": alert_type.value, "acknowledged": False}
        if min_consecutive_days is not None:
            query["details.consecutive_days"] = {"$gte": min_consecutive_days}
        doc = await AlertDocument.find_one(query)
        return _to_alert(doc) if doc else None

    async def acknowledge_many(self, alert_ids: Sequence[str], at: datetime, by: str) -> int:
        oids = [oid for oid in (_object_id(a) for a in alert_ids) if oid]
        result = await AlertDocument.find({"_id": {"$in": oids}}).update_many(
            {"$set": {"acknowledged": True, "acknowledged_at": at, "acknowledged_by": by}}
        )
        return result.modified_count if result else 0

    async def find(self, filters: AlertFilters, *, skip: int = 0, limit: int = 20) -> tuple[Sequence[Alert], int]:
        query = _alert_query(filters)
        total = await AlertDocument.find(query).count()
        docs = await AlertDocument.find(query).sort(-AlertDocument.created_at).skip(skip).limit(limit).to_list()
        return [_to_alert(d) for d in docs], total

    async def count(self, filters: AlertFilters) -> int:
        return await AlertDocument.find(_alert_query(filters)).count()

    async def count_by_type(self) -> dict[str, int]:
        rows = await AlertDocument.aggregate([{"$group": {"_id": "$type", "count": {"$sum": 1}}}]).to_list()
        return {row["_id"]: row["count"] for row in rows}


class MongoAlertConfigRepository:
    async def get(self) -> Optional[AlertConfig]:
        doc = await AlertConfigDocument.find_one()
        return AlertConfig(**doc.model_dump(include=_CONFIG_FIELDS)) if doc else None

    async def save(self, config: AlertConfig) -> AlertConfig:
        doc = await AlertConfigDocument.find_one()
        if doc:
            for field in _CONFIG_FIELDS:
                setattr(doc, field, getattr(config, field))
            await doc.save()
        else:
            await AlertConfigDocument(**config.model_dump()).insert()
        return config


class MongoActivitySink:
    async def record(self, entry: ActivityEntry) -> None:
        await ActivityLogDocument(**entry.model_dump()).insert()
