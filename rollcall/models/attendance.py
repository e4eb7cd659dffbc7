"""Attendance marks, their uniqueness key and the append-only edit log."""
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union

import pymongo
from beanie import Document, Indexed
from pydantic import BaseModel, Field, field_validator, model_validator


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    EXCUSED = "excused"


# Statuses that trigger a guardian/student notice when marked.
NOTIFY_STATUSES = (AttendanceStatus.ABSENT, AttendanceStatus.LATE)


class TimeSlot(str, Enum):
    ARRIVAL = "arrival"
    DEPARTURE = "departure"


def normalize_date(value: Union[date, datetime, str]) -> date:
    """Reduce a date-like value to day granularity."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(value).date()


@dataclass(frozen=True)
class ScopedKey:
    """Key of a subject-scoped mark; several periods per day are told apart by slot."""

    student_id: str
    subject_id: str
    date: date
    schedule_slot: Optional[str] = None
    time_slot: Optional[TimeSlot] = None


@dataclass(frozen=True)
class UnscopedKey:
    """Key of an arrival-only mark: one per student per day."""

    student_id: str
    date: date


AttendanceKey = Union[ScopedKey, UnscopedKey]


def make_key(
    student_id: str,
    subject_id: Optional[str],
    on: date,
    schedule_slot: Optional[str] = None,
    time_slot: Optional[TimeSlot] = None,
) -> AttendanceKey:
    if subject_id:
        return ScopedKey(student_id, subject_id, on, schedule_slot or None, time_slot)
    return UnscopedKey(student_id, on)


def storage_key(key: AttendanceKey) -> str:
    """Flatten a key into the string backing the unique index."""
    match key:
        case ScopedKey(student_id=student, subject_id=subject, date=on, schedule_slot=slot, time_slot=time_slot):
            ts = time_slot.value if time_slot else ""
            return f"s:{student}:{subject}:{on.isoformat()}:{slot or ''}:{ts}"
        case UnscopedKey(student_id=student, date=on):
            return f"u:{student}:{on.isoformat()}"
    raise TypeError(f"Unsupported attendance key: {key!r}")


class HistoryEntry(BaseModel):
    """Snapshot of a record taken right before an update."""

    status: AttendanceStatus
    time_slot: Optional[TimeSlot] = None
    schedule_slot: Optional[str] = None
    remarks: Optional[str] = None
    edited_at: datetime
    edited_by: str


class AttendanceBase(BaseModel):
    student_id: str
    subject_id: Optional[str] = None  # None means an arrival-only mark
    date: date
    status: AttendanceStatus
    time_slot: Optional[TimeSlot] = None
    schedule_slot: Optional[str] = Field(default=None, max_length=50)
    remarks: Optional[str] = Field(default=None, max_length=500)
    marked_by: str
    edited_at: Optional[datetime] = None
    edited_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def key(self) -> AttendanceKey:
        return make_key(self.student_id, self.subject_id, self.date, self.schedule_slot, self.time_slot)

    def snapshot(self, edited_at: datetime, edited_by: str) -> HistoryEntry:
        return HistoryEntry(
            status=self.status,
            time_slot=self.time_slot,
            schedule_slot=self.schedule_slot,
            remarks=self.remarks,
            edited_at=edited_at,
            edited_by=edited_by,
        )


class AttendanceRecord(AttendanceBase):
    """Attendance mark as seen by services and API clients."""

    id: Optional[str] = None
    history: list[HistoryEntry] = Field(default_factory=list)


class AttendanceMark(BaseModel):
    """Input for marking a single student."""

    student_id: str
    subject_id: Optional[str] = None
    date: date
    status: AttendanceStatus
    time_slot: Optional[TimeSlot] = None
    schedule_slot: Optional[str] = Field(default=None, max_length=50)
    remarks: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="before")
    @classmethod
    def _default_today(cls, data):
        if isinstance(data, dict) and not data.get("date"):
            data = {**data, "date": date.today()}
        return data

    @field_validator("date", mode="before")
    @classmethod
    def _day_only(cls, value):
        return normalize_date(value)

    @field_validator("schedule_slot", "remarks")
    @classmethod
    def _strip(cls, value):
        if value is None:
            return None
        value = value.strip()
        return value or None


class AttendanceUpdate(BaseModel):
    """PATCH body: every field optional. Changing time_slot or schedule_slot re-keys the mark and can conflict."""

    status: Optional[AttendanceStatus] = None
    time_slot: Optional[TimeSlot] = None
    schedule_slot: Optional[str] = Field(default=None, max_length=50)
    remarks: Optional[str] = Field(default=None, max_length=500)


class AttendanceFilters(BaseModel):
    student_id: Optional[str] = None
    subject_id: Optional[str] = None
    status: Optional[AttendanceStatus] = None
    time_slot: Optional[TimeSlot] = None
    schedule_slot: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class StatusCounts(BaseModel):
    """Per-status tally of marks."""

    present: int = 0
    absent: int = 0
    late: int = 0
    excused: int = 0

    @property
    def total(self) -> int:
        return self.present + self.absent + self.late + self.excused

    @property
    def attended(self) -> int:
        return self.present + self.late + self.excused

    def add(self, status: Union[AttendanceStatus, str], count: int = 1) -> None:
        name = AttendanceStatus(status).value
        setattr(self, name, getattr(self, name) + count)


class StudentTally(BaseModel):
    student_id: str
    counts: StatusCounts


class AttendanceDocument(Document, AttendanceBase):
    """Stored mark; `attendance_key` carries the uniqueness constraint."""

    attendance_key: Indexed(str, unique=True)

    class Settings:
        name = "attendance"
        use_state_management = True
        indexes = [
            [("student_id", pymongo.ASCENDING), ("date", pymongo.DESCENDING)],
            [("subject_id", pymongo.ASCENDING), ("date", pymongo.DESCENDING)],
            [("date", pymongo.DESCENDING)],
            "status",
        ]


class AttendanceHistoryDocument(Document, HistoryEntry):
    """One row of a record's edit log, ordered by `sequence`."""

    record_id: Indexed(str)
    sequence: int

    class Settings:
        name = "attendance_history"
        indexes = [
            pymongo.IndexModel(
                [("record_id", pymongo.ASCENDING), ("sequence", pymongo.ASCENDING)],
                unique=True,
            ),
        ]
