"""Persistence interfaces consumed by the services.

Services only see these protocols. `rollcall.repositories.mongo` implements
them on Beanie; tests use in-memory versions.
"""
from datetime import datetime
from typing import Optional, Protocol, Sequence

from rollcall.models.activity import ActivityEntry
from rollcall.models.alert import Alert, AlertFilters, AlertType
from rollcall.models.alert_config import AlertConfig
from rollcall.models.attendance import (
    AttendanceFilters,
    AttendanceKey,
    AttendanceRecord,
    HistoryEntry,
    StatusCounts,
    StudentTally,
)
from rollcall.models.student import Student, Subject


class AttendanceRepository(Protocol):
    async def get(self, record_id: str) -> Optional[AttendanceRecord]:
        """Record with its edit history, oldest entry first."""
        raise NotImplementedError

    async def find_by_key(self, key: AttendanceKey) -> Optional[AttendanceRecord]:
        raise NotImplementedError

    async def create(self, record: AttendanceRecord) -> AttendanceRecord:
        """Insert a new mark.

        Raises `DuplicateKeyError` when another mark already holds the key.
        """
        raise NotImplementedError

    async def save(self, record: AttendanceRecord) -> AttendanceRecord:
        """Persist the mutable fields of an existing mark (history excluded)."""
        raise NotImplementedError

    async def append_history(self, record_id: str, entry: HistoryEntry) -> int:
        """Append to the record's edit log and return the entry's sequence number."""
        raise NotImplementedError

    async def delete(self, record_id: str) -> bool:
        raise NotImplementedError

    async def find(
        self, filters: AttendanceFilters, *, skip: int = 0, limit: Optional[int] = 50
    ) -> tuple[Sequence[AttendanceRecord], int]:
        """Newest first; returns the page and the total match count."""
        raise NotImplementedError

    async def recent_for_student(self, student_id: str, limit: int) -> Sequence[AttendanceRecord]:
        """Latest marks of a student ordered by date descending."""
        raise NotImplementedError

    async def count_by_status(self, filters: AttendanceFilters) -> StatusCounts:
        raise NotImplementedError

    async def count_by_subject(self, student_id: str, subject_id: Optional[str] = None) -> dict[Optional[str], StatusCounts]:
        """Status counts of one student keyed by subject id (None for arrival-only marks)."""
        raise NotImplementedError

    async def count_by_student(self, filters: AttendanceFilters) -> Sequence[StudentTally]:
        raise NotImplementedError


class DirectoryRepository(Protocol):
    """Read-only identity lookups."""

    async def get_student(self, student_id: str) -> Optional[Student]:
        raise NotImplementedError

    async def get_students(self, student_ids: Sequence[str]) -> dict[str, Student]:
        raise NotImplementedError

    async def get_subject(self, subject_id: str) -> Optional[Subject]:
        raise NotImplementedError

    async def is_enrolled(self, student_id: str, subject_id: str) -> bool:
        """True when the student holds an active enrollment in the subject."""
        raise NotImplementedError

    async def count_active_enrollments(self, subject_id: str) -> int:
        raise NotImplementedError

    async def enrolled_students(self, subject_id: str) -> Sequence[Student]:
        raise NotImplementedError

    async def active_students(self) -> Sequence[Student]:
        raise NotImplementedError


class AlertRepository(Protocol):
    async def get(self, alert_id: str) -> Optional[Alert]:
        raise NotImplementedError

    async def create(self, alert: Alert) -> Alert:
        raise NotImplementedError

    async def save(self, alert: Alert) -> Alert:
        raise NotImplementedError

    async def delete(self, alert_id: str) -> bool:
        raise NotImplementedError

    async def find_open(
        self,
        student_id: str,
        alert_type: AlertType,
        *,
        min_consecutive_days: Optional[int] = None,
    ) -> Optional[Alert]:
        """First unacknowledged alert of the type for the student.

        With `min_consecutive_days`, only alerts whose stored run length is
        at least that value match.
        """
        raise NotImplementedError

    async def acknowledge_many(self, alert_ids: Sequence[str], at: datetime, by: str) -> int:
        """Returns the number of alerts modified."""
        raise NotImplementedError

    async def find(self, filters: AlertFilters, *, skip: int = 0, limit: int = 20) -> tuple[Sequence[Alert], int]:
        raise NotImplementedError

    async def count(self, filters: AlertFilters) -> int:
        raise NotImplementedError

    async def count_by_type(self) -> dict[str, int]:
        raise NotImplementedError


class AlertConfigRepository(Protocol):
    async def get(self) -> Optional[AlertConfig]:
        raise NotImplementedError

    async def save(self, config: AlertConfig) -> AlertConfig:
        """Upsert the single config document."""
        raise NotImplementedError


class ActivitySink(Protocol):
    async def record(self, entry: ActivityEntry) -> None:
        raise NotImplementedError
