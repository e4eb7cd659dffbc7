"""Attendance statistics derived from stored marks.

The rates below intentionally use different formulas:

* daily summary: present / marks recorded that day
* subject summary: present / active enrollments (roster size)
* student summary: (present + late) / marks
* students summary: present / marks
"""
from datetime import date
from typing import Optional

from pydantic import BaseModel

from rollcall.models.attendance import AttendanceFilters, StatusCounts
from rollcall.repositories.base import AttendanceRepository, DirectoryRepository
from rollcall.services.exceptions import NotFoundError


def rate(numerator: int, denominator: int) -> float:
    """Percentage rounded to two decimals; 0 when nothing to divide by."""
    if denominator <= 0:
        return 0
    return round(numerator / denominator * 100, 2)


class DailySummary(BaseModel):
    date: date
    subject_id: Optional[str] = None
    total: int
    present: int
    absent: int
    late: int
    excused: int
    attendance_rate: float


class SubjectSummary(BaseModel):
    subject_id: str
    subject_code: str
    subject_name: str
    date: date
    total_enrolled: int
    total_marked: int
    present: int
    absent: int
    late: int
    excused: int
    attendance_rate: float


class SubjectBreakdown(BaseModel):
    subject_id: Optional[str]
    counts: StatusCounts
    total: int
    attendance_rate: float


class StudentSummary(BaseModel):
    student_id: str
    subject_id: Optional[str] = None
    counts: StatusCounts
    total: int
    attendance_rate: float
    by_subject: list[SubjectBreakdown]


class StudentAttendanceRow(BaseModel):
    student_id: str
    student_number: str
    first_name: str
    last_name: str
    section: str
    total_days: int
    present: int
    absent: int
    late: int
    excused: int
    attendance_rate: float


class SubjectStats(BaseModel):
    subject_id: str
    subject_code: str
    subject_name: str
    start_date: date
    end_date: date
    total_enrolled: int
    counts: StatusCounts
    total: int
    average_attendance_rate: float


class RosterEntry(BaseModel):
    student_id: str
    student_number: str
    first_name: str
    last_name: str
    status: str  # attendance status or "unmarked"
    record_id: Optional[str] = None


class SubjectRoster(BaseModel):
    subject_id: str
    date: date
    students: list[RosterEntry]
    counts: StatusCounts
    unmarked: int
    total: int


class SummaryCalculator:
    def __init__(self, attendance: AttendanceRepository, directory: DirectoryRepository):
        self._attendance = attendance
        self._directory = directory

    async def daily_summary(self, on: date, subject_id: Optional[str] = None) -> DailySummary:
        counts = await self._attendance.count_by_status(
            AttendanceFilters(subject_id=subject_id, start_date=on, end_date=on)
        )
        return DailySummary(
            date=on,
            subject_id=subject_id,
            total=counts.total,
            present=counts.present,
            absent=counts.absent,
            late=counts.late,
            excused=counts.excused,
            attendance_rate=rate(counts.present, counts.total),
        )

    async def subject_summary(self, subject_id: str, on: date) -> SubjectSummary:
        subject = await self._directory.get_subject(subject_id)
        if not subject:
            raise NotFoundError("Subject", subject_id)
        enrolled = await self._directory.count_active_enrollments(subject_id)
        counts = await self._attendance.count_by_status(
            AttendanceFilters(subject_id=subject_id, start_date=on, end_date=on)
        )
        return SubjectSummary(
            subject_id=subject_id,
            subject_code=subject.subject_code,
            subject_name=subject.subject_name,
            date=on,
            total_enrolled=enrolled,
            total_marked=counts.total,
            present=counts.present,
            absent=counts.absent,
            late=counts.late,
            excused=counts.excused,
            attendance_rate=rate(counts.present, enrolled),
        )

    async def student_summary(self, student_id: str, subject_id: Optional[str] = None) -> StudentSummary:
        if not await self._directory.get_student(student_id):
            raise NotFoundError("Student", student_id)
        by_subject = await self._attendance.count_by_subject(student_id, subject_id)

        overall = StatusCounts()
        breakdown = []
        for sid, counts in by_subject.items():
            for status in ("present", "absent", "late", "excused"):
                overall.add(status, getattr(counts, status))
            breakdown.append(
                SubjectBreakdown(
                    subject_id=sid,
                    counts=counts,
                    total=counts.total,
                    attendance_rate=rate(counts.present + counts.late, counts.total),
                )
            )
        return StudentSummary(
            student_id=student_id,
            subject_id=subject_id,
            counts=overall,
            total=overall.total,
            attendance_rate=rate(overall.present + overall.late, overall.total),
            by_subject=breakdown,
        )

    async def students_summary(self, filters: AttendanceFilters) -> list[StudentAttendanceRow]:
        tallies = await self._attendance.count_by_student(filters)
        students = await self._directory.get_students([t.student_id for t in tallies])
        rows = []
        for tally in tallies:
            student = students.get(tally.student_id)
            if not student:
                continue
            c = tally.counts
            rows.append(
                StudentAttendanceRow(
                    student_id=tally.student_id,
                    student_number=student.student_number,
                    first_name=student.first_name,
                    last_name=student.last_name,
                    section=student.section,
                    total_days=c.total,
                    present=c.present,
                    absent=c.absent,
                    late=c.late,
                    excused=c.excused,
                    attendance_rate=rate(c.present, c.total),
                )
            )
        rows.sort(key=lambda r: r.student_number)
        return rows

    async def subject_stats(self, subject_id: str, start: date, end: date) -> SubjectStats:
        subject = await self._directory.get_subject(subject_id)
        if not subject:
            raise NotFoundError("Subject", subject_id)
        counts = await self._attendance.count_by_status(
            AttendanceFilters(subject_id=subject_id, start_date=start, end_date=end)
        )
        return SubjectStats(
            subject_id=subject_id,
            subject_code=subject.subject_code,
            subject_name=subject.subject_name,
            start_date=start,
            end_date=end,
            total_enrolled=await self._directory.count_active_enrollments(subject_id),
            counts=counts,
            total=counts.total,
            average_attendance_rate=rate(counts.present, counts.total),
        )

    async def subject_roster(self, subject_id: str, on: date, schedule_slot: Optional[str] = None) -> SubjectRoster:
        """Enrolled students with their mark for the day, `unmarked` when missing."""
        if not await self._directory.get_subject(subject_id):
            raise NotFoundError("Subject", subject_id)
        records, _ = await self._attendance.find(
            AttendanceFilters(subject_id=subject_id, start_date=on, end_date=on, schedule_slot=schedule_slot),
            limit=None,
        )
        by_student = {r.student_id: r for r in reversed(records)}  # newest mark wins

        counts = StatusCounts()
        unmarked = 0
        entries = []
        for student in await self._directory.enrolled_students(subject_id):
            record = by_student.get(student.id)
            if record:
                counts.add(record.status)
            else:
                unmarked += 1
            entries.append(
                RosterEntry(
                    student_id=student.id,
                    student_number=student.student_number,
                    first_name=student.first_name,
                    last_name=student.last_name,
                    status=record.status.value if record else "unmarked",
                    record_id=record.id if record else None,
                )
            )
        return SubjectRoster(
            subject_id=subject_id,
            date=on,
            students=entries,
            counts=counts,
            unmarked=unmarked,
            total=len(entries),
        )
