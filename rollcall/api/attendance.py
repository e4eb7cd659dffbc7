from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Query, status
from pydantic import BaseModel

from rollcall.api.deps import Attendance, CurrentActor, Summaries
from rollcall.models.attendance import (
    AttendanceFilters,
    AttendanceMark,
    AttendanceRecord,
    AttendanceStatus,
    AttendanceUpdate,
    TimeSlot,
)
from rollcall.services.attendance import BulkResult
from rollcall.services.pagination import Page
from rollcall.services.summary import (
    DailySummary,
    StudentAttendanceRow,
    StudentSummary,
    SubjectRoster,
    SubjectStats,
    SubjectSummary,
)

router = APIRouter()


class BulkMarkRequest(BaseModel):
    subject_id: Optional[str] = None
    # Items stay raw so one malformed entry fails alone instead of the whole request.
    records: list[dict[str, Any]]


@router.post("/", response_model=AttendanceRecord, status_code=status.HTTP_201_CREATED)
async def mark_attendance(data: AttendanceMark, actor: CurrentActor, engine: Attendance):
    """Mark one student. 409 carries the record already stored for the key."""
    return await engine.mark(data, actor.id)


@router.post("/bulk", response_model=BulkResult)
async def bulk_mark_attendance(data: BulkMarkRequest, actor: CurrentActor, engine: Attendance):
    return await engine.bulk_mark(data.records, actor.id, subject_id=data.subject_id)


@router.get("/", response_model=Page[AttendanceRecord])
async def list_attendance(
    actor: CurrentActor,
    engine: Attendance,
    student_id: Optional[str] = None,
    subject_id: Optional[str] = None,
    status: Optional[AttendanceStatus] = None,
    time_slot: Optional[TimeSlot] = None,
    schedule_slot: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
):
    filters = AttendanceFilters(
        student_id=student_id,
        subject_id=subject_id,
        status=status,
        time_slot=time_slot,
        schedule_slot=schedule_slot,
        start_date=start_date,
        end_date=end_date,
    )
    return await engine.list_records(filters, page, limit)


@router.get("/summary/daily", response_model=DailySummary)
async def daily_summary(
    actor: CurrentActor,
    summaries: Summaries,
    on: Optional[date] = Query(None, alias="date"),
    subject_id: Optional[str] = None,
):
    return await summaries.daily_summary(on or date.today(), subject_id)


@router.get("/summary/students", response_model=list[StudentAttendanceRow])
async def students_summary(
    actor: CurrentActor,
    summaries: Summaries,
    subject_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    return await summaries.students_summary(
        AttendanceFilters(subject_id=subject_id, start_date=start_date, end_date=end_date)
    )


@router.get("/summary/students/{student_id}", response_model=StudentSummary)
async def student_summary(student_id: str, actor: CurrentActor, summaries: Summaries, subject_id: Optional[str] = None):
    return await summaries.student_summary(student_id, subject_id)


@router.get("/summary/students/{student_id}/history", response_model=list[AttendanceRecord])
async def student_history(
    student_id: str,
    actor: CurrentActor,
    engine: Attendance,
    limit: int = Query(10, ge=1, le=200),
):
    return await engine.student_history(student_id, limit)


@router.get("/summary/subjects/{subject_id}", response_model=SubjectSummary)
async def subject_summary(
    subject_id: str,
    actor: CurrentActor,
    summaries: Summaries,
    on: Optional[date] = Query(None, alias="date"),
):
    return await summaries.subject_summary(subject_id, on or date.today())


@router.get("/summary/subjects/{subject_id}/roster", response_model=SubjectRoster)
async def subject_roster(
    subject_id: str,
    actor: CurrentActor,
    summaries: Summaries,
    on: Optional[date] = Query(None, alias="date"),
    schedule_slot: Optional[str] = None,
):
    return await summaries.subject_roster(subject_id, on or date.today(), schedule_slot)


@router.get("/summary/subjects/{subject_id}/stats", response_model=SubjectStats)
async def subject_stats(
    subject_id: str,
    actor: CurrentActor,
    summaries: Summaries,
    start_date: date,
    end_date: date,
):
    return await summaries.subject_stats(subject_id, start_date, end_date)


@router.get("/{record_id}", response_model=AttendanceRecord)
async def get_attendance(record_id: str, actor: CurrentActor, engine: Attendance):
    return await engine.get(record_id)


@router.patch("/{record_id}", response_model=AttendanceRecord)
async def update_attendance(record_id: str, data: AttendanceUpdate, actor: CurrentActor, engine: Attendance):
    return await engine.update(record_id, data, actor.id)


@router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_attendance(record_id: str, actor: CurrentActor, engine: Attendance):
    await engine.delete(record_id, actor.id)
