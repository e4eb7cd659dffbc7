from datetime import date

import pytest

from rollcall.models.attendance import AttendanceFilters, AttendanceMark, AttendanceStatus
from rollcall.services.exceptions import NotFoundError
from rollcall.services.summary import rate

DAY = date(2026, 3, 16)


@pytest.fixture
def class_of_ten(directory):
    for i in range(2, 11):
        directory.add_student(f"s{i}", first_name=f"Kid{i}", student_number=f"S-{i:02d}")
        directory.enroll(f"s{i}", "math")
    return directory


async def _mark(engine, student_id, status, on=DAY, subject_id="math"):
    return await engine.mark(
        AttendanceMark(student_id=student_id, subject_id=subject_id, date=on, status=status),
        "teacher-1",
    )


def test_rate_guards_empty_denominator():
    assert rate(0, 0) == 0
    assert rate(1, 3) == 33.33


async def test_subject_and_daily_summaries_use_different_denominators(engine, summaries, class_of_ten):
    for sid in ("s1", "s2", "s3"):
        await _mark(engine, sid, AttendanceStatus.PRESENT)

    subject = await summaries.subject_summary("math", DAY)
    daily = await summaries.daily_summary(DAY, "math")

    assert subject.total_enrolled == 10
    assert subject.total_marked == 3
    assert subject.attendance_rate == 30
    assert daily.total == 3
    assert daily.attendance_rate == 100


async def test_daily_summary_counts_every_status(engine, summaries, class_of_ten):
    await _mark(engine, "s1", AttendanceStatus.PRESENT)
    await _mark(engine, "s2", AttendanceStatus.ABSENT)
    await _mark(engine, "s3", AttendanceStatus.LATE)
    await _mark(engine, "s4", AttendanceStatus.EXCUSED)

    daily = await summaries.daily_summary(DAY)

    assert (daily.present, daily.absent, daily.late, daily.excused) == (1, 1, 1, 1)
    assert daily.attendance_rate == 25


async def test_empty_day_has_zero_rate(summaries):
    daily = await summaries.daily_summary(DAY)

    assert daily.total == 0
    assert daily.attendance_rate == 0


async def test_student_summary_counts_late_as_attended_but_students_summary_does_not(engine, summaries):
    await _mark(engine, "s1", AttendanceStatus.PRESENT, on=date(2026, 3, 12))
    await _mark(engine, "s1", AttendanceStatus.LATE, on=date(2026, 3, 13))
    await _mark(engine, "s1", AttendanceStatus.ABSENT, on=date(2026, 3, 16))
    await _mark(engine, "s1", AttendanceStatus.PRESENT, on=date(2026, 3, 16), subject_id=None)

    student = await summaries.student_summary("s1")
    rows = await summaries.students_summary(AttendanceFilters())

    assert student.total == 4
    assert student.attendance_rate == 75
    assert {b.subject_id for b in student.by_subject} == {"math", None}
    assert rows[0].total_days == 4
    assert rows[0].attendance_rate == 50


async def test_student_summary_unknown_student(summaries):
    with pytest.raises(NotFoundError):
        await summaries.student_summary("ghost")


async def test_students_summary_sorted_by_student_number(engine, summaries, class_of_ten):
    await _mark(engine, "s10", AttendanceStatus.PRESENT)
    await _mark(engine, "s2", AttendanceStatus.ABSENT)

    rows = await summaries.students_summary(AttendanceFilters(start_date=DAY, end_date=DAY))

    assert [r.student_number for r in rows] == ["S-02", "S-10"]


async def test_subject_stats_over_a_range(engine, summaries, class_of_ten):
    await _mark(engine, "s1", AttendanceStatus.PRESENT, on=date(2026, 3, 2))
    await _mark(engine, "s2", AttendanceStatus.ABSENT, on=date(2026, 3, 9))
    await _mark(engine, "s3", AttendanceStatus.PRESENT, on=date(2026, 4, 1))

    stats = await summaries.subject_stats("math", date(2026, 3, 1), date(2026, 3, 31))

    assert stats.total == 2
    assert stats.total_enrolled == 10
    assert stats.average_attendance_rate == 50


async def test_subject_roster_marks_missing_students_unmarked(engine, summaries, class_of_ten):
    await _mark(engine, "s1", AttendanceStatus.PRESENT)
    await _mark(engine, "s2", AttendanceStatus.LATE)

    roster = await summaries.subject_roster("math", DAY)

    by_student = {e.student_id: e.status for e in roster.students}
    assert roster.total == 10
    assert roster.unmarked == 8
    assert by_student["s1"] == "present"
    assert by_student["s2"] == "late"
    assert by_student["s3"] == "unmarked"
    assert roster.counts.present == 1


async def test_subject_summary_unknown_subject(summaries):
    with pytest.raises(NotFoundError):
        await summaries.subject_summary("art", DAY)
