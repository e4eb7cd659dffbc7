from datetime import date, timedelta

import pytest

from rollcall.models.alert import AlertFilters, AlertSeverity, AlertType
from rollcall.models.alert_config import AlertConfig, AlertConfigUpdate, EmailRecipient
from rollcall.models.attendance import AttendanceRecord, AttendanceStatus
from rollcall.services.alerts import AlertEngine, round_percent, trailing_absences
from rollcall.services.exceptions import NoRecipientsError, NotFoundError, ValidationError
from tests.fakes import FakeDispatcher

P, A, L, E = (
    AttendanceStatus.PRESENT,
    AttendanceStatus.ABSENT,
    AttendanceStatus.LATE,
    AttendanceStatus.EXCUSED,
)
FIRST_DAY = date(2026, 2, 2)


def seed(repo, student_id, statuses, start=FIRST_DAY):
    """Store one mark per day, oldest first; returns the last day used."""
    day = start
    for i, status in enumerate(statuses):
        day = start + timedelta(days=i)
        repo._store(AttendanceRecord(student_id=student_id, date=day, status=status, marked_by="teacher-1"))
    return day


def add_day(repo, student_id, status, day):
    repo._store(AttendanceRecord(student_id=student_id, date=day, status=status, marked_by="teacher-1"))


def test_trailing_absences_stops_at_first_non_absent():
    records = [
        AttendanceRecord(student_id="s1", date=date(2026, 2, d), status=s, marked_by="t")
        for d, s in ((5, A), (4, A), (3, P), (2, A))
    ]

    run = trailing_absences(records)

    assert run.days == 2
    assert run.start_date == date(2026, 2, 4)
    assert run.end_date == date(2026, 2, 5)


def test_round_percent_rounds_half_up():
    assert round_percent(62.5) == 63
    assert round_percent(33.33) == 33


async def test_consecutive_alert_created_once(alert_engine, alert_repo, attendance_repo):
    seed(attendance_repo, "s1", [P, A, A, A])

    first = await alert_engine.scan()
    second = await alert_engine.scan()

    assert first.new_alerts == 1
    assert second.new_alerts == 0
    [alert] = alert_repo.of_type(AlertType.CONSECUTIVE_ABSENCE)
    assert alert.details.consecutive_days == 3
    assert alert.details.start_date == FIRST_DAY + timedelta(days=1)
    assert alert.details.end_date == FIRST_DAY + timedelta(days=3)
    assert alert.severity == AlertSeverity.WARNING
    assert alert.message == "Ana Cruz has been absent for 3 consecutive days"


async def test_consecutive_dedup_tolerates_one_more_day(alert_engine, alert_repo, attendance_repo):
    last = seed(attendance_repo, "s1", [P, A, A, A])
    await alert_engine.scan()

    add_day(attendance_repo, "s1", A, last + timedelta(days=1))
    grown_by_one = await alert_engine.scan()
    add_day(attendance_repo, "s1", A, last + timedelta(days=2))
    grown_by_two = await alert_engine.scan()

    assert grown_by_one.new_alerts == 0
    assert grown_by_two.new_alerts == 1
    days = sorted(a.details.consecutive_days for a in alert_repo.of_type(AlertType.CONSECUTIVE_ABSENCE))
    assert days == [3, 5]


async def test_five_day_run_is_critical(alert_engine, alert_repo, attendance_repo):
    seed(attendance_repo, "s1", [A] * 5)

    await alert_engine.scan()

    [alert] = alert_repo.of_type(AlertType.CONSECUTIVE_ABSENCE)
    assert alert.severity == AlertSeverity.CRITICAL


async def test_acknowledged_alert_no_longer_blocks(alert_engine, alert_repo, attendance_repo):
    seed(attendance_repo, "s1", [A, A, A])
    result = await alert_engine.scan()

    await alert_engine.acknowledge(result.alerts[0].id, "admin-1")
    again = await alert_engine.scan()

    assert again.new_alerts == 1


async def test_short_run_is_not_flagged(alert_engine, alert_repo, attendance_repo):
    seed(attendance_repo, "s1", [A, A, P, A, A])

    await alert_engine.scan()

    assert alert_repo.alerts == {}


async def test_inactive_students_are_skipped(alert_engine, alert_repo, attendance_repo, directory):
    directory.add_student("s2", status="transferred")
    seed(attendance_repo, "s2", [A] * 12)

    result = await alert_engine.scan()

    assert result.scanned_students == 1
    assert alert_repo.alerts == {}


async def test_low_attendance_sample_floors(alert_engine, alert_repo, attendance_repo, directory):
    directory.add_student("s2", "Ben", "Ong")
    directory.add_student("s3", "Cai", "Lim")
    seed(attendance_repo, "s2", [A, A, A, P])  # 25% over 4 marks
    seed(attendance_repo, "s3", [A, A, A, A, A, A, P, P])  # 25% over 8 marks

    await alert_engine.scan()
    report = await alert_engine.low_attendance_report(80)

    assert alert_repo.of_type(AlertType.LOW_ATTENDANCE) == []
    assert [(r.student_id, r.attendance_rate, r.total_classes) for r in report] == [("s3", 25, 8)]


async def test_low_attendance_alert_severity_and_message(alert_engine, alert_repo, attendance_repo, directory):
    directory.add_student("s2", "Ben", "Ong")
    seed(attendance_repo, "s1", [A] * 5 + [P] * 5)  # 50%
    seed(attendance_repo, "s2", [A] * 3 + [L, E] + [P] * 5)  # 70%

    await alert_engine.scan()

    by_student = {a.student_id: a for a in alert_repo.of_type(AlertType.LOW_ATTENDANCE)}
    assert by_student["s1"].severity == AlertSeverity.CRITICAL
    assert by_student["s1"].message == "Ana Cruz's attendance rate is 50%"
    assert by_student["s2"].severity == AlertSeverity.WARNING
    assert by_student["s2"].details.attendance_rate == 70
    assert by_student["s2"].details.threshold == 80


async def test_any_open_low_attendance_alert_blocks(alert_engine, alert_repo, attendance_repo):
    last = seed(attendance_repo, "s1", [A] * 3 + [P] * 7)  # 70%
    await alert_engine.scan()

    for i in range(1, 6):
        add_day(attendance_repo, "s1", A if i < 5 else P, last + timedelta(days=i))
    result = await alert_engine.scan()

    assert [a.details.attendance_rate for a in alert_repo.of_type(AlertType.LOW_ATTENDANCE)] == [70]
    assert all(a.type == AlertType.CONSECUTIVE_ABSENCE for a in result.alerts)


async def test_disabled_checks_create_nothing(alert_engine, alert_repo, attendance_repo, config_repo):
    config_repo.config = AlertConfig(enable_consecutive_alerts=False, enable_low_attendance_alerts=False)
    seed(attendance_repo, "s1", [A] * 12)

    result = await alert_engine.scan()

    assert result.new_alerts == 0
    assert alert_repo.alerts == {}


async def test_config_threshold_drives_scan(alert_engine, alert_repo, attendance_repo, config_repo):
    config_repo.config = AlertConfig(consecutive_absence_threshold=5)
    seed(attendance_repo, "s1", [A] * 4)

    assert (await alert_engine.scan()).new_alerts == 0


async def test_auto_send_notifies_guardian_and_ignores_admin(
    alert_engine, alert_repo, attendance_repo, config_repo, dispatcher
):
    config_repo.config = AlertConfig(
        auto_send_email=True,
        email_recipients=[EmailRecipient.GUARDIAN, EmailRecipient.ADMIN],
    )
    seed(attendance_repo, "s1", [A, A, A])

    await alert_engine.scan()

    assert dispatcher.recipients == ["guardian.s1@example.com"]
    [alert] = alert_repo.alerts.values()
    assert alert.notification_sent is True


async def test_auto_send_failure_does_not_fail_scan(alert_engine, alert_repo, attendance_repo, config_repo, directory):
    directory.add_student("s1", guardian_email=None)
    config_repo.config = AlertConfig(auto_send_email=True)
    seed(attendance_repo, "s1", [A, A, A])

    result = await alert_engine.scan()

    assert result.new_alerts == 1
    assert alert_repo.alerts["1"].notification_sent is False


async def test_notify_without_addresses_raises(alert_engine, attendance_repo, directory):
    directory.add_student("s1", guardian_email=None)
    seed(attendance_repo, "s1", [A, A, A])
    [alert] = (await alert_engine.scan()).alerts

    with pytest.raises(NoRecipientsError):
        await alert_engine.notify(alert.id, [EmailRecipient.GUARDIAN], "admin-1")


async def test_notify_partial_success(alert_repo, config_repo, attendance_repo, directory, activity, clock):
    dispatcher = FakeDispatcher(fail_for=["guardian.s1@example.com"])
    engine = AlertEngine(alert_repo, config_repo, attendance_repo, directory, dispatcher, activity, clock=clock, send_delay=0)
    seed(attendance_repo, "s1", [A, A, A])
    [alert] = (await engine.scan()).alerts

    result = await engine.notify(alert.id, [EmailRecipient.GUARDIAN, EmailRecipient.STUDENT], "admin-1")

    assert result.sent_to == ["ana@example.com"]
    assert result.failed == ["guardian.s1@example.com"]
    stored = await engine.get(alert.id)
    assert stored.notification_sent is True
    assert stored.notification_sent_at == clock()
    assert activity.types() == ["ALERT_NOTIFIED"]


async def test_notify_all_failed_leaves_alert_unsent(alert_repo, config_repo, attendance_repo, directory, activity, clock):
    dispatcher = FakeDispatcher(raise_for=["guardian.s1@example.com"])
    engine = AlertEngine(alert_repo, config_repo, attendance_repo, directory, dispatcher, activity, clock=clock, send_delay=0)
    seed(attendance_repo, "s1", [A, A, A])
    [alert] = (await engine.scan()).alerts

    result = await engine.notify(alert.id, [EmailRecipient.GUARDIAN], "admin-1")

    assert result.sent_to == []
    assert (await engine.get(alert.id)).notification_sent is False
    assert activity.entries == []


async def test_notify_unknown_alert(alert_engine):
    with pytest.raises(NotFoundError):
        await alert_engine.notify("404", [EmailRecipient.GUARDIAN], "admin-1")


async def test_config_defaults_and_update(alert_engine, config_repo):
    defaults = await alert_engine.get_config()
    assert defaults.consecutive_absence_threshold == 3
    assert defaults.low_attendance_threshold == 80
    assert defaults.email_recipients == [EmailRecipient.GUARDIAN]

    updated = await alert_engine.update_config(
        AlertConfigUpdate(consecutive_absence_threshold=4, auto_send_email=True), "admin-1"
    )

    assert updated.consecutive_absence_threshold == 4
    assert updated.low_attendance_threshold == 80
    assert updated.updated_by == "admin-1"
    assert config_repo.config == updated


@pytest.mark.parametrize(
    "patch, field",
    [
        ({"consecutive_absence_threshold": 0}, "consecutive_absence_threshold"),
        ({"consecutive_absence_threshold": 31}, "consecutive_absence_threshold"),
        ({"low_attendance_threshold": 101}, "low_attendance_threshold"),
        ({"low_attendance_threshold": -1}, "low_attendance_threshold"),
    ],
)
async def test_config_update_rejects_out_of_range(alert_engine, config_repo, patch, field):
    with pytest.raises(ValidationError) as exc:
        await alert_engine.update_config(AlertConfigUpdate(**patch), "admin-1")

    assert field in exc.value.errors
    assert config_repo.config is None


async def test_acknowledge_many_and_dismiss(alert_engine, alert_repo, attendance_repo, directory):
    directory.add_student("s2", "Ben", "Ong")
    seed(attendance_repo, "s1", [A, A, A])
    seed(attendance_repo, "s2", [A, A, A])
    alerts = (await alert_engine.scan()).alerts

    with pytest.raises(ValidationError):
        await alert_engine.acknowledge_many([], "admin-1")
    modified = await alert_engine.acknowledge_many([a.id for a in alerts], "admin-1")
    await alert_engine.dismiss(alerts[0].id)

    assert modified == 2
    assert list(alert_repo.alerts) == [alerts[1].id]
    assert alert_repo.alerts[alerts[1].id].acknowledged_by == "admin-1"
    with pytest.raises(NotFoundError):
        await alert_engine.dismiss(alerts[0].id)


async def test_summary_and_listing(alert_engine, attendance_repo, directory):
    directory.add_student("s2", "Ben", "Ong")
    seed(attendance_repo, "s1", [A] * 5)
    seed(attendance_repo, "s2", [A] * 3)
    alerts = (await alert_engine.scan()).alerts
    await alert_engine.acknowledge(alerts[0].id, "admin-1")

    summary = await alert_engine.summary()
    page = await alert_engine.list_alerts(AlertFilters(acknowledged=False))

    assert summary.total == 2
    assert summary.critical == 1
    assert summary.warning == 1
    assert summary.unacknowledged == 1
    assert summary.by_type == {"consecutive_absence": 2}
    assert page.total == 1
    assert page.items[0].student_id == "s2"


async def test_consecutive_absence_report_creates_no_alerts(alert_engine, alert_repo, attendance_repo, directory):
    directory.add_student("s2", "Ben", "Ong")
    seed(attendance_repo, "s1", [P, A, A, A, A])
    seed(attendance_repo, "s2", [A, A, P])

    rows = await alert_engine.consecutive_absence_report(3)

    assert [(r.student_id, r.consecutive_days) for r in rows] == [("s1", 4)]
    assert alert_repo.alerts == {}


async def test_low_attendance_report_sorted_lowest_first(alert_engine, attendance_repo, directory):
    directory.add_student("s2", "Ben", "Ong")
    seed(attendance_repo, "s1", [A, A, P, P, P])  # 60%
    seed(attendance_repo, "s2", [A, A, A, A, P])  # 20%

    rows = await alert_engine.low_attendance_report(80)

    assert [r.student_id for r in rows] == ["s2", "s1"]
    assert [r.attendance_rate for r in rows] == [20, 60]
