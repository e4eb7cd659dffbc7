import os
from datetime import datetime

import pytest

# Settings refuse the placeholder JWT secret outside debug mode.
os.environ.setdefault("DEBUG", "true")

from rollcall.services.alerts import AlertEngine  # noqa: E402
from rollcall.services.attendance import AttendanceEngine  # noqa: E402
from rollcall.services.summary import SummaryCalculator  # noqa: E402
from tests.fakes import (  # noqa: E402
    FakeActivity,
    FakeAlertRepo,
    FakeAttendanceRepo,
    FakeConfigRepo,
    FakeDirectory,
    FakeDispatcher,
)

NOW = datetime(2026, 3, 16, 9, 30)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def attendance_repo():
    return FakeAttendanceRepo()


@pytest.fixture
def directory():
    d = FakeDirectory()
    d.add_subject("math", "Mathematics")
    d.add_student("s1", "Ana", "Cruz", email="ana@example.com")
    d.enroll("s1", "math")
    return d


@pytest.fixture
def alert_repo():
    return FakeAlertRepo()


@pytest.fixture
def config_repo():
    return FakeConfigRepo()


@pytest.fixture
def activity():
    return FakeActivity()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def engine(attendance_repo, directory, dispatcher, activity, clock):
    return AttendanceEngine(attendance_repo, directory, dispatcher, activity, clock=clock, send_delay=0)


@pytest.fixture
def summaries(attendance_repo, directory):
    return SummaryCalculator(attendance_repo, directory)


@pytest.fixture
def alert_engine(alert_repo, config_repo, attendance_repo, directory, dispatcher, activity, clock):
    return AlertEngine(
        alert_repo,
        config_repo,
        attendance_repo,
        directory,
        dispatcher,
        activity,
        clock=clock,
        send_delay=0,
    )
