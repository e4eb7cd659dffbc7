"""Beanie document models and Pydantic schemas."""
from rollcall.models.activity import ActivityEntry, ActivityLogDocument, RecordType
from rollcall.models.alert import (
    Alert,
    AlertDocument,
    AlertFilters,
    AlertSeverity,
    AlertType,
    ConsecutiveAbsenceDetails,
    LowAttendanceDetails,
)
from rollcall.models.alert_config import AlertConfig, AlertConfigDocument, AlertConfigUpdate, EmailRecipient
from rollcall.models.attendance import (
    AttendanceDocument,
    AttendanceFilters,
    AttendanceHistoryDocument,
    AttendanceKey,
    AttendanceMark,
    AttendanceRecord,
    AttendanceStatus,
    AttendanceUpdate,
    HistoryEntry,
    ScopedKey,
    TimeSlot,
    UnscopedKey,
)
from rollcall.models.student import EnrollmentDocument, Student, StudentDocument, Subject, SubjectDocument

__all__ = [
    "ActivityEntry",
    "ActivityLogDocument",
    "RecordType",
    "Alert",
    "AlertDocument",
    "AlertFilters",
    "AlertSeverity",
    "AlertType",
    "ConsecutiveAbsenceDetails",
    "LowAttendanceDetails",
    "AlertConfig",
    "AlertConfigDocument",
    "AlertConfigUpdate",
    "EmailRecipient",
    "AttendanceDocument",
    "AttendanceFilters",
    "AttendanceHistoryDocument",
    "AttendanceKey",
    "AttendanceMark",
    "AttendanceRecord",
    "AttendanceStatus",
    "AttendanceUpdate",
    "HistoryEntry",
    "ScopedKey",
    "TimeSlot",
    "UnscopedKey",
    "EnrollmentDocument",
    "Student",
    "StudentDocument",
    "Subject",
    "SubjectDocument",
]
