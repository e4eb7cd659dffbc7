"""Errors raised by the attendance and alert services."""
from typing import Optional

from rollcall.models.attendance import AttendanceRecord


class DomainError(Exception):
    """Base exception for business rule violations."""


class NotFoundError(DomainError):
    def __init__(self, resource: str, identifier: Optional[str] = None):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found")


class ConflictError(DomainError):
    """Attendance already marked for this key; `existing` is the stored record."""

    def __init__(self, existing: AttendanceRecord, message: str = "Attendance already marked for this student and date"):
        self.existing = existing
        super().__init__(message)


class EnrollmentRequiredError(DomainError):
    def __init__(self, student_id: str, subject_id: str):
        self.student_id = student_id
        self.subject_id = subject_id
        super().__init__("Student is not enrolled in this subject")


class ValidationError(DomainError):
    """Invalid input; `errors` maps field name to message."""

    def __init__(self, errors: dict[str, str]):
        self.errors = errors
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))


class NoRecipientsError(DomainError):
    def __init__(self, alert_id: str):
        self.alert_id = alert_id
        super().__init__("No valid email addresses found for recipients")


class StorageError(DomainError):
    """Unexpected persistence failure. Never carries driver details to callers."""

    def __init__(self, message: str = "An internal server error occurred"):
        super().__init__(message)


class DuplicateKeyError(DomainError):
    """Unique-constraint violation reported by a repository."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Duplicate key: {key}")
