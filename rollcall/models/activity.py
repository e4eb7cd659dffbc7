"""Activity log: what happened to attendance and alerts, for compliance."""
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from beanie import Document
from pydantic import BaseModel, Field


class RecordType(str, Enum):
    ATTENDANCE_MARKED = "ATTENDANCE_MARKED"
    ATTENDANCE_UPDATED = "ATTENDANCE_UPDATED"
    ATTENDANCE_DELETED = "ATTENDANCE_DELETED"
    EMAIL_SENT = "EMAIL_SENT"
    ALERT_NOTIFIED = "ALERT_NOTIFIED"


class ActivityEntry(BaseModel):
    record_type: RecordType
    record_data: str
    student_id: Optional[str] = None
    subject_id: Optional[str] = None
    performed_by: Optional[str] = None  # user_id
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ActivityLogDocument(Document, ActivityEntry):
    class Settings:
        name = "activity_logs"
        indexes = ["student_id", "created_at"]
