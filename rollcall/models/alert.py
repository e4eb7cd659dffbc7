"""Attendance alerts raised by the scan."""
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

import pymongo
from beanie import Document
from pydantic import BaseModel, Field


class AlertType(str, Enum):
    CONSECUTIVE_ABSENCE = "consecutive_absence"
    LOW_ATTENDANCE = "low_attendance"


class AlertSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class ConsecutiveAbsenceDetails(BaseModel):
    kind: Literal["consecutive_absence"] = "consecutive_absence"
    consecutive_days: int
    start_date: date
    end_date: date
    threshold: int


class LowAttendanceDetails(BaseModel):
    kind: Literal["low_attendance"] = "low_attendance"
    attendance_rate: int  # whole percent
    threshold: float


AlertDetails = Annotated[
    Union[ConsecutiveAbsenceDetails, LowAttendanceDetails],
    Field(discriminator="kind"),
]


class AlertBase(BaseModel):
    type: AlertType
    severity: AlertSeverity
    student_id: str
    subject_id: Optional[str] = None
    message: str = Field(max_length=500)
    details: AlertDetails
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    notification_sent: bool = False
    notification_sent_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Alert(AlertBase):
    id: Optional[str] = None


class AlertFilters(BaseModel):
    type: Optional[AlertType] = None
    severity: Optional[AlertSeverity] = None
    acknowledged: Optional[bool] = None
    student_id: Optional[str] = None
    subject_id: Optional[str] = None


class AlertDocument(Document, AlertBase):
    class Settings:
        name = "alerts"
        use_state_management = True
        indexes = [
            [("student_id", pymongo.ASCENDING), ("type", pymongo.ASCENDING), ("acknowledged", pymongo.ASCENDING)],
            [("severity", pymongo.ASCENDING), ("acknowledged", pymongo.ASCENDING)],
            [("created_at", pymongo.DESCENDING)],
        ]
