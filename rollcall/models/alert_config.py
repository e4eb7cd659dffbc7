"""Single-doc alert thresholds and switches."""
from datetime import datetime
from enum import Enum
from typing import Optional

from beanie import Document
from pydantic import BaseModel, Field


class EmailRecipient(str, Enum):
    GUARDIAN = "guardian"
    STUDENT = "student"
    ADMIN = "admin"


class AlertConfig(BaseModel):
    consecutive_absence_threshold: int = Field(default=3, ge=1, le=30)
    low_attendance_threshold: float = Field(default=80, ge=0, le=100)  # percent
    enable_consecutive_alerts: bool = True
    enable_low_attendance_alerts: bool = True
    enable_pattern_alerts: bool = True
    auto_send_email: bool = False
    email_recipients: list[EmailRecipient] = Field(default_factory=lambda: [EmailRecipient.GUARDIAN])
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None


class AlertConfigUpdate(BaseModel):
    """Partial update; range checks happen in the alert service."""

    consecutive_absence_threshold: Optional[int] = None
    low_attendance_threshold: Optional[float] = None
    enable_consecutive_alerts: Optional[bool] = None
    enable_low_attendance_alerts: Optional[bool] = None
    enable_pattern_alerts: Optional[bool] = None
    auto_send_email: Optional[bool] = None
    email_recipients: Optional[list[EmailRecipient]] = None


class AlertConfigDocument(Document, AlertConfig):
    """Single-doc config (first document in the collection wins)."""

    class Settings:
        name = "alert_config"
        use_state_management = True
