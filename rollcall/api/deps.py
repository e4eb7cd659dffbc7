"""Shared dependencies: JWT auth, role checks and service wiring."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from rollcall.config import settings
from rollcall.repositories.mongo import (
    MongoActivitySink,
    MongoAlertConfigRepository,
    MongoAlertRepository,
    MongoAttendanceRepository,
    MongoDirectoryRepository,
)
from rollcall.services.alerts import AlertEngine
from rollcall.services.attendance import AttendanceEngine
from rollcall.services.notifications import BrevoDispatcher
from rollcall.services.scheduler import AlertScanScheduler
from rollcall.services.summary import SummaryCalculator

security = HTTPBearer(auto_error=False)

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Actor:
    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def create_access_token(subject: str, role: str) -> str:
    expire = datetime.utcnow() + timedelta(minutes=settings.jwt_access_token_expire_minutes)
    to_encode = {"sub": subject, "role": role, "exp": expire, "type": "access"}
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


async def get_current_actor(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Actor:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(credentials.credentials, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    actor_id = payload.get("sub")
    if not actor_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return Actor(id=actor_id, role=payload.get("role") or "")


async def require_admin(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return actor


# Service wiring. Engines are stateless apart from their repositories, so one
# instance per process is enough; the scheduler must be shared for its guard.

@lru_cache
def get_dispatcher() -> BrevoDispatcher:
    return BrevoDispatcher(settings.brevo_api_key, settings.mail_default_sender, settings.app_name)


@lru_cache
def get_attendance_engine() -> AttendanceEngine:
    return AttendanceEngine(
        MongoAttendanceRepository(),
        MongoDirectoryRepository(),
        get_dispatcher(),
        MongoActivitySink(),
        send_delay=settings.notification_send_delay_ms / 1000,
    )


@lru_cache
def get_summary_calculator() -> SummaryCalculator:
    return SummaryCalculator(MongoAttendanceRepository(), MongoDirectoryRepository())


@lru_cache
def get_alert_engine() -> AlertEngine:
    return AlertEngine(
        MongoAlertRepository(),
        MongoAlertConfigRepository(),
        MongoAttendanceRepository(),
        MongoDirectoryRepository(),
        get_dispatcher(),
        MongoActivitySink(),
        scan_buffer=settings.consecutive_scan_buffer,
        scan_floor=settings.low_attendance_scan_floor,
        report_floor=settings.low_attendance_report_floor,
        send_delay=settings.notification_send_delay_ms / 1000,
        school_name=settings.school_name,
    )


@lru_cache
def get_scheduler() -> AlertScanScheduler:
    return AlertScanScheduler(
        get_alert_engine(),
        hour=settings.alert_scan_hour,
        minute=settings.alert_scan_minute,
    )


# Type aliases for route injection
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
AdminOnly = Annotated[Actor, Depends(require_admin)]
Attendance = Annotated[AttendanceEngine, Depends(get_attendance_engine)]
Summaries = Annotated[SummaryCalculator, Depends(get_summary_calculator)]
Alerts = Annotated[AlertEngine, Depends(get_alert_engine)]
Scheduler = Annotated[AlertScanScheduler, Depends(get_scheduler)]
