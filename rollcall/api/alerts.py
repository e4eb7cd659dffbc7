from typing import Optional

from fastapi import APIRouter, Query, status
from pydantic import BaseModel

from rollcall.api.deps import AdminOnly, Alerts, CurrentActor, Scheduler
from rollcall.models.alert import Alert, AlertFilters, AlertSeverity, AlertType
from rollcall.models.alert_config import AlertConfig, AlertConfigUpdate, EmailRecipient
from rollcall.services.alerts import (
    AlertSummary,
    ConsecutiveAbsenceRow,
    LowAttendanceRow,
    NotifyResult,
    ScanResult,
)
from rollcall.services.pagination import Page

router = APIRouter()


class AcknowledgeRequest(BaseModel):
    alert_ids: list[str] = []


class AcknowledgeResult(BaseModel):
    modified_count: int


class NotifyRequest(BaseModel):
    recipients: list[EmailRecipient] = [EmailRecipient.GUARDIAN]


class ScanResponse(BaseModel):
    started: bool
    result: Optional[ScanResult] = None


@router.get("/", response_model=Page[Alert])
async def list_alerts(
    actor: CurrentActor,
    engine: Alerts,
    type: Optional[AlertType] = None,
    severity: Optional[AlertSeverity] = None,
    acknowledged: Optional[bool] = None,
    student_id: Optional[str] = None,
    subject_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
):
    filters = AlertFilters(
        type=type,
        severity=severity,
        acknowledged=acknowledged,
        student_id=student_id,
        subject_id=subject_id,
    )
    return await engine.list_alerts(filters, page, limit)


@router.get("/summary", response_model=AlertSummary)
async def alert_summary(actor: CurrentActor, engine: Alerts):
    return await engine.summary()


@router.get("/consecutive-absences", response_model=list[ConsecutiveAbsenceRow])
async def consecutive_absences(actor: CurrentActor, engine: Alerts, threshold: int = Query(3, ge=1, le=30)):
    """Students currently on an absence run; never creates alerts."""
    return await engine.consecutive_absence_report(threshold)


@router.get("/low-attendance", response_model=list[LowAttendanceRow])
async def low_attendance(actor: CurrentActor, engine: Alerts, threshold: float = Query(80, ge=0, le=100)):
    """Students under the rate threshold, lowest first; never creates alerts."""
    return await engine.low_attendance_report(threshold)


@router.get("/config", response_model=AlertConfig)
async def get_alert_config(actor: CurrentActor, engine: Alerts):
    return await engine.get_config()


@router.put("/config", response_model=AlertConfig)
async def update_alert_config(data: AlertConfigUpdate, admin: AdminOnly, engine: Alerts):
    return await engine.update_config(data, admin.id)


@router.post("/scan", response_model=ScanResponse)
async def run_scan(admin: AdminOnly, scheduler: Scheduler):
    """Run the alert scan now; reports started=false if one is already running."""
    result = await scheduler.run_once()
    return ScanResponse(started=result is not None, result=result)


@router.put("/acknowledge", response_model=AcknowledgeResult)
async def acknowledge_alerts(data: AcknowledgeRequest, actor: CurrentActor, engine: Alerts):
    modified = await engine.acknowledge_many(data.alert_ids, actor.id)
    return AcknowledgeResult(modified_count=modified)


@router.put("/{alert_id}/acknowledge", response_model=Alert)
async def acknowledge_alert(alert_id: str, actor: CurrentActor, engine: Alerts):
    return await engine.acknowledge(alert_id, actor.id)


@router.delete("/{alert_id}", status_code=status.HTTP_204_NO_CONTENT)
async def dismiss_alert(alert_id: str, actor: CurrentActor, engine: Alerts):
    await engine.dismiss(alert_id)


@router.post("/{alert_id}/notify", response_model=NotifyResult)
async def notify_alert(alert_id: str, data: NotifyRequest, actor: CurrentActor, engine: Alerts):
    return await engine.notify(alert_id, data.recipients, actor.id)
