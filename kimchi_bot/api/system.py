"""System API: health check, scheduler status, monitor logs, global settings, emergency stop."""

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlmodel import Session, select

from kimchi_bot.database import get_session
from kimchi_bot.models.monitor_log import MonitorLog
from kimchi_bot.api.deps import get_monitor
from kimchi_bot.engine.monitor import KimchiMonitor
from kimchi_bot.schemas.bot_settings import BotSettingsUpdate
from kimchi_bot.services import settings_store

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/scheduler")
def scheduler_status():
    """Current scheduler state with job details."""
    from kimchi_bot.engine.scheduler import get_scheduler_status
    return get_scheduler_status()


@router.get("/logs")
def monitor_logs(
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
    session: Session = Depends(get_session),
):
    stmt = select(MonitorLog).order_by(MonitorLog.timestamp.desc())
    if status is not None:
        stmt = stmt.where(MonitorLog.status == status)
    stmt = stmt.offset(offset).limit(limit)
    return session.exec(stmt).all()


@router.get("/settings")
def get_global_settings():
    return settings_store.get_bot_settings(None)


@router.put("/settings")
def update_global_settings(body: BotSettingsUpdate, request: Request):
    """Update global bot settings. A new interval reschedules a running monitor."""
    values = body.model_dump(exclude_unset=True)
    if not values:
        raise HTTPException(status_code=400, detail="No settings provided")
    updated = settings_store.update_bot_settings(values, user_id=None)
    monitor = getattr(request.app.state, "monitor", None)
    if monitor is not None and "search_interval_seconds" in values:
        monitor.refresh_interval()
    return updated


@router.put("/users/{user_id}/settings")
def update_user_settings(user_id: int, body: BotSettingsUpdate):
    values = body.model_dump(exclude_unset=True)
    if not values:
        raise HTTPException(status_code=400, detail="No settings provided")
    return settings_store.update_bot_settings(values, user_id=user_id)


class EmergencyStopRequest(BaseModel):
    disable_bots: bool = True


@router.post("/emergency-stop")
async def emergency_stop(body: EmergencyStopRequest, monitor: KimchiMonitor = Depends(get_monitor)):
    """Emergency stop: halt monitoring, block new trades and optionally disable all user bots."""
    from kimchi_bot.services.emergency_stop import run_emergency_stop

    result = await run_emergency_stop(monitor, disable_bots=body.disable_bots)
    return result
