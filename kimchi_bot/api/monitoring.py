"""Monitoring API: start/stop, status, latest premiums and recent opportunities."""

from fastapi import APIRouter, Depends, HTTPException

from kimchi_bot.api.deps import get_monitor
from kimchi_bot.engine.monitor import KimchiMonitor

router = APIRouter(prefix="/api/monitoring", tags=["monitoring"])


@router.post("/start")
async def start_monitoring(monitor: KimchiMonitor = Depends(get_monitor)):
    started = await monitor.start()
    if not started and not monitor.is_running:
        raise HTTPException(status_code=500, detail="Initial monitoring cycle failed")
    return {"started": started, "status": monitor.get_status()}


@router.post("/stop")
async def stop_monitoring(monitor: KimchiMonitor = Depends(get_monitor)):
    stopped = await monitor.stop()
    return {"stopped": stopped, "status": monitor.get_status()}


@router.get("/status")
def monitoring_status(monitor: KimchiMonitor = Depends(get_monitor)):
    return monitor.get_status()


@router.post("/run-once")
async def run_once(monitor: KimchiMonitor = Depends(get_monitor)):
    """Run a single cycle outside the schedule."""
    return await monitor.monitor_all_coins()


@router.get("/latest")
async def latest_results(monitor: KimchiMonitor = Depends(get_monitor)):
    return await monitor.get_latest_results()


@router.get("/users/{user_id}/latest")
async def user_latest_results(user_id: int, monitor: KimchiMonitor = Depends(get_monitor)):
    return await monitor.get_user_latest_results(user_id)


@router.get("/opportunities")
async def recent_opportunities(
    limit: int = 100,
    user_id: int | None = None,
    monitor: KimchiMonitor = Depends(get_monitor),
):
    """Newest-first opportunity history, optionally filtered to one user's scope."""
    items = await monitor.cache.get_opportunities()
    if user_id is not None:
        items = [o for o in items if o.get("user_id") == user_id]
    return items[:limit]
