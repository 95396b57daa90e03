"""Shared API dependencies."""

from fastapi import HTTPException, Request, status

from kimchi_bot.engine.monitor import KimchiMonitor
from kimchi_bot.engine.trade_executor import TradeExecutor


def get_monitor(request: Request) -> KimchiMonitor:
    """The application's monitor, built in the lifespan handler."""
    monitor = getattr(request.app.state, "monitor", None)
    if monitor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Monitor not initialized",
        )
    return monitor


def get_executor(request: Request) -> TradeExecutor:
    executor = getattr(request.app.state, "executor", None)
    if executor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Trade executor not initialized",
        )
    return executor
