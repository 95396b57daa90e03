"""MonitorLog model: per-cycle summary of the premium monitor."""

from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON


class MonitorLog(SQLModel, table=True):
    __tablename__ = "monitor_log"

    id: int | None = Field(default=None, primary_key=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    status: str  # "success", "partial", "error"
    total_coins: int = 0
    successful: int = 0
    failed: int = 0
    total_time_ms: float | None = None
    message: str | None = None
    premiums: list[dict[str, Any]] | None = Field(default=None, sa_column=Column(JSON))
