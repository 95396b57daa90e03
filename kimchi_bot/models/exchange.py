"""Exchange model: the venues the engine can quote and trade on."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class Exchange(SQLModel, table=True):
    __tablename__ = "exchange"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)  # adapter key: "upbit", "binance", ...
    display_name: str = ""
    type: str = "domestic"  # "domestic" or "overseas"
    trading_fee_rate: float = 0.0025
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
