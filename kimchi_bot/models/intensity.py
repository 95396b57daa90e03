"""TradingIntensity model: persisted accumulator state per (scope, coin)."""

from datetime import datetime, timezone

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class TradingIntensity(SQLModel, table=True):
    __tablename__ = "trading_intensity"
    __table_args__ = (UniqueConstraint("scope_key", "coin_id", name="uq_intensity_scope_coin"),)

    id: int | None = Field(default=None, primary_key=True)
    scope_key: str = Field(index=True)  # "global" or "user:<id>"
    user_id: int | None = Field(default=None, foreign_key="user.id", index=True)
    coin_id: int = Field(foreign_key="coin.id", index=True)
    current_intensity: int = Field(default=0, ge=0)
    last_premium_rate: float | None = None
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
