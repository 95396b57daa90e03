"""Coin model: tradable assets and their per-exchange market ids."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class Coin(SQLModel, table=True):
    __tablename__ = "coin"

    id: int | None = Field(default=None, primary_key=True)
    symbol: str = Field(unique=True, index=True)  # e.g. "BTC"
    name: str = ""
    network: str | None = None
    withdrawal_fee: float = 0.0  # denominated in the coin itself
    min_withdrawal: float = 0.0
    domestic_market: str | None = None  # e.g. "KRW-BTC"
    overseas_market: str | None = None  # e.g. "BTCUSDT"
    is_active: bool = True
    is_tradable: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
