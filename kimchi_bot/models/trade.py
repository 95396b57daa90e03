"""TradeRecord model: lifecycle of one buy/transfer/sell arbitrage execution."""

from datetime import datetime, timezone
from enum import Enum

from sqlmodel import SQLModel, Field


class TradeStatus(str, Enum):
    PENDING = "pending"
    BUYING = "buying"
    TRANSFERRING = "transferring"
    SELLING = "selling"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {TradeStatus.COMPLETED, TradeStatus.FAILED}


class TradeRecord(SQLModel, table=True):
    __tablename__ = "trade_history"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int | None = Field(default=None, foreign_key="user.id", index=True)
    coin_id: int = Field(foreign_key="coin.id")
    buy_exchange_id: int | None = Field(default=None, foreign_key="exchange.id")
    sell_exchange_id: int | None = Field(default=None, foreign_key="exchange.id")
    direction: str | None = None  # e.g. "binance->upbit"
    buy_price: float = 0.0
    sell_price: float = 0.0
    quantity: float = 0.0
    gross_profit: float = 0.0
    net_profit: float = 0.0
    profit_rate: float = 0.0
    trading_fees: float = 0.0
    transfer_fees: float = 0.0
    status: str = Field(default=TradeStatus.PENDING.value, index=True)
    is_dry_run: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    completed_at: datetime | None = None
    error_message: str | None = None
