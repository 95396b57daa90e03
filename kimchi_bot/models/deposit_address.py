"""DepositAddress model: where a user's coins land on each exchange."""

from datetime import datetime, timezone

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class DepositAddress(SQLModel, table=True):
    __tablename__ = "deposit_address"
    __table_args__ = (
        UniqueConstraint("user_id", "exchange_id", "symbol", name="uq_deposit_user_exchange_symbol"),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    exchange_id: int = Field(foreign_key="exchange.id")
    symbol: str
    address: str
    memo: str | None = None  # destination tag / memo for XRP-like networks
    is_active: bool = True
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
