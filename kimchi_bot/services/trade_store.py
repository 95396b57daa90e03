"""Trade record store: append/update interface for `trade_history` rows.

Every call opens its own session and commits, so each status change is
visible to other readers as soon as it happens.

Lifecycle:
    pending -> buying -> transferring -> selling -> completed
    any non-terminal status -> failed
"""

import logging
from datetime import datetime, time, timezone

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from kimchi_bot.database import engine as default_engine
from kimchi_bot.engine.errors import InvalidTransitionError
from kimchi_bot.models.trade import TERMINAL_STATUSES, TradeRecord, TradeStatus
from kimchi_bot.services.trade_math import ProfitBreakdown

logger = logging.getLogger(__name__)

_NEXT_STATUS = {
    TradeStatus.PENDING: TradeStatus.BUYING,
    TradeStatus.BUYING: TradeStatus.TRANSFERRING,
    TradeStatus.TRANSFERRING: TradeStatus.SELLING,
    TradeStatus.SELLING: TradeStatus.COMPLETED,
}


def can_transition(current: TradeStatus, target: TradeStatus) -> bool:
    if current in TERMINAL_STATUSES:
        return False
    if target == TradeStatus.FAILED:
        return True
    return _NEXT_STATUS.get(current) == target


class TradeStore:
    def __init__(self, db_engine: Engine | None = None):
        self.engine = db_engine or default_engine

    def create_pending(self, user_id: int | None, coin_id: int, is_dry_run: bool = True) -> TradeRecord:
        with Session(self.engine) as session:
            trade = TradeRecord(
                user_id=user_id,
                coin_id=coin_id,
                status=TradeStatus.PENDING.value,
                is_dry_run=is_dry_run,
            )
            session.add(trade)
            session.commit()
            session.refresh(trade)
        logger.info(f"[trade {trade.id}] Created pending record (user={user_id}, coin={coin_id})")
        return trade

    def record_parameters(
        self,
        trade_id: int,
        buy_exchange_id: int,
        sell_exchange_id: int,
        direction: str,
        buy_price: float,
        sell_price: float,
        quantity: float,
    ) -> TradeRecord:
        with Session(self.engine) as session:
            trade = self._get_open(session, trade_id)
            trade.buy_exchange_id = buy_exchange_id
            trade.sell_exchange_id = sell_exchange_id
            trade.direction = direction
            trade.buy_price = buy_price
            trade.sell_price = sell_price
            trade.quantity = quantity
            session.add(trade)
            session.commit()
            session.refresh(trade)
            return trade

    def transition(self, trade_id: int, status: TradeStatus) -> TradeRecord:
        """Move a trade one step forward. `completed` and `failed` have dedicated calls."""
        if status in TERMINAL_STATUSES:
            raise InvalidTransitionError(f"Use complete()/fail() to move trade {trade_id} to {status.value}")
        with Session(self.engine) as session:
            trade = self._get_open(session, trade_id)
            self._check(trade, status)
            trade.status = status.value
            session.add(trade)
            session.commit()
            session.refresh(trade)
        logger.info(f"[trade {trade_id}] -> {status.value}")
        return trade

    def complete(self, trade_id: int, profit: ProfitBreakdown) -> TradeRecord:
        with Session(self.engine) as session:
            trade = self._get_open(session, trade_id)
            self._check(trade, TradeStatus.COMPLETED)
            trade.gross_profit = profit.gross_profit
            trade.net_profit = profit.net_profit
            trade.profit_rate = profit.profit_rate
            trade.trading_fees = profit.trading_fees
            trade.transfer_fees = profit.transfer_fees
            trade.status = TradeStatus.COMPLETED.value
            trade.completed_at = datetime.now(timezone.utc)
            session.add(trade)
            session.commit()
            session.refresh(trade)
        logger.info(
            f"[trade {trade_id}] completed: net={profit.net_profit:,.0f} KRW ({profit.profit_rate:.3f}%)"
        )
        return trade

    def fail(self, trade_id: int, message: str) -> TradeRecord:
        with Session(self.engine) as session:
            trade = self._get_open(session, trade_id)
            self._check(trade, TradeStatus.FAILED)
            trade.status = TradeStatus.FAILED.value
            trade.error_message = message[:1000]
            trade.completed_at = datetime.now(timezone.utc)
            session.add(trade)
            session.commit()
            session.refresh(trade)
        logger.warning(f"[trade {trade_id}] failed: {message}")
        return trade

    def get(self, trade_id: int) -> TradeRecord | None:
        with Session(self.engine) as session:
            return session.get(TradeRecord, trade_id)

    def list_trades(
        self,
        user_id: int | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[TradeRecord]:
        with Session(self.engine) as session:
            stmt = select(TradeRecord).order_by(TradeRecord.created_at.desc(), TradeRecord.id.desc())
            if user_id is not None:
                stmt = stmt.where(TradeRecord.user_id == user_id)
            if status is not None:
                stmt = stmt.where(TradeRecord.status == status)
            return list(session.exec(stmt.offset(offset).limit(limit)).all())

    def count_today(self, user_id: int | None) -> int:
        """Trades created since midnight UTC, any status."""
        start = datetime.combine(datetime.now(timezone.utc).date(), time.min, tzinfo=timezone.utc)
        with Session(self.engine) as session:
            stmt = select(func.count()).select_from(TradeRecord).where(TradeRecord.created_at >= start)
            if user_id is None:
                stmt = stmt.where(TradeRecord.user_id == None)  # noqa: E711
            else:
                stmt = stmt.where(TradeRecord.user_id == user_id)
            return session.exec(stmt).one()

    def _get_open(self, session: Session, trade_id: int) -> TradeRecord:
        trade = session.get(TradeRecord, trade_id)
        if not trade:
            raise ValueError(f"Trade {trade_id} not found")
        if TradeStatus(trade.status) in TERMINAL_STATUSES:
            raise InvalidTransitionError(f"Trade {trade_id} is already {trade.status}")
        return trade

    def _check(self, trade: TradeRecord, target: TradeStatus):
        current = TradeStatus(trade.status)
        if not can_transition(current, target):
            raise InvalidTransitionError(
                f"Trade {trade.id}: {current.value} -> {target.value} not allowed"
            )
