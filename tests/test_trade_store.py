"""Tests for the trade record lifecycle."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session, select

from kimchi_bot.engine.errors import InvalidTransitionError
from kimchi_bot.models import Coin, TradeRecord, TradeStatus
from kimchi_bot.services.trade_math import ProfitBreakdown
from kimchi_bot.services.trade_store import TradeStore, can_transition


@pytest.fixture
def store(db):
    return TradeStore(db)


@pytest.fixture
def btc_id(db):
    with Session(db) as session:
        return session.exec(select(Coin.id).where(Coin.symbol == "BTC")).one()


def _profit() -> ProfitBreakdown:
    return ProfitBreakdown(
        gross_profit=50_000.0, trading_fees=10_000.0, transfer_fees=5_000.0,
        net_profit=35_000.0, profit_rate=1.75,
    )


class TestTransitions:
    def test_forward_chain(self):
        assert can_transition(TradeStatus.PENDING, TradeStatus.BUYING)
        assert can_transition(TradeStatus.BUYING, TradeStatus.TRANSFERRING)
        assert can_transition(TradeStatus.TRANSFERRING, TradeStatus.SELLING)
        assert can_transition(TradeStatus.SELLING, TradeStatus.COMPLETED)

    def test_no_skipping_or_going_back(self):
        assert not can_transition(TradeStatus.PENDING, TradeStatus.SELLING)
        assert not can_transition(TradeStatus.SELLING, TradeStatus.BUYING)
        assert not can_transition(TradeStatus.PENDING, TradeStatus.COMPLETED)

    @pytest.mark.parametrize("status", [TradeStatus.PENDING, TradeStatus.BUYING, TradeStatus.SELLING])
    def test_any_open_status_can_fail(self, status):
        assert can_transition(status, TradeStatus.FAILED)

    @pytest.mark.parametrize("terminal", [TradeStatus.COMPLETED, TradeStatus.FAILED])
    def test_terminal_is_final(self, terminal):
        for target in TradeStatus:
            assert not can_transition(terminal, target)


class TestTradeStore:
    def test_full_lifecycle(self, store, btc_id):
        trade = store.create_pending(None, btc_id, is_dry_run=True)
        assert trade.status == "pending"

        store.record_parameters(trade.id, 3, 1, "binance->upbit", 97_600_000.0, 100_800_000.0, 0.02)
        for status in (TradeStatus.BUYING, TradeStatus.TRANSFERRING, TradeStatus.SELLING):
            store.transition(trade.id, status)
        done = store.complete(trade.id, _profit())

        assert done.status == "completed"
        assert done.net_profit == 35_000.0
        assert done.direction == "binance->upbit"
        assert done.completed_at is not None

    def test_completing_early_is_rejected(self, store, btc_id):
        trade = store.create_pending(None, btc_id)
        store.transition(trade.id, TradeStatus.BUYING)
        with pytest.raises(InvalidTransitionError):
            store.complete(trade.id, _profit())
        assert store.get(trade.id).status == "buying"

    def test_terminal_targets_need_dedicated_calls(self, store, btc_id):
        trade = store.create_pending(None, btc_id)
        with pytest.raises(InvalidTransitionError):
            store.transition(trade.id, TradeStatus.FAILED)

    def test_failed_trade_is_frozen(self, store, btc_id):
        trade = store.create_pending(None, btc_id)
        failed = store.fail(trade.id, "exchange down")
        assert failed.status == "failed"
        assert failed.error_message == "exchange down"
        assert failed.completed_at is not None

        with pytest.raises(InvalidTransitionError):
            store.transition(trade.id, TradeStatus.BUYING)
        with pytest.raises(InvalidTransitionError):
            store.fail(trade.id, "again")

    def test_unknown_trade(self, store):
        with pytest.raises(ValueError):
            store.transition(9999, TradeStatus.BUYING)

    def test_list_filters_and_orders(self, store, btc_id):
        first = store.create_pending(1, btc_id)
        second = store.create_pending(1, btc_id)
        store.create_pending(2, btc_id)
        store.fail(first.id, "x")

        assert [t.id for t in store.list_trades(user_id=1)] == [second.id, first.id]
        assert [t.id for t in store.list_trades(status="failed")] == [first.id]

    def test_count_today_ignores_older_trades(self, db, store, btc_id):
        store.create_pending(1, btc_id)
        with Session(db) as session:
            session.add(TradeRecord(
                user_id=1, coin_id=btc_id, created_at=datetime.now(timezone.utc) - timedelta(days=2)
            ))
            session.commit()

        assert store.count_today(1) == 1
        assert store.count_today(2) == 0
