"""Tests for trade execution: preconditions, locking, the status sequence and failure capture."""

import asyncio
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from conftest import FakeAdapter, domestic_books, overseas_books
from kimchi_bot.engine.trade_executor import TradeExecutor
from kimchi_bot.models import Coin, DepositAddress, ExchangeCredential, TradeRecord, TradeStatus
from kimchi_bot.services.settings_store import update_bot_settings


@pytest.fixture
def executor(db, redis_client, domestic_adapter, overseas_adapter, fx_provider, fast_settings):
    return TradeExecutor(
        redis_client,
        domestic=domestic_adapter,
        overseas=overseas_adapter,
        fx_provider=fx_provider,
        db_engine=db,
        settings=fast_settings,
    )


def _trades(db) -> list[TradeRecord]:
    with Session(db) as session:
        return list(session.exec(select(TradeRecord)).all())


# ---------------------------------------------------------------------------
# 1. Happy path
# ---------------------------------------------------------------------------

class TestDryRun:
    @pytest.mark.asyncio
    async def test_completes_with_profit(self, db, executor, trading_user, redis_client):
        result = await executor.execute_once(trading_user, "btc", 2_000_000)

        assert result.success is True
        assert result.error is None
        trade = executor.store.get(result.trade_id)
        assert trade.status == TradeStatus.COMPLETED.value
        assert trade.completed_at is not None
        assert trade.is_dry_run is True
        assert trade.direction == "binance->upbit"
        assert trade.quantity > 0
        assert trade.net_profit == pytest.approx(result.net_profit)
        assert trade.net_profit == pytest.approx(
            trade.gross_profit - trade.trading_fees - trade.transfer_fees
        )
        assert await redis_client.exists(f"lock:trade:{trading_user}:BTC") == 0

    @pytest.mark.asyncio
    async def test_status_sequence_is_persisted_in_order(self, executor, trading_user):
        executor.store.transition = MagicMock(wraps=executor.store.transition)

        result = await executor.execute_once(trading_user, "BTC", 2_000_000)

        assert result.success
        statuses = [c.args[1] for c in executor.store.transition.call_args_list]
        assert statuses == [TradeStatus.BUYING, TradeStatus.TRANSFERRING, TradeStatus.SELLING]

    @pytest.mark.asyncio
    async def test_negative_premium_reverses_direction(self, db, redis_client, fx_provider, fast_settings,
                                                        trading_user):
        cheap_domestic = {"BTC": 95_000_000.0}
        executor = TradeExecutor(
            redis_client,
            domestic=FakeAdapter("upbit", domestic_books(cheap_domestic)),
            overseas=FakeAdapter("binance", overseas_books()),
            fx_provider=fx_provider,
            db_engine=db,
            settings=fast_settings,
        )
        result = await executor.execute_once(trading_user, "BTC", 2_000_000)
        trade = executor.store.get(result.trade_id)
        assert trade.direction == "upbit->binance"


# ---------------------------------------------------------------------------
# 2. Preconditions: no record, no lock
# ---------------------------------------------------------------------------

class TestValidation:
    async def _assert_rejected(self, db, executor, redis_client, user_id, budget=2_000_000, contains=""):
        result = await executor.execute_once(user_id, "BTC", budget)
        assert result.success is False
        assert result.trade_id is None
        assert contains in result.error
        assert _trades(db) == []
        assert await redis_client.keys("lock:*") == []
        return result

    @pytest.mark.asyncio
    async def test_budget_out_of_bounds(self, db, executor, redis_client, trading_user):
        await self._assert_rejected(db, executor, redis_client, trading_user, budget=500_000, contains="Budget")
        await self._assert_rejected(db, executor, redis_client, trading_user, budget=20_000_000, contains="Budget")

    @pytest.mark.asyncio
    async def test_missing_required_settings(self, db, executor, redis_client):
        result = await self._assert_rejected(db, executor, redis_client, user_id=999, contains="incomplete")
        assert result.error_type == "ConfigurationError"

    @pytest.mark.asyncio
    async def test_coin_not_tradable(self, db, executor, redis_client, trading_user):
        with Session(db) as session:
            btc = session.exec(select(Coin).where(Coin.symbol == "BTC")).one()
            btc.is_tradable = False
            session.add(btc)
            session.commit()
        await self._assert_rejected(db, executor, redis_client, trading_user, contains="not tradable")

    @pytest.mark.asyncio
    async def test_needs_two_verified_credentials(self, db, executor, redis_client, trading_user):
        with Session(db) as session:
            cred = session.exec(select(ExchangeCredential)).first()
            cred.is_verified = False
            session.add(cred)
            session.commit()
        await self._assert_rejected(db, executor, redis_client, trading_user, contains="Verified API keys")

    @pytest.mark.asyncio
    async def test_needs_both_deposit_addresses(self, db, executor, redis_client, trading_user):
        with Session(db) as session:
            session.delete(session.exec(select(DepositAddress)).first())
            session.commit()
        await self._assert_rejected(db, executor, redis_client, trading_user, contains="deposit addresses")

    @pytest.mark.asyncio
    async def test_emergency_stop_blocks_trading(self, db, executor, redis_client, trading_user):
        update_bot_settings({"emergency_stop": True}, db_engine=db)
        await self._assert_rejected(db, executor, redis_client, trading_user, contains="Emergency stop")

    @pytest.mark.asyncio
    async def test_daily_trade_limit(self, db, executor, redis_client, trading_user):
        update_bot_settings({"max_daily_trades": 1}, user_id=trading_user, db_engine=db)
        first = await executor.execute_once(trading_user, "BTC", 2_000_000)
        assert first.success

        second = await executor.execute_once(trading_user, "BTC", 2_000_000)
        assert second.success is False
        assert "Daily trade limit" in second.error
        assert len(_trades(db)) == 1


# ---------------------------------------------------------------------------
# 3. Locking
# ---------------------------------------------------------------------------

class TestLocking:
    @pytest.mark.asyncio
    async def test_concurrent_same_pair_runs_once(self, db, executor, trading_user):
        results = await asyncio.gather(
            executor.execute_once(trading_user, "BTC", 2_000_000),
            executor.execute_once(trading_user, "BTC", 2_000_000),
        )

        succeeded = [r for r in results if r.success]
        rejected = [r for r in results if not r.success]
        assert len(succeeded) == 1
        assert len(rejected) == 1
        assert rejected[0].error_type == "ConcurrencyError"
        assert rejected[0].trade_id is None
        assert len(_trades(db)) == 1

    @pytest.mark.asyncio
    async def test_held_lock_rejects_without_record(self, db, executor, redis_client, trading_user):
        await redis_client.set(f"lock:trade:{trading_user}:BTC", "someone-else", ex=300)

        result = await executor.execute_once(trading_user, "BTC", 2_000_000)

        assert result.error_type == "ConcurrencyError"
        assert "already in progress" in result.error
        assert _trades(db) == []
        assert await redis_client.get(f"lock:trade:{trading_user}:BTC") == "someone-else"


# ---------------------------------------------------------------------------
# 4. Failures after the record exists
# ---------------------------------------------------------------------------

class TestFailures:
    @pytest.mark.asyncio
    async def test_live_mode_fails_loudly(self, db, executor, trading_user, redis_client):
        result = await executor.execute_once(trading_user, "BTC", 2_000_000, dry_run=False)

        assert result.success is False
        assert result.error_type == "ExecutionStepError"
        assert "not implemented" in result.error
        trade = executor.store.get(result.trade_id)
        assert trade.status == TradeStatus.FAILED.value
        assert trade.is_dry_run is False
        assert trade.completed_at is not None
        assert "not implemented" in trade.error_message
        assert await redis_client.keys("lock:*") == []

    @pytest.mark.asyncio
    async def test_market_analysis_failure_marks_trade_failed(self, db, redis_client, fx_provider,
                                                              fast_settings, trading_user):
        executor = TradeExecutor(
            redis_client,
            domestic=FakeAdapter("upbit", domestic_books()),
            overseas=FakeAdapter("binance", overseas_books(), failing={"BTCUSDT"}),
            fx_provider=fx_provider,
            db_engine=db,
            settings=fast_settings,
        )
        result = await executor.execute_once(trading_user, "BTC", 2_000_000)

        assert result.success is False
        assert result.error_type == "NetworkError"
        trade = executor.store.get(result.trade_id)
        assert trade.status == TradeStatus.FAILED.value
        assert trade.completed_at is not None
        assert await redis_client.keys("lock:*") == []

    @pytest.mark.asyncio
    async def test_phase_failure_keeps_reached_status_history(self, executor, trading_user):
        executor._transfer = MagicMock(side_effect=RuntimeError("withdrawal rejected"))
        executor.store.transition = MagicMock(wraps=executor.store.transition)

        result = await executor.execute_once(trading_user, "BTC", 2_000_000)

        statuses = [c.args[1] for c in executor.store.transition.call_args_list]
        assert statuses == [TradeStatus.BUYING, TradeStatus.TRANSFERRING]
        trade = executor.store.get(result.trade_id)
        assert trade.status == TradeStatus.FAILED.value
        assert trade.error_message == "withdrawal rejected"

    @pytest.mark.asyncio
    async def test_record_creation_failure_releases_lock(self, db, executor, trading_user, redis_client):
        executor.store.create_pending = MagicMock(side_effect=SQLAlchemyError("database is locked"))

        result = await executor.execute_once(trading_user, "BTC", 2_000_000)

        assert result.success is False
        assert result.trade_id is None
        assert result.error_type == "SQLAlchemyError"
        assert "database is locked" in result.error
        assert _trades(db) == []
        assert await redis_client.keys("lock:*") == []
