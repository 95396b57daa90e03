"""One-shot arbitrage trade execution.

execute_once(user_id, symbol, budget):
1. Validate preconditions (no lock, no record on failure)
2. Take the (user, symbol) lock
3. pending record -> fresh market analysis -> trade parameters
4. buying -> transferring -> selling -> completed, each status committed on its own
5. Any failure after the record exists marks it failed
6. Release the lock if we still own it

Dry-run mode simulates each phase with a delay. Live order placement and
withdrawals are not implemented and fail the trade at the buy phase.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from kimchi_bot.config import Settings, settings as default_settings
from kimchi_bot.database import engine as default_engine
from kimchi_bot.engine.errors import (
    ConcurrencyError,
    ConfigurationError,
    ExecutionStepError,
    TradeValidationError,
)
from kimchi_bot.models.coin import Coin
from kimchi_bot.models.exchange import Exchange
from kimchi_bot.models.trade import TradeStatus
from kimchi_bot.services.accounts import DepositInfo, get_deposit_address, get_verified_exchanges
from kimchi_bot.services.cache import ExecutionLock
from kimchi_bot.services.exchange_adapters import create_adapter
from kimchi_bot.services.exchange_client import ExchangeAdapter, ExchangeError
from kimchi_bot.services.fx_rate import FxRate, fetch_usd_krw_rate
from kimchi_bot.services.pricing import calculate_premium, sample_orderbook
from kimchi_bot.services.settings_store import BotSettings, get_bot_settings, missing_required_settings
from kimchi_bot.services.telegram_bot import notify
from kimchi_bot.services.trade_math import (
    MarketAnalysis,
    TradeParameters,
    calculate_profit,
    calculate_trade_parameters,
)
from kimchi_bot.services.trade_store import TradeStore

logger = logging.getLogger(__name__)


@dataclass
class TradeResult:
    success: bool
    trade_id: int | None = None
    status: str | None = None
    net_profit: float | None = None
    profit_rate: float | None = None
    error: str | None = None
    error_type: str | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "trade_id": self.trade_id,
            "status": self.status,
            "net_profit": self.net_profit,
            "profit_rate": self.profit_rate,
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass
class ExchangeRef:
    id: int
    name: str


@dataclass
class TradeContext:
    """Everything validation resolved; carried through the execution."""

    user_id: int
    symbol: str
    budget: float
    coin_id: int
    withdrawal_fee: float
    bot_settings: BotSettings
    domestic: ExchangeRef
    overseas: ExchangeRef
    addresses: dict[str, DepositInfo]  # keyed by "domestic" / "overseas"


class TradeExecutor:
    def __init__(
        self,
        redis_client: aioredis.Redis,
        domestic: ExchangeAdapter | None = None,
        overseas: ExchangeAdapter | None = None,
        store: TradeStore | None = None,
        fx_provider: Callable[[], Awaitable[FxRate]] = fetch_usd_krw_rate,
        db_engine: Engine | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or default_settings
        self.redis = redis_client
        self.engine = db_engine or default_engine
        self.store = store or TradeStore(self.engine)
        self.domestic = domestic or create_adapter(
            self.settings.domestic_exchange, timeout=self.settings.exchange_timeout_seconds
        )
        self.overseas = overseas or create_adapter(
            self.settings.overseas_exchange, timeout=self.settings.exchange_timeout_seconds
        )
        self.fx_provider = fx_provider

    async def execute_once(
        self,
        user_id: int,
        symbol: str,
        budget: float,
        dry_run: bool = True,
    ) -> TradeResult:
        """Run one buy -> transfer -> sell cycle. Never raises; failures come back in the result."""
        symbol = symbol.upper()
        mode = "dry-run" if dry_run else "LIVE"
        logger.info(f"[{symbol}] Execution requested by user {user_id}: {budget:,.0f} KRW ({mode})")

        try:
            ctx = self.validate(user_id, symbol, budget)
        except TradeValidationError as e:
            logger.warning(f"[{symbol}] Validation failed for user {user_id}: {e}")
            return TradeResult(success=False, error=str(e), error_type=type(e).__name__)
        except Exception as e:
            logger.error(f"[{symbol}] Validation error for user {user_id}: {e}", exc_info=True)
            return TradeResult(success=False, error=f"Validation failed: {e}", error_type="TradeValidationError")

        lock = ExecutionLock(self.redis, user_id, symbol, self.settings.trade_lock_ttl_seconds)
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            logger.error(f"[{symbol}] Lock backend unavailable: {e}")
            return TradeResult(success=False, error=f"Execution lock unavailable: {e}", error_type="ConcurrencyError")
        if not acquired:
            err = ConcurrencyError(f"A {symbol} trade is already in progress for user {user_id}")
            logger.warning(f"[{symbol}] {err}")
            return TradeResult(success=False, error=str(err), error_type=type(err).__name__)

        try:
            return await self._run(ctx, dry_run)
        finally:
            try:
                await lock.release()
            except RedisError as e:
                logger.error(f"[{symbol}] Lock release failed, will expire after TTL: {e}")

    def validate(self, user_id: int, symbol: str, budget: float) -> TradeContext:
        """Check every precondition. Raises TradeValidationError (or ConfigurationError)."""
        global_settings = get_bot_settings(None, self.engine)
        bot_settings = get_bot_settings(user_id, self.engine)
        if global_settings.emergency_stop or bot_settings.emergency_stop:
            raise ConfigurationError("Emergency stop is active; trading is blocked")

        missing = missing_required_settings(user_id, self.engine)
        if missing:
            raise ConfigurationError(f"Bot settings incomplete: {', '.join(missing)}")

        if not (bot_settings.min_trade_amount_krw <= budget <= bot_settings.max_trade_amount_krw):
            raise TradeValidationError(
                f"Budget must be between {bot_settings.min_trade_amount_krw:,.0f} and "
                f"{bot_settings.max_trade_amount_krw:,.0f} KRW"
            )

        trades_today = self.store.count_today(user_id)
        if trades_today >= bot_settings.max_daily_trades:
            raise TradeValidationError(
                f"Daily trade limit reached ({trades_today}/{bot_settings.max_daily_trades})"
            )

        domestic_name, overseas_name = self.settings.domestic_exchange, self.settings.overseas_exchange
        with Session(self.engine) as session:
            coin = session.exec(
                select(Coin).where(Coin.symbol == symbol, Coin.is_active == True, Coin.is_tradable == True)
            ).first()
            if not coin:
                raise ConfigurationError(f"Coin is not tradable: {symbol}")

            exchanges = {
                ex.name: ex
                for ex in session.exec(
                    select(Exchange).where(
                        Exchange.name.in_([domestic_name, overseas_name]),
                        Exchange.is_active == True,
                    )
                ).all()
            }
            if domestic_name not in exchanges or overseas_name not in exchanges:
                raise ConfigurationError(f"Both {domestic_name} and {overseas_name} must be active")
            coin_id, withdrawal_fee = coin.id, coin.withdrawal_fee
            domestic = ExchangeRef(exchanges[domestic_name].id, domestic_name)
            overseas = ExchangeRef(exchanges[overseas_name].id, overseas_name)

        verified = get_verified_exchanges(user_id, self.engine)
        if len({v.exchange_id for v in verified}) < 2:
            raise TradeValidationError("Verified API keys for at least two exchanges are required")

        addresses = {
            "domestic": get_deposit_address(user_id, domestic.id, symbol, self.engine),
            "overseas": get_deposit_address(user_id, overseas.id, symbol, self.engine),
        }
        if not addresses["domestic"] or not addresses["overseas"]:
            raise TradeValidationError(
                f"{symbol} deposit addresses are required on both {domestic_name} and {overseas_name}"
            )

        return TradeContext(
            user_id=user_id,
            symbol=symbol,
            budget=budget,
            coin_id=coin_id,
            withdrawal_fee=withdrawal_fee,
            bot_settings=bot_settings,
            domestic=domestic,
            overseas=overseas,
            addresses=addresses,
        )

    async def _run(self, ctx: TradeContext, dry_run: bool) -> TradeResult:
        try:
            trade = self.store.create_pending(ctx.user_id, ctx.coin_id, is_dry_run=dry_run)
        except Exception as e:
            logger.error(f"[{ctx.symbol}] Could not create trade record: {e}", exc_info=True)
            return TradeResult(success=False, error=f"Trade record not created: {e}", error_type=type(e).__name__)
        tag = f"[trade {trade.id}]"
        try:
            analysis = await self.analyze_market(ctx.symbol)
            params = calculate_trade_parameters(
                ctx.budget, analysis, self.settings.trading_fee_rate, self.settings.slippage_rate
            )
            buy_ex = ctx.overseas if params.buy_side == "overseas" else ctx.domestic
            sell_ex = ctx.domestic if params.sell_side == "domestic" else ctx.overseas
            self.store.record_parameters(
                trade.id,
                buy_exchange_id=buy_ex.id,
                sell_exchange_id=sell_ex.id,
                direction=f"{buy_ex.name}->{sell_ex.name}",
                buy_price=params.buy_price,
                sell_price=params.sell_price,
                quantity=params.quantity,
            )
            logger.info(
                f"{tag} {ctx.symbol} premium {analysis.premium:+.2f}%: buy {params.quantity:.6f} on "
                f"{buy_ex.name} @ {params.buy_price:,.0f}, sell on {sell_ex.name} @ {params.sell_price:,.0f}"
            )

            self.store.transition(trade.id, TradeStatus.BUYING)
            await self._buy(trade.id, buy_ex, params, dry_run)

            self.store.transition(trade.id, TradeStatus.TRANSFERRING)
            await self._transfer(trade.id, ctx, buy_ex, sell_ex, params, dry_run)

            self.store.transition(trade.id, TradeStatus.SELLING)
            await self._sell(trade.id, sell_ex, params, dry_run)

            profit = calculate_profit(params, ctx.withdrawal_fee)
            self.store.complete(trade.id, profit)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"{tag} Execution failed: {message}", exc_info=not isinstance(e, (ExecutionStepError, ExchangeError)))
            try:
                self.store.fail(trade.id, message)
            except Exception as store_error:
                logger.error(f"{tag} Could not mark trade failed: {store_error}")
            notify(f"{tag} {ctx.symbol} failed: {message}")
            return TradeResult(
                success=False,
                trade_id=trade.id,
                status=TradeStatus.FAILED.value,
                error=message,
                error_type=type(e).__name__,
            )

        notify(
            f"{tag} {ctx.symbol} completed ({'dry-run' if dry_run else 'live'}): "
            f"net {profit.net_profit:,.0f} KRW ({profit.profit_rate:+.3f}%)"
        )
        return TradeResult(
            success=True,
            trade_id=trade.id,
            status=TradeStatus.COMPLETED.value,
            net_profit=profit.net_profit,
            profit_rate=profit.profit_rate,
        )

    async def analyze_market(self, symbol: str) -> MarketAnalysis:
        """Fresh books from both exchanges; sell side is the domestic bid."""
        with Session(self.engine) as session:
            coin = session.exec(select(Coin).where(Coin.symbol == symbol)).first()
            domestic_market = coin.domestic_market or f"KRW-{symbol}"
            overseas_market = coin.overseas_market or f"{symbol}USDT"

        depth = self.settings.orderbook_depth
        fx, d_book, o_book = await asyncio.gather(
            self.fx_provider(),
            self.domestic.get_orderbook(domestic_market, depth),
            self.overseas.get_orderbook(overseas_market, depth),
        )
        domestic = sample_orderbook(d_book, symbol, depth)
        overseas = sample_orderbook(o_book, symbol, depth)
        if domestic is None or overseas is None:
            raise ExecutionStepError("analysis", f"empty order book for {symbol}")

        premium = calculate_premium(domestic.bid_average_price, overseas.ask_average_price, fx.rate)
        if premium is None:
            raise ExecutionStepError("analysis", f"premium not computable for {symbol}")

        return MarketAnalysis(
            symbol=symbol,
            fx_rate=fx.rate,
            domestic_ask=domestic.ask_average_price,
            domestic_bid=domestic.bid_average_price,
            overseas_ask=overseas.ask_average_price,
            overseas_bid=overseas.bid_average_price,
            premium=premium,
        )

    async def _simulate(self, delay_range: tuple[float, float]):
        low, high = delay_range
        await asyncio.sleep(random.uniform(low, high))

    async def _buy(self, trade_id: int, exchange: ExchangeRef, params: TradeParameters, dry_run: bool):
        if not dry_run:
            raise ExecutionStepError("buy", f"live order placement on {exchange.name} is not implemented")
        await self._simulate(self.settings.dry_run_order_delay)
        logger.info(f"[trade {trade_id}] Simulated buy of {params.quantity:.6f} on {exchange.name}")

    async def _transfer(
        self,
        trade_id: int,
        ctx: TradeContext,
        source: ExchangeRef,
        destination: ExchangeRef,
        params: TradeParameters,
        dry_run: bool,
    ):
        deposit = ctx.addresses[params.sell_side]
        logger.info(
            f"[trade {trade_id}] Transfer {params.quantity:.6f} {ctx.symbol} {source.name} -> "
            f"{destination.name} ({deposit.address}, memo={deposit.memo or '-'})"
        )
        if not dry_run:
            raise ExecutionStepError("transfer", "live withdrawals are not implemented")
        await self._simulate(self.settings.dry_run_transfer_delay)

    async def _sell(self, trade_id: int, exchange: ExchangeRef, params: TradeParameters, dry_run: bool):
        if not dry_run:
            raise ExecutionStepError("sell", f"live order placement on {exchange.name} is not implemented")
        await self._simulate(self.settings.dry_run_order_delay)
        logger.info(f"[trade {trade_id}] Simulated sell of {params.quantity:.6f} on {exchange.name}")

    async def close(self):
        await self.domestic.close()
        await self.overseas.close()
