"""Kimchi premium monitor.

One cycle (`monitor_all_coins`):
1. Look up the USD/KRW rate once
2. Fan out over the basket; per coin fetch ticker + order book on both exchanges in parallel
3. Average the books and compute the premium (domestic ask vs overseas ask * fx)
4. After fan-in, advance the global-scope intensity per coin, in basket order
5. Advance each active user bot's intensity with that user's thresholds
6. Publish premiums and the cycle summary to the cache and write a MonitorLog row
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable

from redis.exceptions import RedisError
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from kimchi_bot.config import settings
from kimchi_bot.database import engine as default_engine
from kimchi_bot.engine.errors import TransientFetchError
from kimchi_bot.engine.intensity import (
    IntensityAccumulator,
    TradingOpportunity,
    user_scope,
)
from kimchi_bot.engine.scheduler import add_interval_job, next_run_time, remove_job, reschedule_job
from kimchi_bot.models.coin import Coin
from kimchi_bot.models.monitor_log import MonitorLog
from kimchi_bot.services.cache import ReadModelCache
from kimchi_bot.services.exchange_adapters import create_adapter
from kimchi_bot.services.exchange_client import ExchangeAdapter, ExchangeError
from kimchi_bot.services.fx_rate import FxRate, fetch_usd_krw_rate
from kimchi_bot.services.pricing import PremiumResult, calculate_premium, sample_orderbook
from kimchi_bot.services.settings_store import BotSettings, get_active_user_bots, get_bot_settings
from kimchi_bot.services.telegram_bot import format_opportunity, notify
from kimchi_bot.utils.constants import DEFAULT_MARKETS, GLOBAL_SCOPE

logger = logging.getLogger(__name__)

JOB_ID = "kimchi_monitor"


@dataclass(frozen=True)
class CoinMapping:
    symbol: str
    domestic_market: str
    overseas_market: str
    coin_id: int | None = None


def load_coin_basket(
    symbols: list[str] | None = None,
    db_engine: Engine | None = None,
) -> list[CoinMapping]:
    """Resolve configured symbols to coin rows and market ids.

    Symbols without an active coin row are skipped; intensity is keyed by coin id.
    """
    symbols = [s.upper() for s in (symbols or settings.monitored_symbols)]
    with Session(db_engine or default_engine) as session:
        coins = {
            c.symbol: c
            for c in session.exec(
                select(Coin).where(Coin.symbol.in_(symbols), Coin.is_active == True)
            ).all()
        }

    basket = []
    for symbol in symbols:
        coin = coins.get(symbol)
        if coin is None:
            logger.warning(f"[{symbol}] No active coin row, not monitored")
            continue
        default_domestic, default_overseas = DEFAULT_MARKETS.get(symbol, (f"KRW-{symbol}", f"{symbol}USDT"))
        basket.append(CoinMapping(
            symbol=symbol,
            domestic_market=coin.domestic_market or default_domestic,
            overseas_market=coin.overseas_market or default_overseas,
            coin_id=coin.id,
        ))
    return basket


class KimchiMonitor:
    """Owns the running flag, the coin basket, the global settings and the interval job."""

    def __init__(
        self,
        cache: ReadModelCache,
        domestic: ExchangeAdapter | None = None,
        overseas: ExchangeAdapter | None = None,
        coins: list[CoinMapping] | None = None,
        fx_provider: Callable[[], Awaitable[FxRate]] = fetch_usd_krw_rate,
        db_engine: Engine | None = None,
        depth: int | None = None,
    ):
        self.cache = cache
        self.engine = db_engine or default_engine
        self.domestic = domestic or create_adapter(
            settings.domestic_exchange, timeout=settings.exchange_timeout_seconds
        )
        self.overseas = overseas or create_adapter(
            settings.overseas_exchange, timeout=settings.exchange_timeout_seconds
        )
        self.fx_provider = fx_provider
        self.depth = depth or settings.orderbook_depth
        self.accumulator = IntensityAccumulator(cache, self.engine)

        self.is_running = False
        self.bot_settings: BotSettings | None = None
        self.last_results: dict | None = None
        self._coins = coins
        self._user_results: dict[int, dict] = {}

    @property
    def coins(self) -> list[CoinMapping]:
        if self._coins is None:
            self._coins = load_coin_basket(db_engine=self.engine)
        return self._coins

    async def start(self) -> bool:
        """Run one cycle now, then every `search_interval_seconds`. False if already running."""
        if self.is_running:
            logger.warning("Monitor already running")
            return False

        self.bot_settings = get_bot_settings(None, self.engine)
        self.is_running = True
        try:
            await self.monitor_all_coins()
        except Exception as e:
            logger.error(f"Initial monitoring cycle failed: {e}", exc_info=True)
            self.is_running = False
            return False

        if not self.is_running:
            logger.info("Monitoring stopped during the first cycle, not scheduling")
            return False

        add_interval_job(
            JOB_ID,
            self._tick,
            seconds=self.bot_settings.search_interval_seconds,
            name="Kimchi premium monitor",
        )
        logger.info(
            f"Monitoring started: {len(self.coins)} coins every {self.bot_settings.search_interval_seconds}s"
        )
        return True

    async def stop(self) -> bool:
        """Cancel future ticks. An in-flight cycle runs to completion."""
        if not self.is_running:
            return False
        remove_job(JOB_ID)
        self.is_running = False
        logger.info("Monitoring stopped")
        return True

    def refresh_interval(self) -> bool:
        """Re-read `search_interval_seconds` and reschedule a running monitor."""
        self.bot_settings = get_bot_settings(None, self.engine)
        if not self.is_running:
            return False
        return reschedule_job(JOB_ID, self.bot_settings.search_interval_seconds)

    async def _tick(self):
        if not self.is_running:
            return
        try:
            await self.monitor_all_coins()
        except Exception as e:
            logger.error(f"Monitoring cycle failed: {e}", exc_info=True)

    async def _collect_coin(self, coin: CoinMapping, fx_rate: float) -> PremiumResult:
        started = time.perf_counter()
        try:
            d_ticker, d_book, o_ticker, o_book = await asyncio.gather(
                self.domestic.get_ticker(coin.domestic_market),
                self.domestic.get_orderbook(coin.domestic_market, self.depth),
                self.overseas.get_ticker(coin.overseas_market),
                self.overseas.get_orderbook(coin.overseas_market, self.depth),
            )
        except ExchangeError as e:
            raise TransientFetchError(coin.symbol, str(e)) from e

        domestic = sample_orderbook(d_book, coin.symbol, self.depth, last_price=d_ticker.price)
        overseas = sample_orderbook(o_book, coin.symbol, self.depth, last_price=o_ticker.price)
        if domestic is None or overseas is None:
            raise TransientFetchError(coin.symbol, "empty order book side")

        premium = calculate_premium(domestic.ask_average_price, overseas.ask_average_price, fx_rate)
        if premium is None:
            raise TransientFetchError(coin.symbol, "premium not computable")

        return PremiumResult(
            symbol=coin.symbol,
            sell_side_price=domestic.ask_average_price,
            buy_side_price_quote=overseas.ask_average_price * fx_rate,
            premium_percent=premium,
            fx_rate=fx_rate,
            domestic=domestic,
            overseas=overseas,
            response_time_ms=(time.perf_counter() - started) * 1000,
        )

    async def monitor_all_coins(self) -> dict:
        """Run one monitoring cycle and return its summary."""
        started = time.perf_counter()
        if self.bot_settings is None:
            self.bot_settings = get_bot_settings(None, self.engine)
        coins = self.coins

        fx = await self.fx_provider()
        results = await asyncio.gather(
            *(self._collect_coin(coin, fx.rate) for coin in coins),
            return_exceptions=True,
        )

        successes: list[tuple[CoinMapping, PremiumResult]] = []
        failed_symbols: list[str] = []
        for coin, result in zip(coins, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(f"[{coin.symbol}] Collection failed: {result}")
                failed_symbols.append(coin.symbol)
            else:
                successes.append((coin, result))

        opportunities: list[TradingOpportunity] = []
        for coin, result in successes:
            try:
                update = await self.accumulator.update(
                    GLOBAL_SCOPE,
                    coin.coin_id,
                    coin.symbol,
                    result.premium_percent,
                    premium_threshold=self.bot_settings.premium_threshold_percent,
                    trigger_threshold=self.bot_settings.trading_intensity_threshold,
                )
            except Exception as e:
                logger.error(f"[{coin.symbol}] Global intensity update failed: {e}", exc_info=True)
                continue
            result.intensity = update.current
            if update.opportunity:
                opportunities.append(update.opportunity)

        opportunities.extend(await self._update_user_scopes(successes))

        total_time_ms = (time.perf_counter() - started) * 1000
        response_times = [r.response_time_ms for _, r in successes]
        summary = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "fx_rate": fx.rate,
            "fx_source": fx.source,
            "total_coins": len(coins),
            "successful": len(successes),
            "failed": len(failed_symbols),
            "failed_symbols": failed_symbols,
            "total_time_ms": round(total_time_ms, 1),
            "average_time_ms": round(sum(response_times) / len(response_times), 1) if response_times else 0.0,
            "premiums": [r.to_dict() for _, r in successes],
            "opportunities": [o.to_dict() for o in opportunities],
        }

        await self._publish(successes, summary)
        self._write_log(summary)
        self.last_results = summary

        logger.info(
            f"Cycle done: {summary['successful']}/{summary['total_coins']} coins, "
            f"{len(opportunities)} opportunities, {summary['total_time_ms']:.0f}ms"
        )
        for opp in summary["opportunities"]:
            notify(format_opportunity(opp))
        return summary

    async def _update_user_scopes(
        self, successes: list[tuple[CoinMapping, PremiumResult]]
    ) -> list[TradingOpportunity]:
        """Feed this cycle's premiums to every active user bot, one user at a time."""
        if not successes:
            return []
        try:
            user_bots = get_active_user_bots(self.engine)
        except Exception as e:
            logger.error(f"Loading active user bots failed: {e}", exc_info=True)
            return []

        opportunities = []
        for user_id, user_settings in user_bots:
            scope = user_scope(user_id)
            premiums = []
            for coin, result in successes:
                try:
                    update = await self.accumulator.update(
                        scope,
                        coin.coin_id,
                        coin.symbol,
                        result.premium_percent,
                        premium_threshold=user_settings.premium_threshold_percent,
                        trigger_threshold=user_settings.trading_intensity_threshold,
                        user_id=user_id,
                    )
                except Exception as e:
                    logger.error(f"[{coin.symbol}] Intensity update for user {user_id} failed: {e}", exc_info=True)
                    continue
                premiums.append({
                    "symbol": coin.symbol,
                    "premium_percent": round(result.premium_percent, 4),
                    "intensity": update.current,
                    "triggered": update.opportunity is not None,
                })
                if update.opportunity:
                    opportunities.append(update.opportunity)

            self._user_results[user_id] = {
                "user_id": user_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "premium_threshold_percent": user_settings.premium_threshold_percent,
                "trading_intensity_threshold": user_settings.trading_intensity_threshold,
                "premiums": premiums,
            }
        return opportunities

    async def _publish(self, successes: list[tuple[CoinMapping, PremiumResult]], summary: dict):
        try:
            for coin, result in successes:
                await self.cache.set_premium(coin.symbol, result.to_dict())
            await self.cache.set_summary(summary)
        except RedisError as e:
            logger.error(f"Publishing cycle results to cache failed: {e}")

    def _write_log(self, summary: dict):
        if summary["failed"] == 0:
            status = "success"
        elif summary["successful"] > 0:
            status = "partial"
        else:
            status = "error"
        message = f"Failed: {', '.join(summary['failed_symbols'])}" if summary["failed_symbols"] else None
        try:
            with Session(self.engine) as session:
                session.add(MonitorLog(
                    status=status,
                    total_coins=summary["total_coins"],
                    successful=summary["successful"],
                    failed=summary["failed"],
                    total_time_ms=summary["total_time_ms"],
                    message=message,
                    premiums=summary["premiums"],
                ))
                session.commit()
        except Exception as e:
            logger.error(f"Failed to write monitor log: {e}")

    def get_status(self) -> dict:
        next_run = next_run_time(JOB_ID) if self.is_running else None
        bot_settings = self.bot_settings or BotSettings()
        return {
            "is_running": self.is_running,
            "interval_seconds": bot_settings.search_interval_seconds,
            "coins": [c.symbol for c in self.coins],
            "settings": bot_settings.model_dump(),
            "next_execution_time": next_run.isoformat() if next_run else None,
            "last_cycle_at": self.last_results["timestamp"] if self.last_results else None,
        }

    async def get_latest_results(self) -> dict:
        """Latest cycle summary plus current global intensities per symbol."""
        try:
            summary = await self.cache.get_summary()
        except RedisError as e:
            logger.warning(f"Reading cached summary failed: {e}")
            summary = None
        summary = summary or self.last_results

        rows = self.accumulator.get_intensities(GLOBAL_SCOPE)
        intensities = {
            c.symbol: rows[c.coin_id].current_intensity if c.coin_id in rows else 0
            for c in self.coins
        }
        return {
            "summary": summary,
            "premiums": summary["premiums"] if summary else [],
            "intensities": intensities,
        }

    async def get_user_latest_results(self, user_id: int) -> dict:
        """A user's intensities plus the premiums their bot saw last cycle."""
        rows = self.accumulator.get_intensities(user_scope(user_id))
        intensities = {
            c.symbol: rows[c.coin_id].current_intensity if c.coin_id in rows else 0
            for c in self.coins
        }
        latest = self._user_results.get(user_id)
        return {
            "user_id": user_id,
            "latest": latest,
            "intensities": intensities,
        }

    async def close(self):
        await self.domestic.close()
        await self.overseas.close()
