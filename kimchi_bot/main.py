"""FastAPI application entry point."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kimchi_bot.config import settings
from kimchi_bot.database import create_db_and_tables, seed_reference_data
from kimchi_bot.utils.logging import setup_logging
from kimchi_bot.api import credentials, monitoring, system, trades


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    create_db_and_tables()
    seed_reference_data()

    from kimchi_bot.engine.monitor import KimchiMonitor
    from kimchi_bot.engine.scheduler import stop_scheduler
    from kimchi_bot.engine.trade_executor import TradeExecutor
    from kimchi_bot.services.cache import ReadModelCache, close_redis, get_redis

    monitor = KimchiMonitor(ReadModelCache(get_redis()))
    executor = TradeExecutor(get_redis())
    app.state.monitor = monitor
    app.state.executor = executor

    if settings.autostart_monitoring:
        await monitor.start()

    # Start Telegram bot if configured
    telegram_bot = None
    if settings.telegram_bot_token:
        from kimchi_bot.services.telegram_bot import init_bot
        telegram_bot = init_bot(monitor=monitor, main_loop=asyncio.get_running_loop())
        telegram_bot.start()

    yield

    if telegram_bot:
        telegram_bot.stop()
    await monitor.stop()
    stop_scheduler()
    await monitor.close()
    await executor.close()
    await close_redis()


app = FastAPI(
    title="Kimchi Bot",
    description="Kimchi premium monitor and arbitrage trade executor",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(system.router)
app.include_router(monitoring.router)
app.include_router(trades.router)
app.include_router(credentials.router)
