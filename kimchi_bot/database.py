"""SQLModel database engine, session management and reference-data seeding."""

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session, select

from kimchi_bot.config import settings

logger = logging.getLogger(__name__)

# SQLite needs check_same_thread=False; PostgreSQL does not
connect_args = {}
engine_kwargs = {}
if settings.database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False
    # In-memory databases live on a single shared connection
    if settings.database_url in ("sqlite://", "sqlite:///:memory:"):
        engine_kwargs["poolclass"] = StaticPool

engine = create_engine(
    settings.database_url,
    echo=False,
    connect_args=connect_args,
    **engine_kwargs,
)


def seed_reference_data(db_engine: Engine | None = None):
    """Insert default exchanges, coins, global bot settings and global intensity rows.

    Existing rows are left untouched, so this is safe to run on every start.
    """
    from kimchi_bot.models import BotSetting, Coin, Exchange, TradingIntensity
    from kimchi_bot.utils.constants import (
        BOT_SETTING_TYPES,
        DEFAULT_MARKETS,
        GLOBAL_SCOPE,
        SEED_COINS,
        SEED_EXCHANGES,
    )

    db_engine = db_engine or engine
    with Session(db_engine) as session:
        known = set(session.exec(select(Exchange.name)).all())
        for name, display_name, ex_type, fee in SEED_EXCHANGES:
            if name not in known:
                session.add(Exchange(name=name, display_name=display_name, type=ex_type, trading_fee_rate=fee))

        known = set(session.exec(select(Coin.symbol)).all())
        for symbol, name, network, withdrawal_fee, min_withdrawal in SEED_COINS:
            if symbol in known:
                continue
            domestic, overseas = DEFAULT_MARKETS.get(symbol, (f"KRW-{symbol}", f"{symbol}USDT"))
            session.add(Coin(
                symbol=symbol,
                name=name,
                network=network,
                withdrawal_fee=withdrawal_fee,
                min_withdrawal=min_withdrawal,
                domestic_market=domestic,
                overseas_market=overseas,
            ))

        known = set(session.exec(
            select(BotSetting.key_name).where(BotSetting.user_id == None)  # noqa: E711
        ).all())
        for key, (data_type, default) in BOT_SETTING_TYPES.items():
            if key not in known:
                value = str(default).lower() if data_type == "boolean" else str(default)
                session.add(BotSetting(user_id=None, key_name=key, value=value, data_type=data_type))
        session.commit()

        coin_ids = session.exec(select(Coin.id).where(Coin.is_active == True)).all()
        tracked = set(session.exec(
            select(TradingIntensity.coin_id).where(TradingIntensity.scope_key == GLOBAL_SCOPE)
        ).all())
        for coin_id in coin_ids:
            if coin_id not in tracked:
                session.add(TradingIntensity(scope_key=GLOBAL_SCOPE, coin_id=coin_id, current_intensity=0))
        session.commit()

    logger.info("Reference data seeded")


def create_db_and_tables(db_engine: Engine | None = None):
    """Create all tables. Called on startup."""
    import kimchi_bot.models  # noqa: F401  registers tables on the metadata

    SQLModel.metadata.create_all(db_engine or engine)


def get_session() -> Session:
    """Dependency that yields a database session."""
    with Session(engine) as session:
        yield session
