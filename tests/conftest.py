"""Shared fixtures: in-memory database, fake Redis and scripted exchange adapters."""

import os

from cryptography.fernet import Fernet

# Must be set before kimchi_bot.config is imported
os.environ["KB_DATABASE_URL"] = "sqlite://"
os.environ["KB_ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["KB_TELEGRAM_BOT_TOKEN"] = ""

import fakeredis  # noqa: E402
import pytest  # noqa: E402
from sqlmodel import Session, SQLModel, select  # noqa: E402

from kimchi_bot.config import settings  # noqa: E402
from kimchi_bot.database import create_db_and_tables, engine, seed_reference_data  # noqa: E402
from kimchi_bot.models import (  # noqa: E402
    BotSetting,
    Coin,
    DepositAddress,
    Exchange,
    ExchangeCredential,
    User,
)
from kimchi_bot.services.cache import ReadModelCache  # noqa: E402
from kimchi_bot.services.exchange_client import (  # noqa: E402
    Balance,
    ExchangeAdapter,
    NetworkError,
    Orderbook,
    OrderbookLevel,
    Ticker,
)
from kimchi_bot.services.fx_rate import FxRate  # noqa: E402


def make_book(exchange: str, market: str, asks, bids) -> Orderbook:
    return Orderbook(
        exchange=exchange,
        market=market,
        asks=[OrderbookLevel(p, q) for p, q in asks],
        bids=[OrderbookLevel(p, q) for p, q in bids],
    )


class FakeAdapter(ExchangeAdapter):
    """Serves canned order books; markets in `failing` raise NetworkError."""

    def __init__(self, name: str, books: dict[str, Orderbook] | None = None, failing: set[str] | None = None):
        self.name = name
        self.books = books or {}
        self.failing = failing or set()
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    def _check(self, kind: str, market: str):
        self.calls.append((kind, market))
        if market in self.failing:
            raise NetworkError(f"{self.name} {market}: connection reset")

    async def get_ticker(self, market: str) -> Ticker:
        self._check("ticker", market)
        book = self.books[market]
        return Ticker(exchange=self.name, market=market, price=book.asks[0].price if book.asks else 0.0)

    async def get_orderbook(self, market: str, depth: int = 5) -> Orderbook:
        self._check("orderbook", market)
        return self.books[market]

    async def get_balance(self, credentials) -> Balance:
        return Balance(exchange=self.name, fiat_currency="KRW", fiat_balance=0.0)

    async def close(self):
        self.closed = True


# Domestic KRW prices ~3.6% above overseas USDT * 1500
DOMESTIC_PRICES = {
    "BTC": 101_000_000.0,
    "ETH": 5_150_000.0,
    "XRP": 930.0,
    "ADA": 620.0,
    "DOT": 10_300.0,
}
OVERSEAS_PRICES = {
    "BTC": 65_000.0,
    "ETH": 3_315.0,
    "XRP": 0.6,
    "ADA": 0.4,
    "DOT": 6.63,
}


def domestic_books(prices: dict[str, float] | None = None) -> dict[str, Orderbook]:
    prices = prices or DOMESTIC_PRICES
    return {
        f"KRW-{s}": make_book("upbit", f"KRW-{s}", asks=[(p, 1.0)], bids=[(p * 0.999, 1.0)])
        for s, p in prices.items()
    }


def overseas_books(prices: dict[str, float] | None = None) -> dict[str, Orderbook]:
    prices = prices or OVERSEAS_PRICES
    return {
        f"{s}USDT": make_book("binance", f"{s}USDT", asks=[(p, 1.0)], bids=[(p * 0.999, 1.0)])
        for s, p in prices.items()
    }


@pytest.fixture(autouse=True)
def db():
    """Fresh schema and reference data for every test."""
    SQLModel.metadata.drop_all(engine)
    create_db_and_tables()
    seed_reference_data()
    yield engine


@pytest.fixture
def redis_client():
    return fakeredis.FakeAsyncRedis(decode_responses=True)


@pytest.fixture
def cache(redis_client):
    return ReadModelCache(redis_client, ttl_seconds=300, history_size=100)


@pytest.fixture
def fx_provider():
    async def _fx():
        return FxRate(rate=1500.0, source="remote")
    return _fx


@pytest.fixture
def domestic_adapter():
    return FakeAdapter("upbit", domestic_books())


@pytest.fixture
def overseas_adapter():
    return FakeAdapter("binance", overseas_books())


@pytest.fixture
def fast_settings():
    """App settings with near-instant dry-run phases."""
    return settings.model_copy(update={
        "dry_run_order_delay": (0.01, 0.01),
        "dry_run_transfer_delay": (0.01, 0.01),
    })


@pytest.fixture
def trading_user(db):
    """A user who satisfies every trade precondition for BTC."""
    with Session(db) as session:
        user = User(username="trader", role="user")
        session.add(user)

        btc = session.exec(select(Coin).where(Coin.symbol == "BTC")).one()
        btc.is_tradable = True
        session.add(btc)
        session.commit()
        session.refresh(user)

        exchanges = {e.name: e for e in session.exec(select(Exchange)).all()}
        for key, value in (
            ("min_trade_amount_krw", "1000000"),
            ("max_trade_amount_krw", "10000000"),
            ("premium_threshold_percent", "1.0"),
            ("trading_intensity_threshold", "3"),
            ("bot_enabled", "true"),
        ):
            data_type = "boolean" if key == "bot_enabled" else "number"
            session.add(BotSetting(user_id=user.id, key_name=key, value=value, data_type=data_type))

        for name in ("upbit", "binance"):
            session.add(ExchangeCredential(
                user_id=user.id,
                exchange_id=exchanges[name].id,
                api_key_encrypted="x",
                secret_key_encrypted="x",
                is_verified=True,
            ))
        session.add(DepositAddress(
            user_id=user.id, exchange_id=exchanges["upbit"].id, symbol="BTC", address="upbit-btc-addr"
        ))
        session.add(DepositAddress(
            user_id=user.id, exchange_id=exchanges["binance"].id, symbol="BTC", address="bn-btc-addr", memo="42"
        ))
        session.commit()
        return user.id
