"""Concrete exchange adapters and the name -> adapter registry.

Upbit and Bithumb share the same v1 REST shape (JWT bearer auth); Binance
uses HMAC-SHA256 query signing. Callers select an adapter by configured name
through `create_adapter`, never by branching on exchange names.
"""

import hashlib
import hmac
import logging
import time
import uuid
from datetime import datetime, timezone
from urllib.parse import urlencode

import httpx
from jose import jwt

from kimchi_bot.services.exchange_client import (
    AuthenticationError,
    Balance,
    CoinBalance,
    ExchangeAdapter,
    ExchangeApiError,
    ExchangeCredentials,
    Orderbook,
    OrderbookLevel,
    Ticker,
)

logger = logging.getLogger(__name__)


def _from_ms(value) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


class UpbitAdapter(ExchangeAdapter):
    """Upbit KRW markets (e.g. "KRW-BTC")."""

    name = "upbit"
    base_url = "https://api.upbit.com"
    quote_currency = "KRW"

    async def get_ticker(self, market: str) -> Ticker:
        data = await self._request("GET", "/v1/ticker", params={"markets": market})
        if not data:
            raise ExchangeApiError(f"{self.name}: empty ticker for {market}")
        t = data[0]
        return Ticker(
            exchange=self.name,
            market=t.get("market", market),
            price=float(t["trade_price"]),
            volume=float(t["trade_volume"]) if t.get("trade_volume") is not None else None,
            timestamp=_from_ms(t.get("timestamp")),
        )

    async def get_orderbook(self, market: str, depth: int = 5) -> Orderbook:
        data = await self._request("GET", "/v1/orderbook", params={"markets": market})
        if not data:
            raise ExchangeApiError(f"{self.name}: empty orderbook for {market}")
        book = data[0]
        units = book.get("orderbook_units", [])[:depth]
        asks = sorted(
            (OrderbookLevel(float(u["ask_price"]), float(u["ask_size"])) for u in units),
            key=lambda lvl: lvl.price,
        )
        bids = sorted(
            (OrderbookLevel(float(u["bid_price"]), float(u["bid_size"])) for u in units),
            key=lambda lvl: lvl.price,
            reverse=True,
        )
        return Orderbook(
            exchange=self.name,
            market=book.get("market", market),
            asks=asks,
            bids=bids,
            timestamp=_from_ms(book.get("timestamp")),
        )

    def _auth_payload(self, credentials: ExchangeCredentials) -> dict:
        return {"access_key": credentials.api_key, "nonce": str(uuid.uuid4())}

    async def get_balance(self, credentials: ExchangeCredentials) -> Balance:
        if not credentials.api_key or not credentials.secret_key:
            raise AuthenticationError(f"{self.name}: API key/secret missing")
        token = jwt.encode(self._auth_payload(credentials), credentials.secret_key, algorithm="HS256")
        data = await self._request(
            "GET", "/v1/accounts", headers={"Authorization": f"Bearer {token}"}
        )

        fiat = next((a for a in data if a.get("currency") == self.quote_currency), None)
        coins = [
            CoinBalance(
                currency=a["currency"],
                balance=float(a.get("balance", 0)),
                locked=float(a.get("locked", 0)),
            )
            for a in data
            if a.get("currency") != self.quote_currency and float(a.get("balance", 0)) > 0
        ]
        logger.info(f"{self.name} balance fetched: {len(coins)} coin positions")
        return Balance(
            exchange=self.name,
            fiat_currency=self.quote_currency,
            fiat_balance=float(fiat["balance"]) if fiat else 0.0,
            coin_balances=coins,
        )


class BithumbAdapter(UpbitAdapter):
    """Bithumb v1 API; same market ids and payloads as Upbit."""

    name = "bithumb"
    base_url = "https://api.bithumb.com"

    def _auth_payload(self, credentials: ExchangeCredentials) -> dict:
        payload = super()._auth_payload(credentials)
        payload["timestamp"] = int(time.time() * 1000)
        return payload


# Binance /depth only accepts these limits
_BINANCE_DEPTH_LIMITS = (5, 10, 20, 50, 100, 500, 1000, 5000)

# Error codes Binance returns for bad keys/signatures with a 400 status
_BINANCE_AUTH_CODES = {-1022, -2014, -2015}


class BinanceAdapter(ExchangeAdapter):
    """Binance spot USDT markets (e.g. "BTCUSDT")."""

    name = "binance"
    base_url = "https://api.binance.com"
    quote_currency = "USDT"

    def _raise_api_error(self, response: httpx.Response):
        try:
            code = response.json().get("code")
        except ValueError:
            code = None
        if code in _BINANCE_AUTH_CODES:
            raise AuthenticationError(
                f"{self.name} rejected credentials (code {code})", status_code=response.status_code
            )
        super()._raise_api_error(response)

    async def get_ticker(self, market: str) -> Ticker:
        data = await self._request("GET", "/api/v3/ticker/price", params={"symbol": market.upper()})
        return Ticker(exchange=self.name, market=data.get("symbol", market), price=float(data["price"]))

    async def get_orderbook(self, market: str, depth: int = 5) -> Orderbook:
        limit = next((n for n in _BINANCE_DEPTH_LIMITS if n >= depth), _BINANCE_DEPTH_LIMITS[-1])
        data = await self._request(
            "GET", "/api/v3/depth", params={"symbol": market.upper(), "limit": limit}
        )
        asks = [OrderbookLevel(float(p), float(q)) for p, q in data.get("asks", [])[:depth]]
        bids = [OrderbookLevel(float(p), float(q)) for p, q in data.get("bids", [])[:depth]]
        return Orderbook(exchange=self.name, market=market.upper(), asks=asks, bids=bids)

    async def get_balance(self, credentials: ExchangeCredentials) -> Balance:
        if not credentials.api_key or not credentials.secret_key:
            raise AuthenticationError(f"{self.name}: API key/secret missing")
        params = {"timestamp": int(time.time() * 1000), "recvWindow": 5000}
        signature = hmac.new(
            credentials.secret_key.encode(), urlencode(params).encode(), hashlib.sha256
        ).hexdigest()
        params["signature"] = signature
        data = await self._request(
            "GET", "/api/v3/account", params=params, headers={"X-MBX-APIKEY": credentials.api_key}
        )

        balances = data.get("balances", [])
        fiat = next((b for b in balances if b.get("asset") == self.quote_currency), None)
        coins = [
            CoinBalance(currency=b["asset"], balance=float(b["free"]), locked=float(b.get("locked", 0)))
            for b in balances
            if b.get("asset") != self.quote_currency and float(b.get("free", 0)) > 0
        ]
        return Balance(
            exchange=self.name,
            fiat_currency=self.quote_currency,
            fiat_balance=float(fiat["free"]) if fiat else 0.0,
            coin_balances=coins,
        )


ADAPTERS: dict[str, type[ExchangeAdapter]] = {
    UpbitAdapter.name: UpbitAdapter,
    BithumbAdapter.name: BithumbAdapter,
    BinanceAdapter.name: BinanceAdapter,
}


def create_adapter(name: str, **kwargs) -> ExchangeAdapter:
    """Build the adapter registered under `name`."""
    try:
        adapter_cls = ADAPTERS[name]
    except KeyError:
        raise ValueError(
            f"Unknown exchange adapter '{name}'. Available: {', '.join(sorted(ADAPTERS))}"
        ) from None
    return adapter_cls(**kwargs)
