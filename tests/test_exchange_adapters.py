"""Exchange adapters against mocked HTTP transports."""

import httpx
import pytest
from jose import jwt

from kimchi_bot.services.exchange_adapters import (
    BinanceAdapter,
    BithumbAdapter,
    UpbitAdapter,
    create_adapter,
)
from kimchi_bot.services.exchange_client import (
    AuthenticationError,
    ExchangeApiError,
    ExchangeCredentials,
    NetworkError,
)

CREDS = ExchangeCredentials(api_key="access-key-1234", secret_key="super-secret-5678")


def _adapter(cls, handler):
    client = httpx.AsyncClient(base_url=cls.base_url, transport=httpx.MockTransport(handler))
    return cls(client=client)


# ---------------------------------------------------------------------------
# 1. Registry
# ---------------------------------------------------------------------------

def test_create_adapter_by_name():
    assert isinstance(create_adapter("upbit"), UpbitAdapter)
    assert isinstance(create_adapter("bithumb"), BithumbAdapter)
    assert isinstance(create_adapter("binance", timeout=3.0), BinanceAdapter)


def test_unknown_adapter_name():
    with pytest.raises(ValueError, match="Unknown exchange adapter"):
        create_adapter("kraken")


# ---------------------------------------------------------------------------
# 2. Upbit
# ---------------------------------------------------------------------------

class TestUpbit:
    @pytest.mark.asyncio
    async def test_ticker(self):
        def handler(request: httpx.Request):
            assert request.url.path == "/v1/ticker"
            assert request.url.params["markets"] == "KRW-BTC"
            return httpx.Response(200, json=[
                {"market": "KRW-BTC", "trade_price": 101000000.0, "trade_volume": 0.5, "timestamp": 1700000000000}
            ])

        ticker = await _adapter(UpbitAdapter, handler).get_ticker("KRW-BTC")
        assert ticker.exchange == "upbit"
        assert ticker.price == 101_000_000.0
        assert ticker.volume == 0.5

    @pytest.mark.asyncio
    async def test_orderbook_sorted_and_truncated(self):
        units = [
            {"ask_price": 103 + i, "ask_size": 1.0, "bid_price": 100 - i, "bid_size": 2.0}
            for i in range(10)
        ]

        def handler(request: httpx.Request):
            return httpx.Response(200, json=[{"market": "KRW-BTC", "orderbook_units": units[::-1]}])

        book = await _adapter(UpbitAdapter, handler).get_orderbook("KRW-BTC", depth=5)
        assert len(book.asks) == 5
        assert [lvl.price for lvl in book.asks] == sorted(lvl.price for lvl in book.asks)
        assert [lvl.price for lvl in book.bids] == sorted((lvl.price for lvl in book.bids), reverse=True)

    @pytest.mark.asyncio
    async def test_balance_uses_bearer_jwt(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json=[
                {"currency": "KRW", "balance": "1500000", "locked": "0"},
                {"currency": "BTC", "balance": "0.01", "locked": "0"},
                {"currency": "ETH", "balance": "0", "locked": "0"},
            ])

        balance = await _adapter(UpbitAdapter, handler).get_balance(CREDS)

        scheme, token = seen["auth"].split(" ")
        assert scheme == "Bearer"
        claims = jwt.decode(token, CREDS.secret_key, algorithms=["HS256"])
        assert claims["access_key"] == CREDS.api_key
        assert claims["nonce"]
        assert balance.fiat_currency == "KRW"
        assert balance.fiat_balance == 1_500_000.0
        assert [c.currency for c in balance.coin_balances] == ["BTC"]

    @pytest.mark.asyncio
    async def test_rejected_key(self):
        adapter = _adapter(UpbitAdapter, lambda request: httpx.Response(401, json={"error": "invalid"}))
        with pytest.raises(AuthenticationError):
            await adapter.get_balance(CREDS)

    @pytest.mark.asyncio
    async def test_missing_key_rejected_without_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        with pytest.raises(AuthenticationError):
            await _adapter(UpbitAdapter, handler).get_balance(ExchangeCredentials("", ""))

    @pytest.mark.asyncio
    async def test_transport_error_maps_to_network_error(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(NetworkError):
            await _adapter(UpbitAdapter, handler).get_orderbook("KRW-BTC")

    @pytest.mark.asyncio
    async def test_server_error_maps_to_api_error(self):
        adapter = _adapter(UpbitAdapter, lambda request: httpx.Response(503, text="maintenance"))
        with pytest.raises(ExchangeApiError) as exc:
            await adapter.get_ticker("KRW-BTC")
        assert exc.value.status_code == 503
        assert not isinstance(exc.value, AuthenticationError)


@pytest.mark.asyncio
async def test_bithumb_token_carries_timestamp():
    seen = {}

    def handler(request: httpx.Request):
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json=[{"currency": "KRW", "balance": "10", "locked": "0"}])

    await _adapter(BithumbAdapter, handler).get_balance(CREDS)
    claims = jwt.decode(seen["auth"].split(" ")[1], CREDS.secret_key, algorithms=["HS256"])
    assert "timestamp" in claims


# ---------------------------------------------------------------------------
# 3. Binance
# ---------------------------------------------------------------------------

class TestBinance:
    @pytest.mark.asyncio
    async def test_depth_limit_rounds_up_to_allowed_value(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["limit"] = request.url.params["limit"]
            levels = [[str(65000 + i), "1.0"] for i in range(10)]
            return httpx.Response(200, json={"asks": levels, "bids": levels[::-1]})

        book = await _adapter(BinanceAdapter, handler).get_orderbook("btcusdt", depth=7)
        assert seen["limit"] == "10"
        assert len(book.asks) == 7
        assert book.market == "BTCUSDT"

    @pytest.mark.asyncio
    async def test_ticker(self):
        adapter = _adapter(
            BinanceAdapter, lambda request: httpx.Response(200, json={"symbol": "BTCUSDT", "price": "65000.5"})
        )
        ticker = await adapter.get_ticker("BTCUSDT")
        assert ticker.price == 65000.5

    @pytest.mark.asyncio
    async def test_balance_is_signed(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["key"] = request.headers["X-MBX-APIKEY"]
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"balances": [
                {"asset": "USDT", "free": "250.5", "locked": "0"},
                {"asset": "BTC", "free": "0.002", "locked": "0"},
            ]})

        balance = await _adapter(BinanceAdapter, handler).get_balance(CREDS)
        assert seen["key"] == CREDS.api_key
        assert "signature" in seen["params"]
        assert balance.fiat_balance == 250.5
        assert balance.coin_balances[0].currency == "BTC"

    @pytest.mark.asyncio
    async def test_auth_error_code_on_400(self):
        adapter = _adapter(
            BinanceAdapter,
            lambda request: httpx.Response(400, json={"code": -2015, "msg": "Invalid API-key"}),
        )
        with pytest.raises(AuthenticationError):
            await adapter.get_balance(CREDS)

    @pytest.mark.asyncio
    async def test_other_error_code_is_api_error(self):
        adapter = _adapter(
            BinanceAdapter,
            lambda request: httpx.Response(400, json={"code": -1121, "msg": "Invalid symbol."}),
        )
        with pytest.raises(ExchangeApiError) as exc:
            await adapter.get_orderbook("NOPEUSDT")
        assert not isinstance(exc.value, AuthenticationError)
