"""Tests for the USD/KRW rate lookup."""

import httpx
import pytest

from kimchi_bot.services.fx_rate import fetch_usd_krw_rate

URL = "https://fx.example/usdkrw"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_remote_rate():
    client = _client(lambda request: httpx.Response(200, json=[{"basePrice": 1387.5}]))
    fx = await fetch_usd_krw_rate(client=client, url=URL, fallback=1300.0)
    assert fx.rate == 1387.5
    assert fx.source == "remote"
    assert not fx.is_fallback


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(500, text="down"),
    httpx.Response(200, json=[]),
    httpx.Response(200, json={"unexpected": True}),
    httpx.Response(200, json=[{"basePrice": 0}]),
    httpx.Response(200, text="not json"),
])
async def test_bad_responses_fall_back(response):
    fx = await fetch_usd_krw_rate(client=_client(lambda request: response), url=URL, fallback=1300.0)
    assert fx.rate == 1300.0
    assert fx.is_fallback


@pytest.mark.asyncio
async def test_transport_error_falls_back():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    fx = await fetch_usd_krw_rate(client=_client(handler), url=URL, fallback=1250.0)
    assert fx.rate == 1250.0
    assert fx.source == "fallback"
