"""Uniform exchange adapter interface.

Every exchange back end exposes the same three async capabilities: ticker,
depth-limited order book and authenticated balance. Business logic only ever
sees `ExchangeAdapter`; concrete adapters live in `exchange_adapters.py`.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class ExchangeError(Exception):
    """Base class for adapter failures."""


class NetworkError(ExchangeError):
    """Transport-level failure (timeout, connection reset, DNS)."""


class ExchangeApiError(ExchangeError):
    """The exchange answered with an error payload or status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(ExchangeApiError):
    """API key rejected or missing permission."""


@dataclass
class Ticker:
    exchange: str
    market: str
    price: float
    volume: float | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class OrderbookLevel:
    price: float
    quantity: float


@dataclass
class Orderbook:
    exchange: str
    market: str
    asks: list[OrderbookLevel]
    bids: list[OrderbookLevel]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class CoinBalance:
    currency: str
    balance: float
    locked: float = 0.0


@dataclass
class Balance:
    exchange: str
    fiat_currency: str
    fiat_balance: float
    coin_balances: list[CoinBalance] = field(default_factory=list)


@dataclass
class ExchangeCredentials:
    """Decrypted key material. Never persisted or logged."""

    api_key: str
    secret_key: str
    passphrase: str | None = None

    def __repr__(self) -> str:
        return "ExchangeCredentials(api_key='****', secret_key='****')"


class ExchangeAdapter(ABC):
    """Base class for exchange back ends."""

    name: str = ""
    base_url: str = ""
    quote_currency: str = ""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or self.base_url).rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"User-Agent": "KimchiBot/1.0"},
        )

    async def _request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> Any:
        """Issue a request and map transport/API failures onto adapter errors."""
        try:
            response = await self._client.request(method, path, params=params, headers=headers)
        except httpx.TransportError as e:
            raise NetworkError(f"{self.name} {path}: {e}") from e

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"{self.name} rejected credentials ({response.status_code}): {response.text[:200]}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            self._raise_api_error(response)

        try:
            return response.json()
        except ValueError as e:
            raise ExchangeApiError(f"{self.name} {path}: invalid JSON response") from e

    def _raise_api_error(self, response: httpx.Response):
        raise ExchangeApiError(
            f"{self.name} API error ({response.status_code}): {response.text[:200]}",
            status_code=response.status_code,
        )

    @abstractmethod
    async def get_ticker(self, market: str) -> Ticker:
        """Last trade price for a market."""

    @abstractmethod
    async def get_orderbook(self, market: str, depth: int = 5) -> Orderbook:
        """Top `depth` levels per side. Asks ascending, bids descending."""

    @abstractmethod
    async def get_balance(self, credentials: ExchangeCredentials) -> Balance:
        """Account balances. Raises AuthenticationError for rejected keys."""

    async def close(self):
        await self._client.aclose()
