"""USD→KRW exchange rate lookup with a configured fallback."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx

from kimchi_bot.config import settings

logger = logging.getLogger(__name__)


@dataclass
class FxRate:
    rate: float
    source: str  # "remote" or "fallback"
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_fallback(self) -> bool:
        return self.source == "fallback"


async def fetch_usd_krw_rate(
    client: httpx.AsyncClient | None = None,
    url: str | None = None,
    fallback: float | None = None,
) -> FxRate:
    """Fetch the current USD/KRW base price.

    Any transport or payload problem falls back to `settings.fx_fallback_rate`
    so a monitoring cycle can always price the basket.
    """
    url = url or settings.fx_rate_url
    fallback = fallback if fallback is not None else settings.fx_fallback_rate
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=settings.exchange_timeout_seconds)
    try:
        response = await client.get(url)
        response.raise_for_status()
        payload = response.json()
        rate = float(payload[0]["basePrice"])
        if rate <= 0:
            raise ValueError(f"non-positive rate {rate}")
        return FxRate(rate=rate, source="remote")
    except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as e:
        logger.warning(f"FX rate lookup failed ({e}), using fallback {fallback}")
        return FxRate(rate=fallback, source="fallback")
    finally:
        if owns_client:
            await client.aclose()
