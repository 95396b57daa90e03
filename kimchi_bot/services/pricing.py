"""Order book averaging and premium computation.

Pure computation. No I/O and no database access.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone

import numpy as np

from kimchi_bot.services.exchange_client import Orderbook, OrderbookLevel


@dataclass
class AveragePrice:
    average_price: float
    total_quantity: float
    total_amount: float
    levels_used: int


def calculate_average_price(
    orderbook: Orderbook,
    side: str = "ask",
    depth: int = 5,
) -> AveragePrice | None:
    """Volume-weighted average price over the best `depth` levels of one side.

    Asks are ranked ascending and bids descending before truncation, so the
    input need not be sorted. Returns None when the used levels hold no
    quantity; callers must treat that as a failed sample, never as price 0.
    """
    if side not in ("ask", "bid"):
        raise ValueError(f"side must be 'ask' or 'bid', got {side!r}")

    levels: list[OrderbookLevel] = orderbook.asks if side == "ask" else orderbook.bids
    levels = [lvl for lvl in levels if lvl.quantity > 0]
    levels = sorted(levels, key=lambda lvl: lvl.price, reverse=(side == "bid"))[:depth]
    if not levels:
        return None

    prices = np.array([lvl.price for lvl in levels], dtype=float)
    quantities = np.array([lvl.quantity for lvl in levels], dtype=float)
    total_quantity = float(quantities.sum())
    if total_quantity == 0:
        return None

    total_amount = float(np.dot(prices, quantities))
    return AveragePrice(
        average_price=total_amount / total_quantity,
        total_quantity=total_quantity,
        total_amount=total_amount,
        levels_used=len(levels),
    )


def calculate_premium(
    sell_price_quote: float,
    buy_price_foreign: float,
    fx_rate: float,
) -> float | None:
    """Signed premium (%) of the domestic sell price over the converted foreign buy price.

    premium = (sell - buy * fx) / (buy * fx) * 100. Positive means buying
    abroad and selling domestically is profitable before fees. Returns None
    when the converted buy price is zero or any value is non-finite.
    """
    buy_price_quote = buy_price_foreign * fx_rate
    if buy_price_quote == 0 or not math.isfinite(buy_price_quote) or not math.isfinite(sell_price_quote):
        return None
    premium = (sell_price_quote - buy_price_quote) / buy_price_quote * 100
    if not math.isfinite(premium):
        return None
    return premium


@dataclass
class PriceSample:
    """Both sides of one exchange's book for one coin, averaged over the top levels."""

    exchange: str
    symbol: str
    ask_average_price: float
    bid_average_price: float
    ask_depth_quantity: float
    bid_depth_quantity: float
    last_price: float | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def sample_orderbook(
    orderbook: Orderbook,
    symbol: str,
    depth: int = 5,
    last_price: float | None = None,
) -> PriceSample | None:
    """Average both sides; None if either side is empty."""
    ask = calculate_average_price(orderbook, "ask", depth)
    bid = calculate_average_price(orderbook, "bid", depth)
    if ask is None or bid is None:
        return None
    return PriceSample(
        exchange=orderbook.exchange,
        symbol=symbol,
        ask_average_price=ask.average_price,
        bid_average_price=bid.average_price,
        ask_depth_quantity=ask.total_quantity,
        bid_depth_quantity=bid.total_quantity,
        last_price=last_price,
    )


@dataclass
class PremiumResult:
    symbol: str
    sell_side_price: float  # domestic, KRW
    buy_side_price_quote: float  # overseas price converted to KRW
    premium_percent: float
    fx_rate: float
    domestic: PriceSample
    overseas: PriceSample
    response_time_ms: float = 0.0
    intensity: int | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_positive(self) -> bool:
        return self.premium_percent > 0

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "timestamp": self.timestamp.isoformat(),
            "premium_percent": round(self.premium_percent, 4),
            "is_positive": self.is_positive,
            "sell_side_price": self.sell_side_price,
            "buy_side_price_quote": self.buy_side_price_quote,
            "fx_rate": self.fx_rate,
            "domestic_exchange": self.domestic.exchange,
            "domestic_ask": self.domestic.ask_average_price,
            "domestic_bid": self.domestic.bid_average_price,
            "overseas_exchange": self.overseas.exchange,
            "overseas_ask": self.overseas.ask_average_price,
            "overseas_bid": self.overseas.bid_average_price,
            "response_time_ms": round(self.response_time_ms, 1),
            "intensity": self.intensity,
        }
