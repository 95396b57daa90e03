"""Trade sizing and profit accounting.

Pure functions shared by the trade executor and its tests.
"""

from dataclasses import dataclass


@dataclass
class MarketAnalysis:
    """Fresh two-exchange snapshot taken at execution time. Prices in KRW unless noted."""

    symbol: str
    fx_rate: float
    domestic_ask: float
    domestic_bid: float
    overseas_ask: float  # quote currency of the overseas exchange (USDT)
    overseas_bid: float
    premium: float

    @property
    def overseas_ask_krw(self) -> float:
        return self.overseas_ask * self.fx_rate

    @property
    def overseas_bid_krw(self) -> float:
        return self.overseas_bid * self.fx_rate


@dataclass
class TradeParameters:
    buy_side: str  # "overseas" or "domestic"
    sell_side: str
    buy_price: float  # slippage-adjusted, KRW
    sell_price: float
    quantity: float
    premium: float
    trading_fee_rate: float
    slippage_rate: float

    @property
    def direction(self) -> str:
        return f"{self.buy_side}->{self.sell_side}"


@dataclass
class ProfitBreakdown:
    gross_profit: float
    trading_fees: float
    transfer_fees: float
    net_profit: float
    profit_rate: float


def calculate_trade_parameters(
    budget: float,
    analysis: MarketAnalysis,
    trading_fee_rate: float,
    slippage_rate: float,
) -> TradeParameters:
    """Pick direction from the premium sign and size the trade.

    Positive premium buys abroad and sells at home; zero or negative reverses.
    Slippage moves both reference prices against us; the buy-side fee is taken
    out of the budget before sizing.
    """
    if analysis.premium > 0:
        buy_side, sell_side = "overseas", "domestic"
        buy_price, sell_price = analysis.overseas_ask_krw, analysis.domestic_bid
    else:
        buy_side, sell_side = "domestic", "overseas"
        buy_price, sell_price = analysis.domestic_ask, analysis.overseas_bid_krw

    adjusted_buy = buy_price * (1 + slippage_rate)
    adjusted_sell = sell_price * (1 - slippage_rate)
    if adjusted_buy <= 0:
        raise ValueError(f"Non-positive buy price for {analysis.symbol}: {adjusted_buy}")

    net_budget = budget - budget * trading_fee_rate
    return TradeParameters(
        buy_side=buy_side,
        sell_side=sell_side,
        buy_price=adjusted_buy,
        sell_price=adjusted_sell,
        quantity=net_budget / adjusted_buy,
        premium=analysis.premium,
        trading_fee_rate=trading_fee_rate,
        slippage_rate=slippage_rate,
    )


def calculate_profit(params: TradeParameters, withdrawal_fee: float) -> ProfitBreakdown:
    """Realized profit for a completed cycle.

    The withdrawal fee is charged in coin units and valued at the sell price.
    """
    buy, sell, qty = params.buy_price, params.sell_price, params.quantity
    gross = (sell - buy) * qty
    trading_fees = params.trading_fee_rate * (buy + sell) * qty
    transfer_fees = (withdrawal_fee or 0.0) * sell
    net = gross - trading_fees - transfer_fees
    cost = buy * qty
    return ProfitBreakdown(
        gross_profit=gross,
        trading_fees=trading_fees,
        transfer_fees=transfer_fees,
        net_profit=net,
        profit_rate=net / cost * 100 if cost > 0 else 0.0,
    )
