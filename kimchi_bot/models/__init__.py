"""Database models."""

from kimchi_bot.models.exchange import Exchange
from kimchi_bot.models.coin import Coin
from kimchi_bot.models.user import User
from kimchi_bot.models.bot_setting import BotSetting
from kimchi_bot.models.intensity import TradingIntensity
from kimchi_bot.models.credential import ExchangeCredential
from kimchi_bot.models.deposit_address import DepositAddress
from kimchi_bot.models.trade import TradeRecord, TradeStatus
from kimchi_bot.models.monitor_log import MonitorLog

__all__ = [
    "Exchange",
    "Coin",
    "User",
    "BotSetting",
    "TradingIntensity",
    "ExchangeCredential",
    "DepositAddress",
    "TradeRecord",
    "TradeStatus",
    "MonitorLog",
]
