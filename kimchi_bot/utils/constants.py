"""Shared constants and seed defaults."""

# Scope key of the admin-level (user-less) monitor
GLOBAL_SCOPE = "global"

# Default markets per symbol: (domestic KRW market, overseas USDT market)
DEFAULT_MARKETS: dict[str, tuple[str, str]] = {
    "BTC": ("KRW-BTC", "BTCUSDT"),
    "ETH": ("KRW-ETH", "ETHUSDT"),
    "XRP": ("KRW-XRP", "XRPUSDT"),
    "ADA": ("KRW-ADA", "ADAUSDT"),
    "DOT": ("KRW-DOT", "DOTUSDT"),
    "MATIC": ("KRW-MATIC", "MATICUSDT"),
    "SOL": ("KRW-SOL", "SOLUSDT"),
}

# Bot setting keys -> (data_type, default)
BOT_SETTING_TYPES: dict[str, tuple[str, object]] = {
    "search_interval_seconds": ("number", 60),
    "premium_threshold_percent": ("number", 1.0),
    "trading_intensity_threshold": ("number", 5),
    "min_trade_amount_krw": ("number", 1_000_000),
    "max_trade_amount_krw": ("number", 10_000_000),
    "max_daily_trades": ("number", 20),
    "bot_enabled": ("boolean", False),
    "emergency_stop": ("boolean", False),
}

# Settings a user must have saved before a trade can run
REQUIRED_TRADE_SETTINGS = [
    "min_trade_amount_krw",
    "max_trade_amount_krw",
    "premium_threshold_percent",
    "trading_intensity_threshold",
]

# Seed rows for `cli init-db`
SEED_EXCHANGES = [
    # name, display_name, type, trading_fee_rate
    ("upbit", "Upbit", "domestic", 0.0005),
    ("bithumb", "Bithumb", "domestic", 0.0025),
    ("binance", "Binance", "overseas", 0.001),
]

SEED_COINS = [
    # symbol, name, network, withdrawal_fee, min_withdrawal
    ("BTC", "Bitcoin", "BTC", 0.0005, 0.001),
    ("ETH", "Ethereum", "ERC20", 0.01, 0.02),
    ("XRP", "Ripple", "XRP", 0.15, 20.0),
    ("ADA", "Cardano", "ADA", 1.0, 10.0),
    ("DOT", "Polkadot", "DOT", 0.1, 1.0),
    ("MATIC", "Polygon", "MATIC", 0.1, 1.0),
    ("SOL", "Solana", "SOL", 0.01, 0.02),
]
