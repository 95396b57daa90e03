"""Application configuration via environment variables."""

from pathlib import Path
from pydantic_settings import BaseSettings

PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    database_url: str = f"sqlite:///{PROJECT_ROOT / 'kimchi_bot.db'}"
    redis_url: str = "redis://localhost:6379/0"
    encryption_key: str = ""  # Fernet key; generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]

    # Exchanges (adapter registry keys)
    domestic_exchange: str = "upbit"
    overseas_exchange: str = "binance"
    exchange_timeout_seconds: float = 10.0

    # USD/KRW rate
    fx_rate_url: str = "https://quotation-api-cdn.dunamu.com/v1/forex/recent?codes=FRX.KRWUSD"
    fx_fallback_rate: float = 1300.0

    # Monitoring
    monitored_symbols: list[str] = ["BTC", "ETH", "XRP", "ADA", "DOT"]
    orderbook_depth: int = 5
    cache_ttl_seconds: int = 300
    opportunity_history_size: int = 100
    autostart_monitoring: bool = False

    # Trade execution
    trade_lock_ttl_seconds: int = 300
    trading_fee_rate: float = 0.0025
    slippage_rate: float = 0.001
    dry_run_order_delay: tuple[float, float] = (0.5, 2.0)  # seconds, min/max
    dry_run_transfer_delay: tuple[float, float] = (30.0, 60.0)

    # Telegram
    telegram_bot_token: str = ""
    telegram_chat_ids: list[int] = []

    model_config = {"env_prefix": "KB_", "env_file": ".env"}


settings = Settings()
