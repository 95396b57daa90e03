"""Pydantic schemas for bot settings updates."""

from pydantic import BaseModel, Field, model_validator


class BotSettingsUpdate(BaseModel):
    search_interval_seconds: int | None = Field(default=None, ge=5, le=3600)
    premium_threshold_percent: float | None = Field(default=None, gt=0, le=50)
    trading_intensity_threshold: int | None = Field(default=None, ge=1, le=1000)
    min_trade_amount_krw: float | None = Field(default=None, gt=0)
    max_trade_amount_krw: float | None = Field(default=None, gt=0)
    max_daily_trades: int | None = Field(default=None, ge=0)
    bot_enabled: bool | None = None
    emergency_stop: bool | None = None

    @model_validator(mode="after")
    def _check_amount_range(self):
        low, high = self.min_trade_amount_krw, self.max_trade_amount_krw
        if low is not None and high is not None and low > high:
            raise ValueError("min_trade_amount_krw must not exceed max_trade_amount_krw")
        return self
