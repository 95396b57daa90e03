"""Pydantic schemas for the trade API."""

from pydantic import BaseModel, Field, field_validator


class TradeExecuteRequest(BaseModel):
    user_id: int = Field(ge=1)
    symbol: str = Field(min_length=1, max_length=20)
    budget_krw: float = Field(gt=0)
    dry_run: bool = True

    @field_validator("symbol")
    @classmethod
    def _normalize_symbol(cls, value: str) -> str:
        text = value.strip().upper()
        if not text.isalnum():
            raise ValueError("must be an alphanumeric coin symbol")
        return text
