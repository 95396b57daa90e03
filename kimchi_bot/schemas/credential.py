"""Pydantic schemas for exchange credential and deposit address API."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


def _strip_required(value: str) -> str:
    text = value.strip()
    if not text:
        raise ValueError("must not be empty")
    return text


class CredentialSave(BaseModel):
    exchange_id: int = Field(ge=1)
    api_key: str = Field(min_length=8, max_length=256)  # encrypted before storage
    secret_key: str = Field(min_length=8, max_length=256)
    passphrase: str | None = Field(default=None, max_length=256)

    @field_validator("api_key", "secret_key")
    @classmethod
    def _validate_key(cls, value: str) -> str:
        key = _strip_required(value)
        if any(c.isspace() for c in key):
            raise ValueError("must not contain whitespace")
        return key


class CredentialRead(BaseModel):
    id: int
    user_id: int
    exchange_id: int
    is_active: bool
    is_verified: bool
    last_tested_at: datetime | None
    last_test_result: str | None
    created_at: datetime
    # keys are NEVER exposed

    model_config = {"from_attributes": True}


class DepositAddressSave(BaseModel):
    exchange_id: int = Field(ge=1)
    symbol: str = Field(min_length=1, max_length=20)
    address: str = Field(min_length=4, max_length=256)
    memo: str | None = Field(default=None, max_length=128)  # destination tag for XRP-like coins

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, value: str) -> str:
        return _strip_required(value).upper()

    @field_validator("address")
    @classmethod
    def _validate_address(cls, value: str) -> str:
        return _strip_required(value)


class DepositAddressRead(BaseModel):
    id: int
    user_id: int
    exchange_id: int
    symbol: str
    address: str
    memo: str | None
    is_active: bool

    model_config = {"from_attributes": True}
