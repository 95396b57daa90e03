"""ExchangeCredential model: encrypted per-user exchange API keys."""

from datetime import datetime, timezone

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class ExchangeCredential(SQLModel, table=True):
    __tablename__ = "exchange_credential"
    __table_args__ = (UniqueConstraint("user_id", "exchange_id", name="uq_credential_user_exchange"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    exchange_id: int = Field(foreign_key="exchange.id")
    api_key_encrypted: str = ""  # Fernet-encrypted
    secret_key_encrypted: str = ""
    passphrase_encrypted: str | None = None
    is_active: bool = True
    is_verified: bool = False
    last_tested_at: datetime | None = None
    last_test_result: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
