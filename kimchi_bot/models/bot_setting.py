"""BotSetting model: string-keyed runtime settings, global (user_id NULL) or per user."""

from datetime import datetime, timezone

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class BotSetting(SQLModel, table=True):
    __tablename__ = "bot_setting"
    __table_args__ = (UniqueConstraint("user_id", "key_name", name="uq_bot_setting_user_key"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: int | None = Field(default=None, foreign_key="user.id", index=True)
    key_name: str = Field(index=True)
    value: str
    data_type: str = "string"  # "string", "number", "boolean", "json"
    is_active: bool = True
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
