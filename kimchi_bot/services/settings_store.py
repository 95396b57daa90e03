"""Bot settings store: string-keyed rows decoded into a typed `BotSettings`.

Global settings have `user_id = NULL`; user settings override them key by key.
Defaults are applied once here, at the decode step.
"""

import json
import logging
from datetime import datetime, timezone

from pydantic import BaseModel
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from kimchi_bot.database import engine as default_engine
from kimchi_bot.models.bot_setting import BotSetting
from kimchi_bot.models.user import User
from kimchi_bot.utils.constants import BOT_SETTING_TYPES, REQUIRED_TRADE_SETTINGS

logger = logging.getLogger(__name__)


class BotSettings(BaseModel):
    search_interval_seconds: int = 60
    premium_threshold_percent: float = 1.0
    trading_intensity_threshold: int = 5
    min_trade_amount_krw: float = 1_000_000
    max_trade_amount_krw: float = 10_000_000
    max_daily_trades: int = 20
    bot_enabled: bool = False
    emergency_stop: bool = False


def decode_value(raw: str, data_type: str):
    """Turn a stored string back into its runtime type."""
    if data_type == "number":
        number = float(raw)
        return int(number) if number.is_integer() else number
    if data_type == "boolean":
        return raw.strip().lower() in ("true", "1", "yes", "on")
    if data_type == "json":
        return json.loads(raw)
    return raw


def encode_value(value, data_type: str) -> str:
    if data_type == "boolean":
        return "true" if value else "false"
    if data_type == "json":
        return json.dumps(value)
    return str(value)


def _load_rows(session: Session, user_id: int | None) -> dict[str, BotSetting]:
    stmt = select(BotSetting).where(BotSetting.is_active == True)
    if user_id is None:
        stmt = stmt.where(BotSetting.user_id == None)  # noqa: E711
    else:
        stmt = stmt.where(BotSetting.user_id == user_id)
    return {row.key_name: row for row in session.exec(stmt).all()}


def _decode_rows(rows: dict[str, BotSetting]) -> dict:
    values = {}
    for key, row in rows.items():
        if key not in BotSettings.model_fields:
            continue
        try:
            values[key] = decode_value(row.value, row.data_type)
        except ValueError:
            logger.warning(f"Ignoring undecodable setting {key}={row.value!r} ({row.data_type})")
    return values


def get_bot_settings(user_id: int | None = None, db_engine: Engine | None = None) -> BotSettings:
    """Decoded settings for a scope. Users inherit global values for keys they have not set."""
    with Session(db_engine or default_engine) as session:
        values = _decode_rows(_load_rows(session, None))
        if user_id is not None:
            values.update(_decode_rows(_load_rows(session, user_id)))
    return BotSettings(**values)


def missing_required_settings(user_id: int, db_engine: Engine | None = None) -> list[str]:
    """Required trade keys the user has not saved themselves."""
    with Session(db_engine or default_engine) as session:
        rows = _load_rows(session, user_id)
    return [key for key in REQUIRED_TRADE_SETTINGS if key not in rows]


def update_bot_settings(
    values: dict,
    user_id: int | None = None,
    db_engine: Engine | None = None,
) -> BotSettings:
    """Upsert setting rows for a scope and return the re-decoded settings."""
    unknown = set(values) - set(BOT_SETTING_TYPES)
    if unknown:
        raise ValueError(f"Unknown setting(s): {', '.join(sorted(unknown))}")

    db_engine = db_engine or default_engine
    with Session(db_engine) as session:
        rows = _load_rows(session, user_id)
        now = datetime.now(timezone.utc)
        for key, value in values.items():
            data_type = BOT_SETTING_TYPES[key][0]
            row = rows.get(key) or BotSetting(user_id=user_id, key_name=key, value="", data_type=data_type)
            row.value = encode_value(value, data_type)
            row.updated_at = now
            session.add(row)
        session.commit()

    scope = "global" if user_id is None else f"user {user_id}"
    logger.info(f"Updated {scope} settings: {', '.join(sorted(values))}")
    return get_bot_settings(user_id, db_engine)


def get_active_user_bots(db_engine: Engine | None = None) -> list[tuple[int, BotSettings]]:
    """Active `user`-role accounts whose own `bot_enabled` is true, with decoded settings."""
    db_engine = db_engine or default_engine
    with Session(db_engine) as session:
        user_ids = session.exec(
            select(User.id)
            .join(BotSetting, BotSetting.user_id == User.id)
            .where(
                User.is_active == True,
                User.role == "user",
                BotSetting.key_name == "bot_enabled",
                BotSetting.is_active == True,
                BotSetting.value == "true",
            )
            .order_by(User.id)
        ).all()
    return [(uid, get_bot_settings(uid, db_engine)) for uid in user_ids]


def disable_all_user_bots(db_engine: Engine | None = None) -> int:
    """Set `bot_enabled=false` on every user that has it on. Returns the count."""
    with Session(db_engine or default_engine) as session:
        rows = session.exec(
            select(BotSetting).where(
                BotSetting.user_id != None,  # noqa: E711
                BotSetting.key_name == "bot_enabled",
                BotSetting.value == "true",
            )
        ).all()
        now = datetime.now(timezone.utc)
        for row in rows:
            row.value = "false"
            row.updated_at = now
            session.add(row)
        session.commit()
        return len(rows)
