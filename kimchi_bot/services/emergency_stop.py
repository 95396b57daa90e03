"""Emergency stop: halt monitoring, block new trades and optionally disable all user bots."""

import logging
from typing import TYPE_CHECKING

from sqlalchemy.engine import Engine

from kimchi_bot.services.settings_store import disable_all_user_bots, update_bot_settings

if TYPE_CHECKING:
    from kimchi_bot.engine.monitor import KimchiMonitor

logger = logging.getLogger(__name__)


async def run_emergency_stop(
    monitor: "KimchiMonitor | None",
    disable_bots: bool = True,
    db_engine: Engine | None = None,
) -> dict:
    """Execute emergency stop.

    Trades already past lock acquisition run to their terminal state; the
    global `emergency_stop` flag rejects every new execution at validation.

    Returns dict with monitoring_stopped, bots_disabled and errors.
    """
    result = {"monitoring_stopped": False, "bots_disabled": 0, "errors": []}

    if monitor is not None:
        try:
            result["monitoring_stopped"] = await monitor.stop()
        except Exception as e:
            error_msg = f"Failed to stop monitoring: {e}"
            logger.error(error_msg)
            result["errors"].append(error_msg)

    update_bot_settings({"emergency_stop": True}, user_id=None, db_engine=db_engine)

    if disable_bots:
        result["bots_disabled"] = disable_all_user_bots(db_engine)

    logger.warning(
        f"[emergency_stop] monitoring_stopped={result['monitoring_stopped']}, "
        f"bots_disabled={result['bots_disabled']}"
    )
    return result
