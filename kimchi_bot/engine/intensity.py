"""Trading intensity accumulator.

Per (scope, coin) a non-negative integer counter: +1 on every cycle whose
|premium| reaches the scope's premium threshold, otherwise -1 floored at 0.
When the post-update value reaches the trigger threshold an opportunity event
is emitted for that scope, on every qualifying cycle.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from kimchi_bot.database import engine as default_engine
from kimchi_bot.models.intensity import TradingIntensity
from kimchi_bot.services.cache import ReadModelCache
from kimchi_bot.utils.constants import GLOBAL_SCOPE

logger = logging.getLogger(__name__)

SIGNAL_ACTION = "TRADING_SIGNAL_TRIGGERED"


def user_scope(user_id: int) -> str:
    return f"user:{user_id}"


def next_intensity(current: int, premium: float, threshold: float) -> int:
    if abs(premium) >= threshold:
        return current + 1
    return max(current - 1, 0)


@dataclass
class TradingOpportunity:
    symbol: str
    premium_percent: float
    intensity: int
    threshold: int
    scope_key: str = GLOBAL_SCOPE
    user_id: int | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    action: str = SIGNAL_ACTION

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class IntensityUpdate:
    scope_key: str
    symbol: str
    previous: int
    current: int
    premium: float
    changed: bool
    opportunity: TradingOpportunity | None = None


class IntensityAccumulator:
    """Loads, advances and persists intensity rows, mirroring them to the cache."""

    def __init__(self, cache: ReadModelCache, db_engine: Engine | None = None):
        self.cache = cache
        self.engine = db_engine or default_engine

    async def update(
        self,
        scope_key: str,
        coin_id: int,
        symbol: str,
        premium: float,
        premium_threshold: float,
        trigger_threshold: int,
        user_id: int | None = None,
    ) -> IntensityUpdate:
        now = datetime.now(timezone.utc)
        with Session(self.engine) as session:
            row = session.exec(
                select(TradingIntensity).where(
                    TradingIntensity.scope_key == scope_key,
                    TradingIntensity.coin_id == coin_id,
                )
            ).first()
            previous = row.current_intensity if row else 0
            current = next_intensity(previous, premium, premium_threshold)
            changed = row is None or current != previous

            if changed:
                if row is None:
                    row = TradingIntensity(scope_key=scope_key, user_id=user_id, coin_id=coin_id)
                row.current_intensity = current
                row.last_premium_rate = premium
                row.last_updated = now
                session.add(row)
                session.commit()

        if changed:
            await self.cache.set_intensity(scope_key, symbol, {
                "symbol": symbol,
                "scope_key": scope_key,
                "intensity": current,
                "premium": premium,
                "updated_at": now.isoformat(),
            })

        result = IntensityUpdate(
            scope_key=scope_key,
            symbol=symbol,
            previous=previous,
            current=current,
            premium=premium,
            changed=changed,
        )

        if current >= trigger_threshold:
            opportunity = TradingOpportunity(
                symbol=symbol,
                premium_percent=premium,
                intensity=current,
                threshold=trigger_threshold,
                scope_key=scope_key,
                user_id=user_id,
            )
            await self.cache.push_opportunity(opportunity.to_dict())
            result.opportunity = opportunity
            logger.info(
                f"[{symbol}] Opportunity ({scope_key}): premium={premium:.2f}%, "
                f"intensity={current}/{trigger_threshold}"
            )

        return result

    def get_intensities(self, scope_key: str = GLOBAL_SCOPE) -> dict[int, TradingIntensity]:
        """Current rows for a scope keyed by coin id."""
        with Session(self.engine) as session:
            rows = session.exec(
                select(TradingIntensity).where(TradingIntensity.scope_key == scope_key)
            ).all()
            return {row.coin_id: row for row in rows}
