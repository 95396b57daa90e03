"""Trade execution and history API."""

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from kimchi_bot.database import get_session
from kimchi_bot.models.trade import TradeRecord
from kimchi_bot.api.deps import get_executor
from kimchi_bot.engine.trade_executor import TradeExecutor
from kimchi_bot.schemas.trade import TradeExecuteRequest

router = APIRouter(prefix="/api/trades", tags=["trades"])

# Result error types for rejected requests; anything else without a record is a 500
_CONFLICT_ERRORS = {"ConcurrencyError"}
_CLIENT_ERRORS = {"TradeValidationError", "ConfigurationError"}


@router.post("/execute")
async def execute_trade(body: TradeExecuteRequest, executor: TradeExecutor = Depends(get_executor)):
    """Run one buy/transfer/sell cycle. Failed executions that created a record still return 200."""
    result = await executor.execute_once(body.user_id, body.symbol, body.budget_krw, dry_run=body.dry_run)
    if not result.success and result.trade_id is None:
        if result.error_type in _CONFLICT_ERRORS:
            code = 409
        elif result.error_type in _CLIENT_ERRORS:
            code = 400
        else:
            code = 500
        raise HTTPException(status_code=code, detail=result.error)
    return result.to_dict()


@router.get("")
def list_trades(
    user_id: int | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
    session: Session = Depends(get_session),
):
    stmt = select(TradeRecord).order_by(TradeRecord.created_at.desc())
    if user_id is not None:
        stmt = stmt.where(TradeRecord.user_id == user_id)
    if status is not None:
        stmt = stmt.where(TradeRecord.status == status)
    stmt = stmt.offset(offset).limit(limit)
    return session.exec(stmt).all()


@router.get("/{trade_id}")
def get_trade(trade_id: int, session: Session = Depends(get_session)):
    trade = session.get(TradeRecord, trade_id)
    if not trade:
        raise HTTPException(status_code=404, detail="Trade not found")
    return trade
