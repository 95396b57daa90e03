"""Per-user exchange credentials and deposit addresses."""

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from kimchi_bot.database import get_session
from kimchi_bot.models.credential import ExchangeCredential
from kimchi_bot.models.deposit_address import DepositAddress
from kimchi_bot.models.exchange import Exchange
from kimchi_bot.models.user import User
from kimchi_bot.schemas.credential import (
    CredentialRead,
    CredentialSave,
    DepositAddressRead,
    DepositAddressSave,
)
from kimchi_bot.services import accounts

router = APIRouter(prefix="/api/users/{user_id}", tags=["credentials"])


def _check_refs(session: Session, user_id: int, exchange_id: int):
    if not session.get(User, user_id):
        raise HTTPException(status_code=404, detail="User not found")
    if not session.get(Exchange, exchange_id):
        raise HTTPException(status_code=404, detail="Exchange not found")


@router.get("/credentials", response_model=list[CredentialRead])
def list_credentials(user_id: int, session: Session = Depends(get_session)):
    return session.exec(select(ExchangeCredential).where(ExchangeCredential.user_id == user_id)).all()


@router.put("/credentials", response_model=CredentialRead)
def save_credential(user_id: int, data: CredentialSave, session: Session = Depends(get_session)):
    """Store keys for one exchange. Verification resets until the next test."""
    _check_refs(session, user_id, data.exchange_id)
    return accounts.save_credential(
        user_id, data.exchange_id, data.api_key, data.secret_key, data.passphrase
    )


@router.post("/credentials/{cred_id}/test")
async def verify_credential(user_id: int, cred_id: int, session: Session = Depends(get_session)):
    """Fetch balances with the stored keys and update `is_verified`."""
    cred = session.get(ExchangeCredential, cred_id)
    if not cred or cred.user_id != user_id:
        raise HTTPException(status_code=404, detail="Credential not found")
    try:
        return await accounts.verify_credential(cred_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/deposit-addresses", response_model=list[DepositAddressRead])
def list_deposit_addresses(user_id: int, session: Session = Depends(get_session)):
    return session.exec(select(DepositAddress).where(DepositAddress.user_id == user_id)).all()


@router.put("/deposit-addresses", response_model=DepositAddressRead)
def save_deposit_address(user_id: int, data: DepositAddressSave, session: Session = Depends(get_session)):
    _check_refs(session, user_id, data.exchange_id)
    return accounts.save_deposit_address(
        user_id, data.exchange_id, data.symbol, data.address, data.memo
    )
