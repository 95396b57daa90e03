"""Per-user exchange credentials and deposit addresses."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from kimchi_bot.config import settings
from kimchi_bot.database import engine as default_engine
from kimchi_bot.models.credential import ExchangeCredential
from kimchi_bot.models.deposit_address import DepositAddress
from kimchi_bot.models.exchange import Exchange
from kimchi_bot.services.encryption import decrypt, encrypt, mask_secret
from kimchi_bot.services.exchange_adapters import create_adapter
from kimchi_bot.services.exchange_client import (
    AuthenticationError,
    ExchangeAdapter,
    ExchangeCredentials,
    ExchangeError,
)

logger = logging.getLogger(__name__)


@dataclass
class VerifiedExchange:
    credential_id: int
    exchange_id: int
    exchange_name: str
    exchange_type: str


@dataclass
class DepositInfo:
    address: str
    memo: str | None = None


def save_credential(
    user_id: int,
    exchange_id: int,
    api_key: str,
    secret_key: str,
    passphrase: str | None = None,
    db_engine: Engine | None = None,
) -> ExchangeCredential:
    """Store (or replace) a user's key pair for one exchange. Resets verification."""
    with Session(db_engine or default_engine) as session:
        cred = session.exec(
            select(ExchangeCredential).where(
                ExchangeCredential.user_id == user_id,
                ExchangeCredential.exchange_id == exchange_id,
            )
        ).first() or ExchangeCredential(user_id=user_id, exchange_id=exchange_id)
        cred.api_key_encrypted = encrypt(api_key)
        cred.secret_key_encrypted = encrypt(secret_key)
        cred.passphrase_encrypted = encrypt(passphrase) if passphrase else None
        cred.is_active = True
        cred.is_verified = False
        cred.last_test_result = None
        session.add(cred)
        session.commit()
        session.refresh(cred)
        return cred


def decrypt_credentials(cred: ExchangeCredential) -> ExchangeCredentials:
    return ExchangeCredentials(
        api_key=decrypt(cred.api_key_encrypted),
        secret_key=decrypt(cred.secret_key_encrypted),
        passphrase=decrypt(cred.passphrase_encrypted) if cred.passphrase_encrypted else None,
    )


async def verify_credential(
    credential_id: int,
    adapter: ExchangeAdapter | None = None,
    db_engine: Engine | None = None,
) -> dict:
    """Call `get_balance` with the stored keys and record the outcome.

    A rejected key clears `is_verified`. Transport and API failures leave the
    flag unchanged.
    """
    db_engine = db_engine or default_engine
    with Session(db_engine) as session:
        cred = session.get(ExchangeCredential, credential_id)
        if not cred:
            raise ValueError(f"Credential {credential_id} not found")
        exchange = session.get(Exchange, cred.exchange_id)
        credentials = decrypt_credentials(cred)

    key_hint = mask_secret(credentials.api_key)
    owns_adapter = adapter is None
    adapter = adapter or create_adapter(exchange.name, timeout=settings.exchange_timeout_seconds)
    verified: bool | None
    try:
        balance = await adapter.get_balance(credentials)
        verified = True
        result = {
            "status": "ok",
            "exchange": exchange.name,
            "api_key": key_hint,
            "fiat_currency": balance.fiat_currency,
            "fiat_balance": balance.fiat_balance,
            "coins": len(balance.coin_balances),
        }
    except AuthenticationError as e:
        verified = False
        result = {"status": "error", "exchange": exchange.name, "message": str(e)}
    except ExchangeError as e:
        verified = None
        result = {"status": "error", "exchange": exchange.name, "message": str(e)}
    finally:
        if owns_adapter:
            await adapter.close()

    with Session(db_engine) as session:
        cred = session.get(ExchangeCredential, credential_id)
        if verified is not None:
            cred.is_verified = verified
        cred.last_tested_at = datetime.now(timezone.utc)
        cred.last_test_result = result.get("message", "ok")[:500]
        session.add(cred)
        session.commit()

    logger.info(f"Credential {credential_id} ({exchange.name}, key {key_hint}) test: {result['status']}")
    return result


def get_verified_exchanges(user_id: int, db_engine: Engine | None = None) -> list[VerifiedExchange]:
    """Exchanges where the user holds an active, verified credential."""
    with Session(db_engine or default_engine) as session:
        rows = session.exec(
            select(ExchangeCredential, Exchange)
            .join(Exchange, Exchange.id == ExchangeCredential.exchange_id)
            .where(
                ExchangeCredential.user_id == user_id,
                ExchangeCredential.is_verified == True,
                ExchangeCredential.is_active == True,
            )
            .order_by(Exchange.type, Exchange.name)
        ).all()
        return [
            VerifiedExchange(
                credential_id=cred.id,
                exchange_id=ex.id,
                exchange_name=ex.name,
                exchange_type=ex.type,
            )
            for cred, ex in rows
        ]


def save_deposit_address(
    user_id: int,
    exchange_id: int,
    symbol: str,
    address: str,
    memo: str | None = None,
    db_engine: Engine | None = None,
) -> DepositAddress:
    symbol = symbol.upper()
    with Session(db_engine or default_engine) as session:
        row = session.exec(
            select(DepositAddress).where(
                DepositAddress.user_id == user_id,
                DepositAddress.exchange_id == exchange_id,
                DepositAddress.symbol == symbol,
            )
        ).first() or DepositAddress(user_id=user_id, exchange_id=exchange_id, symbol=symbol, address="")
        row.address = address.strip()
        row.memo = memo.strip() if memo else None
        row.is_active = True
        row.updated_at = datetime.now(timezone.utc)
        session.add(row)
        session.commit()
        session.refresh(row)
        return row


def get_deposit_address(
    user_id: int,
    exchange_id: int,
    symbol: str,
    db_engine: Engine | None = None,
) -> DepositInfo | None:
    with Session(db_engine or default_engine) as session:
        row = session.exec(
            select(DepositAddress).where(
                DepositAddress.user_id == user_id,
                DepositAddress.exchange_id == exchange_id,
                DepositAddress.symbol == symbol.upper(),
                DepositAddress.is_active == True,
            )
        ).first()
    if not row or not row.address:
        return None
    return DepositInfo(address=row.address, memo=row.memo)
