"""Fernet encryption for exchange API keys at rest."""

from cryptography.fernet import Fernet, InvalidToken

from kimchi_bot.config import settings

_fernet: Fernet | None = None


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        key = settings.encryption_key
        if not key:
            raise RuntimeError(
                "KB_ENCRYPTION_KEY is required to store exchange keys. Create one with "
                "Fernet.generate_key() from the cryptography package."
            )
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
    return _fernet


def encrypt(plaintext: str) -> str:
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt(token: str) -> str:
    """Recover a stored key. Raises ValueError when the token was made with another key."""
    try:
        return _get_fernet().decrypt(token.encode()).decode()
    except InvalidToken as e:
        raise ValueError("Stored key cannot be decrypted with the configured KB_ENCRYPTION_KEY") from e


def mask_secret(value: str, visible: int = 4) -> str:
    """`abcd...wxyz` style preview for logs and API responses."""
    if len(value) <= visible * 2:
        return "*" * len(value)
    return f"{value[:visible]}...{value[-visible:]}"
