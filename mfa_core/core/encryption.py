"""
At-rest encryption for factor secrets
"""
import base64
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import get_settings

_DEV_MASTER_KEY = "mfa-core-dev-key-change-in-production"


@lru_cache(maxsize=4)
def _fernet_for(master_key: str) -> Fernet:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b"mfa-core-factor-secrets",
        iterations=100000,
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(master_key.encode())))


def _get_fernet() -> Fernet:
    return _fernet_for(get_settings().secret_encryption_key or _DEV_MASTER_KEY)


def encrypt_secret(secret: str) -> str:
    """
    Encrypt a factor secret for storage.

    Args:
        secret: Base32 secret as handed to the authenticator app

    Returns:
        Fernet token (ASCII)
    """
    return _get_fernet().encrypt(secret.encode("ascii")).decode("ascii")


def decrypt_secret(token: str) -> str:
    """
    Decrypt a stored factor secret.

    Raises:
        ValueError: if the token was not produced with the configured key
    """
    try:
        return _get_fernet().decrypt(token.encode("ascii")).decode("ascii")
    except InvalidToken as exc:
        raise ValueError("Stored factor secret cannot be decrypted with the configured key") from exc
