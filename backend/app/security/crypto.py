############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# crypto.py: At-rest encryption of AI provider credentials
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Fernet encryption for provider API keys.

Keys are stored as Fernet ciphertext and decrypted only immediately before
a provider client is built. Anything returned to a client uses
``MASKED_API_KEY`` instead.
"""

import base64
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from backend.app.errors import ConfigurationError
from backend.app.settings import get_settings

MASKED_API_KEY = "***hidden***"

_KDF_SALT = b"toolgate_provider_credentials"


@lru_cache(maxsize=4)
def _fernet_for(key: str) -> Fernet:
    """Build a Fernet instance, deriving a 32-byte key with PBKDF2 when needed."""
    if len(key) != 32:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_KDF_SALT,
            iterations=100000,
        )
        derived = base64.urlsafe_b64encode(kdf.derive(key.encode()))
    else:
        derived = base64.urlsafe_b64encode(key.encode())
    return Fernet(derived)


def _get_fernet() -> Fernet:
    return _fernet_for(get_settings().encryption_key)


def encrypt_api_key(api_key: str) -> str:
    """
    Encrypt a provider API key for storage.

    Args:
        api_key: Plain text key

    Returns:
        Fernet token as text
    """
    return _get_fernet().encrypt(api_key.encode()).decode()


def decrypt_api_key(encrypted: str) -> str:
    """
    Decrypt a stored provider API key.

    Raises:
        ConfigurationError: if the ciphertext was produced with another key
    """
    try:
        return _get_fernet().decrypt(encrypted.encode()).decode()
    except InvalidToken as e:
        raise ConfigurationError("Stored AI provider credential cannot be decrypted") from e


def is_masked(value: str) -> bool:
    """True when a client echoed the mask back instead of a new key."""
    return value == MASKED_API_KEY
