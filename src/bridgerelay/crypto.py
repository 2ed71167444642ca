"""Encryption at rest for custodial private keys.

Uses Fernet (AES-128-CBC with HMAC) for symmetric encryption.
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from bridgerelay.errors import ConfigurationError, RegistryError

logger = logging.getLogger(__name__)

# Fernet tokens are base64 and always start with this prefix
FERNET_PREFIX = "gAAAAA"


def generate_master_key() -> str:
    """Generate a new master encryption key.

    Returns:
        Base64-encoded 32-byte key suitable for Fernet
    """
    return Fernet.generate_key().decode()


class KeyCipher:
    """Encrypts and decrypts custodial keys before they reach a store.

    Without a master key the cipher is a passthrough, so existing
    plaintext stores keep working. With a master key, plaintext values
    found in the store are still readable (migration path) but every new
    key is written encrypted.

    Usage:
        cipher = KeyCipher(master_key)
        stored = cipher.encrypt("0x...")
        key = cipher.decrypt(stored)
    """

    def __init__(self, master_key: Optional[str] = None):
        self._fernet: Optional[Fernet] = None
        if master_key:
            try:
                self._fernet = Fernet(master_key.encode())
            except ValueError as e:
                raise ConfigurationError(f"Invalid MASTER_KEY: {e}") from e
        else:
            logger.warning("MASTER_KEY not set - custodial keys are stored in plaintext")

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, private_key: str) -> str:
        if self._fernet is None:
            return private_key
        return self._fernet.encrypt(private_key.encode()).decode()

    def decrypt(self, stored: str) -> str:
        """Decrypt a stored key.

        Raises:
            RegistryError: If the value is encrypted and cannot be decrypted
        """
        if not stored.startswith(FERNET_PREFIX):
            return stored

        if self._fernet is None:
            raise RegistryError("Stored key is encrypted but MASTER_KEY is not set")

        try:
            return self._fernet.decrypt(stored.encode()).decode()
        except InvalidToken as e:
            raise RegistryError("Failed to decrypt custodial key (wrong MASTER_KEY?)") from e
