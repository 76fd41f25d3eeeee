"""
Encryption utilities for secrets stored by the credential vault.

Uses Fernet symmetric encryption to protect tokens, passwords and SSH keys.
The encryption key is stored in the data directory (config.paths.KEY_PATH)
and auto-generated on first use.

Security Note:
    This protects against database dumps/exports, but does NOT protect against
    full host compromise. If an attacker gains access to both the database
    AND the encryption key, they can decrypt the data.
"""

import os
import logging
from typing import Optional
from cryptography.fernet import Fernet, InvalidToken

from config.paths import KEY_PATH

logger = logging.getLogger(__name__)


class EncryptionUnavailable(RuntimeError):
    """Raised when the encryption key cannot be loaded or created."""
    pass


def _get_or_create_key(key_path: Optional[str] = None) -> bytes:
    """
    Load existing encryption key or generate a new one.

    Args:
        key_path: Key file location, defaults to config.paths.KEY_PATH

    Returns:
        bytes: Fernet encryption key

    Raises:
        EncryptionUnavailable: If key file cannot be read or created
    """
    path = key_path or KEY_PATH

    if os.path.exists(path):
        try:
            with open(path, 'rb') as f:
                key = f.read().strip()
            # Fernet() validates the key length/encoding
            Fernet(key)
            logger.debug(f"Loaded encryption key from {path}")
            return key
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read encryption key from {path}: {e}")
            raise EncryptionUnavailable(f"Cannot read encryption key: {e}")

    try:
        key = Fernet.generate_key()

        key_dir = os.path.dirname(path)
        if key_dir:
            os.makedirs(key_dir, exist_ok=True)

        with open(path, 'wb') as f:
            f.write(key)

        # Owner read/write only
        os.chmod(path, 0o600)

        logger.info(f"Generated new encryption key at {path}")
        return key

    except OSError as e:
        logger.error(f"Failed to generate or save encryption key: {e}")
        raise EncryptionUnavailable(f"Cannot create encryption key: {e}")


def is_encryption_available(key_path: Optional[str] = None) -> bool:
    """
    Check whether secrets can be encrypted right now.

    Returns:
        bool: True if the key can be loaded (or created), False otherwise
    """
    try:
        _get_or_create_key(key_path)
        return True
    except EncryptionUnavailable:
        return False


def encrypt_secret(plaintext: str, key_path: Optional[str] = None) -> str:
    """
    Encrypt a secret for storage.

    Args:
        plaintext: Plain text to encrypt
        key_path: Optional key file location

    Returns:
        str: Base64-encoded Fernet token

    Raises:
        ValueError: If plaintext is empty
        EncryptionUnavailable: If the encryption key cannot be loaded
    """
    if not plaintext:
        raise ValueError("Cannot encrypt empty value")

    fernet = Fernet(_get_or_create_key(key_path))
    encrypted = fernet.encrypt(plaintext.encode('utf-8')).decode('ascii')
    logger.debug("Secret encrypted successfully")
    return encrypted


def decrypt_secret(encrypted: str, key_path: Optional[str] = None) -> str:
    """
    Decrypt a secret from storage.

    Args:
        encrypted: Base64-encoded Fernet token
        key_path: Optional key file location

    Returns:
        str: Decrypted plain text

    Raises:
        ValueError: If the token is empty, corrupted, or encrypted with another key
        EncryptionUnavailable: If the encryption key cannot be loaded
    """
    if not encrypted:
        raise ValueError("Cannot decrypt empty string")

    fernet = Fernet(_get_or_create_key(key_path))
    try:
        plaintext = fernet.decrypt(encrypted.encode('ascii')).decode('utf-8')
    except (InvalidToken, UnicodeError):
        logger.error("Failed to decrypt secret: invalid token (key mismatch or corrupted data)")
        raise ValueError("Cannot decrypt secret: invalid encryption token")

    logger.debug("Secret decrypted successfully")
    return plaintext
