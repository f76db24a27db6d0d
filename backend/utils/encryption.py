"""
Encryption utilities for the stored GitHub token.

Uses Fernet symmetric encryption. The key lives in <DATA_DIR>/encryption.key
and is generated on first use.

Security Note:
    This protects the token in database dumps/exports, but does NOT protect
    against full host compromise. An attacker holding both the database and
    the key file can decrypt the token.
"""

import os
import logging
from cryptography.fernet import Fernet, InvalidToken

from config.paths import DATA_DIR

logger = logging.getLogger(__name__)

# Path to encryption key file
KEY_PATH = os.path.join(DATA_DIR, 'encryption.key')


def _get_or_create_key() -> bytes:
    """
    Load the encryption key, generating and saving a new one if missing.

    Raises:
        IOError: If key file cannot be read or created
    """
    if os.path.exists(KEY_PATH):
        try:
            with open(KEY_PATH, 'rb') as f:
                return f.read()
        except OSError as e:
            logger.error(f"Failed to read encryption key from {KEY_PATH}: {e}")
            raise IOError(f"Cannot read encryption key: {e}")

    try:
        key = Fernet.generate_key()
        os.makedirs(os.path.dirname(KEY_PATH) or '.', exist_ok=True)

        with open(KEY_PATH, 'wb') as f:
            f.write(key)

        # Owner read/write only
        os.chmod(KEY_PATH, 0o600)

        logger.info(f"Generated new encryption key at {KEY_PATH}")
        return key

    except OSError as e:
        logger.error(f"Failed to generate or save encryption key: {e}")
        raise IOError(f"Cannot create encryption key: {e}")


def encrypt_token(plaintext: str) -> str:
    """
    Encrypt a token for storage.

    Returns:
        str: Fernet token (URL-safe base64)

    Raises:
        ValueError: If plaintext is empty
        IOError: If encryption key cannot be loaded
    """
    if not plaintext:
        raise ValueError("Cannot encrypt empty token")

    fernet = Fernet(_get_or_create_key())
    return fernet.encrypt(plaintext.encode('utf-8')).decode('ascii')


def decrypt_token(encrypted: str) -> str:
    """
    Decrypt a stored token.

    Raises:
        ValueError: If the ciphertext is empty, corrupted, or was made with another key
        IOError: If encryption key cannot be loaded
    """
    if not encrypted:
        raise ValueError("Cannot decrypt empty string")

    fernet = Fernet(_get_or_create_key())
    try:
        return fernet.decrypt(encrypted.encode('ascii')).decode('utf-8')
    except InvalidToken:
        logger.error("Failed to decrypt token: invalid token (key mismatch or corrupted data)")
        raise ValueError("Cannot decrypt token: invalid encryption token")
