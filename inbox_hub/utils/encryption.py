"""
Cryptographic utilities.

Webhook signature verification (HMAC-SHA256 as sent by Meta in
X-Hub-Signature-256) and symmetric encryption of platform access tokens
stored at rest.
"""

import hashlib
import hmac
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from inbox_hub.config.constants import SIGNATURE_PREFIX
from inbox_hub.utils.logger import get_logger

logger = get_logger(__name__)


class EncryptionError(Exception):
    """Raised when a stored secret cannot be encrypted or decrypted."""
    pass


def hmac_signature(data: Union[bytes, str], secret: str) -> str:
    """
    Generate an HMAC-SHA256 hex signature for data.

    Args:
        data: Raw bytes (or text, encoded as UTF-8) to sign
        secret: Secret key for signing

    Returns:
        Hex digest
    """
    if isinstance(data, str):
        data = data.encode("utf-8")

    return hmac.new(secret.encode("utf-8"), data, hashlib.sha256).hexdigest()


def verify_hub_signature(raw_body: bytes, secret: str, signature_header: Optional[str]) -> bool:
    """
    Verify a ``sha256=<hex>`` signature header against the raw request body.

    The comparison is constant time. A missing header, a header without
    the ``sha256=`` prefix, or an empty secret never verifies.
    """
    if not secret or not signature_header:
        return False

    if not signature_header.startswith(SIGNATURE_PREFIX):
        return False

    provided = signature_header[len(SIGNATURE_PREFIX):].strip().lower()
    expected = hmac_signature(raw_body, secret)
    return hmac.compare_digest(provided, expected)


class TokenCipher:
    """
    Fernet encryption for platform access tokens.

    When constructed without a key the cipher is a pass-through, which is
    what the in-memory store and local development use.
    """

    def __init__(self, key: Optional[str] = None):
        self._fernet = Fernet(key.encode("utf-8")) if key else None

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, plaintext: str) -> str:
        if self._fernet is None or not plaintext:
            return plaintext
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """
        Raises:
            EncryptionError: If the ciphertext was produced with another key
        """
        if self._fernet is None or not ciphertext:
            return ciphertext
        try:
            return self._fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken as e:
            logger.error("Token decryption failed")
            raise EncryptionError("Stored token could not be decrypted") from e

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("utf-8")
