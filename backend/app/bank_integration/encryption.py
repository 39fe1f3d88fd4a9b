"""
Token Encryption Module

Encrypts OAuth client secrets and tokens for storage on BankIntegration rows.
Fernet symmetric encryption keyed from the application secret.
"""

import base64
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from backend.config import get_settings


class TokenEncryption:
    """
    Encrypt and decrypt bank credentials for secure storage in database.

    Only the Token Lifecycle Manager decrypts; everything else treats the
    stored values as opaque.
    """

    def __init__(self, secret_key: Optional[str] = None):
        secret_key = secret_key or get_settings().secret_key

        # Fernet requires a 32-byte urlsafe-base64 key
        key_bytes = secret_key.encode()[:32].ljust(32, b'0')
        self.cipher = Fernet(base64.urlsafe_b64encode(key_bytes))

    def encrypt(self, token: Optional[str]) -> Optional[str]:
        """
        Encrypt a value for a TEXT column. Empty values are stored as NULL.

        Example:
            >>> enc = TokenEncryption()
            >>> integration.api_access_token = enc.encrypt(tokens['access_token'])
        """
        if not token:
            return None
        return self.cipher.encrypt(token.encode()).decode()

    def decrypt(self, encrypted_token: Optional[str]) -> Optional[str]:
        """
        Decrypt a stored value.

        Raises:
            ValueError: If the value was encrypted with a different key
        """
        if not encrypted_token:
            return None
        try:
            return self.cipher.decrypt(encrypted_token.encode()).decode()
        except InvalidToken as e:
            raise ValueError("Stored bank credential cannot be decrypted") from e
