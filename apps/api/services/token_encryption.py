"""
Token Encryption Service

Encrypts and decrypts provider OAuth2 tokens using Fernet symmetric encryption.
Access and refresh tokens are stored encrypted in provider_oauth2_credentials.

- Key comes from TOKEN_ENCRYPTION_KEY (environment wins over .env settings)
- Production refuses to start without a key
"""

from cryptography.fernet import Fernet, InvalidToken
from typing import Optional
import os
import logging
from core.config import settings

logger = logging.getLogger(__name__)


class TokenEncryption:
    """Handles encryption/decryption of OAuth tokens."""

    def __init__(self, encryption_key: Optional[str] = None):
        encryption_key = encryption_key or os.getenv("TOKEN_ENCRYPTION_KEY") or settings.TOKEN_ENCRYPTION_KEY

        if not encryption_key:
            if settings.ENVIRONMENT == "production":
                raise RuntimeError(
                    "TOKEN_ENCRYPTION_KEY must be set in production. "
                    "Generate with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
                )
            logger.warning("TOKEN_ENCRYPTION_KEY not set. Generating temporary key (NOT FOR PRODUCTION)")
            encryption_key = Fernet.generate_key().decode()

        if isinstance(encryption_key, str):
            encryption_key = encryption_key.encode()

        try:
            self.cipher = Fernet(encryption_key)
        except ValueError as e:
            logger.error(f"Failed to initialize Fernet cipher: {e}")
            raise ValueError(f"Invalid encryption key format: {e}")

    def encrypt(self, plaintext: str) -> Optional[str]:
        if not plaintext:
            return None
        return self.cipher.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> Optional[str]:
        """
        Decrypt an encrypted token.

        Returns None when the ciphertext was produced under a different key
        (rotated key, corrupted row); callers treat that as missing credentials.
        """
        if not ciphertext:
            return None
        try:
            return self.cipher.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            logger.error("Token decryption failed: invalid token or wrong key")
            return None


# Global instance
_token_encryption: Optional[TokenEncryption] = None


def get_token_encryption() -> TokenEncryption:
    """Get or create global token encryption instance."""
    global _token_encryption
    if _token_encryption is None:
        _token_encryption = TokenEncryption()
    return _token_encryption


def encrypt_token(token: Optional[str]) -> Optional[str]:
    """Convenience function to encrypt a token."""
    if not token:
        return None
    return get_token_encryption().encrypt(token)


def decrypt_token(token: Optional[str]) -> Optional[str]:
    """Convenience function to decrypt a token."""
    if not token:
        return None
    return get_token_encryption().decrypt(token)
