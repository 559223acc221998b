"""Encryption of TOTP secrets at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` package.
Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from .exceptions import MfaStoreError


class SecretCipher:
    """Symmetric cipher for TOTP secrets.

    Accepts several keys to support rotation: the first key encrypts,
    all keys are tried for decryption.

    Example:
        ```python
        cipher = SecretCipher([settings.mfa_encryption_key])
        token = cipher.encrypt("JBSWY3DPEHPK3PXP")
        assert cipher.decrypt(token) == "JBSWY3DPEHPK3PXP"
        ```
    """

    def __init__(self, keys: list[str | bytes]) -> None:
        if not keys:
            raise ValueError("At least one encryption key is required")
        self._fernet = MultiFernet([Fernet(key) for key in keys])

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> str:
        """Decrypt a stored secret.

        Raises:
            MfaStoreError: If the token was not produced by any configured key.
        """
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken as e:
            raise MfaStoreError("Stored TOTP secret could not be decrypted") from e

    def rotate(self, token: str) -> str:
        """Re-encrypt a token under the primary key."""
        try:
            return self._fernet.rotate(token.encode()).decode()
        except InvalidToken as e:
            raise MfaStoreError("Stored TOTP secret could not be decrypted") from e


__all__: list[str] = ["SecretCipher"]
