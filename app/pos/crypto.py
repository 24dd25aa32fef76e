"""At-rest encryption for POS account tokens (AES-256-GCM)."""
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.config import settings
from app.pos.errors import CipherConfigurationError, DecryptionError

KEY_LENGTH = 32    # 256-bit key
NONCE_LENGTH = 12  # 96-bit nonce
TAG_LENGTH = 16    # 128-bit tag, appended to the ciphertext by AESGCM


@dataclass(frozen=True)
class EncryptedToken:
    ciphertext: str  # hex, tag included
    iv: str          # hex nonce


class CredentialCipher:
    """Encrypts and decrypts tokens with a key fixed at construction."""

    def __init__(self, key: bytes):
        if len(key) != KEY_LENGTH:
            raise CipherConfigurationError(f"Encryption key must be exactly {KEY_LENGTH} bytes")
        self._aead = AESGCM(key)

    @classmethod
    def from_secret(cls, secret: Optional[str]) -> "CredentialCipher":
        """Build a cipher from the configured secret (first 32 bytes are the key)."""
        raw = (secret or "").encode("utf-8")
        if len(raw) < KEY_LENGTH:
            raise CipherConfigurationError(
                f"POS_ENCRYPTION_KEY must be at least {KEY_LENGTH} bytes"
            )
        return cls(raw[:KEY_LENGTH])

    def encrypt(self, plaintext: str) -> EncryptedToken:
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return EncryptedToken(ciphertext=sealed.hex(), iv=nonce.hex())

    def decrypt(self, ciphertext: str, iv: str) -> str:
        try:
            nonce = bytes.fromhex(iv)
            sealed = bytes.fromhex(ciphertext)
        except ValueError as exc:
            raise DecryptionError() from exc

        if len(nonce) != NONCE_LENGTH or len(sealed) < TAG_LENGTH:
            raise DecryptionError()

        try:
            plaintext = self._aead.decrypt(nonce, sealed, None)
        except InvalidTag as exc:
            raise DecryptionError() from exc

        return plaintext.decode("utf-8")


@lru_cache(maxsize=1)
def get_credential_cipher() -> CredentialCipher:
    """Process-wide cipher built from settings on first use."""
    return CredentialCipher.from_secret(settings.POS_ENCRYPTION_KEY)
