"""AES-GCM vault for the key-share bundles held on behalf of users.

Blobs have the form ``base64(nonce):base64(tag):base64(ciphertext)``.  The
AES-256 key is derived once from the configured secret with scrypt.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from wallet_custody.errors import ConfigError, InvalidCiphertext

MIN_SECRET_LENGTH = 32
_SALT_BYTES = 16
_NONCE_BYTES = 16
_TAG_BYTES = 16
_KEY_BYTES = 32
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1


def _derive_key(secret: str) -> bytes:
    """Derive the AES-256 key from *secret* (salt: its first 16 bytes)."""
    raw = secret.encode("utf-8")
    kdf = Scrypt(
        salt=raw[:_SALT_BYTES],
        length=_KEY_BYTES,
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
    )
    return kdf.derive(raw)


def _b64decode(part: str) -> bytes:
    if not part:
        raise InvalidCiphertext("Encrypted key shares are malformed")
    try:
        decoded = base64.b64decode(part, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidCiphertext("Encrypted key shares are malformed") from None
    # Reject non-canonical encodings (altered padding bits).
    if base64.b64encode(decoded).decode("ascii") != part:
        raise InvalidCiphertext("Encrypted key shares are malformed")
    return decoded


class KeyShareVault:
    """Encrypts and decrypts key-share bundles.

    Parameters
    ----------
    secret:
        Service encryption secret, at least 32 characters.  Never used as
        the key directly.
    """

    def __init__(self, secret: str) -> None:
        if not secret or len(secret) < MIN_SECRET_LENGTH:
            raise ConfigError(
                f"Encryption key must be at least {MIN_SECRET_LENGTH} characters long"
            )
        self._aesgcm = AESGCM(_derive_key(secret))

    def __repr__(self) -> str:
        return "KeyShareVault(<sealed>)"

    def encrypt(self, plaintext: bytes) -> str:
        """Encrypt *plaintext* under a fresh random nonce."""
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        nonce = os.urandom(_NONCE_BYTES)
        sealed = self._aesgcm.encrypt(nonce, plaintext, None)
        ciphertext, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
        return ":".join(
            base64.b64encode(part).decode("ascii") for part in (nonce, tag, ciphertext)
        )

    def decrypt(self, blob: str) -> bytes:
        """Decrypt a blob produced by :meth:`encrypt`.

        Raises :class:`InvalidCiphertext` for any malformed or tampered blob.
        """
        parts = (blob or "").split(":")
        if len(parts) != 3:
            raise InvalidCiphertext("Encrypted key shares are malformed")
        nonce, tag, ciphertext = (_b64decode(p) for p in parts)
        if len(nonce) != _NONCE_BYTES or len(tag) != _TAG_BYTES:
            raise InvalidCiphertext("Encrypted key shares are malformed")
        try:
            return self._aesgcm.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            raise InvalidCiphertext() from None

    def encrypt_text(self, plaintext: str) -> str:
        return self.encrypt(plaintext.encode("utf-8"))

    def decrypt_text(self, blob: str) -> str:
        try:
            return self.decrypt(blob).decode("utf-8")
        except UnicodeDecodeError:
            raise InvalidCiphertext() from None
