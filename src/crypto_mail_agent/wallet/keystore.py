"""At-rest encryption of wallet secrets with a process-wide AES-256-GCM key."""

from __future__ import annotations

import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_NONCE_BYTES = 12
_TAG_BYTES = 16


class SecretBox:
    """Encrypts and decrypts private keys for storage in the ``wallets`` table.

    The envelope format is ``<nonce>:<tag>:<ciphertext>``, all hex encoded, so
    a stored value can be inspected (and rotated) without a binary column.

    Parameters
    ----------
    key:
        The raw 32-byte AES key from ``custody.encryption_key``.
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != 32:
            raise ValueError("Encryption key must be exactly 32 bytes.")
        self._cipher = AESGCM(key)

    def encrypt(self, secret: str) -> str:
        nonce = secrets.token_bytes(_NONCE_BYTES)
        sealed = self._cipher.encrypt(nonce, secret.encode("utf-8"), None)
        ciphertext, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
        return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, envelope: str) -> str:
        """Open an envelope produced by :meth:`encrypt`.

        Raises
        ------
        ValueError
            If the envelope is malformed or was sealed with a different key.
        """
        try:
            nonce_hex, tag_hex, ciphertext_hex = envelope.split(":")
            nonce = bytes.fromhex(nonce_hex)
            sealed = bytes.fromhex(ciphertext_hex) + bytes.fromhex(tag_hex)
        except ValueError as exc:
            raise ValueError("Malformed secret envelope.") from exc

        try:
            return self._cipher.decrypt(nonce, sealed, None).decode("utf-8")
        except InvalidTag as exc:
            raise ValueError("Failed to decrypt wallet secret: wrong key or corrupted data.") from exc


def generate_key() -> str:
    """Return a fresh 32-byte key as 64 hex characters."""
    return secrets.token_hex(32)
