"""Secret encryption using AES-GCM.

Provides encryption at rest for PSD2 provider credentials (client secrets,
key passphrases). Uses AES-256-GCM for authenticated encryption.
"""

import base64
import json
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict

from cryptography.hazmat.primitives.ciphers.aead import AESGCM


def generate_encryption_key() -> str:
    """Generate a new 256-bit encryption key.

    Returns:
        Base64-encoded 32-byte key suitable for AES-256
    """
    key = secrets.token_bytes(32)
    return base64.b64encode(key).decode('utf-8')


@dataclass
class EncryptedSecret:
    """Encrypted secret payload with metadata."""
    ciphertext: str  # Base64-encoded encrypted data (GCM tag appended)
    nonce: str       # Base64-encoded 96-bit nonce
    created_at: str  # ISO timestamp
    scope: str       # Bound as additional authenticated data
    key_version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ciphertext": self.ciphertext,
            "nonce": self.nonce,
            "created_at": self.created_at,
            "scope": self.scope,
            "key_version": self.key_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedSecret":
        return cls(
            ciphertext=data["ciphertext"],
            nonce=data["nonce"],
            created_at=data["created_at"],
            scope=data["scope"],
            key_version=data.get("key_version", 1),
        )


class SecretEncryption:
    """AES-256-GCM encryption for provider credentials.

    Security properties:
    - Confidentiality: AES-256 encryption
    - Integrity: GCM authentication tag
    - Uniqueness: Random 96-bit nonce per encryption
    - Binding: the scope (e.g. provider name) is authenticated data, so a
      secret cannot be replayed under another provider

    Usage:
        enc = SecretEncryption(generate_encryption_key())
        encrypted = enc.encrypt({"client_secret": "..."}, scope="psd2")
        secrets = enc.decrypt(encrypted)
    """

    def __init__(self, encryption_key: str):
        """Initialize with base64-encoded encryption key.

        Args:
            encryption_key: Base64-encoded 32-byte key (from generate_encryption_key())
        """
        try:
            key = base64.b64decode(encryption_key)
        except ValueError as e:
            raise ValueError(f"Invalid encryption key: {e}")
        if len(key) != 32:
            raise ValueError("Invalid encryption key: key must be 32 bytes (256 bits)")

        self._aesgcm = AESGCM(key)

    def encrypt(self, data: Dict[str, Any], scope: str, key_version: int = 1) -> EncryptedSecret:
        """Encrypt a dictionary of secrets.

        Args:
            data: Secret values to protect
            scope: Scope identifier bound as additional authenticated data
            key_version: Key version for rotation support

        Returns:
            EncryptedSecret with encrypted data and metadata
        """
        plaintext = json.dumps(data).encode('utf-8')
        nonce = os.urandom(12)
        ciphertext = self._aesgcm.encrypt(nonce, plaintext, scope.encode('utf-8'))

        return EncryptedSecret(
            ciphertext=base64.b64encode(ciphertext).decode('utf-8'),
            nonce=base64.b64encode(nonce).decode('utf-8'),
            created_at=datetime.now(timezone.utc).isoformat(),
            scope=scope,
            key_version=key_version,
        )

    def decrypt(self, encrypted: EncryptedSecret) -> Dict[str, Any]:
        """Decrypt a secret payload.

        Raises:
            ValueError: If decryption fails (wrong key, tampered data, wrong scope)
        """
        try:
            ciphertext = base64.b64decode(encrypted.ciphertext)
            nonce = base64.b64decode(encrypted.nonce)
            plaintext = self._aesgcm.decrypt(nonce, ciphertext, encrypted.scope.encode('utf-8'))
        except Exception as e:
            raise ValueError(f"Secret decryption failed: {e}")

        return json.loads(plaintext.decode('utf-8'))
