"""Security module - encryption and stored provider credentials."""

from core.security.encryption import (
    SecretEncryption,
    EncryptedSecret,
    generate_encryption_key,
)
from core.security.credential_store import ProviderCredentialStore

__all__ = [
    "SecretEncryption",
    "EncryptedSecret",
    "generate_encryption_key",
    "ProviderCredentialStore",
]
