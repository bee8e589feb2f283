"""Provider credential storage.

PSD2 provider settings posted through the API are persisted in SQLite. The
client secret never touches disk in clear text: it is sealed with
SecretEncryption, scoped to the provider name.
"""

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from core.config import Psd2ProviderSettings
from core.security.encryption import EncryptedSecret, SecretEncryption


SCHEMA = """
CREATE TABLE IF NOT EXISTS provider_config (
    provider TEXT PRIMARY KEY,
    api_url TEXT NOT NULL,
    client_id TEXT NOT NULL,
    redirect_uri TEXT NOT NULL DEFAULT '',
    certificate_path TEXT,
    key_path TEXT,
    encrypted_secret TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class ProviderCredentialStore:
    """SQLite-backed store for provider credentials.

    Usage:
        store = ProviderCredentialStore(db_path, SecretEncryption(key))
        store.save("psd2", settings)
        settings = store.load("psd2")
    """

    def __init__(self, db_path: Path, encryption: SecretEncryption):
        self.db_path = Path(db_path)
        self._encryption = encryption
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def save(self, provider: str, settings: Psd2ProviderSettings) -> None:
        """Insert or replace the credentials for a provider."""
        encrypted = self._encryption.encrypt({"client_secret": settings.client_secret}, scope=provider)
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO provider_config
                    (provider, api_url, client_id, redirect_uri, certificate_path, key_path,
                     encrypted_secret, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        provider,
                        settings.api_url,
                        settings.client_id,
                        settings.redirect_uri,
                        settings.certificate_path,
                        settings.key_path,
                        json.dumps(encrypted.to_dict()),
                        datetime.now(timezone.utc).isoformat(),
                    ),
                )
        finally:
            conn.close()

    def load(self, provider: str) -> Optional[Psd2ProviderSettings]:
        """Load and decrypt the credentials for a provider.

        Raises:
            ValueError: If the stored secret cannot be decrypted (key changed)
        """
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM provider_config WHERE provider = ?", (provider,)
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return None

        secret = self._encryption.decrypt(EncryptedSecret.from_dict(json.loads(row["encrypted_secret"])))
        return Psd2ProviderSettings(
            api_url=row["api_url"],
            client_id=row["client_id"],
            client_secret=secret["client_secret"],
            redirect_uri=row["redirect_uri"],
            certificate_path=row["certificate_path"],
            key_path=row["key_path"],
        )

    def delete(self, provider: str) -> bool:
        conn = self._connect()
        try:
            with conn:
                cursor = conn.execute("DELETE FROM provider_config WHERE provider = ?", (provider,))
            return cursor.rowcount > 0
        finally:
            conn.close()
