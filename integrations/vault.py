"""
Credential Vault

Encrypts the secret fields of provider credentials at rest. Non-secret
fields (domain, company id, environment) are stored as-is so they remain
queryable and readable in support tooling.

The cipher is Fernet (AES-128-CBC with HMAC-SHA256), wrapped in MultiFernet
so keys can be rotated: the first key encrypts, every key decrypts. Keys are
supplied by an injected ``KeyProvider``; there is no built-in key.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from integrations.base import SECRET_CREDENTIAL_FIELDS, PayrollCredentials
from integrations.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class KeyProvider(ABC):
    """Source of Fernet keys, primary key first."""

    @abstractmethod
    def get_keys(self) -> list[bytes]:
        pass


class StaticKeyProvider(KeyProvider):
    """Keys passed in explicitly (tests, scripts, per-tenant key lookups)."""

    def __init__(self, *keys: str | bytes):
        self._keys = [k.encode() if isinstance(k, str) else k for k in keys]

    def get_keys(self) -> list[bytes]:
        return list(self._keys)


class SettingsKeyProvider(KeyProvider):
    """
    Keys from ``Settings.encryption_key``.

    The value may hold several comma-separated Fernet keys; the first one is
    used for new encryptions.
    """

    def __init__(self, settings):
        self.settings = settings

    def get_keys(self) -> list[bytes]:
        raw = self.settings.encryption_key or ""
        keys = [part.strip().encode() for part in raw.split(",") if part.strip()]
        if not keys:
            raise ConfigurationError(
                "ENCRYPTION_KEY is not configured",
                code="encryption_key_missing",
            )
        return keys


class CredentialVault(ABC):
    """Encrypts/decrypts the secret fields of a credentials object."""

    secret_fields: tuple[str, ...] = SECRET_CREDENTIAL_FIELDS

    @abstractmethod
    def encrypt_fields(self, credentials: PayrollCredentials) -> dict[str, Any]:
        """Return the storable form of ``credentials``."""
        pass

    @abstractmethod
    def decrypt_fields(self, stored: dict[str, Any]) -> PayrollCredentials:
        """Rebuild credentials from their stored form."""
        pass


class FernetCredentialVault(CredentialVault):
    """Vault backed by Fernet/MultiFernet."""

    def __init__(self, key_provider: KeyProvider):
        self.key_provider = key_provider
        self._cipher: MultiFernet | None = None

    @property
    def cipher(self) -> MultiFernet:
        if self._cipher is None:
            try:
                self._cipher = MultiFernet([Fernet(key) for key in self.key_provider.get_keys()])
            except (ValueError, TypeError) as exc:
                raise ConfigurationError(
                    "Invalid credential encryption key",
                    code="encryption_key_invalid",
                ) from exc
        return self._cipher

    def encrypt(self, value: str) -> str:
        return self.cipher.encrypt(value.encode()).decode()

    def decrypt(self, token: str) -> str:
        try:
            return self.cipher.decrypt(token.encode()).decode()
        except InvalidToken as exc:
            raise ConfigurationError(
                "Stored credentials could not be decrypted",
                code="credentials_undecryptable",
            ) from exc

    def encrypt_fields(self, credentials: PayrollCredentials) -> dict[str, Any]:
        stored: dict[str, Any] = {}
        for name, value in credentials.model_dump(exclude_none=True).items():
            if name in self.secret_fields:
                stored[name] = self.encrypt(credentials.secret(name))
            else:
                stored[name] = value
        return stored

    def decrypt_fields(self, stored: dict[str, Any]) -> PayrollCredentials:
        plain = dict(stored or {})
        for name in self.secret_fields:
            if plain.get(name):
                plain[name] = self.decrypt(plain[name])
        return PayrollCredentials.model_validate(plain)

    def rotate(self, stored: dict[str, Any]) -> dict[str, Any]:
        """Re-encrypt stored secrets under the current primary key."""
        rotated = dict(stored or {})
        for name in self.secret_fields:
            if rotated.get(name):
                try:
                    rotated[name] = self.cipher.rotate(rotated[name].encode()).decode()
                except InvalidToken as exc:
                    raise ConfigurationError(
                        "Stored credentials could not be decrypted",
                        code="credentials_undecryptable",
                    ) from exc
        return rotated
