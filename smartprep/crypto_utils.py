"""Encryption of student phone numbers.

Keys come from a `SecretProvider`. Providers fail closed: when no key is
configured they raise instead of falling back to a built-in value.
"""

import re
from abc import ABC, abstractmethod
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from smartprep.config import Settings
from smartprep.errors import SecretDecryptError, SecretNotConfiguredError

_PHONE_MASK = re.compile(r"(\+\d{2})\d{4}(\d{3})")


class SecretProvider(ABC):
    """Source of the symmetric key used for phone numbers."""

    @abstractmethod
    def get_key(self) -> bytes:
        """Return a urlsafe base64 Fernet key or raise SecretNotConfiguredError."""


class EnvSecretProvider(SecretProvider):
    """Reads SMARTPREP_ENCRYPTION_KEY through the settings object."""

    def __init__(self, settings: Settings):
        self._settings = settings

    def get_key(self) -> bytes:
        key = self._settings.encryption_key
        if not key:
            raise SecretNotConfiguredError("Encryption key is not configured")
        return key.encode()


class StaticSecretProvider(SecretProvider):
    def __init__(self, key: bytes):
        if not key:
            raise SecretNotConfiguredError("Encryption key is not configured")
        self._key = key

    def get_key(self) -> bytes:
        return self._key


class PhoneCipher:
    """Fernet wrapper; the key is looked up on every call."""

    def __init__(self, provider: SecretProvider):
        self._provider = provider

    def _fernet(self) -> Fernet:
        try:
            return Fernet(self._provider.get_key())
        except ValueError as exc:
            raise SecretNotConfiguredError("Encryption key is not a valid Fernet key") from exc

    def encrypt(self, plain: str) -> str:
        return self._fernet().encrypt(plain.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet().decrypt(token).decode("utf-8")
        except InvalidToken as exc:
            raise SecretDecryptError("Stored phone number cannot be decrypted") from exc


def mask_phone(number: Optional[str]) -> Optional[str]:
    """Mask the middle digits of an international number: +923001234567 -> +92****234567."""
    if not number:
        return None
    return _PHONE_MASK.sub(r"\1****\2", number, count=1)
