from __future__ import annotations

from typing import Optional

import keyring
from keyring.errors import PasswordDeleteError


class KeyringSecretStore:
    """Secrets kept in the OS keyring (macOS Keychain, Windows Credential
    Locker or the Linux Secret Service), one entry per key."""

    def __init__(self, service: str):
        self.service = service

    def get(self, key: str) -> Optional[str]:
        return keyring.get_password(self.service, key)

    def set(self, key: str, value: str) -> None:
        keyring.set_password(self.service, key, value)

    def delete(self, key: str) -> None:
        try:
            keyring.delete_password(self.service, key)
        except PasswordDeleteError:
            pass
