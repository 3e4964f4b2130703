from __future__ import annotations

from typing import Optional


class MemorySecretStore:
    """Simple in-memory secret backend for local development and tests."""

    def __init__(self):
        self._values: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class MemoryStateStore:
    """In-memory stand-in for the host state database.

    `raw` overrides what `raw_bytes()` returns, which lets tests place
    token-shaped literals at exact byte offsets. Without it the raw view is
    every key and value concatenated in insertion order, roughly how they
    sit in the database file.
    """

    def __init__(self, values: Optional[dict[str, bytes]] = None, raw: Optional[bytes] = None):
        self._values: dict[str, bytes] = dict(values or {})
        self._raw = raw
        self.fail_writes = False
        self.writes: list[tuple[str, bytes]] = []

    def get(self, key: str) -> Optional[bytes]:
        return self._values.get(key)

    def set(self, key: str, value: bytes) -> bool:
        if self.fail_writes:
            return False
        self._values[key] = value
        self.writes.append((key, value))
        return True

    def raw_bytes(self) -> bytes:
        if self._raw is not None:
            return self._raw
        return b"".join(key.encode("utf-8") + value for key, value in self._values.items())
