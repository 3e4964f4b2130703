from dataclasses import dataclass
from typing import Any, Optional, Protocol


@dataclass
class AccountCredential:
    email: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: float = 0
    created_at: float = 0

    def to_dict(self) -> dict[str, Any]:
        # Persisted shape uses camelCase keys and epoch milliseconds.
        payload: dict[str, Any] = {
            "accessToken": self.access_token,
            "expiresAt": int(self.expires_at * 1000),
            "email": self.email,
            "createdAt": int(self.created_at * 1000),
        }
        if self.refresh_token:
            payload["refreshToken"] = self.refresh_token
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AccountCredential":
        return cls(
            email=str(data.get("email", "")),
            access_token=str(data["accessToken"]),
            refresh_token=data.get("refreshToken") or None,
            expires_at=float(data.get("expiresAt", 0) or 0) / 1000,
            created_at=float(data.get("createdAt", 0) or 0) / 1000,
        )


@dataclass
class IdentitySnapshot:
    email: str
    identity_blob: str
    saved_at: float = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "identityBlob": self.identity_blob,
            "savedAt": int(self.saved_at * 1000),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IdentitySnapshot":
        return cls(
            email=str(data["email"]),
            identity_blob=str(data["identityBlob"]),
            saved_at=float(data.get("savedAt", 0) or 0) / 1000,
        )


class StoreWriteFailed(RuntimeError):
    pass


class RawStateStore(Protocol):
    """Key/value view over the host application's state database."""

    def get(self, key: str) -> Optional[bytes]:
        ...

    def set(self, key: str, value: bytes) -> bool:
        ...

    def raw_bytes(self) -> bytes:
        ...


class SecretStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...
