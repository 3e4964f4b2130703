from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from core.extraction import AUTH_STATUS_KEY
from stores.interfaces import IdentitySnapshot, RawStateStore, SecretStore, StoreWriteFailed


logger = logging.getLogger(__name__)

SNAPSHOTS_KEY = "snapshots"
UNKNOWN_EMAIL = "unknown"


class SnapshotNotFound(LookupError):
    pass


@dataclass
class SwitchResult:
    email: str
    ok: bool
    error: Optional[str] = None


def _snapshot_email(identity_blob: str) -> str:
    try:
        parsed = json.loads(identity_blob)
    except ValueError:
        return UNKNOWN_EMAIL
    if not isinstance(parsed, dict):
        return UNKNOWN_EMAIL
    email = parsed.get("email") or parsed.get("name")
    return str(email).strip().lower() if email else UNKNOWN_EMAIL


class AccountSwitcher:
    """Changes the host's logged-in account by restoring a saved copy of its
    auth status value.

    The restore is one blind write of the saved value. The host database
    applies a single statement atomically, so the value is either the old
    identity or the new one afterwards.
    """

    def __init__(self, state_store: RawStateStore, secrets: SecretStore, clock: Callable[[], float] = time.time):
        self.state_store = state_store
        self.secrets = secrets
        self.clock = clock

    def _load_entries(self) -> Optional[dict]:
        """The stored snapshot map as plain JSON, or `None` if it is unreadable.

        Entries are kept raw so that rewriting the map never drops one that
        fails to parse.
        """
        raw = self.secrets.get(SNAPSHOTS_KEY)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError as exc:
            logger.error("event=snapshots_unreadable error=%s", exc)
            return None
        if not isinstance(data, dict):
            logger.error("event=snapshots_unreadable error=not_a_mapping")
            return None
        return data

    def _load_snapshots(self) -> dict[str, IdentitySnapshot]:
        snapshots = {}
        for email, item in (self._load_entries() or {}).items():
            try:
                snapshots[email] = IdentitySnapshot.from_dict(item)
            except (ValueError, KeyError, TypeError, AttributeError) as exc:
                logger.warning("event=snapshot_unreadable email=%s error=%s", email, exc)
        return snapshots

    def _save_entries(self, entries: dict) -> None:
        self.secrets.set(SNAPSHOTS_KEY, json.dumps(entries))

    def save_snapshot(self) -> Optional[IdentitySnapshot]:
        """Save the host's current identity, replacing any earlier snapshot
        for the same email. Returns `None` when nobody is logged in or the
        stored snapshot map cannot be read."""
        raw = self.state_store.get(AUTH_STATUS_KEY)
        if not raw:
            logger.warning("event=snapshot_skipped reason=no_active_identity")
            return None

        entries = self._load_entries()
        if entries is None:
            logger.error("event=snapshot_skipped reason=snapshots_unreadable")
            return None

        identity_blob = raw.decode("utf-8", errors="replace")
        snapshot = IdentitySnapshot(
            email=_snapshot_email(identity_blob),
            identity_blob=identity_blob,
            saved_at=self.clock(),
        )
        entries[snapshot.email] = snapshot.to_dict()
        self._save_entries(entries)
        logger.info("event=snapshot_saved email=%s", snapshot.email)
        return snapshot

    def get_snapshot(self, email: str) -> IdentitySnapshot:
        snapshot = self._load_snapshots().get(email.strip().lower())
        if snapshot is None:
            raise SnapshotNotFound(email)
        return snapshot

    def switch_to_account(self, email: str) -> SwitchResult:
        email = email.strip().lower()
        try:
            snapshot = self.get_snapshot(email)
            if not self.state_store.set(AUTH_STATUS_KEY, snapshot.identity_blob.encode("utf-8")):
                raise StoreWriteFailed(f"could not write {AUTH_STATUS_KEY}")
        except SnapshotNotFound:
            logger.warning("event=switch_failed email=%s reason=snapshot_not_found", email)
            return SwitchResult(email, ok=False, error="snapshot_not_found")
        except StoreWriteFailed as exc:
            logger.error("event=switch_failed email=%s reason=store_write_failed error=%s", email, exc)
            return SwitchResult(email, ok=False, error="store_write_failed")

        logger.info("event=switch_succeeded email=%s", email)
        return SwitchResult(email, ok=True)

    def delete_snapshot(self, email: str) -> bool:
        email = email.strip().lower()
        entries = self._load_entries()
        if not entries or email not in entries:
            return False
        del entries[email]
        self._save_entries(entries)
        logger.info("event=snapshot_deleted email=%s", email)
        return True

    def list_snapshots(self) -> list[IdentitySnapshot]:
        return sorted(self._load_snapshots().values(), key=lambda s: s.email)

    def snapshot_count(self) -> int:
        return len(self._load_snapshots())
