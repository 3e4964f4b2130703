"""Best-effort extraction of the active account's OAuth credentials from the
host application's state database.

The host has changed where it keeps the current identity several times, so
extraction is an ordered list of independent strategies. Each one either
returns a `CredentialTuple` or `None`; none of them raises.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
import re
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional, Sequence

from core import tlv
from stores.interfaces import RawStateStore


logger = logging.getLogger(__name__)

AUTH_STATUS_KEY = "antigravityAuthStatus"
LAST_USER_INFO_KEY = "tfa.lastUserInfo"
AGENT_STATE_KEY = "jetskiStateSync.agentManagerInitState"
UNIFIED_OAUTH_KEY = "antigravityUnifiedStateSync.oauthToken"
AGENT_STATE_FIELD = 6
UNIFIED_OAUTH_FIELD = 1

# (state key, field number of the wrapper holding the oauth token message)
TOKEN_MESSAGE_SOURCES = (
    (AGENT_STATE_KEY, AGENT_STATE_FIELD),
    (UNIFIED_OAUTH_KEY, UNIFIED_OAUTH_FIELD),
)

STATUS_STRATEGY = "auth_status"
TOKEN_MESSAGE_STRATEGY = "token_message"
BYTE_SCAN_STRATEGY = "byte_scan"

ACCESS_TOKEN_RE = re.compile(rb"ya29\.[A-Za-z0-9_-]{100,}")
# "ya29" base64-encoded, as found inside serialized blobs.
ENCODED_ACCESS_TOKEN_RE = re.compile(rb"eWEyOS[A-Za-z0-9+/=_-]{50,300}")
DECODED_ACCESS_TOKEN_RE = re.compile(rb"ya29\.[A-Za-z0-9_-]+")
REFRESH_TOKEN_RES = (
    re.compile(rb"1/[A-Za-z0-9_-]{40,150}"),
    re.compile(rb"1//[A-Za-z0-9_-]{30,150}"),
    re.compile(rb'"refresh_token"\s*:\s*"([^"]{30,200})"'),
)
EMAIL_RE = re.compile(rb'"email"\s*:\s*"([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})"')
TIER_MARKER = b'"tierDescription":"Google AI Pro"'


@dataclass
class CredentialTuple:
    access_token: str
    refresh_token: Optional[str]
    source_strategy: str
    extracted_at: float
    email: Optional[str] = None


Strategy = Callable[[RawStateStore], Optional[CredentialTuple]]


def mask(token: Optional[str]) -> str:
    if not token:
        return "<none>"
    return f"{token[:15]}..."


def _read_json(store: RawStateStore, key: str) -> Optional[dict]:
    raw = store.get(key)
    if not raw:
        return None
    try:
        parsed = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.info("event=state_value_not_json key=%s error=%s", key, exc)
        return None
    return parsed if isinstance(parsed, dict) else None


def _b64decode_loose(data: bytes) -> bytes:
    """Decode standard or URL-safe base64 with or without padding."""
    data = data.strip().translate(bytes.maketrans(b"-_", b"+/")).rstrip(b"=")
    if len(data) % 4 == 1:
        data = data[:-1]
    return base64.b64decode(data + b"=" * (-len(data) % 4))


def status_strategy(store: RawStateStore) -> Optional[CredentialTuple]:
    """Inline identity record: `{"email": ..., "apiKey": ...}`."""
    status = _read_json(store, AUTH_STATUS_KEY)
    if not status:
        return None
    access_token = status.get("apiKey")
    if not access_token or not isinstance(access_token, str):
        logger.info("event=auth_status_without_token")
        return None
    email = status.get("email")
    return CredentialTuple(
        access_token=access_token,
        refresh_token=None,
        source_strategy=STATUS_STRATEGY,
        extracted_at=time.time(),
        email=email.lower() if isinstance(email, str) and email else None,
    )


def _read_token_message(store: RawStateStore, key: str, wrapper_field: int) -> dict[str, str]:
    """Leaf strings of the oauth token message stored under `key`, or `{}`."""
    raw = store.get(key)
    if not raw:
        return {}
    try:
        blob = _b64decode_loose(raw)
    except (binascii.Error, ValueError) as exc:
        logger.info("event=token_blob_not_base64 key=%s error=%s", key, exc)
        return {}

    inner = tlv.find_field(blob, wrapper_field)
    if inner is None:
        logger.info("event=token_message_missing key=%s field=%s", key, wrapper_field)
        return {}
    return tlv.parse_leaf_strings(inner, tlv.OAUTH_TOKEN_FIELDS)


def token_message_strategy(store: RawStateStore) -> Optional[CredentialTuple]:
    """Decode the oauth token message out of the base64 state blobs."""
    fallback_refresh: Optional[str] = None
    for key, wrapper_field in TOKEN_MESSAGE_SOURCES:
        info = _read_token_message(store, key, wrapper_field)
        access_token = info.get("access_token")
        refresh_token = info.get("refresh_token") or None
        if not access_token:
            fallback_refresh = fallback_refresh or refresh_token
            continue
        logger.info("event=token_message_decoded key=%s refresh=%s", key, mask(refresh_token))
        return CredentialTuple(
            access_token=access_token,
            refresh_token=refresh_token or fallback_refresh,
            source_strategy=TOKEN_MESSAGE_STRATEGY,
            extracted_at=time.time(),
        )
    return None


def unified_refresh_token(store: RawStateStore) -> Optional[str]:
    """Refresh token of the signed-in account.

    Only the unified oauth key is trusted here; the agent state blob can
    still hold a previous account's tokens after a switch.
    """
    return _read_token_message(store, UNIFIED_OAUTH_KEY, UNIFIED_OAUTH_FIELD).get("refresh_token") or None


def _last_match(candidates: list[tuple[int, str]]) -> Optional[str]:
    # Later in the file is taken to mean written more recently. The host
    # gives no ordering guarantee, so this is a heuristic that can pick a
    # stale token.
    if not candidates:
        return None
    return max(candidates, key=lambda c: c[0])[1]


def _scan_access_tokens(content: bytes) -> list[tuple[int, str]]:
    found = [(m.start(), m.group(0).decode("ascii")) for m in ACCESS_TOKEN_RE.finditer(content)]
    for m in ENCODED_ACCESS_TOKEN_RE.finditer(content):
        try:
            decoded = _b64decode_loose(m.group(0))
        except (binascii.Error, ValueError):
            continue
        token = DECODED_ACCESS_TOKEN_RE.search(decoded)
        if token and len(token.group(0)) > 100:
            found.append((m.start(), token.group(0).decode("ascii")))
    return found


def _scan_refresh_tokens(content: bytes) -> list[tuple[int, str]]:
    found = []
    for pattern in REFRESH_TOKEN_RES:
        for m in pattern.finditer(content):
            value = m.group(1) if pattern.groups else m.group(0)
            found.append((m.start(), value.decode("utf-8", errors="replace")))
    return found


def byte_scan_strategy(store: RawStateStore) -> Optional[CredentialTuple]:
    """Scan the raw database bytes for token-shaped literals."""
    content = store.raw_bytes()
    if not content:
        return None

    access_tokens = _scan_access_tokens(content)
    access_token = _last_match(access_tokens)
    if not access_token:
        logger.info("event=byte_scan_no_access_token")
        return None

    refresh_tokens = _scan_refresh_tokens(content)
    refresh_token = _last_match(refresh_tokens)
    logger.info(
        "event=byte_scan_match access_candidates=%s refresh_candidates=%s refresh=%s",
        len(access_tokens),
        len(refresh_tokens),
        mask(refresh_token),
    )
    return CredentialTuple(
        access_token=access_token,
        refresh_token=refresh_token,
        source_strategy=BYTE_SCAN_STRATEGY,
        extracted_at=time.time(),
    )


DEFAULT_STRATEGIES: tuple[Strategy, ...] = (
    status_strategy,
    token_message_strategy,
    byte_scan_strategy,
)


class ExtractionPipeline:
    def __init__(self, store: RawStateStore, strategies: Sequence[Strategy] = DEFAULT_STRATEGIES):
        self.store = store
        self.strategies = tuple(strategies)

    def _run(self, strategy: Strategy) -> Optional[CredentialTuple]:
        try:
            result = strategy(self.store)
        except Exception as exc:
            logger.warning("event=extraction_strategy_failed strategy=%s error=%s", strategy.__name__, exc)
            return None
        if result is None or not result.access_token:
            return None
        return result

    def _unified_refresh_token(self) -> Optional[str]:
        try:
            return unified_refresh_token(self.store)
        except Exception as exc:
            logger.warning("event=refresh_backfill_failed error=%s", exc)
            return None

    def extract(self) -> Optional[CredentialTuple]:
        """First non-empty access token in strategy order, or `None`."""
        for strategy in self.strategies:
            result = self._run(strategy)
            if result is None:
                logger.debug("event=extraction_strategy_empty strategy=%s", strategy.__name__)
                continue

            if not result.refresh_token and strategy is not token_message_strategy:
                refresh_token = self._unified_refresh_token()
                if refresh_token:
                    result = replace(result, refresh_token=refresh_token)

            logger.info(
                "event=extraction_succeeded strategy=%s has_refresh=%s",
                result.source_strategy,
                bool(result.refresh_token),
            )
            return result

        logger.info("event=extraction_not_found")
        return None

    def current_email(self) -> Optional[str]:
        """Email of the account the host currently considers logged in."""
        for key in (LAST_USER_INFO_KEY, AUTH_STATUS_KEY):
            email = self._email_from_key(key)
            if email:
                logger.info("event=current_email_found source=%s", key)
                return email

        content = self.store.raw_bytes()
        tier_index = content.find(TIER_MARKER)
        if tier_index != -1:
            window = content[max(0, tier_index - 200) : tier_index + 100]
            match = EMAIL_RE.search(window)
            if match:
                logger.info("event=current_email_found source=tier_marker")
                return match.group(1).decode("ascii").lower()

        matches = list(EMAIL_RE.finditer(content))
        if matches:
            logger.info("event=current_email_found source=byte_scan candidates=%s", len(matches))
            return matches[-1].group(1).decode("ascii").lower()
        return None

    def _email_from_key(self, key: str) -> Optional[str]:
        parsed = _read_json(self.store, key)
        if parsed and isinstance(parsed.get("email"), str) and parsed["email"]:
            return parsed["email"].lower()
        raw = self.store.get(key)
        match = EMAIL_RE.search(raw) if raw else None
        return match.group(1).decode("ascii").lower() if match else None
