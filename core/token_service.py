from __future__ import annotations

import json
import logging
import math
import time
from enum import Enum
from typing import Callable, NamedTuple, Optional

import requests

from core.extraction import ExtractionPipeline, mask
from core.oauth_client import OOB_REDIRECT_URI, OAuthClient
from core.settings import Settings
from stores.interfaces import AccountCredential, SecretStore


logger = logging.getLogger(__name__)

CREDENTIAL_PREFIX = "credential."
DEFAULT_EXPIRES_IN = 3600


class CredentialState(str, Enum):
    ABSENT = "absent"
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    RECOVERING = "recovering"


class RefreshRejected(RuntimeError):
    pass


class RefreshResult(NamedTuple):
    access_token: str
    expires_at: float
    refresh_token: Optional[str] = None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def credential_key(email: str) -> str:
    return f"{CREDENTIAL_PREFIX}{normalize_email(email)}"


def _token_lifetime(body: dict) -> float:
    lifetime = float(body.get("expires_in") or DEFAULT_EXPIRES_IN)
    if not math.isfinite(lifetime) or lifetime <= 0:
        raise ValueError(f"expires_in must be a positive number, got {body.get('expires_in')!r}")
    return lifetime


class TokenService:
    """Per-account access tokens kept fresh from three sources, in order:
    the secret store cache, a refresh-token exchange, and re-extraction from
    the host's state database.

    There is no locking. Two overlapping `get_token` calls for one account
    may both refresh; the last write to the secret store wins.
    """

    def __init__(
        self,
        settings: Settings,
        oauth_client: OAuthClient,
        secrets: SecretStore,
        pipeline: ExtractionPipeline,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.oauth_client = oauth_client
        self.secrets = secrets
        self.pipeline = pipeline
        self.clock = clock
        self._recovering: set[str] = set()

    # -- persistence -------------------------------------------------------

    @staticmethod
    def _parse(raw: str) -> Optional[AccountCredential]:
        try:
            return AccountCredential.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError):
            return None

    def _store(self, record: AccountCredential) -> None:
        self.secrets.set(credential_key(record.email), json.dumps(record.to_dict()))

    def get_credential(self, email: str) -> Optional[AccountCredential]:
        raw = self.secrets.get(credential_key(email))
        if not raw:
            return None
        record = self._parse(raw)
        if record is not None and not record.email:
            record.email = normalize_email(email)
        return record

    def save_token(self, email: str, payload: str) -> None:
        """Store an exported credential payload verbatim."""
        self.secrets.set(credential_key(email), payload)

    def delete_token(self, email: str) -> None:
        self.secrets.delete(credential_key(email))
        logger.info("event=credential_deleted email=%s", normalize_email(email))

    # -- lifecycle ---------------------------------------------------------

    def capture(self, email: str) -> Optional[AccountCredential]:
        """Persist the credentials of whichever account the host has active.

        The stored record is keyed by the email found in the host state, not
        by `email`; a difference is only logged.
        """
        extracted = self.pipeline.extract()
        if extracted is None:
            logger.warning("event=capture_failed reason=no_credentials_found")
            return None

        current_email = extracted.email or self.pipeline.current_email()
        if not current_email:
            logger.warning("event=capture_failed reason=no_active_email")
            return None
        current_email = normalize_email(current_email)

        requested = normalize_email(email) if email else ""
        if requested and requested != current_email:
            logger.warning("event=capture_email_mismatch requested=%s active=%s", requested, current_email)

        now = self.clock()
        record = AccountCredential(
            email=current_email,
            access_token=extracted.access_token,
            refresh_token=extracted.refresh_token,
            expires_at=now + self.settings.recovered_ttl,
            created_at=now,
        )
        self._store(record)
        logger.info(
            "event=credential_captured email=%s source=%s has_refresh=%s",
            current_email,
            extracted.source_strategy,
            bool(record.refresh_token),
        )
        return record

    def get_token(self, email: str) -> Optional[str]:
        email = normalize_email(email)
        raw = self.secrets.get(credential_key(email))
        if not raw:
            logger.info("event=credential_missing email=%s", email)
            recovered = self.recover(email)
            return recovered.access_token if recovered else None

        record = self._parse(raw)
        if record is None:
            # Values written before credentials were stored as JSON.
            return raw if len(raw) > 10 else None
        record.email = email

        if self.clock() < record.expires_at - self.settings.refresh_skew:
            return record.access_token

        logger.info("event=credential_stale email=%s", email)
        refreshed = self.refresh(record)
        if refreshed:
            record.access_token = refreshed.access_token
            record.expires_at = refreshed.expires_at
            if refreshed.refresh_token:
                record.refresh_token = refreshed.refresh_token
            self._store(record)
            logger.info("event=credential_refreshed email=%s", email)
            return record.access_token

        recovered = self.recover(email)
        if recovered:
            return recovered.access_token

        # Hand back the stale token so the caller's API request fails with
        # its own authorization error.
        logger.warning("event=credential_unrecoverable email=%s returning=stale", email)
        return record.access_token

    def refresh(self, record: AccountCredential) -> Optional[RefreshResult]:
        if not record.refresh_token:
            logger.info("event=refresh_skipped email=%s reason=no_refresh_token", record.email)
            return None
        if not self.settings.oauth_client_id or not self.settings.oauth_client_secret:
            logger.warning("event=refresh_skipped email=%s reason=missing_client_credentials", record.email)
            return None

        try:
            return self._exchange_refresh_token(record.refresh_token)
        except RefreshRejected as exc:
            logger.warning("event=refresh_rejected email=%s error=%s", record.email, exc)
        except requests.RequestException as exc:
            logger.warning("event=refresh_request_failed email=%s error=%s", record.email, exc)
        return None

    def _exchange_refresh_token(self, refresh_token: str) -> RefreshResult:
        resp = self.oauth_client.refresh_token(
            self.settings.oauth_client_id or "",
            self.settings.oauth_client_secret or "",
            refresh_token,
        )
        if not 200 <= resp.status_code < 300:
            raise RefreshRejected(f"token endpoint returned {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise RefreshRejected("token endpoint returned a non-JSON body") from exc
        access_token = body.get("access_token") if isinstance(body, dict) else None
        if not access_token:
            raise RefreshRejected("token endpoint response has no access_token")

        try:
            lifetime = _token_lifetime(body)
        except (TypeError, ValueError) as exc:
            raise RefreshRejected(f"token endpoint returned an invalid expires_in: {exc}") from exc

        return RefreshResult(
            access_token=access_token,
            expires_at=self.clock() + lifetime,
            refresh_token=body.get("refresh_token") or None,
        )

    def recover(self, email: str) -> Optional[AccountCredential]:
        """Rebuild the record for `email` from the host state database.

        The real lifetime of a recovered token is unknown, so it gets the
        fixed `recovered_ttl`.
        """
        email = normalize_email(email)
        self._recovering.add(email)
        try:
            extracted = self.pipeline.extract()
        finally:
            self._recovering.discard(email)

        if extracted is None:
            logger.info("event=recovery_failed email=%s", email)
            return None

        now = self.clock()
        record = AccountCredential(
            email=email,
            access_token=extracted.access_token,
            refresh_token=extracted.refresh_token,
            expires_at=now + self.settings.recovered_ttl,
            created_at=now,
        )
        self._store(record)
        logger.info(
            "event=recovery_succeeded email=%s source=%s token=%s",
            email,
            extracted.source_strategy,
            mask(record.access_token),
        )
        return record

    # -- queries -----------------------------------------------------------

    def credential_state(self, email: str) -> CredentialState:
        email = normalize_email(email)
        if email in self._recovering:
            return CredentialState.RECOVERING
        record = self.get_credential(email)
        if record is None:
            return CredentialState.ABSENT
        now = self.clock()
        if now >= record.expires_at:
            return CredentialState.EXPIRED
        if now >= record.expires_at - self.settings.refresh_skew:
            return CredentialState.EXPIRING_SOON
        return CredentialState.VALID

    def has_valid_or_recoverable(self, email: str) -> bool:
        record = self.get_credential(email)
        if record is None:
            return False
        if self.clock() <= record.expires_at - self.settings.refresh_skew:
            return True
        return bool(record.refresh_token)

    def has_refresh_token(self, email: str) -> bool:
        record = self.get_credential(email)
        return bool(record and record.refresh_token)

    # -- interactive authorization -----------------------------------------

    def authorization_url(self, email: str, redirect_uri: str = OOB_REDIRECT_URI) -> Optional[str]:
        if not self.settings.oauth_client_id:
            logger.warning("event=authorization_unavailable reason=missing_client_id")
            return None
        return self.oauth_client.authorization_url(self.settings.oauth_client_id, normalize_email(email), redirect_uri)

    def authorize_with_code(
        self, email: str, code: str, redirect_uri: str = OOB_REDIRECT_URI
    ) -> Optional[AccountCredential]:
        """Exchange an authorization code and store the resulting tokens."""
        email = normalize_email(email)
        if not self.settings.oauth_client_id or not self.settings.oauth_client_secret:
            logger.warning("event=authorization_failed email=%s reason=missing_client_credentials", email)
            return None

        try:
            resp = self.oauth_client.exchange_code(
                self.settings.oauth_client_id,
                self.settings.oauth_client_secret,
                code.strip(),
                redirect_uri,
            )
        except requests.RequestException as exc:
            logger.error("event=authorization_request_failed email=%s error=%s", email, exc)
            return None

        if not 200 <= resp.status_code < 300:
            logger.error("event=authorization_failed email=%s status=%s body=%s", email, resp.status_code, resp.text)
            return None
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict) or not body.get("access_token"):
            logger.error("event=authorization_failed email=%s reason=no_access_token", email)
            return None

        try:
            lifetime = _token_lifetime(body)
        except (TypeError, ValueError) as exc:
            logger.error("event=authorization_failed email=%s reason=invalid_expires_in error=%s", email, exc)
            return None

        now = self.clock()
        record = AccountCredential(
            email=email,
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token") or None,
            expires_at=now + lifetime,
            created_at=now,
        )
        self._store(record)
        logger.info("event=authorization_succeeded email=%s has_refresh=%s", email, bool(record.refresh_token))
        return record
