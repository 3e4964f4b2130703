from __future__ import annotations

from typing import Union
from urllib.parse import urlencode

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
OOB_REDIRECT_URI = "urn:ietf:wg:oauth:2.0:oob"
SCOPES = "openid email profile https://www.googleapis.com/auth/cloud-platform"

Timeout = Union[float, tuple[float, float], None]


def build_session(max_retries: int = 0) -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=max_retries,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["POST"],
    )
    adapter = HTTPAdapter(max_retries=retries, pool_connections=4, pool_maxsize=4)
    session.mount("https://", adapter)
    return session


class OAuthClient:
    def __init__(self, session: requests.Session, token_endpoint: str, timeout: Timeout = None):
        self.session = session
        self.token_endpoint = token_endpoint
        self.timeout = timeout

    def refresh_token(self, client_id: str, client_secret: str, refresh_token: str) -> requests.Response:
        return self.session.post(
            self.token_endpoint,
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": client_id,
                "client_secret": client_secret,
            },
            timeout=self.timeout,
        )

    def exchange_code(
        self,
        client_id: str,
        client_secret: str,
        code: str,
        redirect_uri: str = OOB_REDIRECT_URI,
    ) -> requests.Response:
        return self.session.post(
            self.token_endpoint,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "client_id": client_id,
                "client_secret": client_secret,
                "redirect_uri": redirect_uri,
            },
            timeout=self.timeout,
        )

    @staticmethod
    def authorization_url(client_id: str, login_hint: str, redirect_uri: str = OOB_REDIRECT_URI) -> str:
        """Consent URL that yields an authorization code with offline access."""
        params = urlencode(
            {
                "client_id": client_id,
                "redirect_uri": redirect_uri,
                "response_type": "code",
                "scope": SCOPES,
                "access_type": "offline",
                "prompt": "consent",
                "login_hint": login_hint,
            }
        )
        return f"{AUTHORIZE_URL}?{params}"
