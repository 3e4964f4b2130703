import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path


logger = logging.getLogger(__name__)

DEFAULT_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
DEFAULT_CREDENTIALS_FILE = Path.home() / ".config" / "switchboard" / "credentials.json"


def _get_env(*keys: str, default=None):
    for key in keys:
        value = os.getenv(key)
        if value is not None and value != "":
            return value
    return default


def default_state_db_path() -> Path:
    """Location of the host application's global state database."""
    if sys.platform == "win32":
        base = Path(os.getenv("APPDATA", ""))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path.home() / ".config"
    return base / "Antigravity" / "User" / "globalStorage" / "state.vscdb"


def _load_client_credentials(path: Path) -> dict[str, str]:
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("event=credentials_file_unreadable path=%s error=%s", path, exc)
        return {}
    if not isinstance(raw, dict):
        return {}
    return {k: str(v) for k, v in raw.items() if v}


def _parse_timeout(value):
    if value is None:
        return None
    parts = [float(p) for p in str(value).split(",") if p.strip()]
    if len(parts) == 1:
        return parts[0]
    return (parts[0], parts[1])


@dataclass(frozen=True)
class Settings:
    state_db_path: Path
    oauth_client_id: str | None
    oauth_client_secret: str | None
    token_endpoint: str
    secret_backend: str
    keyring_service: str
    refresh_skew: int
    recovered_ttl: int
    request_timeout: float | tuple[float, float] | None
    refresh_retries: int
    table_name: str
    partition_key: str
    table_endpoint: str | None = None
    table_connection_string: str | None = None


def load_settings() -> Settings:
    credentials_file = Path(_get_env("OAUTH_CREDENTIALS_FILE", default=str(DEFAULT_CREDENTIALS_FILE)))
    file_creds = _load_client_credentials(credentials_file)

    return Settings(
        state_db_path=Path(_get_env("HOST_STATE_DB", default=str(default_state_db_path()))),
        oauth_client_id=_get_env("OAUTH_CLIENT_ID", "ANTIGRAVITY_CLIENT_ID", default=file_creds.get("clientId")),
        oauth_client_secret=_get_env(
            "OAUTH_CLIENT_SECRET", "ANTIGRAVITY_CLIENT_SECRET", default=file_creds.get("clientSecret")
        ),
        token_endpoint=str(_get_env("OAUTH_TOKEN_ENDPOINT", default=DEFAULT_TOKEN_ENDPOINT)),
        secret_backend=str(_get_env("SECRET_BACKEND", default="keyring")),
        keyring_service=str(_get_env("KEYRING_SERVICE", default="switchboard")),
        refresh_skew=int(_get_env("REFRESH_SKEW_SECONDS", default=300)),
        recovered_ttl=int(_get_env("RECOVERED_TTL_SECONDS", default=55 * 60)),
        request_timeout=_parse_timeout(_get_env("REQUEST_TIMEOUT")),
        refresh_retries=int(_get_env("REFRESH_RETRIES", default=0)),
        table_name=str(_get_env("SECRET_TABLE_NAME", default="switchboardsecrets")),
        partition_key=str(_get_env("SECRET_PARTITION_KEY", default="switchboard")),
        table_endpoint=_get_env("SECRET_TABLE_ENDPOINT"),
        table_connection_string=_get_env("SECRET_TABLE_CONNECTION_STRING"),
    )
