"""Summary: Application configuration for EmailBill.

Importance: Centralizes environment, .env, and config defaults for consistent behavior.
Alternatives: Use a dedicated settings library like Pydantic Settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path

from emailbill.errors import ConfigError


REQUIRED_FIELDS = (
    "google_client_id",
    "google_client_secret",
    "google_redirect_uri",
    "clio_client_id",
    "clio_client_secret",
    "clio_redirect_uri",
    "session_secret",
    "frontend_url",
)

_ENV_NAMES = {
    "google_client_id": "GOOGLE_CLIENT_ID",
    "google_client_secret": "GOOGLE_CLIENT_SECRET",
    "google_redirect_uri": "GOOGLE_REDIRECT_URI",
    "clio_client_id": "CLIO_CLIENT_ID",
    "clio_client_secret": "CLIO_CLIENT_SECRET",
    "clio_redirect_uri": "CLIO_REDIRECT_URI",
    "session_secret": "SESSION_SECRET",
    "frontend_url": "FRONTEND_URL",
    "huggingface_api_key": "HUGGINGFACE_API_KEY",
    "db_path": "EMAILBILL_DB_PATH",
    "api_host": "EMAILBILL_API_HOST",
    "api_port": "EMAILBILL_API_PORT",
    "log_level": "EMAILBILL_LOG_LEVEL",
    "cookie_secure": "EMAILBILL_COOKIE_SECURE",
    "session_max_age": "EMAILBILL_SESSION_MAX_AGE",
    "http_timeout_seconds": "EMAILBILL_HTTP_TIMEOUT",
    "refresh_margin_seconds": "EMAILBILL_REFRESH_MARGIN",
    "google_auth_url": "GOOGLE_AUTH_URL",
    "google_token_url": "GOOGLE_TOKEN_URL",
    "google_userinfo_url": "GOOGLE_USERINFO_URL",
    "gmail_api_base_url": "GMAIL_API_BASE_URL",
    "clio_base_url": "CLIO_BASE_URL",
    "huggingface_model_url": "HUGGINGFACE_MODEL_URL",
}


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds provider credentials, session settings, and endpoint URLs.

    Importance: Every adapter and client is built from this object, never from process globals.
    Alternatives: Read environment variables at each call site.
    """

    google_client_id: str
    google_client_secret: str
    google_redirect_uri: str
    clio_client_id: str
    clio_client_secret: str
    clio_redirect_uri: str
    session_secret: str
    frontend_url: str
    huggingface_api_key: str | None = None
    db_path: str = "emailbill.db"
    api_host: str = "127.0.0.1"
    api_port: int = 3000
    log_level: str = "INFO"
    cookie_secure: bool = False
    session_max_age: int = 14 * 24 * 60 * 60
    http_timeout_seconds: float = 5.0
    refresh_margin_seconds: int = 60
    google_auth_url: str = "https://accounts.google.com/o/oauth2/v2/auth"
    google_token_url: str = "https://oauth2.googleapis.com/token"
    google_userinfo_url: str = "https://openidconnect.googleapis.com/v1/userinfo"
    gmail_api_base_url: str = "https://gmail.googleapis.com/gmail/v1"
    clio_base_url: str = "https://app.clio.com"
    huggingface_model_url: str = (
        "https://api-inference.huggingface.co/models/facebook/bart-large-cnn"
    )

    @staticmethod
    def from_env() -> "AppConfig":
        """Summary: Build configuration from defaults, .env, and environment.

        Importance: Keeps all variables defined in config defaults while allowing overrides.
        Alternatives: Parse only environment variables without a defaults file.
        """

        defaults = load_defaults(Path("config") / "defaults.json")
        load_dotenv(Path(".env"))
        values: dict[str, object] = {}
        for field in fields(AppConfig):
            raw = os.getenv(_ENV_NAMES[field.name])
            if raw is None:
                raw = defaults.get(field.name)
            if raw is None:
                continue
            values[field.name] = _coerce(field.name, raw)
        for name in REQUIRED_FIELDS:
            values.setdefault(name, "")
        if not values.get("huggingface_api_key"):
            values["huggingface_api_key"] = None
        return AppConfig(**values)

    @property
    def frontend_origin(self) -> str:
        """Return the frontend URL without a trailing slash."""

        return self.frontend_url.rstrip("/")

    def missing_fields(self) -> list[str]:
        """Summary: List required settings that are empty.

        Importance: Lets the CLI report gaps without printing secret values.
        Alternatives: Fail on the first missing value only.
        """

        return [name for name in REQUIRED_FIELDS if not str(getattr(self, name) or "").strip()]

    def validate(self) -> None:
        """Summary: Refuse a partially configured process.

        Importance: A missing client secret or session secret must stop startup, not the first login.
        Alternatives: Let provider calls fail at request time.
        """

        missing = self.missing_fields()
        if missing:
            raise ConfigError([_ENV_NAMES[name] for name in missing])


def _coerce(name: str, raw: object) -> object:
    if name in {"api_port", "session_max_age", "refresh_margin_seconds"}:
        return int(raw)
    if name == "http_timeout_seconds":
        return float(raw)
    if name == "cookie_secure":
        if isinstance(raw, bool):
            return raw
        return str(raw).strip().lower() in {"1", "true", "yes", "on"}
    return str(raw)


def load_defaults(path: Path) -> dict[str, str]:
    """Summary: Load configuration defaults from JSON.

    Importance: Ensures all variables exist in a single config file.
    Alternatives: Inline defaults in the AppConfig initializer.
    """

    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def load_dotenv(path: Path) -> None:
    """Summary: Load key-value pairs from a .env file into the environment.

    Importance: Keeps secrets out of code while supporting local workflows.
    Alternatives: Use python-dotenv or OS-specific secret stores.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip().strip('"').strip("'"))
