"""Summary: OAuth credential adapters for Google and Clio.

Importance: Wraps authorization URLs, code exchange, and refresh behind one interface per provider.
Alternatives: Use provider SDKs or an OAuth client library per provider.
"""

from __future__ import annotations

import json
import logging
import secrets
from abc import ABC, abstractmethod
from typing import Any, Iterable
import urllib.error
import urllib.parse
import urllib.request

from emailbill.config import AppConfig
from emailbill.errors import AuthError, AuthErrorReason
from emailbill.models import CLIO, GOOGLE, Credential
from emailbill.token_store import StateStore


logger = logging.getLogger(__name__)

GOOGLE_SCOPES = (
    "openid",
    "email",
    "profile",
    "https://www.googleapis.com/auth/gmail.readonly",
)
CLIO_SCOPES: tuple[str, ...] = ()


class ProviderHttpError(Exception):
    """Summary: A provider endpoint answered with an error or could not be reached.

    Importance: Keeps the raw payload for logs while adapters decide the AuthError reason.
    Alternatives: Raise RuntimeError with the body in the message.
    """

    def __init__(self, status: int | None, payload: Any) -> None:
        super().__init__(f"Provider request failed with status {status}")
        self.status = status
        self.payload = payload


def create_state_token() -> str:
    """Summary: Generate a CSRF state token.

    Importance: Protects OAuth flows from CSRF attacks.
    Alternatives: Use signed state values instead of session storage.
    """

    return secrets.token_urlsafe(24)


class ProviderAdapter(ABC):
    """Summary: Uniform OAuth flow for one provider.

    Importance: Route handlers and the request gate never see provider-specific URLs or payloads.
    Alternatives: Inline each provider flow in its route handlers.
    """

    name = ""
    default_scopes: tuple[str, ...] = ()
    uses_state = True

    def __init__(self, config: AppConfig) -> None:
        self._config = config
        self._timeout = config.http_timeout_seconds

    @property
    @abstractmethod
    def client_id(self) -> str:
        """OAuth client id registered with the provider."""

    @property
    @abstractmethod
    def client_secret(self) -> str:
        """OAuth client secret registered with the provider."""

    @property
    @abstractmethod
    def redirect_uri(self) -> str:
        """Callback URL the provider redirects back to."""

    @property
    @abstractmethod
    def authorize_url(self) -> str:
        """Provider consent screen URL."""

    @property
    @abstractmethod
    def token_url(self) -> str:
        """Provider token endpoint for code exchange and refresh."""

    def extra_auth_params(self) -> dict[str, str]:
        return {}

    @abstractmethod
    def fetch_profile(self, access_token: str) -> dict[str, Any]:
        """Summary: Fetch the minimal profile for a freshly issued access token.

        Importance: Profiles are what /api/user reports for each linked provider.
        Alternatives: Decode an ID token instead of calling the provider.
        """

    def begin_auth(self, states: StateStore, scopes: Iterable[str] | None = None) -> str:
        """Summary: Build the provider consent URL and record a state nonce.

        Importance: The nonce written here is the only value a callback will accept.
        Alternatives: Skip state for providers that tolerate it.
        """

        requested = tuple(scopes) if scopes is not None else self.default_scopes
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
        }
        if requested:
            params["scope"] = " ".join(requested)
        params.update(self.extra_auth_params())
        if self.uses_state:
            state = create_state_token()
            states.put(self.name, state)
            params["state"] = state
        logger.info("Starting %s OAuth flow.", self.name)
        return self.authorize_url + "?" + urllib.parse.urlencode(params)

    def complete_auth(
        self,
        states: StateStore,
        code: str | None,
        state: str | None,
        error: str | None = None,
    ) -> Credential:
        """Summary: Validate the callback state and exchange the code for a Credential.

        Importance: The server-side nonce is deleted on every callback, so a replay always fails.
        Alternatives: Keep the nonce until it expires.
        """

        if self.uses_state:
            expected = states.pop(self.name)
            if not expected or not state or not secrets.compare_digest(
                str(expected).encode("utf-8"), state.encode("utf-8")
            ):
                raise AuthError(AuthErrorReason.INVALID_STATE, self.name)
        if error:
            raise AuthError(AuthErrorReason.PROVIDER_REJECTED, self.name, {"error": error})
        if not code:
            raise AuthError(
                AuthErrorReason.PROVIDER_REJECTED, self.name, {"error": "missing_code"}
            )
        try:
            token_payload = _post_form(self.token_url, self._code_payload(code), self._timeout)
            if not token_payload.get("access_token"):
                raise ProviderHttpError(None, token_payload)
            profile = self.fetch_profile(token_payload["access_token"])
        except ProviderHttpError as exc:
            raise AuthError(AuthErrorReason.PROVIDER_REJECTED, self.name, exc.payload) from exc
        logger.info("Completed %s OAuth code exchange.", self.name)
        return Credential.from_token_response(token_payload, profile)

    def refresh(self, credential: Credential) -> Credential:
        """Summary: Obtain a new access token using the stored refresh token.

        Importance: Returns the new Credential so the caller decides where it is persisted.
        Alternatives: Emit a tokens-refreshed event.
        """

        if not credential.refresh_token:
            raise AuthError(
                AuthErrorReason.REFRESH_FAILED, self.name, {"error": "no_refresh_token"}
            )
        try:
            payload = _post_form(
                self.token_url, self._refresh_payload(credential.refresh_token), self._timeout
            )
            if not payload.get("access_token"):
                raise ProviderHttpError(None, payload)
        except ProviderHttpError as exc:
            raise AuthError(AuthErrorReason.REFRESH_FAILED, self.name, exc.payload) from exc
        refreshed = Credential.from_token_response(payload, credential.profile)
        logger.info("Refreshed %s access token.", self.name)
        return Credential(
            access_token=refreshed.access_token,
            refresh_token=refreshed.refresh_token or credential.refresh_token,
            profile=dict(credential.profile),
            expires_at=refreshed.expires_at,
            token_type=refreshed.token_type or credential.token_type,
        )

    def _code_payload(self, code: str) -> dict[str, str]:
        return {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        }

    def _refresh_payload(self, refresh_token: str) -> dict[str, str]:
        return {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }


class GoogleAdapter(ProviderAdapter):
    """Summary: Google OAuth for Gmail read access.

    Importance: Requests offline access so a refresh token is issued.
    Alternatives: Use google-auth-oauthlib flows.
    """

    name = GOOGLE
    default_scopes = GOOGLE_SCOPES

    @property
    def client_id(self) -> str:
        return self._config.google_client_id

    @property
    def client_secret(self) -> str:
        return self._config.google_client_secret

    @property
    def redirect_uri(self) -> str:
        return self._config.google_redirect_uri

    @property
    def authorize_url(self) -> str:
        return self._config.google_auth_url

    @property
    def token_url(self) -> str:
        return self._config.google_token_url

    def extra_auth_params(self) -> dict[str, str]:
        return {"access_type": "offline", "prompt": "consent"}

    def fetch_profile(self, access_token: str) -> dict[str, Any]:
        payload = _get_json(self._config.google_userinfo_url, access_token, self._timeout)
        return {
            "id": payload.get("sub"),
            "email": payload.get("email"),
            "name": payload.get("name"),
        }


class ClioAdapter(ProviderAdapter):
    """Summary: Clio OAuth for matters and time entries.

    Importance: Clio grants are app-scoped, so no scope parameter is sent by default.
    Alternatives: Use a generic OAuth2 client configured with Clio URLs.
    """

    name = CLIO
    default_scopes = CLIO_SCOPES

    @property
    def client_id(self) -> str:
        return self._config.clio_client_id

    @property
    def client_secret(self) -> str:
        return self._config.clio_client_secret

    @property
    def redirect_uri(self) -> str:
        return self._config.clio_redirect_uri

    @property
    def authorize_url(self) -> str:
        return self._config.clio_base_url.rstrip("/") + "/oauth/authorize"

    @property
    def token_url(self) -> str:
        return self._config.clio_base_url.rstrip("/") + "/oauth/token"

    def fetch_profile(self, access_token: str) -> dict[str, Any]:
        url = self._config.clio_base_url.rstrip("/") + "/api/v4/users/who_am_i?fields=id,name,email"
        data = _get_json(url, access_token, self._timeout).get("data") or {}
        return {"id": data.get("id"), "email": data.get("email"), "name": data.get("name")}


ADAPTERS: dict[str, type[ProviderAdapter]] = {GOOGLE: GoogleAdapter, CLIO: ClioAdapter}


def build_adapter(config: AppConfig, provider: str) -> ProviderAdapter:
    """Summary: Construct a fresh adapter for a provider.

    Importance: Adapters are built per request from explicit configuration.
    Alternatives: Share module-level OAuth client singletons.
    """

    try:
        adapter_cls = ADAPTERS[provider]
    except KeyError:
        raise ValueError(f"Unknown OAuth provider: {provider}") from None
    return adapter_cls(config)


def _post_form(url: str, payload: dict[str, str], timeout: float) -> dict[str, Any]:
    """Summary: Send a form-encoded POST request and parse JSON.

    Importance: Token endpoints for both providers accept form posts.
    Alternatives: Use requests or a provider SDK.
    """

    data = urllib.parse.urlencode(payload).encode("utf-8")
    request = urllib.request.Request(
        url,
        data=data,
        headers={
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        },
        method="POST",
    )
    return _send(request, timeout)


def _get_json(url: str, access_token: str, timeout: float) -> dict[str, Any]:
    request = urllib.request.Request(
        url,
        headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        method="GET",
    )
    return _send(request, timeout)


def _send(request: urllib.request.Request, timeout: float) -> dict[str, Any]:
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="replace")
        raise ProviderHttpError(exc.code, _parse_body(body) or exc.reason) from exc
    except (urllib.error.URLError, TimeoutError, OSError) as exc:
        raise ProviderHttpError(None, str(exc)) from exc
    parsed = _parse_body(raw)
    if not isinstance(parsed, dict):
        raise ProviderHttpError(None, "Unexpected provider response")
    return parsed


def _parse_body(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return raw
