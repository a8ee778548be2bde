"""Summary: Tests for the provider credential adapters.

Importance: State validation and refresh rules protect every linked session.
Alternatives: Validate OAuth flows manually against live providers.
"""

from __future__ import annotations

import urllib.parse
import urllib.request
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from emailbill.config import AppConfig
from emailbill.errors import AuthError, AuthErrorReason
from emailbill.models import Credential
from emailbill.oauth import ClioAdapter, GoogleAdapter, ProviderAdapter, ProviderHttpError, build_adapter
from emailbill.storage.sqlite_store import SqliteStore
from emailbill.token_store import StateStore


def _config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        google_client_id="google-client",
        google_client_secret="google-secret",
        google_redirect_uri="http://localhost:3000/auth/google/callback",
        clio_client_id="clio-client",
        clio_client_secret="clio-secret",
        clio_redirect_uri="http://localhost:3000/auth/clio/callback",
        session_secret="session-secret",
        frontend_url="http://localhost:5173",
        db_path=str(tmp_path / "test.db"),
    )


def _states(tmp_path: Path) -> StateStore:
    store = SqliteStore(str(tmp_path / "test.db"))
    store.initialize()
    return StateStore({}, store)


def _query(url: str) -> dict[str, str]:
    return dict(urllib.parse.parse_qsl(urllib.parse.urlsplit(url).query))


class FakeProvider:
    """Records token endpoint calls and answers with canned payloads."""

    def __init__(self, token_payload: dict[str, Any] | None = None) -> None:
        self.token_payload = token_payload or {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "expires_in": 3600,
            "token_type": "Bearer",
        }
        self.posts: list[tuple[str, dict[str, str]]] = []

    def post_form(self, url: str, payload: dict[str, str], timeout: float) -> dict[str, Any]:
        self.posts.append((url, payload))
        return dict(self.token_payload)

    def get_json(self, url: str, access_token: str, timeout: float) -> dict[str, Any]:
        if "who_am_i" in url:
            return {"data": {"id": 7, "name": "Pat Lawyer", "email": "pat@firm.test"}}
        return {"sub": "g-1", "email": "pat@gmail.test", "name": "Pat"}


@pytest.fixture()
def fake_provider(monkeypatch: pytest.MonkeyPatch) -> FakeProvider:
    fake = FakeProvider()
    monkeypatch.setattr("emailbill.oauth._post_form", fake.post_form)
    monkeypatch.setattr("emailbill.oauth._get_json", fake.get_json)
    return fake


def test_google_auth_url_stores_state(tmp_path: Path) -> None:
    states = _states(tmp_path)
    url = GoogleAdapter(_config(tmp_path)).begin_auth(states)
    params = _query(url)
    assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
    assert params["client_id"] == "google-client"
    assert params["access_type"] == "offline"
    assert "gmail.readonly" in params["scope"]
    assert states.pop("google") == params["state"]


def test_clio_auth_url_uses_custom_scopes(tmp_path: Path) -> None:
    states = _states(tmp_path)
    url = ClioAdapter(_config(tmp_path)).begin_auth(states, {"matters"})
    params = _query(url)
    assert url.startswith("https://app.clio.com/oauth/authorize?")
    assert params["scope"] == "matters"
    assert params["redirect_uri"] == "http://localhost:3000/auth/clio/callback"
    assert states.pop("clio") == params["state"]


def test_complete_auth_returns_credential_and_clears_state(
    tmp_path: Path, fake_provider: FakeProvider
) -> None:
    states = _states(tmp_path)
    adapter = ClioAdapter(_config(tmp_path))
    state = _query(adapter.begin_auth(states))["state"]
    credential = adapter.complete_auth(states, "code-1", state)
    assert credential.access_token == "access-1"
    assert credential.refresh_token == "refresh-1"
    assert credential.profile["email"] == "pat@firm.test"
    assert credential.expires_at is not None
    assert states.pop("clio") is None
    url, payload = fake_provider.posts[0]
    assert url == "https://app.clio.com/oauth/token"
    assert payload["grant_type"] == "authorization_code"
    assert payload["code"] == "code-1"


@pytest.mark.parametrize("mutate", [lambda s: s + " ", lambda s: s.upper(), lambda s: s[:-1], lambda s: ""])
def test_complete_auth_rejects_near_miss_state(
    tmp_path: Path, fake_provider: FakeProvider, mutate
) -> None:
    states = _states(tmp_path)
    adapter = GoogleAdapter(_config(tmp_path))
    state = "Ab" + _query(adapter.begin_auth(states))["state"]
    states.put("google", state)
    with pytest.raises(AuthError) as excinfo:
        adapter.complete_auth(states, "code-1", mutate(state))
    assert excinfo.value.reason is AuthErrorReason.INVALID_STATE
    assert state not in str(excinfo.value)
    assert fake_provider.posts == []


def test_replayed_callback_fails(tmp_path: Path, fake_provider: FakeProvider) -> None:
    states = _states(tmp_path)
    adapter = GoogleAdapter(_config(tmp_path))
    state = _query(adapter.begin_auth(states))["state"]
    adapter.complete_auth(states, "code-1", state)
    with pytest.raises(AuthError) as excinfo:
        adapter.complete_auth(states, "code-1", state)
    assert excinfo.value.reason is AuthErrorReason.INVALID_STATE
    assert len(fake_provider.posts) == 1


def test_callback_without_started_flow_fails(tmp_path: Path, fake_provider: FakeProvider) -> None:
    with pytest.raises(AuthError) as excinfo:
        GoogleAdapter(_config(tmp_path)).complete_auth(_states(tmp_path), "code-1", "anything")
    assert excinfo.value.reason is AuthErrorReason.INVALID_STATE


def test_provider_error_is_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(*_args: object, **_kwargs: object) -> dict[str, Any]:
        raise ProviderHttpError(400, {"error": "invalid_grant"})

    monkeypatch.setattr("emailbill.oauth._post_form", _fail)
    states = _states(tmp_path)
    adapter = GoogleAdapter(_config(tmp_path))
    state = _query(adapter.begin_auth(states))["state"]
    with pytest.raises(AuthError) as excinfo:
        adapter.complete_auth(states, "bad-code", state)
    assert excinfo.value.reason is AuthErrorReason.PROVIDER_REJECTED
    assert excinfo.value.payload == {"error": "invalid_grant"}


def test_denied_consent_is_rejected(tmp_path: Path, fake_provider: FakeProvider) -> None:
    states = _states(tmp_path)
    adapter = ClioAdapter(_config(tmp_path))
    state = _query(adapter.begin_auth(states))["state"]
    with pytest.raises(AuthError) as excinfo:
        adapter.complete_auth(states, None, state, error="access_denied")
    assert excinfo.value.reason is AuthErrorReason.PROVIDER_REJECTED
    assert fake_provider.posts == []


def test_refresh_keeps_refresh_token_when_not_reissued(
    tmp_path: Path, fake_provider: FakeProvider
) -> None:
    fake_provider.token_payload = {"access_token": "access-2", "expires_in": 3600}
    old = Credential(
        access_token="access-1",
        refresh_token="refresh-1",
        profile={"email": "pat@gmail.test"},
        expires_at=datetime.now(timezone.utc) - timedelta(minutes=5),
        token_type="Bearer",
    )
    refreshed = GoogleAdapter(_config(tmp_path)).refresh(old)
    assert refreshed.access_token == "access-2"
    assert refreshed.refresh_token == "refresh-1"
    assert refreshed.profile == {"email": "pat@gmail.test"}
    assert refreshed.token_type == "Bearer"
    assert not refreshed.is_stale(60)
    assert fake_provider.posts[0][1]["grant_type"] == "refresh_token"
    assert old.access_token == "access-1"


def test_refresh_uses_new_refresh_token(tmp_path: Path, fake_provider: FakeProvider) -> None:
    fake_provider.token_payload = {"access_token": "access-2", "refresh_token": "refresh-2"}
    refreshed = ClioAdapter(_config(tmp_path)).refresh(
        Credential(access_token="access-1", refresh_token="refresh-1")
    )
    assert refreshed.refresh_token == "refresh-2"


def test_refresh_without_refresh_token_fails(tmp_path: Path, fake_provider: FakeProvider) -> None:
    with pytest.raises(AuthError) as excinfo:
        GoogleAdapter(_config(tmp_path)).refresh(Credential(access_token="access-1"))
    assert excinfo.value.reason is AuthErrorReason.REFRESH_FAILED
    assert fake_provider.posts == []


def test_refresh_provider_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(*_args: object, **_kwargs: object) -> dict[str, Any]:
        raise ProviderHttpError(None, "timed out")

    monkeypatch.setattr("emailbill.oauth._post_form", _fail)
    with pytest.raises(AuthError) as excinfo:
        ClioAdapter(_config(tmp_path)).refresh(
            Credential(access_token="access-1", refresh_token="refresh-1")
        )
    assert excinfo.value.reason is AuthErrorReason.REFRESH_FAILED


def test_build_adapter_returns_fresh_instances(tmp_path: Path) -> None:
    config = _config(tmp_path)
    assert isinstance(build_adapter(config, "google"), GoogleAdapter)
    assert build_adapter(config, "clio") is not build_adapter(config, "clio")
    with pytest.raises(ValueError):
        build_adapter(config, "dropbox")


def _time_out(*_args: object, **_kwargs: object) -> Any:
    raise TimeoutError("timed out")


def test_callback_timeout_is_provider_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(urllib.request, "urlopen", _time_out)
    states = _states(tmp_path)
    adapter = GoogleAdapter(_config(tmp_path))
    state = _query(adapter.begin_auth(states))["state"]
    with pytest.raises(AuthError) as excinfo:
        adapter.complete_auth(states, "code-1", state)
    assert excinfo.value.reason is AuthErrorReason.PROVIDER_REJECTED
    assert excinfo.value.payload == "timed out"


def test_refresh_timeout_is_refresh_failed(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(urllib.request, "urlopen", _time_out)
    with pytest.raises(AuthError) as excinfo:
        ClioAdapter(_config(tmp_path)).refresh(
            Credential(access_token="access-1", refresh_token="refresh-1")
        )
    assert excinfo.value.reason is AuthErrorReason.REFRESH_FAILED


def test_expired_state_is_rejected(tmp_path: Path, fake_provider: FakeProvider) -> None:
    store = SqliteStore(str(tmp_path / "test.db"))
    store.initialize()
    states = StateStore({}, store, ttl_seconds=-1)
    adapter = ClioAdapter(_config(tmp_path))
    state = _query(adapter.begin_auth(states))["state"]
    with pytest.raises(AuthError) as excinfo:
        adapter.complete_auth(states, "code-1", state)
    assert excinfo.value.reason is AuthErrorReason.INVALID_STATE
    assert fake_provider.posts == []


def test_provider_adapter_is_abstract(tmp_path: Path) -> None:
    with pytest.raises(TypeError):
        ProviderAdapter(_config(tmp_path))  # type: ignore[abstract]
