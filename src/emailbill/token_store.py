"""Summary: Session-scoped persistence of linked provider credentials.

Importance: The browser cookie only carries an opaque session id; identities live server-side.
Alternatives: Serialize the whole identity into the signed session cookie.
"""

from __future__ import annotations

import json
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, MutableMapping

from emailbill.errors import IdentitySchemaError
from emailbill.models import ALL_PROVIDERS, Credential, Identity
from emailbill.storage.sqlite_store import SqliteStore


logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
SESSION_ID_KEY = "sid"
STATE_TTL_SECONDS = 600


def dump_identity(identity: Identity) -> str:
    """Summary: Serialize an identity into the versioned JSON schema.

    Importance: Makes the stored shape explicit so reads can be validated.
    Alternatives: Pickle the dataclass.
    """

    providers: dict[str, Any] = {}
    for name, credential in identity.credentials.items():
        providers[name] = {
            "access_token": credential.access_token,
            "refresh_token": credential.refresh_token,
            "profile": credential.profile,
            "expires_at": credential.expires_at.isoformat() if credential.expires_at else None,
            "token_type": credential.token_type,
        }
    return json.dumps({"version": SCHEMA_VERSION, "providers": providers})


def load_identity(payload: str) -> Identity:
    """Summary: Parse a stored identity, rejecting anything off-schema.

    Importance: A corrupt or outdated payload becomes a typed error instead of missing keys later.
    Alternatives: Default missing fields silently.
    """

    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise IdentitySchemaError("Identity payload is not valid JSON") from exc
    if not isinstance(data, dict) or data.get("version") != SCHEMA_VERSION:
        raise IdentitySchemaError("Unsupported identity schema version")
    providers = data.get("providers")
    if not isinstance(providers, dict):
        raise IdentitySchemaError("Identity payload has no providers mapping")
    credentials: dict[str, Credential] = {}
    for name, entry in providers.items():
        if name not in ALL_PROVIDERS:
            raise IdentitySchemaError(f"Unknown provider in identity: {name}")
        credentials[name] = _credential_from_entry(name, entry)
    return Identity(credentials)


def _credential_from_entry(name: str, entry: Any) -> Credential:
    if not isinstance(entry, dict) or not isinstance(entry.get("access_token"), str):
        raise IdentitySchemaError(f"Malformed credential for {name}")
    profile = entry.get("profile") or {}
    if not isinstance(profile, dict):
        raise IdentitySchemaError(f"Malformed profile for {name}")
    expires_raw = entry.get("expires_at")
    try:
        expires_at = datetime.fromisoformat(expires_raw) if expires_raw else None
    except (TypeError, ValueError) as exc:
        raise IdentitySchemaError(f"Malformed expiry for {name}") from exc
    if expires_at is not None and expires_at.tzinfo is None:
        raise IdentitySchemaError(f"Expiry for {name} has no timezone")
    return Credential(
        access_token=entry["access_token"],
        refresh_token=entry.get("refresh_token"),
        profile=profile,
        expires_at=expires_at,
        token_type=entry.get("token_type"),
    )


def ensure_session_id(session: MutableMapping[str, Any]) -> str:
    session_id = session.get(SESSION_ID_KEY)
    if not session_id:
        session_id = secrets.token_urlsafe(32)
        session[SESSION_ID_KEY] = session_id
    return session_id


class StateStore:
    """Summary: Server-side OAuth state nonces for one browser session.

    Importance: The cookie only names the session, so an old cookie cannot bring back a used nonce.
    Alternatives: Keep the nonce in the signed session cookie.
    """

    def __init__(
        self,
        session: MutableMapping[str, Any],
        store: SqliteStore,
        ttl_seconds: int = STATE_TTL_SECONDS,
    ) -> None:
        self._session = session
        self._store = store
        self._ttl = ttl_seconds

    def put(self, provider: str, state: str) -> None:
        self._store.put_state(ensure_session_id(self._session), provider, state)

    def pop(self, provider: str) -> str | None:
        session_id = self._session.get(SESSION_ID_KEY)
        if not session_id:
            return None
        return self._store.pop_state(session_id, provider, self._ttl)


class TokenStore:
    """Summary: Reads and writes the identity bound to one browser session.

    Importance: Single place where request sessions meet the durable identity store.
    Alternatives: Let each route read and write storage directly.
    """

    def __init__(
        self, session: MutableMapping[str, Any], store: SqliteStore, max_age_seconds: int
    ) -> None:
        self._session = session
        self._store = store
        self._max_age = max_age_seconds

    def load(self) -> Identity | None:
        """Summary: Return the session identity, or None when nothing is linked.

        Importance: Expired records are dropped so an identity never outlives its session;
        a successful load renews the record like the rolling session cookie.
        Alternatives: Trust cookie expiry alone.
        """

        session_id = self._session.get(SESSION_ID_KEY)
        if not session_id:
            return None
        record = self._store.get_session(session_id)
        if record is None:
            return None
        updated_at = record.updated_at
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        if updated_at + timedelta(seconds=self._max_age) < datetime.now(timezone.utc):
            logger.info("Discarding expired identity for session.")
            self._store.delete_session(session_id)
            return None
        identity = load_identity(record.payload)
        self._store.touch_session(session_id)
        return identity

    def save(self, identity: Identity) -> None:
        session_id = ensure_session_id(self._session)
        self._store.upsert_session(session_id, dump_identity(identity))
        purged = self._store.purge_expired(self._max_age)
        if purged:
            logger.info("Purged %s expired session identities.", purged)
        logger.info("Stored identity with providers: %s", ", ".join(sorted(identity.providers)))

    def discard(self) -> None:
        """Drop the stored identity and pending nonces but keep the rest of the session."""

        session_id = self._session.pop(SESSION_ID_KEY, None)
        if session_id:
            self._store.delete_session(session_id)

    def clear(self) -> None:
        """Summary: Destroy the identity and every other session value.

        Importance: Logout must leave nothing a later request could reuse.
        Alternatives: Only remove the session cookie.
        """

        self.discard()
        self._session.clear()
