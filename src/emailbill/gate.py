"""Summary: Request gate enforcing linked identities and refreshing stale tokens.

Importance: Every provider-backed endpoint declares which providers it needs.
Alternatives: A single global ensureAuthenticated check for all endpoints.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from fastapi import Request

from emailbill.errors import AccessDenied, AuthError, IdentitySchemaError
from emailbill.linker import merge, missing_providers
from emailbill.models import ALL_PROVIDERS, PROVIDER_LABELS, Credential, Identity
from emailbill.token_store import TokenStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinkedSession:
    """Summary: The identity a gated endpoint may use, with fresh credentials.

    Importance: Endpoints read tokens from here, never straight from the session.
    Alternatives: Pass the raw identity to route handlers.
    """

    identity: Identity

    def credential(self, provider: str) -> Credential:
        credential = self.identity.get(provider)
        if credential is None:
            raise KeyError(provider)
        return credential


def load_session_identity(tokens: TokenStore) -> Identity | None:
    """Summary: Load the session identity, discarding undecodable payloads.

    Importance: A corrupt payload is logged and treated as no identity.
    Alternatives: Fail the request with a 500.
    """

    try:
        return tokens.load()
    except IdentitySchemaError as exc:
        logger.warning("Discarding undecodable session identity: %s", exc)
        tokens.discard()
        return None


def require_providers(*providers: str) -> Callable[[Request], LinkedSession]:
    """Summary: Build a FastAPI dependency requiring the given providers.

    Importance: With no providers it only requires some linked identity.
    Alternatives: Check session keys at the top of every handler.
    """

    for provider in providers:
        if provider not in ALL_PROVIDERS:
            raise ValueError(f"Unknown provider: {provider}")
    required = tuple(providers)

    def dependency(request: Request) -> LinkedSession:
        context = request.app.state.context
        tokens = context.token_store(request.session)
        identity = load_session_identity(tokens)
        if identity is None or not identity.providers:
            raise AccessDenied("unauthenticated", "Not authenticated")
        missing = missing_providers(identity, required)
        if missing:
            labels = " and ".join(PROVIDER_LABELS[name] for name in missing)
            raise AccessDenied(
                "partially_linked", f"Not authenticated with {labels}", missing=missing
            )
        margin = context.config.refresh_margin_seconds
        for provider in required:
            credential = identity.get(provider)
            if credential is None or not credential.is_stale(margin):
                continue
            try:
                refreshed = context.adapter_for(provider).refresh(credential)
            except AuthError as exc:
                logger.warning(
                    "Token refresh for %s failed (%s): %s", provider, exc.reason.value, exc.payload
                )
                raise AccessDenied(
                    "refresh_failed", "Re-authentication required", provider=provider
                ) from exc
            identity = merge(identity, provider, refreshed)
            tokens.save(identity)
        return LinkedSession(identity=identity)

    return dependency
