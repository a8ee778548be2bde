"""Summary: Links provider credentials into one session identity.

Importance: Adding one provider must never drop another that is already linked.
Alternatives: Overwrite the whole session user object on every OAuth callback.
"""

from __future__ import annotations

from typing import Iterable

from emailbill.models import ALL_PROVIDERS, Credential, Identity


def merge(identity: Identity | None, provider: str, credential: Credential) -> Identity:
    """Summary: Return a new identity with ``credential`` stored at ``provider``.

    Importance: Other provider entries are carried over unchanged, so link order never matters.
    Alternatives: Mutate the session dictionary in place.
    """

    if provider not in ALL_PROVIDERS:
        raise ValueError(f"Unknown provider: {provider}")
    credentials = dict(identity.credentials) if identity else {}
    credentials[provider] = credential
    return Identity(credentials)


def has_provider(identity: Identity | None, provider: str) -> bool:
    return identity is not None and identity.get(provider) is not None


def missing_providers(identity: Identity | None, required: Iterable[str] = ALL_PROVIDERS) -> list[str]:
    """List required providers absent from the identity, in ``required`` order."""

    return [provider for provider in required if not has_provider(identity, provider)]


def is_fully_linked(identity: Identity | None, required: Iterable[str] = ALL_PROVIDERS) -> bool:
    """Summary: Check that every provider a feature needs has a credential.

    Importance: Gates endpoints that combine Gmail and Clio data.
    Alternatives: Check each provider separately at every call site.
    """

    return not missing_providers(identity, required)
