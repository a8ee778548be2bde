"""Summary: Domain model dataclasses for EmailBill.

Importance: Defines the credential and identity types shared by adapters, linker, and gate.
Alternatives: Use Pydantic models or raw session dictionaries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import math
from types import MappingProxyType
from typing import Any, Mapping


GOOGLE = "google"
CLIO = "clio"
ALL_PROVIDERS = (GOOGLE, CLIO)

PROVIDER_LABELS = {GOOGLE: "Google", CLIO: "Clio"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Credential:
    """Summary: Access/refresh token pair plus minimal profile for one provider.

    Importance: Single representation for tokens from both providers and from refreshes.
    Alternatives: Store the raw provider token response.
    """

    access_token: str
    refresh_token: str | None = None
    profile: dict[str, Any] = field(default_factory=dict)
    expires_at: datetime | None = None
    token_type: str | None = None

    @staticmethod
    def from_token_response(
        payload: dict[str, Any], profile: dict[str, Any] | None = None
    ) -> "Credential":
        """Summary: Build a Credential from a provider token payload.

        Importance: Normalizes expiry and optional fields across providers.
        Alternatives: Use provider-specific token response classes.
        """

        return Credential(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            profile=dict(profile or {}),
            expires_at=_expiry_from(payload.get("expires_in")),
            token_type=payload.get("token_type"),
        )

    def is_stale(self, margin_seconds: int, now: datetime | None = None) -> bool:
        """Summary: Check whether the token is expired or about to expire.

        Importance: Lets the gate refresh before a downstream call gets a 401.
        Alternatives: Refresh only after the provider rejects a call.
        """

        if self.expires_at is None:
            return False
        current = now or utcnow()
        return self.expires_at <= current + timedelta(seconds=margin_seconds)


@dataclass(frozen=True)
class Identity:
    """Summary: The provider credentials linked to one browser session.

    Importance: One entry per provider; updates go through the linker and produce a new Identity.
    Alternatives: Keep loose per-provider token keys in the session.
    """

    credentials: Mapping[str, Credential] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "credentials", MappingProxyType(dict(self.credentials)))

    def get(self, provider: str) -> Credential | None:
        return self.credentials.get(provider)

    @property
    def providers(self) -> frozenset[str]:
        return frozenset(self.credentials)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Identity):
            return NotImplemented
        return dict(self.credentials) == dict(other.credentials)

    def __hash__(self) -> int:
        return hash(self.providers)


def _expiry_from(expires_in: Any) -> datetime | None:
    """Summary: Convert a token response ``expires_in`` into an absolute UTC expiry.

    Importance: Providers send seconds as ints, floats or numeric strings.
    Alternatives: Trust the payload type and let bad values fail later.
    """

    if expires_in is None or isinstance(expires_in, bool):
        return None
    try:
        seconds = float(expires_in)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(seconds):
        return None
    try:
        return utcnow() + timedelta(seconds=seconds)
    except OverflowError:
        return None
