"""Summary: Error taxonomy for EmailBill.

Importance: Separates auth failures, which drive the session state machine, from everything else.
Alternatives: Raise HTTPException directly from every layer.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class AuthErrorReason(str, Enum):
    """Summary: Why a provider OAuth operation failed.

    Importance: Callers branch on the reason, never on message text.
    Alternatives: Use one exception class per reason.
    """

    INVALID_STATE = "invalid_state"
    PROVIDER_REJECTED = "provider_rejected"
    REFRESH_FAILED = "refresh_failed"


class AuthError(Exception):
    """Summary: Raised by provider adapters on code exchange or refresh failure.

    Importance: Carries the provider payload for server-side logs only.
    Alternatives: Return sentinel values from adapter methods.
    """

    def __init__(self, reason: AuthErrorReason, provider: str, payload: Any = None) -> None:
        super().__init__(f"{provider} OAuth failed: {reason.value}")
        self.reason = reason
        self.provider = provider
        self.payload = payload


class AccessDenied(Exception):
    """Summary: A request does not carry the linked identity its endpoint needs.

    Importance: Rendered as a 401 with a machine-readable reason string.
    Alternatives: Raise HTTPException with a free-form detail.
    """

    def __init__(self, reason: str, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.extra = extra

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "reason": self.reason}
        body.update(self.extra)
        return body


class IdentitySchemaError(Exception):
    """Raised when a session holds an identity payload that cannot be decoded."""


class DownstreamError(Exception):
    """Summary: A Gmail, Clio, or HuggingFace call failed.

    Importance: The detail is logged while clients only see a generic 500.
    Alternatives: Let urllib errors propagate to the framework.
    """

    def __init__(self, service: str, detail: str) -> None:
        super().__init__(f"{service} request failed: {detail}")
        self.service = service
        self.detail = detail


class ConfigError(Exception):
    """Raised at startup when required configuration values are missing."""

    def __init__(self, missing: list[str]) -> None:
        super().__init__("Missing required configuration: " + ", ".join(missing))
        self.missing = missing
