"""Summary: Gmail API client for listing the user's sent emails.

Importance: Supplies the emails the user turns into time entries.
Alternatives: Use google-api-python-client.
"""

from __future__ import annotations

import base64
import json
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import asdict, dataclass
from typing import Any

from emailbill.errors import DownstreamError


@dataclass(frozen=True)
class SentEmail:
    """Summary: A sent message reduced to what the dashboard shows.

    Importance: Keeps Gmail payload shapes out of route handlers.
    Alternatives: Return raw Gmail message resources.
    """

    id: str
    subject: str
    to: str
    date: str
    body: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class GmailClient:
    """Summary: Reads sent Gmail messages with an OAuth access token.

    Importance: Scoped to one request's credential; never cached across requests.
    Alternatives: Use IMAP with app passwords.
    """

    def __init__(self, access_token: str, base_url: str, timeout: float) -> None:
        self._access_token = access_token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def list_sent(self, limit: int = 10) -> list[SentEmail]:
        """Summary: Fetch the most recent messages sent by the user.

        Importance: Time entries are built from outgoing correspondence.
        Alternatives: Query the SENT label instead of ``from:me``.
        """

        query = urllib.parse.urlencode({"q": "from:me", "maxResults": limit})
        payload = _gmail_api_get(f"{self._base_url}/users/me/messages?{query}", self._access_token, self._timeout)
        emails: list[SentEmail] = []
        for item in payload.get("messages", []) or []:
            message_id = item.get("id")
            if not message_id:
                continue
            detail = _gmail_api_get(
                f"{self._base_url}/users/me/messages/{message_id}?format=full",
                self._access_token,
                self._timeout,
            )
            emails.append(parse_gmail_message(detail))
        return emails


def parse_gmail_message(message: dict[str, Any]) -> SentEmail:
    """Summary: Parse a Gmail message payload into a SentEmail.

    Importance: Applies the same header defaults the dashboard expects.
    Alternatives: Leave missing headers empty.
    """

    payload = message.get("payload") or {}
    headers = _parse_gmail_headers(payload.get("headers", []))
    return SentEmail(
        id=message.get("id", ""),
        subject=headers.get("subject") or "No Subject",
        to=headers.get("to") or "Unknown",
        date=headers.get("date") or "",
        body=_extract_plain_body(payload),
    )


def _parse_gmail_headers(headers: list[dict[str, Any]]) -> dict[str, str]:
    normalized: dict[str, str] = {}
    for header in headers:
        name = header.get("name")
        value = header.get("value")
        if name and value:
            normalized[name.lower()] = value
    return normalized


def _extract_plain_body(payload: dict[str, Any]) -> str:
    """Return the first text/plain part, falling back to the top-level body."""

    for part in _walk_gmail_parts(payload):
        data = (part.get("body") or {}).get("data")
        if part.get("mimeType") == "text/plain" and data:
            return _decode_base64url(data).strip()
    data = (payload.get("body") or {}).get("data")
    return _decode_base64url(data).strip() if data else ""


def _walk_gmail_parts(payload: dict[str, Any]) -> list[dict[str, Any]]:
    parts: list[dict[str, Any]] = [payload]
    for part in payload.get("parts", []) or []:
        parts.extend(_walk_gmail_parts(part))
    return parts


def _decode_base64url(data: str) -> str:
    # Gmail strips base64 padding.
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("utf-8")).decode("utf-8", errors="ignore")


def _gmail_api_get(url: str, access_token: str, timeout: float) -> dict[str, Any]:
    """Summary: Fetch JSON data from the Gmail API.

    Importance: Converts transport and HTTP failures into DownstreamError.
    Alternatives: Use a third-party HTTP client or SDK.
    """

    request = urllib.request.Request(
        url,
        headers={"Authorization": f"Bearer {access_token}"},
        method="GET",
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        error_body = exc.read().decode("utf-8", errors="replace")
        raise DownstreamError("gmail", f"{exc.code} {error_body or exc.reason}") from exc
    except (urllib.error.URLError, OSError) as exc:
        raise DownstreamError("gmail", str(exc)) from exc
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise DownstreamError("gmail", "invalid JSON response") from exc
