"""Summary: Clio REST client for matters and time entries.

Importance: Final destination of the email-to-billing workflow.
Alternatives: Use a Clio SDK or export CSVs for bulk import.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from datetime import date
from typing import Any

from emailbill.errors import DownstreamError


MATTER_FIELDS = "id,display_number,description,client{name,primary_email_address}"


@dataclass(frozen=True)
class Matter:
    """Summary: Clio matter summary for the time-entry picker.

    Importance: Lets the dashboard match emails to matters by client email.
    Alternatives: Return the raw Clio matter resource.
    """

    id: int
    display_name: str
    client_email: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "display_name": self.display_name, "client_email": self.client_email}


class ClioClient:
    """Summary: Calls the Clio v4 API with one request's access token.

    Importance: Keeps Clio payload shapes out of route handlers.
    Alternatives: Call Clio directly from each route.
    """

    def __init__(self, access_token: str, base_url: str, timeout: float) -> None:
        self._access_token = access_token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def list_matters(self) -> list[Matter]:
        query = urllib.parse.urlencode({"fields": MATTER_FIELDS})
        payload = self._request("GET", f"/api/v4/matters.json?{query}")
        matters: list[Matter] = []
        for item in payload.get("data", []) or []:
            client = item.get("client") or {}
            matters.append(
                Matter(
                    id=item["id"],
                    display_name=item.get("description") or item.get("display_number") or "",
                    client_email=client.get("primary_email_address") or "",
                )
            )
        return matters

    def create_time_entry(
        self, matter_id: int, duration_hours: float, description: str, entry_date: date
    ) -> dict[str, Any]:
        """Summary: Create a TimeEntry activity on a matter.

        Importance: Clio expects the quantity in seconds and the date as YYYY-MM-DD.
        Alternatives: Create a draft bill line instead.
        """

        body = {
            "data": {
                "type": "TimeEntry",
                "matter": {"id": matter_id},
                "quantity": int(round(duration_hours * 3600)),
                "description": description,
                "date": entry_date.isoformat(),
            }
        }
        return self._request("POST", "/api/v4/activities.json", body)

    def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self._access_token}", "Accept": "application/json"}
        data = None
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        return _clio_api_call(
            urllib.request.Request(self._base_url + path, data=data, headers=headers, method=method),
            self._timeout,
        )


def _clio_api_call(request: urllib.request.Request, timeout: float) -> dict[str, Any]:
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        error_body = exc.read().decode("utf-8", errors="replace")
        raise DownstreamError("clio", f"{exc.code} {error_body or exc.reason}") from exc
    except (urllib.error.URLError, OSError) as exc:
        raise DownstreamError("clio", str(exc)) from exc
    try:
        return json.loads(raw) if raw else {}
    except ValueError as exc:
        raise DownstreamError("clio", "invalid JSON response") from exc
