"""Summary: HuggingFace summarization client.

Importance: Turns an email body into a short time-entry description.
Alternatives: Use an OpenAI or local model provider.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any

from emailbill.errors import DownstreamError


DEFAULT_DURATION_HOURS = 0.5
NO_SUMMARY = "No summary generated"


@dataclass(frozen=True)
class Summary:
    text: str
    duration: float


class HuggingFaceSummarizer:
    """Summary: Calls a HuggingFace inference endpoint for summarization.

    Importance: Default model is bart-large-cnn; the URL is configurable.
    Alternatives: Run the model locally with transformers.
    """

    def __init__(self, api_key: str | None, model_url: str, timeout: float) -> None:
        self._api_key = api_key
        self._model_url = model_url
        self._timeout = timeout

    def summarize(self, text: str) -> Summary:
        """Summary: Summarize text and attach the default billable duration.

        Importance: Duration is a fixed half hour the user can edit before billing.
        Alternatives: Estimate duration from text length.
        """

        if not self._api_key:
            raise DownstreamError("huggingface", "HUGGINGFACE_API_KEY is not configured")
        payload = _inference_post(self._model_url, self._api_key, {"inputs": text}, self._timeout)
        return Summary(text=_extract_summary(payload), duration=DEFAULT_DURATION_HOURS)


def _extract_summary(payload: Any) -> str:
    if isinstance(payload, list) and payload and isinstance(payload[0], dict):
        first = payload[0]
        return first.get("summary_text") or first.get("generated_text") or NO_SUMMARY
    return NO_SUMMARY


def _inference_post(url: str, api_key: str, body: dict[str, Any], timeout: float) -> Any:
    request = urllib.request.Request(
        url,
        data=json.dumps(body).encode("utf-8"),
        headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        error_body = exc.read().decode("utf-8", errors="replace")
        raise DownstreamError("huggingface", f"{exc.code} {error_body or exc.reason}") from exc
    except (urllib.error.URLError, OSError) as exc:
        raise DownstreamError("huggingface", str(exc)) from exc
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise DownstreamError("huggingface", "invalid JSON response") from exc
