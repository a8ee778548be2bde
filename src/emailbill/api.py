"""Summary: FastAPI application for EmailBill.

Importance: Exposes OAuth routes for both providers and the gated Gmail/Clio/HuggingFace proxies.
Alternatives: Use a different web framework or a serverless function per route.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field
from starlette.middleware.sessions import SessionMiddleware

from emailbill.app import build_context
from emailbill.config import AppConfig
from emailbill.errors import AccessDenied, AuthError, AuthErrorReason, DownstreamError
from emailbill.gate import LinkedSession, load_session_identity, require_providers
from emailbill.linker import merge
from emailbill.models import ALL_PROVIDERS, CLIO, GOOGLE
from emailbill.oauth import ProviderAdapter


logger = logging.getLogger(__name__)

SESSION_COOKIE = "emailbill_session"


class SummarizeRequest(BaseModel):
    """Summary: Request payload for email summarization.

    Importance: Keeps summarization inputs explicit for API clients.
    Alternatives: Pass a Gmail message id and fetch the body server-side.
    """

    text: str = ""


class TimeEntryRequest(BaseModel):
    """Summary: Request payload for creating a Clio time entry.

    Importance: Duration is in hours; the date may be a full ISO timestamp.
    Alternatives: Accept Clio's native activity payload.
    """

    matter_id: int
    duration: float = Field(gt=0, le=24)
    description: str
    date: str


def create_app(config: AppConfig) -> FastAPI:
    """Summary: Create the FastAPI application.

    Importance: Refuses to build when required configuration is missing.
    Alternatives: Instantiate the application at import time.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=config.log_level.upper(), format="%(levelname)s %(name)s: %(message)s"
        )
    context = build_context(config)
    app = FastAPI(title="EmailBill API", version="0.1.0")
    app.state.context = context
    app.add_middleware(
        SessionMiddleware,
        secret_key=config.session_secret,
        session_cookie=SESSION_COOKIE,
        max_age=config.session_max_age,
        same_site="lax",
        https_only=config.cookie_secure,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.frontend_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    dashboard_url = f"{config.frontend_origin}/dashboard"

    @app.exception_handler(AccessDenied)
    def access_denied(_request: Request, exc: AccessDenied) -> JSONResponse:
        return JSONResponse(exc.to_body(), status_code=401)

    @app.exception_handler(DownstreamError)
    def downstream_failed(_request: Request, exc: DownstreamError) -> JSONResponse:
        logger.error("Downstream %s call failed: %s", exc.service, exc.detail)
        return JSONResponse({"error": "Upstream request failed"}, status_code=500)

    @app.exception_handler(Exception)
    def unhandled(_request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error while serving request", exc_info=exc)
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    @app.get("/health")
    def health() -> dict[str, str]:
        """Summary: Health check endpoint.

        Importance: Supports uptime checks in local and cloud deployments.
        Alternatives: Use a metrics endpoint only.
        """

        return {"status": "ok"}

    @app.get("/auth/logout")
    def logout(request: Request) -> RedirectResponse:
        """Summary: Destroy the session and return to the login page.

        Importance: Removes the stored identity along with the cookie contents.
        Alternatives: Revoke provider tokens as well.
        """

        context.token_store(request.session).clear()
        logger.info("Session logged out.")
        return RedirectResponse(f"{config.frontend_origin}/", status_code=302)

    @app.get("/auth/{provider}")
    def begin_auth(provider: str, request: Request) -> RedirectResponse:
        """Summary: Redirect to the provider consent screen.

        Importance: Records the single-use state nonce server-side for this session.
        Alternatives: Return the URL as JSON for the frontend to follow.
        """

        adapter = _adapter_or_404(provider)
        url = adapter.begin_auth(context.state_store(request.session))
        return RedirectResponse(url, status_code=302)

    @app.get("/auth/{provider}/callback")
    def auth_callback(
        provider: str,
        request: Request,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
    ) -> RedirectResponse:
        """Summary: Complete the provider flow and link it into the session identity.

        Importance: Failures redirect with a generic error and never expose state values.
        Alternatives: Render an error page from the API.
        """

        adapter = _adapter_or_404(provider)
        try:
            credential = adapter.complete_auth(
                context.state_store(request.session), code, state, error
            )
        except AuthError as exc:
            if exc.reason is AuthErrorReason.INVALID_STATE:
                logger.warning("Rejected %s OAuth callback with invalid state.", provider)
            else:
                logger.warning(
                    "%s OAuth callback failed (%s): %s", provider, exc.reason.value, exc.payload
                )
            return RedirectResponse(f"{dashboard_url}?error=auth_failed", status_code=302)
        tokens = context.token_store(request.session)
        identity = merge(load_session_identity(tokens), provider, credential)
        tokens.save(identity)
        logger.info("Linked %s to session.", provider)
        return RedirectResponse(dashboard_url, status_code=302)

    @app.get("/api/user")
    def current_user(linked: LinkedSession = Depends(require_providers())) -> dict[str, Any]:
        """Summary: Report which providers are linked.

        Importance: Drives the dashboard's connect buttons.
        Alternatives: Expose a boolean per provider only.
        """

        result: dict[str, Any] = {}
        for provider in ALL_PROVIDERS:
            credential = linked.identity.get(provider)
            result[provider] = dict(credential.profile) if credential else None
        return result

    @app.get("/api/emails")
    def list_emails(
        limit: int = Query(default=10, ge=1, le=50),
        linked: LinkedSession = Depends(require_providers(GOOGLE)),
    ) -> list[dict[str, str]]:
        """Summary: List recent sent emails.

        Importance: Source material for time entries.
        Alternatives: Let the frontend call Gmail directly.
        """

        client = context.gmail(linked.credential(GOOGLE))
        return [email.to_dict() for email in client.list_sent(limit)]

    @app.post("/api/summarize")
    def summarize(
        payload: SummarizeRequest,
        linked: LinkedSession = Depends(require_providers(GOOGLE)),
    ) -> dict[str, Any]:
        """Summary: Summarize email text into a time-entry description.

        Importance: Requires a Google link so the inference proxy is not anonymous.
        Alternatives: Leave the endpoint open.
        """

        if not payload.text.strip():
            raise HTTPException(status_code=400, detail="Text is required")
        summary = context.summarizer().summarize(payload.text)
        return {"summary": summary.text, "duration": summary.duration}

    @app.get("/api/matters")
    def list_matters(
        linked: LinkedSession = Depends(require_providers(CLIO)),
    ) -> list[dict[str, Any]]:
        """Summary: List Clio matters for the time-entry picker.

        Importance: Only Clio data is involved, so only Clio is required.
        Alternatives: Require both providers for every data call.
        """

        return [matter.to_dict() for matter in context.clio(linked.credential(CLIO)).list_matters()]

    @app.post("/api/time-entry")
    def create_time_entry(
        payload: TimeEntryRequest,
        linked: LinkedSession = Depends(require_providers(GOOGLE, CLIO)),
    ) -> dict[str, Any]:
        """Summary: Bill a sent email as a Clio time entry.

        Importance: The email-to-billing step needs both providers linked.
        Alternatives: Require Clio only.
        """

        if not payload.description.strip():
            raise HTTPException(status_code=400, detail="Description is required")
        entry_date = _parse_entry_date(payload.date)
        client = context.clio(linked.credential(CLIO))
        return client.create_time_entry(
            payload.matter_id, payload.duration, payload.description, entry_date
        )

    def _adapter_or_404(provider: str) -> ProviderAdapter:
        if provider not in ALL_PROVIDERS:
            raise HTTPException(status_code=404, detail="Unknown provider")
        return context.adapter_for(provider)

    return app


def _parse_entry_date(raw: str) -> date:
    try:
        return date.fromisoformat(raw.split("T", 1)[0].strip())
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date") from None


def create_app_from_env() -> FastAPI:
    """Application factory for ``uvicorn --factory``."""

    return create_app(AppConfig.from_env())
