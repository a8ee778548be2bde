"""Summary: Application context wiring storage, adapters, and API clients.

Importance: Centralizes dependency creation for the HTTP layer and CLI.
Alternatives: Instantiate collaborators manually in each route handler.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, MutableMapping

from emailbill.clio import ClioClient
from emailbill.config import AppConfig
from emailbill.gmail import GmailClient
from emailbill.models import Credential
from emailbill.oauth import ProviderAdapter, build_adapter
from emailbill.storage.sqlite_store import SqliteStore
from emailbill.summarizer import HuggingFaceSummarizer
from emailbill.token_store import StateStore, TokenStore


@dataclass(frozen=True)
class AppContext:
    """Summary: Shared context for building request-scoped collaborators.

    Importance: Only configuration and storage are shared; adapters and clients are built per call.
    Alternatives: Keep module-level OAuth and API client singletons.
    """

    config: AppConfig
    store: SqliteStore

    def token_store(self, session: MutableMapping[str, Any]) -> TokenStore:
        return TokenStore(session, self.store, self.config.session_max_age)

    def state_store(self, session: MutableMapping[str, Any]) -> StateStore:
        return StateStore(session, self.store)

    def adapter_for(self, provider: str) -> ProviderAdapter:
        return build_adapter(self.config, provider)

    def gmail(self, credential: Credential) -> GmailClient:
        return GmailClient(
            credential.access_token,
            self.config.gmail_api_base_url,
            self.config.http_timeout_seconds,
        )

    def clio(self, credential: Credential) -> ClioClient:
        return ClioClient(
            credential.access_token,
            self.config.clio_base_url,
            self.config.http_timeout_seconds,
        )

    def summarizer(self) -> HuggingFaceSummarizer:
        return HuggingFaceSummarizer(
            self.config.huggingface_api_key,
            self.config.huggingface_model_url,
            self.config.http_timeout_seconds,
        )


def build_context(config: AppConfig) -> AppContext:
    """Summary: Validate configuration and prepare storage.

    Importance: A partially configured process must not start.
    Alternatives: Validate lazily on first use of each setting.
    """

    config.validate()
    store = SqliteStore(config.db_path)
    store.initialize()
    store.purge_expired(config.session_max_age)
    return AppContext(config=config, store=store)
