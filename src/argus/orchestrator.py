"""Composition root wiring clients, the flow store and the session service together."""

from __future__ import annotations

from typing import Any

import httpx

from .backend import BackendClient
from .browser import Browser
from .capabilities import PUBLIC_SITE, CapabilitySet
from .challenges import ChallengeSequencer
from .classification import ErrorClassifier
from .config import OrchestratorConfig
from .flows import FlowStore
from .observability import Observability
from .provider import IdentityProviderClient
from .selfservice import RecoveryFlow, RegistrationFlow, SettingsFlow
from .session import SessionService


class AuthOrchestrator:
    """One per page: owns a single flow store and the shared session service.

    Controllers built by the factory methods share the store, so at most one
    flow is current at any time.
    """

    def __init__(
        self,
        browser: Browser,
        *,
        config: OrchestratorConfig | None = None,
        capabilities: CapabilitySet | None = None,
        provider: IdentityProviderClient | None = None,
        backend: BackendClient | None = None,
        provider_transport: httpx.AsyncBaseTransport | None = None,
        backend_transport: httpx.AsyncBaseTransport | None = None,
        classifier: ErrorClassifier | None = None,
    ) -> None:
        self.config = config or OrchestratorConfig()
        self.browser = browser
        self.observability = Observability(self.config.observability)
        self.provider = provider or IdentityProviderClient(self.config.provider, transport=provider_transport)
        self.backend = backend or BackendClient(self.config.backend, transport=backend_transport)
        self.classifier = classifier or ErrorClassifier()
        self.store = FlowStore(self.provider)
        self.session = SessionService(
            self.provider,
            self.backend,
            browser,
            config=self.config,
            capabilities=capabilities or PUBLIC_SITE,
            observability=self.observability,
        )

    # ------------------------------------------------------------------ lifecycle
    async def __aenter__(self) -> "AuthOrchestrator":
        await self.session.refresh()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.provider.aclose()
        await self.backend.aclose()

    # ------------------------------------------------------------------ controllers
    def _controller_kwargs(self) -> dict[str, Any]:
        return {
            "classifier": self.classifier,
            "config": self.config,
            "observability": self.observability,
        }

    def login(self) -> ChallengeSequencer:
        return ChallengeSequencer(self.store, self.session, self.browser, **self._controller_kwargs())

    def registration(self) -> RegistrationFlow:
        return RegistrationFlow(self.store, self.session, self.browser, **self._controller_kwargs())

    def recovery(self) -> RecoveryFlow:
        return RecoveryFlow(self.store, self.session, self.browser, **self._controller_kwargs())

    def settings(self) -> SettingsFlow:
        return SettingsFlow(self.store, self.session, self.browser, **self._controller_kwargs())

    async def logout(self) -> None:
        await self.session.logout()


__all__ = ["AuthOrchestrator"]
