"""Test support utilities for Argus orchestrator tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from argus import (
    AuthOrchestrator,
    BackendConfig,
    CapabilitySet,
    Navigation,
    ObservabilityConfig,
    OrchestratorConfig,
    ProviderConfig,
    SessionService,
)
from argus.testing import FakeBackend, FakeIdentityProvider, RecordingBrowser

BACKEND_URL = "http://backend.test"
SITE_ORIGIN = "http://app.test"


class SnapshotBrowser(RecordingBrowser):
    """Records, for every navigation, what the session service looked like at that moment."""

    def __init__(self) -> None:
        super().__init__()
        self.session: SessionService | None = None
        self.events: list[str] | None = None
        self.snapshots: list[tuple[Navigation, Any, Any]] = []

    def navigate(self, navigation: Navigation) -> None:
        super().navigate(navigation)
        if self.events is not None:
            self.events.append(f"navigate:{navigation.url}")
        if self.session is not None:
            self.snapshots.append((navigation, self.session.session, self.session.profile))


@dataclass
class Harness:
    provider: FakeIdentityProvider
    backend: FakeBackend
    browser: SnapshotBrowser
    orchestrator: AuthOrchestrator
    events: list[str] = field(default_factory=list)

    @property
    def session(self) -> SessionService:
        return self.orchestrator.session

    def track_refreshes(self) -> None:
        """Log each session refresh into :attr:`events`, interleaved with navigations."""

        session = self.orchestrator.session
        original = session.refresh
        events = self.events

        async def refresh() -> Any:
            events.append("refresh")
            return await original()

        session.refresh = refresh  # type: ignore[method-assign]
        self.browser.events = events

    def refresh_count(self) -> int:
        return self.events.count("refresh")


def make_config(**overrides: Any) -> OrchestratorConfig:
    values: dict[str, Any] = {
        "site_origin": SITE_ORIGIN,
        "provider": ProviderConfig(base_url="http://kratos.test"),
        "backend": BackendConfig(base_url=BACKEND_URL),
        "observability": ObservabilityConfig(enabled=False),
    }
    values.update(overrides)
    return OrchestratorConfig(**values)


def make_harness(
    *,
    config: OrchestratorConfig | None = None,
    capabilities: CapabilitySet | None = None,
) -> Harness:
    provider = FakeIdentityProvider()
    backend = FakeBackend()
    browser = SnapshotBrowser()
    orchestrator = AuthOrchestrator(
        browser,
        config=config or make_config(),
        capabilities=capabilities,
        provider_transport=provider.transport(),
        backend_transport=backend.transport(),
    )
    browser.session = orchestrator.session
    return Harness(provider=provider, backend=backend, browser=browser, orchestrator=orchestrator)
