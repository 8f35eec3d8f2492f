"""Orchestrator configuration objects."""

from __future__ import annotations

import os
from typing import Mapping

from msgspec import Struct

from .observability import ObservabilityConfig


class ProviderConfig(Struct, frozen=True):
    """Where the self-service identity provider's public API lives."""

    base_url: str = "http://localhost:4433"
    timeout: float = 10.0


class BackendConfig(Struct, frozen=True):
    """Application backend endpoints consumed by the orchestrator."""

    base_url: str = "http://localhost:8080"
    me_path: str = "/v1/me"
    invitation_validate_path: str = "/v1/invitations/validate"
    timeout: float = 10.0


class RoutesConfig(Struct, frozen=True):
    """In-application paths used for redirects and address bar updates."""

    login: str = "/login"
    registration: str = "/registration"
    recovery: str = "/recovery"
    settings: str = "/settings"
    home: str = "/"
    after_login: str = "/dashboard"
    after_logout: str = "/"
    after_password_change: str = "/"
    public_redirect_url: str | None = None


class OrchestratorConfig(Struct, frozen=True):
    """Typed configuration for an :class:`~argus.orchestrator.AuthOrchestrator`."""

    site_origin: str = "http://localhost:3000"
    provider: ProviderConfig = ProviderConfig()
    backend: BackendConfig = BackendConfig()
    routes: RoutesConfig = RoutesConfig()
    observability: ObservabilityConfig = ObservabilityConfig()
    max_flow_recreations: int = 1

    def absolute(self, path: str) -> str:
        """Return ``path`` resolved against the site origin."""

        if "://" in path:
            return path
        return f"{self.site_origin.rstrip('/')}/{path.lstrip('/')}"


def config_from_env(environ: Mapping[str, str] | None = None) -> OrchestratorConfig:
    """Build an :class:`OrchestratorConfig` from ``ARGUS_*`` environment variables."""

    env = os.environ if environ is None else environ
    timeout = float(env.get("ARGUS_HTTP_TIMEOUT", "10"))
    return OrchestratorConfig(
        site_origin=env.get("ARGUS_SITE_ORIGIN", "http://localhost:3000"),
        provider=ProviderConfig(
            base_url=env.get("ARGUS_PROVIDER_URL", "http://localhost:4433"),
            timeout=timeout,
        ),
        backend=BackendConfig(
            base_url=env.get("ARGUS_BACKEND_URL", "http://localhost:8080"),
            timeout=timeout,
        ),
        routes=RoutesConfig(public_redirect_url=env.get("ARGUS_PUBLIC_REDIRECT_URL") or None),
    )


__all__ = [
    "BackendConfig",
    "OrchestratorConfig",
    "ProviderConfig",
    "RoutesConfig",
    "config_from_env",
]
