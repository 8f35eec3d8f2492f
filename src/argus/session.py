"""Session refresh and the authorization model derived from it."""

from __future__ import annotations

import logging
from typing import Any

import msgspec

from . import capabilities as caps
from .backend import BackendClient
from .browser import Browser, Navigation, full, login_entry_url, soft
from .capabilities import PUBLIC_SITE, AuthSnapshot, CapabilitySet
from .config import OrchestratorConfig
from .exceptions import ArgusError, BackendError
from .models import (
    AssuranceLevel,
    EntityMembership,
    EntityRole,
    LogoutFlow,
    PendingInvitations,
    Session,
    UserProfile,
)
from .observability import Observability
from .provider import IdentityProviderClient
from .serialization import convert

logger = logging.getLogger(__name__)


class SessionService:
    """Own the current session and profile and answer authorization questions.

    Readers never touch the network; they only look at the snapshot produced
    by the last :meth:`refresh`.
    """

    def __init__(
        self,
        provider: IdentityProviderClient,
        backend: BackendClient,
        browser: Browser,
        *,
        config: OrchestratorConfig | None = None,
        capabilities: CapabilitySet | None = None,
        observability: Observability | None = None,
    ) -> None:
        self.provider = provider
        self.backend = backend
        self.browser = browser
        self.config = config or OrchestratorConfig()
        self.capabilities = capabilities or PUBLIC_SITE
        self._observability = observability or Observability(self.config.observability)
        self._snapshot = AuthSnapshot()
        self._loading = False
        self._error: BaseException | None = None

    @property
    def snapshot(self) -> AuthSnapshot:
        return self._snapshot

    @property
    def session(self) -> Session | None:
        return self._snapshot.session

    @property
    def profile(self) -> UserProfile | None:
        return self._snapshot.profile

    @property
    def is_authenticated(self) -> bool:
        return self._snapshot.is_authenticated

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def assurance_level(self) -> str | None:
        session = self._snapshot.session
        return session.assurance_level if session is not None else None

    async def refresh(self) -> Session | None:
        """Fetch the provider session and rebuild the profile from scratch."""

        self._loading = True
        self._error = None
        context = self._observability.on_session_refresh_start()
        try:
            try:
                payload = await self.provider.to_session()
                session = convert(payload, Session) if payload is not None else None
            except (ArgusError, msgspec.ValidationError) as exc:
                logger.warning("Session refresh failed; clearing local session: %s", exc)
                self._snapshot = AuthSnapshot()
                self._error = exc
                self._observability.on_session_refresh_error(context, exc)
                return None
            profile = await self._build_profile(session) if session is not None else None
            self._snapshot = AuthSnapshot.build(session, profile)
            self._observability.on_session_refresh_success(context, authenticated=session is not None)
            return session
        finally:
            self._loading = False

    def invalidate(self) -> None:
        """Drop the session and profile together."""

        self._snapshot = AuthSnapshot()

    async def _build_profile(self, session: Session) -> UserProfile | None:
        identity = session.identity
        if identity is None:
            return None
        traits: dict[str, Any] = dict(identity.traits or {})
        metadata: dict[str, Any] = dict(identity.metadata_public or {})
        entities: tuple[EntityMembership, ...] = ()
        pending = PendingInvitations()
        try:
            current = await self.backend.current_user()
        except BackendError as exc:
            logger.warning("Failed to fetch user profile for identity %s: %s", identity.id, exc)
        else:
            entities = tuple(current.entities)
            if current.pending_invitations is not None:
                pending = current.pending_invitations
        email = traits.get("email")
        return UserProfile(
            id=identity.id,
            email=email if isinstance(email, str) else "",
            name=_display_name(traits.get("name")),
            is_global_admin=metadata.get("isAdmin") is True,
            entities=entities,
            pending_invitations=pending,
        )

    def is_global_admin(self) -> bool:
        return caps.is_global_admin(self._snapshot)

    def has_admin_access(self) -> bool:
        return caps.has_admin_access(self._snapshot)

    def get_entity_role(self, entity_id: str) -> EntityRole | None:
        return self._snapshot.role_for(entity_id)

    def get_user_entities(self) -> tuple[EntityMembership, ...]:
        profile = self._snapshot.profile
        return profile.entities if profile is not None else ()

    def has_mfa(self) -> bool:
        return caps.has_mfa(self._snapshot)

    def can(self, capability: str, *args: Any) -> bool:
        return self.capabilities.check(capability, self._snapshot, *args)

    def login_navigation(self) -> Navigation:
        """Where to send a user whose session is missing or no longer valid."""

        redirect = self.config.routes.public_redirect_url
        if redirect:
            return full(redirect)
        return soft(self.config.routes.login)

    def require_aal2(self, return_to: str) -> Navigation:
        """Actively request step-up by reloading the login entry point with ``aal=aal2``."""

        url = login_entry_url(
            self.config.absolute(self.config.routes.login),
            aal=AssuranceLevel.AAL2.value,
            return_to=return_to,
        )
        navigation = full(url)
        self.browser.navigate(navigation)
        return navigation

    async def logout(self) -> Navigation | None:
        """Leave through the provider's logout URL; local state is left to the redirect target."""

        try:
            payload = await self.provider.create_logout_flow(
                return_to=self.config.absolute(self.config.routes.after_logout)
            )
            logout = convert(payload, LogoutFlow)
        except (ArgusError, msgspec.ValidationError) as exc:
            logger.error("Logout failed: %s", exc)
            self._error = exc
            return None
        navigation = full(logout.logout_url)
        self.browser.navigate(navigation)
        return navigation


def _display_name(raw: Any) -> str | None:
    if not isinstance(raw, dict):
        return None
    first = raw.get("first") or None
    last = raw.get("last") or None
    if first and last:
        return f"{first} {last}"
    return first


__all__ = ["SessionService"]
