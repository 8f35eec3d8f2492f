"""Route guards evaluated against the session service's current snapshot."""

from __future__ import annotations

from enum import Enum

from msgspec import Struct

from .browser import Navigation, soft
from .capabilities import has_entity_access, is_entity_admin, is_global_admin
from .session import SessionService


class GuardVerdict(str, Enum):
    ALLOW = "allow"
    WAIT = "wait"
    REDIRECT = "redirect"


class RouteRequirement(Struct, frozen=True, kw_only=True):
    """What a protected route demands of the signed-in user."""

    global_admin: bool = False
    entity_access: bool = False
    entity_admin: bool = False


class GuardDecision(Struct, frozen=True):
    verdict: GuardVerdict
    navigation: Navigation | None = None

    @property
    def allowed(self) -> bool:
        return self.verdict is GuardVerdict.ALLOW


ALLOW = GuardDecision(GuardVerdict.ALLOW)
WAIT = GuardDecision(GuardVerdict.WAIT)


def console_access(session: SessionService) -> GuardDecision:
    """Gate the whole console: a session plus global admin rights or any membership."""

    if session.is_loading:
        return WAIT
    snapshot = session.snapshot
    if snapshot.is_authenticated and has_entity_access(snapshot):
        return ALLOW
    return GuardDecision(GuardVerdict.REDIRECT, session.login_navigation())


def evaluate_route(
    session: SessionService,
    requirement: RouteRequirement,
    entity_id: str | None = None,
) -> GuardDecision:
    """Check ``requirement`` for the route's ``entity_id``; denial sends the user home."""

    if session.is_loading:
        return WAIT
    snapshot = session.snapshot
    denied = GuardDecision(GuardVerdict.REDIRECT, soft(session.config.routes.home))
    if requirement.global_admin and not is_global_admin(snapshot):
        return denied
    if requirement.entity_access and not has_entity_access(snapshot, entity_id):
        return denied
    if requirement.entity_admin and entity_id and not is_entity_admin(snapshot, entity_id):
        return denied
    return ALLOW


__all__ = [
    "GuardDecision",
    "GuardVerdict",
    "RouteRequirement",
    "console_access",
    "evaluate_route",
]
