"""Authorization snapshots and the capability predicates evaluated over them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from .models import EntityMembership, EntityRole, EntityType, Session, UserProfile

MFA_METHODS = ("totp", "lookup_secret")


@dataclass(slots=True, frozen=True)
class AuthSnapshot:
    """Session and profile resolved together; replaced as a whole, never patched."""

    session: Session | None = None
    profile: UserProfile | None = None
    memberships: Mapping[str, EntityMembership] = field(default_factory=dict)

    @classmethod
    def build(cls, session: Session | None, profile: UserProfile | None) -> "AuthSnapshot":
        index: dict[str, EntityMembership] = {}
        if profile is not None:
            for membership in profile.entities:
                index.setdefault(membership.entity_id, membership)
        return cls(session=session, profile=profile, memberships=index)

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    def role_for(self, entity_id: str) -> EntityRole | None:
        membership = self.memberships.get(entity_id)
        return membership.role if membership is not None else None


def is_global_admin(snapshot: AuthSnapshot) -> bool:
    return snapshot.profile is not None and snapshot.profile.is_global_admin


def has_admin_access(snapshot: AuthSnapshot) -> bool:
    if snapshot.profile is None:
        return False
    return snapshot.profile.is_global_admin or len(snapshot.profile.entities) > 0


def has_entity_access(snapshot: AuthSnapshot, entity_id: str | None = None) -> bool:
    if is_global_admin(snapshot):
        return True
    if entity_id is None:
        return bool(snapshot.memberships)
    return snapshot.role_for(entity_id) is not None


def is_entity_admin(snapshot: AuthSnapshot, entity_id: str) -> bool:
    return is_global_admin(snapshot) or snapshot.role_for(entity_id) is EntityRole.ADMIN


def is_certifier_admin(snapshot: AuthSnapshot, entity_id: str) -> bool:
    membership = snapshot.memberships.get(entity_id)
    if membership is None:
        return False
    return membership.role is EntityRole.ADMIN and membership.entity_type == EntityType.CERTIFIER.value


def has_mfa(snapshot: AuthSnapshot) -> bool:
    return snapshot.session is not None and snapshot.session.used_method(*MFA_METHODS)


CapabilityPredicate = Callable[..., bool]


class CapabilitySet:
    """Named predicates an application exposes on top of the shared session service."""

    def __init__(self, predicates: Mapping[str, CapabilityPredicate]) -> None:
        self._predicates = dict(predicates)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(sorted(self._predicates))

    def __contains__(self, name: object) -> bool:
        return name in self._predicates

    def check(self, name: str, snapshot: AuthSnapshot, *args: Any) -> bool:
        try:
            predicate = self._predicates[name]
        except KeyError as exc:
            raise LookupError(f"Unknown capability '{name}'") from exc
        return bool(predicate(snapshot, *args))

    def extend(self, **predicates: CapabilityPredicate) -> "CapabilitySet":
        return CapabilitySet({**self._predicates, **predicates})


_COMMON: dict[str, CapabilityPredicate] = {
    "global_admin": is_global_admin,
    "entity_access": has_entity_access,
    "entity_admin": is_entity_admin,
    "mfa": has_mfa,
}

PUBLIC_SITE = CapabilitySet({**_COMMON, "admin_access": has_admin_access})
ADMIN_CONSOLE = CapabilitySet({**_COMMON, "certifier_admin": is_certifier_admin})


__all__ = [
    "ADMIN_CONSOLE",
    "AuthSnapshot",
    "CapabilityPredicate",
    "CapabilitySet",
    "MFA_METHODS",
    "PUBLIC_SITE",
    "has_admin_access",
    "has_entity_access",
    "has_mfa",
    "is_certifier_admin",
    "is_entity_admin",
    "is_global_admin",
]
