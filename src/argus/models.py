"""Typed documents exchanged with the identity provider and the application backend."""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterator

import msgspec

from .exceptions import MissingFieldError


class FlowKind(str, Enum):
    LOGIN = "login"
    REGISTRATION = "registration"
    RECOVERY = "recovery"
    SETTINGS = "settings"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.value


class FieldGroup(str, Enum):
    """Groups the provider uses to tag UI fields.

    The provider may send groups that are not listed here; those stay plain
    strings on :class:`UiField` and simply never match a member.
    """

    DEFAULT = "default"
    PASSWORD = "password"
    TOTP = "totp"
    LOOKUP_SECRET = "lookup_secret"
    OIDC = "oidc"
    CODE = "code"
    PROFILE = "profile"
    LINK = "link"
    WEBAUTHN = "webauthn"


class MessageSeverity(str, Enum):
    INFO = "info"
    ERROR = "error"
    SUCCESS = "success"


class AssuranceLevel(str, Enum):
    AAL0 = "aal0"
    AAL1 = "aal1"
    AAL2 = "aal2"
    AAL3 = "aal3"


class FlowState:
    """Provider states the orchestrator recognises; everything else is opaque."""

    CHOOSE_METHOD = "choose_method"
    SENT_EMAIL = "sent_email"
    PASSED_CHALLENGE = "passed_challenge"
    SHOW_FORM = "show_form"
    SUCCESS = "success"


CSRF_FIELD = "csrf_token"
TOTP_QR_FIELD = "totp_qr"
TOTP_SECRET_FIELD = "totp_secret_key"
TOTP_CODE_FIELD = "totp_code"
BACKUP_CODES_FIELD = "lookup_secret_codes"
SHOW_SETTINGS_ACTION = "show_settings_ui"


class UiMessage(msgspec.Struct, kw_only=True):
    text: str = ""
    type: str = MessageSeverity.INFO.value
    id: int | None = None

    @property
    def severity(self) -> MessageSeverity:
        try:
            return MessageSeverity(self.type)
        except ValueError:
            return MessageSeverity.INFO


class FieldText(msgspec.Struct, kw_only=True):
    text: str = ""
    id: int | None = None
    type: str | None = None
    context: dict[str, Any] | None = None


class FieldAttributes(msgspec.Struct, kw_only=True):
    node_type: str = "input"
    name: str | None = None
    id: str | None = None
    type: str | None = None
    value: Any = None
    src: str | None = None
    text: FieldText | None = None
    required: bool = False
    disabled: bool = False


class UiField(msgspec.Struct, kw_only=True):
    """A single input descriptor of a flow, addressed by ``group`` and ``name``."""

    attributes: FieldAttributes
    type: str = "input"
    group: str = FieldGroup.DEFAULT.value
    messages: list[UiMessage] = []

    @property
    def name(self) -> str | None:
        return self.attributes.name or self.attributes.id

    @property
    def value(self) -> Any:
        attributes = self.attributes
        if attributes.node_type == "img":
            return attributes.src
        if attributes.node_type == "text" and attributes.value is None and attributes.text is not None:
            return attributes.text.text
        return attributes.value

    def in_group(self, group: FieldGroup | str) -> bool:
        expected = group.value if isinstance(group, FieldGroup) else group
        return self.group == expected


class UiContainer(msgspec.Struct, kw_only=True):
    action: str = ""
    method: str = "POST"
    nodes: list[UiField] = []
    messages: list[UiMessage] = []


class ContinueWithFlow(msgspec.Struct, kw_only=True):
    id: str
    url: str | None = None


class ContinueWith(msgspec.Struct, kw_only=True):
    action: str
    flow: ContinueWithFlow | None = None


class Flow(msgspec.Struct, kw_only=True):
    """Server-issued multi-step form document for one identity operation."""

    id: str
    ui: UiContainer = msgspec.field(default_factory=UiContainer)
    kind: FlowKind | None = None
    state: str | None = None
    type: str = "browser"
    return_to: str | None = None
    expires_at: str | None = None
    requested_aal: str | None = None
    continue_with: list[ContinueWith] = []

    @property
    def fields(self) -> tuple[UiField, ...]:
        return tuple(self.ui.nodes)

    @property
    def messages(self) -> tuple[UiMessage, ...]:
        """Flow level messages followed by messages attached to individual fields."""

        collected = list(self.ui.messages)
        for node in self.ui.nodes:
            collected.extend(node.messages)
        return tuple(collected)

    def fields_in(self, group: FieldGroup | str) -> Iterator[UiField]:
        return (node for node in self.ui.nodes if node.in_group(group))

    def has_group(self, group: FieldGroup | str) -> bool:
        return any(True for _ in self.fields_in(group))

    def find_field(self, group: FieldGroup | str, name: str) -> UiField | None:
        for node in self.fields_in(group):
            if node.name == name:
                return node
        return None

    def field(self, group: FieldGroup | str, name: str) -> UiField:
        node = self.find_field(group, name)
        if node is None:
            raise MissingFieldError(group.value if isinstance(group, FieldGroup) else group, name)
        return node

    @property
    def csrf_token(self) -> str:
        for node in self.ui.nodes:
            if node.name == CSRF_FIELD and node.attributes.node_type == "input":
                value = node.attributes.value
                if isinstance(value, str):
                    return value
        raise MissingFieldError(FieldGroup.DEFAULT.value, CSRF_FIELD)

    def continue_with_settings(self) -> str | None:
        for item in self.continue_with:
            if item.action == SHOW_SETTINGS_ACTION and item.flow is not None and item.flow.id:
                return item.flow.id
        return None


class AuthenticationMethod(msgspec.Struct, kw_only=True):
    method: str
    aal: str | None = None
    completed_at: str | None = None


class Identity(msgspec.Struct, kw_only=True):
    id: str
    traits: dict[str, Any] = {}
    metadata_public: dict[str, Any] | None = None
    schema_id: str | None = None
    state: str | None = None


class Session(msgspec.Struct, kw_only=True):
    id: str
    active: bool = True
    identity: Identity | None = None
    authentication_methods: list[AuthenticationMethod] = []
    authenticator_assurance_level: str | None = None
    expires_at: str | None = None
    authenticated_at: str | None = None

    @property
    def identity_id(self) -> str | None:
        return self.identity.id if self.identity is not None else None

    @property
    def traits(self) -> dict[str, Any]:
        return dict(self.identity.traits) if self.identity is not None else {}

    @property
    def assurance_level(self) -> str | None:
        return self.authenticator_assurance_level

    def used_method(self, *methods: str) -> bool:
        return any(entry.method in methods for entry in self.authentication_methods)


class TerminalResult(msgspec.Struct, kw_only=True):
    """Successful end of a flow: a session was issued or another flow should continue."""

    session: Session | None = None
    identity: Identity | None = None
    continue_with: list[ContinueWith] = []

    def continue_with_settings(self) -> str | None:
        for item in self.continue_with:
            if item.action == SHOW_SETTINGS_ACTION and item.flow is not None and item.flow.id:
                return item.flow.id
        return None


class LogoutFlow(msgspec.Struct, kw_only=True):
    logout_url: str
    logout_token: str = ""


class EntityType(str, Enum):
    CERTIFIER = "certifier"
    PARTNER = "partner"


class EntityRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


class EntityMembership(msgspec.Struct, frozen=True, kw_only=True, rename="camel"):
    entity_id: str
    role: EntityRole
    entity_name: str = ""
    entity_type: str | None = None


class InvitationVehicle(msgspec.Struct, frozen=True, kw_only=True, rename="camel"):
    vehicle_id: str
    make: str | None = None
    model: str | None = None
    year: int | None = None
    license_plate: str | None = None


class PendingInvitations(msgspec.Struct, frozen=True, kw_only=True):
    count: int = 0
    vehicles: tuple[InvitationVehicle, ...] = ()


class CurrentUser(msgspec.Struct, kw_only=True, rename="camel"):
    """Payload of the backend's current user endpoint."""

    id: str | None = None
    entities: list[EntityMembership] = []
    pending_invitations: PendingInvitations | None = None


class InvitationDetails(msgspec.Struct, frozen=True, kw_only=True):
    email: str
    vehicles: tuple[InvitationVehicle, ...] = ()


class UserProfile(msgspec.Struct, frozen=True, kw_only=True):
    """Profile derived from the session identity plus backend memberships.

    Instances are immutable; a refresh always builds a new one.
    """

    id: str
    email: str = ""
    name: str | None = None
    is_global_admin: bool = False
    entities: tuple[EntityMembership, ...] = ()
    pending_invitations: PendingInvitations = PendingInvitations()


__all__ = [
    "AssuranceLevel",
    "AuthenticationMethod",
    "BACKUP_CODES_FIELD",
    "CSRF_FIELD",
    "ContinueWith",
    "ContinueWithFlow",
    "CurrentUser",
    "EntityMembership",
    "EntityRole",
    "EntityType",
    "FieldAttributes",
    "FieldGroup",
    "FieldText",
    "Flow",
    "FlowKind",
    "FlowState",
    "Identity",
    "InvitationDetails",
    "InvitationVehicle",
    "LogoutFlow",
    "MessageSeverity",
    "PendingInvitations",
    "SHOW_SETTINGS_ACTION",
    "Session",
    "TOTP_CODE_FIELD",
    "TOTP_QR_FIELD",
    "TOTP_SECRET_FIELD",
    "TerminalResult",
    "UiContainer",
    "UiField",
    "UiMessage",
    "UserProfile",
]
