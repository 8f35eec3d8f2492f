"""In-memory identity provider, backend and browser for exercising the orchestrator."""

from __future__ import annotations

import re
import secrets
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping

import httpx

from .browser import Navigation, NavigationKind
from .models import (
    BACKUP_CODES_FIELD,
    CSRF_FIELD,
    SHOW_SETTINGS_ACTION,
    TOTP_CODE_FIELD,
    TOTP_QR_FIELD,
    TOTP_SECRET_FIELD,
    FlowKind,
    FlowState,
)
from .serialization import json_decode, json_encode

INVALID_CREDENTIALS = (
    "The provided credentials are invalid, check for spelling mistakes in your password "
    "or username, email address, or phone number."
)
INVALID_TOTP_CODE = "The provided authentication code is invalid, please try again."
INVALID_LOOKUP_CODE = "The backup recovery code is not valid."
INVALID_RECOVERY_CODE = "The recovery code is invalid or has already been used. Please try again."
CSRF_VIOLATION = (
    "The request was rejected to protect you from Cross-Site-Request-Forgery (CSRF) "
    "which could cause account takeover, leaking personal information, and other serious "
    "security issues."
)
DUPLICATE_IDENTIFIER = "An account with the same identifier (email, phone, username, ...) exists already."
RECOVERY_CODE_SENT = (
    "An email containing a recovery code has been sent to the email address you provided. "
    "If you have not received an email, check the spelling of the address and make sure "
    "to use the address you registered with."
)
SETTINGS_SAVED = "Your changes have been saved!"

_CREATE = re.compile(r"^/self-service/(\w+)/browser$")
_FETCH = re.compile(r"^/self-service/(\w+)/flows$")
_UPDATE = re.compile(r"^/self-service/(\w+)$")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _error(status: int, error_id: str, reason: str = "", **extra: Any) -> tuple[int, dict[str, Any]]:
    return status, {"error": {"id": error_id, "code": status, "reason": reason}, **extra}


def _message(message_id: int, text: str, kind: str = "error") -> dict[str, Any]:
    return {"id": message_id, "text": text, "type": kind}


def _input(group: str, name: str, *, type_: str = "text", value: Any = None, required: bool = False) -> dict[str, Any]:
    return {
        "type": "input",
        "group": group,
        "attributes": {
            "node_type": "input",
            "name": name,
            "type": type_,
            "value": value,
            "required": required,
            "disabled": False,
        },
        "messages": [],
        "meta": {},
    }


def _submit(group: str, value: Any = None, *, name: str = "method") -> dict[str, Any]:
    return _input(group, name, type_="submit", value=group if value is None else value)


@dataclass
class FakeIdentity:
    id: str
    email: str
    password: str
    name: dict[str, str] | None = None
    metadata_public: dict[str, Any] | None = None
    totp_code: str | None = None
    backup_codes: list[str] = field(default_factory=list)

    def document(self) -> dict[str, Any]:
        traits: dict[str, Any] = {"email": self.email}
        if self.name is not None:
            traits["name"] = dict(self.name)
        return {
            "id": self.id,
            "schema_id": "default",
            "state": "active",
            "traits": traits,
            "metadata_public": self.metadata_public,
        }


@dataclass
class _FlowRecord:
    id: str
    kind: FlowKind
    csrf_token: str
    stage: str
    state: str = FlowState.CHOOSE_METHOD
    requested_aal: str = "aal1"
    return_to: str | None = None
    identity_id: str | None = None
    expired: bool = False
    messages: list[dict[str, Any]] = field(default_factory=list)
    extra_nodes: list[dict[str, Any]] = field(default_factory=list)
    continue_with: list[dict[str, Any]] = field(default_factory=list)


class FakeIdentityProvider:
    """A self-service identity provider held in memory.

    Mount it on an :class:`httpx.AsyncClient` through :meth:`transport`. The
    CSRF token of a flow rotates on every submission, flows can be expired on
    demand and any operation can be made to fail with :meth:`fail_next`.
    """

    def __init__(self, base_url: str = "http://kratos.test") -> None:
        self.base_url = base_url.rstrip("/")
        self.identities: dict[str, FakeIdentity] = {}
        self.flows: dict[str, _FlowRecord] = {}
        self.session: dict[str, Any] | None = None
        self.calls: Counter[str] = Counter()
        self.requests: list[tuple[str, str, dict[str, Any] | None]] = []
        self.enrollment_secret = "JBSWY3DPEHPK3PXP"
        self.enrollment_totp_code = "123456"
        self.enrollment_backup_codes: list[str] = []
        self.recovery_code = "424242"
        self.recovery_continues_with_settings = True
        self._failures: dict[str, list[tuple[int, Any]]] = {}

    # ------------------------------------------------------------------ setup
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def add_identity(
        self,
        email: str,
        password: str,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        is_admin: bool | None = None,
        totp_code: str | None = None,
        backup_codes: Iterable[str] = (),
    ) -> FakeIdentity:
        name = None
        if first_name is not None or last_name is not None:
            name = {"first": first_name or "", "last": last_name or ""}
        identity = FakeIdentity(
            id=str(uuid.uuid4()),
            email=email,
            password=password,
            name=name,
            metadata_public={"isAdmin": is_admin} if is_admin is not None else None,
            totp_code=totp_code,
            backup_codes=[code.upper() for code in backup_codes],
        )
        self.identities[email] = identity
        return identity

    def sign_in(self, email: str, *methods: str) -> dict[str, Any]:
        """Start a session directly, as if a login had already happened."""

        identity = self.identities[email]
        return self._start_session(identity, methods or ("password",))

    def sign_out(self) -> None:
        self.session = None

    def expire_flow(self, flow_id: str) -> None:
        self.flows[flow_id].expired = True

    def fail_next(self, operation: str, kind: FlowKind | None = None, *, status: int, payload: Any = None) -> None:
        """Queue a failure for the next ``operation`` (``create``, ``fetch``, ``update``, ``whoami``, ``logout``)."""

        key = operation if kind is None else f"{operation}:{kind.value}"
        if payload is None:
            payload = {"error": {"code": status, "id": "injected", "reason": "injected failure"}}
        self._failures.setdefault(key, []).append((status, payload))

    def count(self, operation: str, kind: FlowKind | None = None) -> int:
        key = operation if kind is None else f"{operation}:{kind.value}"
        return self.calls[key]

    def csrf_token(self, flow_id: str) -> str:
        return self.flows[flow_id].csrf_token

    # ------------------------------------------------------------------ transport
    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json_decode(request.content) if request.content else None
        self.requests.append((request.method, path, body))
        status, payload = self._route(request, path, body)
        return httpx.Response(
            status,
            content=json_encode(payload),
            headers={"content-type": "application/json"},
        )

    def _route(self, request: httpx.Request, path: str, body: Any) -> tuple[int, Any]:
        if path == "/sessions/whoami":
            return self._guarded("whoami", self._whoami)
        if path == "/self-service/logout/browser":
            return self._guarded("logout", lambda: self._logout(request.url.params.get("return_to")))
        match = _CREATE.match(path)
        if match and request.method == "GET":
            kind = FlowKind(match.group(1))
            return self._guarded(f"create:{kind.value}", lambda: self._create(kind, request.url.params))
        match = _FETCH.match(path)
        if match and request.method == "GET":
            kind = FlowKind(match.group(1))
            flow_id = request.url.params.get("id", "")
            return self._guarded(f"fetch:{kind.value}", lambda: self._fetch(kind, flow_id))
        match = _UPDATE.match(path)
        if match and request.method == "POST":
            kind = FlowKind(match.group(1))
            flow_id = request.url.params.get("flow", "")
            return self._guarded(f"update:{kind.value}", lambda: self._update(kind, flow_id, body or {}))
        return _error(404, "not_found", f"no route for {request.method} {path}")

    def _guarded(self, key: str, handler: Any) -> tuple[int, Any]:
        self.calls[key] += 1
        operation = key.split(":", 1)[0]
        if key != operation:
            self.calls[operation] += 1
        for name in (key, operation):
            queued = self._failures.get(name)
            if queued:
                return queued.pop(0)
        return handler()

    # ------------------------------------------------------------------ sessions
    def _start_session(self, identity: FakeIdentity, methods: Iterable[str]) -> dict[str, Any]:
        now = _now()
        methods = list(methods)
        second_factor = any(method in ("totp", "lookup_secret") for method in methods)
        self.session = {
            "id": str(uuid.uuid4()),
            "active": True,
            "authenticator_assurance_level": "aal2" if second_factor else "aal1",
            "authentication_methods": [
                {
                    "method": method,
                    "aal": "aal2" if method in ("totp", "lookup_secret") else "aal1",
                    "completed_at": now.isoformat(),
                }
                for method in methods
            ],
            "identity": identity.document(),
            "authenticated_at": now.isoformat(),
            "expires_at": (now + timedelta(hours=24)).isoformat(),
        }
        return self.session

    def _session_identity(self) -> FakeIdentity | None:
        if self.session is None:
            return None
        identity_id = self.session["identity"]["id"]
        for identity in self.identities.values():
            if identity.id == identity_id:
                return identity
        return None

    def _awaiting_second_factor(self, identity: FakeIdentity) -> bool:
        if self.session is None or self.session["authenticator_assurance_level"] != "aal1":
            return False
        return bool(identity.totp_code or identity.backup_codes)

    def _whoami(self) -> tuple[int, Any]:
        if self.session is None:
            return _error(401, "session_inactive", "No active session was found in this request.")
        identity = self._session_identity()
        if identity is not None:
            self.session["identity"] = identity.document()
        return 200, self.session

    def _logout(self, return_to: str | None) -> tuple[int, Any]:
        if self.session is None:
            return _error(401, "session_inactive", "No active session was found in this request.")
        token = secrets.token_urlsafe(16)
        url = f"{self.base_url}/self-service/logout?token={token}"
        if return_to:
            url = f"{url}&return_to={return_to}"
        return 200, {"logout_url": url, "logout_token": token}

    # ------------------------------------------------------------------ flows
    def _new_flow(self, kind: FlowKind, stage: str, **values: Any) -> _FlowRecord:
        record = _FlowRecord(
            id=str(uuid.uuid4()),
            kind=kind,
            csrf_token=secrets.token_urlsafe(24),
            stage=stage,
            **values,
        )
        self.flows[record.id] = record
        return record

    def _create(self, kind: FlowKind, params: Mapping[str, str]) -> tuple[int, Any]:
        return_to = params.get("return_to")
        if kind is FlowKind.LOGIN:
            aal = params.get("aal") or "aal1"
            refresh = params.get("refresh") == "true"
            identity = self._session_identity()
            if aal == "aal2":
                if identity is None:
                    return _error(401, "session_inactive", "No active session was found in this request.")
                stage = "second_factor" if identity.totp_code or identity.backup_codes else "password"
                record = self._new_flow(kind, stage, requested_aal=aal, return_to=return_to, identity_id=identity.id)
                return 200, self._document(record)
            if identity is not None and not refresh and not self._awaiting_second_factor(identity):
                return _error(400, "session_already_available", "A valid session was detected.")
            record = self._new_flow(kind, "password", return_to=return_to)
            return 200, self._document(record)
        if kind is FlowKind.SETTINGS:
            if self.session is None:
                return _error(401, "session_inactive", "No active session was found in this request.")
            record = self._new_flow(kind, "settings", state=FlowState.SHOW_FORM, return_to=return_to)
            return 200, self._document(record)
        if kind is FlowKind.RECOVERY:
            record = self._new_flow(kind, "email", return_to=return_to)
            return 200, self._document(record)
        record = self._new_flow(kind, "password", return_to=return_to)
        return 200, self._document(record)

    def _fetch(self, kind: FlowKind, flow_id: str) -> tuple[int, Any]:
        record = self.flows.get(flow_id)
        if record is None or record.kind is not kind:
            return _error(404, "not_found", "The requested resource could not be found.")
        if record.expired:
            return self._expired()
        return 200, self._document(record)

    def _expired(self) -> tuple[int, Any]:
        return _error(
            410,
            "self_service_flow_expired",
            "The self-service flow expired, please retry the flow.",
            use_flow_id=None,
        )

    def _update(self, kind: FlowKind, flow_id: str, body: Mapping[str, Any]) -> tuple[int, Any]:
        record = self.flows.get(flow_id)
        if record is None or record.kind is not kind:
            return _error(404, "not_found", "The requested resource could not be found.")
        if record.expired:
            return self._expired()
        presented = body.get(CSRF_FIELD)
        valid_csrf = presented == record.csrf_token
        record.csrf_token = secrets.token_urlsafe(24)
        record.messages = []
        record.extra_nodes = []
        if not valid_csrf:
            return self._reject(record, _message(4000001, CSRF_VIOLATION))
        handler = {
            FlowKind.LOGIN: self._update_login,
            FlowKind.REGISTRATION: self._update_registration,
            FlowKind.RECOVERY: self._update_recovery,
            FlowKind.SETTINGS: self._update_settings,
        }[kind]
        return handler(record, body)

    def _reject(self, record: _FlowRecord, message: dict[str, Any]) -> tuple[int, Any]:
        record.messages = [message]
        return 400, self._document(record)

    def _update_login(self, record: _FlowRecord, body: Mapping[str, Any]) -> tuple[int, Any]:
        method = body.get("method")
        if record.stage == "password":
            if method != "password":
                return self._reject(record, _message(4010002, "Could not find a strategy to log you in with."))
            identity = self.identities.get(str(body.get("identifier", "")))
            if identity is None or identity.password != body.get("password"):
                return self._reject(record, _message(4000006, INVALID_CREDENTIALS))
            if identity.totp_code or identity.backup_codes:
                self._start_session(identity, ("password",))
                record.stage = "second_factor"
                record.requested_aal = "aal2"
                record.identity_id = identity.id
                return 200, self._document(record)
            return 200, self._terminal(identity, ("password",))
        identity = self._identity_by_id(record.identity_id)
        if identity is None:
            return _error(403, "session_inactive", "No active session was found in this request.")
        if method == "totp":
            if identity.totp_code is None or body.get(TOTP_CODE_FIELD) != identity.totp_code:
                return self._reject(record, _message(4000008, INVALID_TOTP_CODE))
            return 200, self._terminal(identity, ("password", "totp"))
        if method == "lookup_secret":
            code = str(body.get("lookup_secret", ""))
            if code not in identity.backup_codes:
                return self._reject(record, _message(4000016, INVALID_LOOKUP_CODE))
            identity.backup_codes.remove(code)
            return 200, self._terminal(identity, ("password", "lookup_secret"))
        return self._reject(record, _message(4010002, "Could not find a strategy to log you in with."))

    def _update_registration(self, record: _FlowRecord, body: Mapping[str, Any]) -> tuple[int, Any]:
        traits = body.get("traits") or {}
        email = str(traits.get("email", ""))
        password = str(body.get("password", ""))
        if email in self.identities:
            return self._reject(record, _message(4000007, DUPLICATE_IDENTIFIER))
        if len(password) < 8:
            return self._reject(
                record,
                _message(4000032, f"The password must be at least 8 characters long, but got {len(password)}."),
            )
        identity = self.add_identity(email, password)
        return 200, self._terminal(identity, ("password",))

    def _update_recovery(self, record: _FlowRecord, body: Mapping[str, Any]) -> tuple[int, Any]:
        if record.stage == "email":
            email = str(body.get("email", ""))
            identity = self.identities.get(email)
            record.identity_id = identity.id if identity is not None else None
            record.stage = "code"
            record.state = FlowState.SENT_EMAIL
            record.messages = [_message(1060003, RECOVERY_CODE_SENT, "info")]
            return 200, self._document(record)
        identity = self._identity_by_id(record.identity_id)
        if identity is None or body.get("code") != self.recovery_code:
            return self._reject(record, _message(4060006, INVALID_RECOVERY_CODE))
        self._start_session(identity, ("code",))
        record.state = FlowState.PASSED_CHALLENGE
        if self.recovery_continues_with_settings:
            settings = self._new_flow(FlowKind.SETTINGS, "settings", state=FlowState.SHOW_FORM)
            record.continue_with = [
                {
                    "action": SHOW_SETTINGS_ACTION,
                    "flow": {"id": settings.id, "url": f"{self.base_url}/self-service/settings?flow={settings.id}"},
                }
            ]
        return 200, self._document(record)

    def _update_settings(self, record: _FlowRecord, body: Mapping[str, Any]) -> tuple[int, Any]:
        identity = self._session_identity()
        if identity is None:
            return _error(401, "session_inactive", "No active session was found in this request.")
        method = body.get("method")
        if method == "password":
            password = str(body.get("password", ""))
            if len(password) < 8:
                return self._reject(
                    record,
                    _message(4000032, f"The password must be at least 8 characters long, but got {len(password)}."),
                )
            identity.password = password
        elif method == "totp" and body.get("totp_unlink"):
            identity.totp_code = None
        elif method == "totp":
            if body.get(TOTP_CODE_FIELD) != self.enrollment_totp_code:
                return self._reject(record, _message(4000008, INVALID_TOTP_CODE))
            identity.totp_code = self.enrollment_totp_code
            if self.enrollment_backup_codes:
                identity.backup_codes = [code.upper() for code in self.enrollment_backup_codes]
                record.extra_nodes = [
                    {
                        "type": "text",
                        "group": "lookup_secret",
                        "attributes": {
                            "node_type": "text",
                            "id": BACKUP_CODES_FIELD,
                            "name": BACKUP_CODES_FIELD,
                            "value": list(self.enrollment_backup_codes),
                            "text": {"id": 1050015, "text": ", ".join(self.enrollment_backup_codes), "type": "info"},
                        },
                        "messages": [],
                        "meta": {},
                    }
                ]
        else:
            return self._reject(record, _message(4000001, "Could not find a strategy to update your settings."))
        record.state = FlowState.SUCCESS
        record.messages = [_message(1050001, SETTINGS_SAVED, "success")]
        return 200, self._document(record)

    def _identity_by_id(self, identity_id: str | None) -> FakeIdentity | None:
        for identity in self.identities.values():
            if identity.id == identity_id:
                return identity
        return None

    def _terminal(self, identity: FakeIdentity, methods: Iterable[str]) -> dict[str, Any]:
        session = self._start_session(identity, methods)
        return {"session": session, "identity": identity.document()}

    # ------------------------------------------------------------------ rendering
    def _document(self, record: _FlowRecord) -> dict[str, Any]:
        now = _now()
        return {
            "id": record.id,
            "type": "browser",
            "state": record.state,
            "issued_at": now.isoformat(),
            "expires_at": (now + timedelta(minutes=10)).isoformat(),
            "request_url": f"{self.base_url}/self-service/{record.kind.value}/browser",
            "return_to": record.return_to,
            "requested_aal": record.requested_aal,
            "ui": {
                "action": f"{self.base_url}/self-service/{record.kind.value}?flow={record.id}",
                "method": "POST",
                "nodes": self._nodes(record) + record.extra_nodes,
                "messages": list(record.messages),
            },
            "continue_with": list(record.continue_with),
        }

    def _nodes(self, record: _FlowRecord) -> list[dict[str, Any]]:
        nodes = [_input("default", CSRF_FIELD, type_="hidden", value=record.csrf_token, required=True)]
        if record.kind is FlowKind.LOGIN:
            if record.stage == "password":
                nodes.append(_input("default", "identifier", required=True))
                nodes.append(_input("password", "password", type_="password", required=True))
                nodes.append(_submit("password"))
            else:
                nodes.append(_input("totp", TOTP_CODE_FIELD, required=True))
                nodes.append(_submit("totp"))
                nodes.append(_input("lookup_secret", "lookup_secret", required=True))
                nodes.append(_submit("lookup_secret"))
        elif record.kind is FlowKind.REGISTRATION:
            nodes.append(_input("default", "traits.email", type_="email", required=True))
            nodes.append(_input("password", "password", type_="password", required=True))
            nodes.append(_submit("password"))
        elif record.kind is FlowKind.RECOVERY:
            if record.stage == "email":
                nodes.append(_input("code", "email", type_="email", required=True))
            else:
                nodes.append(_input("code", "code", required=True))
            nodes.append(_submit("code"))
        else:
            nodes.extend(self._settings_nodes())
        return nodes

    def _settings_nodes(self) -> list[dict[str, Any]]:
        identity = self._session_identity()
        nodes = [
            _input("password", "password", type_="password", required=True),
            _submit("password"),
        ]
        if identity is not None and identity.totp_code:
            nodes.append(_submit("totp", True, name="totp_unlink"))
            return nodes
        nodes.append(
            {
                "type": "img",
                "group": "totp",
                "attributes": {
                    "node_type": "img",
                    "id": TOTP_QR_FIELD,
                    "src": f"data:image/png;base64,{self.enrollment_secret}",
                },
                "messages": [],
                "meta": {},
            }
        )
        nodes.append(
            {
                "type": "text",
                "group": "totp",
                "attributes": {
                    "node_type": "text",
                    "id": TOTP_SECRET_FIELD,
                    "text": {"id": 1050006, "text": self.enrollment_secret, "type": "info"},
                },
                "messages": [],
                "meta": {},
            }
        )
        nodes.append(_input("totp", TOTP_CODE_FIELD, required=True))
        nodes.append(_submit("totp"))
        return nodes


class FakeBackend:
    """The application backend's current-user and invitation endpoints."""

    def __init__(self) -> None:
        self.entities: list[dict[str, Any]] = []
        self.pending_invitations: dict[str, Any] | None = None
        self.invitations: dict[str, dict[str, Any]] = {}
        self.me_status = 200
        self.calls: Counter[str] = Counter()

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def add_membership(
        self,
        entity_id: str,
        role: str,
        *,
        entity_name: str = "",
        entity_type: str | None = None,
    ) -> None:
        self.entities.append(
            {"entityId": entity_id, "role": role, "entityName": entity_name, "entityType": entity_type}
        )

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/v1/me":
            self.calls["me"] += 1
            if self.me_status != 200:
                return httpx.Response(self.me_status, json={"error": "unavailable"})
            payload: dict[str, Any] = {"entities": list(self.entities)}
            if self.pending_invitations is not None:
                payload["pendingInvitations"] = self.pending_invitations
            return httpx.Response(200, json=payload)
        if path == "/v1/invitations/validate":
            self.calls["validate_invitation"] += 1
            invitation = self.invitations.get(request.url.params.get("token", ""))
            if invitation is None:
                return httpx.Response(404, json={"error": "invitation not found"})
            return httpx.Response(200, json=invitation)
        return httpx.Response(404, json={"error": "not found"})


class RecordingBrowser:
    """Browser that remembers every navigation instead of performing it."""

    def __init__(self) -> None:
        self.navigations: list[Navigation] = []

    def navigate(self, navigation: Navigation) -> None:
        self.navigations.append(navigation)

    @property
    def last(self) -> Navigation | None:
        return self.navigations[-1] if self.navigations else None

    @property
    def full_navigations(self) -> list[Navigation]:
        return [item for item in self.navigations if item.kind is NavigationKind.FULL]

    def urls(self) -> list[str]:
        return [item.url for item in self.navigations]


__all__ = [
    "FakeBackend",
    "FakeIdentity",
    "FakeIdentityProvider",
    "RecordingBrowser",
]
