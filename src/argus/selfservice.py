"""Registration, account recovery and settings controllers."""

from __future__ import annotations

import inspect
import logging
from typing import Any

from .browser import flow_url, soft
from .classification import Classification
from .driver import FlowDriver
from .enrollment import SuccessCallback, TotpEnrollment
from .exceptions import ArgusError, BackendError, FlowStateError
from .models import FieldGroup, Flow, FlowKind, FlowState, InvitationDetails, TerminalResult

logger = logging.getLogger(__name__)

INVALID_INVITATION = "Invalid or expired invitation. Please contact support."
PASSWORD_UPDATED = "Password updated successfully!"
PASSWORD_UPDATE_FAILED = "Failed to update password. Please check your input and try again."
TOTP_ENABLED = "Two-factor authentication has been successfully enabled!"
MIN_PASSWORD_LENGTH = 8


class RegistrationFlow(FlowDriver):
    kind = FlowKind.REGISTRATION

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._invitation: InvitationDetails | None = None

    @property
    def invitation(self) -> InvitationDetails | None:
        return self._invitation

    async def start(self, flow_id: str | None = None, *, invitation_token: str | None = None) -> Flow | None:
        """Resume or create a registration flow, validating an invitation first when one is given."""

        if self.session.is_authenticated:
            self.browser.navigate(soft(self.config.routes.after_login))
            return None
        if invitation_token:
            try:
                self._invitation = await self.session.backend.validate_invitation(invitation_token)
            except BackendError as exc:
                logger.warning("Failed to validate invitation: %s", exc)
                self._invitation = None
                self._error = INVALID_INVITATION
                return None
        return await self._resume_or_create(flow_id)

    async def submit(self, email: str, password: str) -> bool:
        """Register with ``email``; an accepted invitation fixes the address."""

        if self._invitation is not None:
            email = self._invitation.email
        result = await self._submit("password", {"traits": {"email": email}, "password": password})
        if isinstance(result, Classification):
            return False
        await self._complete_sign_in()
        return True


class RecoveryFlow(FlowDriver):
    """Two-step recovery by emailed code; a passed challenge continues in settings."""

    kind = FlowKind.RECOVERY

    @property
    def awaiting_code(self) -> bool:
        flow = self.store.current
        return flow is not None and flow.find_field(FieldGroup.CODE, "code") is not None

    async def start(self, flow_id: str | None = None) -> Flow | None:
        if self.session.is_authenticated:
            self.browser.navigate(soft(self.config.routes.home))
            return None
        return await self._resume_or_create(flow_id)

    async def request_new_code(self) -> Flow | None:
        return await self._create()

    async def submit_email(self, email: str) -> bool:
        if self.awaiting_code:
            raise FlowStateError("recovery_code_expected")
        return await self._send({"email": email})

    async def submit_code(self, code: str) -> bool:
        if not self.awaiting_code:
            raise FlowStateError("recovery_email_expected")
        return await self._send({"code": code.strip()})

    async def _send(self, payload: dict[str, Any]) -> bool:
        result = await self._submit("code", payload)
        if isinstance(result, Classification):
            return False
        settings_flow = result.continue_with_settings()
        if settings_flow:
            self.browser.navigate(soft(flow_url(self.config.routes.settings, settings_flow)))
            return True
        if isinstance(result, TerminalResult) or result.state == FlowState.PASSED_CHALLENGE:
            self.browser.navigate(soft(self.config.routes.settings))
        return True


class SettingsFlow(FlowDriver):
    kind = FlowKind.SETTINGS

    async def start(self, flow_id: str | None = None) -> Flow | None:
        """Resume the settings flow from the address bar, e.g. right after recovery.

        Without a usable flow an anonymous visitor is sent to login.
        """

        if flow_id:
            try:
                return await self.store.fetch_flow(self.kind, flow_id)
            except ArgusError as exc:
                logger.info("Could not resume settings flow %s: %s", flow_id, exc)
        if not self.session.is_authenticated:
            self.browser.navigate(soft(self.config.routes.login))
            return None
        return await self._create()

    async def change_password(self, password: str) -> bool:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise FlowStateError("password_too_short")
        self._success_message = None
        result = await self._submit("password", {"password": password}, validation_fallback=PASSWORD_UPDATE_FAILED)
        if isinstance(result, Classification):
            return False
        self._success_message = PASSWORD_UPDATED
        await self.session.refresh()
        self.browser.navigate(soft(self.config.routes.after_password_change))
        return True

    def enrollment(self, on_success: SuccessCallback | None = None) -> TotpEnrollment:
        """TOTP enrollment sharing this controller's flow store and session."""

        async def enabled() -> None:
            self._success_message = TOTP_ENABLED
            await self.session.refresh()
            if on_success is not None:
                outcome = on_success()
                if inspect.isawaitable(outcome):
                    await outcome

        return TotpEnrollment(
            self.store,
            self.session,
            self.browser,
            classifier=self.classifier,
            config=self.config,
            observability=self._observability,
            on_success=enabled,
        )


def password_ready(password: str) -> bool:
    return len(password) >= MIN_PASSWORD_LENGTH


__all__ = [
    "INVALID_INVITATION",
    "MIN_PASSWORD_LENGTH",
    "PASSWORD_UPDATED",
    "RecoveryFlow",
    "RegistrationFlow",
    "SettingsFlow",
    "TOTP_ENABLED",
    "password_ready",
]
