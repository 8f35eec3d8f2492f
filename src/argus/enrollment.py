"""TOTP enrollment against a settings flow, including the one-time backup code reveal."""

from __future__ import annotations

import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from .challenges import totp_code_ready
from .classification import Classification, Outcome
from .driver import FlowDriver
from .exceptions import ArgusError, FlowStateError
from .models import (
    BACKUP_CODES_FIELD,
    TOTP_QR_FIELD,
    TOTP_SECRET_FIELD,
    FieldGroup,
    Flow,
    FlowKind,
)

logger = logging.getLogger(__name__)

TOTP_UNLINK_FIELD = "totp_unlink"
VERIFY_FAILED = "Failed to verify TOTP code"
DISABLE_FAILED = "Failed to disable two-factor authentication"
DISABLED = "Two-factor authentication has been disabled."

SuccessCallback = Callable[[], Awaitable[None] | None]


class EnrollmentStep(str, Enum):
    SCAN = "scan"
    VERIFY = "verify"
    COMPLETE = "complete"


class TotpEnrollment(FlowDriver):
    """Set up, or remove, the TOTP second factor of the signed-in identity.

    Backup codes returned by a successful verification are kept in memory
    only until :meth:`acknowledge`; they cannot be read back afterwards.
    """

    kind = FlowKind.SETTINGS

    def __init__(self, *args: Any, on_success: SuccessCallback | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._on_success = on_success
        self._step = EnrollmentStep.SCAN
        self._backup_codes: tuple[str, ...] = ()

    @property
    def step(self) -> EnrollmentStep:
        return self._step

    @property
    def backup_codes(self) -> tuple[str, ...]:
        return self._backup_codes

    @property
    def qr_code(self) -> str:
        """Image source (usually a data URL) of the provisioning QR code."""

        return self._require_flow().field(FieldGroup.TOTP, TOTP_QR_FIELD).value

    @property
    def secret(self) -> str:
        return self._require_flow().field(FieldGroup.TOTP, TOTP_SECRET_FIELD).value

    @property
    def is_linked(self) -> bool:
        flow = self.store.current
        return flow is not None and flow.find_field(FieldGroup.TOTP, TOTP_UNLINK_FIELD) is not None

    async def load(self, flow_id: str | None = None) -> Flow | None:
        """Fetch the settings flow to enroll against, creating one when no id is known."""

        self._step = EnrollmentStep.SCAN
        self._backup_codes = ()
        if flow_id is None:
            return await self._create()
        try:
            return await self.store.fetch_flow(self.kind, flow_id)
        except ArgusError as exc:
            logger.warning("Failed to fetch settings flow %s: %s", flow_id, exc)
            self._error = str(exc) or "Failed to fetch flow"
            return None

    def proceed(self) -> EnrollmentStep:
        if self._step is not EnrollmentStep.SCAN:
            raise FlowStateError(f"invalid_transition_from_{self._step.value}")
        self._step = EnrollmentStep.VERIFY
        return self._step

    async def verify(self, code: str) -> EnrollmentStep:
        if self._step is not EnrollmentStep.VERIFY:
            raise FlowStateError(f"invalid_transition_from_{self._step.value}")
        if not totp_code_ready(code):
            raise FlowStateError("totp_code_incomplete")
        result = await self._submit("totp", {"totp_code": code}, validation_fallback=VERIFY_FAILED)
        if isinstance(result, Classification):
            if result.outcome is Outcome.FLOW_EXPIRED:
                # the secret belonged to the expired flow
                self._step = EnrollmentStep.SCAN
            return self._step
        codes = _backup_codes(result) if isinstance(result, Flow) else ()
        self._step = EnrollmentStep.COMPLETE
        if codes:
            self._backup_codes = codes
        else:
            await self._notify_success()
        return self._step

    def copy_backup_codes(self, clipboard: Callable[[str], Any] | None = None) -> str:
        """Return the codes as one newline separated block, handing it to ``clipboard``."""

        if self._step is not EnrollmentStep.COMPLETE or not self._backup_codes:
            raise FlowStateError("no_backup_codes")
        text = "\n".join(self._backup_codes)
        if clipboard is not None:
            clipboard(text)
        return text

    async def acknowledge(self) -> None:
        """The user saved the codes; forget them and report success."""

        if self._step is not EnrollmentStep.COMPLETE:
            raise FlowStateError(f"invalid_transition_from_{self._step.value}")
        had_codes = bool(self._backup_codes)
        self._backup_codes = ()
        if had_codes:
            await self._notify_success()

    async def disable(self, confirmed: bool) -> bool:
        """Unlink TOTP; nothing is sent unless the user ``confirmed``."""

        if not confirmed:
            return False
        self._success_message = None
        result = await self._submit("totp", {"totp_unlink": True}, validation_fallback=DISABLE_FAILED)
        if isinstance(result, Classification):
            return False
        self._success_message = DISABLED
        await self.session.refresh()
        await self._create()
        return True

    async def _notify_success(self) -> None:
        if self._on_success is None:
            return
        outcome = self._on_success()
        if inspect.isawaitable(outcome):
            await outcome


def _backup_codes(flow: Flow) -> tuple[str, ...]:
    node = flow.find_field(FieldGroup.LOOKUP_SECRET, BACKUP_CODES_FIELD)
    if node is None or not node.value:
        return ()
    value = node.value
    if isinstance(value, (list, tuple)):
        return tuple(str(code) for code in value)
    return (str(value),)


__all__ = [
    "DISABLED",
    "EnrollmentStep",
    "SuccessCallback",
    "TotpEnrollment",
    "VERIFY_FAILED",
]
