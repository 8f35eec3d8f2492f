"""Login challenge sequencing: password, then TOTP or a backup code."""

from __future__ import annotations

import logging
from enum import Enum

from .browser import soft
from .classification import Classification, Outcome
from .driver import FlowDriver
from .exceptions import FlowStateError
from .models import FieldGroup, Flow, FlowKind

logger = logging.getLogger(__name__)

TOTP_CODE_LENGTH = 6
INVALID_TOTP = "Invalid TOTP code. Please try again."
INVALID_BACKUP_CODE = "Invalid backup code. Please try again."


class Challenge(str, Enum):
    PASSWORD = "password"
    TOTP = "totp"
    BACKUP_CODE = "backup_code"
    SUCCESS = "success"


def sanitize_totp_input(raw: str) -> str:
    """Keep the digits of ``raw``, at most :data:`TOTP_CODE_LENGTH` of them."""

    return "".join(char for char in raw if char in "0123456789")[:TOTP_CODE_LENGTH]


def totp_code_ready(code: str) -> bool:
    return len(code) == TOTP_CODE_LENGTH and all(char in "0123456789" for char in code)


def normalize_backup_code(raw: str) -> str:
    return raw.strip().upper()


def backup_code_ready(code: str) -> bool:
    return bool(code.strip())


class ChallengeSequencer(FlowDriver):
    """Drive a login flow through its password and second-factor challenges.

    ``PASSWORD -> TOTP <-> BACKUP_CODE -> SUCCESS``; a response without a
    ``totp`` group after the password step goes straight to ``SUCCESS``.
    Validation failures keep the current challenge, an expired flow starts
    over at ``PASSWORD`` on a fresh flow.
    """

    kind = FlowKind.LOGIN

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._state = Challenge.PASSWORD
        self._refresh = False
        self._requested_aal: str | None = None
        self._return_to: str | None = None

    @property
    def state(self) -> Challenge:
        return self._state

    def _create_options(self) -> dict[str, object]:
        return {
            "refresh": self._refresh,
            "requested_aal": self._requested_aal,
            "return_to": self._return_to,
        }

    async def start(
        self,
        flow_id: str | None = None,
        *,
        refresh: bool = False,
        aal: str | None = None,
        return_to: str | None = None,
    ) -> Challenge | None:
        """Resume the flow named in the address bar or create a new one.

        Returns ``None`` when no flow is active afterwards, either because the
        user is already signed in and was sent on, or because creation failed.
        """

        self._refresh = refresh
        self._requested_aal = aal
        self._return_to = return_to
        if self.session.is_authenticated and not refresh and not aal:
            self.browser.navigate(soft(self.config.routes.after_login))
            return None
        flow = await self._resume_or_create(flow_id)
        if flow is None:
            return None
        self._state = Challenge.TOTP if flow.has_group(FieldGroup.TOTP) else Challenge.PASSWORD
        return self._state

    def _expect(self, *states: Challenge) -> None:
        if self._state not in states:
            raise FlowStateError(f"invalid_transition_from_{self._state.value}")

    async def submit_password(self, identifier: str, password: str) -> Challenge:
        self._expect(Challenge.PASSWORD)
        flow = self._require_flow()
        result = await self._submit("password", {"identifier": identifier, "password": password})
        if isinstance(result, Classification):
            return self._after_failure(result)
        if isinstance(result, Flow) and result.has_group(FieldGroup.TOTP):
            self._state = Challenge.TOTP
            return self._state
        return await self._succeed(flow)

    async def submit_totp(self, code: str) -> Challenge:
        self._expect(Challenge.TOTP)
        if not totp_code_ready(code):
            raise FlowStateError("totp_code_incomplete")
        flow = self._require_flow()
        result = await self._submit("totp", {"totp_code": code}, validation_fallback=INVALID_TOTP)
        if isinstance(result, Classification):
            return self._after_failure(result)
        return await self._succeed(flow)

    async def submit_backup_code(self, code: str) -> Challenge:
        self._expect(Challenge.BACKUP_CODE)
        normalized = normalize_backup_code(code)
        if not backup_code_ready(normalized):
            raise FlowStateError("backup_code_empty")
        flow = self._require_flow()
        result = await self._submit(
            "lookup_secret",
            {"lookup_secret": normalized},
            validation_fallback=INVALID_BACKUP_CODE,
        )
        if isinstance(result, Classification):
            return self._after_failure(result)
        return await self._succeed(flow)

    def use_backup_code(self) -> Challenge:
        self._expect(Challenge.TOTP)
        self._error = None
        self._state = Challenge.BACKUP_CODE
        return self._state

    def back_to_totp(self) -> Challenge:
        self._expect(Challenge.BACKUP_CODE)
        self._error = None
        self._state = Challenge.TOTP
        return self._state

    def _after_failure(self, classification: Classification) -> Challenge:
        if classification.outcome is Outcome.FLOW_EXPIRED:
            self._state = Challenge.PASSWORD
        return self._state

    async def _succeed(self, flow: Flow) -> Challenge:
        self._state = Challenge.SUCCESS
        logger.info("Login flow %s completed", flow.id)
        await self._complete_sign_in(flow.return_to)
        return self._state


__all__ = [
    "Challenge",
    "ChallengeSequencer",
    "INVALID_BACKUP_CODE",
    "INVALID_TOTP",
    "TOTP_CODE_LENGTH",
    "backup_code_ready",
    "normalize_backup_code",
    "sanitize_totp_input",
    "totp_code_ready",
]
