"""Map failed provider interactions onto a closed set of outcomes.

This is the only module that looks at transport status codes. Everything
upstream branches on :class:`Outcome`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from msgspec import Struct

from .exceptions import ArgusError, ProviderResponseError, ProviderTransportError
from .flows import decode_flow, is_flow_document
from .models import Flow, FlowKind, UiMessage


class Outcome(str, Enum):
    VALIDATION_FAILED = "validation_failed"
    FLOW_EXPIRED = "flow_expired"
    STEP_UP_REQUIRED = "step_up_required"
    FORBIDDEN = "forbidden"
    UNKNOWN = "unknown"


STEP_UP_WITHOUT_TARGET = "A redirect is required to complete authentication."
SESSION_INVALID = "Session expired or insufficient privileges. Please log in again."

_VALIDATION_FALLBACKS = {
    FlowKind.LOGIN: "Invalid credentials. Please try again.",
    FlowKind.REGISTRATION: "Registration failed. Please check your input and try again.",
    FlowKind.RECOVERY: "Recovery failed. Please check your input and try again.",
    FlowKind.SETTINGS: "Failed to update settings. Please check your input and try again.",
}

_UNKNOWN_FALLBACKS = {
    FlowKind.LOGIN: "An error occurred during login. Please try again.",
    FlowKind.REGISTRATION: "An error occurred during registration. Please try again.",
    FlowKind.RECOVERY: "An error occurred during recovery. Please try again.",
    FlowKind.SETTINGS: "An error occurred while updating settings. Please try again.",
}

GENERIC_FAILURE = "Something went wrong. Please try again."


class Classification(Struct, frozen=True, kw_only=True):
    """The single outcome a failure maps to, plus what the caller needs to act on it."""

    outcome: Outcome
    flow: Flow | None = None
    redirect_to: str | None = None
    fallback_message: str = GENERIC_FAILURE

    @property
    def messages(self) -> tuple[UiMessage, ...]:
        return self.flow.messages if self.flow is not None else ()

    @property
    def user_message(self) -> str:
        """Provider supplied text when available, otherwise the generic fallback."""

        for message in self.messages:
            if message.text:
                return message.text
        return self.fallback_message


class ErrorClassifier:
    """Classify any exception raised while talking to the provider."""

    def __init__(
        self,
        *,
        validation_fallbacks: Mapping[FlowKind, str] | None = None,
        unknown_fallbacks: Mapping[FlowKind, str] | None = None,
    ) -> None:
        self._validation_fallbacks = {**_VALIDATION_FALLBACKS, **(validation_fallbacks or {})}
        self._unknown_fallbacks = {**_UNKNOWN_FALLBACKS, **(unknown_fallbacks or {})}

    def classify(
        self,
        error: BaseException,
        *,
        kind: FlowKind | None = None,
        validation_fallback: str | None = None,
    ) -> Classification:
        unknown = Classification(outcome=Outcome.UNKNOWN, fallback_message=self._unknown_message(kind))
        if isinstance(error, ProviderTransportError) or not isinstance(error, ProviderResponseError):
            return unknown
        status = error.status
        payload = error.payload
        if status == 400:
            if not is_flow_document(payload):
                return unknown
            try:
                flow = decode_flow(kind, payload)
            except ArgusError:
                return unknown
            return Classification(
                outcome=Outcome.VALIDATION_FAILED,
                flow=flow,
                fallback_message=validation_fallback or self._validation_message(kind),
            )
        if status == 410:
            return Classification(outcome=Outcome.FLOW_EXPIRED, fallback_message=self._unknown_message(kind))
        if status == 422:
            target = _redirect_target(payload)
            if target is None:
                return Classification(outcome=Outcome.UNKNOWN, fallback_message=STEP_UP_WITHOUT_TARGET)
            return Classification(outcome=Outcome.STEP_UP_REQUIRED, redirect_to=target)
        if status == 403:
            return Classification(outcome=Outcome.FORBIDDEN, fallback_message=SESSION_INVALID)
        return unknown

    def _validation_message(self, kind: FlowKind | None) -> str:
        if kind is None:
            return GENERIC_FAILURE
        return self._validation_fallbacks.get(kind, GENERIC_FAILURE)

    def _unknown_message(self, kind: FlowKind | None) -> str:
        if kind is None:
            return GENERIC_FAILURE
        return self._unknown_fallbacks.get(kind, GENERIC_FAILURE)


def _redirect_target(payload: Any) -> str | None:
    if not isinstance(payload, Mapping):
        return None
    target = payload.get("redirect_browser_to")
    if isinstance(target, str) and target:
        return target
    return None


__all__ = [
    "Classification",
    "ErrorClassifier",
    "GENERIC_FAILURE",
    "Outcome",
    "SESSION_INVALID",
    "STEP_UP_WITHOUT_TARGET",
]
