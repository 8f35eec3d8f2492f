"""Shared machinery for controllers that drive one kind of self-service flow."""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Mapping

from .browser import Browser, full, flow_url, soft
from .classification import Classification, ErrorClassifier, Outcome
from .config import OrchestratorConfig
from .exceptions import ArgusError, FlowStateError
from .flows import FlowStore
from .models import Flow, FlowKind, TerminalResult, UiMessage
from .observability import Observability
from .session import SessionService

logger = logging.getLogger(__name__)

SubmitResult = Flow | TerminalResult | Classification

_INIT_FAILURES = {
    FlowKind.LOGIN: "Failed to initialize login. Please try again.",
    FlowKind.REGISTRATION: "Failed to initialize registration. Please try again.",
    FlowKind.RECOVERY: "Failed to initialize recovery. Please try again.",
    FlowKind.SETTINGS: "Failed to initialize settings. Please try again.",
}


class FlowDriver:
    """Base class for flow controllers.

    Subclasses set :attr:`kind` and build their state machine on top of
    :meth:`_submit`, which returns the provider's answer or, when the
    submission failed, the :class:`Classification` that was already acted on.
    Callers are expected to serialize calls; :attr:`is_submitting` exists so
    a UI can disable its submit controls.
    """

    kind: ClassVar[FlowKind]

    def __init__(
        self,
        store: FlowStore,
        session: SessionService,
        browser: Browser,
        *,
        classifier: ErrorClassifier | None = None,
        config: OrchestratorConfig | None = None,
        observability: Observability | None = None,
    ) -> None:
        self.store = store
        self.session = session
        self.browser = browser
        self.classifier = classifier or ErrorClassifier()
        self.config = config or session.config
        self._observability = observability or Observability(self.config.observability)
        self._is_submitting = False
        self._error: str | None = None
        self._success_message: str | None = None
        self._last_outcome: Outcome | None = None
        self._recreations = 0

    @property
    def flow(self) -> Flow | None:
        return self.store.current

    @property
    def route(self) -> str:
        return getattr(self.config.routes, self.kind.value)

    @property
    def is_submitting(self) -> bool:
        return self._is_submitting

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def success_message(self) -> str | None:
        return self._success_message

    @property
    def last_outcome(self) -> Outcome | None:
        return self._last_outcome

    @property
    def messages(self) -> tuple[UiMessage, ...]:
        flow = self.store.current
        return flow.messages if flow is not None else ()

    def _require_flow(self) -> Flow:
        flow = self.store.current
        if flow is None:
            raise FlowStateError("no_current_flow")
        if flow.kind is not self.kind:
            raise FlowStateError("flow_kind_mismatch")
        return flow

    def _create_options(self) -> dict[str, Any]:
        """Options used whenever this controller has to create a flow."""

        return {}

    async def _resume_or_create(self, flow_id: str | None) -> Flow | None:
        if flow_id:
            try:
                return await self.store.fetch_flow(self.kind, flow_id)
            except ArgusError as exc:
                logger.info("Could not resume %s flow %s, creating a new one: %s", self.kind.value, flow_id, exc)
        return await self._create()

    async def _create(self) -> Flow | None:
        """Create a flow and publish its id in the address bar."""

        self._recreations = 0
        try:
            flow = await self.store.create_flow(self.kind, **self._create_options())
        except ArgusError as exc:
            classification = self.classifier.classify(exc, kind=self.kind)
            if classification.outcome is Outcome.STEP_UP_REQUIRED and classification.redirect_to:
                self.browser.navigate(full(classification.redirect_to))
                return None
            logger.error("Failed to create %s flow: %s", self.kind.value, exc)
            self._error = _INIT_FAILURES[self.kind]
            return None
        self.browser.navigate(soft(flow_url(self.route, flow.id)))
        return flow

    async def _submit(
        self,
        method: str,
        payload: Mapping[str, Any],
        *,
        validation_fallback: str | None = None,
    ) -> SubmitResult:
        flow = self._require_flow()
        self._is_submitting = True
        self._error = None
        self._last_outcome = None
        context = self._observability.on_flow_submit_start(self.kind.value, method, flow.id)
        try:
            try:
                result = await self.store.submit_flow(flow, method, payload)
            except ArgusError as exc:
                classification = self.classifier.classify(
                    exc, kind=self.kind, validation_fallback=validation_fallback
                )
                self._observability.on_flow_submit_error(
                    context,
                    exc,
                    outcome=classification.outcome.value,
                    expected=classification.outcome is not Outcome.UNKNOWN,
                )
                await self._handle_failure(classification, flow, exc)
                return classification
            self._recreations = 0
            self._observability.on_flow_submit_success(context)
            return result
        finally:
            self._is_submitting = False

    async def _handle_failure(self, classification: Classification, flow: Flow, error: BaseException) -> None:
        outcome = classification.outcome
        self._last_outcome = outcome
        if outcome is not Outcome.FLOW_EXPIRED:
            self._recreations = 0
        if outcome is Outcome.VALIDATION_FAILED and classification.flow is not None:
            self.store.adopt(classification.flow)
            self._error = classification.user_message
        elif outcome is Outcome.FLOW_EXPIRED:
            self.store.discard()
            await self._recover_expired_flow(classification)
        elif outcome is Outcome.STEP_UP_REQUIRED and classification.redirect_to:
            self.browser.navigate(full(classification.redirect_to))
        elif outcome is Outcome.FORBIDDEN:
            self.store.discard()
            self.session.invalidate()
            self._error = classification.user_message
            self.browser.navigate(self.session.login_navigation())
        else:
            logger.error("%s flow %s failed: %s", self.kind.value, flow.id, error)
            self._error = classification.user_message

    async def _recover_expired_flow(self, classification: Classification) -> None:
        """Replace an expired flow, unless a replacement already expired too."""

        while self._recreations < self.config.max_flow_recreations:
            self._recreations += 1
            try:
                flow = await self.store.create_flow(self.kind, **self._create_options())
            except ArgusError as exc:
                logger.error("Replacing expired %s flow failed: %s", self.kind.value, exc)
                continue
            self.browser.navigate(soft(flow_url(self.route, flow.id)))
            return
        self._last_outcome = Outcome.UNKNOWN
        self._error = classification.fallback_message

    async def _complete_sign_in(self, return_to: str | None = None) -> None:
        """Refresh the session, then leave for the post-login destination."""

        await self.session.refresh()
        if return_to:
            self.browser.navigate(full(return_to))
        else:
            self.browser.navigate(soft(self.config.routes.after_login))


__all__ = ["FlowDriver", "SubmitResult"]
