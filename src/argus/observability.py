"""Observability integration for Argus flows and sessions."""

from __future__ import annotations

import time
from contextlib import ExitStack
from typing import Any, Iterable, Mapping

import msgspec


class FlowObservabilityConfig(msgspec.Struct, frozen=True):
    """Flow submission metrics and tracing configuration."""

    span_name: str = "argus.flow.submit"
    datadog_metric_submitted: str = "argus.flow.submitted"
    datadog_metric_error: str = "argus.flow.errors"
    datadog_metric_timing: str = "argus.flow.duration"


class SessionObservabilityConfig(msgspec.Struct, frozen=True):
    """Session refresh metrics and tracing configuration."""

    span_name: str = "argus.session.refresh"
    datadog_metric_error: str = "argus.session.errors"
    datadog_metric_timing: str = "argus.session.duration"


class ObservabilityConfig(msgspec.Struct, frozen=True):
    """Top-level observability configuration."""

    enabled: bool = True
    opentelemetry_enabled: bool = True
    opentelemetry_tracer: str = "argus"
    sentry_enabled: bool = True
    sentry_record_breadcrumbs: bool = True
    sentry_capture_exceptions: bool = True
    sentry_breadcrumb_category: str = "argus"
    sentry_breadcrumb_level: str = "info"
    datadog_enabled: bool = True
    datadog_tags: tuple[tuple[str, str], ...] = ()
    flow: FlowObservabilityConfig = FlowObservabilityConfig()
    session: SessionObservabilityConfig = SessionObservabilityConfig()


class _ObservationContext:
    __slots__ = (
        "datadog_tags",
        "error_attributes",
        "metric_error",
        "metric_success",
        "metric_timing",
        "span",
        "stack",
        "start",
        "success_attributes",
    )

    def __init__(
        self,
        *,
        start: float,
        stack: ExitStack,
        span: Any | None,
        datadog_tags: tuple[str, ...],
        metric_success: str | None,
        metric_error: str | None,
        metric_timing: str | None,
        success_attributes: Mapping[str, Any] | None = None,
        error_attributes: Mapping[str, Any] | None = None,
    ) -> None:
        self.start = start
        self.stack = stack
        self.span = span
        self.datadog_tags = datadog_tags
        self.metric_success = metric_success
        self.metric_error = metric_error
        self.metric_timing = metric_timing
        self.success_attributes = dict(success_attributes or {})
        self.error_attributes = dict(error_attributes or {})

    def close(self, error: BaseException | None = None) -> None:
        if error is None:
            self.stack.__exit__(None, None, None)
        else:
            self.stack.__exit__(type(error), error, error.__traceback__)


class Observability:
    """Coordinate tracing, error tracking, and metrics providers."""

    def __init__(self, config: ObservabilityConfig | None = None) -> None:
        self.config = config or ObservabilityConfig()
        self._tracer = None
        self._client_span_kind = None
        self._status_cls = None
        self._status_ok = None
        self._status_error = None
        self._sentry_hub = None
        self._statsd = None
        self._base_datadog_tags = tuple(f"{key}:{value}" for key, value in self.config.datadog_tags)
        if self.config.enabled:
            self._prepare_opentelemetry()
            self._prepare_sentry()
            self._prepare_datadog()
        self._enabled = self.config.enabled and any((self._tracer, self._sentry_hub, self._statsd))

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _prepare_opentelemetry(self) -> None:
        if not self.config.opentelemetry_enabled:
            return
        try:
            from opentelemetry import trace  # type: ignore[import-not-found]
        except ImportError:  # pragma: no cover - optional dependency
            return
        self._tracer = trace.get_tracer(self.config.opentelemetry_tracer)
        span_kind = getattr(trace, "SpanKind", None)
        self._client_span_kind = getattr(span_kind, "CLIENT", None) if span_kind else None
        status_cls = getattr(trace, "Status", None)
        status_code_cls = getattr(trace, "StatusCode", None)
        if status_cls is not None and status_code_cls is not None:
            self._status_cls = status_cls
            self._status_ok = getattr(status_code_cls, "OK", None)
            self._status_error = getattr(status_code_cls, "ERROR", None)

    def _prepare_sentry(self) -> None:
        if not self.config.sentry_enabled:
            return
        try:
            import sentry_sdk  # type: ignore[import-not-found]
        except ImportError:  # pragma: no cover - optional dependency
            return
        self._sentry_hub = sentry_sdk.Hub.current

    def _prepare_datadog(self) -> None:
        if not self.config.datadog_enabled:
            return
        try:
            from datadog import statsd  # type: ignore[import-not-found]
        except ImportError:  # pragma: no cover - optional dependency
            return
        self._statsd = statsd

    def _status(self, code: Any, description: str | None = None) -> Any | None:
        if self._status_cls is None or code is None:
            return None
        if description is None:
            return self._status_cls(code)
        return self._status_cls(code, description=description)

    def _start(
        self,
        span_name: str,
        *,
        attributes: Mapping[str, Any],
        datadog_tags: Iterable[str] = (),
        metrics: tuple[str | None, str | None, str | None] = (None, None, None),
        breadcrumb_message: str | None = None,
        breadcrumb_data: Mapping[str, Any] | None = None,
        sentry_tags: Mapping[str, Any] | None = None,
        success_attributes: Mapping[str, Any] | None = None,
        error_attributes: Mapping[str, Any] | None = None,
    ) -> _ObservationContext | None:
        if not self._enabled:
            return None
        stack = ExitStack()
        span = None
        if self._tracer is not None:
            span = stack.enter_context(self._tracer.start_as_current_span(span_name, kind=self._client_span_kind))
            for key, value in attributes.items():
                span.set_attribute(key, value)
        if self._sentry_hub is not None:
            if breadcrumb_message is not None and self.config.sentry_record_breadcrumbs:
                self._sentry_hub.add_breadcrumb(
                    category=self.config.sentry_breadcrumb_category,
                    level=self.config.sentry_breadcrumb_level,
                    message=breadcrumb_message,
                    data=dict(breadcrumb_data or {}),
                )
            scope = stack.enter_context(self._sentry_hub.push_scope())
            if sentry_tags and hasattr(scope, "set_tag"):
                for key, value in sentry_tags.items():
                    scope.set_tag(key, value)
        tags = list(self._base_datadog_tags)
        tags.extend(datadog_tags)
        success_metric, error_metric, timing_metric = metrics
        return _ObservationContext(
            start=time.perf_counter(),
            stack=stack,
            span=span,
            datadog_tags=tuple(tags),
            metric_success=success_metric,
            metric_error=error_metric,
            metric_timing=timing_metric,
            success_attributes=success_attributes,
            error_attributes=error_attributes,
        )

    def _capture_exception(self, error: BaseException) -> None:
        if self._sentry_hub is not None and self.config.sentry_capture_exceptions:
            self._sentry_hub.capture_exception(error)

    def _finish_success(self, context: _ObservationContext, extra_tags: Iterable[str] = ()) -> None:
        tags = [*context.datadog_tags, *extra_tags]
        if self._statsd is not None:
            if context.metric_success:
                self._statsd.increment(context.metric_success, tags=tags)
            if context.metric_timing:
                duration_ms = (time.perf_counter() - context.start) * 1000.0
                self._statsd.timing(context.metric_timing, duration_ms, tags=tags)
        if context.span is not None:
            for key, value in context.success_attributes.items():
                context.span.set_attribute(key, value)
            status = self._status(self._status_ok)
            if status is not None:
                context.span.set_status(status)
        context.close()

    def _finish_error(
        self,
        context: _ObservationContext | None,
        error: BaseException,
        *,
        extra_tags: Iterable[str] = (),
        capture: bool = True,
    ) -> None:
        if context is None:
            if capture:
                self._capture_exception(error)
            return
        tags = [*context.datadog_tags, *extra_tags]
        if context.span is not None:
            for key, value in context.error_attributes.items():
                context.span.set_attribute(key, value)
            if hasattr(context.span, "record_exception"):
                context.span.record_exception(error)
            status = self._status(self._status_error, description=str(error))
            if status is not None:
                context.span.set_status(status)
        if self._statsd is not None and context.metric_error:
            self._statsd.increment(context.metric_error, tags=tags)
        if capture:
            self._capture_exception(error)
        context.close(error)

    def on_flow_submit_start(self, kind: str, method: str, flow_id: str) -> _ObservationContext | None:
        attributes = {
            "argus.flow.kind": kind,
            "argus.flow.method": method,
            "argus.flow.id": flow_id,
        }
        return self._start(
            self.config.flow.span_name,
            attributes=attributes,
            datadog_tags=(f"kind:{kind}", f"method:{method}"),
            metrics=(
                self.config.flow.datadog_metric_submitted,
                self.config.flow.datadog_metric_error,
                self.config.flow.datadog_metric_timing,
            ),
            breadcrumb_message=f"{kind} flow submission",
            breadcrumb_data={"kind": kind, "method": method, "flow_id": flow_id},
            sentry_tags={"argus.flow.kind": kind, "argus.flow.method": method},
            success_attributes={"argus.flow.result": "success"},
            error_attributes={"argus.flow.result": "error"},
        )

    def on_flow_submit_success(self, context: _ObservationContext | None) -> None:
        if context is None:
            return
        self._finish_success(context)

    def on_flow_submit_error(
        self,
        context: _ObservationContext | None,
        error: BaseException,
        *,
        outcome: str,
        expected: bool = False,
    ) -> None:
        """Record a failed submission.

        Expected outcomes (validation failures, expired flows, step-up
        redirects) are tagged but not reported as exceptions.
        """

        if context is not None and context.span is not None:
            context.span.set_attribute("argus.flow.outcome", outcome)
        self._finish_error(context, error, extra_tags=(f"outcome:{outcome}",), capture=not expected)

    def on_session_refresh_start(self) -> _ObservationContext | None:
        return self._start(
            self.config.session.span_name,
            attributes={"argus.session.operation": "refresh"},
            metrics=(None, self.config.session.datadog_metric_error, self.config.session.datadog_metric_timing),
            success_attributes={"argus.session.result": "success"},
            error_attributes={"argus.session.result": "error"},
        )

    def on_session_refresh_success(self, context: _ObservationContext | None, *, authenticated: bool) -> None:
        if context is None:
            return
        if context.span is not None:
            context.span.set_attribute("argus.session.authenticated", authenticated)
        self._finish_success(context, (f"authenticated:{str(authenticated).lower()}",))

    def on_session_refresh_error(self, context: _ObservationContext | None, error: BaseException) -> None:
        self._finish_error(context, error)


__all__ = [
    "FlowObservabilityConfig",
    "Observability",
    "ObservabilityConfig",
    "SessionObservabilityConfig",
]
