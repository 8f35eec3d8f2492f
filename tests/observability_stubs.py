from __future__ import annotations

import sys
import types
from typing import Any, cast

import pytest


class StubSpan:
    def __init__(self, name: str, kind: Any) -> None:
        self.name = name
        self.kind = kind
        self.attributes: dict[str, Any] = {}
        self.status: Any | None = None
        self.exceptions: list[BaseException] = []
        self.exit_exception: BaseException | None = None
        self.ended = False

    def __enter__(self) -> StubSpan:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.ended = True
        if exc is not None:
            self.exit_exception = exc
        return False

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def record_exception(self, exc: BaseException) -> None:
        self.exceptions.append(exc)

    def set_status(self, status: Any) -> None:
        self.status = status


class BareSpan(StubSpan):
    """A span from an SDK that cannot record exceptions."""

    def __getattribute__(self, name: str) -> Any:
        if name == "record_exception":
            raise AttributeError(name)
        return super().__getattribute__(name)


class StubTracer:
    def __init__(self, span_cls: type[StubSpan] = StubSpan) -> None:
        self.spans: list[StubSpan] = []
        self._span_cls = span_cls

    def start_as_current_span(self, name: str, kind: Any | None = None, **_: Any) -> StubSpan:
        span = self._span_cls(name, kind)
        self.spans.append(span)
        return span

    def named(self, name: str) -> list[StubSpan]:
        return [span for span in self.spans if span.name == name]


class StubStatus:
    def __init__(self, status_code: Any, description: str | None = None) -> None:
        self.status_code = status_code
        self.description = description


class StubScope:
    def __init__(self) -> None:
        self.tags: dict[str, Any] = {}

    def __enter__(self) -> StubScope:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return False

    def set_tag(self, key: str, value: Any) -> None:
        self.tags[key] = value


class StubSentryHub:
    def __init__(self) -> None:
        self.breadcrumbs: list[dict[str, Any]] = []
        self.captured: list[BaseException] = []
        self.scopes: list[StubScope] = []

    def add_breadcrumb(self, **breadcrumb: Any) -> None:
        self.breadcrumbs.append(breadcrumb)

    def capture_exception(self, exc: BaseException) -> None:
        self.captured.append(exc)

    def push_scope(self) -> StubScope:
        scope = StubScope()
        self.scopes.append(scope)
        return scope


class StubStatsd:
    def __init__(self) -> None:
        self.increments: list[tuple[str, tuple[str, ...]]] = []
        self.timings: list[tuple[str, float, tuple[str, ...]]] = []

    def increment(self, metric: str, tags: list[str] | None = None) -> None:
        self.increments.append((metric, tuple(tags or ())))

    def timing(self, metric: str, value: float, tags: list[str] | None = None) -> None:
        self.timings.append((metric, value, tuple(tags or ())))

    def metrics(self) -> list[str]:
        return [metric for metric, _ in self.increments]


def setup_stub_opentelemetry(
    monkeypatch: pytest.MonkeyPatch,
    *,
    span_cls: type[StubSpan] = StubSpan,
    with_status: bool = True,
) -> StubTracer:
    tracer = StubTracer(span_cls)
    trace_module = cast(Any, types.ModuleType("opentelemetry.trace"))
    trace_module.get_tracer = lambda name: tracer
    trace_module.SpanKind = types.SimpleNamespace(CLIENT="client")
    if with_status:
        trace_module.Status = StubStatus
        trace_module.StatusCode = types.SimpleNamespace(OK="ok", ERROR="error")
    otel_module = cast(Any, types.ModuleType("opentelemetry"))
    otel_module.trace = trace_module
    monkeypatch.setitem(sys.modules, "opentelemetry", otel_module)
    monkeypatch.setitem(sys.modules, "opentelemetry.trace", trace_module)
    return tracer


def setup_stub_sentry(monkeypatch: pytest.MonkeyPatch) -> StubSentryHub:
    hub = StubSentryHub()

    class Hub:
        current = hub

    sentry_module = cast(Any, types.ModuleType("sentry_sdk"))
    sentry_module.Hub = Hub
    monkeypatch.setitem(sys.modules, "sentry_sdk", sentry_module)
    return hub


def setup_stub_datadog(monkeypatch: pytest.MonkeyPatch) -> StubStatsd:
    statsd = StubStatsd()
    datadog_module = cast(Any, types.ModuleType("datadog"))
    datadog_module.statsd = statsd
    monkeypatch.setitem(sys.modules, "datadog", datadog_module)
    return statsd


def hide_modules(monkeypatch: pytest.MonkeyPatch, *names: str) -> None:
    """Make ``import name`` fail for each of ``names``."""

    for name in names:
        monkeypatch.setitem(sys.modules, name, None)


__all__ = [
    "BareSpan",
    "StubScope",
    "StubSentryHub",
    "StubSpan",
    "StubStatsd",
    "StubStatus",
    "StubTracer",
    "hide_modules",
    "setup_stub_datadog",
    "setup_stub_opentelemetry",
    "setup_stub_sentry",
]
