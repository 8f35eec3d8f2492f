from __future__ import annotations

import pytest

from argus import FlowKind, Observability, ObservabilityConfig, ProviderResponseError
from argus.challenges import Challenge
from tests.observability_stubs import (
    BareSpan,
    hide_modules,
    setup_stub_datadog,
    setup_stub_opentelemetry,
    setup_stub_sentry,
)
from tests.support import make_config, make_harness

EMAIL = "user@example.com"
PASSWORD = "correct horse"


def observed_harness():
    return make_harness(config=make_config(observability=ObservabilityConfig(datadog_tags=(("env", "test"),))))


def test_disabled_observability_is_inert(monkeypatch: pytest.MonkeyPatch) -> None:
    hub = setup_stub_sentry(monkeypatch)
    observability = Observability(ObservabilityConfig(enabled=False))

    context = observability.on_flow_submit_start("login", "password", "flow-1")
    observability.on_flow_submit_error(context, RuntimeError("boom"), outcome="unknown")

    assert not observability.enabled
    assert context is None
    assert hub.captured == []


def test_missing_providers_disable_observability(monkeypatch: pytest.MonkeyPatch) -> None:
    hide_modules(monkeypatch, "opentelemetry", "sentry_sdk", "datadog")

    observability = Observability(ObservabilityConfig())

    assert not observability.enabled
    assert observability.on_session_refresh_start() is None


@pytest.mark.asyncio
async def test_successful_submission_is_traced_and_counted(monkeypatch: pytest.MonkeyPatch) -> None:
    tracer = setup_stub_opentelemetry(monkeypatch)
    hub = setup_stub_sentry(monkeypatch)
    statsd = setup_stub_datadog(monkeypatch)
    harness = observed_harness()
    harness.provider.add_identity(EMAIL, PASSWORD)
    login = harness.orchestrator.login()
    await login.start()

    assert await login.submit_password(EMAIL, PASSWORD) is Challenge.SUCCESS

    (span,) = tracer.named("argus.flow.submit")
    assert span.attributes["argus.flow.kind"] == "login"
    assert span.attributes["argus.flow.method"] == "password"
    assert span.attributes["argus.flow.result"] == "success"
    assert span.status.status_code == "ok"
    assert span.ended
    assert hub.breadcrumbs[0]["message"] == "login flow submission"
    assert hub.scopes[0].tags["argus.flow.kind"] == "login"
    assert ("argus.flow.submitted", ("env:test", "kind:login", "method:password")) in statsd.increments
    assert statsd.timings[0][0] == "argus.flow.duration"


@pytest.mark.asyncio
async def test_validation_failure_is_tagged_but_not_captured(monkeypatch: pytest.MonkeyPatch) -> None:
    tracer = setup_stub_opentelemetry(monkeypatch)
    hub = setup_stub_sentry(monkeypatch)
    statsd = setup_stub_datadog(monkeypatch)
    harness = observed_harness()
    harness.provider.add_identity(EMAIL, PASSWORD)
    login = harness.orchestrator.login()
    await login.start()

    await login.submit_password(EMAIL, "wrong")

    (span,) = tracer.named("argus.flow.submit")
    assert span.attributes["argus.flow.outcome"] == "validation_failed"
    assert span.attributes["argus.flow.result"] == "error"
    assert span.status.status_code == "error"
    assert isinstance(span.exit_exception, ProviderResponseError)
    assert hub.captured == []
    errors = [tags for metric, tags in statsd.increments if metric == "argus.flow.errors"]
    assert errors == [("env:test", "kind:login", "method:password", "outcome:validation_failed")]


@pytest.mark.asyncio
async def test_unknown_failure_is_captured(monkeypatch: pytest.MonkeyPatch) -> None:
    setup_stub_opentelemetry(monkeypatch)
    hub = setup_stub_sentry(monkeypatch)
    setup_stub_datadog(monkeypatch)
    harness = observed_harness()
    harness.provider.add_identity(EMAIL, PASSWORD)
    login = harness.orchestrator.login()
    await login.start()
    harness.provider.fail_next("update", FlowKind.LOGIN, status=500)

    await login.submit_password(EMAIL, PASSWORD)

    assert len(hub.captured) == 1
    assert isinstance(hub.captured[0], ProviderResponseError)
    assert hub.captured[0].status == 500


@pytest.mark.asyncio
async def test_session_refresh_records_authentication(monkeypatch: pytest.MonkeyPatch) -> None:
    tracer = setup_stub_opentelemetry(monkeypatch)
    setup_stub_sentry(monkeypatch)
    statsd = setup_stub_datadog(monkeypatch)
    harness = observed_harness()
    harness.provider.add_identity(EMAIL, PASSWORD)
    harness.provider.sign_in(EMAIL)

    await harness.session.refresh()

    (span,) = tracer.named("argus.session.refresh")
    assert span.attributes["argus.session.authenticated"] is True
    assert span.attributes["argus.session.result"] == "success"
    assert statsd.timings[0][2] == ("env:test", "authenticated:true")
    assert "argus.session.errors" not in statsd.metrics()


@pytest.mark.asyncio
async def test_session_refresh_error_is_captured(monkeypatch: pytest.MonkeyPatch) -> None:
    tracer = setup_stub_opentelemetry(monkeypatch)
    hub = setup_stub_sentry(monkeypatch)
    statsd = setup_stub_datadog(monkeypatch)
    harness = observed_harness()
    harness.provider.fail_next("whoami", status=502)

    await harness.session.refresh()

    (span,) = tracer.named("argus.session.refresh")
    assert span.attributes["argus.session.result"] == "error"
    assert span.exceptions and span.exceptions[0] is hub.captured[0]
    assert "argus.session.errors" in statsd.metrics()


@pytest.mark.asyncio
async def test_spans_without_status_or_exception_recording(monkeypatch: pytest.MonkeyPatch) -> None:
    tracer = setup_stub_opentelemetry(monkeypatch, span_cls=BareSpan, with_status=False)
    hide_modules(monkeypatch, "sentry_sdk", "datadog")
    harness = observed_harness()
    harness.provider.fail_next("whoami", status=503)

    await harness.session.refresh()

    (span,) = tracer.spans
    assert span.status is None
    assert span.exceptions == []
    assert span.ended
