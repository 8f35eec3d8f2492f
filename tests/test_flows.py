from __future__ import annotations

import pytest

from argus import (
    ErrorClassifier,
    FlowKind,
    FlowStateError,
    FlowStore,
    IdentityProviderClient,
    Outcome,
    ProviderConfig,
    ProviderResponseError,
    TerminalResult,
)
from argus.flows import decode_flow, is_flow_document
from argus.testing import CSRF_VIOLATION, FakeIdentityProvider

EMAIL = "user@example.com"


def make_store() -> tuple[FakeIdentityProvider, FlowStore]:
    provider = FakeIdentityProvider()
    provider.add_identity(EMAIL, "correct")
    client = IdentityProviderClient(ProviderConfig(base_url=provider.base_url), transport=provider.transport())
    return provider, FlowStore(client)


@pytest.mark.asyncio
async def test_create_flow_becomes_current_and_passes_options() -> None:
    provider, store = make_store()

    flow = await store.create_flow(FlowKind.LOGIN, refresh=True, return_to="http://app.test/after")

    assert store.current is flow
    assert flow.kind is FlowKind.LOGIN
    assert flow.return_to == "http://app.test/after"
    assert flow.csrf_token == provider.csrf_token(flow.id)


@pytest.mark.asyncio
async def test_fetch_flow_replaces_current() -> None:
    _, store = make_store()
    first = await store.create_flow(FlowKind.LOGIN)
    second = await store.create_flow(FlowKind.REGISTRATION)

    fetched = await store.fetch_flow(FlowKind.LOGIN, first.id)

    assert store.current is fetched
    assert fetched.id == first.id
    assert fetched.id != second.id


@pytest.mark.asyncio
async def test_submit_echoes_current_csrf_token() -> None:
    provider, store = make_store()
    flow = await store.create_flow(FlowKind.LOGIN)

    result = await store.submit_flow(flow, "password", {"identifier": EMAIL, "password": "correct"})

    assert isinstance(result, TerminalResult)
    assert result.session is not None
    assert store.current is None
    _, _, body = provider.requests[-1]
    assert body is not None
    assert body["method"] == "password"
    assert body["csrf_token"] == flow.csrf_token


@pytest.mark.asyncio
async def test_non_terminal_response_is_adopted_with_rotated_token() -> None:
    provider, store = make_store()
    flow = await store.create_flow(FlowKind.RECOVERY)

    result = await store.submit_flow(flow, "code", {"email": EMAIL})

    assert result is store.current
    assert result.id == flow.id
    assert result.csrf_token != flow.csrf_token
    assert result.csrf_token == provider.csrf_token(flow.id)


@pytest.mark.asyncio
async def test_stale_csrf_token_is_rejected_as_validation_failure() -> None:
    _, store = make_store()
    stale = await store.create_flow(FlowKind.LOGIN)
    with pytest.raises(ProviderResponseError):
        await store.submit_flow(stale, "password", {"identifier": EMAIL, "password": "wrong"})

    with pytest.raises(ProviderResponseError) as excinfo:
        await store.submit_flow(stale, "password", {"identifier": EMAIL, "password": "correct"})

    classification = ErrorClassifier().classify(excinfo.value, kind=FlowKind.LOGIN)
    assert classification.outcome is Outcome.VALIDATION_FAILED
    assert classification.user_message == CSRF_VIOLATION


@pytest.mark.asyncio
async def test_replaced_flow_token_is_rejected_as_expired() -> None:
    provider, store = make_store()
    stale = await store.create_flow(FlowKind.LOGIN)
    provider.expire_flow(stale.id)
    await store.create_flow(FlowKind.LOGIN)

    with pytest.raises(ProviderResponseError) as excinfo:
        await store.submit_flow(stale, "password", {"identifier": EMAIL, "password": "correct"})

    classification = ErrorClassifier().classify(excinfo.value, kind=FlowKind.LOGIN)
    assert classification.outcome is Outcome.FLOW_EXPIRED
    assert provider.session is None


@pytest.mark.asyncio
async def test_submit_requires_flow_kind() -> None:
    _, store = make_store()
    flow = decode_flow(None, {"id": "abc", "ui": {"nodes": []}})

    with pytest.raises(FlowStateError):
        await store.submit_flow(flow, "password", {})


def test_is_flow_document() -> None:
    assert is_flow_document({"id": "1", "ui": {}})
    assert not is_flow_document({"session": {}})
    assert not is_flow_document(None)
    assert not is_flow_document([{"id": "1", "ui": {}}])


def test_decode_flow_rejects_invalid_payload() -> None:
    with pytest.raises(ProviderResponseError) as excinfo:
        decode_flow(FlowKind.LOGIN, {"ui": {}})

    assert excinfo.value.status == 200
