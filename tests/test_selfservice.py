from __future__ import annotations

import pytest

from argus import FlowKind, FlowStateError, NavigationKind, Outcome
from argus.classification import SESSION_INVALID
from argus.selfservice import INVALID_INVITATION, PASSWORD_UPDATED, password_ready
from argus.testing import (
    DUPLICATE_IDENTIFIER,
    INVALID_RECOVERY_CODE,
    RECOVERY_CODE_SENT,
)
from tests.support import make_harness

EMAIL = "user@example.com"


# ---------------------------------------------------------------------- registration
@pytest.mark.asyncio
async def test_registration_signs_in_and_redirects() -> None:
    harness = make_harness()
    registration = harness.orchestrator.registration()
    flow = await registration.start()
    assert harness.browser.last.url == f"/registration?flow={flow.id}"
    harness.track_refreshes()

    assert await registration.submit("new@example.com", "long enough") is True

    assert "new@example.com" in harness.provider.identities
    assert harness.events == ["refresh", "navigate:/dashboard"]
    assert harness.session.is_authenticated
    assert registration.flow is None


@pytest.mark.asyncio
async def test_registration_sends_email_as_trait() -> None:
    harness = make_harness()
    registration = harness.orchestrator.registration()
    await registration.start()

    await registration.submit("new@example.com", "long enough")

    body = next(body for method, _, body in harness.provider.requests if method == "POST")
    assert body["traits"] == {"email": "new@example.com"}
    assert body["method"] == "password"


@pytest.mark.asyncio
async def test_duplicate_registration_shows_provider_message() -> None:
    harness = make_harness()
    harness.provider.add_identity(EMAIL, "whatever1")
    registration = harness.orchestrator.registration()
    await registration.start()

    assert await registration.submit(EMAIL, "long enough") is False

    assert registration.last_outcome is Outcome.VALIDATION_FAILED
    assert registration.error == DUPLICATE_IDENTIFIER
    assert not harness.session.is_authenticated


@pytest.mark.asyncio
async def test_invitation_fixes_registration_email() -> None:
    harness = make_harness()
    harness.backend.invitations["tok"] = {
        "email": "invited@example.com",
        "vehicles": [{"vehicleId": "v1", "make": "Volvo"}],
    }
    registration = harness.orchestrator.registration()

    assert await registration.start(invitation_token="tok") is not None
    assert registration.invitation.email == "invited@example.com"
    assert registration.invitation.vehicles[0].make == "Volvo"

    await registration.submit("someone-else@example.com", "long enough")

    assert "invited@example.com" in harness.provider.identities
    assert "someone-else@example.com" not in harness.provider.identities


@pytest.mark.asyncio
async def test_invalid_invitation_stops_before_creating_a_flow() -> None:
    harness = make_harness()
    registration = harness.orchestrator.registration()

    assert await registration.start(invitation_token="nope") is None

    assert registration.error == INVALID_INVITATION
    assert harness.provider.count("create", FlowKind.REGISTRATION) == 0


@pytest.mark.asyncio
async def test_authenticated_visitor_skips_registration() -> None:
    harness = make_harness()
    harness.provider.add_identity(EMAIL, "correct horse")
    harness.provider.sign_in(EMAIL)
    await harness.session.refresh()

    assert await harness.orchestrator.registration().start() is None

    assert harness.browser.last.url == "/dashboard"


# ---------------------------------------------------------------------- recovery
@pytest.mark.asyncio
async def test_recovery_continues_into_settings_flow() -> None:
    harness = make_harness()
    harness.provider.add_identity(EMAIL, "forgotten1")
    recovery = harness.orchestrator.recovery()
    await recovery.start()
    assert not recovery.awaiting_code

    assert await recovery.submit_email(EMAIL) is True
    assert recovery.awaiting_code
    assert [message.text for message in recovery.messages] == [RECOVERY_CODE_SENT]

    assert await recovery.submit_code(" 424242 ") is True

    settings_id = harness.provider.flows[recovery.flow.id].continue_with[0]["flow"]["id"]
    last = harness.browser.last
    assert last.kind is NavigationKind.SOFT
    assert last.url == f"/settings?flow={settings_id}"

    settings = harness.orchestrator.settings()
    flow = await settings.start(settings_id)
    assert flow is not None and flow.id == settings_id
    assert harness.provider.count("create", FlowKind.SETTINGS) == 0


@pytest.mark.asyncio
async def test_passed_challenge_without_continuation_goes_to_settings() -> None:
    harness = make_harness()
    harness.provider.add_identity(EMAIL, "forgotten1")
    harness.provider.recovery_continues_with_settings = False
    recovery = harness.orchestrator.recovery()
    await recovery.start()
    await recovery.submit_email(EMAIL)

    assert await recovery.submit_code("424242") is True

    assert harness.browser.last.url == "/settings"


@pytest.mark.asyncio
async def test_wrong_recovery_code_keeps_code_step() -> None:
    harness = make_harness()
    harness.provider.add_identity(EMAIL, "forgotten1")
    recovery = harness.orchestrator.recovery()
    await recovery.start()
    await recovery.submit_email(EMAIL)

    assert await recovery.submit_code("000000") is False

    assert recovery.error == INVALID_RECOVERY_CODE
    assert recovery.last_outcome is Outcome.VALIDATION_FAILED
    assert [message.text for message in recovery.messages] == [INVALID_RECOVERY_CODE]
    assert recovery.awaiting_code


@pytest.mark.asyncio
async def test_recovery_steps_are_ordered() -> None:
    harness = make_harness()
    recovery = harness.orchestrator.recovery()
    await recovery.start()

    with pytest.raises(FlowStateError):
        await recovery.submit_code("424242")

    await recovery.submit_email(EMAIL)
    with pytest.raises(FlowStateError):
        await recovery.submit_email(EMAIL)


@pytest.mark.asyncio
async def test_request_new_code_starts_over() -> None:
    harness = make_harness()
    recovery = harness.orchestrator.recovery()
    first = await recovery.start()
    await recovery.submit_email(EMAIL)

    second = await recovery.request_new_code()

    assert second.id != first.id
    assert not recovery.awaiting_code


# ---------------------------------------------------------------------- settings
@pytest.mark.asyncio
async def test_settings_requires_session() -> None:
    harness = make_harness()

    assert await harness.orchestrator.settings().start() is None

    assert harness.browser.last.url == "/login"
    assert harness.provider.count("create", FlowKind.SETTINGS) == 0


@pytest.mark.asyncio
async def test_password_change_refreshes_then_navigates() -> None:
    harness = make_harness()
    harness.provider.add_identity(EMAIL, "old password")
    harness.provider.sign_in(EMAIL)
    await harness.session.refresh()
    settings = harness.orchestrator.settings()
    await settings.start()
    harness.track_refreshes()

    assert await settings.change_password("new password") is True

    assert settings.success_message == PASSWORD_UPDATED
    assert harness.provider.identities[EMAIL].password == "new password"
    assert harness.events == ["refresh", "navigate:/"]


@pytest.mark.asyncio
async def test_short_password_is_not_submitted() -> None:
    harness = make_harness()
    harness.provider.add_identity(EMAIL, "old password")
    harness.provider.sign_in(EMAIL)
    await harness.session.refresh()
    settings = harness.orchestrator.settings()
    await settings.start()

    with pytest.raises(FlowStateError):
        await settings.change_password("short")

    assert harness.provider.count("update", FlowKind.SETTINGS) == 0
    assert not password_ready("short")
    assert password_ready("12345678")


@pytest.mark.asyncio
async def test_forbidden_settings_update_clears_session_before_login_redirect() -> None:
    harness = make_harness()
    harness.provider.add_identity(EMAIL, "old password")
    harness.backend.add_membership("e1", "admin")
    harness.provider.sign_in(EMAIL)
    await harness.session.refresh()
    settings = harness.orchestrator.settings()
    await settings.start()
    harness.provider.fail_next("update", FlowKind.SETTINGS, status=403)

    assert await settings.change_password("new password") is False

    assert settings.last_outcome is Outcome.FORBIDDEN
    assert settings.error == SESSION_INVALID
    assert settings.flow is None
    navigation, session, profile = harness.browser.snapshots[-1]
    assert navigation.url == "/login"
    assert session is None
    assert profile is None
    assert not harness.session.has_admin_access()
