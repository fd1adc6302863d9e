import httpx
import pytest

from inbox_hub.config.constants import DIAGNOSTIC_HINTS
from inbox_hub.services.exceptions import UnauthorizedError
from tests.factories import PAGE_ID, PHONE_NUMBER_ID, TENANT_A, TENANT_B, graph_error


async def test_healthy_platform(container, graph, facebook_platform):
    graph.add("GET", f"/{PAGE_ID}", (200, {"id": PAGE_ID, "name": "Acme Shop"}))

    report = await container.diagnostics.check_platform(facebook_platform.id, tenant_id=TENANT_A)

    assert report.token_valid is True
    assert report.is_active
    assert report.profile == {"name": "Acme Shop"}
    assert report.probe is None


async def test_probe_send_is_not_persisted(container, graph, facebook_platform):
    graph.add("GET", f"/{PAGE_ID}", (200, {"id": PAGE_ID, "name": "Acme Shop"}))
    graph.add("POST", "/me/messages", (200, {"recipient_id": "u123", "message_id": "m_probe"}))

    report = await container.diagnostics.check_platform(
        facebook_platform.id, tenant_id=TENANT_A, probe_recipient="u123", probe_text="ping"
    )

    assert report.probe.outcome == "accepted"
    assert report.probe.platform_message_id == "m_probe"
    assert await container.repositories.messages.find_by_platform_message_id(facebook_platform.id, "m_probe") is None
    assert await container.repositories.conversations.list_by_tenant(TENANT_A) == []


async def test_expired_token_is_reported_with_hint(container, graph, facebook_platform):
    graph.add("GET", f"/{PAGE_ID}", (400, graph_error(190, message="Error validating access token")))

    report = await container.diagnostics.check_platform(facebook_platform.id)

    assert report.token_valid is False
    assert report.is_active is False
    assert report.hint == DIAGNOSTIC_HINTS[190]
    assert not (await container.token_manager.get_platform(facebook_platform.id)).is_active


async def test_permission_error_is_reported(container, graph, facebook_platform):
    graph.add("GET", f"/{PAGE_ID}", (400, graph_error(100, message="Missing permission")))

    report = await container.diagnostics.check_platform(facebook_platform.id)

    assert report.token_valid is False
    assert report.is_active is True
    assert report.error == "Missing permission"
    assert report.hint == DIAGNOSTIC_HINTS[100]


async def test_inactive_platform_is_not_called(container, graph, facebook_platform):
    await container.token_manager.disconnect(TENANT_A, facebook_platform.id)

    report = await container.diagnostics.check_platform(facebook_platform.id)

    assert report.token_valid is False
    assert "disconnected" in report.error
    assert graph.requests == []


async def test_unreachable_graph(container, graph, facebook_platform):
    graph.add("GET", f"/{PAGE_ID}", httpx.ConnectError)

    report = await container.diagnostics.check_platform(facebook_platform.id)

    assert report.token_valid is None
    assert report.error


async def test_probe_with_invalid_recipient(container, graph, whatsapp_platform):
    graph.add("GET", f"/{PHONE_NUMBER_ID}", (200, {"verified_name": "Acme", "quality_rating": "GREEN"}))

    report = await container.diagnostics.check_platform(whatsapp_platform.id, probe_recipient="not-a-number")

    assert report.token_valid is True
    assert report.profile["verified_name"] == "Acme"
    assert report.probe.outcome == "invalid_request"


async def test_report_serializes(container, graph, facebook_platform):
    graph.add("GET", f"/{PAGE_ID}", (200, {"id": PAGE_ID, "name": "Acme Shop"}))

    data = (await container.diagnostics.check_platform(facebook_platform.id)).to_dict()

    assert data["platform_type"] == "facebook"
    assert data["token_valid"] is True


async def test_other_tenant_is_refused(container, facebook_platform):
    with pytest.raises(UnauthorizedError):
        await container.diagnostics.check_platform(facebook_platform.id, tenant_id=TENANT_B)
