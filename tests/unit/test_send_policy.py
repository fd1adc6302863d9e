from datetime import datetime, timedelta, timezone

import pytest

from inbox_hub.core.exceptions import OutsideMessagingWindowError
from inbox_hub.models.entities import TemplateRef
from inbox_hub.models.types import PlatformType, SendMode
from tests.conftest import open_conversation
from tests.factories import WA_CUSTOMER

LAST_INBOUND = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
async def conversation(container, whatsapp_platform):
    return await open_conversation(container, whatsapp_platform, WA_CUSTOMER, last_inbound_at=LAST_INBOUND)


async def test_eligible_just_inside_window(container, conversation):
    decision = await container.send_policy.evaluate(
        conversation, PlatformType.WHATSAPP, now=LAST_INBOUND + timedelta(hours=23, minutes=59)
    )

    assert decision.eligible
    assert decision.mode == SendMode.FREE_FORM
    assert decision.last_inbound_at == LAST_INBOUND
    assert decision.window_expires_at == LAST_INBOUND + timedelta(hours=24)


@pytest.mark.parametrize("elapsed", [timedelta(hours=24), timedelta(hours=24, minutes=1)])
async def test_ineligible_at_and_after_window_end(container, conversation, elapsed):
    with pytest.raises(OutsideMessagingWindowError) as exc_info:
        await container.send_policy.evaluate(conversation, PlatformType.WHATSAPP, now=LAST_INBOUND + elapsed)

    assert exc_info.value.details["template_required"] is True
    assert exc_info.value.last_inbound_at == LAST_INBOUND


async def test_template_supplied_outside_window(container, conversation):
    template = TemplateRef(name="follow_up")
    decision = await container.send_policy.evaluate(
        conversation, PlatformType.WHATSAPP, template=template, now=LAST_INBOUND + timedelta(days=3)
    )

    assert not decision.eligible
    assert decision.mode == SendMode.TEMPLATE
    assert decision.template == template


async def test_no_inbound_message_is_ineligible(container, whatsapp_platform):
    conversation = await open_conversation(container, whatsapp_platform, "15557654321")

    with pytest.raises(OutsideMessagingWindowError):
        await container.send_policy.evaluate(conversation, PlatformType.WHATSAPP)


async def test_messenger_is_always_eligible(container, facebook_platform):
    conversation = await open_conversation(container, facebook_platform, "u123")

    decision = await container.send_policy.evaluate(
        conversation, PlatformType.FACEBOOK, now=LAST_INBOUND + timedelta(days=30)
    )
    assert decision.eligible
    assert decision.window_expires_at is None


async def test_window_expired_fallback_switches_to_template(container, conversation):
    decision = await container.send_policy.evaluate(
        conversation, PlatformType.WHATSAPP, now=LAST_INBOUND + timedelta(hours=1)
    )
    template = TemplateRef(name="follow_up")

    fallback = container.send_policy.fallback_for_window_expired(decision, template)
    assert fallback.mode == SendMode.TEMPLATE

    # a template rejected for the window cannot fall back again
    with pytest.raises(OutsideMessagingWindowError):
        container.send_policy.fallback_for_window_expired(fallback, template)
