from datetime import datetime, timedelta, timezone

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from inbox_hub.core.exceptions import (
    ContentValidationError, OutsideMessagingWindowError, PermanentRejectError, RateLimitedError,
    TimeoutUnresolvedError, TokenExpiredError, TokenRevokedError
)
from inbox_hub.models.entities import MessageContent, TemplateRef
from inbox_hub.models.types import (
    ContentType, DeliveryStatus, MessageDirection, PlatformType, RealtimeEventType
)
from inbox_hub.services.exceptions import ValidationError
from inbox_hub.services.realtime_backplane import RedisBackplane
from tests.conftest import open_conversation
from tests.factories import (
    PHONE_NUMBER_ID, TENANT_A, WA_CUSTOMER, graph_error, request_json
)

WA_SEND = f"/{PHONE_NUMBER_ID}/messages"
WA_ACCEPTED = (200, {"messaging_product": "whatsapp", "messages": [{"id": "wamid.out1"}]})
TEMPLATE = TemplateRef(name="follow_up", language_code="en_US")


def hello():
    return MessageContent.from_text("hello")


async def seeded_whatsapp(container, last_inbound_at=None):
    platform = await container.token_manager.connect(TENANT_A, PlatformType.WHATSAPP, PHONE_NUMBER_ID, "wa-token")
    return await open_conversation(
        container,
        platform,
        WA_CUSTOMER,
        last_inbound_at=last_inbound_at or datetime.now(timezone.utc) - timedelta(hours=1),
    )


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


async def test_accepted_send_is_recorded_and_published(container, graph, whatsapp_conversation):
    graph.add("POST", WA_SEND, WA_ACCEPTED)
    subscription = container.broadcaster.subscribe(TENANT_A)

    message = await container.dispatcher.send(whatsapp_conversation, hello())

    assert message.status == DeliveryStatus.SENT
    assert message.direction == MessageDirection.OUTBOUND
    assert message.platform_message_id == "wamid.out1"

    request = graph.calls("POST", WA_SEND)[0]
    assert request.headers["Authorization"] == "Bearer wa-token"
    assert request_json(request)["text"]["body"] == "hello"

    events = subscription.drain()
    assert [e.type for e in events] == [RealtimeEventType.CONVERSATION_UPDATED]
    assert events[0].payload["message"]["status"] == "sent"

    conversation = await container.repositories.conversations.get(whatsapp_conversation.id)
    assert conversation.last_activity_at == message.occurred_at
    assert container.metrics.registry.get_sample_value(
        "inbox_hub_outbound_sends_total", {"platform": "whatsapp", "outcome": "accepted"}
    ) == 1.0


class UnreachableRedis:
    async def publish(self, channel, data):
        raise RedisConnectionError("Connection refused")


async def test_accepted_send_survives_backplane_outage(container, graph, whatsapp_conversation):
    RedisBackplane(UnreachableRedis(), "inbox-hub").attach(container.broadcaster)
    graph.add("POST", WA_SEND, WA_ACCEPTED)

    message = await container.dispatcher.send(whatsapp_conversation, hello())

    assert message.status == DeliveryStatus.SENT
    stored = await container.repositories.messages.get(message.id)
    assert (stored.status, stored.platform_message_id) == (DeliveryStatus.SENT, "wamid.out1")
    assert container.metrics.registry.get_sample_value(
        "inbox_hub_realtime_publish_failures_total", {"event_type": "conversation.updated"}
    ) == 1.0


async def test_messenger_send_targets_page_scoped_id(container, graph, facebook_platform):
    conversation = await open_conversation(container, facebook_platform, "u123")
    graph.add("POST", "/me/messages", (200, {"recipient_id": "u123", "message_id": "m_out1"}))

    message = await container.dispatcher.send(conversation, hello())

    assert message.platform_message_id == "m_out1"
    assert request_json(graph.calls("POST", "/me/messages")[0])["recipient"] == {"id": "u123"}


async def test_rate_limit_backs_off_then_gives_up(make_container, graph):
    sleep = RecordingSleep()
    container = await make_container({"OUTBOUND_BACKOFF_BASE_SECONDS": 1}, sleep=sleep)
    conversation = await seeded_whatsapp(container)
    graph.add("POST", WA_SEND, (429, graph_error(130429)))

    with pytest.raises(RateLimitedError) as exc_info:
        await container.dispatcher.send(conversation, hello())

    assert sleep.delays == [1, 2]
    assert len(graph.calls("POST", WA_SEND)) == 3
    assert exc_info.value.message_record.status == DeliveryStatus.FAILED
    assert exc_info.value.message_record.failure_code == "130429"


async def test_rate_limit_honours_retry_after(make_container, graph):
    sleep = RecordingSleep()
    container = await make_container({"OUTBOUND_BACKOFF_BASE_SECONDS": 1}, sleep=sleep)
    conversation = await seeded_whatsapp(container)
    graph.add("POST", WA_SEND, (429, graph_error(4), {"Retry-After": "7"}), WA_ACCEPTED)

    message = await container.dispatcher.send(conversation, hello())

    assert message.status == DeliveryStatus.SENT
    assert sleep.delays == [7.0]


async def test_auth_failure_deactivates_platform(container, graph, whatsapp_conversation):
    graph.add("POST", WA_SEND, (400, graph_error(190, message="Session has expired")))

    with pytest.raises(TokenExpiredError) as exc_info:
        await container.dispatcher.send(whatsapp_conversation, hello())

    record = exc_info.value.message_record
    assert record.status == DeliveryStatus.FAILED
    assert record.failure_code == "190"
    assert record.failure_reason == "Session has expired"

    # no further Graph calls until the tenant reconnects
    with pytest.raises(TokenExpiredError):
        await container.dispatcher.send(whatsapp_conversation, hello())
    assert len(graph.calls("POST", WA_SEND)) == 1


async def test_revoked_access(container, graph, whatsapp_conversation):
    graph.add("POST", WA_SEND, (400, graph_error(190, 460)))

    with pytest.raises(TokenRevokedError):
        await container.dispatcher.send(whatsapp_conversation, hello())


async def test_permanent_reject(container, graph, whatsapp_conversation):
    graph.add("POST", WA_SEND, (400, graph_error(100, message="Invalid parameter")))

    with pytest.raises(PermanentRejectError) as exc_info:
        await container.dispatcher.send(whatsapp_conversation, hello())

    assert exc_info.value.graph_code == 100
    assert exc_info.value.message_record.failure_reason == "Invalid parameter"
    assert len(graph.calls("POST", WA_SEND)) == 1


async def test_outside_window_without_template_sends_nothing(container, graph):
    conversation = await seeded_whatsapp(container, datetime.now(timezone.utc) - timedelta(hours=30))

    with pytest.raises(OutsideMessagingWindowError):
        await container.dispatcher.send(conversation, hello())

    assert graph.requests == []
    history = await container.repositories.messages.list_for_conversation(conversation.id)
    assert [m.direction for m in history] == [MessageDirection.INBOUND]


async def test_outside_window_with_template_sends_template(container, graph):
    conversation = await seeded_whatsapp(container, datetime.now(timezone.utc) - timedelta(hours=30))
    graph.add("POST", WA_SEND, WA_ACCEPTED)

    message = await container.dispatcher.send(conversation, hello(), template=TEMPLATE)

    body = request_json(graph.calls("POST", WA_SEND)[0])
    assert body["type"] == "template"
    assert body["template"]["name"] == "follow_up"
    assert message.template == TEMPLATE
    assert message.content.type == ContentType.TEMPLATE


async def test_platform_window_rejection_falls_back_to_template(container, graph, whatsapp_conversation):
    graph.add("POST", WA_SEND, (400, graph_error(131047)), WA_ACCEPTED)

    message = await container.dispatcher.send(whatsapp_conversation, hello(), template=TEMPLATE)

    first, second = graph.calls("POST", WA_SEND)
    assert request_json(first)["type"] == "text"
    assert request_json(second)["type"] == "template"
    assert message.status == DeliveryStatus.SENT
    assert message.template == TEMPLATE


async def test_template_fallback_gets_full_retry_budget(make_container, graph):
    sleep = RecordingSleep()
    container = await make_container({"OUTBOUND_BACKOFF_BASE_SECONDS": 1}, sleep=sleep)
    conversation = await seeded_whatsapp(container)
    graph.add(
        "POST", WA_SEND,
        (400, graph_error(131047)), (429, graph_error(130429)), (429, graph_error(130429)), WA_ACCEPTED,
    )

    message = await container.dispatcher.send(conversation, hello(), template=TEMPLATE)

    assert message.status == DeliveryStatus.SENT
    assert [request_json(r)["type"] for r in graph.calls("POST", WA_SEND)] == [
        "text", "template", "template", "template"
    ]
    assert sleep.delays == [1, 2]


async def test_platform_window_rejection_without_template(container, graph, whatsapp_conversation):
    graph.add("POST", WA_SEND, (400, graph_error(131047)))

    with pytest.raises(OutsideMessagingWindowError) as exc_info:
        await container.dispatcher.send(whatsapp_conversation, hello())

    assert exc_info.value.message_record.status == DeliveryStatus.FAILED
    assert exc_info.value.message_record.failure_code == "131047"


async def test_connect_failure_is_retried(container, graph, whatsapp_conversation):
    graph.add("POST", WA_SEND, httpx.ConnectError, WA_ACCEPTED)

    message = await container.dispatcher.send(whatsapp_conversation, hello())

    assert message.status == DeliveryStatus.SENT
    assert len(graph.calls("POST", WA_SEND)) == 2


async def test_persistent_connect_failure(container, graph, whatsapp_conversation):
    graph.add("POST", WA_SEND, httpx.ConnectError)

    with pytest.raises(RateLimitedError) as exc_info:
        await container.dispatcher.send(whatsapp_conversation, hello())

    assert len(graph.calls("POST", WA_SEND)) == 3
    assert exc_info.value.message_record.failure_code == "connect_error"


async def test_read_timeout_leaves_message_for_reconciliation(container, graph, whatsapp_conversation):
    graph.add("POST", WA_SEND, httpx.ReadTimeout)

    with pytest.raises(TimeoutUnresolvedError) as exc_info:
        await container.dispatcher.send(whatsapp_conversation, hello())

    record = exc_info.value.message_record
    assert record.status == DeliveryStatus.QUEUED
    assert record.reconciliation_required
    # never retried: the platform may already have delivered it
    assert len(graph.calls("POST", WA_SEND)) == 1


async def test_requires_content_or_template(container, whatsapp_conversation):
    with pytest.raises(ValidationError):
        await container.dispatcher.send(whatsapp_conversation)


async def test_invalid_content_is_rejected_before_persisting(container, graph, facebook_platform):
    conversation = await open_conversation(container, facebook_platform, "u123")

    with pytest.raises(ContentValidationError):
        await container.dispatcher.send(conversation, MessageContent.from_text("x" * 2001))

    assert graph.calls("POST", "/me/messages") == []
    assert await container.repositories.messages.list_for_conversation(conversation.id) == []
