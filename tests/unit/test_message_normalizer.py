from datetime import datetime, timezone

import pytest

from inbox_hub.core.exceptions import DuplicateEventError
from inbox_hub.core.normalizers.message_normalizer import MessageNormalizer, conversation_key
from inbox_hub.models.entities import Message, MessageContent, Platform
from inbox_hub.models.events import RawEvent
from inbox_hub.models.types import ContentType, MessageDirection, PlatformType, RawEventKind
from inbox_hub.repositories.memory_repository import InMemoryMessageRepository

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def messages():
    return InMemoryMessageRepository()


@pytest.fixture
def normalizer(messages):
    return MessageNormalizer(messages, clock=lambda: FIXED_NOW)


@pytest.fixture
def platform():
    return Platform(tenant_id="tenant-a", type=PlatformType.FACEBOOK, external_id="1001", access_token="t")


def messenger_event(payload, mid="m_1", occurred_at=None):
    return RawEvent(
        kind=RawEventKind.MESSAGE,
        platform_type=PlatformType.FACEBOOK,
        recipient_external_id="1001",
        sender_external_id="u123",
        platform_message_id=mid,
        occurred_at=occurred_at,
        payload=payload,
    )


def whatsapp_event(message):
    return RawEvent(
        kind=RawEventKind.MESSAGE,
        platform_type=PlatformType.WHATSAPP,
        recipient_external_id="2002",
        sender_external_id="15551234567",
        platform_message_id=message["id"],
        payload=message,
    )


async def test_text_message(normalizer, platform):
    occurred = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    inbound = await normalizer.normalize(
        messenger_event({"message": {"mid": "m_1", "text": "hello"}}, occurred_at=occurred), platform
    )

    assert inbound.content.type == ContentType.TEXT
    assert inbound.content.text == "hello"
    assert inbound.occurred_at == occurred
    assert inbound.conversation_key == conversation_key(platform.id, "u123")


async def test_missing_timestamp_falls_back_to_clock(normalizer, platform):
    inbound = await normalizer.normalize(messenger_event({"message": {"mid": "m_1", "text": "x"}}), platform)
    assert inbound.occurred_at == FIXED_NOW


async def test_recorded_event_is_duplicate(normalizer, messages, platform):
    await messages.insert(Message(
        tenant_id="tenant-a",
        platform_id=platform.id,
        conversation_id="c1",
        direction=MessageDirection.INBOUND,
        platform_message_id="m_1",
        content=MessageContent.from_text("hello"),
    ))

    with pytest.raises(DuplicateEventError):
        await normalizer.normalize(messenger_event({"message": {"mid": "m_1", "text": "hello"}}), platform)


async def test_messenger_image_attachment(normalizer, platform):
    inbound = await normalizer.normalize(messenger_event({"message": {
        "mid": "m_1",
        "attachments": [{"type": "image", "payload": {"url": "https://cdn.test/a.jpg"}}],
    }}), platform)

    assert inbound.content.type == ContentType.IMAGE
    assert inbound.content.text == "[Image]"
    assert inbound.content.media_url == "https://cdn.test/a.jpg"


async def test_messenger_sticker(normalizer, platform):
    inbound = await normalizer.normalize(messenger_event({"message": {
        "mid": "m_1",
        "attachments": [{"type": "image", "payload": {"url": "https://cdn.test/s.png", "sticker_id": 369239263222822}}],
    }}), platform)

    assert inbound.content.type == ContentType.STICKER
    assert inbound.content.metadata["sticker_id"] == 369239263222822


async def test_messenger_reaction(normalizer, platform):
    inbound = await normalizer.normalize(messenger_event(
        {"reaction": {"mid": "m_0", "action": "react", "emoji": "❤", "reaction": "love"}},
        mid="reaction.abc"
    ), platform)

    assert inbound.content.type == ContentType.REACTION
    assert inbound.content.text == "❤"
    assert inbound.content.metadata["reacted_to"] == "m_0"


async def test_whatsapp_document_uses_filename(normalizer, platform):
    inbound = await normalizer.normalize(whatsapp_event({
        "id": "wamid.1",
        "type": "document",
        "document": {"id": "media-9", "filename": "invoice.pdf", "mime_type": "application/pdf"},
    }), platform)

    assert inbound.content.type == ContentType.DOCUMENT
    assert inbound.content.text == "invoice.pdf"
    assert inbound.content.media_id == "media-9"
    assert inbound.content.mime_type == "application/pdf"


async def test_whatsapp_location(normalizer, platform):
    inbound = await normalizer.normalize(whatsapp_event({
        "id": "wamid.2",
        "type": "location",
        "location": {"latitude": 52.52, "longitude": 13.405, "name": "Office"},
    }), platform)

    assert inbound.content.type == ContentType.LOCATION
    assert inbound.content.metadata["latitude"] == 52.52
    assert inbound.content.metadata["name"] == "Office"


async def test_whatsapp_button_reply(normalizer, platform):
    inbound = await normalizer.normalize(whatsapp_event({
        "id": "wamid.3",
        "type": "interactive",
        "interactive": {"type": "button_reply", "button_reply": {"id": "yes", "title": "Yes please"}},
    }), platform)

    assert inbound.content.type == ContentType.INTERACTIVE
    assert inbound.content.text == "Yes please"
    assert inbound.content.metadata["reply_id"] == "yes"


async def test_whatsapp_unknown_type_is_unsupported(normalizer, platform):
    inbound = await normalizer.normalize(whatsapp_event({"id": "wamid.4", "type": "order"}), platform)

    assert inbound.content.type == ContentType.UNSUPPORTED
    assert inbound.content.text == "[order]"


async def test_instagram_comment(normalizer, platform):
    event = RawEvent(
        kind=RawEventKind.MESSAGE,
        platform_type=PlatformType.INSTAGRAM,
        recipient_external_id="3003",
        sender_external_id="ig_user",
        platform_message_id="c_1",
        payload={
            "field": "comments",
            "value": {"id": "c_1", "text": "nice", "from": {"id": "ig_user", "username": "ann.ig"},
                      "media": {"id": "media-1"}},
        },
    )
    inbound = await normalizer.normalize(event, platform)

    assert inbound.content.type == ContentType.COMMENT
    assert inbound.content.text == "nice"
    assert inbound.content.metadata["media_id"] == "media-1"
