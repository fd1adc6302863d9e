"""
Message normalizer for consistent data format across all channels.

Converts platform-specific message events into the canonical
NormalizedInbound shape and drops events that were already recorded.
"""

from datetime import datetime
from typing import Dict, Any, Callable, Optional

import structlog

from inbox_hub.config.constants import MAX_MESSAGE_TEXT_LENGTH
from inbox_hub.core.exceptions import DuplicateEventError, MalformedPayloadError
from inbox_hub.models.entities import Platform, MessageContent
from inbox_hub.models.events import RawEvent, NormalizedInbound
from inbox_hub.models.types import PlatformType, RawEventKind, ContentType
from inbox_hub.repositories.base_repository import MessageRepository
from inbox_hub.utils.date_utils import now_utc

_MESSENGER_ATTACHMENTS = {
    "image": (ContentType.IMAGE, "[Image]"),
    "video": (ContentType.VIDEO, "[Video]"),
    "audio": (ContentType.AUDIO, "[Audio]"),
    "file": (ContentType.DOCUMENT, "[Document]"),
    "location": (ContentType.LOCATION, "[Location]"),
}

_WHATSAPP_MEDIA = {
    "image": (ContentType.IMAGE, "[Image]"),
    "video": (ContentType.VIDEO, "[Video]"),
    "audio": (ContentType.AUDIO, "[Audio]"),
    "voice": (ContentType.AUDIO, "[Audio]"),
    "document": (ContentType.DOCUMENT, "[Document]"),
    "sticker": (ContentType.STICKER, "[Sticker]"),
}


def conversation_key(platform_id: str, external_customer_id: str) -> str:
    """Key of the conversation a customer's messages belong to."""
    return f"{platform_id}:{external_customer_id}"


class MessageNormalizer:
    """Normalizes platform message events for consistent processing."""

    def __init__(self, messages: MessageRepository, clock: Callable[[], datetime] = now_utc):
        self.messages = messages
        self.clock = clock
        self.logger = structlog.get_logger(self.__class__.__name__)

    async def normalize(self, event: RawEvent, platform: Platform) -> NormalizedInbound:
        """
        Convert a message event to the canonical shape.

        Args:
            event: Message event extracted from a webhook
            platform: Active platform the event is addressed to

        Returns:
            NormalizedInbound ready for identity resolution and persistence

        Raises:
            DuplicateEventError: If the platform message id was already recorded
            MalformedPayloadError: If the event is not a message event
        """
        if event.kind != RawEventKind.MESSAGE or not event.platform_message_id or not event.sender_external_id:
            raise MalformedPayloadError(event.platform_type.value, "not a message event")

        existing = await self.messages.find_by_platform_message_id(platform.id, event.platform_message_id)
        if existing is not None:
            raise DuplicateEventError(platform.id, event.platform_message_id)

        content = self.extract_content(event)
        if content.text and len(content.text) > MAX_MESSAGE_TEXT_LENGTH:
            content.text = content.text[:MAX_MESSAGE_TEXT_LENGTH]

        return NormalizedInbound(
            platform_id=platform.id,
            external_customer_id=event.sender_external_id,
            conversation_key=conversation_key(platform.id, event.sender_external_id),
            platform_message_id=event.platform_message_id,
            content=content,
            occurred_at=event.occurred_at or self.clock(),
            profile_name=event.profile_name,
            raw=event.payload,
        )

    def extract_content(self, event: RawEvent) -> MessageContent:
        """Dispatch content extraction on the event's platform."""
        if event.platform_type == PlatformType.WHATSAPP:
            return self._extract_whatsapp_content(event.payload)
        if event.platform_type == PlatformType.INSTAGRAM and "field" in event.payload:
            return self._extract_comment_content(event.payload)
        return self._extract_messenger_content(event.payload)

    def _extract_messenger_content(self, item: Dict[str, Any]) -> MessageContent:
        if "reaction" in item:
            reaction = item.get("reaction") or {}
            return MessageContent(
                type=ContentType.REACTION,
                text=reaction.get("emoji") or f"[{reaction.get('reaction', 'reaction')}]",
                metadata={
                    "reacted_to": reaction.get("mid"),
                    "action": reaction.get("action", "react"),
                    "reaction": reaction.get("reaction"),
                },
            )

        message = item.get("message") or {}
        text = message.get("text")
        metadata: Dict[str, Any] = {}
        if message.get("quick_reply"):
            metadata["quick_reply_payload"] = message["quick_reply"].get("payload")
        if message.get("reply_to"):
            metadata["reply_to"] = message["reply_to"].get("mid") or message["reply_to"].get("story")

        attachments = message.get("attachments") or []
        if not attachments:
            return MessageContent(type=ContentType.TEXT, text=text or "", metadata=metadata)

        attachment = attachments[0] if isinstance(attachments[0], dict) else {}
        payload = attachment.get("payload") or {}
        if len(attachments) > 1:
            metadata["attachment_count"] = len(attachments)

        if payload.get("sticker_id"):
            return MessageContent(
                type=ContentType.STICKER,
                text=text or "[Sticker]",
                media_url=payload.get("url"),
                metadata={**metadata, "sticker_id": payload["sticker_id"]},
            )

        content_type, placeholder = _MESSENGER_ATTACHMENTS.get(
            attachment.get("type"), (ContentType.UNSUPPORTED, f"[{attachment.get('type', 'attachment')}]")
        )
        if content_type == ContentType.LOCATION:
            coordinates = payload.get("coordinates") or {}
            metadata.update({"latitude": coordinates.get("lat"), "longitude": coordinates.get("long")})

        return MessageContent(
            type=content_type,
            text=text or placeholder,
            media_url=payload.get("url"),
            metadata=metadata,
        )

    def _extract_comment_content(self, change: Dict[str, Any]) -> MessageContent:
        value = change.get("value") or {}
        media = value.get("media") or {}
        return MessageContent(
            type=ContentType.COMMENT,
            text=value.get("text") or "",
            metadata={
                "media_id": media.get("id"),
                "media_product_type": media.get("media_product_type"),
                "parent_id": value.get("parent_id"),
                "username": (value.get("from") or {}).get("username"),
            },
        )

    def _extract_whatsapp_content(self, message: Dict[str, Any]) -> MessageContent:
        message_type = message.get("type", "text")
        metadata: Dict[str, Any] = {}
        if (message.get("context") or {}).get("id"):
            metadata["reply_to"] = message["context"]["id"]

        if message_type == "text":
            body = (message.get("text") or {}).get("body", "")
            return MessageContent(type=ContentType.TEXT, text=body, metadata=metadata)

        if message_type in _WHATSAPP_MEDIA:
            content_type, placeholder = _WHATSAPP_MEDIA[message_type]
            media = message.get(message_type) or {}
            if media.get("filename"):
                metadata["filename"] = media["filename"]
            text = media.get("caption") or (media.get("filename") if message_type == "document" else None)
            return MessageContent(
                type=content_type,
                text=text or placeholder,
                media_id=media.get("id"),
                mime_type=media.get("mime_type"),
                metadata=metadata,
            )

        if message_type == "location":
            location = message.get("location") or {}
            latitude, longitude = location.get("latitude"), location.get("longitude")
            metadata.update({
                "latitude": latitude,
                "longitude": longitude,
                "name": location.get("name"),
                "address": location.get("address"),
            })
            return MessageContent(
                type=ContentType.LOCATION,
                text=f"[Location: {latitude}, {longitude}]",
                metadata=metadata,
            )

        if message_type == "contacts":
            metadata["contacts"] = message.get("contacts") or []
            return MessageContent(type=ContentType.CONTACT, text="[Contact]", metadata=metadata)

        if message_type in ("interactive", "button"):
            interactive = message.get("interactive") or {}
            reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
            button = message.get("button") or {}
            metadata["reply_id"] = reply.get("id") or button.get("payload")
            return MessageContent(
                type=ContentType.INTERACTIVE,
                text=reply.get("title") or button.get("text") or "[Interactive]",
                metadata=metadata,
            )

        if message_type == "reaction":
            reaction = message.get("reaction") or {}
            metadata["reacted_to"] = reaction.get("message_id")
            return MessageContent(
                type=ContentType.REACTION,
                text=reaction.get("emoji") or "[Reaction removed]",
                metadata=metadata,
            )

        self.logger.debug("Unsupported WhatsApp message type", message_type=message_type)
        return MessageContent(type=ContentType.UNSUPPORTED, text=f"[{message_type}]", metadata=metadata)
