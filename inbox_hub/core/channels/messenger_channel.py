"""
Facebook Messenger platform integration via Graph API.

Handles page-scoped user conversations: ``entry[].messaging[]`` webhook
items (messages, reactions, delivery and read receipts) and sends through
the Send API. Instagram Direct shares the same envelope shape and reuses
this parsing.
"""

from typing import Dict, Any, Optional, List, Tuple

from inbox_hub.config.constants import (
    ENVELOPE_OBJECT_PAGE, PROFILE_FIELDS_USER, PROFILE_FIELDS_PAGE
)
from inbox_hub.core.channels.base_channel import BaseChannel
from inbox_hub.core.exceptions import ContentValidationError, GraphTransportError
from inbox_hub.models.entities import Platform, MessageContent, TemplateRef
from inbox_hub.models.events import RawEvent
from inbox_hub.models.types import PlatformType, RawEventKind, DeliveryStatus, ContentType
from inbox_hub.utils.date_utils import coerce_timestamp
from inbox_hub.utils.id_generator import generate_deterministic_id

MAX_TEXT_LENGTH = 2000

_ATTACHMENT_TYPES = {
    ContentType.IMAGE: "image",
    ContentType.VIDEO: "video",
    ContentType.AUDIO: "audio",
    ContentType.DOCUMENT: "file",
}


class MessengerPlatformChannel(BaseChannel):
    """Shared behaviour of the Messenger-shaped channels (Facebook, Instagram)."""

    def _parse_entry(self, entry: Dict[str, Any]) -> List[RawEvent]:
        events: List[RawEvent] = []
        for item in entry.get("messaging") or []:
            if not isinstance(item, dict):
                continue
            event = self._parse_messaging_item(entry, item)
            if event is not None:
                events.append(event)
        return events

    def _parse_messaging_item(self, entry: Dict[str, Any], item: Dict[str, Any]) -> Optional[RawEvent]:
        sender_id = (item.get("sender") or {}).get("id")
        recipient_id = (item.get("recipient") or {}).get("id") or entry.get("id")
        occurred_at = coerce_timestamp(item.get("timestamp"), millis=True)

        if not recipient_id:
            raise self._malformed("messaging item without recipient")

        if "message" in item:
            message = item.get("message") or {}
            if message.get("is_echo"):
                # copies of our own page sends, already recorded by the dispatcher
                self.logger.debug("Skipping echo event", mid=message.get("mid"))
                return None
            if message.get("is_deleted"):
                return None
            if not message.get("mid") or not sender_id:
                raise self._malformed("message event without mid or sender id")
            return RawEvent(
                kind=RawEventKind.MESSAGE,
                platform_type=self.platform_type,
                recipient_external_id=str(recipient_id),
                sender_external_id=str(sender_id),
                platform_message_id=message["mid"],
                occurred_at=occurred_at,
                payload=item,
            )

        if "reaction" in item:
            reaction = item.get("reaction") or {}
            target_mid = reaction.get("mid")
            if not target_mid or not sender_id:
                raise self._malformed("reaction event without target mid or sender id")
            # reactions carry no id of their own
            reaction_id = generate_deterministic_id(
                target_mid,
                str(sender_id),
                str(reaction.get("action", "react")),
                str(reaction.get("emoji", "")),
                str(item.get("timestamp", "")),
                prefix="reaction."
            )
            return RawEvent(
                kind=RawEventKind.MESSAGE,
                platform_type=self.platform_type,
                recipient_external_id=str(recipient_id),
                sender_external_id=str(sender_id),
                platform_message_id=reaction_id,
                occurred_at=occurred_at,
                payload=item,
            )

        if "delivery" in item or "read" in item:
            receipt = item.get("delivery") or item.get("read") or {}
            status = DeliveryStatus.DELIVERED if "delivery" in item else DeliveryStatus.READ
            return RawEvent(
                kind=RawEventKind.STATUS,
                platform_type=self.platform_type,
                recipient_external_id=str(recipient_id),
                sender_external_id=str(sender_id) if sender_id else None,
                occurred_at=occurred_at,
                status=status,
                status_message_ids=[mid for mid in receipt.get("mids") or [] if mid],
                watermark=coerce_timestamp(receipt.get("watermark"), millis=True),
                payload=item,
            )

        self.logger.debug("Ignoring messaging event", keys=sorted(item.keys()))
        return None

    def validate_recipient(self, recipient: str) -> bool:
        """Page-scoped and Instagram-scoped ids are opaque tokens without whitespace."""
        return bool(recipient) and len(recipient) <= 64 and not any(ch.isspace() for ch in recipient)

    def build_send_request(
            self,
            platform: Platform,
            recipient: str,
            content: Optional[MessageContent],
            template: Optional[TemplateRef] = None
    ) -> Tuple[str, Dict[str, Any]]:
        if content is None:
            raise ContentValidationError(self.platform_type.value, "content", "message content is required")

        if not self.validate_recipient(recipient):
            raise ContentValidationError(self.platform_type.value, "recipient", f"invalid recipient id {recipient!r}")

        return "/me/messages", {
            "recipient": {"id": recipient},
            "messaging_type": "RESPONSE",
            "message": self._format_message(content),
        }

    def _format_message(self, content: MessageContent) -> Dict[str, Any]:
        if content.type == ContentType.TEXT:
            if not content.text:
                raise ContentValidationError(self.platform_type.value, "text", "text content is required")
            if len(content.text) > MAX_TEXT_LENGTH:
                raise ContentValidationError(
                    self.platform_type.value, "text", f"text exceeds {MAX_TEXT_LENGTH} characters"
                )
            return {"text": content.text}

        attachment_type = _ATTACHMENT_TYPES.get(content.type)
        if attachment_type is None:
            raise ContentValidationError(
                self.platform_type.value, "type", f"unsupported content type {content.type.value}"
            )
        if not content.media_url:
            raise ContentValidationError(self.platform_type.value, "media_url", "media url is required")
        return {
            "attachment": {
                "type": attachment_type,
                "payload": {"url": content.media_url, "is_reusable": True},
            }
        }

    def extract_message_id(self, data: Dict[str, Any]) -> Optional[str]:
        return data.get("message_id")


class FacebookMessengerChannel(MessengerPlatformChannel):
    """Facebook Page Messenger."""

    @property
    def platform_type(self) -> PlatformType:
        return PlatformType.FACEBOOK

    @property
    def envelope_object(self) -> str:
        return ENVELOPE_OBJECT_PAGE

    def account_profile_request(self, platform: Platform) -> Tuple[str, Dict[str, Any]]:
        return f"/{platform.external_id}", {"fields": PROFILE_FIELDS_PAGE}

    async def fetch_user_profile(self, platform: Platform, external_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a page-scoped user's public profile.

        Best effort: any non-success response or transport failure yields None.
        """
        try:
            response = await self.graph.get(
                f"/{external_id}", platform.access_token, params={"fields": PROFILE_FIELDS_USER}
            )
        except GraphTransportError as e:
            self.logger.debug("Profile fetch failed", platform_id=platform.id, error=e.error_code)
            return None

        if not response.ok:
            self.logger.debug(
                "Profile fetch rejected",
                platform_id=platform.id,
                status_code=response.status_code,
                error_code=response.error_code
            )
            return None
        return _profile_from_graph(response.data)


def _profile_from_graph(data: Dict[str, Any]) -> Dict[str, Any]:
    name = data.get("name")
    if not name:
        parts = [data.get("first_name"), data.get("last_name")]
        name = " ".join(part for part in parts if part) or None
    if not name:
        name = data.get("username")
    return {
        "name": name,
        "username": data.get("username"),
        "profile_pic": data.get("profile_pic"),
    }
