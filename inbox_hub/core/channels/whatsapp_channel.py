"""
WhatsApp Business Cloud API integration.

Webhooks arrive as ``entry[].changes[].value`` blocks addressed to a
phone number id; each block may carry ``messages`` and ``statuses``.
Free-form sends are limited to the customer-service window; outside it
only approved templates may be sent.
"""

from datetime import timedelta
from typing import Dict, Any, Optional, List, Tuple

import phonenumbers

from inbox_hub.config.constants import (
    ENVELOPE_OBJECT_WHATSAPP, PROFILE_FIELDS_WHATSAPP, WHATSAPP_MESSAGING_PRODUCT
)
from inbox_hub.core.channels.base_channel import BaseChannel
from inbox_hub.core.exceptions import ContentValidationError
from inbox_hub.core.graph_client import GraphClient
from inbox_hub.models.entities import Platform, MessageContent, TemplateRef
from inbox_hub.models.events import RawEvent
from inbox_hub.models.types import PlatformType, RawEventKind, DeliveryStatus, ContentType
from inbox_hub.utils.date_utils import coerce_timestamp

MAX_TEXT_LENGTH = 4096
MAX_CAPTION_LENGTH = 1024

_STATUS_MAP = {
    "sent": DeliveryStatus.SENT,
    "delivered": DeliveryStatus.DELIVERED,
    "read": DeliveryStatus.READ,
    "failed": DeliveryStatus.FAILED,
}

_MEDIA_TYPES = {
    ContentType.IMAGE: "image",
    ContentType.VIDEO: "video",
    ContentType.AUDIO: "audio",
    ContentType.DOCUMENT: "document",
    ContentType.STICKER: "sticker",
}


class WhatsAppChannel(BaseChannel):
    """WhatsApp Business Cloud API channel."""

    def __init__(self, graph: GraphClient, session_window_hours: int = 24):
        super().__init__(graph)
        self.session_window = timedelta(hours=session_window_hours)

    @property
    def platform_type(self) -> PlatformType:
        return PlatformType.WHATSAPP

    @property
    def envelope_object(self) -> str:
        return ENVELOPE_OBJECT_WHATSAPP

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _parse_entry(self, entry: Dict[str, Any]) -> List[RawEvent]:
        events: List[RawEvent] = []
        for change in entry.get("changes") or []:
            if not isinstance(change, dict) or change.get("field") != "messages":
                continue
            events.extend(self._parse_value(change.get("value") or {}))
        return events

    def _parse_value(self, value: Dict[str, Any]) -> List[RawEvent]:
        messages = value.get("messages") or []
        statuses = value.get("statuses") or []
        if not messages and not statuses:
            return []

        phone_number_id = (value.get("metadata") or {}).get("phone_number_id")
        if not phone_number_id:
            raise self._malformed("change value without metadata.phone_number_id")

        names = {
            contact.get("wa_id"): (contact.get("profile") or {}).get("name")
            for contact in value.get("contacts") or []
            if isinstance(contact, dict)
        }

        events: List[RawEvent] = []
        for message in messages:
            if not isinstance(message, dict):
                continue
            if not message.get("id") or not message.get("from"):
                raise self._malformed("message without id or sender")
            events.append(RawEvent(
                kind=RawEventKind.MESSAGE,
                platform_type=self.platform_type,
                recipient_external_id=str(phone_number_id),
                sender_external_id=str(message["from"]),
                platform_message_id=message["id"],
                occurred_at=coerce_timestamp(message.get("timestamp")),
                profile_name=names.get(message["from"]),
                payload=message,
            ))

        for status in statuses:
            if not isinstance(status, dict):
                continue
            mapped = _STATUS_MAP.get(status.get("status"))
            if mapped is None:
                self.logger.debug("Ignoring status", status=status.get("status"))
                continue
            if not status.get("id"):
                raise self._malformed("status without message id")
            events.append(RawEvent(
                kind=RawEventKind.STATUS,
                platform_type=self.platform_type,
                recipient_external_id=str(phone_number_id),
                sender_external_id=status.get("recipient_id"),
                occurred_at=coerce_timestamp(status.get("timestamp")),
                status=mapped,
                status_message_ids=[status["id"]],
                errors=[error for error in status.get("errors") or [] if isinstance(error, dict)],
                payload=status,
            ))

        return events

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def validate_recipient(self, recipient: str) -> bool:
        """WhatsApp ids are international numbers without the leading +."""
        candidate = recipient if recipient.startswith("+") else f"+{recipient}"
        try:
            parsed = phonenumbers.parse(candidate, None)
        except phonenumbers.NumberParseException:
            return False
        return phonenumbers.is_possible_number(parsed)

    def build_send_request(
            self,
            platform: Platform,
            recipient: str,
            content: Optional[MessageContent],
            template: Optional[TemplateRef] = None
    ) -> Tuple[str, Dict[str, Any]]:
        if not self.validate_recipient(recipient):
            raise ContentValidationError(self.platform_type.value, "recipient", f"invalid phone number {recipient!r}")

        body: Dict[str, Any] = {
            "messaging_product": WHATSAPP_MESSAGING_PRODUCT,
            "recipient_type": "individual",
            "to": recipient.lstrip("+"),
        }

        if template is not None:
            body["type"] = "template"
            body["template"] = {
                "name": template.name,
                "language": {"code": template.language_code},
            }
            if template.components:
                body["template"]["components"] = template.components
        elif content is not None:
            body.update(self._format_message(content))
        else:
            raise ContentValidationError(self.platform_type.value, "content", "content or template is required")

        return f"/{platform.external_id}/messages", body

    def _format_message(self, content: MessageContent) -> Dict[str, Any]:
        if content.type == ContentType.TEXT:
            if not content.text:
                raise ContentValidationError(self.platform_type.value, "text", "text content is required")
            if len(content.text) > MAX_TEXT_LENGTH:
                raise ContentValidationError(
                    self.platform_type.value, "text", f"text exceeds {MAX_TEXT_LENGTH} characters"
                )
            return {"type": "text", "text": {"preview_url": False, "body": content.text}}

        if content.type == ContentType.LOCATION:
            latitude = content.metadata.get("latitude")
            longitude = content.metadata.get("longitude")
            if latitude is None or longitude is None:
                raise ContentValidationError(self.platform_type.value, "location", "latitude and longitude required")
            location = {"latitude": latitude, "longitude": longitude}
            for key in ("name", "address"):
                if content.metadata.get(key):
                    location[key] = content.metadata[key]
            return {"type": "location", "location": location}

        media_type = _MEDIA_TYPES.get(content.type)
        if media_type is None:
            raise ContentValidationError(
                self.platform_type.value, "type", f"unsupported content type {content.type.value}"
            )

        if content.media_id:
            media: Dict[str, Any] = {"id": content.media_id}
        elif content.media_url:
            media = {"link": content.media_url}
        else:
            raise ContentValidationError(self.platform_type.value, "media", "media url or id is required")

        if content.text and media_type in ("image", "video", "document"):
            media["caption"] = content.text[:MAX_CAPTION_LENGTH]
        if media_type == "document" and content.metadata.get("filename"):
            media["filename"] = content.metadata["filename"]

        return {"type": media_type, media_type: media}

    def extract_message_id(self, data: Dict[str, Any]) -> Optional[str]:
        messages = data.get("messages") or []
        if messages and isinstance(messages[0], dict):
            return messages[0].get("id")
        return None

    def account_profile_request(self, platform: Platform) -> Tuple[str, Dict[str, Any]]:
        return f"/{platform.external_id}", {"fields": PROFILE_FIELDS_WHATSAPP}
