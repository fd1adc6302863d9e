"""
Domain models: enums, persistent entities and pipeline events.
"""

from inbox_hub.models.types import (
    PlatformType,
    MessageDirection,
    ContentType,
    ConversationStatus,
    DeliveryStatus,
    RawEventKind,
    SendOutcome,
    SendMode,
    RealtimeEventType,
)
from inbox_hub.models.entities import (
    Platform,
    Customer,
    Conversation,
    Message,
    MessageContent,
    TemplateRef,
)
from inbox_hub.models.events import RawEvent, NormalizedInbound, RealtimeEvent

__all__ = [
    "PlatformType",
    "MessageDirection",
    "ContentType",
    "ConversationStatus",
    "DeliveryStatus",
    "RawEventKind",
    "SendOutcome",
    "SendMode",
    "RealtimeEventType",
    "Platform",
    "Customer",
    "Conversation",
    "Message",
    "MessageContent",
    "TemplateRef",
    "RawEvent",
    "NormalizedInbound",
    "RealtimeEvent",
]
