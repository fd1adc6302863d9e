"""
Common type definitions, enums, and type aliases used across the application.
Centralized type definitions to ensure consistency.
"""

from enum import Enum


# ============================================================================
# ENUMS FOR TYPE SAFETY
# ============================================================================

class PlatformType(str, Enum):
    """Connected channel types. The set is closed."""
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    WHATSAPP = "whatsapp"


class MessageDirection(str, Enum):
    """Which side authored a message"""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class ContentType(str, Enum):
    """Canonical message content types"""
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"
    LOCATION = "location"
    CONTACT = "contact"
    INTERACTIVE = "interactive"
    REACTION = "reaction"
    COMMENT = "comment"
    TEMPLATE = "template"
    UNSUPPORTED = "unsupported"


class ConversationStatus(str, Enum):
    """Conversation lifecycle states"""
    OPEN = "open"
    PENDING = "pending"
    CLOSED = "closed"


class DeliveryStatus(str, Enum):
    """Message delivery states"""
    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        """Position along queued < sent < delivered < read; failed is terminal."""
        return _DELIVERY_RANK[self]

    def can_advance_to(self, target: "DeliveryStatus") -> bool:
        """Statuses only move forward; nothing leaves FAILED or READ."""
        if self in (DeliveryStatus.FAILED, DeliveryStatus.READ):
            return False
        if target == DeliveryStatus.FAILED:
            return True
        return target.rank > self.rank


_DELIVERY_RANK = {
    DeliveryStatus.QUEUED: 0,
    DeliveryStatus.SENT: 1,
    DeliveryStatus.DELIVERED: 2,
    DeliveryStatus.READ: 3,
    DeliveryStatus.FAILED: 4,
}


class RawEventKind(str, Enum):
    """Kinds of platform events extracted from a webhook envelope"""
    MESSAGE = "message"
    STATUS = "status"


class SendOutcome(str, Enum):
    """Classified result of a platform send call"""
    ACCEPTED = "accepted"
    RATE_LIMITED = "rate_limited"
    AUTH_FAILED = "auth_failed"
    PERMANENT_REJECT = "permanent_reject"
    WINDOW_EXPIRED = "window_expired"


class SendMode(str, Enum):
    """How an outbound message is delivered"""
    FREE_FORM = "free_form"
    TEMPLATE = "template"


class RealtimeEventType(str, Enum):
    """Events pushed to connected agent sessions"""
    CONVERSATION_UPDATED = "conversation.updated"
    MESSAGE_STATUS = "message.status"
    PLATFORM_DISCONNECTED = "platform.disconnected"


# ============================================================================
# TYPE ALIASES FOR CLARITY
# ============================================================================

TenantId = str
PlatformId = str
CustomerId = str
ConversationId = str
MessageId = str
ExternalId = str
