"""
Transient event models flowing through the ingestion and fan-out pipeline.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field

from inbox_hub.models.entities import MessageContent
from inbox_hub.models.types import (
    PlatformType, RawEventKind, DeliveryStatus, RealtimeEventType, TenantId, ConversationId
)
from inbox_hub.utils.date_utils import now_utc


class RawEvent(BaseModel):
    """
    One platform event split out of a webhook envelope.

    ``payload`` holds the platform-specific fragment (the Messenger
    ``messaging`` item, the WhatsApp ``messages[]`` or ``statuses[]`` item,
    or the Instagram ``changes[]`` item) for the normalizer to interpret.
    """

    kind: RawEventKind
    platform_type: PlatformType
    recipient_external_id: str = Field(..., min_length=1)
    sender_external_id: Optional[str] = None
    platform_message_id: Optional[str] = None
    occurred_at: Optional[datetime] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    # Customer profile carried by the envelope (WhatsApp contacts[])
    profile_name: Optional[str] = None

    # Status callbacks
    status: Optional[DeliveryStatus] = None
    status_message_ids: List[str] = Field(default_factory=list)
    watermark: Optional[datetime] = None
    errors: List[Dict[str, Any]] = Field(default_factory=list)


class NormalizedInbound(BaseModel):
    """A platform message event converted to the canonical shape."""

    platform_id: str
    external_customer_id: str
    conversation_key: str
    platform_message_id: str
    content: MessageContent
    occurred_at: datetime
    profile_name: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class RealtimeEvent(BaseModel):
    """Event pushed to every agent session subscribed to a tenant."""

    type: RealtimeEventType
    tenant_id: TenantId
    conversation_id: Optional[ConversationId] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    published_at: datetime = Field(default_factory=now_utc)
