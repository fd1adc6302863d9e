"""
Persistent entities: Platform, Customer, Conversation and Message.

Every entity carries its tenant id; repositories and services never hand
an entity to a caller acting for another tenant.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, ConfigDict, Field

from inbox_hub.models.types import (
    PlatformType, ConversationStatus, DeliveryStatus, MessageDirection,
    ContentType, TenantId, PlatformId, CustomerId, ConversationId, MessageId, ExternalId
)
from inbox_hub.utils.date_utils import now_utc
from inbox_hub.utils.id_generator import generate_id


class HubModel(BaseModel):
    """Base model shared by all entities."""

    model_config = ConfigDict(validate_assignment=True, populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        """Serialize for storage; ``id`` is stored as ``_id``."""
        data = self.model_dump(mode="python")
        data["_id"] = data.pop("id")
        return data

    @classmethod
    def from_document(cls, document: Dict[str, Any]):
        """Build an instance from a stored document."""
        data = dict(document)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)


class Platform(HubModel):
    """A tenant's connection to one Meta asset (page, IG account or WA number)."""

    id: PlatformId = Field(default_factory=generate_id)
    tenant_id: TenantId
    type: PlatformType
    external_id: ExternalId = Field(..., min_length=1, description="Page id, IG account id or WA phone number id")
    access_token: str = Field(default="", repr=False)
    credentials: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)

    @property
    def deactivation_reason(self) -> Optional[str]:
        return self.credentials.get("deactivation_reason")


class Customer(HubModel):
    """An end user on a platform, unique per (platform, external id)."""

    id: CustomerId = Field(default_factory=generate_id)
    tenant_id: TenantId
    platform_id: PlatformId
    external_id: ExternalId = Field(..., min_length=1)
    display_name: Optional[str] = None
    profile: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class Conversation(HubModel):
    """The thread between a tenant's platform and one customer."""

    id: ConversationId = Field(default_factory=generate_id)
    tenant_id: TenantId
    platform_id: PlatformId
    customer_id: CustomerId
    status: ConversationStatus = ConversationStatus.OPEN
    last_activity_at: Optional[datetime] = None
    last_inbound_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class MessageContent(BaseModel):
    """Canonical message body."""

    type: ContentType = ContentType.TEXT
    text: Optional[str] = None
    media_url: Optional[str] = None
    media_id: Optional[str] = None
    mime_type: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_text(cls, text: str) -> "MessageContent":
        return cls(type=ContentType.TEXT, text=text)


class TemplateRef(BaseModel):
    """A pre-approved WhatsApp message template."""

    name: str = Field(..., min_length=1, max_length=512)
    language_code: str = Field(default="en_US", min_length=2, max_length=15)
    components: List[Dict[str, Any]] = Field(default_factory=list)


class Message(HubModel):
    """A single inbound or outbound message."""

    id: MessageId = Field(default_factory=generate_id)
    tenant_id: TenantId
    platform_id: PlatformId
    conversation_id: ConversationId
    direction: MessageDirection
    platform_message_id: Optional[str] = None
    content: MessageContent
    template: Optional[TemplateRef] = None
    status: DeliveryStatus = DeliveryStatus.QUEUED
    failure_code: Optional[str] = None
    failure_reason: Optional[str] = None
    reconciliation_required: bool = False
    occurred_at: datetime = Field(default_factory=now_utc)
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)
    raw_payload: Optional[Dict[str, Any]] = None
