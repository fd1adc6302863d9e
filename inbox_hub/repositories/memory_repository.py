"""
In-memory repositories.

Used by tests and single-process local runs. Each check-and-insert runs
without an ``await`` in between, so on a single event loop the uniqueness
keys are enforced atomically, mirroring the unique indexes of the
MongoDB store. Entities are copied on the way in and out so callers never
share mutable state with the store.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any, Tuple

from inbox_hub.models.entities import Platform, Customer, Conversation, Message
from inbox_hub.models.types import (
    PlatformType, ConversationStatus, DeliveryStatus, MessageDirection
)
from inbox_hub.repositories.base_repository import (
    PlatformRepository, CustomerRepository, ConversationRepository, MessageRepository,
    Repositories, history_sort_key
)
from inbox_hub.repositories.exceptions import DuplicateEntityError, EntityNotFoundError
from inbox_hub.utils.date_utils import now_utc


class InMemoryPlatformRepository(PlatformRepository):

    def __init__(self):
        self._rows: Dict[str, Platform] = {}

    def _active_holder(self, platform_type: PlatformType, external_id: str) -> Optional[Platform]:
        for row in self._rows.values():
            if row.is_active and row.type == platform_type and row.external_id == external_id:
                return row
        return None

    async def get(self, platform_id: str) -> Optional[Platform]:
        row = self._rows.get(platform_id)
        return row.model_copy(deep=True) if row else None

    async def find_active_by_external(self, platform_type, external_id):
        row = self._active_holder(platform_type, external_id)
        return row.model_copy(deep=True) if row else None

    async def find_by_tenant_external(self, tenant_id, platform_type, external_id):
        for row in self._rows.values():
            if (row.tenant_id == tenant_id and row.type == platform_type
                    and row.external_id == external_id):
                return row.model_copy(deep=True)
        return None

    async def list_active(self, platform_type: Optional[PlatformType] = None) -> List[Platform]:
        return [
            row.model_copy(deep=True) for row in self._rows.values()
            if row.is_active and (platform_type is None or row.type == platform_type)
        ]

    async def insert(self, platform: Platform) -> Platform:
        if platform.is_active:
            holder = self._active_holder(platform.type, platform.external_id)
            if holder is not None:
                raise DuplicateEntityError(
                    "Platform",
                    {"type": platform.type.value, "external_id": platform.external_id},
                    existing_entity_id=holder.id
                )
        self._rows[platform.id] = platform.model_copy(deep=True)
        return platform.model_copy(deep=True)

    async def activate(self, platform_id: str, access_token: str, credentials: Dict[str, Any]) -> Platform:
        row = self._rows.get(platform_id)
        if row is None:
            raise EntityNotFoundError("Platform", platform_id)

        holder = self._active_holder(row.type, row.external_id)
        if holder is not None and holder.id != platform_id:
            raise DuplicateEntityError(
                "Platform",
                {"type": row.type.value, "external_id": row.external_id},
                existing_entity_id=holder.id
            )

        merged = {k: v for k, v in row.credentials.items() if k != "deactivation_reason"}
        merged.update(credentials)
        updated = row.model_copy(update={
            "access_token": access_token,
            "credentials": merged,
            "is_active": True,
            "updated_at": now_utc(),
        }, deep=True)
        self._rows[platform_id] = updated
        return updated.model_copy(deep=True)

    async def deactivate_if_current(self, platform_id: str, expected_token: str, reason: str) -> bool:
        row = self._rows.get(platform_id)
        if row is None or not row.is_active or row.access_token != expected_token:
            return False

        credentials = dict(row.credentials)
        credentials["deactivation_reason"] = reason
        self._rows[platform_id] = row.model_copy(update={
            "is_active": False,
            "credentials": credentials,
            "updated_at": now_utc(),
        }, deep=True)
        return True

    async def update_credentials(self, platform_id: str, credentials: Dict[str, Any]) -> Optional[Platform]:
        row = self._rows.get(platform_id)
        if row is None:
            return None
        merged = dict(row.credentials)
        merged.update(credentials)
        updated = row.model_copy(update={"credentials": merged, "updated_at": now_utc()}, deep=True)
        self._rows[platform_id] = updated
        return updated.model_copy(deep=True)


class InMemoryCustomerRepository(CustomerRepository):

    def __init__(self):
        self._rows: Dict[str, Customer] = {}
        self._by_key: Dict[Tuple[str, str], str] = {}

    async def get(self, customer_id: str) -> Optional[Customer]:
        row = self._rows.get(customer_id)
        return row.model_copy(deep=True) if row else None

    async def get_by_external(self, platform_id: str, external_id: str) -> Optional[Customer]:
        customer_id = self._by_key.get((platform_id, external_id))
        return await self.get(customer_id) if customer_id else None

    async def insert(self, customer: Customer) -> Customer:
        key = (customer.platform_id, customer.external_id)
        if key in self._by_key:
            raise DuplicateEntityError(
                "Customer",
                {"platform_id": customer.platform_id, "external_id": customer.external_id},
                existing_entity_id=self._by_key[key]
            )
        self._by_key[key] = customer.id
        self._rows[customer.id] = customer.model_copy(deep=True)
        return customer.model_copy(deep=True)

    async def update_profile(self, customer_id, display_name, profile):
        row = self._rows.get(customer_id)
        if row is None:
            return None
        merged = dict(row.profile)
        merged.update(profile)
        updated = row.model_copy(update={
            "display_name": display_name or row.display_name,
            "profile": merged,
            "updated_at": now_utc(),
        }, deep=True)
        self._rows[customer_id] = updated
        return updated.model_copy(deep=True)


class InMemoryConversationRepository(ConversationRepository):

    def __init__(self):
        self._rows: Dict[str, Conversation] = {}
        self._by_key: Dict[Tuple[str, str], str] = {}

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        row = self._rows.get(conversation_id)
        return row.model_copy(deep=True) if row else None

    async def get_by_customer(self, platform_id: str, customer_id: str) -> Optional[Conversation]:
        conversation_id = self._by_key.get((platform_id, customer_id))
        return await self.get(conversation_id) if conversation_id else None

    async def insert(self, conversation: Conversation) -> Conversation:
        key = (conversation.platform_id, conversation.customer_id)
        if key in self._by_key:
            raise DuplicateEntityError(
                "Conversation",
                {"platform_id": conversation.platform_id, "customer_id": conversation.customer_id},
                existing_entity_id=self._by_key[key]
            )
        self._by_key[key] = conversation.id
        self._rows[conversation.id] = conversation.model_copy(deep=True)
        return conversation.model_copy(deep=True)

    async def touch(self, conversation_id: str, occurred_at: datetime, inbound: bool) -> Optional[Conversation]:
        row = self._rows.get(conversation_id)
        if row is None:
            return None

        update: Dict[str, Any] = {"updated_at": now_utc()}
        if row.last_activity_at is None or occurred_at > row.last_activity_at:
            update["last_activity_at"] = occurred_at
        if inbound and (row.last_inbound_at is None or occurred_at > row.last_inbound_at):
            update["last_inbound_at"] = occurred_at

        updated = row.model_copy(update=update, deep=True)
        self._rows[conversation_id] = updated
        return updated.model_copy(deep=True)

    async def update_status(self, conversation_id: str, status: ConversationStatus) -> Optional[Conversation]:
        row = self._rows.get(conversation_id)
        if row is None:
            return None
        updated = row.model_copy(update={"status": status, "updated_at": now_utc()}, deep=True)
        self._rows[conversation_id] = updated
        return updated.model_copy(deep=True)

    async def list_by_tenant(self, tenant_id: str, limit: int = 50) -> List[Conversation]:
        rows = [row for row in self._rows.values() if row.tenant_id == tenant_id]
        rows.sort(key=lambda c: c.last_activity_at or c.created_at, reverse=True)
        return [row.model_copy(deep=True) for row in rows[:limit]]


class InMemoryMessageRepository(MessageRepository):

    def __init__(self):
        self._rows: Dict[str, Message] = {}
        self._by_platform_id: Dict[Tuple[str, str], str] = {}

    async def get(self, message_id: str) -> Optional[Message]:
        row = self._rows.get(message_id)
        return row.model_copy(deep=True) if row else None

    async def find_by_platform_message_id(self, platform_id: str, platform_message_id: str) -> Optional[Message]:
        message_id = self._by_platform_id.get((platform_id, platform_message_id))
        return await self.get(message_id) if message_id else None

    def _claim_platform_id(self, message_id: str, platform_id: str, platform_message_id: Optional[str]) -> None:
        if not platform_message_id:
            return
        key = (platform_id, platform_message_id)
        holder = self._by_platform_id.get(key)
        if holder is not None and holder != message_id:
            raise DuplicateEntityError(
                "Message",
                {"platform_id": platform_id, "platform_message_id": platform_message_id},
                existing_entity_id=holder
            )
        self._by_platform_id[key] = message_id

    async def insert(self, message: Message) -> Message:
        self._claim_platform_id(message.id, message.platform_id, message.platform_message_id)
        self._rows[message.id] = message.model_copy(deep=True)
        return message.model_copy(deep=True)

    async def update(self, message_id: str, **fields: Any) -> Message:
        row = self._rows.get(message_id)
        if row is None:
            raise EntityNotFoundError("Message", message_id)

        if fields.get("platform_message_id") and fields["platform_message_id"] != row.platform_message_id:
            self._claim_platform_id(message_id, row.platform_id, fields["platform_message_id"])

        fields["updated_at"] = now_utc()
        updated = row.model_copy(update=fields, deep=True)
        self._rows[message_id] = updated
        return updated.model_copy(deep=True)

    async def advance_status(self, message_id, status, failure_code=None, failure_reason=None):
        row = self._rows.get(message_id)
        if row is None or not row.status.can_advance_to(status):
            return None

        update: Dict[str, Any] = {"status": status, "updated_at": now_utc()}
        if status == DeliveryStatus.FAILED:
            update["failure_code"] = failure_code
            update["failure_reason"] = failure_reason
        updated = row.model_copy(update=update, deep=True)
        self._rows[message_id] = updated
        return updated.model_copy(deep=True)

    async def list_for_conversation(self, conversation_id: str, limit: Optional[int] = None) -> List[Message]:
        rows = sorted(
            (row for row in self._rows.values() if row.conversation_id == conversation_id),
            key=history_sort_key
        )
        if limit is not None:
            rows = rows[-limit:]
        return [row.model_copy(deep=True) for row in rows]

    async def latest_inbound(self, conversation_id: str) -> Optional[Message]:
        inbound = [
            row for row in self._rows.values()
            if row.conversation_id == conversation_id and row.direction == MessageDirection.INBOUND
        ]
        if not inbound:
            return None
        return max(inbound, key=history_sort_key).model_copy(deep=True)

    async def list_outbound_unread(self, conversation_id: str, until: datetime) -> List[Message]:
        rows = [
            row for row in self._rows.values()
            if row.conversation_id == conversation_id
            and row.direction == MessageDirection.OUTBOUND
            and row.occurred_at <= until
            and row.status not in (DeliveryStatus.READ, DeliveryStatus.FAILED)
        ]
        return [row.model_copy(deep=True) for row in sorted(rows, key=history_sort_key)]


def create_memory_repositories() -> Repositories:
    """Build a fresh, empty in-memory repository bundle."""
    return Repositories(
        platforms=InMemoryPlatformRepository(),
        customers=InMemoryCustomerRepository(),
        conversations=InMemoryConversationRepository(),
        messages=InMemoryMessageRepository(),
    )
