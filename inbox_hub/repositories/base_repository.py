"""
Base Repository Pattern Implementation
=====================================

Abstract repositories for the four persistent entities. Implementations
must enforce the uniqueness keys atomically:

- Platform: (type, external_id) among active rows
- Customer: (platform_id, external_id)
- Conversation: (platform_id, customer_id)
- Message: (platform_id, platform_message_id) when the id is present

A violating insert raises DuplicateEntityError; callers re-read the winner.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Dict, Any

from inbox_hub.models.entities import Platform, Customer, Conversation, Message
from inbox_hub.models.types import PlatformType, ConversationStatus, DeliveryStatus


def history_sort_key(message: Message):
    """
    Deterministic ordering key for conversation history.

    Ordering is by platform timestamp, tie-broken by platform message id,
    so arrival order never reorders history.
    """
    return (message.occurred_at, message.platform_message_id or "", message.id)


class PlatformRepository(ABC):

    @abstractmethod
    async def get(self, platform_id: str) -> Optional[Platform]:
        pass

    @abstractmethod
    async def find_active_by_external(
            self, platform_type: PlatformType, external_id: str
    ) -> Optional[Platform]:
        """Find the single active platform bound to a Meta asset."""
        pass

    @abstractmethod
    async def find_by_tenant_external(
            self, tenant_id: str, platform_type: PlatformType, external_id: str
    ) -> Optional[Platform]:
        pass

    @abstractmethod
    async def list_active(self, platform_type: Optional[PlatformType] = None) -> List[Platform]:
        pass

    @abstractmethod
    async def insert(self, platform: Platform) -> Platform:
        """
        Raises:
            DuplicateEntityError: If an active platform already holds (type, external_id)
        """
        pass

    @abstractmethod
    async def activate(
            self, platform_id: str, access_token: str, credentials: Dict[str, Any]
    ) -> Platform:
        """
        Store a fresh token and mark the platform active.

        Raises:
            DuplicateEntityError: If another active platform holds the same asset
            EntityNotFoundError: If the platform does not exist
        """
        pass

    @abstractmethod
    async def deactivate_if_current(self, platform_id: str, expected_token: str, reason: str) -> bool:
        """
        Compare-and-set deactivation.

        Only deactivates when the platform is still active with the token the
        caller observed, so a concurrent reconnect is never clobbered.

        Returns:
            True if this call performed the deactivation
        """
        pass

    @abstractmethod
    async def update_credentials(self, platform_id: str, credentials: Dict[str, Any]) -> Optional[Platform]:
        """Merge auxiliary profile data into the platform credentials."""
        pass


class CustomerRepository(ABC):

    @abstractmethod
    async def get(self, customer_id: str) -> Optional[Customer]:
        pass

    @abstractmethod
    async def get_by_external(self, platform_id: str, external_id: str) -> Optional[Customer]:
        pass

    @abstractmethod
    async def insert(self, customer: Customer) -> Customer:
        pass

    @abstractmethod
    async def update_profile(
            self, customer_id: str, display_name: Optional[str], profile: Dict[str, Any]
    ) -> Optional[Customer]:
        pass


class ConversationRepository(ABC):

    @abstractmethod
    async def get(self, conversation_id: str) -> Optional[Conversation]:
        pass

    @abstractmethod
    async def get_by_customer(self, platform_id: str, customer_id: str) -> Optional[Conversation]:
        pass

    @abstractmethod
    async def insert(self, conversation: Conversation) -> Conversation:
        pass

    @abstractmethod
    async def touch(self, conversation_id: str, occurred_at: datetime, inbound: bool) -> Optional[Conversation]:
        """
        Advance last_activity_at (and last_inbound_at for inbound messages)
        to ``occurred_at`` unless they are already later.
        """
        pass

    @abstractmethod
    async def update_status(self, conversation_id: str, status: ConversationStatus) -> Optional[Conversation]:
        pass

    @abstractmethod
    async def list_by_tenant(self, tenant_id: str, limit: int = 50) -> List[Conversation]:
        """Most recently active first."""
        pass


class MessageRepository(ABC):

    @abstractmethod
    async def get(self, message_id: str) -> Optional[Message]:
        pass

    @abstractmethod
    async def find_by_platform_message_id(self, platform_id: str, platform_message_id: str) -> Optional[Message]:
        pass

    @abstractmethod
    async def insert(self, message: Message) -> Message:
        pass

    @abstractmethod
    async def update(self, message_id: str, **fields: Any) -> Message:
        """
        Raises:
            DuplicateEntityError: If a new platform_message_id collides
            EntityNotFoundError: If the message does not exist
        """
        pass

    @abstractmethod
    async def advance_status(
            self,
            message_id: str,
            status: DeliveryStatus,
            failure_code: Optional[str] = None,
            failure_reason: Optional[str] = None
    ) -> Optional[Message]:
        """
        Move a message forward along its delivery lifecycle.

        Returns:
            The updated message, or None when the transition would regress
        """
        pass

    @abstractmethod
    async def list_for_conversation(self, conversation_id: str, limit: Optional[int] = None) -> List[Message]:
        """History ordered by ``history_sort_key``; ``limit`` keeps the latest N."""
        pass

    @abstractmethod
    async def latest_inbound(self, conversation_id: str) -> Optional[Message]:
        pass

    @abstractmethod
    async def list_outbound_unread(self, conversation_id: str, until: datetime) -> List[Message]:
        """Outbound messages at or before ``until`` that are not yet read or failed."""
        pass


@dataclass
class Repositories:
    """Bundle of repositories handed to the service container."""
    platforms: PlatformRepository
    customers: CustomerRepository
    conversations: ConversationRepository
    messages: MessageRepository
