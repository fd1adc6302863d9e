"""
Identity Resolver

Maps (platform, external customer id) to exactly one Customer and one
Conversation. Creation is an insert-or-get on the store's unique keys:
when two deliveries race on first contact, the loser's insert fails with
DuplicateEntityError and it re-reads the winner's row.
"""

from typing import Optional

from inbox_hub.core.channels.channel_factory import ChannelRegistry
from inbox_hub.models.entities import Platform, Customer, Conversation
from inbox_hub.models.types import TenantId
from inbox_hub.repositories.base_repository import CustomerRepository, ConversationRepository
from inbox_hub.repositories.exceptions import DuplicateEntityError
from inbox_hub.services.base_service import BaseService
from inbox_hub.services.exceptions import ServiceError


class IdentityResolver(BaseService):
    """Insert-or-get resolution of customers and their conversations."""

    def __init__(
            self,
            customers: CustomerRepository,
            conversations: ConversationRepository,
            channels: Optional[ChannelRegistry] = None,
            fetch_profiles: bool = True
    ):
        super().__init__()
        self.customers = customers
        self.conversations = conversations
        self.channels = channels
        self.fetch_profiles = fetch_profiles and channels is not None

    async def resolve(
            self,
            tenant_id: TenantId,
            platform: Platform,
            external_customer_id: str,
            profile_name: Optional[str] = None
    ) -> Customer:
        """
        Get or create the customer behind an external id.

        Args:
            tenant_id: Tenant acting on the platform
            platform: Platform the customer wrote to
            external_customer_id: Platform-scoped user id
            profile_name: Display name carried by the webhook, if any

        Returns:
            The single Customer for (platform, external id)

        Raises:
            UnauthorizedError: If the platform belongs to another tenant
        """
        self.ensure_tenant(platform, tenant_id, "platform")

        customer = await self.customers.get_by_external(platform.id, external_customer_id)
        if customer is not None:
            if profile_name and not customer.display_name:
                customer = await self.customers.update_profile(customer.id, profile_name, {}) or customer
            return customer

        display_name = profile_name
        profile = {}
        if display_name is None and self.fetch_profiles:
            fetched = await self.channels.get(platform.type).fetch_user_profile(platform, external_customer_id)
            if fetched:
                profile = {key: value for key, value in fetched.items() if value is not None}
                display_name = fetched.get("name")

        candidate = Customer(
            tenant_id=tenant_id,
            platform_id=platform.id,
            external_id=external_customer_id,
            display_name=display_name,
            profile=profile,
        )
        try:
            customer = await self.customers.insert(candidate)
        except DuplicateEntityError:
            customer = await self.customers.get_by_external(platform.id, external_customer_id)
            if customer is None:
                raise ServiceError(f"Customer {external_customer_id} conflicted but could not be read back")
            return customer

        self.log_operation(
            "create_customer",
            tenant_id=tenant_id,
            platform_id=platform.id,
            customer_id=customer.id
        )
        return customer

    async def resolve_conversation(self, customer: Customer) -> Conversation:
        """
        Get or create the conversation for a customer on its platform.
        """
        conversation = await self.conversations.get_by_customer(customer.platform_id, customer.id)
        if conversation is not None:
            return conversation

        try:
            conversation = await self.conversations.insert(Conversation(
                tenant_id=customer.tenant_id,
                platform_id=customer.platform_id,
                customer_id=customer.id,
            ))
        except DuplicateEntityError:
            conversation = await self.conversations.get_by_customer(customer.platform_id, customer.id)
            if conversation is None:
                raise ServiceError(f"Conversation for customer {customer.id} conflicted but could not be read back")
            return conversation

        self.log_operation(
            "create_conversation",
            tenant_id=customer.tenant_id,
            conversation_id=conversation.id,
            customer_id=customer.id
        )
        return conversation
