import asyncio

import pytest

from inbox_hub.models.types import PlatformType
from inbox_hub.repositories.exceptions import DuplicateEntityError
from inbox_hub.services.exceptions import UnauthorizedError
from inbox_hub.services.identity_resolver import IdentityResolver
from tests.factories import PAGE_ID, TENANT_A, TENANT_B


async def test_resolve_creates_once(container, facebook_platform):
    resolver = container.identity_resolver

    first = await resolver.resolve(TENANT_A, facebook_platform, "u123")
    second = await resolver.resolve(TENANT_A, facebook_platform, "u123")

    assert first.id == second.id
    assert first.display_name is None


async def test_concurrent_first_contact_yields_one_customer_and_conversation(container, facebook_platform):
    resolver = container.identity_resolver

    async def first_contact():
        customer = await resolver.resolve(TENANT_A, facebook_platform, "u123")
        return customer, await resolver.resolve_conversation(customer)

    results = await asyncio.gather(*(first_contact() for _ in range(5)))

    assert len({customer.id for customer, _ in results}) == 1
    assert len({conversation.id for _, conversation in results}) == 1


async def test_lost_insert_race_reads_back_winner(container, facebook_platform):
    customers = container.repositories.customers
    winner = await container.identity_resolver.resolve(TENANT_A, facebook_platform, "u123")

    class RacingCustomers:
        """Reports no customer on the first lookup, as if the winner committed just after it."""

        def __init__(self):
            self.lookups = 0

        async def get_by_external(self, platform_id, external_id):
            self.lookups += 1
            if self.lookups == 1:
                return None
            return await customers.get_by_external(platform_id, external_id)

        async def insert(self, customer):
            return await customers.insert(customer)

    resolver = IdentityResolver(RacingCustomers(), container.repositories.conversations)
    customer = await resolver.resolve(TENANT_A, facebook_platform, "u123")

    assert customer.id == winner.id
    with pytest.raises(DuplicateEntityError):
        await customers.insert(customer)


async def test_profile_name_names_new_customer(container, whatsapp_platform):
    resolver = container.identity_resolver

    customer = await resolver.resolve(TENANT_A, whatsapp_platform, "15551234567", profile_name="Ann")

    assert customer.display_name == "Ann"


async def test_profile_name_fills_missing_display_name(container, whatsapp_platform):
    resolver = container.identity_resolver
    nameless = await resolver.resolve(TENANT_A, whatsapp_platform, "15551234567")

    named = await resolver.resolve(TENANT_A, whatsapp_platform, "15551234567", profile_name="Ann")

    assert nameless.display_name is None
    assert named.id == nameless.id
    assert named.display_name == "Ann"
    stored = await container.repositories.customers.get_by_external(whatsapp_platform.id, "15551234567")
    assert stored.display_name == "Ann"


async def test_profile_name_keeps_known_display_name(container, whatsapp_platform):
    resolver = container.identity_resolver
    await resolver.resolve(TENANT_A, whatsapp_platform, "15551234567", profile_name="Ann")

    customer = await resolver.resolve(TENANT_A, whatsapp_platform, "15551234567", profile_name="Annie")

    assert customer.display_name == "Ann"


async def test_profile_fetched_when_webhook_carries_none(make_container, graph):
    container = await make_container(fetch_profiles=True)
    platform = await container.token_manager.connect(TENANT_A, PlatformType.FACEBOOK, PAGE_ID, "fb-token")
    graph.add("GET", "/u123", (200, {"id": "u123", "first_name": "Ann", "last_name": "Lee"}))

    customer = await container.identity_resolver.resolve(TENANT_A, platform, "u123")

    assert customer.display_name == "Ann Lee"


async def test_profile_fetch_failure_is_not_fatal(make_container, graph):
    container = await make_container(fetch_profiles=True)
    platform = await container.token_manager.connect(TENANT_A, PlatformType.FACEBOOK, PAGE_ID, "fb-token")
    graph.add("GET", "/u123", (400, {"error": {"code": 100, "message": "no permission"}}))

    customer = await container.identity_resolver.resolve(TENANT_A, platform, "u123")

    assert customer.display_name is None


async def test_other_tenant_is_refused(container, facebook_platform):
    with pytest.raises(UnauthorizedError):
        await container.identity_resolver.resolve(TENANT_B, facebook_platform, "u123")
