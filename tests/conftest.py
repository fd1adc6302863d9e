"""
Shared fixtures: settings, a scripted Graph API and a fully wired
service container over in-memory storage.
"""

from datetime import datetime, timedelta, timezone

import pytest

from inbox_hub.config.settings import Settings
from inbox_hub.models.entities import Message, MessageContent
from inbox_hub.models.types import DeliveryStatus, MessageDirection, PlatformType
from inbox_hub.repositories.memory_repository import create_memory_repositories
from inbox_hub.services.service_container import ServiceContainer
from tests.factories import (
    APP_SECRET, VERIFY_TOKEN, TENANT_A, PAGE_ID, PHONE_NUMBER_ID, WA_CUSTOMER, FakeGraph
)


def make_settings(**overrides) -> Settings:
    values = {
        "ENVIRONMENT": "testing",
        "META_APP_SECRET": APP_SECRET,
        "META_WEBHOOK_VERIFY_TOKEN": VERIFY_TOKEN,
        "META_GRAPH_API_BASE_URL": "https://graph.test",
        "META_GRAPH_API_VERSION": "v21.0",
        "OUTBOUND_BACKOFF_BASE_SECONDS": 0,
        "OUTBOUND_MAX_ATTEMPTS": 3,
        "STORAGE_BACKEND": "memory",
        "REALTIME_BACKPLANE_ENABLED": False,
        "FACEBOOK_SYNC_ENABLED": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def graph() -> FakeGraph:
    return FakeGraph()


@pytest.fixture
async def make_container(graph):
    """Factory building initialized containers; all are shut down after the test."""
    containers = []

    async def factory(settings_overrides=None, **options) -> ServiceContainer:
        options.setdefault("fetch_profiles", False)
        container = ServiceContainer(
            make_settings(**(settings_overrides or {})),
            repositories=create_memory_repositories(),
            graph_transport=graph.transport,
            **options
        )
        await container.initialize()
        containers.append(container)
        return container

    yield factory

    for container in containers:
        await container.shutdown()


@pytest.fixture
async def container(make_container) -> ServiceContainer:
    return await make_container()


@pytest.fixture
async def facebook_platform(container):
    return await container.token_manager.connect(TENANT_A, PlatformType.FACEBOOK, PAGE_ID, "fb-token")


@pytest.fixture
async def whatsapp_platform(container):
    return await container.token_manager.connect(TENANT_A, PlatformType.WHATSAPP, PHONE_NUMBER_ID, "wa-token")


async def open_conversation(container, platform, external_id, last_inbound_at=None, platform_message_id="in-1"):
    """Create a customer and conversation, optionally with one inbound message."""
    customer = await container.identity_resolver.resolve(platform.tenant_id, platform, external_id)
    conversation = await container.identity_resolver.resolve_conversation(customer)
    if last_inbound_at is not None:
        await container.repositories.messages.insert(Message(
            tenant_id=platform.tenant_id,
            platform_id=platform.id,
            conversation_id=conversation.id,
            direction=MessageDirection.INBOUND,
            platform_message_id=platform_message_id,
            content=MessageContent.from_text("hi"),
            status=DeliveryStatus.DELIVERED,
            occurred_at=last_inbound_at,
        ))
        conversation = await container.repositories.conversations.touch(conversation.id, last_inbound_at, inbound=True)
    return conversation


@pytest.fixture
async def whatsapp_conversation(container, whatsapp_platform):
    """WhatsApp conversation whose customer wrote one hour ago."""
    return await open_conversation(
        container,
        whatsapp_platform,
        WA_CUSTOMER,
        last_inbound_at=datetime.now(timezone.utc) - timedelta(hours=1),
    )
