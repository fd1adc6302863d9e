"""
Dependency injection for services and repositories

FastAPI dependency providers resolving services from the application's
ServiceContainer.
"""

from fastapi import Depends
from starlette.requests import HTTPConnection
from typing import Annotated

from inbox_hub.repositories.base_repository import Repositories
from inbox_hub.services.diagnostics_service import DiagnosticsService
from inbox_hub.services.exceptions import ServiceError
from inbox_hub.services.history_sync_service import HistorySyncService
from inbox_hub.services.outbound_dispatcher import OutboundDispatcher
from inbox_hub.services.realtime_broadcaster import RealtimeBroadcaster
from inbox_hub.services.service_container import ServiceContainer
from inbox_hub.services.token_manager import TokenManager
from inbox_hub.services.webhook_service import WebhookService


def get_container(connection: HTTPConnection) -> ServiceContainer:
    container = getattr(connection.app.state, "container", None)
    if container is None or not container.initialized:
        raise ServiceError("Service container not initialized")
    return container


ContainerDep = Annotated[ServiceContainer, Depends(get_container)]


def get_repositories(container: ContainerDep) -> Repositories:
    return container.repositories


def get_webhook_service(container: ContainerDep) -> WebhookService:
    return container.webhook_service


def get_dispatcher(container: ContainerDep) -> OutboundDispatcher:
    return container.dispatcher


def get_token_manager(container: ContainerDep) -> TokenManager:
    return container.token_manager


def get_diagnostics_service(container: ContainerDep) -> DiagnosticsService:
    return container.diagnostics


def get_history_sync_service(container: ContainerDep) -> HistorySyncService:
    return container.history_sync


def get_broadcaster(container: ContainerDep) -> RealtimeBroadcaster:
    return container.broadcaster
