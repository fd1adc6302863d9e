"""
Facebook history sync.

Backfills Messenger history that arrived while no webhook was delivered:
pages through the page's conversations and their messages and records
any message not already stored. Recording is idempotent on the platform
message id, so repeated runs only add what is missing.
"""

import asyncio
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Optional, Iterator

from inbox_hub.config.constants import AUTH_ERROR_CODES, HISTORY_PAGE_SIZE
from inbox_hub.core.channels.channel_factory import ChannelRegistry
from inbox_hub.core.exceptions import HubError
from inbox_hub.core.graph_client import GraphResponse
from inbox_hub.models.entities import Message, MessageContent, Platform
from inbox_hub.models.types import DeliveryStatus, MessageDirection, PlatformType
from inbox_hub.repositories.base_repository import Repositories
from inbox_hub.repositories.exceptions import DuplicateEntityError
from inbox_hub.services.base_service import BaseService
from inbox_hub.services.exceptions import ValidationError
from inbox_hub.services.identity_resolver import IdentityResolver
from inbox_hub.services.token_manager import TokenManager
from inbox_hub.utils.date_utils import coerce_timestamp, now_utc

CONVERSATION_FIELDS = "id,updated_time"
MESSAGE_FIELDS = "id,message,created_time,from,to"


@dataclass
class SyncReport:
    platform_id: str
    conversations: int = 0
    messages_created: int = 0
    duplicates: int = 0
    pages: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class HistorySyncService(BaseService):
    """Periodic backfill of Facebook page conversations."""

    def __init__(
            self,
            repositories: Repositories,
            channels: ChannelRegistry,
            token_manager: TokenManager,
            identity: IdentityResolver,
            max_pages: int = 10,
            interval_minutes: int = 5
    ):
        super().__init__()
        self.platforms = repositories.platforms
        self.conversations = repositories.conversations
        self.messages = repositories.messages
        self.channels = channels
        self.token_manager = token_manager
        self.identity = identity
        self.max_pages = max_pages
        self.interval_minutes = interval_minutes

    async def sync_facebook(self, platform_id: str) -> SyncReport:
        """
        Backfill one Facebook page.

        Returns:
            SyncReport with counters and any non-fatal errors

        Raises:
            ValidationError: If the platform is not a Facebook page
            TokenExpiredError / TokenRevokedError: If the token is or became invalid
        """
        platform = await self.token_manager.ensure_valid(platform_id)
        if platform.type != PlatformType.FACEBOOK:
            raise ValidationError("History sync is only available for Facebook pages", field="platform_id")

        report = SyncReport(platform_id=platform.id)
        conversations_path = f"/{platform.external_id}/conversations"
        async for thread in self._paginate(platform, conversations_path, CONVERSATION_FIELDS, report):
            report.conversations += 1
            if not thread.get("id"):
                continue
            async for item in self._paginate(platform, f"/{thread['id']}/messages", MESSAGE_FIELDS, report):
                await self._record(platform, item, report)

        self.log_operation("sync_facebook", tenant_id=platform.tenant_id, **report.to_dict())
        return report

    async def sync_all_active(self) -> List[SyncReport]:
        """Sync every active Facebook page; one page's failure does not stop the rest."""
        reports = []
        for platform in await self.platforms.list_active(PlatformType.FACEBOOK):
            try:
                reports.append(await self.sync_facebook(platform.id))
            except HubError as e:
                self.logger.warning(
                    "History sync failed",
                    platform_id=platform.id,
                    error_code=e.error_code,
                    error=e.message
                )
        return reports

    async def run_periodic(self, stop_event: asyncio.Event) -> None:
        """Run ``sync_all_active`` every interval until ``stop_event`` is set."""
        interval = self.interval_minutes * 60
        self.logger.info("History sync loop started", interval_seconds=interval)
        while not stop_event.is_set():
            await self.sync_all_active()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        self.logger.info("History sync loop stopped")

    async def _paginate(self, platform: Platform, path: str, fields: str, report: SyncReport):
        graph = self.channels.get(platform.type).graph
        params: Dict[str, Any] = {"fields": fields, "limit": HISTORY_PAGE_SIZE}

        for _ in range(self.max_pages):
            response = await graph.get(path, platform.access_token, params=params)
            report.pages += 1
            if not response.ok:
                await self._handle_error(platform, path, response, report)
                return

            for item in _items(response):
                yield item

            after = ((response.data.get("paging") or {}).get("cursors") or {}).get("after")
            if not after or not (response.data.get("paging") or {}).get("next"):
                return
            params = {**params, "after": after}

    async def _handle_error(self, platform: Platform, path: str, response: GraphResponse, report: SyncReport) -> None:
        if response.status_code == 401 or response.error_code in AUTH_ERROR_CODES:
            raise await self.token_manager.handle_auth_failure(
                platform, response.error_code, response.error_subcode
            )
        report.errors.append(f"{path}: {response.error_message or response.status_code}")
        self.logger.warning(
            "History page request rejected",
            platform_id=platform.id,
            status_code=response.status_code,
            graph_code=response.error_code
        )

    async def _record(self, platform: Platform, item: Dict[str, Any], report: SyncReport) -> None:
        platform_message_id = item.get("id")
        sender = item.get("from") or {}
        if not platform_message_id or not sender.get("id"):
            return

        if await self.messages.find_by_platform_message_id(platform.id, platform_message_id) is not None:
            report.duplicates += 1
            return

        outbound = str(sender["id"]) == platform.external_id
        if outbound:
            recipients = (item.get("to") or {}).get("data") or []
            if not recipients or not recipients[0].get("id"):
                return
            customer_id, customer_name = str(recipients[0]["id"]), recipients[0].get("name")
        else:
            customer_id, customer_name = str(sender["id"]), sender.get("name")

        customer = await self.identity.resolve(platform.tenant_id, platform, customer_id, customer_name)
        conversation = await self.identity.resolve_conversation(customer)
        occurred_at = coerce_timestamp(item.get("created_time")) or now_utc()

        try:
            await self.messages.insert(Message(
                tenant_id=platform.tenant_id,
                platform_id=platform.id,
                conversation_id=conversation.id,
                direction=MessageDirection.OUTBOUND if outbound else MessageDirection.INBOUND,
                platform_message_id=platform_message_id,
                content=MessageContent.from_text(item.get("message") or ""),
                status=DeliveryStatus.SENT if outbound else DeliveryStatus.DELIVERED,
                occurred_at=occurred_at,
                raw_payload=item,
            ))
        except DuplicateEntityError:
            report.duplicates += 1
            return

        await self.conversations.touch(conversation.id, occurred_at, inbound=not outbound)
        report.messages_created += 1


def _items(response: GraphResponse) -> Iterator[Dict[str, Any]]:
    for item in response.data.get("data") or []:
        if isinstance(item, dict):
            yield item
