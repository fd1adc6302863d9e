"""
Webhook Service

Entry point for Meta webhook deliveries. A delivery is verified against
the app secret, split into platform events and processed event by event:
message events become persisted inbound Messages, delivery/read
callbacks advance the status of existing outbound Messages. A failing
event is logged and counted but never fails the delivery, so content
that was already processed is acknowledged to Meta.
"""

import json
from dataclasses import dataclass, asdict
from typing import Dict, Any, List, Optional

from inbox_hub.config.settings import Settings
from inbox_hub.core.channels.channel_factory import ChannelRegistry
from inbox_hub.core.exceptions import DuplicateEventError, MalformedPayloadError, VerificationFailedError
from inbox_hub.core.normalizers.message_normalizer import MessageNormalizer
from inbox_hub.models.entities import Message, Platform
from inbox_hub.models.events import RawEvent
from inbox_hub.models.types import (
    ConversationStatus, DeliveryStatus, MessageDirection, PlatformType, RawEventKind, RealtimeEventType
)
from inbox_hub.repositories.base_repository import Repositories
from inbox_hub.repositories.exceptions import DuplicateEntityError
from inbox_hub.services.auto_reply_service import AutoReplyService
from inbox_hub.services.base_service import BaseService
from inbox_hub.services.identity_resolver import IdentityResolver
from inbox_hub.services.realtime_broadcaster import RealtimeBroadcaster
from inbox_hub.utils.metrics import MetricsCollector

OUTCOME_CREATED = "created"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_STATUS_UPDATED = "status_updated"
OUTCOME_UNROUTED = "unrouted"
OUTCOME_IGNORED = "ignored"
OUTCOME_FAILED = "failed"


@dataclass
class IngestionReport:
    """Per-delivery counters returned to the webhook caller."""

    platform: str
    received: int = 0
    created: int = 0
    duplicates: int = 0
    status_updates: int = 0
    unrouted: int = 0
    ignored: int = 0
    failed: int = 0

    def count(self, outcome: str) -> None:
        field_name = {
            OUTCOME_CREATED: "created",
            OUTCOME_DUPLICATE: "duplicates",
            OUTCOME_STATUS_UPDATED: "status_updates",
            OUTCOME_UNROUTED: "unrouted",
            OUTCOME_IGNORED: "ignored",
            OUTCOME_FAILED: "failed",
        }[outcome]
        setattr(self, field_name, getattr(self, field_name) + 1)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class WebhookService(BaseService):
    """Verification, parsing and per-event processing of webhook deliveries."""

    def __init__(
            self,
            settings: Settings,
            repositories: Repositories,
            channels: ChannelRegistry,
            normalizer: MessageNormalizer,
            identity: IdentityResolver,
            broadcaster: RealtimeBroadcaster,
            metrics: Optional[MetricsCollector] = None,
            auto_reply: Optional[AutoReplyService] = None
    ):
        super().__init__()
        self.settings = settings
        self.platforms = repositories.platforms
        self.customers = repositories.customers
        self.conversations = repositories.conversations
        self.messages = repositories.messages
        self.channels = channels
        self.normalizer = normalizer
        self.identity = identity
        self.broadcaster = broadcaster
        self.metrics = metrics
        self.auto_reply = auto_reply

    def verify_subscription(
            self,
            platform_type: PlatformType,
            mode: Optional[str],
            verify_token: Optional[str],
            challenge: Optional[str]
    ) -> str:
        """
        Answer Meta's subscription handshake.

        Returns:
            The challenge to echo back

        Raises:
            VerificationFailedError: If the mode or token does not match
        """
        expected = self.settings.META_WEBHOOK_VERIFY_TOKEN
        if mode != "subscribe" or not expected or verify_token != expected or challenge is None:
            self.logger.warning(
                "Webhook subscription verification failed",
                platform=platform_type.value,
                mode=mode
            )
            self._reject(platform_type, "subscription")
            raise VerificationFailedError(platform_type.value, "verify token mismatch")

        self.logger.info("Webhook subscription verified", platform=platform_type.value)
        return challenge

    async def ingest(
            self,
            platform_type: PlatformType,
            raw_body: bytes,
            signature: Optional[str]
    ) -> IngestionReport:
        """
        Process one webhook delivery.

        Args:
            platform_type: Platform the delivery was addressed to
            raw_body: Exact request body bytes
            signature: X-Hub-Signature-256 header value

        Returns:
            IngestionReport with per-outcome counters

        Raises:
            VerificationFailedError: If the signature does not verify
            MalformedPayloadError: If the body is not a valid envelope
        """
        channel = self.channels.get(platform_type)
        platform_name = platform_type.value

        if not channel.verify_signature(raw_body, signature, self.settings.get_app_secret(platform_type)):
            self.logger.warning(
                "Webhook signature rejected",
                platform=platform_name,
                signature_present=signature is not None,
                body_size=len(raw_body)
            )
            self._reject(platform_type, "signature")
            raise VerificationFailedError(
                platform_name, "missing signature" if not signature else "signature mismatch"
            )

        try:
            payload = json.loads(raw_body)
            events = channel.parse_events(payload)
        except ValueError as e:
            self._reject(platform_type, "malformed")
            raise MalformedPayloadError(platform_name, f"invalid JSON: {e}") from e
        except MalformedPayloadError:
            self._reject(platform_type, "malformed")
            raise

        report = IngestionReport(platform=platform_name)
        for event in events:
            report.received += 1
            try:
                outcome = await self._process(event)
            except Exception as e:
                self.handle_service_error(
                    e,
                    "ingest_event",
                    platform=platform_name,
                    event_kind=event.kind.value,
                    platform_message_id=event.platform_message_id
                )
                outcome = OUTCOME_FAILED

            report.count(outcome)
            if self.metrics is not None:
                self.metrics.record_inbound(platform_name, outcome)

        self.logger.info("Webhook ingested", **report.to_dict())
        return report

    async def _process(self, event: RawEvent) -> str:
        platform = await self.platforms.find_active_by_external(event.platform_type, event.recipient_external_id)
        if platform is None:
            self.logger.info(
                "No active platform for webhook event",
                platform=event.platform_type.value,
                external_id=event.recipient_external_id
            )
            return OUTCOME_UNROUTED

        if event.kind == RawEventKind.STATUS:
            return await self._process_status(event, platform)
        return await self._process_message(event, platform)

    async def _process_message(self, event: RawEvent, platform: Platform) -> str:
        try:
            inbound = await self.normalizer.normalize(event, platform)
        except DuplicateEventError:
            return OUTCOME_DUPLICATE

        customer = await self.identity.resolve(
            platform.tenant_id, platform, inbound.external_customer_id, inbound.profile_name
        )
        conversation = await self.identity.resolve_conversation(customer)

        async with self.broadcaster.ordered(conversation.id):
            try:
                message = await self.messages.insert(Message(
                    tenant_id=platform.tenant_id,
                    platform_id=platform.id,
                    conversation_id=conversation.id,
                    direction=MessageDirection.INBOUND,
                    platform_message_id=inbound.platform_message_id,
                    content=inbound.content,
                    status=DeliveryStatus.DELIVERED,
                    occurred_at=inbound.occurred_at,
                    raw_payload=inbound.raw,
                ))
            except DuplicateEntityError:
                return OUTCOME_DUPLICATE

            conversation = await self.conversations.touch(conversation.id, inbound.occurred_at, inbound=True)
            if conversation.status == ConversationStatus.CLOSED:
                conversation = await self.conversations.update_status(conversation.id, ConversationStatus.OPEN)

            await self.broadcaster.emit(
                RealtimeEventType.CONVERSATION_UPDATED,
                platform.tenant_id,
                conversation_id=conversation.id,
                payload={
                    "conversation": conversation.model_dump(mode="json"),
                    "message": message.model_dump(mode="json", exclude={"raw_payload"}),
                },
            )

        if self.auto_reply is not None:
            await self.auto_reply.handle_inbound(conversation, message)
        return OUTCOME_CREATED

    async def _process_status(self, event: RawEvent, platform: Platform) -> str:
        targets = await self._status_targets(event, platform)

        failure_code, failure_reason = None, None
        if event.status == DeliveryStatus.FAILED and event.errors:
            error = event.errors[0]
            failure_code = str(error.get("code")) if error.get("code") is not None else None
            failure_reason = error.get("title") or error.get("message")

        updated = 0
        for message in targets:
            async with self.broadcaster.ordered(message.conversation_id):
                advanced = await self.messages.advance_status(
                    message.id, event.status, failure_code, failure_reason
                )
                if advanced is None:
                    continue
                updated += 1
                await self.broadcaster.emit(
                    RealtimeEventType.MESSAGE_STATUS,
                    platform.tenant_id,
                    conversation_id=advanced.conversation_id,
                    payload={
                        "message_id": advanced.id,
                        "platform_message_id": advanced.platform_message_id,
                        "status": advanced.status.value,
                        "failure_code": advanced.failure_code,
                    },
                )

        return OUTCOME_STATUS_UPDATED if updated else OUTCOME_IGNORED

    async def _status_targets(self, event: RawEvent, platform: Platform) -> List[Message]:
        if event.status is None:
            return []

        if event.status_message_ids:
            targets = []
            for platform_message_id in event.status_message_ids:
                message = await self.messages.find_by_platform_message_id(platform.id, platform_message_id)
                if message is not None and message.direction == MessageDirection.OUTBOUND:
                    targets.append(message)
            return targets

        # read receipts carry only a watermark covering everything sent before it
        if event.watermark is None or not event.sender_external_id:
            return []
        customer = await self.customers.get_by_external(platform.id, event.sender_external_id)
        if customer is None:
            return []
        conversation = await self.conversations.get_by_customer(platform.id, customer.id)
        if conversation is None:
            return []
        return await self.messages.list_outbound_unread(conversation.id, event.watermark)

    def _reject(self, platform_type: PlatformType, reason: str) -> None:
        if self.metrics is not None:
            self.metrics.record_rejection(platform_type.value, reason)
