"""
Outbound Dispatcher

Sends agent replies to the customer's platform. Each send runs the
policy check, validates the platform token, persists a queued Message,
calls the Graph API and records the classified outcome before anything is
published to agent sessions.
"""

import asyncio
import time
from datetime import datetime
from typing import Callable, Optional, Tuple, Awaitable

from inbox_hub.core.channels.base_channel import BaseChannel, SendResult
from inbox_hub.core.channels.channel_factory import ChannelRegistry
from inbox_hub.core.exceptions import (
    GraphConnectError, GraphTransportError, OutsideMessagingWindowError, PermanentRejectError,
    PlatformError, RateLimitedError, TimeoutUnresolvedError
)
from inbox_hub.models.entities import Conversation, Customer, Message, MessageContent, Platform, TemplateRef
from inbox_hub.models.types import (
    ContentType, DeliveryStatus, MessageDirection, RealtimeEventType, SendMode, SendOutcome
)
from inbox_hub.repositories.base_repository import ConversationRepository, CustomerRepository, MessageRepository
from inbox_hub.services.base_service import BaseService
from inbox_hub.services.exceptions import NotFoundError, ValidationError
from inbox_hub.services.realtime_broadcaster import RealtimeBroadcaster
from inbox_hub.services.send_policy import SendDecision, SendPolicyEngine
from inbox_hub.services.token_manager import TokenManager
from inbox_hub.utils.date_utils import now_utc
from inbox_hub.utils.metrics import MetricsCollector


class OutboundDispatcher(BaseService):
    """Outbound send pipeline with retry, classification and status recording."""

    def __init__(
            self,
            messages: MessageRepository,
            conversations: ConversationRepository,
            customers: CustomerRepository,
            channels: ChannelRegistry,
            token_manager: TokenManager,
            policy: SendPolicyEngine,
            broadcaster: RealtimeBroadcaster,
            metrics: Optional[MetricsCollector] = None,
            max_attempts: int = 3,
            backoff_base_seconds: float = 1.0,
            backoff_max_seconds: float = 30.0,
            clock: Callable[[], datetime] = now_utc,
            sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        super().__init__()
        self.messages = messages
        self.conversations = conversations
        self.customers = customers
        self.channels = channels
        self.token_manager = token_manager
        self.policy = policy
        self.broadcaster = broadcaster
        self.metrics = metrics
        self.max_attempts = max(1, max_attempts)
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.clock = clock
        self.sleep = sleep

    async def send(
            self,
            conversation: Conversation,
            content: Optional[MessageContent] = None,
            template: Optional[TemplateRef] = None,
            now: Optional[datetime] = None
    ) -> Message:
        """
        Send a message to the conversation's customer.

        Args:
            conversation: Target conversation
            content: Free-form content
            template: Approved template, used when the session window is closed
            now: Send time, defaults to the current time

        Returns:
            The persisted Message with status SENT and its platform message id

        Raises:
            ValidationError: If neither content nor template is given
            OutsideMessagingWindowError: If ineligible and no template applies
            TokenExpiredError / TokenRevokedError: If the token is or became invalid
            RateLimitedError: If throttling outlasted the retry budget
            PermanentRejectError: If the platform rejected the message
            TimeoutUnresolvedError: If the outcome of the send is unknown
        """
        if content is None and template is None:
            raise ValidationError("Message content or template is required", field="content")

        now = now or self.clock()
        platform = await self.token_manager.get_platform(conversation.platform_id, tenant_id=conversation.tenant_id)
        decision = await self.policy.evaluate(conversation, platform.type, template=template, now=now)
        platform = await self.token_manager.ensure_valid(platform.id)

        customer = await self.customers.get(conversation.customer_id)
        if customer is None:
            raise NotFoundError(
                f"Customer {conversation.customer_id} not found",
                resource_type="Customer",
                resource_id=conversation.customer_id
            )

        channel = self.channels.get(platform.type)
        send_content, send_template = self._payload(decision, content, template)
        # content errors surface before anything is persisted
        channel.build_send_request(platform, customer.external_id, send_content, send_template)

        message = await self.messages.insert(Message(
            tenant_id=conversation.tenant_id,
            platform_id=platform.id,
            conversation_id=conversation.id,
            direction=MessageDirection.OUTBOUND,
            content=send_content or self._template_content(send_template),
            template=send_template,
            status=DeliveryStatus.QUEUED,
            occurred_at=now,
        ))

        self.log_operation(
            "send_message",
            tenant_id=conversation.tenant_id,
            conversation_id=conversation.id,
            message_id=message.id,
            mode=decision.mode.value
        )
        return await self._deliver(channel, platform, customer, conversation, message, decision, content, template)

    async def _deliver(
            self,
            channel: BaseChannel,
            platform: Platform,
            customer: Customer,
            conversation: Conversation,
            message: Message,
            decision: SendDecision,
            content: Optional[MessageContent],
            template: Optional[TemplateRef]
    ) -> Message:
        attempt = 0
        while True:
            attempt += 1
            send_content, send_template = self._payload(decision, content, template)
            started = time.monotonic()

            try:
                result = await channel.send(platform, customer.external_id, send_content, send_template)
            except GraphConnectError as e:
                self._record(platform, "connect_error", started)
                if attempt < self.max_attempts:
                    self.logger.warning("Graph API unreachable, retrying", platform_id=platform.id, attempt=attempt)
                    await self._backoff(attempt)
                    continue
                raise await self._fail(
                    message, "connect_error", e.message,
                    RateLimitedError(platform.id, attempt)
                )
            except GraphTransportError as e:
                self._record(platform, "unresolved", started)
                message = await self.messages.update(message.id, reconciliation_required=True)
                self.logger.warning(
                    "Send outcome unknown, flagged for reconciliation",
                    platform_id=platform.id,
                    message_id=message.id,
                    error=e.message
                )
                raise TimeoutUnresolvedError(platform.id, message.id, message_record=message)

            self._record(platform, result.outcome.value, started)

            if result.outcome == SendOutcome.ACCEPTED:
                return await self._accepted(conversation, message, result)

            if result.outcome == SendOutcome.RATE_LIMITED:
                if attempt < self.max_attempts:
                    self.logger.warning(
                        "Send throttled, retrying",
                        platform_id=platform.id,
                        attempt=attempt,
                        error_code=result.error_code
                    )
                    await self._backoff(attempt, result.retry_after)
                    continue
                raise await self._fail(
                    message, result.failure_code, result.error_message,
                    RateLimitedError(platform.id, attempt, retry_after=result.retry_after)
                )

            if result.outcome == SendOutcome.AUTH_FAILED:
                error = await self.token_manager.handle_auth_failure(
                    platform, result.error_code, result.error_subcode
                )
                raise await self._fail(message, result.failure_code, result.error_message, error)

            if result.outcome == SendOutcome.WINDOW_EXPIRED:
                try:
                    decision = self.policy.fallback_for_window_expired(decision, template)
                except OutsideMessagingWindowError as e:
                    raise await self._fail(message, result.failure_code, result.error_message, e)
                self.logger.info("Platform reported closed window, sending template", message_id=message.id)
                message = await self.messages.update(
                    message.id,
                    content=self._template_content(decision.template),
                    template=decision.template
                )
                # the template is a new payload with its own retry budget
                attempt = 0
                continue

            raise await self._fail(
                message, result.failure_code, result.error_message,
                PermanentRejectError(
                    platform.id,
                    result.error_message or "rejected",
                    graph_code=result.error_code,
                    graph_subcode=result.error_subcode
                )
            )

    async def _accepted(self, conversation: Conversation, message: Message, result: SendResult) -> Message:
        async with self.broadcaster.ordered(conversation.id):
            message = await self.messages.update(
                message.id,
                platform_message_id=result.platform_message_id,
                status=DeliveryStatus.SENT
            )
            updated = await self.conversations.touch(conversation.id, message.occurred_at, inbound=False)
            await self.broadcaster.emit(
                RealtimeEventType.CONVERSATION_UPDATED,
                conversation.tenant_id,
                conversation_id=conversation.id,
                payload={
                    "conversation": (updated or conversation).model_dump(mode="json"),
                    "message": message.model_dump(mode="json", exclude={"raw_payload"}),
                },
            )
        return message

    async def _fail(
            self,
            message: Message,
            failure_code: Optional[str],
            failure_reason: Optional[str],
            error: PlatformError
    ) -> PlatformError:
        failed = await self.messages.advance_status(
            message.id, DeliveryStatus.FAILED, failure_code, failure_reason or error.message
        )
        error.message_record = failed or await self.messages.get(message.id)
        self.logger.warning(
            "Send failed",
            message_id=message.id,
            error_code=error.error_code,
            failure_code=failure_code
        )
        return error

    async def _backoff(self, attempt: int, retry_after: Optional[float] = None) -> None:
        delay = min(self.backoff_base_seconds * 2 ** (attempt - 1), self.backoff_max_seconds)
        if retry_after:
            delay = max(delay, min(retry_after, self.backoff_max_seconds))
        if delay > 0:
            await self.sleep(delay)

    def _record(self, platform: Platform, outcome: str, started: float) -> None:
        if self.metrics is not None:
            self.metrics.record_send(platform.type.value, outcome, time.monotonic() - started)

    @staticmethod
    def _payload(
            decision: SendDecision,
            content: Optional[MessageContent],
            template: Optional[TemplateRef]
    ) -> Tuple[Optional[MessageContent], Optional[TemplateRef]]:
        if decision.mode == SendMode.TEMPLATE:
            return None, decision.template
        if content is not None:
            return content, None
        return None, template

    @staticmethod
    def _template_content(template: Optional[TemplateRef]) -> MessageContent:
        name = template.name if template else "template"
        return MessageContent(type=ContentType.TEMPLATE, text=f"[Template: {name}]")
