"""
Send Policy Engine

Decides whether an outbound message may be sent free-form or must be
delivered as a pre-approved template. Eligibility is derived from the
conversation's most recent inbound message and the channel's window
predicate; it is re-evaluated on every send.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from inbox_hub.core.channels.channel_factory import ChannelRegistry
from inbox_hub.core.exceptions import OutsideMessagingWindowError
from inbox_hub.models.entities import Conversation, TemplateRef
from inbox_hub.models.types import PlatformType, SendMode
from inbox_hub.repositories.base_repository import MessageRepository
from inbox_hub.services.base_service import BaseService
from inbox_hub.utils.date_utils import now_utc


@dataclass
class SendDecision:
    """Outcome of a policy evaluation."""

    conversation_id: str
    mode: SendMode
    eligible: bool
    template: Optional[TemplateRef] = None
    last_inbound_at: Optional[datetime] = None
    window_expires_at: Optional[datetime] = None


class SendPolicyEngine(BaseService):
    """Per-channel outbound eligibility rules."""

    def __init__(
            self,
            messages: MessageRepository,
            channels: ChannelRegistry,
            clock: Callable[[], datetime] = now_utc
    ):
        super().__init__()
        self.messages = messages
        self.channels = channels
        self.clock = clock

    async def evaluate(
            self,
            conversation: Conversation,
            platform_type: PlatformType,
            template: Optional[TemplateRef] = None,
            now: Optional[datetime] = None
    ) -> SendDecision:
        """
        Decide how a send in this conversation must be delivered.

        Args:
            conversation: Target conversation
            platform_type: Type of the conversation's platform
            template: Approved template to fall back to when ineligible
            now: Evaluation time, defaults to the current time

        Returns:
            SendDecision in FREE_FORM mode when eligible, TEMPLATE mode when
            ineligible and a template was supplied

        Raises:
            OutsideMessagingWindowError: If ineligible and no template was supplied
        """
        channel = self.channels.get(platform_type)
        now = now or self.clock()

        last_inbound_at = None
        if channel.session_window is not None:
            latest = await self.messages.latest_inbound(conversation.id)
            last_inbound_at = latest.occurred_at if latest is not None else None

        decision = SendDecision(
            conversation_id=conversation.id,
            mode=SendMode.FREE_FORM,
            eligible=channel.is_within_window(last_inbound_at, now),
            last_inbound_at=last_inbound_at,
            window_expires_at=channel.window_expires_at(last_inbound_at),
        )
        if decision.eligible:
            return decision

        self.logger.info(
            "Conversation outside messaging window",
            conversation_id=conversation.id,
            last_inbound_at=last_inbound_at.isoformat() if last_inbound_at else None,
            template_supplied=template is not None
        )
        return self._ineligible(decision, template)

    def fallback_for_window_expired(self, decision: SendDecision, template: Optional[TemplateRef]) -> SendDecision:
        """
        Handle a platform that reported the window closed despite local eligibility.

        Raises:
            OutsideMessagingWindowError: If the template was already used or none was supplied
        """
        decision.eligible = False
        if decision.mode == SendMode.TEMPLATE:
            raise OutsideMessagingWindowError(
                decision.conversation_id,
                last_inbound_at=decision.last_inbound_at,
                window_expires_at=decision.window_expires_at,
            )
        return self._ineligible(decision, template)

    def _ineligible(self, decision: SendDecision, template: Optional[TemplateRef]) -> SendDecision:
        if template is None:
            raise OutsideMessagingWindowError(
                decision.conversation_id,
                last_inbound_at=decision.last_inbound_at,
                window_expires_at=decision.window_expires_at,
            )
        decision.mode = SendMode.TEMPLATE
        decision.template = template
        return decision
