"""
Auto reply hook.

When a reply suggester is configured, each newly recorded inbound message
is offered to it and a non-empty suggestion is sent back through the
outbound dispatcher. Suggester or send failures never affect ingestion.
"""

from typing import Optional, Protocol

from inbox_hub.core.exceptions import HubError
from inbox_hub.models.entities import Conversation, Message, MessageContent
from inbox_hub.services.base_service import BaseService
from inbox_hub.services.outbound_dispatcher import OutboundDispatcher


class ReplySuggester(Protocol):
    """Produces a reply for an inbound message, or None to stay silent."""

    async def suggest_reply(self, conversation: Conversation, message: Message) -> Optional[str]:
        ...


class AutoReplyService(BaseService):

    def __init__(self, dispatcher: OutboundDispatcher, suggester: ReplySuggester):
        super().__init__()
        self.dispatcher = dispatcher
        self.suggester = suggester

    async def handle_inbound(self, conversation: Conversation, message: Message) -> Optional[Message]:
        """
        Offer an inbound message to the suggester and send its reply.

        Returns:
            The sent reply, or None when nothing was sent
        """
        try:
            reply = await self.suggester.suggest_reply(conversation, message)
            if not reply or not reply.strip():
                return None
            sent = await self.dispatcher.send(conversation, MessageContent.from_text(reply.strip()))
        except HubError as e:
            self.logger.warning(
                "Auto reply not sent",
                conversation_id=conversation.id,
                error_code=e.error_code,
                error=e.message
            )
            return None
        except Exception as e:
            self.logger.error(
                "Reply suggester failed",
                conversation_id=conversation.id,
                error_type=type(e).__name__,
                error=str(e)
            )
            return None

        self.log_operation(
            "auto_reply",
            tenant_id=conversation.tenant_id,
            conversation_id=conversation.id,
            message_id=sent.id
        )
        return sent
