"""
Conversation and Message API Routes
Agent-facing endpoints for reading conversations and sending replies.
"""

from typing import Annotated, Optional, Dict, Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, model_validator
import structlog

from inbox_hub.config.constants import MAX_MESSAGE_TEXT_LENGTH
from inbox_hub.dependencies import get_dispatcher, get_repositories
from inbox_hub.models.entities import Conversation, MessageContent, TemplateRef
from inbox_hub.repositories.base_repository import Repositories
from inbox_hub.services.exceptions import NotFoundError
from inbox_hub.services.outbound_dispatcher import OutboundDispatcher

logger = structlog.get_logger()
router = APIRouter(prefix="/tenants/{tenant_id}/conversations", tags=["conversations"])


class SendMessageRequest(BaseModel):
    """Outbound message; ``text`` is shorthand for text content."""

    text: Optional[str] = Field(default=None, min_length=1, max_length=MAX_MESSAGE_TEXT_LENGTH)
    content: Optional[MessageContent] = None
    template: Optional[TemplateRef] = None

    @model_validator(mode="after")
    def validate_payload(self):
        if self.text is None and self.content is None and self.template is None:
            raise ValueError("One of text, content or template is required")
        if self.text is not None and self.content is not None:
            raise ValueError("Provide either text or content, not both")
        return self

    def to_content(self) -> Optional[MessageContent]:
        if self.content is not None:
            return self.content
        if self.text is not None:
            return MessageContent.from_text(self.text)
        return None


async def load_conversation(repositories: Repositories, tenant_id: str, conversation_id: str) -> Conversation:
    """
    Raises:
        NotFoundError: If the conversation does not exist for this tenant
    """
    conversation = await repositories.conversations.get(conversation_id)
    if conversation is None or conversation.tenant_id != tenant_id:
        raise NotFoundError(
            f"Conversation {conversation_id} not found",
            resource_type="Conversation",
            resource_id=conversation_id
        )
    return conversation


@router.get("", summary="List conversations")
async def list_conversations(
        tenant_id: str,
        repositories: Annotated[Repositories, Depends(get_repositories)],
        limit: int = Query(default=50, ge=1, le=200),
) -> Dict[str, Any]:
    conversations = await repositories.conversations.list_by_tenant(tenant_id, limit=limit)
    return {"status": "success", "data": [c.model_dump(mode="json") for c in conversations]}


@router.get("/{conversation_id}/messages", summary="Conversation history")
async def list_messages(
        tenant_id: str,
        conversation_id: str,
        repositories: Annotated[Repositories, Depends(get_repositories)],
        limit: Optional[int] = Query(default=None, ge=1, le=1000),
) -> Dict[str, Any]:
    """History ordered by platform timestamp, oldest first."""
    conversation = await load_conversation(repositories, tenant_id, conversation_id)
    messages = await repositories.messages.list_for_conversation(conversation.id, limit=limit)
    return {
        "status": "success",
        "data": [m.model_dump(mode="json", exclude={"raw_payload"}) for m in messages],
    }


@router.post(
    "/{conversation_id}/messages",
    status_code=status.HTTP_201_CREATED,
    summary="Send a reply",
    description="Send free-form content, or a template when the session window is closed"
)
async def send_message(
        tenant_id: str,
        conversation_id: str,
        request: SendMessageRequest,
        repositories: Annotated[Repositories, Depends(get_repositories)],
        dispatcher: Annotated[OutboundDispatcher, Depends(get_dispatcher)],
) -> Dict[str, Any]:
    conversation = await load_conversation(repositories, tenant_id, conversation_id)
    message = await dispatcher.send(conversation, request.to_content(), template=request.template)

    logger.info(
        "Reply sent",
        tenant_id=tenant_id,
        conversation_id=conversation_id,
        message_id=message.id
    )
    return {"status": "success", "data": message.model_dump(mode="json", exclude={"raw_payload"})}
