"""
Webhook API Routes
Endpoints receiving Meta webhook deliveries for Facebook, Instagram and WhatsApp.
"""

from typing import Annotated, Optional, Dict, Any

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import PlainTextResponse
import structlog

from inbox_hub.config.constants import SIGNATURE_HEADER
from inbox_hub.dependencies import get_webhook_service
from inbox_hub.models.types import PlatformType
from inbox_hub.services.webhook_service import WebhookService

logger = structlog.get_logger()
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.get(
    "/{platform}",
    response_class=PlainTextResponse,
    summary="Webhook subscription verification",
    description="Echo hub.challenge when the verify token matches"
)
async def verify_webhook(
        platform: PlatformType,
        webhook_service: Annotated[WebhookService, Depends(get_webhook_service)],
        hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
        hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
        hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
) -> str:
    """
    Handle Meta's subscription handshake.

    Raises:
        VerificationFailedError: Mapped to 403 when the token does not match
    """
    return webhook_service.verify_subscription(platform, hub_mode, hub_verify_token, hub_challenge)


@router.post(
    "/{platform}",
    summary="Receive webhook delivery",
    description="Verify, parse and ingest a signed webhook delivery"
)
async def receive_webhook(
        platform: PlatformType,
        request: Request,
        webhook_service: Annotated[WebhookService, Depends(get_webhook_service)],
        signature: Optional[str] = Header(default=None, alias=SIGNATURE_HEADER),
) -> Dict[str, Any]:
    """
    Ingest one webhook delivery.

    The raw body is read before any parsing so the signature is checked
    against the exact bytes Meta signed.
    """
    raw_body = await request.body()
    report = await webhook_service.ingest(platform, raw_body, signature)
    return {"status": "success", "data": report.to_dict()}
