"""
Platform API Routes
Connecting and disconnecting Meta assets, diagnostics and history sync.
"""

from typing import Annotated, Optional, Dict, Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
import structlog

from inbox_hub.dependencies import get_diagnostics_service, get_history_sync_service, get_token_manager
from inbox_hub.models.entities import Platform
from inbox_hub.models.types import PlatformType
from inbox_hub.services.diagnostics_service import DiagnosticsService
from inbox_hub.services.history_sync_service import HistorySyncService
from inbox_hub.services.token_manager import TokenManager

logger = structlog.get_logger()
router = APIRouter(prefix="/tenants/{tenant_id}/platforms", tags=["platforms"])


class ConnectPlatformRequest(BaseModel):
    """Result of a completed OAuth flow for one asset."""

    type: PlatformType
    external_id: str = Field(..., min_length=1)
    access_token: str = Field(..., min_length=1, repr=False)
    credentials: Dict[str, Any] = Field(default_factory=dict)


def platform_view(platform: Platform) -> Dict[str, Any]:
    return platform.model_dump(mode="json", exclude={"access_token"})


@router.post("", status_code=status.HTTP_201_CREATED, summary="Connect a platform")
async def connect_platform(
        tenant_id: str,
        request: ConnectPlatformRequest,
        token_manager: Annotated[TokenManager, Depends(get_token_manager)],
) -> Dict[str, Any]:
    platform = await token_manager.connect(
        tenant_id, request.type, request.external_id, request.access_token, request.credentials
    )
    return {"status": "success", "data": platform_view(platform)}


@router.delete("/{platform_id}", summary="Disconnect a platform")
async def disconnect_platform(
        tenant_id: str,
        platform_id: str,
        token_manager: Annotated[TokenManager, Depends(get_token_manager)],
) -> Dict[str, Any]:
    changed = await token_manager.disconnect(tenant_id, platform_id)
    return {"status": "success", "data": {"platform_id": platform_id, "disconnected": changed}}


@router.get("/{platform_id}/diagnostics", summary="Platform diagnostics")
async def platform_diagnostics(
        tenant_id: str,
        platform_id: str,
        diagnostics: Annotated[DiagnosticsService, Depends(get_diagnostics_service)],
        probe_recipient: Optional[str] = Query(default=None),
        probe_text: Optional[str] = Query(default=None, max_length=2000),
) -> Dict[str, Any]:
    """Token check plus an optional, unpersisted probe send."""
    report = await diagnostics.check_platform(
        platform_id, tenant_id=tenant_id, probe_recipient=probe_recipient, probe_text=probe_text
    )
    return {"status": "success", "data": report.to_dict()}


@router.post("/{platform_id}/sync", summary="Backfill Facebook history")
async def sync_platform(
        tenant_id: str,
        platform_id: str,
        token_manager: Annotated[TokenManager, Depends(get_token_manager)],
        history_sync: Annotated[HistorySyncService, Depends(get_history_sync_service)],
) -> Dict[str, Any]:
    await token_manager.get_platform(platform_id, tenant_id=tenant_id)
    report = await history_sync.sync_facebook(platform_id)
    return {"status": "success", "data": report.to_dict()}
