"""
API v1 Package
Version 1 of the hub's API endpoints.

Tenant-scoped routes live under the versioned prefix; webhook and realtime
routes are mounted at the root since their URLs are registered with Meta
and with agent clients.
"""

from fastapi import APIRouter

from inbox_hub.config.constants import API_PREFIX
from .message_routes import router as message_router
from .platform_routes import router as platform_router
from .realtime_routes import router as realtime_router
from .webhook_routes import router as webhook_router

# Create main v1 router
router = APIRouter(prefix=API_PREFIX)

# Include tenant-scoped sub-routers
router.include_router(message_router)
router.include_router(platform_router)

__all__ = [
    "router",
    "message_router",
    "platform_router",
    "realtime_router",
    "webhook_router",
]
