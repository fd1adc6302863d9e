"""
Inbox Hub - Multi-tenant Meta messaging hub.

This package connects Facebook Messenger, Instagram Direct and WhatsApp
Business channels to a unified inbox: webhook ingestion, identity
resolution, outbound dispatch and real-time fan-out to agent sessions.
"""

__version__ = "1.0.0"
__author__ = "Development Team"
__email__ = "dev@company.com"
__description__ = "Multi-tenant Meta messaging hub - unified inbox integration layer"

# Package metadata
__title__ = "inbox-hub"
__license__ = "MIT"

# Semantic version components
VERSION_INFO = (1, 0, 0)

# Service identification
SERVICE_NAME = "inbox-hub"
SERVICE_COMPONENT = "platform-integration"
API_VERSION = "v1"

# Export commonly used components for convenience
from inbox_hub.config.settings import get_settings
from inbox_hub.utils.logger import get_logger

__all__ = [
    "__version__",
    "__author__",
    "__email__",
    "__description__",
    "VERSION_INFO",
    "SERVICE_NAME",
    "SERVICE_COMPONENT",
    "API_VERSION",
    "get_settings",
    "get_logger",
]
