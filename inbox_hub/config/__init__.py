"""
Configuration package for Inbox Hub.

This package provides centralized configuration management with
environment-based settings, validation, and constants.
"""

from inbox_hub.config.settings import get_settings, reload_settings, Settings
from inbox_hub.config.constants import (
    SERVICE_NAME,
    API_VERSION,
    API_PREFIX,
    SIGNATURE_HEADER,
)

__all__ = [
    "get_settings",
    "reload_settings",
    "Settings",
    "SERVICE_NAME",
    "API_VERSION",
    "API_PREFIX",
    "SIGNATURE_HEADER",
]
