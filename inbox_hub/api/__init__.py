"""
HTTP and WebSocket surface of the hub.
"""

from inbox_hub.api.error_handlers import setup_exception_handlers

__all__ = ["setup_exception_handlers"]
