"""
Utility helpers: logging, metrics, cryptography, ids and time handling.
"""

from inbox_hub.utils.logger import setup_logging, get_logger

__all__ = ["setup_logging", "get_logger"]
