"""
Normalization of platform events into the canonical message shape.
"""

from inbox_hub.core.normalizers.message_normalizer import MessageNormalizer, conversation_key

__all__ = ["MessageNormalizer", "conversation_key"]
