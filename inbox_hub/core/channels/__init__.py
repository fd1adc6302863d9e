"""
Channel implementations for the supported Meta messaging products.
"""

from inbox_hub.core.channels.base_channel import BaseChannel, SendResult
from inbox_hub.core.channels.messenger_channel import FacebookMessengerChannel
from inbox_hub.core.channels.instagram_channel import InstagramChannel
from inbox_hub.core.channels.whatsapp_channel import WhatsAppChannel
from inbox_hub.core.channels.channel_factory import ChannelRegistry, create_channel_registry

__all__ = [
    "BaseChannel",
    "SendResult",
    "FacebookMessengerChannel",
    "InstagramChannel",
    "WhatsAppChannel",
    "ChannelRegistry",
    "create_channel_registry",
]
