"""
Channel registry.

The set of platform types is closed: each type maps to exactly one
channel instance sharing the process-wide Graph client.
"""

from typing import Dict, List

import structlog

from inbox_hub.core.channels.base_channel import BaseChannel
from inbox_hub.core.channels.instagram_channel import InstagramChannel
from inbox_hub.core.channels.messenger_channel import FacebookMessengerChannel
from inbox_hub.core.channels.whatsapp_channel import WhatsAppChannel
from inbox_hub.core.exceptions import UnsupportedPlatformError
from inbox_hub.core.graph_client import GraphClient
from inbox_hub.models.types import PlatformType

logger = structlog.get_logger(__name__)


class ChannelRegistry:
    """Lookup of channel implementations by platform type."""

    def __init__(self, channels: List[BaseChannel]):
        self._channels: Dict[PlatformType, BaseChannel] = {}
        for channel in channels:
            if channel.platform_type in self._channels:
                raise ValueError(f"Duplicate channel for {channel.platform_type.value}")
            self._channels[channel.platform_type] = channel

        logger.info(
            "Channel registry initialized",
            registered_channels=[platform_type.value for platform_type in self._channels]
        )

    def get(self, platform_type) -> BaseChannel:
        """
        Get the channel for a platform type.

        Args:
            platform_type: PlatformType or its string value

        Raises:
            UnsupportedPlatformError: If the type is unknown
        """
        try:
            key = PlatformType(platform_type)
        except ValueError as e:
            raise UnsupportedPlatformError(str(platform_type)) from e

        channel = self._channels.get(key)
        if channel is None:
            raise UnsupportedPlatformError(key.value)
        return channel

    @property
    def platform_types(self) -> List[PlatformType]:
        return list(self._channels)


def create_channel_registry(graph: GraphClient, session_window_hours: int = 24) -> ChannelRegistry:
    """Build the registry with all supported channels."""
    return ChannelRegistry([
        FacebookMessengerChannel(graph),
        InstagramChannel(graph),
        WhatsAppChannel(graph, session_window_hours=session_window_hours),
    ])
