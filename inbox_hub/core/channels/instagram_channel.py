"""
Instagram Direct platform integration.

Direct messages arrive in the Messenger ``messaging`` shape; comments on
the account's media arrive as ``changes`` with ``field: comments`` and
are surfaced as comment messages from the commenting user.
"""

from typing import Dict, Any, Optional, List, Tuple

from inbox_hub.config.constants import ENVELOPE_OBJECT_INSTAGRAM, PROFILE_FIELDS_INSTAGRAM
from inbox_hub.core.channels.messenger_channel import MessengerPlatformChannel, _profile_from_graph
from inbox_hub.core.exceptions import GraphTransportError
from inbox_hub.models.entities import Platform
from inbox_hub.models.events import RawEvent
from inbox_hub.models.types import PlatformType, RawEventKind
from inbox_hub.utils.date_utils import coerce_timestamp

USER_PROFILE_FIELDS = "name,username,profile_pic"


class InstagramChannel(MessengerPlatformChannel):
    """Instagram professional account messaging."""

    @property
    def platform_type(self) -> PlatformType:
        return PlatformType.INSTAGRAM

    @property
    def envelope_object(self) -> str:
        return ENVELOPE_OBJECT_INSTAGRAM

    def _parse_entry(self, entry: Dict[str, Any]) -> List[RawEvent]:
        events = super()._parse_entry(entry)
        for change in entry.get("changes") or []:
            if isinstance(change, dict) and change.get("field") == "comments":
                events.append(self._parse_comment(entry, change))
        return events

    def _parse_comment(self, entry: Dict[str, Any], change: Dict[str, Any]) -> RawEvent:
        value = change.get("value") or {}
        comment_id = value.get("id")
        sender_id = (value.get("from") or {}).get("id")
        account_id = (value.get("media") or {}).get("instagram_account_id") or entry.get("id")

        if not comment_id or not sender_id:
            raise self._malformed("comment event without id or author")
        if not account_id:
            raise self._malformed("comment event without account id")

        return RawEvent(
            kind=RawEventKind.MESSAGE,
            platform_type=self.platform_type,
            recipient_external_id=str(account_id),
            sender_external_id=str(sender_id),
            platform_message_id=str(comment_id),
            occurred_at=coerce_timestamp(entry.get("time"), millis=False),
            profile_name=(value.get("from") or {}).get("username"),
            payload=change,
        )

    def account_profile_request(self, platform: Platform) -> Tuple[str, Dict[str, Any]]:
        return f"/{platform.external_id}", {"fields": PROFILE_FIELDS_INSTAGRAM}

    async def fetch_user_profile(self, platform: Platform, external_id: str) -> Optional[Dict[str, Any]]:
        """Fetch an Instagram-scoped user's name and username, best effort."""
        try:
            response = await self.graph.get(
                f"/{external_id}", platform.access_token, params={"fields": USER_PROFILE_FIELDS}
            )
        except GraphTransportError as e:
            self.logger.debug("Profile fetch failed", platform_id=platform.id, error=e.error_code)
            return None

        if not response.ok:
            return None
        return _profile_from_graph(response.data)
