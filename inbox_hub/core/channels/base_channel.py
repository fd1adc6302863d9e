"""
Abstract base class defining the channel interface and common functionality.

A channel knows one Meta product: how its webhooks are signed and
shaped, how a send request is built, how its send responses are
classified and whether free-form sends are limited to a session window.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, List, Tuple

import structlog

from inbox_hub.config.constants import (
    AUTH_ERROR_CODES, RATE_LIMIT_ERROR_CODES, RETRYABLE_HTTP_STATUSES,
    WINDOW_ERROR_CODES, WINDOW_ERROR_SUBCODES
)
from inbox_hub.core.exceptions import MalformedPayloadError
from inbox_hub.core.graph_client import GraphClient, GraphResponse
from inbox_hub.models.entities import Platform, MessageContent, TemplateRef
from inbox_hub.models.events import RawEvent
from inbox_hub.models.types import PlatformType, SendOutcome
from inbox_hub.utils.encryption import verify_hub_signature


@dataclass
class SendResult:
    """Classified outcome of one send call."""

    outcome: SendOutcome
    platform_message_id: Optional[str] = None
    status_code: Optional[int] = None
    error_code: Optional[int] = None
    error_subcode: Optional[int] = None
    error_message: Optional[str] = None
    retry_after: Optional[float] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        return self.outcome == SendOutcome.ACCEPTED

    @property
    def failure_code(self) -> Optional[str]:
        if self.error_code is not None:
            return str(self.error_code)
        if self.status_code is not None:
            return f"http_{self.status_code}"
        return None


class BaseChannel(ABC):
    """Abstract base class for all channel implementations."""

    # Channels without a window accept free-form sends at any time
    session_window: Optional[timedelta] = None

    def __init__(self, graph: GraphClient):
        self.graph = graph
        self.logger = structlog.get_logger(self.__class__.__name__)

    @property
    @abstractmethod
    def platform_type(self) -> PlatformType:
        """Return the platform type."""
        pass

    @property
    @abstractmethod
    def envelope_object(self) -> str:
        """Value of the webhook envelope's ``object`` field."""
        pass

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def verify_signature(self, raw_body: bytes, signature_header: Optional[str], app_secret: str) -> bool:
        """
        Verify the X-Hub-Signature-256 header of a webhook delivery.

        Args:
            raw_body: Exact request body bytes as received
            signature_header: Header value (``sha256=<hex>``), may be None
            app_secret: App secret shared with Meta

        Returns:
            True if the signature matches
        """
        return verify_hub_signature(raw_body, app_secret, signature_header)

    def parse_events(self, payload: Dict[str, Any]) -> List[RawEvent]:
        """
        Split a webhook envelope into platform events.

        Unknown fields and event kinds are ignored.

        Raises:
            MalformedPayloadError: If the envelope is not for this platform
                or a message event lacks its id or sender
        """
        if not isinstance(payload, dict):
            raise MalformedPayloadError(self.platform_type.value, "payload is not a JSON object")

        envelope_object = payload.get("object")
        if envelope_object != self.envelope_object:
            raise MalformedPayloadError(
                self.platform_type.value,
                f"unexpected envelope object {envelope_object!r}"
            )

        entries = payload.get("entry")
        if not isinstance(entries, list):
            raise MalformedPayloadError(self.platform_type.value, "missing entry list")

        events: List[RawEvent] = []
        for entry in entries:
            if not isinstance(entry, dict):
                raise MalformedPayloadError(self.platform_type.value, "entry is not an object")
            events.extend(self._parse_entry(entry))
        return events

    @abstractmethod
    def _parse_entry(self, entry: Dict[str, Any]) -> List[RawEvent]:
        pass

    def _malformed(self, reason: str) -> MalformedPayloadError:
        return MalformedPayloadError(self.platform_type.value, reason)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    @abstractmethod
    def validate_recipient(self, recipient: str) -> bool:
        """Validate the recipient identifier format for this channel."""
        pass

    @abstractmethod
    def build_send_request(
            self,
            platform: Platform,
            recipient: str,
            content: Optional[MessageContent],
            template: Optional[TemplateRef] = None
    ) -> Tuple[str, Dict[str, Any]]:
        """
        Build the Graph API path and JSON body of a send.

        Raises:
            ContentValidationError: If the content cannot be sent on this channel
        """
        pass

    @abstractmethod
    def extract_message_id(self, data: Dict[str, Any]) -> Optional[str]:
        """Pull the platform message id out of a successful send response."""
        pass

    async def send(
            self,
            platform: Platform,
            recipient: str,
            content: Optional[MessageContent],
            template: Optional[TemplateRef] = None
    ) -> SendResult:
        """
        Send one message and classify the response.

        Raises:
            GraphTransportError: When no HTTP response was obtained
            ContentValidationError: If the content cannot be sent on this channel
        """
        path, body = self.build_send_request(platform, recipient, content, template)
        response = await self.graph.post(path, platform.access_token, json=body)
        result = self.classify_response(response)

        self.logger.info(
            "Send classified",
            platform_id=platform.id,
            outcome=result.outcome.value,
            status_code=result.status_code,
            error_code=result.error_code
        )
        return result

    def classify_response(self, response: GraphResponse) -> SendResult:
        """
        Map a Graph API response onto a SendOutcome.

        Authentication failures are checked first since Meta reports an
        expired token with HTTP 400 and code 190.
        """
        result = SendResult(
            outcome=SendOutcome.PERMANENT_REJECT,
            status_code=response.status_code,
            error_code=response.error_code,
            error_subcode=response.error_subcode,
            error_message=response.error_message or None,
            retry_after=response.retry_after,
            raw=response.data,
        )

        if response.ok:
            message_id = self.extract_message_id(response.data)
            if message_id:
                result.outcome = SendOutcome.ACCEPTED
                result.platform_message_id = message_id
            else:
                result.error_message = "response carried no message id"
            return result

        code, subcode = response.error_code, response.error_subcode
        if response.status_code == 401 or code in AUTH_ERROR_CODES:
            result.outcome = SendOutcome.AUTH_FAILED
        elif code in WINDOW_ERROR_CODES or subcode in WINDOW_ERROR_SUBCODES:
            result.outcome = SendOutcome.WINDOW_EXPIRED
        elif (response.status_code in RETRYABLE_HTTP_STATUSES
              or response.status_code >= 500
              or code in RATE_LIMIT_ERROR_CODES):
            result.outcome = SendOutcome.RATE_LIMITED
        return result

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def is_within_window(self, last_inbound_at: Optional[datetime], now: datetime) -> bool:
        """
        Eligibility predicate for free-form sends.

        Windowed channels require an inbound message strictly less than
        ``session_window`` ago.
        """
        if self.session_window is None:
            return True
        if last_inbound_at is None:
            return False
        return now - last_inbound_at < self.session_window

    def window_expires_at(self, last_inbound_at: Optional[datetime]) -> Optional[datetime]:
        if self.session_window is None or last_inbound_at is None:
            return None
        return last_inbound_at + self.session_window

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    @abstractmethod
    def account_profile_request(self, platform: Platform) -> Tuple[str, Dict[str, Any]]:
        """Path and query of the endpoint describing the connected asset."""
        pass

    async def fetch_account_profile(self, platform: Platform) -> GraphResponse:
        """Call the asset profile endpoint with the platform's token."""
        path, params = self.account_profile_request(platform)
        return await self.graph.get(path, platform.access_token, params=params)

    async def fetch_user_profile(self, platform: Platform, external_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a customer's public profile.

        Channels whose webhooks already carry the profile return None.
        """
        return None
