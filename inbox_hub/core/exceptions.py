"""
Core exceptions for the messaging hub.

This module defines the error taxonomy shared by webhook ingestion,
token management, send policy and outbound dispatch. Every error carries
a stable ``error_code`` and a ``to_dict()`` form for structured logging
and API responses.
"""

from datetime import datetime, timezone
from typing import Dict, Any, Optional


class HubError(Exception):
    """Base exception for all hub errors."""

    def __init__(
            self,
            message: str,
            error_code: Optional[str] = None,
            details: Optional[Dict[str, Any]] = None,
            context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "context": self.context,
            "timestamp": self.timestamp.isoformat()
        }


# ============================================================================
# WEBHOOK INGESTION
# ============================================================================

class VerificationFailedError(HubError):
    """Raised when a webhook signature or subscription handshake does not verify."""

    def __init__(self, platform: str, reason: str):
        super().__init__(
            message=f"Webhook verification failed for {platform}: {reason}",
            error_code="VERIFICATION_FAILED",
            details={"platform": platform, "reason": reason}
        )
        self.platform = platform
        self.reason = reason


class MalformedPayloadError(HubError):
    """Raised when a webhook body cannot be parsed into platform events."""

    def __init__(self, platform: str, reason: str):
        super().__init__(
            message=f"Malformed {platform} webhook payload: {reason}",
            error_code="MALFORMED_PAYLOAD",
            details={"platform": platform, "reason": reason}
        )
        self.platform = platform
        self.reason = reason


class DuplicateEventError(HubError):
    """Raised when an inbound event was already recorded. Callers treat it as a no-op."""

    def __init__(self, platform_id: str, platform_message_id: str):
        super().__init__(
            message=f"Event {platform_message_id} already recorded for platform {platform_id}",
            error_code="DUPLICATE_EVENT",
            details={"platform_id": platform_id, "platform_message_id": platform_message_id}
        )
        self.platform_id = platform_id
        self.platform_message_id = platform_message_id


# ============================================================================
# PLATFORM ERRORS
# ============================================================================

class PlatformError(HubError):
    """
    Base exception for errors tied to a connected platform.

    ``message_record`` holds the persisted Message when the error happened
    during an outbound send, so callers can show its recorded status.
    """

    def __init__(
            self,
            message: str,
            error_code: Optional[str] = None,
            details: Optional[Dict[str, Any]] = None,
            message_record: Optional[Any] = None
    ):
        super().__init__(message=message, error_code=error_code, details=details)
        self.message_record = message_record


class UnsupportedPlatformError(PlatformError):
    """Raised when a platform type has no registered channel."""

    def __init__(self, platform_type: str):
        super().__init__(
            message=f"Unsupported platform type: {platform_type}",
            error_code="UNSUPPORTED_PLATFORM",
            details={"platform_type": platform_type}
        )


class ContentValidationError(PlatformError):
    """Raised when outbound content cannot be expressed on a channel."""

    def __init__(self, platform_type: str, field: str, reason: str):
        super().__init__(
            message=f"Invalid {platform_type} message {field}: {reason}",
            error_code="CONTENT_VALIDATION_ERROR",
            details={"platform_type": platform_type, "field": field, "reason": reason}
        )
        self.field = field


class TokenExpiredError(PlatformError):
    """Raised when a platform's access token has expired or was invalidated."""

    def __init__(self, platform_id: str, reason: str = "expired", message_record: Optional[Any] = None):
        super().__init__(
            message=f"Access token for platform {platform_id} is no longer valid ({reason})",
            error_code="TOKEN_EXPIRED",
            details={"platform_id": platform_id, "reason": reason},
            message_record=message_record
        )
        self.platform_id = platform_id


class TokenRevokedError(PlatformError):
    """Raised when the user or app revoked the platform's access."""

    def __init__(self, platform_id: str, reason: str = "revoked", message_record: Optional[Any] = None):
        super().__init__(
            message=f"Access to platform {platform_id} was revoked ({reason})",
            error_code="TOKEN_REVOKED",
            details={"platform_id": platform_id, "reason": reason},
            message_record=message_record
        )
        self.platform_id = platform_id


class OutsideMessagingWindowError(PlatformError):
    """
    Raised when a free-form send falls outside the customer-service window
    and no template alternative was supplied.
    """

    def __init__(
            self,
            conversation_id: str,
            last_inbound_at: Optional[datetime] = None,
            window_expires_at: Optional[datetime] = None,
            message_record: Optional[Any] = None
    ):
        super().__init__(
            message=f"Conversation {conversation_id} is outside the messaging window; "
                    f"send an approved template instead",
            error_code="OUTSIDE_MESSAGING_WINDOW",
            details={
                "conversation_id": conversation_id,
                "last_inbound_at": last_inbound_at.isoformat() if last_inbound_at else None,
                "window_expires_at": window_expires_at.isoformat() if window_expires_at else None,
                "template_required": True
            },
            message_record=message_record
        )
        self.conversation_id = conversation_id
        self.last_inbound_at = last_inbound_at
        self.window_expires_at = window_expires_at


class RateLimitedError(PlatformError):
    """Raised when the retry budget is exhausted on a throttled send."""

    def __init__(
            self,
            platform_id: str,
            attempts: int,
            retry_after: Optional[float] = None,
            message_record: Optional[Any] = None
    ):
        super().__init__(
            message=f"Platform {platform_id} still throttling after {attempts} attempts",
            error_code="RATE_LIMITED",
            details={"platform_id": platform_id, "attempts": attempts, "retry_after": retry_after},
            message_record=message_record
        )
        self.retry_after = retry_after
        self.attempts = attempts


class PermanentRejectError(PlatformError):
    """Raised when the platform rejects a send in a way retrying cannot fix."""

    def __init__(
            self,
            platform_id: str,
            reason: str,
            graph_code: Optional[int] = None,
            graph_subcode: Optional[int] = None,
            message_record: Optional[Any] = None
    ):
        super().__init__(
            message=f"Platform {platform_id} rejected the message: {reason}",
            error_code="PERMANENT_REJECT",
            details={
                "platform_id": platform_id,
                "reason": reason,
                "graph_code": graph_code,
                "graph_subcode": graph_subcode
            },
            message_record=message_record
        )
        self.graph_code = graph_code
        self.graph_subcode = graph_subcode


class TimeoutUnresolvedError(PlatformError):
    """
    Raised when a send timed out after the request may have reached the
    platform. The message stays queued and is flagged for reconciliation.
    """

    def __init__(self, platform_id: str, message_id: str, message_record: Optional[Any] = None):
        super().__init__(
            message=f"Send of message {message_id} via platform {platform_id} timed out "
                    f"with unknown outcome",
            error_code="TIMEOUT_UNRESOLVED",
            details={"platform_id": platform_id, "message_id": message_id},
            message_record=message_record
        )
        self.message_id = message_id


# ============================================================================
# GRAPH TRANSPORT
# ============================================================================

class GraphTransportError(HubError):
    """
    Raised by the Graph client when no HTTP response was obtained.

    ``request_sent`` is False only when the failure provably happened
    before the request left this process (connect phase).
    """

    def __init__(self, message: str, request_sent: bool, path: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="GRAPH_TRANSPORT_ERROR",
            details={"request_sent": request_sent, "path": path}
        )
        self.request_sent = request_sent


class GraphConnectError(GraphTransportError):
    """Connection could not be established; the request was not sent."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message=message, request_sent=False, path=path)


class GraphTimeoutError(GraphTransportError):
    """The request was sent but no complete response arrived in time."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message=message, request_sent=True, path=path)
