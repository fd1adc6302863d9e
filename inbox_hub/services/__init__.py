"""
Service layer: ingestion, identity, policy, dispatch, realtime fan-out and diagnostics.
"""

from inbox_hub.services.auto_reply_service import AutoReplyService, ReplySuggester
from inbox_hub.services.diagnostics_service import DiagnosticsService, DiagnosticReport, ProbeResult
from inbox_hub.services.history_sync_service import HistorySyncService, SyncReport
from inbox_hub.services.identity_resolver import IdentityResolver
from inbox_hub.services.outbound_dispatcher import OutboundDispatcher
from inbox_hub.services.realtime_backplane import RedisBackplane
from inbox_hub.services.realtime_broadcaster import RealtimeBroadcaster, Subscription
from inbox_hub.services.send_policy import SendPolicyEngine, SendDecision
from inbox_hub.services.service_container import ServiceContainer
from inbox_hub.services.token_manager import TokenManager
from inbox_hub.services.webhook_service import WebhookService, IngestionReport

__all__ = [
    "AutoReplyService",
    "ReplySuggester",
    "DiagnosticsService",
    "DiagnosticReport",
    "ProbeResult",
    "HistorySyncService",
    "SyncReport",
    "IdentityResolver",
    "OutboundDispatcher",
    "RedisBackplane",
    "RealtimeBroadcaster",
    "Subscription",
    "SendPolicyEngine",
    "SendDecision",
    "ServiceContainer",
    "TokenManager",
    "WebhookService",
    "IngestionReport",
]
