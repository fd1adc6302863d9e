"""
Metrics collection for the messaging pipeline.

Counters and histograms are registered on a private CollectorRegistry per
collector so multiple application instances (and tests) never collide on
the process-global default registry.
"""

from typing import Optional

from prometheus_client import (
    Counter, Histogram, CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)

from inbox_hub.utils.logger import get_logger

logger = get_logger(__name__)


class MetricsCollector:
    """
    Prometheus metrics for ingestion, dispatch, tokens and realtime fan-out.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.inbound_events = Counter(
            'inbox_hub_inbound_events_total',
            'Webhook events processed by outcome',
            ['platform', 'outcome'],
            registry=self.registry
        )
        self.webhook_rejections = Counter(
            'inbox_hub_webhook_rejections_total',
            'Webhook calls rejected before processing',
            ['platform', 'reason'],
            registry=self.registry
        )
        self.outbound_sends = Counter(
            'inbox_hub_outbound_sends_total',
            'Outbound send attempts by classified outcome',
            ['platform', 'outcome'],
            registry=self.registry
        )
        self.outbound_duration = Histogram(
            'inbox_hub_outbound_duration_seconds',
            'Duration of a single Graph API send call',
            ['platform'],
            registry=self.registry
        )
        self.token_invalidations = Counter(
            'inbox_hub_token_invalidations_total',
            'Platforms deactivated after authentication failures',
            ['platform', 'reason'],
            registry=self.registry
        )
        self.realtime_events = Counter(
            'inbox_hub_realtime_events_total',
            'Realtime events published to agent sessions',
            ['event_type'],
            registry=self.registry
        )
        self.realtime_publish_failures = Counter(
            'inbox_hub_realtime_publish_failures_total',
            'Realtime events lost because the backplane rejected them',
            ['event_type'],
            registry=self.registry
        )

    def record_inbound(self, platform: str, outcome: str) -> None:
        self.inbound_events.labels(platform=platform, outcome=outcome).inc()

    def record_rejection(self, platform: str, reason: str) -> None:
        self.webhook_rejections.labels(platform=platform, reason=reason).inc()

    def record_send(self, platform: str, outcome: str, duration: Optional[float] = None) -> None:
        self.outbound_sends.labels(platform=platform, outcome=outcome).inc()
        if duration is not None:
            self.outbound_duration.labels(platform=platform).observe(duration)

    def record_token_invalidation(self, platform: str, reason: str) -> None:
        self.token_invalidations.labels(platform=platform, reason=reason).inc()

    def record_realtime_event(self, event_type: str) -> None:
        self.realtime_events.labels(event_type=event_type).inc()

    def record_realtime_publish_failure(self, event_type: str) -> None:
        self.realtime_publish_failures.labels(event_type=event_type).inc()

    def export(self) -> bytes:
        """Render the registry in Prometheus text exposition format."""
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST
