"""
Realtime Broadcaster

Fans conversation updates out to the agent sessions subscribed to a
tenant. Delivery is best effort: events are neither persisted nor
replayed, and a session that cannot keep up is closed so its client
re-fetches state on reconnect. Within a process, events reach each
session in publish order.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Any, List, Optional, Set, TYPE_CHECKING

import structlog
from redis.exceptions import RedisError

from inbox_hub.models.events import RealtimeEvent
from inbox_hub.models.types import RealtimeEventType, TenantId
from inbox_hub.utils.id_generator import generate_id
from inbox_hub.utils.metrics import MetricsCollector

if TYPE_CHECKING:
    from inbox_hub.services.realtime_backplane import RedisBackplane

_CLOSED = object()


class Subscription:
    """One agent session's bounded event queue, scoped to a single tenant."""

    def __init__(self, tenant_id: TenantId, max_queue: int):
        self.id = generate_id()
        self.tenant_id = tenant_id
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue + 1)
        self._max_queue = max_queue

    def offer(self, event: RealtimeEvent) -> bool:
        """Enqueue without blocking. Returns False if the session is closed or full."""
        if self.closed or self._queue.qsize() >= self._max_queue:
            return False
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # one slot is reserved for the close marker
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> Optional[RealtimeEvent]:
        """Wait for the next event; None once the session is closed and drained."""
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def drain(self) -> List[RealtimeEvent]:
        """Return all queued events without waiting."""
        events: List[RealtimeEvent] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            events.append(item)
        return events

    def __aiter__(self):
        return self

    async def __anext__(self) -> RealtimeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class RealtimeBroadcaster:
    """Per-tenant publish/subscribe hub for agent sessions."""

    def __init__(
            self,
            queue_size: int = 256,
            metrics: Optional[MetricsCollector] = None,
            backplane: Optional["RedisBackplane"] = None
    ):
        self.queue_size = queue_size
        self.metrics = metrics
        self.backplane = backplane
        self.logger = structlog.get_logger(self.__class__.__name__)
        self._sessions: Dict[TenantId, Set[Subscription]] = {}
        self._locks: Dict[str, List[Any]] = {}

    def subscribe(self, tenant_id: TenantId) -> Subscription:
        subscription = Subscription(tenant_id, self.queue_size)
        self._sessions.setdefault(tenant_id, set()).add(subscription)
        self.logger.info("Session subscribed", tenant_id=tenant_id, subscription_id=subscription.id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        sessions = self._sessions.get(subscription.tenant_id)
        if sessions is not None:
            sessions.discard(subscription)
            if not sessions:
                self._sessions.pop(subscription.tenant_id, None)
        subscription.close()
        self.logger.info(
            "Session unsubscribed",
            tenant_id=subscription.tenant_id,
            subscription_id=subscription.id
        )

    def session_count(self, tenant_id: TenantId) -> int:
        return len(self._sessions.get(tenant_id, ()))

    async def publish(self, tenant_id: TenantId, event: RealtimeEvent) -> int:
        """
        Publish an event to every session of a tenant.

        With a backplane configured the event is relayed through Redis and
        delivered locally by the relay, so the return value is 0. A Redis
        failure loses the event but never reaches the caller: the write that
        produced it has already committed.

        Returns:
            Number of local sessions the event was queued for
        """
        if event.tenant_id != tenant_id:
            raise ValueError("Event tenant does not match publish tenant")

        if self.metrics is not None:
            self.metrics.record_realtime_event(event.type.value)

        if self.backplane is not None:
            try:
                await self.backplane.publish(event)
            except RedisError as e:
                self.logger.warning(
                    "Realtime backplane publish failed",
                    tenant_id=tenant_id,
                    event_type=event.type.value,
                    error=str(e)
                )
                if self.metrics is not None:
                    self.metrics.record_realtime_publish_failure(event.type.value)
            return 0
        return self.deliver_local(event)

    def deliver_local(self, event: RealtimeEvent) -> int:
        """Queue an event for this process's sessions of the event's tenant."""
        delivered = 0
        for subscription in list(self._sessions.get(event.tenant_id, ())):
            if subscription.offer(event):
                delivered += 1
                continue
            self.logger.warning(
                "Dropping slow realtime session",
                tenant_id=event.tenant_id,
                subscription_id=subscription.id
            )
            self.unsubscribe(subscription)
        return delivered

    async def emit(
            self,
            event_type: RealtimeEventType,
            tenant_id: TenantId,
            conversation_id: Optional[str] = None,
            payload: Optional[Dict[str, Any]] = None
    ) -> int:
        """Build and publish an event in one call."""
        event = RealtimeEvent(
            type=event_type,
            tenant_id=tenant_id,
            conversation_id=conversation_id,
            payload=payload or {},
        )
        return await self.publish(tenant_id, event)

    @asynccontextmanager
    async def ordered(self, key: str):
        """
        Serialize commit-and-publish sections sharing a key (a conversation id).

        Holders of the same key run one at a time, so events for one
        conversation are published in the order their writes committed.
        """
        entry = self._locks.get(key)
        if entry is None:
            entry = [asyncio.Lock(), 0]
            self._locks[key] = entry
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._locks.pop(key, None)

    def close_all(self) -> None:
        for sessions in list(self._sessions.values()):
            for subscription in list(sessions):
                self.unsubscribe(subscription)
