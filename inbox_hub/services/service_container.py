"""
Service Container

Builds the service graph from settings and owns the lifecycle of the
resources behind it: the Graph API client, the store connection, the
optional Redis backplane and the history sync loop.
"""

import asyncio
from typing import Optional, Dict, Any

import httpx

from inbox_hub.config.settings import Settings, StorageBackend
from inbox_hub.core.channels.channel_factory import ChannelRegistry, create_channel_registry
from inbox_hub.core.graph_client import GraphClient
from inbox_hub.core.normalizers.message_normalizer import MessageNormalizer
from inbox_hub.database.mongodb import MongoDBConnectionManager, MongoIndexManager
from inbox_hub.database.redis_client import RedisConnectionManager
from inbox_hub.repositories.base_repository import Repositories
from inbox_hub.repositories.memory_repository import create_memory_repositories
from inbox_hub.repositories.mongo_repository import create_mongo_repositories
from inbox_hub.services.auto_reply_service import AutoReplyService, ReplySuggester
from inbox_hub.services.diagnostics_service import DiagnosticsService
from inbox_hub.services.exceptions import ServiceError
from inbox_hub.services.history_sync_service import HistorySyncService
from inbox_hub.services.identity_resolver import IdentityResolver
from inbox_hub.services.outbound_dispatcher import OutboundDispatcher
from inbox_hub.services.realtime_backplane import RedisBackplane
from inbox_hub.services.realtime_broadcaster import RealtimeBroadcaster
from inbox_hub.services.send_policy import SendPolicyEngine
from inbox_hub.services.token_manager import TokenManager
from inbox_hub.services.webhook_service import WebhookService
from inbox_hub.utils.encryption import TokenCipher
from inbox_hub.utils.logger import get_logger
from inbox_hub.utils.metrics import MetricsCollector

logger = get_logger(__name__)


class ServiceContainer:
    """
    Dependency container for the hub's services.

    ``repositories`` and ``graph_transport`` may be injected to run the
    whole pipeline against in-memory storage and a fake Graph API.
    """

    def __init__(
            self,
            settings: Settings,
            repositories: Optional[Repositories] = None,
            graph_transport: Optional[httpx.AsyncBaseTransport] = None,
            reply_suggester: Optional[ReplySuggester] = None,
            **service_options: Any
    ):
        self.settings = settings
        self._repositories = repositories
        self._graph_transport = graph_transport
        self._reply_suggester = reply_suggester
        self._service_options = service_options

        self._mongo: Optional[MongoDBConnectionManager] = None
        self._redis: Optional[RedisConnectionManager] = None
        self._sync_task: Optional[asyncio.Task] = None
        self._sync_stop: Optional[asyncio.Event] = None
        self._initialized = False
        self._lock = asyncio.Lock()

        self.metrics = MetricsCollector()
        self.graph: Optional[GraphClient] = None
        self.channels: Optional[ChannelRegistry] = None
        self.broadcaster: Optional[RealtimeBroadcaster] = None
        self.backplane: Optional[RedisBackplane] = None
        self.token_manager: Optional[TokenManager] = None
        self.normalizer: Optional[MessageNormalizer] = None
        self.identity_resolver: Optional[IdentityResolver] = None
        self.send_policy: Optional[SendPolicyEngine] = None
        self.dispatcher: Optional[OutboundDispatcher] = None
        self.auto_reply: Optional[AutoReplyService] = None
        self.webhook_service: Optional[WebhookService] = None
        self.diagnostics: Optional[DiagnosticsService] = None
        self.history_sync: Optional[HistorySyncService] = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def repositories(self) -> Repositories:
        if self._repositories is None:
            raise ServiceError("Service container not initialized")
        return self._repositories

    async def initialize(self) -> None:
        """Connect resources and build every service. Safe to call twice."""
        async with self._lock:
            if self._initialized:
                return

            settings = self.settings
            if self._repositories is None:
                self._repositories = await self._create_repositories()

            self.graph = GraphClient(
                settings.META_GRAPH_API_BASE_URL,
                settings.META_GRAPH_API_VERSION,
                connect_timeout=settings.OUTBOUND_CONNECT_TIMEOUT_SECONDS,
                timeout=settings.OUTBOUND_TIMEOUT_SECONDS,
                transport=self._graph_transport,
            )
            self.channels = create_channel_registry(self.graph, settings.WHATSAPP_SESSION_WINDOW_HOURS)
            self.broadcaster = RealtimeBroadcaster(
                queue_size=settings.REALTIME_SESSION_QUEUE_SIZE,
                metrics=self.metrics,
            )
            if settings.REALTIME_BACKPLANE_ENABLED:
                await self._start_backplane()

            self._build_services()
            self._initialized = True

            if settings.FACEBOOK_SYNC_ENABLED:
                self._sync_stop = asyncio.Event()
                self._sync_task = asyncio.create_task(self.history_sync.run_periodic(self._sync_stop))

            logger.info(
                "Service container initialized",
                storage_backend=settings.STORAGE_BACKEND.value,
                backplane=self.backplane is not None,
                history_sync=self._sync_task is not None
            )

    def _build_services(self) -> None:
        settings = self.settings
        repos = self._repositories
        clock = self._service_options.get("clock")
        clock_kwargs: Dict[str, Any] = {"clock": clock} if clock is not None else {}

        self.token_manager = TokenManager(repos.platforms, self.channels, self.broadcaster, metrics=self.metrics)
        self.normalizer = MessageNormalizer(repos.messages, **clock_kwargs)
        self.identity_resolver = IdentityResolver(
            repos.customers,
            repos.conversations,
            channels=self.channels,
            fetch_profiles=self._service_options.get("fetch_profiles", True)
        )
        self.send_policy = SendPolicyEngine(repos.messages, self.channels, **clock_kwargs)

        dispatcher_kwargs = dict(clock_kwargs)
        if "sleep" in self._service_options:
            dispatcher_kwargs["sleep"] = self._service_options["sleep"]
        self.dispatcher = OutboundDispatcher(
            repos.messages,
            repos.conversations,
            repos.customers,
            self.channels,
            self.token_manager,
            self.send_policy,
            self.broadcaster,
            metrics=self.metrics,
            max_attempts=settings.OUTBOUND_MAX_ATTEMPTS,
            backoff_base_seconds=settings.OUTBOUND_BACKOFF_BASE_SECONDS,
            backoff_max_seconds=settings.OUTBOUND_BACKOFF_MAX_SECONDS,
            **dispatcher_kwargs
        )

        if self._reply_suggester is not None:
            self.auto_reply = AutoReplyService(self.dispatcher, self._reply_suggester)

        self.webhook_service = WebhookService(
            settings,
            repos,
            self.channels,
            self.normalizer,
            self.identity_resolver,
            self.broadcaster,
            metrics=self.metrics,
            auto_reply=self.auto_reply,
        )
        self.diagnostics = DiagnosticsService(self.token_manager, self.channels)
        self.history_sync = HistorySyncService(
            repos,
            self.channels,
            self.token_manager,
            self.identity_resolver,
            max_pages=settings.FACEBOOK_SYNC_MAX_PAGES,
            interval_minutes=settings.FACEBOOK_SYNC_INTERVAL_MINUTES,
        )

    async def _create_repositories(self) -> Repositories:
        settings = self.settings
        if settings.STORAGE_BACKEND == StorageBackend.MEMORY:
            return create_memory_repositories()

        self._mongo = MongoDBConnectionManager(
            settings.MONGODB_URI, settings.MONGODB_DATABASE, settings.MONGODB_MAX_CONNECTIONS
        )
        database = await self._mongo.connect()
        await MongoIndexManager(database).create_all_indexes()
        return create_mongo_repositories(database, cipher=TokenCipher(settings.TOKEN_ENCRYPTION_KEY))

    async def _start_backplane(self) -> None:
        self._redis = RedisConnectionManager(self.settings.REDIS_URL)
        client = await self._redis.connect()
        self.backplane = RedisBackplane(client, self.settings.REDIS_CHANNEL_PREFIX)
        self.backplane.attach(self.broadcaster)
        await self.backplane.start()

    async def health_check(self) -> Dict[str, Any]:
        checks: Dict[str, Any] = {"storage": {"backend": self.settings.STORAGE_BACKEND.value, "connected": True}}
        if self._mongo is not None:
            checks["storage"] = await self._mongo.health_check()
        if self._redis is not None:
            checks["redis"] = await self._redis.health_check()
        return checks

    async def shutdown(self) -> None:
        """Stop background work and release connections."""
        async with self._lock:
            if self._sync_task is not None:
                self._sync_stop.set()
                await self._sync_task
                self._sync_task = None
            if self.broadcaster is not None:
                self.broadcaster.close_all()
            if self.backplane is not None:
                await self.backplane.stop()
            if self._redis is not None:
                await self._redis.disconnect()
            if self.graph is not None:
                await self.graph.close()
            if self._mongo is not None:
                await self._mongo.disconnect()
            self._initialized = False
            logger.info("Service container shut down")
