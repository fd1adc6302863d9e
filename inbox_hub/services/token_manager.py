"""
Token Manager

Owns the lifecycle of each platform's access token: OAuth completion
writes, validity checks before sends, and deactivation when the Graph API
reports an authentication failure. This is the only component that sets
``Platform.is_active``; everything else reads platforms through
``ensure_valid``.
"""

from typing import Dict, Any, Optional

from inbox_hub.config.constants import REVOKED_ERROR_SUBCODES, AUTH_ERROR_CODES
from inbox_hub.core.channels.channel_factory import ChannelRegistry
from inbox_hub.core.exceptions import TokenExpiredError, TokenRevokedError, PlatformError
from inbox_hub.models.entities import Platform
from inbox_hub.models.types import PlatformType, RealtimeEventType, TenantId
from inbox_hub.repositories.base_repository import PlatformRepository
from inbox_hub.repositories.exceptions import DuplicateEntityError
from inbox_hub.services.base_service import BaseService
from inbox_hub.services.exceptions import NotFoundError, ConflictError, ValidationError
from inbox_hub.services.realtime_broadcaster import RealtimeBroadcaster
from inbox_hub.utils.metrics import MetricsCollector

REASON_EXPIRED = "expired"
REASON_REVOKED = "revoked"
REASON_DISCONNECTED = "disconnected"

_PROFILE_KEYS = (
    "name", "username", "verified_name", "display_phone_number",
    "quality_rating", "code_verification_status",
)


class TokenManager(BaseService):
    """Access-token lifecycle for connected platforms."""

    def __init__(
            self,
            platforms: PlatformRepository,
            channels: ChannelRegistry,
            broadcaster: RealtimeBroadcaster,
            metrics: Optional[MetricsCollector] = None
    ):
        super().__init__()
        self.platforms = platforms
        self.channels = channels
        self.broadcaster = broadcaster
        self.metrics = metrics

    async def get_platform(self, platform_id: str, tenant_id: Optional[TenantId] = None) -> Platform:
        """
        Load a platform, active or not.

        Raises:
            NotFoundError: If the platform does not exist
            UnauthorizedError: If ``tenant_id`` is given and does not own it
        """
        platform = await self.platforms.get(platform_id)
        if platform is None:
            raise NotFoundError(f"Platform {platform_id} not found", resource_type="Platform", resource_id=platform_id)
        if tenant_id is not None:
            self.ensure_tenant(platform, tenant_id, "platform")
        return platform

    async def ensure_valid(self, platform_id: str) -> Platform:
        """
        Return the active platform with a usable token.

        No network call is made; a platform is trusted until the Graph API
        reports an authentication failure.

        Raises:
            NotFoundError: If the platform does not exist
            TokenExpiredError: If the platform was deactivated after expiry
                or holds no token
            TokenRevokedError: If access was revoked
        """
        platform = await self.get_platform(platform_id)

        if not platform.is_active:
            reason = platform.deactivation_reason or REASON_EXPIRED
            if reason == REASON_REVOKED:
                raise TokenRevokedError(platform.id)
            raise TokenExpiredError(platform.id, reason=reason)

        if not platform.access_token:
            raise TokenExpiredError(platform.id, reason="missing token")

        return platform

    async def handle_auth_failure(
            self,
            platform: Platform,
            error_code: Optional[int] = None,
            error_subcode: Optional[int] = None
    ) -> PlatformError:
        """
        Deactivate a platform after the Graph API rejected its token.

        The deactivation is a compare-and-set on the token this caller used,
        so a reconnect that already stored a new token is left untouched.

        Returns:
            TokenRevokedError or TokenExpiredError for the caller to raise
        """
        reason = REASON_REVOKED if error_subcode in REVOKED_ERROR_SUBCODES else REASON_EXPIRED
        deactivated = await self.platforms.deactivate_if_current(platform.id, platform.access_token, reason)

        if deactivated:
            self.logger.warning(
                "Platform deactivated after authentication failure",
                platform_id=platform.id,
                tenant_id=platform.tenant_id,
                platform_type=platform.type.value,
                reason=reason,
                graph_code=error_code,
                graph_subcode=error_subcode
            )
            if self.metrics is not None:
                self.metrics.record_token_invalidation(platform.type.value, reason)
            await self.broadcaster.emit(
                RealtimeEventType.PLATFORM_DISCONNECTED,
                platform.tenant_id,
                payload={
                    "platform_id": platform.id,
                    "platform_type": platform.type.value,
                    "reason": reason,
                },
            )

        if reason == REASON_REVOKED:
            return TokenRevokedError(platform.id)
        return TokenExpiredError(platform.id, reason=reason)

    async def connect(
            self,
            tenant_id: TenantId,
            platform_type: PlatformType,
            external_id: str,
            access_token: str,
            credentials: Optional[Dict[str, Any]] = None
    ) -> Platform:
        """
        Record a completed OAuth connection.

        Reconnecting a tenant's existing platform stores the new token and
        reactivates it.

        Raises:
            ValidationError: If the token or external id is empty
            ConflictError: If another tenant's active platform holds the asset
        """
        if not access_token or not external_id:
            raise ValidationError("External id and access token are required", field="access_token")

        credentials = credentials or {}
        holder = await self.platforms.find_active_by_external(platform_type, external_id)
        if holder is not None and holder.tenant_id != tenant_id:
            raise ConflictError(
                f"{platform_type.value} asset {external_id} is connected to another organization",
                resource_type="Platform",
                conflict_field="external_id"
            )

        existing = await self.platforms.find_by_tenant_external(tenant_id, platform_type, external_id)
        try:
            if existing is not None:
                platform = await self.platforms.activate(existing.id, access_token, credentials)
            else:
                platform = await self.platforms.insert(Platform(
                    tenant_id=tenant_id,
                    type=platform_type,
                    external_id=external_id,
                    access_token=access_token,
                    credentials=credentials,
                    is_active=True,
                ))
        except DuplicateEntityError as e:
            raise ConflictError(
                f"{platform_type.value} asset {external_id} is connected to another organization",
                resource_type="Platform",
                conflict_field="external_id"
            ) from e

        self.log_operation(
            "connect_platform",
            tenant_id=tenant_id,
            platform_id=platform.id,
            platform_type=platform_type.value,
            reconnected=existing is not None
        )
        return platform

    async def disconnect(self, tenant_id: TenantId, platform_id: str) -> bool:
        """
        Deactivate a platform at the tenant's request.

        Returns:
            True if the platform was active and is now inactive
        """
        platform = await self.get_platform(platform_id, tenant_id=tenant_id)
        deactivated = await self.platforms.deactivate_if_current(
            platform.id, platform.access_token, REASON_DISCONNECTED
        )
        self.log_operation("disconnect_platform", tenant_id=tenant_id, platform_id=platform_id, changed=deactivated)
        return deactivated

    async def verify_remote(self, platform: Platform) -> Dict[str, Any]:
        """
        Confirm the token is accepted by the asset's profile endpoint.

        Profile fields returned by the Graph API are merged into the
        platform credentials.

        Returns:
            The profile data returned by the Graph API

        Raises:
            TokenExpiredError / TokenRevokedError: If the token was rejected
            GraphTransportError: If the Graph API could not be reached
        """
        channel = self.channels.get(platform.type)
        response = await channel.fetch_account_profile(platform)

        if response.status_code == 401 or response.error_code in AUTH_ERROR_CODES:
            raise await self.handle_auth_failure(platform, response.error_code, response.error_subcode)

        if not response.ok:
            self.logger.warning(
                "Profile check rejected",
                platform_id=platform.id,
                status_code=response.status_code,
                graph_code=response.error_code
            )
            return {"error": response.error}

        profile = {key: response.data[key] for key in _PROFILE_KEYS if response.data.get(key) is not None}
        if profile:
            await self.platforms.update_credentials(platform.id, profile)
        return response.data
