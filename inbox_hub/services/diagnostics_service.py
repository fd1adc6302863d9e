"""
Diagnostics Service

On-demand health check of a connected platform: whether its token is
accepted by the asset's profile endpoint and, optionally, whether a probe
message can be delivered. Probe messages are never persisted.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, Any, Optional

from inbox_hub.config.constants import DIAGNOSTIC_HINTS
from inbox_hub.core.channels.channel_factory import ChannelRegistry
from inbox_hub.core.exceptions import (
    ContentValidationError, GraphTransportError, TokenExpiredError, TokenRevokedError
)
from inbox_hub.models.entities import MessageContent, Platform
from inbox_hub.models.types import SendOutcome, TenantId
from inbox_hub.services.base_service import BaseService
from inbox_hub.services.token_manager import TokenManager

DEFAULT_PROBE_TEXT = "Connection test"

_AUTH_HINT = DIAGNOSTIC_HINTS[190]


@dataclass
class ProbeResult:
    outcome: Optional[str] = None
    platform_message_id: Optional[str] = None
    status_code: Optional[int] = None
    error_code: Optional[int] = None
    error_subcode: Optional[int] = None
    error_message: Optional[str] = None
    hint: Optional[str] = None


@dataclass
class DiagnosticReport:
    platform_id: str
    platform_type: str
    is_active: bool
    token_valid: Optional[bool] = None
    profile: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    hint: Optional[str] = None
    probe: Optional[ProbeResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def hint_for(error_code: Optional[int]) -> Optional[str]:
    """Remediation hint for a Graph API error code."""
    if error_code is None:
        return None
    return DIAGNOSTIC_HINTS.get(error_code)


class DiagnosticsService(BaseService):
    """Token and delivery checks for a single platform."""

    def __init__(self, token_manager: TokenManager, channels: ChannelRegistry):
        super().__init__()
        self.token_manager = token_manager
        self.channels = channels

    async def check_platform(
            self,
            platform_id: str,
            tenant_id: Optional[TenantId] = None,
            probe_recipient: Optional[str] = None,
            probe_text: Optional[str] = None
    ) -> DiagnosticReport:
        """
        Run the diagnostic checks for a platform.

        Args:
            platform_id: Platform to check
            tenant_id: Acting tenant, verified against the platform owner
            probe_recipient: External id to send a probe message to
            probe_text: Probe message text

        Returns:
            DiagnosticReport; check failures are reported, not raised

        Raises:
            NotFoundError: If the platform does not exist
            UnauthorizedError: If the platform belongs to another tenant
        """
        platform = await self.token_manager.get_platform(platform_id, tenant_id=tenant_id)
        report = DiagnosticReport(
            platform_id=platform.id,
            platform_type=platform.type.value,
            is_active=platform.is_active,
        )

        if not platform.is_active:
            report.token_valid = False
            report.error = f"Platform is inactive ({platform.deactivation_reason or 'unknown reason'})"
            report.hint = _AUTH_HINT
            return report

        try:
            profile = await self.token_manager.verify_remote(platform)
        except (TokenExpiredError, TokenRevokedError) as e:
            report.token_valid = False
            report.is_active = False
            report.error = e.message
            report.hint = _AUTH_HINT
            return report
        except GraphTransportError as e:
            report.error = e.message
            return report

        if "error" in profile:
            error = profile["error"] or {}
            report.token_valid = False
            report.error = error.get("message") or "Profile check rejected"
            report.hint = hint_for(error.get("code"))
            return report

        report.token_valid = True
        report.profile = {key: value for key, value in profile.items() if key != "id"}

        if probe_recipient:
            report.probe = await self._probe(platform, probe_recipient, probe_text or DEFAULT_PROBE_TEXT)

        self.log_operation(
            "check_platform",
            tenant_id=platform.tenant_id,
            platform_id=platform.id,
            token_valid=report.token_valid,
            probe_outcome=report.probe.outcome if report.probe else None
        )
        return report

    async def _probe(self, platform: Platform, recipient: str, text: str) -> ProbeResult:
        channel = self.channels.get(platform.type)
        try:
            result = await channel.send(platform, recipient, MessageContent.from_text(text))
        except ContentValidationError as e:
            return ProbeResult(outcome="invalid_request", error_message=e.message)
        except GraphTransportError as e:
            return ProbeResult(outcome="unreachable", error_message=e.message)

        if result.outcome == SendOutcome.AUTH_FAILED:
            await self.token_manager.handle_auth_failure(platform, result.error_code, result.error_subcode)

        return ProbeResult(
            outcome=result.outcome.value,
            platform_message_id=result.platform_message_id,
            status_code=result.status_code,
            error_code=result.error_code,
            error_subcode=result.error_subcode,
            error_message=result.error_message,
            hint=hint_for(result.error_code),
        )
