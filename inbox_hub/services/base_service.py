"""
Base Service Class

Shared plumbing for hub services: a per-class structlog logger, tenant
ownership checks on loaded entities, and uniform logging of operations
and failures.
"""

from abc import ABC
from typing import Any, Optional

import structlog

from inbox_hub.core.exceptions import HubError
from inbox_hub.models.types import TenantId
from inbox_hub.repositories.exceptions import RepositoryError
from inbox_hub.services.exceptions import ServiceError, UnauthorizedError


class BaseService(ABC):
    """Abstract base class for all services"""

    def __init__(self):
        self.logger = structlog.get_logger(self.__class__.__name__)
        self.service_name = self.__class__.__name__

    def ensure_tenant(self, entity: Any, tenant_id: TenantId, resource: str) -> None:
        """
        Check that a platform, customer or conversation is owned by ``tenant_id``.

        Raises:
            UnauthorizedError: If the entity is owned by another tenant
        """
        owner = getattr(entity, "tenant_id", None)
        if owner == tenant_id:
            return

        self.logger.warning(
            "Cross-tenant access refused",
            requested_tenant=tenant_id,
            resource=resource,
            resource_id=getattr(entity, "id", None)
        )
        raise UnauthorizedError(
            f"{resource.capitalize()} does not belong to tenant {tenant_id}",
            tenant_id=tenant_id,
            resource=resource
        )

    def log_operation(self, operation: str, tenant_id: Optional[TenantId] = None, **fields) -> None:
        """Log a completed state change, e.g. a customer created or a platform deactivated."""
        if tenant_id:
            fields["tenant_id"] = tenant_id
        self.logger.info("Service operation", service=self.service_name, operation=operation, **fields)

    def handle_service_error(
            self,
            error: Exception,
            operation: str,
            tenant_id: Optional[TenantId] = None,
            **context
    ) -> HubError:
        """
        Log a failed operation and return the error to raise or count.

        Hub errors are expected outcomes (rejected sends, unknown assets) and
        are logged at warning level and returned unchanged. Anything else is
        logged with its traceback; store failures are wrapped as STORE_ERROR.
        """
        if tenant_id:
            context["tenant_id"] = tenant_id

        if isinstance(error, HubError):
            self.logger.warning(
                "Service operation failed",
                service=self.service_name,
                operation=operation,
                error_code=error.error_code,
                error=error.message,
                **context
            )
            return error

        self.logger.error(
            "Service operation crashed",
            service=self.service_name,
            operation=operation,
            error_type=type(error).__name__,
            error=str(error),
            exc_info=error,
            **context
        )
        error_code = "STORE_ERROR" if isinstance(error, RepositoryError) else None
        return ServiceError(f"{operation} failed: {error}", original_error=error, error_code=error_code)
