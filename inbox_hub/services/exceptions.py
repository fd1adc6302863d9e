"""Service layer exceptions"""

from typing import Optional

from inbox_hub.core.exceptions import HubError


class ServiceError(HubError):
    """Base exception for service layer errors"""

    def __init__(self, message: str, original_error: Optional[Exception] = None, error_code: Optional[str] = None):
        super().__init__(message, error_code=error_code or "SERVICE_ERROR")
        self.original_error = original_error


class ValidationError(ServiceError):
    """Exception for input validation failures"""

    def __init__(self, message: str, field: Optional[str] = None, value: Optional[str] = None):
        super().__init__(message, error_code="VALIDATION_ERROR")
        self.field = field
        self.value = value
        self.details = {"field": field}


class UnauthorizedError(ServiceError):
    """Exception for tenant authorization failures"""

    def __init__(self, message: str, tenant_id: Optional[str] = None, resource: Optional[str] = None):
        super().__init__(message, error_code="UNAUTHORIZED")
        self.tenant_id = tenant_id
        self.resource = resource


class NotFoundError(ServiceError):
    """Exception for resource not found errors"""

    def __init__(self, message: str, resource_type: Optional[str] = None, resource_id: Optional[str] = None):
        super().__init__(message, error_code="NOT_FOUND")
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.details = {"resource_type": resource_type, "resource_id": resource_id}


class ConflictError(ServiceError):
    """Exception for resource conflict errors"""

    def __init__(self, message: str, resource_type: Optional[str] = None, conflict_field: Optional[str] = None):
        super().__init__(message, error_code="CONFLICT")
        self.resource_type = resource_type
        self.conflict_field = conflict_field
        self.details = {"resource_type": resource_type, "conflict_field": conflict_field}
