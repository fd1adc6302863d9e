"""
Storage errors raised by repository implementations.

Both stores raise the same types so services never depend on motor or
pymongo exceptions. Services translate them into service or core errors;
they never reach the API layer directly.
"""

from typing import Optional, Dict, Any


class RepositoryError(Exception):
    """A store operation failed."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class EntityNotFoundError(RepositoryError):
    """An update targeted a row that does not exist."""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class DuplicateEntityError(RepositoryError):
    """
    An insert or activation hit a uniqueness constraint.

    ``key`` holds the fields of the violated constraint, e.g.
    ``{"platform_id": ..., "platform_message_id": ...}`` for messages.
    The in-memory store also reports the id of the row holding the key;
    MongoDB does not return it.
    """

    def __init__(
            self,
            entity_type: str,
            key: Dict[str, Any],
            existing_entity_id: Optional[str] = None,
            original_error: Optional[Exception] = None
    ):
        described = ", ".join(f"{name}={value}" for name, value in key.items())
        super().__init__(f"{entity_type} with {described} already exists", original_error=original_error)
        self.entity_type = entity_type
        self.key = key
        self.existing_entity_id = existing_entity_id
