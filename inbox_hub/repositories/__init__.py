"""
Repository layer: storage interfaces and their in-memory and MongoDB implementations.
"""

from inbox_hub.repositories.base_repository import (
    PlatformRepository,
    CustomerRepository,
    ConversationRepository,
    MessageRepository,
    Repositories,
    history_sort_key,
)
from inbox_hub.repositories.exceptions import (
    RepositoryError,
    EntityNotFoundError,
    DuplicateEntityError,
)
from inbox_hub.repositories.memory_repository import create_memory_repositories

__all__ = [
    "PlatformRepository",
    "CustomerRepository",
    "ConversationRepository",
    "MessageRepository",
    "Repositories",
    "history_sort_key",
    "RepositoryError",
    "EntityNotFoundError",
    "DuplicateEntityError",
    "create_memory_repositories",
]
