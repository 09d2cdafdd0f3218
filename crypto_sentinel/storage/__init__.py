"""Storage layer."""

from crypto_sentinel.storage.base_repository import BaseRepository
from crypto_sentinel.storage.memory_repository import InMemoryRepository
from crypto_sentinel.storage.postgres_repository import PostgresRepository

__all__ = ["BaseRepository", "InMemoryRepository", "PostgresRepository"]
