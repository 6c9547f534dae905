# Infrastructure Storage Adapters Package
from .json_store import JsonCardRepository
from .memory_store import InMemoryCardRepository

__all__ = ["InMemoryCardRepository", "JsonCardRepository"]
