"""
Execution Engine - Adapters Package.

============================================================
PURPOSE
============================================================
Interfaces to the storage engine and metadata provider.

AVAILABLE ADAPTERS:
- InMemoryStorageEngine: For testing and dry runs

Production engines implement StorageEngine and
MetadataProvider for their platform.

============================================================
"""

from .base import MetadataProvider, StorageEngine
from .mock import InMemoryEngineConfig, InMemoryStorageEngine


__all__ = [
    "MetadataProvider",
    "StorageEngine",
    "InMemoryEngineConfig",
    "InMemoryStorageEngine",
]
