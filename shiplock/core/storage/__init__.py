from .repository import (
    CatalogRepository,
    InMemoryCatalog,
    InMemorySecretRepository,
    SecretRepository,
)
from .sqlite_store import SQLiteStore

__all__ = [
    "CatalogRepository",
    "InMemoryCatalog",
    "InMemorySecretRepository",
    "SQLiteStore",
    "SecretRepository",
]
