"""Vault storage backends."""

from .base import StorageTransaction, VaultStorage
from .memory import FileStorage, MemoryStorage
from .postgres import PostgresStorage

__all__ = [
    "StorageTransaction",
    "VaultStorage",
    "MemoryStorage",
    "FileStorage",
    "PostgresStorage",
]
