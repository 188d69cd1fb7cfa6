"""
Vault storage port.

A storage backend owns the owner → Vault mapping. Mutations go through
``transaction(owner)``, which holds the owner's exclusive lock for the
duration of the block and commits only if the block exits cleanly.
"""
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Optional

from ..models import Vault


class StorageTransaction(ABC):
    """Working view of one owner's vault inside a storage transaction."""

    def __init__(self, owner: str):
        self.owner = owner

    @property
    @abstractmethod
    def initialized(self) -> bool:
        ...

    @property
    @abstractmethod
    def encrypted_key(self) -> str:
        ...

    @property
    @abstractmethod
    def secret_count(self) -> int:
        ...

    @abstractmethod
    async def write_key(self, handle: str) -> None:
        """Store the handle and mark the vault initialized."""

    @abstractmethod
    async def append_ciphertext(self, ciphertext: str) -> int:
        """Append a ciphertext and return its index."""


class VaultStorage(ABC):
    """Persistent owner → Vault mapping."""

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def __aenter__(self) -> "VaultStorage":
        await self.open()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    @abstractmethod
    async def get(self, owner: str) -> Vault:
        """Return the owner's vault, or a default record if absent."""

    @abstractmethod
    async def count(self, owner: str) -> int:
        ...

    @abstractmethod
    async def ciphertext_at(self, owner: str, index: int) -> Optional[str]:
        """Return the ciphertext at index, or None if there is none."""

    @abstractmethod
    def transaction(self, owner: str) -> AbstractAsyncContextManager[StorageTransaction]:
        ...
